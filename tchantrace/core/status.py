"""Response status classification."""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from tchantrace.utils.context import ExecutionContext
from tchantrace.utils.logger import get_logger

logger = get_logger(__name__)

UNCLASSIFIED = "unclassified"


class ResponseStatus(str, Enum):
    """Outcome of a call as seen in its response."""

    OK = "ok"
    NOT_OK = "not-ok"
    ERROR = "error"


_ALIASES: dict[str, ResponseStatus] = {
    "ok": ResponseStatus.OK,
    "o": ResponseStatus.OK,
    "success": ResponseStatus.OK,
    "notok": ResponseStatus.NOT_OK,
    "not-ok": ResponseStatus.NOT_OK,
    "not_ok": ResponseStatus.NOT_OK,
    "nok": ResponseStatus.NOT_OK,
    "n": ResponseStatus.NOT_OK,
    "error": ResponseStatus.ERROR,
    "err": ResponseStatus.ERROR,
    "e": ResponseStatus.ERROR,
}


def lookup_alias(alias: str) -> ResponseStatus | None:
    """Case-insensitive alias lookup."""
    return _ALIASES.get(alias.strip().lower())


class ResponseStatusCatalog:
    """
    Labels for the response statuses the user asked to see.

    Entries are ``alias`` or ``alias=Label``. A status nobody asked for is
    unclassified. Without any entries every status is classified under its
    default label.
    """

    def __init__(self, aliases: Iterable[str] | None = None):
        """
        Build the catalog.

        Args:
            aliases: Status aliases, optionally with a custom label

        Raises:
            StrictModeError: On an unrecognized alias when strict mode is enabled
        """
        entries = list(aliases or ())
        self._labels: dict[ResponseStatus, str] = {}

        if not entries:
            self._labels = {status: status.value for status in ResponseStatus}
            return

        for entry in entries:
            alias, _, label = entry.partition("=")
            status = lookup_alias(alias)
            if status is None:
                ExecutionContext.warn_or_error(
                    logger,
                    "Unrecognized response status %r; expected one of ok, notok, error",
                    alias.strip(),
                )
                continue
            self._labels[status] = label.strip() or status.value

    @property
    def labels(self) -> dict[ResponseStatus, str]:
        return dict(self._labels)

    def classify(self, status: ResponseStatus) -> str:
        """Return the label for ``status`` or ``UNCLASSIFIED``."""
        return self._labels.get(status, UNCLASSIFIED)

    def is_classified(self, status: ResponseStatus) -> bool:
        return status in self._labels
