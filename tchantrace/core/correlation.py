"""
Per-connection call correlation.

The outgoing decoder registers each new call under its key (the frame id) and
the incoming decoder resolves responses against it, which is how anonymous
response frames get labelled with the method that produced them.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from tchantrace.core.status import ResponseStatus

UNKNOWN_METHOD = "unknown"


@dataclass
class CallRecord:
    """A call seen on the outgoing stream and not yet fully answered."""

    method: str
    status: ResponseStatus | None = None


class CorrelationTable:
    """
    Mapping from call key to method name, scoped to one connection.

    Besides in-flight calls the table keeps a universe of tracked method
    names, each mapped to the status of its last completed call (None until
    the method has been called). An empty universe tracks every method.
    """

    def __init__(self, tracked_methods: Iterable[str] = ()):
        """
        Initialize the table.

        Args:
            tracked_methods: Method names to track; empty tracks all methods
        """
        self._template = tuple(tracked_methods)
        self._calls: dict[int, CallRecord] = {}
        self.method_status: dict[str, ResponseStatus | None] = {}
        self.reset()

    def __len__(self) -> int:
        return len(self._calls)

    def __contains__(self, key: object) -> bool:
        return key in self._calls

    @property
    def tracked_methods(self) -> tuple[str, ...]:
        return self._template

    def register(self, key: int, method: str) -> None:
        """Record a new call; a reused key silently replaces the stale entry."""
        self._calls[key] = CallRecord(method=method)

    def resolve(self, key: int) -> str:
        """Return the method registered under ``key`` or ``UNKNOWN_METHOD``."""
        record = self._calls.get(key)
        if record is None:
            return UNKNOWN_METHOD
        return record.method

    def annotate(self, key: int, status: ResponseStatus) -> None:
        """Remember the response status of a call that is still pending."""
        record = self._calls.get(key)
        if record is not None:
            record.status = status

    def retire(self, key: int, status: ResponseStatus | None = None) -> str:
        """
        Resolve ``key`` and drop it from the pending calls.

        Args:
            key: Call key of a final response
            status: Outcome of the call, if known

        Returns:
            Method name, or ``UNKNOWN_METHOD`` for untracked keys
        """
        record = self._calls.pop(key, None)
        if record is None:
            return UNKNOWN_METHOD
        if status is None:
            status = record.status
        if record.method in self.method_status or not self._template:
            self.method_status[record.method] = status
        return record.method

    def is_tracked(self, method: str) -> bool:
        """Whether frames of ``method`` should be shown."""
        return not self._template or method in self._template

    def reset(self) -> None:
        """Forget all calls and mark every tracked method as not yet called."""
        self._calls = {}
        self.method_status = {name: None for name in self._template}
