"""Trace options and YAML configuration loading."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from tchantrace.core.filter_builder import DEFAULT_FILTER, DEFAULT_PORT
from tchantrace.utils.errors import ConfigurationError
from tchantrace.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class TraceOptions:
    """Everything the capture and session layers are configured with."""

    filter: str = DEFAULT_FILTER
    """Base BPF capture filter."""

    ports: list[int] = field(default_factory=list)
    """Explicit ports, OR'd into the capture filter."""

    interfaces: list[str] = field(default_factory=list)
    """Interfaces to capture on, one capture source each."""

    buffer_size: int | None = None
    """Capture buffer size in bytes (passed through to tshark)."""

    always_show_frame_dump: bool = False
    always_show_hex: bool = False

    tracked_methods: list[str] | None = field(default_factory=list)
    """
    Method names to track. None disables call correlation entirely; an empty
    list tracks every method.
    """

    response_statuses: list[str] = field(default_factory=list)
    """Response status aliases (``alias`` or ``alias=Label``) to display."""

    default_port: int = DEFAULT_PORT

    @property
    def correlate(self) -> bool:
        return self.tracked_methods is not None

    def merge(self, **overrides: Any) -> TraceOptions:
        """
        Return a copy with every override that was actually given applied.

        None values and empty sequences mean "not given" and keep the current value.
        """
        given = {
            key: value
            for key, value in overrides.items()
            if value is not None and not (isinstance(value, (list, tuple)) and not value)
        }
        for key in ("ports", "interfaces", "tracked_methods", "response_statuses"):
            if key in given:
                given[key] = list(given[key])
        return dataclasses.replace(self, **given)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], source: Path | str = "configuration") -> TraceOptions:
        """
        Build options from a configuration mapping.

        Args:
            data: Parsed configuration (YAML keys, see below)
            source: Where the mapping came from, for error messages

        Returns:
            TraceOptions

        Raises:
            ConfigurationError: On unknown keys or values of the wrong type

        Keys:
            filter, ports, interfaces, buffer_size, always_show_frame_dump,
            always_show_hex, methods, statuses, correlate, default_port
        """
        known = {
            "filter",
            "ports",
            "interfaces",
            "buffer_size",
            "always_show_frame_dump",
            "always_show_hex",
            "methods",
            "statuses",
            "correlate",
            "default_port",
        }
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(source, f"unknown keys: {', '.join(unknown)}")

        options = cls()
        if "filter" in data:
            options.filter = _expect(data["filter"], str, "filter", source)
        if "ports" in data:
            options.ports = _expect_list(data["ports"], int, "ports", source)
        if "interfaces" in data:
            options.interfaces = _expect_list(data["interfaces"], str, "interfaces", source)
        if data.get("buffer_size") is not None:
            options.buffer_size = _expect(data["buffer_size"], int, "buffer_size", source)
        if "always_show_frame_dump" in data:
            options.always_show_frame_dump = _expect(
                data["always_show_frame_dump"], bool, "always_show_frame_dump", source
            )
        if "always_show_hex" in data:
            options.always_show_hex = _expect(data["always_show_hex"], bool, "always_show_hex", source)
        if "methods" in data:
            options.tracked_methods = _expect_list(data["methods"], str, "methods", source)
        if "statuses" in data:
            options.response_statuses = _expect_list(data["statuses"], str, "statuses", source)
        if "default_port" in data:
            options.default_port = _expect(data["default_port"], int, "default_port", source)
        if "correlate" in data and not _expect(data["correlate"], bool, "correlate", source):
            options.tracked_methods = None
        return options


def _expect(value: Any, expected: type, key: str, source: Path | str) -> Any:
    # bool is an int subclass; don't accept true/false for numeric keys
    if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
        raise ConfigurationError(
            source, f"'{key}' must be of type {expected.__name__}, got {type(value).__name__}"
        )
    return value


def _expect_list(value: Any, item_type: type, key: str, source: Path | str) -> list[Any]:
    if isinstance(value, item_type) and not isinstance(value, bool):
        value = [value]
    if not isinstance(value, list):
        raise ConfigurationError(source, f"'{key}' must be a list")
    return [_expect(item, item_type, key, source) for item in value]


def load_options_file(config_file: Path) -> TraceOptions:
    """
    Load trace options from a YAML file.

    Args:
        config_file: Path to YAML configuration file

    Returns:
        TraceOptions populated from the file

    Raises:
        ConfigurationError: If the file is missing, not valid YAML, or has invalid values
    """
    if not config_file.exists():
        raise ConfigurationError(config_file, "file not found")

    logger.debug(f"Loading configuration from {config_file}")

    try:
        with open(config_file, encoding="utf-8") as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(config_file, f"invalid YAML: {e}") from e

    if config_data is None:
        config_data = {}
    if not isinstance(config_data, dict):
        raise ConfigurationError(config_file, "top level must be a mapping")

    return TraceOptions.from_mapping(config_data, source=config_file)


def resolve_options(
    config_file: Path | None = None,
    correlate: bool = True,
    **overrides: Any,
) -> TraceOptions:
    """
    Combine defaults, an optional config file and command-line overrides.

    Args:
        config_file: Optional YAML file
        correlate: False disables call correlation regardless of other settings
        **overrides: TraceOptions fields given on the command line

    Returns:
        Effective TraceOptions
    """
    options = load_options_file(config_file) if config_file else TraceOptions()
    options = options.merge(**overrides)
    if not correlate:
        options.tracked_methods = None
    return options
