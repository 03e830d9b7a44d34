"""Session demultiplexing and call correlation for traced connections."""

from tchantrace.core.coordinator import CaptureCoordinator
from tchantrace.core.correlation import UNKNOWN_METHOD, CorrelationTable
from tchantrace.core.filter_builder import build_display_filter, build_filter
from tchantrace.core.options import TraceOptions, load_options_file, resolve_options
from tchantrace.core.session import ConnectionSession, SessionState
from tchantrace.core.status import UNCLASSIFIED, ResponseStatus, ResponseStatusCatalog
from tchantrace.core.stream_tracker import DirectionalStreamTracker, TracedFrame
from tchantrace.core.types import Direction, Endpoint

__all__ = [
    "UNCLASSIFIED",
    "UNKNOWN_METHOD",
    "CaptureCoordinator",
    "ConnectionSession",
    "CorrelationTable",
    "Direction",
    "DirectionalStreamTracker",
    "Endpoint",
    "ResponseStatus",
    "ResponseStatusCatalog",
    "SessionState",
    "TraceOptions",
    "TracedFrame",
    "build_display_filter",
    "build_filter",
    "load_options_file",
    "resolve_options",
]
