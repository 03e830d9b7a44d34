"""
Capture coordination.

The coordinator opens one capture source per interface (or capture file),
feeds each source's segments into its own ``TcpTracker`` and turns every new
connection into a ``ConnectionSession``. Capture threads only enqueue
segments; all tracking runs on the thread that calls ``run()``.
"""

from __future__ import annotations

import queue
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from functools import partial
from pathlib import Path

from tchantrace.core.capture_source import CaptureSource, TcpSegment, TsharkCaptureSource
from tchantrace.core.filter_builder import build_display_filter, build_filter
from tchantrace.core.options import TraceOptions
from tchantrace.core.renderer import TraceRenderer
from tchantrace.core.session import ConnectionSession
from tchantrace.core.status import ResponseStatusCatalog
from tchantrace.core.tcp_tracker import TcpConnection, TcpTracker
from tchantrace.utils.errors import ConfigurationError
from tchantrace.utils.logger import get_logger

logger = get_logger(__name__)

SourceFactory = Callable[[str], CaptureSource]


@dataclass
class InterfaceListener:
    """A capture source and the tracker its segments go to."""

    name: str
    source: CaptureSource
    tracker: TcpTracker
    finished: bool = False


class CaptureCoordinator:
    """Open capture sources and create a session per connection."""

    def __init__(
        self,
        options: TraceOptions,
        renderer: TraceRenderer | None = None,
        source_factory: SourceFactory | None = None,
    ):
        """
        Initialize the coordinator.

        Args:
            options: Trace options
            renderer: Output for trace lines (defaults to the shared console)
            source_factory: Builds a live source for an interface name
                (defaults to tshark capture with the built filter)

        Raises:
            StrictModeError: If a status alias is unrecognized in strict mode
        """
        self.options = options
        self.capture_filter = build_filter(options.filter, options.ports, options.default_port)
        self.display_filter = build_display_filter(options.ports, options.default_port)
        self.renderer = renderer or TraceRenderer(
            always_show_frame_dump=options.always_show_frame_dump,
            always_show_hex=options.always_show_hex,
        )
        self.status_catalog = ResponseStatusCatalog(options.response_statuses)
        self.source_factory = source_factory or self._live_source

        # Coordinator-wide and never reset: ids stay unique across interfaces
        self.next_session_id = 0

        self.sessions: dict[int, ConnectionSession] = {}
        self.listeners: dict[str, InterfaceListener] = {}
        self._events: queue.Queue[tuple[str, TcpSegment | None]] = queue.Queue()
        self._stopping = False

    def _live_source(self, interface: str) -> CaptureSource:
        return TsharkCaptureSource.live(interface, self.capture_filter, self.options.buffer_size)

    def listen(self, interfaces: Sequence[str] | None = None) -> None:
        """
        Open and start one capture source per interface.

        Every interface is opened before any of them starts delivering, so a
        bad interface aborts startup without partial operation.

        Args:
            interfaces: Interface names (defaults to ``options.interfaces``)

        Raises:
            ConfigurationError: If no interfaces are given or one is repeated
            CaptureInterfaceError: If an interface cannot be opened
        """
        names = list(interfaces if interfaces is not None else self.options.interfaces)
        if not names:
            raise ConfigurationError("command line", "no capture interfaces given (use -i)")
        self._open_sources(((name, self.source_factory(name)) for name in names), self.capture_filter)

    def replay(
        self,
        capture_files: Sequence[Path],
        source_factory: SourceFactory | None = None,
    ) -> None:
        """
        Open capture files for offline tracing through the same pipeline.

        Args:
            capture_files: pcap/pcapng files
            source_factory: Builds a source for a file path (defaults to tshark)

        Raises:
            ConfigurationError: If no files are given or one is repeated
            CaptureFileNotFoundError: If a file does not exist
        """
        if not capture_files:
            raise ConfigurationError("command line", "no capture files given (use -r)")
        factory = source_factory or (
            lambda path: TsharkCaptureSource.offline(Path(path), self.display_filter)
        )
        self._open_sources(
            ((str(path), factory(str(path))) for path in capture_files),
            self.display_filter,
        )

    def _open_sources(self, named_sources: Iterable[tuple[str, CaptureSource]], filter_text: str) -> None:
        opened: list[tuple[str, CaptureSource]] = []
        try:
            for name, source in named_sources:
                if name in self.listeners or any(name == seen for seen, _ in opened):
                    raise ConfigurationError("command line", f"{name} given more than once")
                source.open()
                opened.append((name, source))
        except Exception:
            for _, source in opened:
                source.close()
            raise

        for name, source in opened:
            tracker = TcpTracker()
            tracker.on_connection(partial(self.handle_tcp_connection, interface=name))
            self.listeners[name] = InterfaceListener(name=name, source=source, tracker=tracker)
            self.renderer.listening(source.device_name, filter_text)

        for name, source in opened:
            source.start(partial(self._enqueue, name))

    def _enqueue(self, name: str, segment: TcpSegment | None) -> None:
        self._events.put((name, segment))

    @property
    def active(self) -> bool:
        """Whether any source may still deliver segments."""
        return not self._stopping and any(not listener.finished for listener in self.listeners.values())

    def run(self, poll_interval: float = 0.25) -> None:
        """
        Process queued segments until every source has finished or stop() is called.

        Args:
            poll_interval: Seconds to wait for a segment before re-checking for stop
        """
        while self.active:
            try:
                name, segment = self._events.get(timeout=poll_interval)
            except queue.Empty:
                continue
            self.dispatch(name, segment)

    def dispatch(self, name: str, segment: TcpSegment | None) -> None:
        """
        Handle one event from the source registered as ``name``.

        Failures while handling a segment are logged and contained so other
        connections and interfaces keep going.
        """
        listener = self.listeners[name]
        if segment is None:
            listener.finished = True
            listener.tracker.close_all()
            logger.info("Capture source %s finished", name)
            return

        try:
            listener.tracker.track_segment(segment)
        except Exception:
            logger.exception("Error handling segment %s -> %s on %s", segment.src, segment.dst, name)

    def handle_tcp_connection(self, connection: TcpConnection, interface: str) -> ConnectionSession:
        """Create and attach the session for a newly seen connection."""
        session_id = self.next_session_id
        self.next_session_id += 1

        session = ConnectionSession(
            session_id=session_id,
            src=connection.client,
            dst=connection.server,
            interface=interface,
            missed_syn=connection.missed_syn,
            options=self.options,
            status_catalog=self.status_catalog,
            renderer=self.renderer,
            on_closed=self._forget_session,
        )
        self.sessions[session_id] = session
        session.attach(connection)
        return session

    def _forget_session(self, session: ConnectionSession) -> None:
        self.sessions.pop(session.session_id, None)

    def stop(self) -> None:
        """Stop all sources and end every live session."""
        self._stopping = True
        for listener in self.listeners.values():
            listener.source.close()
        for listener in self.listeners.values():
            listener.tracker.close_all()
