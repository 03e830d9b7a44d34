"""Tracing state for one TCP connection."""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from tchantrace.core.correlation import CorrelationTable
from tchantrace.core.options import TraceOptions
from tchantrace.core.renderer import TraceRenderer
from tchantrace.core.status import ResponseStatusCatalog
from tchantrace.core.stream_tracker import DirectionalStreamTracker, TracedFrame
from tchantrace.core.tcp_tracker import TcpConnection
from tchantrace.core.types import Direction, Endpoint
from tchantrace.utils.logger import get_logger

logger = get_logger(__name__)


class SessionState(Enum):
    CREATED = "created"
    ACTIVE = "active"
    ENDED = "ended"


class ConnectionSession:
    """
    One traced TCP connection.

    The session owns one correlation table and the two directional trackers
    that share it. Data is routed by direction until the first end
    notification; after that the session ignores everything.
    """

    def __init__(
        self,
        session_id: int,
        src: Endpoint,
        dst: Endpoint,
        interface: str,
        missed_syn: bool,
        options: TraceOptions,
        status_catalog: ResponseStatusCatalog | None = None,
        renderer: TraceRenderer | None = None,
        on_closed: Callable[[ConnectionSession], None] | None = None,
    ):
        """
        Initialize the session and announce it.

        Args:
            session_id: Unique, never reused identifier
            src: Client endpoint
            dst: Server endpoint
            interface: Capture interface (or file) the connection was seen on
            missed_syn: True if the capture joined the connection mid-stream
            options: Trace options (tracked methods, display flags)
            status_catalog: Shared response status labels (built from options if omitted)
            renderer: Output for session and frame lines (None for silent sessions)
            on_closed: Called once after the session has ended
        """
        self.state = SessionState.CREATED
        self.session_id = session_id
        self.src = src
        self.dst = dst
        self.interface = interface
        self.missed_syn = missed_syn
        self.renderer = renderer
        self._on_closed = on_closed
        self._connection: TcpConnection | None = None

        self.correlation: CorrelationTable | None = None
        if options.correlate:
            self.correlation = CorrelationTable(options.tracked_methods or ())

        catalog = status_catalog or ResponseStatusCatalog(options.response_statuses)
        self.trackers = {
            direction: DirectionalStreamTracker(
                session_id=session_id,
                direction=direction,
                correlation=self.correlation,
                on_track=not missed_syn,
                status_catalog=catalog,
                renderer=renderer,
            )
            for direction in (Direction.INCOMING, Direction.OUTGOING)
        }

        if renderer is not None:
            renderer.session_started(self)
        self.state = SessionState.ACTIVE

    def __repr__(self) -> str:
        return (
            f"ConnectionSession(id={self.session_id}, {self.src} -> {self.dst}, "
            f"interface={self.interface}, state={self.state.value})"
        )

    @property
    def incoming(self) -> DirectionalStreamTracker:
        return self.trackers[Direction.INCOMING]

    @property
    def outgoing(self) -> DirectionalStreamTracker:
        return self.trackers[Direction.OUTGOING]

    @property
    def ended(self) -> bool:
        return self.state is SessionState.ENDED

    def attach(self, connection: TcpConnection) -> None:
        """Subscribe to ``connection``'s data and end events."""
        self._connection = connection
        connection.subscribe(self)

    def on_data(self, direction: Direction, chunk: bytes) -> list[TracedFrame]:
        """
        Route a chunk to the tracker of its direction.

        Returns:
            Frames decoded from the chunk (empty once the session has ended)
        """
        if self.state is SessionState.ENDED:
            logger.debug("session=%d: dropping %d bytes received after end", self.session_id, len(chunk))
            return []
        return self.trackers[direction].handle_packet(chunk)

    def on_end(self) -> None:
        """End the session; only the first call has any effect."""
        if self.state is SessionState.ENDED:
            return
        self.state = SessionState.ENDED

        if self._connection is not None:
            self._connection.unsubscribe(self)
            self._connection = None

        if self.renderer is not None:
            self.renderer.session_ended(self)

        self.incoming.end()
        self.outgoing.end()
        if self.correlation is not None:
            self.correlation.reset()

        if self._on_closed is not None:
            self._on_closed(self)
