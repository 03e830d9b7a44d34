"""
TCP connection tracking and in-order stream delivery.

``TcpTracker`` consumes captured segments for one capture source, groups them
into connections and hands each connection's payload to subscribers as two
ordered byte streams. Subscribers are notified of a new connection before
its first bytes are delivered.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol

from tchantrace.core.capture_source import TcpSegment
from tchantrace.core.types import Direction, Endpoint
from tchantrace.utils.logger import get_logger

logger = get_logger(__name__)

# Maximum value for 32-bit sequence numbers
MAX_SEQ = 2**32

# Out-of-order segments held per direction before the farthest are dropped
MAX_PENDING_SEGMENTS = 1000

# Recently closed connections remembered so their trailing segments are ignored
MAX_CLOSED_CONNECTIONS = 4096


def seq_diff(a: int, b: int) -> int:
    """Signed distance ``a - b`` in 32-bit sequence space."""
    return ((a - b + 2**31) % MAX_SEQ) - 2**31


class StreamReassembler:
    """
    Order one direction's payload by sequence number.

    Retransmitted and overlapping bytes are trimmed; segments that arrive
    ahead of a gap are held until the gap is filled.
    """

    def __init__(self) -> None:
        self.next_seq: int | None = None
        self.retransmitted_bytes = 0
        self.evicted_segments = 0
        self._pending: dict[int, bytes] = {}

    @property
    def pending_segments(self) -> int:
        return len(self._pending)

    def set_isn(self, isn: int) -> None:
        """Anchor the stream on a SYN (which consumes one sequence number)."""
        if self.next_seq is None:
            self.next_seq = (isn + 1) % MAX_SEQ

    def add(self, seq: int, data: bytes) -> bytes:
        """
        Add a segment's payload.

        Args:
            seq: Sequence number of the first payload byte
            data: Payload bytes

        Returns:
            Bytes that became contiguous (possibly empty)
        """
        if not data:
            return b""
        if self.next_seq is None:
            self.next_seq = seq

        offset = seq_diff(seq, self.next_seq)
        if offset > 0:
            self._hold(seq, data)
            return b""

        out = bytearray()
        self._append(out, offset, data)
        self._drain(out)
        return bytes(out)

    def _append(self, out: bytearray, offset: int, data: bytes) -> None:
        if -offset >= len(data):
            self.retransmitted_bytes += len(data)
            return
        if offset < 0:
            self.retransmitted_bytes += -offset
            data = data[-offset:]
        out += data
        assert self.next_seq is not None
        self.next_seq = (self.next_seq + len(data)) % MAX_SEQ

    def _drain(self, out: bytearray) -> None:
        progressed = True
        while progressed and self._pending:
            progressed = False
            for seq in list(self._pending):
                offset = seq_diff(seq, self.next_seq)  # type: ignore[arg-type]
                if offset <= 0:
                    self._append(out, offset, self._pending.pop(seq))
                    progressed = True

    def _hold(self, seq: int, data: bytes) -> None:
        existing = self._pending.get(seq)
        if existing is None or len(data) > len(existing):
            self._pending[seq] = data
        if len(self._pending) > MAX_PENDING_SEGMENTS:
            farthest = max(self._pending, key=lambda s: seq_diff(s, self.next_seq))  # type: ignore[arg-type]
            del self._pending[farthest]
            self.evicted_segments += 1


class ConnectionListener(Protocol):
    """Receiver of one connection's data and end events."""

    def on_data(self, direction: Direction, chunk: bytes) -> None: ...

    def on_end(self) -> None: ...


class TcpConnection:
    """One tracked TCP connection."""

    def __init__(self, client: Endpoint, server: Endpoint, missed_syn: bool, client_isn: int | None = None):
        """
        Initialize the connection.

        Args:
            client: Endpoint that opened the connection (or sent first, if the SYN was missed)
            server: The other endpoint
            missed_syn: True if the capture joined after the handshake
            client_isn: Initial sequence number of the client's SYN, when seen
        """
        self.client = client
        self.server = server
        self.missed_syn = missed_syn
        self.client_isn = client_isn
        self.ended = False
        self._listeners: list[ConnectionListener] = []
        self._streams = {
            Direction.OUTGOING: StreamReassembler(),
            Direction.INCOMING: StreamReassembler(),
        }
        self._fin_seen: set[Direction] = set()

    def __repr__(self) -> str:
        return f"TcpConnection({self.client} -> {self.server}, missed_syn={self.missed_syn})"

    def subscribe(self, listener: ConnectionListener) -> None:
        """Deliver this connection's data and end events to ``listener``."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ConnectionListener) -> None:
        """Stop delivering events to ``listener``."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def direction_of(self, segment: TcpSegment) -> Direction:
        return Direction.OUTGOING if segment.src == self.client else Direction.INCOMING

    def stream(self, direction: Direction) -> StreamReassembler:
        return self._streams[direction]

    def handle(self, segment: TcpSegment) -> bool:
        """
        Process one segment of this connection.

        Returns:
            True once the connection has ended
        """
        if self.ended:
            return True

        direction = self.direction_of(segment)
        stream = self._streams[direction]

        seq = segment.seq
        if segment.syn:
            stream.set_isn(segment.seq)
            seq = (seq + 1) % MAX_SEQ

        try:
            if segment.payload:
                chunk = stream.add(seq, segment.payload)
                if chunk:
                    for listener in list(self._listeners):
                        listener.on_data(direction, chunk)
        finally:
            if segment.rst:
                self.end()
            elif segment.fin:
                self._fin_seen.add(direction)
                if len(self._fin_seen) == 2:
                    self.end()
        return self.ended

    def end(self) -> None:
        """Mark the connection ended and notify listeners once."""
        if self.ended:
            return
        self.ended = True
        for listener in list(self._listeners):
            listener.on_end()


ConnectionCallback = Callable[[TcpConnection], None]


class TcpTracker:
    """Group segments of one capture source into connections."""

    def __init__(self) -> None:
        self.connections: dict[frozenset[Endpoint], TcpConnection] = {}
        self._callbacks: list[ConnectionCallback] = []
        # key -> client ISN of the closed connection (None if its SYN was missed)
        self._closed: OrderedDict[frozenset[Endpoint], int | None] = OrderedDict()

    def on_connection(self, callback: ConnectionCallback) -> None:
        """Call ``callback`` with every new connection before its first data."""
        self._callbacks.append(callback)

    def track_segment(self, segment: TcpSegment) -> None:
        """Route ``segment`` to its connection, opening or closing connections as needed."""
        key = frozenset((segment.src, segment.dst))
        connection = self.connections.get(key)

        if connection is not None and self._is_new_handshake(connection, segment):
            logger.debug("New SYN on %s, closing previous connection", connection)
            connection.end()
            connection = None

        if connection is None:
            if segment.rst or segment.fin:
                return
            if key in self._closed:
                if not self._reopens(self._closed[key], segment):
                    logger.debug("Ignoring segment %s -> %s of a closed connection", segment.src, segment.dst)
                    return
                del self._closed[key]
            connection = self._open(key, segment)

        try:
            connection.handle(segment)
        finally:
            if connection.ended:
                self.connections.pop(key, None)
                self._remember_closed(key, connection)

    @staticmethod
    def _is_new_handshake(connection: TcpConnection, segment: TcpSegment) -> bool:
        return (
            segment.syn
            and not segment.has_ack
            and connection.client_isn != segment.seq
        )

    @staticmethod
    def _reopens(closed_isn: int | None, segment: TcpSegment) -> bool:
        return segment.syn and not segment.has_ack and segment.seq != closed_isn

    def _remember_closed(self, key: frozenset[Endpoint], connection: TcpConnection) -> None:
        self._closed[key] = connection.client_isn
        self._closed.move_to_end(key)
        while len(self._closed) > MAX_CLOSED_CONNECTIONS:
            self._closed.popitem(last=False)

    def _open(self, key: frozenset[Endpoint], segment: TcpSegment) -> TcpConnection:
        if segment.syn and not segment.has_ack:
            connection = TcpConnection(segment.src, segment.dst, missed_syn=False, client_isn=segment.seq)
        elif segment.syn:
            # SYN-ACK: the receiver is the client
            connection = TcpConnection(segment.dst, segment.src, missed_syn=False)
        else:
            connection = TcpConnection(segment.src, segment.dst, missed_syn=True)

        self.connections[key] = connection
        for callback in self._callbacks:
            callback(connection)
        return connection

    def close_all(self) -> None:
        """End every live connection (source finished or shutting down)."""
        connections = list(self.connections.values())
        self.connections.clear()
        for connection in connections:
            connection.end()
