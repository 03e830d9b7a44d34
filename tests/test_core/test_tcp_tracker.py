"""Tests for TCP connection tracking and stream reassembly."""

from __future__ import annotations

import pytest

from tchantrace.core import tcp_tracker
from tchantrace.core.capture_source import TCP_ACK, TCP_RST, TCP_SYN, TcpSegment
from tchantrace.core.tcp_tracker import StreamReassembler, TcpConnection, TcpTracker, seq_diff
from tchantrace.core.types import Direction, Endpoint
from tests.fixtures import PcapBuilder


class Recorder:
    """Connection listener that records everything it is told."""

    def __init__(self) -> None:
        self.data = {Direction.OUTGOING: b"", Direction.INCOMING: b""}
        self.chunks: list[tuple[Direction, bytes]] = []
        self.ends = 0

    def on_data(self, direction: Direction, chunk: bytes) -> None:
        self.data[direction] += chunk
        self.chunks.append((direction, chunk))

    def on_end(self) -> None:
        self.ends += 1


@pytest.fixture
def tracked() -> tuple[TcpTracker, list[TcpConnection], Recorder]:
    """A tracker whose connections all report to one recorder."""
    tracker = TcpTracker()
    connections: list[TcpConnection] = []
    recorder = Recorder()

    def on_connection(connection: TcpConnection) -> None:
        connections.append(connection)
        connection.subscribe(recorder)

    tracker.on_connection(on_connection)
    return tracker, connections, recorder


def feed(tracker: TcpTracker, builder: PcapBuilder) -> None:
    for segment in builder.segments:
        tracker.track_segment(segment)


class TestSeqArithmetic:
    """Test 32-bit sequence number arithmetic."""

    def test_simple(self) -> None:
        assert seq_diff(110, 100) == 10
        assert seq_diff(100, 110) == -10

    def test_wraparound(self) -> None:
        """Distances are measured across the 2^32 boundary."""
        assert seq_diff(5, 2**32 - 5) == 10
        assert seq_diff(2**32 - 5, 5) == -10


class TestStreamReassembler:
    """Test cases for StreamReassembler."""

    def test_in_order(self) -> None:
        stream = StreamReassembler()
        stream.set_isn(99)

        assert stream.add(100, b"abc") == b"abc"
        assert stream.add(103, b"def") == b"def"

    def test_out_of_order_held_until_gap_fills(self) -> None:
        """A segment ahead of a gap is held and released with the gap."""
        stream = StreamReassembler()
        stream.set_isn(99)

        assert stream.add(103, b"def") == b""
        assert stream.pending_segments == 1
        assert stream.add(100, b"abc") == b"abcdef"
        assert stream.pending_segments == 0

    def test_retransmission_trimmed(self) -> None:
        """Bytes already delivered are not delivered again."""
        stream = StreamReassembler()
        stream.set_isn(99)
        stream.add(100, b"abc")

        assert stream.add(100, b"abc") == b""
        assert stream.add(101, b"bcde") == b"de"
        assert stream.retransmitted_bytes == 5

    def test_pending_limit(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The farthest held segment is evicted when too many are pending."""
        monkeypatch.setattr(tcp_tracker, "MAX_PENDING_SEGMENTS", 2)
        stream = StreamReassembler()
        stream.set_isn(99)

        stream.add(110, b"x")
        stream.add(120, b"y")
        stream.add(130, b"z")

        assert stream.pending_segments == 2
        assert stream.evicted_segments == 1

    def test_isn_only_set_once(self) -> None:
        """A retransmitted SYN does not move the stream start."""
        stream = StreamReassembler()
        stream.set_isn(99)
        stream.set_isn(500)

        assert stream.add(100, b"a") == b"a"


class TestTcpTracker:
    """Test cases for TcpTracker."""

    def test_handshake_identifies_client(self, tracked, conversation: PcapBuilder) -> None:
        """The SYN sender is the client and the connection starts from the beginning."""
        tracker, connections, _ = tracked
        feed(tracker, conversation.handshake())

        assert len(connections) == 1
        assert connections[0].client == Endpoint("192.168.1.100", 54321)
        assert connections[0].server == Endpoint("10.0.0.1", 4040)
        assert not connections[0].missed_syn

    def test_syn_ack_first_identifies_client(self, tracked, conversation: PcapBuilder) -> None:
        """When the SYN is missed but the SYN-ACK is seen, the receiver is the client."""
        tracker, connections, _ = tracked
        conversation.handshake()
        feed_from = conversation.segments[1:]
        for segment in feed_from:
            tracker.track_segment(segment)

        assert connections[0].client == conversation.client
        assert not connections[0].missed_syn

    def test_mid_stream_join(self, tracked, conversation: PcapBuilder) -> None:
        """A connection first seen on a data segment is marked missed_syn."""
        tracker, connections, recorder = tracked
        conversation.handshake().response(b"late")
        tracker.track_segment(conversation.segments[-1])

        assert connections[0].missed_syn
        assert connections[0].client == conversation.server
        assert recorder.data[Direction.OUTGOING] == b"late"

    def test_data_by_direction(self, tracked, conversation: PcapBuilder) -> None:
        """Client bytes are outgoing, server bytes are incoming."""
        tracker, _, recorder = tracked
        feed(tracker, conversation.handshake().request(b"ping").response(b"pong").request(b"again"))

        assert recorder.data[Direction.OUTGOING] == b"pingagain"
        assert recorder.data[Direction.INCOMING] == b"pong"

    def test_listener_subscribed_before_first_data(self, conversation: PcapBuilder) -> None:
        """Connection callbacks run before the first payload is delivered."""
        tracker = TcpTracker()
        recorder = Recorder()
        tracker.on_connection(lambda connection: connection.subscribe(recorder))

        feed(tracker, conversation.request(b"first"))

        assert recorder.data[Direction.OUTGOING] == b"first"

    def test_reordered_segments(self, tracked, conversation: PcapBuilder) -> None:
        """Segments delivered out of order reach the listener in order."""
        tracker, _, recorder = tracked
        conversation.handshake().request(b"AAAA").request(b"BBBB")
        segments = conversation.segments
        segments[-1], segments[-2] = segments[-2], segments[-1]
        feed(tracker, conversation)

        assert recorder.data[Direction.OUTGOING] == b"AAAABBBB"

    def test_retransmission_delivered_once(self, tracked, conversation: PcapBuilder) -> None:
        """A retransmitted segment does not duplicate stream bytes."""
        tracker, _, recorder = tracked
        conversation.handshake().request(b"data")
        conversation.segments.append(conversation.segments[-1])
        feed(tracker, conversation)

        assert recorder.data[Direction.OUTGOING] == b"data"

    def test_sequence_wraparound(self, tracked) -> None:
        """Streams keep flowing when sequence numbers wrap."""
        tracker, _, recorder = tracked
        builder = PcapBuilder(client_isn=2**32 - 3)
        feed(tracker, builder.handshake().request(b"abcd").request(b"efgh"))

        assert recorder.data[Direction.OUTGOING] == b"abcdefgh"

    def test_end_after_both_fins(self, tracked, conversation: PcapBuilder) -> None:
        """The connection ends once both sides have sent FIN."""
        tracker, connections, recorder = tracked
        feed(tracker, conversation.handshake().request(b"x"))
        conversation.segments.clear()

        conversation.add_tcp_packet(conversation.client, flags=0x11)
        feed(tracker, conversation)
        assert recorder.ends == 0

        conversation.segments.clear()
        conversation.add_tcp_packet(conversation.server, flags=0x11)
        feed(tracker, conversation)
        assert recorder.ends == 1
        assert connections[0].ended
        assert tracker.connections == {}

        conversation.segments.clear()
        conversation.add_tcp_packet(conversation.client, flags=TCP_ACK)
        feed(tracker, conversation)
        assert len(connections) == 1
        assert tracker.connections == {}

    def test_closed_connection_not_reopened(self, tracked, conversation: PcapBuilder) -> None:
        """Segments trailing a finished connection do not start a new one."""
        tracker, connections, recorder = tracked
        feed(tracker, conversation.handshake().request(b"x").close())
        late_data = conversation.segments[3]
        original_syn = conversation.segments[0]

        tracker.track_segment(late_data)
        tracker.track_segment(original_syn)

        assert len(connections) == 1
        assert recorder.ends == 1
        assert tracker.connections == {}

    def test_new_handshake_after_close(self, tracked, conversation: PcapBuilder) -> None:
        """A fresh SYN on the endpoints of a closed connection opens a new one."""
        tracker, connections, _ = tracked
        feed(tracker, conversation.handshake().close())

        feed(tracker, PcapBuilder(client_isn=5000).handshake().request(b"again"))

        assert len(connections) == 2
        assert not connections[1].missed_syn
        assert not connections[1].ended

    def test_rst_ends_connection_when_listener_fails(self, conversation: PcapBuilder) -> None:
        """A data segment carrying RST still ends the connection if delivery raises."""
        tracker = TcpTracker()
        ended: list[TcpConnection] = []

        class Failing:
            def on_data(self, direction: Direction, chunk: bytes) -> None:
                raise ValueError("bad chunk")

            def on_end(self) -> None:
                ended.append(connection)

        connection: TcpConnection | None = None

        def on_connection(new: TcpConnection) -> None:
            nonlocal connection
            connection = new
            new.subscribe(Failing())

        tracker.on_connection(on_connection)
        feed(tracker, conversation.handshake())
        conversation.segments.clear()
        conversation.add_tcp_packet(conversation.client, flags=TCP_RST | TCP_ACK, payload=b"last")

        with pytest.raises(ValueError, match="bad chunk"):
            feed(tracker, conversation)

        assert ended == [connection]
        assert tracker.connections == {}

    def test_end_on_rst(self, tracked, conversation: PcapBuilder) -> None:
        tracker, _, recorder = tracked
        feed(tracker, conversation.handshake().reset())

        assert recorder.ends == 1
        assert tracker.connections == {}

    def test_rst_for_unknown_connection_ignored(self, tracked, conversation: PcapBuilder) -> None:
        """A stray RST does not create a connection."""
        tracker, connections, _ = tracked
        feed(tracker, conversation.reset())

        assert connections == []

    def test_new_syn_replaces_connection(self, tracked, conversation: PcapBuilder) -> None:
        """A fresh handshake on the same endpoints ends the old connection."""
        tracker, connections, recorder = tracked
        feed(tracker, conversation.handshake())
        tracker.track_segment(
            TcpSegment(
                timestamp=0.0,
                src=conversation.client,
                dst=conversation.server,
                seq=777,
                ack=0,
                flags=TCP_SYN,
            )
        )

        assert len(connections) == 2
        assert connections[0].ended
        assert not connections[1].ended
        assert recorder.ends == 1

    def test_retransmitted_syn_keeps_connection(self, tracked, conversation: PcapBuilder) -> None:
        """The same SYN seen twice is one connection."""
        tracker, connections, _ = tracked
        conversation.handshake()
        conversation.segments.insert(1, conversation.segments[0])
        feed(tracker, conversation)

        assert len(connections) == 1

    def test_close_all(self, tracked, conversation: PcapBuilder) -> None:
        """close_all() ends every live connection exactly once."""
        tracker, connections, recorder = tracked
        feed(tracker, conversation.handshake())

        tracker.close_all()
        tracker.close_all()

        assert recorder.ends == 1
        assert connections[0].ended

    def test_unsubscribe(self, tracked, conversation: PcapBuilder) -> None:
        """An unsubscribed listener receives nothing further."""
        tracker, connections, recorder = tracked
        feed(tracker, conversation.handshake().request(b"one"))
        connections[0].unsubscribe(recorder)
        conversation.segments.clear()
        feed(tracker, conversation.request(b"two"))

        assert recorder.data[Direction.OUTGOING] == b"one"

    def test_ack_without_syn(self, tracked, conversation: PcapBuilder) -> None:
        """A bare ACK opens a mid-stream connection."""
        tracker, connections, _ = tracked
        feed(tracker, conversation.add_tcp_packet(conversation.client, flags=TCP_ACK))

        assert connections[0].missed_syn
