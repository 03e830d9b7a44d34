"""Tests for the tshark-backed capture source."""

from __future__ import annotations

import io
import logging
import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from tchantrace.core.capture_source import (
    SEGMENT_FIELDS,
    TcpSegment,
    TsharkCaptureSource,
    buffer_size_to_mib,
    parse_segment_line,
)
from tchantrace.core.types import Endpoint
from tchantrace.utils.errors import (
    CaptureFileNotFoundError,
    CaptureInterfaceError,
    TsharkExecutionError,
    TsharkNotFoundError,
)

IPV4_LINE = "1700000000.123456\t10.0.0.2\t\t54321\t10.0.0.1\t\t4040\t1000\t2000\t0x0018\t00:10:03:00\n"
IPV6_LINE = "1700000000.5\t\tfe80::1\t54321\t\tfe80::2\t4040\t5\t0\t0x0002\t\n"


def fake_process(lines: list[str] = (), exit_code: int = 0, running: bool = True) -> MagicMock:
    """A Popen stand-in that is still running at open() and then yields ``lines``."""
    process = MagicMock()
    process.stdout = io.StringIO("".join(lines))
    process.stderr = io.StringIO("" if exit_code in (0, 2) else "tshark: bad things\n")

    def wait(timeout: float | None = None) -> int:
        if timeout is not None and running:
            raise subprocess.TimeoutExpired("tshark", timeout)
        return exit_code

    process.wait.side_effect = wait
    process.poll.return_value = exit_code
    return process


def fake_tshark(process: MagicMock, interfaces: list[str] | None = None) -> MagicMock:
    tshark = MagicMock()
    tshark.list_interfaces.return_value = interfaces if interfaces is not None else ["eth0", "lo"]
    tshark.stream.return_value = process
    return tshark


class TestParseSegmentLine:
    """Test parsing of tshark field output."""

    def test_ipv4_with_payload(self) -> None:
        segment = parse_segment_line(IPV4_LINE)

        assert segment == TcpSegment(
            timestamp=1700000000.123456,
            src=Endpoint("10.0.0.2", 54321),
            dst=Endpoint("10.0.0.1", 4040),
            seq=1000,
            ack=2000,
            flags=0x18,
            payload=b"\x00\x10\x03\x00",
        )
        assert segment.has_ack
        assert not segment.syn

    def test_ipv6_syn_without_payload(self) -> None:
        segment = parse_segment_line(IPV6_LINE)

        assert segment is not None
        assert segment.src == Endpoint("fe80::1", 54321)
        assert str(segment.dst) == "[fe80::2]:4040"
        assert segment.syn
        assert segment.payload == b""

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "1\t2\t3\n",
            "1700000000.5\t\t\t54321\t\t\t4040\t5\t0\t0x0002\t\n",
            "1700000000.5\t10.0.0.2\t\tnotaport\t10.0.0.1\t\t4040\t5\t0\t0x0002\t\n",
            "1700000000.5\t10.0.0.2\t\t1\t10.0.0.1\t\t4040\t5\t0\t0x0018\tzz\n",
        ],
        ids=["empty", "too-few-fields", "no-addresses", "bad-port", "bad-payload"],
    )
    def test_unusable_lines(self, line: str) -> None:
        assert parse_segment_line(line) is None

    def test_field_count(self) -> None:
        assert len(SEGMENT_FIELDS) == 11


class TestBufferSize:
    """Test conversion of the buffer size option to tshark's MiB."""

    @pytest.mark.parametrize(
        "size, mib",
        [(1, 1), (1024 * 1024, 1), (1024 * 1024 + 1, 2), (32 * 1024 * 1024, 32)],
    )
    def test_rounds_up(self, size: int, mib: int) -> None:
        assert buffer_size_to_mib(size) == mib


class TestTsharkCaptureSource:
    """Test cases for TsharkCaptureSource."""

    def test_live_arguments(self) -> None:
        source = TsharkCaptureSource.live("eth0", "tcp and port 4040", buffer_size=3 * 1024 * 1024)

        assert source.args[:6] == ["-i", "eth0", "-f", "tcp and port 4040", "-B", "3"]
        assert "-l" in source.args
        assert source.args.count("-e") == len(SEGMENT_FIELDS)

    def test_offline_arguments(self, tmp_path: Path) -> None:
        capture = tmp_path / "c.pcap"
        source = TsharkCaptureSource.offline(capture, "tcp and (tcp.port == 4040)")

        assert source.args[:4] == ["-r", str(capture), "-Y", "tcp and (tcp.port == 4040)"]
        assert "-B" not in source.args

    def test_open_by_index(self) -> None:
        """Interfaces can be given by their ``tshark -D`` number."""
        tshark = fake_tshark(fake_process())
        source = TsharkCaptureSource.live("2", "tcp", tshark=tshark)

        source.open()

        assert source.device_name == "lo"
        tshark.stream.assert_called_once_with(source.args)

    def test_open_unknown_interface(self) -> None:
        """An unknown interface fails before tshark is started."""
        tshark = fake_tshark(fake_process())
        source = TsharkCaptureSource.live("wlan9", "tcp", tshark=tshark)

        with pytest.raises(CaptureInterfaceError) as exc_info:
            source.open()

        assert exc_info.value.interface == "wlan9"
        tshark.stream.assert_not_called()

    def test_open_early_exit(self) -> None:
        """tshark exiting during the settle period is an interface error."""
        tshark = fake_tshark(fake_process(exit_code=1, running=False))
        source = TsharkCaptureSource.live("eth0", "tcp", tshark=tshark)

        with pytest.raises(CaptureInterfaceError, match="bad things"):
            source.open()

    def test_open_spawn_failure(self) -> None:
        tshark = fake_tshark(fake_process())
        tshark.stream.side_effect = OSError("no such file")
        source = TsharkCaptureSource.live("eth0", "tcp", tshark=tshark)

        with pytest.raises(CaptureInterfaceError, match="failed to start tshark"):
            source.open()

    def test_open_without_tshark(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A missing tshark is reported against the interface."""

        def not_found() -> None:
            raise TsharkNotFoundError()

        monkeypatch.setattr("tchantrace.core.capture_source.TsharkWrapper", not_found)
        source = TsharkCaptureSource.live("eth0", "tcp")

        with pytest.raises(CaptureInterfaceError, match="tshark command not found"):
            source.open()

    def test_open_interface_listing_fails(self) -> None:
        """A failing ``tshark -D`` is reported against the interface."""
        tshark = fake_tshark(fake_process())
        tshark.list_interfaces.side_effect = TsharkExecutionError("tshark -D", 1, "permission denied")
        source = TsharkCaptureSource.live("eth0", "tcp", tshark=tshark)

        with pytest.raises(CaptureInterfaceError) as exc_info:
            source.open()

        assert exc_info.value.interface == "eth0"
        tshark.stream.assert_not_called()

    def test_offline_version_failure_propagates(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        capture = tmp_path / "a.pcap"
        capture.write_bytes(b"")

        def broken() -> None:
            raise TsharkExecutionError("tshark -v", 1, "broken install")

        monkeypatch.setattr("tchantrace.core.capture_source.TsharkWrapper", broken)
        source = TsharkCaptureSource.offline(capture, "tcp")

        with pytest.raises(TsharkExecutionError):
            source.open()

    def test_open_missing_file(self, tmp_path: Path) -> None:
        source = TsharkCaptureSource.offline(tmp_path / "missing.pcap", "tcp", tshark=MagicMock())

        with pytest.raises(CaptureFileNotFoundError):
            source.open()

    def test_start_delivers_segments_then_none(self) -> None:
        """Parsed segments go to the sink in order, followed by None."""
        process = fake_process([IPV4_LINE, "garbage\n", "\n", IPV6_LINE])
        source = TsharkCaptureSource.live("eth0", "tcp", tshark=fake_tshark(process))
        received: list[TcpSegment | None] = []

        source.open()
        source.start(received.append)
        source.close()

        assert len(received) == 3
        assert received[0].dst.port == 4040
        assert received[1].syn
        assert received[2] is None

    def test_unexpected_exit_reports_stderr(self, caplog: pytest.LogCaptureFixture) -> None:
        """tshark dying mid-capture is logged with what it wrote to stderr."""
        process = fake_process([IPV4_LINE], exit_code=1)
        source = TsharkCaptureSource.live("eth0", "tcp", tshark=fake_tshark(process))
        received: list[TcpSegment | None] = []

        with caplog.at_level(logging.DEBUG, logger="tchantrace"):
            source.open()
            source.start(received.append)
            source._thread.join(timeout=5)

        assert received[-1] is None
        assert "tshark exited with 1: tshark: bad things" in caplog.text

    def test_start_before_open(self) -> None:
        source = TsharkCaptureSource.live("eth0", "tcp", tshark=MagicMock())

        with pytest.raises(RuntimeError, match="not open"):
            source.start(lambda segment: None)

    def test_close_terminates_running_process(self) -> None:
        process = fake_process()
        process.poll.return_value = None
        source = TsharkCaptureSource.live("eth0", "tcp", tshark=fake_tshark(process))

        source.open()
        source.close()

        process.terminate.assert_called_once()


@pytest.mark.integration
def test_offline_capture_with_real_tshark(tshark_available: None, tmp_path: Path, conversation) -> None:
    """A generated pcap is read back as the same segments."""
    capture = conversation.handshake().request(b"\x00\x01").build(tmp_path / "conv.pcap")
    source = TsharkCaptureSource.offline(capture, "tcp")
    received: list[TcpSegment | None] = []

    source.open()
    source.start(received.append)
    source._thread.join(timeout=30)
    source.close()

    assert received[-1] is None
    segments = [s for s in received if s is not None]
    assert len(segments) == 4
    assert segments[0].syn
    assert segments[-1].payload == b"\x00\x01"
