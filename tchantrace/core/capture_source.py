"""
Packet capture sources.

A capture source turns one interface (or one capture file) into a stream of
``TcpSegment`` records. Sources read in a background thread and hand every
segment to a sink callable; ``None`` tells the sink the source is exhausted.
The sink is expected to queue segments for the coordinator's loop, so no
tracing state is touched from capture threads.
"""

from __future__ import annotations

import math
import subprocess
import threading
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from tchantrace.core.tshark_wrapper import TsharkWrapper
from tchantrace.core.types import Endpoint
from tchantrace.utils.errors import (
    CaptureFileNotFoundError,
    CaptureInterfaceError,
    TsharkExecutionError,
    TsharkNotFoundError,
)
from tchantrace.utils.logger import get_logger

logger = get_logger(__name__)

TCP_FIN = 0x01
TCP_SYN = 0x02
TCP_RST = 0x04
TCP_ACK = 0x10

# tshark exits early (within this window) on bad interfaces, filters or permissions
OPEN_SETTLE_SECONDS = 0.5

# Last stderr lines kept to explain an unexpected tshark exit
STDERR_TAIL_LINES = 20

SEGMENT_FIELDS = [
    "frame.time_epoch",
    "ip.src",
    "ipv6.src",
    "tcp.srcport",
    "ip.dst",
    "ipv6.dst",
    "tcp.dstport",
    "tcp.seq_raw",
    "tcp.ack_raw",
    "tcp.flags",
    "tcp.payload",
]


@dataclass
class TcpSegment:
    """One captured TCP segment."""

    timestamp: float
    src: Endpoint
    dst: Endpoint
    seq: int
    ack: int
    flags: int
    payload: bytes = field(default=b"", repr=False)

    @property
    def syn(self) -> bool:
        return bool(self.flags & TCP_SYN)

    @property
    def fin(self) -> bool:
        return bool(self.flags & TCP_FIN)

    @property
    def rst(self) -> bool:
        return bool(self.flags & TCP_RST)

    @property
    def has_ack(self) -> bool:
        return bool(self.flags & TCP_ACK)


SegmentSink = Callable[[TcpSegment | None], None]


def parse_segment_line(line: str) -> TcpSegment | None:
    """
    Parse one line of ``tshark -T fields`` output (see ``SEGMENT_FIELDS``).

    Args:
        line: Tab-separated field values

    Returns:
        Parsed segment, or None if the line is not a usable TCP segment
    """
    parts = line.rstrip("\r\n").split("\t")
    if len(parts) < 10:
        return None

    src_ip = parts[1] or parts[2]
    dst_ip = parts[4] or parts[5]
    if not src_ip or not dst_ip:
        return None

    try:
        payload_hex = parts[10].replace(":", "") if len(parts) > 10 else ""
        return TcpSegment(
            timestamp=float(parts[0]) if parts[0] else 0.0,
            src=Endpoint(src_ip, int(parts[3])),
            dst=Endpoint(dst_ip, int(parts[6])),
            seq=int(parts[7]) if parts[7] else 0,
            ack=int(parts[8]) if parts[8] else 0,
            flags=int(parts[9], 16) if parts[9] else 0,
            payload=bytes.fromhex(payload_hex),
        )
    except ValueError:
        return None


class CaptureSource(ABC):
    """Abstract source of TCP segments for one interface or file."""

    name: str
    """Name the source was requested under (interface or file path)."""

    device_name: str
    """Name of the opened device, as reported by the capture tool."""

    @abstractmethod
    def open(self) -> None:
        """
        Open the underlying capture.

        Raises:
            TchanTraceError: If the capture cannot be opened
        """

    @abstractmethod
    def start(self, sink: SegmentSink) -> None:
        """Begin delivering segments to ``sink``; returns immediately."""

    @abstractmethod
    def close(self) -> None:
        """Stop capturing and release resources."""


def _common_args() -> list[str]:
    args = [
        "-l",
        "-n",
        "-o",
        "tcp.desegment_tcp_streams:FALSE",
        "-T",
        "fields",
        "-E",
        "separator=/t",
        "-E",
        "occurrence=f",
    ]
    for name in SEGMENT_FIELDS:
        args.extend(["-e", name])
    return args


def buffer_size_to_mib(buffer_size: int) -> int:
    """tshark's ``-B`` takes MiB; round up and never go below 1."""
    return max(1, math.ceil(buffer_size / (1024 * 1024)))


class TsharkCaptureSource(CaptureSource):
    """Capture source backed by a streaming tshark process."""

    def __init__(
        self,
        name: str,
        args: list[str],
        interface: str | None = None,
        capture_file: Path | None = None,
        tshark: TsharkWrapper | None = None,
    ):
        """
        Initialize the source (nothing is started until open()).

        Use ``live()`` or ``offline()`` rather than calling this directly.

        Args:
            name: Interface name or file path used in messages
            args: tshark arguments
            interface: Interface to validate against ``tshark -D``
            capture_file: Capture file that must exist
            tshark: Preconfigured wrapper (created on open() if omitted)
        """
        self.name = name
        self.device_name = name
        self.args = args
        self.interface = interface
        self.capture_file = capture_file
        self._tshark = tshark
        self._process: subprocess.Popen[str] | None = None
        self._thread: threading.Thread | None = None
        self._closing = False
        self._stderr_thread: threading.Thread | None = None
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

    @classmethod
    def live(
        cls,
        interface: str,
        capture_filter: str,
        buffer_size: int | None = None,
        tshark: TsharkWrapper | None = None,
    ) -> TsharkCaptureSource:
        """Create a source capturing live traffic on ``interface``."""
        args = ["-i", interface, "-f", capture_filter]
        if buffer_size:
            args.extend(["-B", str(buffer_size_to_mib(buffer_size))])
        args.extend(_common_args())
        return cls(interface, args, interface=interface, tshark=tshark)

    @classmethod
    def offline(
        cls,
        capture_file: Path,
        display_filter: str,
        tshark: TsharkWrapper | None = None,
    ) -> TsharkCaptureSource:
        """Create a source reading a saved capture file."""
        args = ["-r", str(capture_file), "-Y", display_filter, *_common_args()]
        return cls(str(capture_file), args, capture_file=capture_file, tshark=tshark)

    def open(self) -> None:
        if self.capture_file is not None and not self.capture_file.exists():
            raise CaptureFileNotFoundError(self.capture_file)

        try:
            tshark = self._tshark or TsharkWrapper()
            logger.debug("Using tshark %s at %s", tshark.version, tshark.tshark_path)
            if self.interface is not None:
                self.device_name = self._resolve_interface(tshark, self.interface)
        except (TsharkNotFoundError, TsharkExecutionError) as e:
            if self.interface is not None:
                raise CaptureInterfaceError(self.name, e.message) from e
            raise

        try:
            process = tshark.stream(self.args)
        except OSError as e:
            raise CaptureInterfaceError(self.name, f"failed to start tshark: {e}") from e

        try:
            return_code = process.wait(timeout=OPEN_SETTLE_SECONDS)
        except subprocess.TimeoutExpired:
            return_code = None

        # Exit code 2 is tshark's warning status (e.g. truncated file)
        if return_code not in (None, 0, 2):
            stderr = process.stderr.read().strip() if process.stderr else ""
            if self.interface is not None:
                raise CaptureInterfaceError(self.name, stderr or f"tshark exited with {return_code}")
            raise TsharkExecutionError(" ".join(self.args), return_code, stderr)

        self._process = process
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr,
            args=(process,),
            name=f"capture-{self.name}-stderr",
            daemon=True,
        )
        self._stderr_thread.start()

    @staticmethod
    def _resolve_interface(tshark: TsharkWrapper, interface: str) -> str:
        available = tshark.list_interfaces()
        if interface in available:
            return interface
        if interface.isdigit() and 1 <= int(interface) <= len(available):
            return available[int(interface) - 1]
        raise CaptureInterfaceError(
            interface,
            f"no such interface (available: {', '.join(available) or 'none'})",
        )

    def start(self, sink: SegmentSink) -> None:
        if self._process is None:
            raise RuntimeError(f"Capture source {self.name} is not open")
        self._thread = threading.Thread(
            target=self._pump,
            args=(self._process, sink),
            name=f"capture-{self.name}",
            daemon=True,
        )
        self._thread.start()

    def _pump(self, process: subprocess.Popen[str], sink: SegmentSink) -> None:
        try:
            assert process.stdout is not None
            for line in process.stdout:
                if not line.strip():
                    continue
                segment = parse_segment_line(line)
                if segment is None:
                    logger.debug("Skipping unparseable tshark line: %r", line)
                    continue
                sink(segment)
        finally:
            return_code = process.wait()
            if return_code not in (0, 2) and not self._closing:
                if self._stderr_thread is not None:
                    self._stderr_thread.join(timeout=1)
                stderr = "\n".join(self._stderr_tail)
                logger.error(
                    "Capture on %s stopped: tshark exited with %d: %s",
                    self.name,
                    return_code,
                    stderr,
                )
            sink(None)

    def _drain_stderr(self, process: subprocess.Popen[str]) -> None:
        """Log tshark's stderr as it arrives and keep the last lines."""
        if process.stderr is None:
            return
        for line in process.stderr:
            line = line.rstrip()
            if line:
                logger.debug("tshark on %s: %s", self.name, line)
                self._stderr_tail.append(line)

    def close(self) -> None:
        self._closing = True
        process = self._process
        if process is not None and process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=2)
            except subprocess.TimeoutExpired:
                process.kill()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2)
