"""
Incremental TChannel frame decoder.

A decoder consumes one direction of a connection as arbitrary byte chunks and
returns complete frames as soon as their last byte arrives. When the capture
joined a connection mid-stream the first chunk may not start on a frame
boundary, so the decoder starts *unaligned* and scans for a plausible header
before decoding anything.
"""

from __future__ import annotations

from tchantrace.protocol.bodies import BodyParseError, parse_body
from tchantrace.protocol.frames import (
    HEADER_SIZE,
    HEADER_STRUCT,
    RESERVED_ZEROS,
    Frame,
    FrameType,
)
from tchantrace.utils.logger import get_logger

logger = get_logger(__name__)

_FRAME_TYPES = frozenset(int(t) for t in FrameType)


def is_plausible_header(buffer: bytes | bytearray, offset: int = 0) -> bool:
    """
    Check whether a frame header could start at ``offset``.

    Args:
        buffer: Stream bytes
        offset: Candidate header position (``HEADER_SIZE`` bytes must be available)

    Returns:
        True if size, type and both reserved fields look like a real header
    """
    size, frame_type, reserved, _frame_id, reserved_tail = HEADER_STRUCT.unpack_from(buffer, offset)
    return (
        size >= HEADER_SIZE
        and frame_type in _FRAME_TYPES
        and reserved == 0
        and reserved_tail == RESERVED_ZEROS
    )


class FrameDecoder:
    """Buffer a byte stream and cut it into frames."""

    def __init__(self, aligned: bool = True):
        """
        Initialize the decoder.

        Args:
            aligned: Whether the first byte fed is known to start a frame
        """
        self.aligned = aligned
        self.skipped_bytes = 0
        self.frames_decoded = 0
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for the rest of their frame."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[Frame]:
        """
        Append ``chunk`` and return every frame completed by it.

        Args:
            chunk: Next in-order bytes of the stream

        Returns:
            Decoded frames in stream order (possibly empty)
        """
        self._buffer += chunk
        frames: list[Frame] = []

        while True:
            if not self.aligned and not self._align():
                break
            if len(self._buffer) < HEADER_SIZE:
                break

            size = HEADER_STRUCT.unpack_from(self._buffer)[0]
            if not is_plausible_header(self._buffer):
                logger.warning(
                    "Invalid frame header (size=%d type=0x%02x), resynchronizing",
                    size,
                    self._buffer[2],
                )
                self._drop(1)
                self.aligned = False
                continue
            if len(self._buffer) < size:
                break

            raw = bytes(self._buffer[:size])
            del self._buffer[:size]
            frames.append(self._decode(raw))

        self.frames_decoded += len(frames)
        return frames

    def close(self) -> int:
        """
        Discard any partial frame.

        Returns:
            Number of buffered bytes discarded
        """
        leftover = len(self._buffer)
        self._buffer.clear()
        return leftover

    def _align(self) -> bool:
        """Skip ahead to the first plausible header; return True once aligned."""
        last_candidate = len(self._buffer) - HEADER_SIZE
        for offset in range(last_candidate + 1):
            if is_plausible_header(self._buffer, offset):
                if offset:
                    logger.debug("Skipped %d bytes before first frame boundary", offset)
                self._drop(offset)
                self.aligned = True
                return True

        # Keep a tail that could still grow into a header
        if last_candidate >= 0:
            self._drop(last_candidate + 1)
        return False

    def _drop(self, count: int) -> None:
        del self._buffer[:count]
        self.skipped_bytes += count

    @staticmethod
    def _decode(raw: bytes) -> Frame:
        size, frame_type, _reserved, frame_id, _tail = HEADER_STRUCT.unpack_from(raw)
        frame = Frame(size=size, type=FrameType(frame_type), id=frame_id, raw=raw)
        try:
            frame.body = parse_body(frame.type, frame.payload)
        except BodyParseError as e:
            frame.error = str(e)
            logger.debug("Could not parse %s body of frame id=%d: %s", frame.type.label, frame_id, e)
        return frame
