"""Parsers for TChannel frame bodies."""

from __future__ import annotations

import struct
from collections.abc import Callable

from tchantrace.protocol.frames import (
    CallContinueBody,
    CallRequestBody,
    CallResponseBody,
    CancelBody,
    ChecksumType,
    ClaimBody,
    ErrorBody,
    FrameBody,
    FrameType,
    InitBody,
    Tracing,
)

TRACING_SIZE = 25


class BodyParseError(ValueError):
    """Raised when a frame body is shorter than its fields claim."""


class BodyReader:
    """Cursor over a frame body with TChannel field notation helpers."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def take(self, count: int) -> bytes:
        if count > self.remaining:
            raise BodyParseError(
                f"need {count} bytes at offset {self.offset}, have {self.remaining}"
            )
        chunk = self.data[self.offset:self.offset + count]
        self.offset += count
        return chunk

    def uint8(self) -> int:
        return self.take(1)[0]

    def uint16(self) -> int:
        return struct.unpack(">H", self.take(2))[0]

    def uint32(self) -> int:
        return struct.unpack(">I", self.take(4))[0]

    def bytes1(self) -> bytes:
        """``field~1``: one-byte length prefix."""
        return self.take(self.uint8())

    def bytes2(self) -> bytes:
        """``field~2``: two-byte length prefix."""
        return self.take(self.uint16())

    def str1(self) -> str:
        return self.bytes1().decode("utf-8", errors="replace")

    def str2(self) -> str:
        return self.bytes2().decode("utf-8", errors="replace")

    def tracing(self) -> Tracing:
        span_id, parent_id, trace_id, flags = struct.unpack(">QQQB", self.take(TRACING_SIZE))
        return Tracing(span_id=span_id, parent_id=parent_id, trace_id=trace_id, flags=flags)

    def headers1(self) -> dict[str, str]:
        """``nh:1 (hk~1 hv~1){nh}``"""
        count = self.uint8()
        return {self.str1(): self.str1() for _ in range(count)}

    def headers2(self) -> dict[str, str]:
        """``nh:2 (key~2 value~2){nh}``"""
        count = self.uint16()
        return {self.str2(): self.str2() for _ in range(count)}

    def checksum(self) -> tuple[int, int | None]:
        checksum_type = self.uint8()
        if checksum_type == ChecksumType.NONE:
            return checksum_type, None
        return checksum_type, self.uint32()

    def args(self) -> list[bytes]:
        """Read ``arg~2`` fields until the body is exhausted."""
        args = []
        while self.remaining > 0:
            args.append(self.bytes2())
        return args


def _parse_init(reader: BodyReader) -> InitBody:
    return InitBody(version=reader.uint16(), headers=reader.headers2())


def _parse_call_request(reader: BodyReader) -> CallRequestBody:
    flags = reader.uint8()
    ttl = reader.uint32()
    tracing = reader.tracing()
    service = reader.str1()
    headers = reader.headers1()
    checksum_type, checksum = reader.checksum()
    return CallRequestBody(
        flags=flags,
        ttl=ttl,
        tracing=tracing,
        service=service,
        headers=headers,
        checksum_type=checksum_type,
        checksum=checksum,
        args=reader.args(),
    )


def _parse_call_response(reader: BodyReader) -> CallResponseBody:
    flags = reader.uint8()
    code = reader.uint8()
    tracing = reader.tracing()
    headers = reader.headers1()
    checksum_type, checksum = reader.checksum()
    return CallResponseBody(
        flags=flags,
        code=code,
        tracing=tracing,
        headers=headers,
        checksum_type=checksum_type,
        checksum=checksum,
        args=reader.args(),
    )


def _parse_continue(reader: BodyReader) -> CallContinueBody:
    flags = reader.uint8()
    checksum_type, checksum = reader.checksum()
    return CallContinueBody(
        flags=flags, checksum_type=checksum_type, checksum=checksum, args=reader.args()
    )


def _parse_cancel(reader: BodyReader) -> CancelBody:
    return CancelBody(ttl=reader.uint32(), tracing=reader.tracing(), why=reader.str2())


def _parse_claim(reader: BodyReader) -> ClaimBody:
    return ClaimBody(ttl=reader.uint32(), tracing=reader.tracing())


def _parse_error(reader: BodyReader) -> ErrorBody:
    return ErrorBody(code=reader.uint8(), tracing=reader.tracing(), message=reader.str2())


_PARSERS: dict[FrameType, Callable[[BodyReader], FrameBody]] = {
    FrameType.INIT_REQ: _parse_init,
    FrameType.INIT_RES: _parse_init,
    FrameType.CALL_REQ: _parse_call_request,
    FrameType.CALL_RES: _parse_call_response,
    FrameType.CALL_REQ_CONTINUE: _parse_continue,
    FrameType.CALL_RES_CONTINUE: _parse_continue,
    FrameType.CANCEL: _parse_cancel,
    FrameType.CLAIM: _parse_claim,
    FrameType.ERROR: _parse_error,
}


def parse_body(frame_type: FrameType, payload: bytes) -> FrameBody | None:
    """
    Parse a frame body.

    Args:
        frame_type: Type from the frame header
        payload: Bytes following the 16-byte header

    Returns:
        Parsed body, or None for types without a body (pings)

    Raises:
        BodyParseError: If the payload is truncated
    """
    parser = _PARSERS.get(frame_type)
    if parser is None:
        return None
    return parser(BodyReader(payload))
