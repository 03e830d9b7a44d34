"""
TChannel frame model.

Frames share a fixed 16-byte header::

    size:2 type:1 reserved:1 id:4 reserved:8

``size`` counts the header too. Bodies are parsed into the dataclasses below.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

HEADER_SIZE = 16
HEADER_STRUCT = struct.Struct(">HBBI8s")
RESERVED_ZEROS = bytes(8)

FLAG_MORE_FRAGMENTS = 0x01


class FrameType(IntEnum):
    """Frame type codes."""

    INIT_REQ = 0x01
    INIT_RES = 0x02
    CALL_REQ = 0x03
    CALL_RES = 0x04
    CALL_REQ_CONTINUE = 0x13
    CALL_RES_CONTINUE = 0x14
    CANCEL = 0xC0
    CLAIM = 0xC1
    PING_REQ = 0xD0
    PING_RES = 0xD1
    ERROR = 0xFF

    @property
    def label(self) -> str:
        """Short human-readable name (e.g. ``call req``)."""
        return self.name.lower().replace("_", " ")


class ChecksumType(IntEnum):
    """Checksum algorithms carried by call frames."""

    NONE = 0x00
    CRC32 = 0x01
    FARMHASH = 0x02
    CRC32C = 0x03


class ErrorCode(IntEnum):
    """Codes carried by error frames."""

    INVALID = 0x00
    TIMEOUT = 0x01
    CANCELLED = 0x02
    BUSY = 0x03
    DECLINED = 0x04
    UNEXPECTED = 0x05
    BAD_REQUEST = 0x06
    NETWORK_ERROR = 0x07
    UNHEALTHY = 0x08
    FATAL = 0xFF


@dataclass
class Tracing:
    """Zipkin-style tracing block (25 bytes)."""

    span_id: int
    parent_id: int
    trace_id: int
    flags: int


@dataclass
class InitBody:
    version: int
    headers: dict[str, str]


@dataclass
class CallRequestBody:
    flags: int
    ttl: int
    tracing: Tracing
    service: str
    headers: dict[str, str]
    checksum_type: int
    checksum: int | None
    args: list[bytes]

    @property
    def method(self) -> str:
        """arg1 decoded as text; empty when the frame carries no arg1."""
        if not self.args:
            return ""
        return self.args[0].decode("utf-8", errors="replace")


@dataclass
class CallResponseBody:
    flags: int
    code: int
    tracing: Tracing
    headers: dict[str, str]
    checksum_type: int
    checksum: int | None
    args: list[bytes]

    @property
    def ok(self) -> bool:
        return self.code == 0


@dataclass
class CallContinueBody:
    flags: int
    checksum_type: int
    checksum: int | None
    args: list[bytes]


@dataclass
class CancelBody:
    ttl: int
    tracing: Tracing
    why: str


@dataclass
class ClaimBody:
    ttl: int
    tracing: Tracing


@dataclass
class ErrorBody:
    code: int
    tracing: Tracing
    message: str

    @property
    def code_name(self) -> str:
        try:
            return ErrorCode(self.code).name.lower()
        except ValueError:
            return f"0x{self.code:02x}"


FrameBody = (
    InitBody
    | CallRequestBody
    | CallResponseBody
    | CallContinueBody
    | CancelBody
    | ClaimBody
    | ErrorBody
)


@dataclass
class Frame:
    """One decoded frame: header fields, parsed body and raw bytes."""

    size: int
    type: FrameType
    id: int
    raw: bytes = field(repr=False)
    body: FrameBody | None = None
    error: str | None = None
    """Why the body could not be parsed (``body`` is None then)."""

    @property
    def more_fragments(self) -> bool:
        """Whether more fragments of the same message follow."""
        flags = getattr(self.body, "flags", 0)
        return bool(flags & FLAG_MORE_FRAGMENTS)

    @property
    def is_response(self) -> bool:
        """Call responses, their continuations and error frames answer a call."""
        return self.type in (FrameType.CALL_RES, FrameType.CALL_RES_CONTINUE, FrameType.ERROR)

    @property
    def payload(self) -> bytes:
        return self.raw[HEADER_SIZE:]
