"""TChannel wire protocol: frame model and stream decoder."""

from tchantrace.protocol.decoder import FrameDecoder, is_plausible_header
from tchantrace.protocol.frames import (
    HEADER_SIZE,
    ErrorCode,
    Frame,
    FrameType,
)

__all__ = [
    "HEADER_SIZE",
    "ErrorCode",
    "Frame",
    "FrameDecoder",
    "FrameType",
    "is_plausible_header",
]
