"""Small value types shared by the capture and session layers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Direction(str, Enum):
    """Direction of a byte stream relative to the connection's client."""

    OUTGOING = "outgoing"
    """Client to server (requests)."""

    INCOMING = "incoming"
    """Server to client (responses)."""


@dataclass(frozen=True)
class Endpoint:
    """One side of a TCP connection."""

    ip: str
    port: int

    def __str__(self) -> str:
        if ":" in self.ip:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"
