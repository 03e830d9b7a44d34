"""Test fixtures: TChannel frame encoders and TCP conversation builders."""

from __future__ import annotations

from .fake_source import FakeCaptureSource
from .pcap_builder import PcapBuilder

__all__ = [
    "FakeCaptureSource",
    "PcapBuilder",
]
