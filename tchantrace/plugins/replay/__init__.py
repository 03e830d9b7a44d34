"""Replay plugin for offline capture files."""

from tchantrace.plugins.replay.plugin import ReplayPlugin

__all__ = ["ReplayPlugin"]
