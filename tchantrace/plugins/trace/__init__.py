"""Trace plugin for live TChannel tracing."""

from tchantrace.plugins.trace.plugin import TracePlugin

__all__ = ["TracePlugin"]
