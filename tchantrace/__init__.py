"""tchantrace - passive live-traffic tracer for TChannel RPC."""

__version__ = "1.0.0"
