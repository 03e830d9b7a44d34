"""Capture filter construction."""

from __future__ import annotations

import re
from collections.abc import Sequence

DEFAULT_PORT = 4040
DEFAULT_FILTER = "ip proto \\tcp"

_PORT_TOKEN = re.compile(r"\bport\b")


def build_filter(
    base_filter: str,
    explicit_ports: Sequence[int] = (),
    default_port: int = DEFAULT_PORT,
) -> str:
    """
    Build the BPF capture filter.

    Explicit ports are OR'd together in the given order and AND'ed onto the
    base filter. Without explicit ports the default port is added, unless the
    base filter already mentions a port.

    Args:
        base_filter: Starting BPF expression (e.g. ``ip proto \\tcp``)
        explicit_ports: Ports to restrict the capture to
        default_port: Port used when nothing else constrains the capture

    Returns:
        Final filter expression

    Examples:
        >>> build_filter("ip proto \\\\tcp", [4040, 21300])
        'ip proto \\\\tcp and (port 4040 or port 21300)'
    """
    if explicit_ports:
        clauses = " or ".join(f"port {port}" for port in explicit_ports)
        return f"{base_filter} and ({clauses})"
    if not _PORT_TOKEN.search(base_filter):
        return f"{base_filter} and port {default_port}"
    return base_filter


def build_display_filter(
    explicit_ports: Sequence[int] = (),
    default_port: int = DEFAULT_PORT,
) -> str:
    """
    Build the equivalent Wireshark display filter for reading capture files.

    tshark cannot apply BPF expressions to saved files, so replay restricts
    by port with display filter syntax instead.

    Args:
        explicit_ports: Ports to restrict to
        default_port: Port used when no explicit ports are given

    Returns:
        Display filter expression
    """
    ports = list(explicit_ports) or [default_port]
    clauses = " or ".join(f"tcp.port == {port}" for port in ports)
    return f"tcp and ({clauses})"
