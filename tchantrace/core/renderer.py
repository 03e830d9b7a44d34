"""Console rendering of trace events and decoded frames."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

from tchantrace.core.status import ResponseStatus
from tchantrace.core.types import Direction
from tchantrace.protocol.frames import (
    CallContinueBody,
    CallRequestBody,
    CallResponseBody,
    CancelBody,
    ErrorBody,
    Frame,
    InitBody,
)
from tchantrace.utils.logger import console as default_console

if TYPE_CHECKING:
    from tchantrace.core.session import ConnectionSession
    from tchantrace.core.stream_tracker import TracedFrame

HEXDUMP_WIDTH = 16
MAX_ARG_PREVIEW = 512

_DIRECTION_STYLE = {
    Direction.OUTGOING: "magenta",
    Direction.INCOMING: "green",
}


def hexdump(data: bytes, width: int = HEXDUMP_WIDTH) -> list[str]:
    """
    Format bytes as offset / hex / ASCII lines.

    Args:
        data: Bytes to dump
        width: Bytes per line

    Returns:
        One string per line
    """
    lines = []
    for offset in range(0, len(data), width):
        row = data[offset:offset + width]
        hex_part = " ".join(f"{b:02x}" for b in row)
        text_part = "".join(chr(b) if 0x20 <= b < 0x7F else "." for b in row)
        lines.append(f"{offset:08x}  {hex_part:<{width * 3 - 1}}  {text_part}")
    return lines


def _preview(value: bytes) -> str:
    text = value[:MAX_ARG_PREVIEW].decode("utf-8", errors="replace")
    if len(value) > MAX_ARG_PREVIEW:
        text += f"... ({len(value)} bytes)"
    return text


class TraceRenderer:
    """Print tracer output through a rich console."""

    def __init__(
        self,
        console: Console | None = None,
        always_show_frame_dump: bool = False,
        always_show_hex: bool = False,
    ):
        self.console = console or default_console
        self.always_show_frame_dump = always_show_frame_dump
        self.always_show_hex = always_show_hex

    def _print(self, text: str, style: str | None = None) -> None:
        self.console.print(text, style=style, highlight=False, emoji=False, soft_wrap=True)

    def listening(self, device_name: str, capture_filter: str) -> None:
        self._print(
            f"listening on interface {escape(device_name)} with filter {escape(capture_filter)}",
            style="cyan",
        )

    @staticmethod
    def _route(session: ConnectionSession) -> str:
        return (
            f"src={escape(str(session.src))} --> dst={escape(str(session.dst))} "
            f"on {escape(session.interface)}"
        )

    def session_started(self, session: ConnectionSession) -> None:
        state = "in progress" if session.missed_syn else "started"
        self._print(f"session={session.session_id} {state} {self._route(session)}", style="cyan")

    def session_ended(self, session: ConnectionSession) -> None:
        line = f"session={session.session_id} ended {self._route(session)}"
        correlation = session.correlation
        if correlation is not None and correlation.tracked_methods:
            summary = ", ".join(
                f"{escape(name)}={status.value if status else 'no calls'}"
                for name, status in correlation.method_status.items()
            )
            line += f" methods: {summary}"
        self._print(line, style="cyan")

    def frame(self, traced: TracedFrame) -> None:
        frame = traced.frame
        style = _DIRECTION_STYLE[traced.direction]
        if traced.status is ResponseStatus.ERROR or frame.error:
            style = "red"
        self._print(self.describe(traced), style=style)

        if self.always_show_frame_dump:
            for line in self.dump_lines(frame):
                self._print(f"    {escape(line)}")
        if self.always_show_hex or frame.error:
            for line in hexdump(frame.raw):
                self._print(f"    {escape(line)}", style="dim")

    def describe(self, traced: TracedFrame) -> str:
        """One-line summary of a traced frame."""
        frame = traced.frame
        parts = [
            f"session={traced.session_id}",
            traced.direction.value,
            frame.type.label,
            f"id={frame.id}",
        ]
        body = frame.body
        if isinstance(body, CallRequestBody):
            parts.append(f"service={escape(body.service)}")
        elif isinstance(body, InitBody):
            parts.append(f"version={body.version}")
        if traced.method is not None:
            parts.append(f"method={escape(traced.method)}")
        if traced.status_label is not None:
            parts.append(f"status={escape(traced.status_label)}")
        if isinstance(body, ErrorBody):
            parts.append(f"code={body.code_name}")
            parts.append(f'message="{escape(body.message)}"')
        elif isinstance(body, CancelBody):
            parts.append(f'why="{escape(body.why)}"')
        if frame.more_fragments:
            parts.append("more-fragments")
        if frame.error:
            parts.append(f"(undecodable body: {escape(frame.error)})")
        return " ".join(parts)

    @staticmethod
    def dump_lines(frame: Frame) -> list[str]:
        """Field-by-field dump of a frame body."""
        lines = [f"size={frame.size} type=0x{int(frame.type):02x} id={frame.id}"]
        body = frame.body
        if body is None:
            return lines

        if isinstance(body, (CallRequestBody, CallResponseBody)):
            lines.append(
                f"tracing: trace={body.tracing.trace_id:016x} span={body.tracing.span_id:016x} "
                f"parent={body.tracing.parent_id:016x} flags={body.tracing.flags}"
            )
        if isinstance(body, CallRequestBody):
            lines.append(f"ttl={body.ttl}ms service={body.service}")
        if isinstance(body, CallResponseBody):
            lines.append(f"code={body.code}")
        if isinstance(body, (InitBody, CallRequestBody, CallResponseBody)) and body.headers:
            lines.append("headers: " + ", ".join(f"{k}={v}" for k, v in body.headers.items()))
        if isinstance(body, (CallRequestBody, CallResponseBody, CallContinueBody)):
            if body.checksum is not None:
                lines.append(f"checksum type={body.checksum_type} value=0x{body.checksum:08x}")
            for index, arg in enumerate(body.args, start=1):
                lines.append(f"arg{index}: {_preview(arg)}")
        return lines
