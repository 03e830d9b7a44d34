"""
One direction of one traced connection.

The outgoing tracker registers calls in the connection's correlation table;
the incoming tracker resolves responses against it.
"""

from __future__ import annotations

from dataclasses import dataclass

from tchantrace.core.correlation import UNKNOWN_METHOD, CorrelationTable
from tchantrace.core.renderer import TraceRenderer
from tchantrace.core.status import UNCLASSIFIED, ResponseStatus, ResponseStatusCatalog
from tchantrace.core.types import Direction
from tchantrace.protocol.decoder import FrameDecoder
from tchantrace.protocol.frames import CallRequestBody, CallResponseBody, Frame, FrameType
from tchantrace.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class TracedFrame:
    """A decoded frame with the session context it was observed in."""

    session_id: int
    direction: Direction
    frame: Frame
    method: str | None = None
    """Method of the call this frame belongs to, when known or looked up."""

    status: ResponseStatus | None = None
    status_label: str | None = None
    visible: bool = True


def response_status(frame: Frame) -> ResponseStatus | None:
    """Outcome carried by a response frame (None for other frames)."""
    if frame.type is FrameType.ERROR:
        return ResponseStatus.ERROR
    if isinstance(frame.body, CallResponseBody):
        return ResponseStatus.OK if frame.body.ok else ResponseStatus.NOT_OK
    return None


class DirectionalStreamTracker:
    """Decode one direction of a connection and correlate its frames."""

    def __init__(
        self,
        session_id: int,
        direction: Direction,
        correlation: CorrelationTable | None,
        on_track: bool,
        status_catalog: ResponseStatusCatalog,
        renderer: TraceRenderer | None = None,
    ):
        """
        Initialize the tracker.

        Args:
            session_id: Identifier of the owning session
            direction: Which half of the connection this tracker decodes
            correlation: Table shared with the opposite direction (None disables correlation)
            on_track: Whether the first byte is known to start a frame
            status_catalog: Labels for response statuses
            renderer: Where visible frames are printed (None to only return them)
        """
        self.session_id = session_id
        self.direction = direction
        self.correlation = correlation
        self.status_catalog = status_catalog
        self.renderer = renderer
        self.decoder = FrameDecoder(aligned=on_track)
        self.bytes_seen = 0
        self.closed = False

    def handle_packet(self, chunk: bytes) -> list[TracedFrame]:
        """
        Feed the next in-order chunk of this direction.

        Args:
            chunk: Reassembled stream bytes

        Returns:
            Frames completed by this chunk, annotated with correlation results
        """
        if self.closed:
            logger.debug(
                "session=%d %s: ignoring %d bytes after end",
                self.session_id,
                self.direction.value,
                len(chunk),
            )
            return []

        self.bytes_seen += len(chunk)
        traced = [self._trace(frame) for frame in self.decoder.feed(chunk)]

        if self.renderer is not None:
            for item in traced:
                if item.visible:
                    self.renderer.frame(item)
        return traced

    def end(self) -> None:
        """Discard any partial frame; the tracker accepts no more data."""
        if self.closed:
            return
        self.closed = True
        leftover = self.decoder.close()
        if leftover:
            logger.debug(
                "session=%d %s: discarded %d bytes of an incomplete frame",
                self.session_id,
                self.direction.value,
                leftover,
            )
        if self.decoder.skipped_bytes:
            logger.info(
                "session=%d %s: skipped %d bytes that did not start on a frame boundary",
                self.session_id,
                self.direction.value,
                self.decoder.skipped_bytes,
            )

    def _trace(self, frame: Frame) -> TracedFrame:
        traced = TracedFrame(session_id=self.session_id, direction=self.direction, frame=frame)
        if self.direction is Direction.OUTGOING:
            self._track_call(traced)
        else:
            self._track_response(traced)
        traced.visible = self._is_visible(traced)
        return traced

    def _track_call(self, traced: TracedFrame) -> None:
        frame = traced.frame
        if isinstance(frame.body, CallRequestBody):
            traced.method = frame.body.method
            if self.correlation is not None:
                self.correlation.register(frame.id, traced.method)
        elif frame.type is FrameType.CALL_REQ_CONTINUE:
            traced.method = self._lookup(frame.id)

    def _track_response(self, traced: TracedFrame) -> None:
        frame = traced.frame
        if not frame.is_response:
            return

        status = response_status(frame)
        if self.correlation is None:
            traced.method = UNKNOWN_METHOD
        elif frame.more_fragments:
            traced.method = self.correlation.resolve(frame.id)
            if status is not None:
                self.correlation.annotate(frame.id, status)
        else:
            traced.method = self.correlation.retire(frame.id, status)

        if status is not None:
            traced.status = status
            traced.status_label = self.status_catalog.classify(status)

    def _lookup(self, key: int) -> str:
        if self.correlation is None:
            return UNKNOWN_METHOD
        return self.correlation.resolve(key)

    def _is_visible(self, traced: TracedFrame) -> bool:
        if (
            traced.method is not None
            and self.correlation is not None
            and not self.correlation.is_tracked(traced.method)
        ):
            return False
        return traced.status_label != UNCLASSIFIED
