"""Tag-byte frame router.

Every notification frame starts with a ProtocolId tag. The router strips
the tag's header, appends the payload to the owning accumulator, and
reports which channel (if any) finished its collection phase and must be
flushed and uploaded. Routing is synchronous; uploads are the caller's job.

Cross-trigger table:

    tag   header  appends to   uploads
    0x04  -       -            -            (sleep start)
    0x05  -       -            everything   (sleep end)
    0x06  2       P06          -
    0x07  2       P07          P08
    0x08  2       P08          P06
    0x09  1       -            P07 + decoded HR/SpO2
"""

from collections.abc import Callable
from dataclasses import dataclass

import structlog

from monitor.adapters.hrspo2_parser import ascii_to_hrspo2
from monitor.domain.models import HRSpO2, ProtocolId
from monitor.session import SleepSession
from shared.exceptions import DecodeFailureError, FrameTooShortError, UnknownTagError

logger = structlog.get_logger()

HEADER_WIDTH = {
    ProtocolId.SLEEP_START: 1,
    ProtocolId.SLEEP_END: 1,
    ProtocolId.P06: 2,
    ProtocolId.P07: 2,
    ProtocolId.P08: 2,
    ProtocolId.P09_HR_SPO2: 1,
}

# Channel whose collection phase ends when the tag arrives
CROSS_TRIGGER = {
    ProtocolId.P07: ProtocolId.P08,
    ProtocolId.P08: ProtocolId.P06,
    ProtocolId.P09_HR_SPO2: ProtocolId.P07,
}


@dataclass(frozen=True)
class RouteOutcome:
    """What the orchestrator must do after a frame was routed."""

    tag: ProtocolId
    upload: ProtocolId | None = None
    reading: HRSpO2 | None = None
    decode_error: DecodeFailureError | None = None

    @property
    def is_composite(self) -> bool:
        return self.tag is ProtocolId.P09_HR_SPO2


def parse_tag(frame: bytes) -> ProtocolId:
    """Read and validate the tag and header width of a raw frame.

    Raises:
        FrameTooShortError: empty frame, or shorter than the tag's header
        UnknownTagError: leading byte is not a known ProtocolId
    """
    if not frame:
        raise FrameTooShortError(0, 1)
    try:
        tag = ProtocolId(frame[0])
    except ValueError:
        raise UnknownTagError(frame[0]) from None
    required = HEADER_WIDTH[tag]
    if len(frame) < required:
        raise FrameTooShortError(len(frame), required)
    return tag


class ProtocolRouter:
    """Routes frames into the accumulators of the session returned by session_provider.

    The provider is only called for frames that carry accumulated data, after
    the frame has been validated.
    """

    def __init__(self, session_provider: Callable[[], SleepSession]):
        self._session_provider = session_provider

    def route(self, frame: bytes) -> RouteOutcome:
        """Route one frame. Rejected frames leave every accumulator untouched."""
        tag = parse_tag(frame)
        logger.debug("frame_received", tag=tag.label, size=len(frame), hex=frame.hex(" "))

        if tag in (ProtocolId.SLEEP_START, ProtocolId.SLEEP_END):
            return RouteOutcome(tag=tag)

        payload = frame[HEADER_WIDTH[tag]:]

        if tag is ProtocolId.P09_HR_SPO2:
            try:
                reading = ascii_to_hrspo2(payload)
            except DecodeFailureError as e:
                logger.warning("hrspo2_decode_failed", detail=e.detail)
                return RouteOutcome(tag=tag, upload=CROSS_TRIGGER[tag], decode_error=e)
            return RouteOutcome(tag=tag, upload=CROSS_TRIGGER[tag], reading=reading)

        self._session_provider().accumulator(tag).append(payload)
        return RouteOutcome(tag=tag, upload=CROSS_TRIGGER.get(tag))
