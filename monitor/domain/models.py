"""Domain types for the sleep-monitor frame stream.

ProtocolId is the leading tag byte of every notification frame.
Backend responses are parsed into pydantic models; anything that
does not fit the model is a decode failure, never a crash.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shared.exceptions import ProtocolError, UploadError


class ProtocolId(IntEnum):
    SLEEP_START = 0x04
    SLEEP_END = 0x05
    P06 = 0x06
    P07 = 0x07
    P08 = 0x08
    P09_HR_SPO2 = 0x09

    @property
    def label(self) -> str:
        return f"0x{self.value:02x}"


# Channels that buffer binary frames between uploads
ACCUMULATED_PROTOCOLS = (ProtocolId.P06, ProtocolId.P07, ProtocolId.P08)


class HRSpO2(BaseModel):
    """One heart-rate / oxygen-saturation reading decoded from a 0x09 frame."""

    heart_rate: int = Field(ge=0, le=300)
    spo2: int = Field(ge=0, le=100)


class SleepCommResponse(BaseModel):
    """Backend acknowledgement for a protocol upload."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    ret_cd: str = Field(alias="retCd")
    ret_msg: str | None = Field(None, alias="retMsg")
    res_date: str | None = Field(None, alias="resDate")


class SleepResultResponse(SleepCommResponse):
    """Backend response to the end-of-session call, carrying the sleep result."""

    data: dict[str, Any] | None = None


@dataclass
class UploadResult:
    """Outcome of one upload: either a parsed response or a typed error."""

    protocol_id: ProtocolId
    response: SleepCommResponse | None = None
    error: UploadError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ── Events ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class SleepStarted:
    protocol_id: ProtocolId = ProtocolId.SLEEP_START


@dataclass(frozen=True)
class SleepEnded:
    protocol_id: ProtocolId = ProtocolId.SLEEP_END


@dataclass(frozen=True)
class UploadDelivered:
    """Result of one decode-or-upload step; result is None when there was nothing to send."""

    protocol_id: ProtocolId
    result: UploadResult | None


@dataclass(frozen=True)
class FrameRejected:
    frame: bytes
    error: ProtocolError


SleepEvent = SleepStarted | SleepEnded | UploadDelivered | FrameRejected
