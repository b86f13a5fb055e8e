"""Backend API client: one POST per completed protocol buffer.

Uses post_with_retry for transient-only retry (429/5xx/timeout).
Everything that goes wrong on the wire becomes a NetworkFailureError,
everything that goes wrong reading the answer a DecodeFailureError.
"""

from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from monitor.adapters.http_client import TransientHTTPError, post_with_retry
from monitor.domain.models import HRSpO2, ProtocolId, SleepCommResponse, SleepResultResponse
from shared.config import settings
from shared.exceptions import DecodeFailureError, NetworkFailureError
from shared.metrics import upload_duration_seconds

logger = structlog.get_logger()

ENDPOINTS = {
    ProtocolId.SLEEP_START: "poli/sleep/start",
    ProtocolId.SLEEP_END: "poli/sleep/end",
    ProtocolId.P06: "poli/sleep/protocol6",
    ProtocolId.P07: "poli/sleep/protocol7",
    ProtocolId.P08: "poli/sleep/protocol8",
    ProtocolId.P09_HR_SPO2: "poli/sleep/protocol9",
}


# ── Request bodies ───────────────────────────────────────────────


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    req_date: str = Field(alias="reqDate")  # yyyyMMddHHmmss
    user_sno: str = Field(alias="userSno")
    session_id: str = Field(alias="sessionId")


class FrameUploadRequest(_Request):
    data: str  # lowercase hex of the flushed bytes


class HRSpO2Data(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    oxygen_val: int = Field(alias="oxygenVal")
    heart_rate_val: int = Field(alias="heartRateVal")


class HRSpO2Request(_Request):
    data: HRSpO2Data


class SleepApiClient:
    """httpx-backed UploadClient."""

    def __init__(self, client: httpx.AsyncClient, user_sno: str | None = None) -> None:
        self._client = client
        self.user_sno = settings.user_sno if user_sno is None else user_sno

    @classmethod
    def from_settings(cls) -> "SleepApiClient":
        client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
        )
        return cls(client)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def post_frames(
        self, protocol_id: ProtocolId, req_date: str, session_id: str, payload: bytes
    ) -> SleepCommResponse:
        body = FrameUploadRequest(
            req_date=req_date,
            user_sno=self.user_sno,
            session_id=session_id,
            data=payload.hex(),
        )
        return await self._post(protocol_id, body, SleepCommResponse)

    async def post_hrspo2(
        self, req_date: str, session_id: str, reading: HRSpO2
    ) -> SleepCommResponse:
        body = HRSpO2Request(
            req_date=req_date,
            user_sno=self.user_sno,
            session_id=session_id,
            data=HRSpO2Data(oxygen_val=reading.spo2, heart_rate_val=reading.heart_rate),
        )
        return await self._post(ProtocolId.P09_HR_SPO2, body, SleepCommResponse)

    async def start_session(self, req_date: str, session_id: str) -> SleepCommResponse:
        body = _Request(req_date=req_date, user_sno=self.user_sno, session_id=session_id)
        return await self._post(ProtocolId.SLEEP_START, body, SleepCommResponse)

    async def end_session(self, req_date: str, session_id: str) -> SleepResultResponse:
        body = _Request(req_date=req_date, user_sno=self.user_sno, session_id=session_id)
        return await self._post(ProtocolId.SLEEP_END, body, SleepResultResponse)

    async def _post(self, protocol_id: ProtocolId, body: BaseModel, response_model: type):
        url = ENDPOINTS[protocol_id]
        try:
            with upload_duration_seconds.labels(protocol=protocol_id.label).time():
                resp = await post_with_retry(
                    self._client, protocol_id, url, body.model_dump(by_alias=True)
                )
        except TransientHTTPError as e:
            raise NetworkFailureError(protocol_id, str(e)) from e
        except httpx.HTTPStatusError as e:
            raise NetworkFailureError(
                protocol_id, f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise NetworkFailureError(protocol_id, f"{type(e).__name__}: {e}") from e

        try:
            payload: Any = resp.json()
            return response_model.model_validate(payload)
        except (ValueError, ValidationError) as e:
            logger.warning(
                "response_decode_failed",
                protocol=protocol_id.label,
                body=resp.text[:200],
            )
            raise DecodeFailureError(protocol_id, f"malformed response: {resp.text[:200]}") from e
