"""Upload dispatcher: flushed buffer → request → typed result → event.

Ordering rules:
- A plain cross-trigger upload emits its result whenever it finishes.
- The 0x09 composite starts the P07 upload and the HR/SpO2 upload
  together, then awaits P07 first and HR/SpO2 second. P07's result is
  always emitted first, even if the HR/SpO2 call returns earlier.
- The session-end call waits for the force-flush uploads it follows.

Uploads never raise into the caller: every failure becomes an
UploadResult carrying a NetworkFailureError or DecodeFailureError.
A flushed buffer whose upload failed is not restored.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime

import structlog

from monitor.adapters.protocol import UploadClient
from monitor.domain.models import (
    HRSpO2,
    ProtocolId,
    SleepCommResponse,
    SleepEvent,
    UploadDelivered,
    UploadResult,
)
from monitor.session import SleepSession
from shared.config import settings
from shared.exceptions import DecodeFailureError, NetworkFailureError, UploadError
from shared.metrics import uploads_total

logger = structlog.get_logger()

REQUEST_DATE_FORMAT = "%Y%m%d%H%M%S"


class UploadDispatcher:
    def __init__(
        self,
        client: UploadClient,
        emit: Callable[[SleepEvent], None],
        *,
        max_concurrent: int | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._client = client
        self._emit = emit
        self._clock = clock
        self._limit = asyncio.Semaphore(max_concurrent or settings.max_concurrent_uploads)
        self._in_flight: set[asyncio.Task] = set()

    def request_date(self) -> str:
        return self._clock().strftime(REQUEST_DATE_FORMAT)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # ── Scheduling (synchronous, called from the routing path) ──

    def upload_if_ready(
        self, session: SleepSession, protocol_id: ProtocolId
    ) -> asyncio.Task | None:
        """Flush one channel and upload it in the background.

        Returns None, without touching the network, when the channel was empty.
        """
        payload = session.accumulator(protocol_id).flush()
        if payload is None:
            logger.debug("upload_skipped_empty", protocol=protocol_id.label)
            return None
        call = self._frames_call(session, protocol_id, payload)
        return self._spawn(
            f"upload-{protocol_id.label}",
            self._upload_and_emit(session, protocol_id, call),
        )

    def upload_composite(
        self,
        session: SleepSession,
        reading: HRSpO2 | None,
        decode_error: DecodeFailureError | None = None,
    ) -> asyncio.Task:
        """Upload buffered P07 data and an HR/SpO2 reading concurrently, report in order."""
        payload = session.accumulator(ProtocolId.P07).flush()
        p07 = None
        if payload is not None:
            call = self._frames_call(session, ProtocolId.P07, payload)
            p07 = self._spawn(
                f"upload-{ProtocolId.P07.label}",
                self._upload(session, ProtocolId.P07, call),
            )

        p09 = None
        if reading is not None:
            req_date = self.request_date()
            p09 = self._spawn(
                f"upload-{ProtocolId.P09_HR_SPO2.label}",
                self._upload(
                    session,
                    ProtocolId.P09_HR_SPO2,
                    lambda: self._client.post_hrspo2(req_date, session.session_id, reading),
                ),
            )

        return self._spawn("deliver-composite", self._deliver_in_order(p07, p09, decode_error))

    def start_session(self, session: SleepSession) -> asyncio.Task:
        req_date = self.request_date()
        return self._spawn(
            "session-start",
            self._upload_and_emit(
                session,
                ProtocolId.SLEEP_START,
                lambda: self._client.start_session(req_date, session.session_id),
            ),
        )

    def end_session(self, session: SleepSession, after: list[asyncio.Task]) -> asyncio.Task:
        """Post the session end once every upload in `after` has finished."""
        return self._spawn("session-end", self._end_after(session, after))

    async def join(self) -> None:
        """Wait until every in-flight upload, including ones spawned meanwhile, is done."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    # ── Task bodies ──

    def _spawn(self, name: str, coro: Awaitable) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    def _frames_call(
        self, session: SleepSession, protocol_id: ProtocolId, payload: bytes
    ) -> Callable[[], Awaitable[SleepCommResponse]]:
        req_date = self.request_date()
        return lambda: self._client.post_frames(protocol_id, req_date, session.session_id, payload)

    async def _upload(
        self,
        session: SleepSession,
        protocol_id: ProtocolId,
        call: Callable[[], Awaitable[SleepCommResponse]],
    ) -> UploadResult:
        async with self._limit:
            try:
                response = await call()
            except UploadError as e:
                result = UploadResult(protocol_id, error=e)
            except Exception as e:
                logger.exception("upload_crashed", protocol=protocol_id.label)
                result = UploadResult(
                    protocol_id, error=NetworkFailureError(protocol_id, f"{type(e).__name__}: {e}")
                )
            else:
                result = UploadResult(protocol_id, response=response)
        self._record(session, result)
        return result

    async def _upload_and_emit(
        self,
        session: SleepSession,
        protocol_id: ProtocolId,
        call: Callable[[], Awaitable[SleepCommResponse]],
    ) -> UploadResult:
        result = await self._upload(session, protocol_id, call)
        if protocol_id is ProtocolId.SLEEP_START and result.ok:
            session.start_response = result.response
        self._emit(UploadDelivered(protocol_id, result))
        return result

    async def _deliver_in_order(
        self,
        p07: asyncio.Task | None,
        p09: asyncio.Task | None,
        decode_error: DecodeFailureError | None,
    ) -> None:
        result07 = await p07 if p07 is not None else None
        self._emit(UploadDelivered(ProtocolId.P07, result07))

        if p09 is not None:
            result09 = await p09
        else:
            error = decode_error or DecodeFailureError(ProtocolId.P09_HR_SPO2, "no reading")
            result09 = UploadResult(ProtocolId.P09_HR_SPO2, error=error)
            uploads_total.labels(protocol=ProtocolId.P09_HR_SPO2.label, status=error.kind).inc()
        self._emit(UploadDelivered(ProtocolId.P09_HR_SPO2, result09))

    async def _end_after(self, session: SleepSession, after: list[asyncio.Task]) -> UploadResult:
        if after:
            await asyncio.gather(*after, return_exceptions=True)
        req_date = self.request_date()
        return await self._upload_and_emit(
            session,
            ProtocolId.SLEEP_END,
            lambda: self._client.end_session(req_date, session.session_id),
        )

    def _record(self, session: SleepSession, result: UploadResult) -> None:
        label = result.protocol_id.label
        if result.ok:
            uploads_total.labels(protocol=label, status="success").inc()
            logger.info("upload_succeeded", protocol=label, session_id=session.session_id)
        else:
            uploads_total.labels(protocol=label, status=result.error.kind).inc()
            logger.warning(
                "upload_failed",
                protocol=label,
                session_id=session.session_id,
                kind=result.error.kind,
                detail=result.error.detail,
            )
        if session.closed:
            logger.debug("upload_after_session_end", protocol=label, session_id=session.session_id)
