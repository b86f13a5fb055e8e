"""Session orchestrator: the entry point the BLE transport calls.

on_frame(), on_start() and on_end() return immediately; uploads run as
tasks on the orchestrator's event loop. Calls made from another thread
are forwarded to the loop in arrival order, so routing, session changes
and accumulator mutation only ever happen on one thread. The orchestrator
must be started (start() or `async with`) before a transport thread
calls in.

All results reach the caller through one ordered event channel: events
are queued in emission order and a single delivery task invokes the
callback for each of them.
"""

import asyncio
import inspect
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from monitor.adapters.protocol import UploadClient
from monitor.dispatcher import UploadDispatcher
from monitor.domain.models import (
    ACCUMULATED_PROTOCOLS,
    FrameRejected,
    ProtocolId,
    SleepEnded,
    SleepEvent,
    SleepStarted,
)
from monitor.router import ProtocolRouter
from monitor.session import SleepSession
from shared.config import settings
from shared.exceptions import ProtocolError
from shared.metrics import frames_received_total, frames_rejected_total

logger = structlog.get_logger()

EventCallback = Callable[[SleepEvent], Any]


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class SessionOrchestrator:
    def __init__(
        self,
        client: UploadClient,
        on_event: EventCallback | None = None,
        *,
        session_api_enabled: bool | None = None,
        max_concurrent_uploads: int | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._on_event = on_event
        self._clock = clock
        self._session_api_enabled = (
            settings.session_api_enabled if session_api_enabled is None else session_api_enabled
        )
        self._session: SleepSession | None = None
        self._router = ProtocolRouter(self._require_session)
        self._dispatcher = UploadDispatcher(
            client, self._emit, max_concurrent=max_concurrent_uploads, clock=clock
        )
        self._queue: asyncio.Queue[SleepEvent] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._delivery: asyncio.Task | None = None

    async def __aenter__(self) -> "SessionOrchestrator":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    @property
    def session(self) -> SleepSession | None:
        return self._session

    def start(self) -> None:
        """Bind to the running event loop and start event delivery."""
        if self._loop is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._delivery = self._loop.create_task(self._deliver_events(), name="event-delivery")

    # ── Transport-facing API ──
    # Any of these may be called from the transport thread; the work always
    # runs on the orchestrator loop. Calls before start() from outside a
    # running loop are logged and dropped.

    def on_frame(self, frame: bytes) -> None:
        """Accept one notification frame. Never blocks, never raises for bad frames."""
        self._on_loop("on_frame", self._handle_frame, bytes(frame))

    def on_start(self) -> None:
        self._on_loop("on_start", self._start_session)

    def on_end(self) -> None:
        """Force-flush every channel, then discard the session."""
        self._on_loop("on_end", self._end_session)

    def _on_loop(self, hook: str, fn: Callable[..., None], *args: Any) -> None:
        running = _running_loop()
        if self._loop is None:
            if running is None:
                logger.warning("orchestrator_not_started", hook=hook)
                return
            self.start()
        if running is not self._loop:
            self._loop.call_soon_threadsafe(fn, *args)
            return
        fn(*args)

    def _start_session(self) -> None:
        if self._session is not None:
            logger.warning("session_restarted", session_id=self._session.session_id)
            self._close_session(self._session)

        self._session = SleepSession(started_at=self._clock())
        logger.info("session_started", session_id=self._session.session_id)
        self._emit(SleepStarted())
        if self._session_api_enabled:
            self._dispatcher.start_session(self._session)

    def _end_session(self) -> None:
        self._emit(SleepEnded())
        if self._session is None:
            logger.info("session_end_without_session")
            return
        self._close_session(self._session)
        self._session = None

    # ── Lifecycle ──

    async def drain(self) -> None:
        """Wait for in-flight uploads and for every queued event to be delivered."""
        await self._dispatcher.join()
        if self._delivery is not None:
            await self._queue.join()

    async def aclose(self) -> None:
        """Flush the live session (if any), deliver everything, stop delivery."""
        if self._session is not None:
            self._close_session(self._session)
            self._session = None
        await self.drain()
        if self._delivery is not None:
            self._delivery.cancel()
            try:
                await self._delivery
            except asyncio.CancelledError:
                pass
            self._delivery = None
        self._loop = None

    # ── Internals ──

    def _handle_frame(self, frame: bytes) -> None:
        try:
            outcome = self._router.route(frame)
        except ProtocolError as e:
            frames_rejected_total.labels(reason=e.reason).inc()
            logger.warning("frame_rejected", reason=e.reason, detail=e.detail, hex=frame.hex(" "))
            self._emit(FrameRejected(frame, e))
            return

        frames_received_total.labels(tag=outcome.tag.label).inc()

        if outcome.tag is ProtocolId.SLEEP_START:
            self._start_session()
        elif outcome.tag is ProtocolId.SLEEP_END:
            self._end_session()
        elif outcome.is_composite:
            self._dispatcher.upload_composite(
                self._require_session(), outcome.reading, outcome.decode_error
            )
        elif outcome.upload is not None:
            self._dispatcher.upload_if_ready(self._require_session(), outcome.upload)

    def _require_session(self) -> SleepSession:
        if self._session is None:
            self._session = SleepSession(started_at=self._clock())
            logger.warning("session_opened_implicitly", session_id=self._session.session_id)
        return self._session

    def _close_session(self, session: SleepSession) -> None:
        pending = []
        for protocol_id in ACCUMULATED_PROTOCOLS:
            task = self._dispatcher.upload_if_ready(session, protocol_id)
            if task is not None:
                pending.append(task)
        if self._session_api_enabled:
            self._dispatcher.end_session(session, after=pending)
        session.close()
        logger.info("session_ended", session_id=session.session_id, force_flushed=len(pending))

    def _emit(self, event: SleepEvent) -> None:
        self._queue.put_nowait(event)

    async def _deliver_events(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                if self._on_event is not None:
                    outcome = self._on_event(event)
                    if inspect.isawaitable(outcome):
                        await outcome
            except Exception:
                logger.exception("event_callback_failed", event=type(event).__name__)
            finally:
                self._queue.task_done()
