"""One sleep-monitoring session, bounded by START and END frames.

The session owns the live accumulators. Nothing is shared between
sessions: a new session always starts with empty buffers.
"""

from datetime import datetime
from uuid import uuid4

import structlog

from monitor.accumulator import FrameAccumulator
from monitor.domain.models import ACCUMULATED_PROTOCOLS, ProtocolId, SleepCommResponse
from shared.metrics import accumulator_bytes_dropped_total

logger = structlog.get_logger()


class SleepSession:
    def __init__(self, session_id: str | None = None, started_at: datetime | None = None):
        self.session_id = session_id or uuid4().hex
        self.started_at = started_at or datetime.now()
        self.start_response: SleepCommResponse | None = None
        self.closed = False
        self._accumulators = {pid: FrameAccumulator() for pid in ACCUMULATED_PROTOCOLS}

    def accumulator(self, protocol_id: ProtocolId) -> FrameAccumulator:
        return self._accumulators[protocol_id]

    def pending(self) -> dict[ProtocolId, int]:
        """Buffered byte count per channel."""
        return {pid: acc.pending for pid, acc in self._accumulators.items()}

    def close(self) -> None:
        """Discard the accumulators, logging any bytes that never got uploaded.

        The orchestrator force-flushes every channel before closing, so in
        normal flow nothing is left here. Leftovers mean the session was
        closed without that flush, e.g. by a caller driving SleepSession
        directly, and they are counted as dropped.
        """
        if self.closed:
            return
        for protocol_id, acc in self._accumulators.items():
            leftover = acc.flush()
            if leftover is None:
                continue
            accumulator_bytes_dropped_total.labels(protocol=protocol_id.label).inc(len(leftover))
            logger.warning(
                "accumulator_data_dropped",
                session_id=self.session_id,
                protocol=protocol_id.label,
                bytes=len(leftover),
            )
        self.closed = True
