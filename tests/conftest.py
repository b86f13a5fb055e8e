"""Shared test fixtures."""

import asyncio
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from monitor.domain.models import (  # noqa: E402
    HRSpO2,
    ProtocolId,
    SleepCommResponse,
    SleepResultResponse,
)

USER_SNO = "1001"
FIXED_NOW = datetime(2024, 7, 4, 5, 45, 13)
FIXED_REQ_DATE = "20240704054513"


def fixed_clock() -> datetime:
    return FIXED_NOW


class FakeUploadClient:
    """In-memory UploadClient.

    Records every call in order. A protocol can be held back with hold()
    until release() is called, or made to fail with fail().
    """

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.completed: list[ProtocolId] = []
        self._gates: dict[ProtocolId, asyncio.Event] = {}
        self._failures: dict[ProtocolId, Exception] = {}

    def hold(self, protocol_id: ProtocolId) -> None:
        self._gates[protocol_id] = asyncio.Event()

    def release(self, protocol_id: ProtocolId) -> None:
        self._gates[protocol_id].set()

    def fail(self, protocol_id: ProtocolId, error: Exception) -> None:
        self._failures[protocol_id] = error

    def calls_for(self, protocol_id: ProtocolId) -> list[tuple]:
        return [c for c in self.calls if c[0] == protocol_id]

    async def _answer(self, protocol_id: ProtocolId, response):
        gate = self._gates.get(protocol_id)
        if gate is not None:
            await gate.wait()
        self.completed.append(protocol_id)
        if protocol_id in self._failures:
            raise self._failures[protocol_id]
        return response

    async def post_frames(self, protocol_id, req_date, session_id, payload):
        self.calls.append((protocol_id, req_date, session_id, payload))
        return await self._answer(protocol_id, SleepCommResponse(retCd="0", retMsg="OK"))

    async def post_hrspo2(self, req_date, session_id, reading: HRSpO2):
        self.calls.append((ProtocolId.P09_HR_SPO2, req_date, session_id, reading))
        return await self._answer(
            ProtocolId.P09_HR_SPO2, SleepCommResponse(retCd="0", retMsg="OK")
        )

    async def start_session(self, req_date, session_id):
        self.calls.append((ProtocolId.SLEEP_START, req_date, session_id, None))
        return await self._answer(ProtocolId.SLEEP_START, SleepCommResponse(retCd="0"))

    async def end_session(self, req_date, session_id):
        self.calls.append((ProtocolId.SLEEP_END, req_date, session_id, None))
        return await self._answer(
            ProtocolId.SLEEP_END, SleepResultResponse(retCd="0", data={"sleepScore": 81})
        )


@pytest.fixture
def fake_client():
    return FakeUploadClient()


@pytest.fixture
def events():
    """Collects every event the orchestrator delivers, in delivery order."""
    return []
