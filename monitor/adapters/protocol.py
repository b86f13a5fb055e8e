"""Upload client protocol.

The dispatcher and orchestrator depend only on this interface, never on
the concrete HTTP client, so tests can drive them with an in-memory fake.
"""

from typing import Protocol, runtime_checkable

from monitor.domain.models import HRSpO2, ProtocolId, SleepCommResponse, SleepResultResponse


@runtime_checkable
class UploadClient(Protocol):
    """Common interface for everything that can deliver sleep data to the backend."""

    async def post_frames(
        self, protocol_id: ProtocolId, req_date: str, session_id: str, payload: bytes
    ) -> SleepCommResponse:
        """Upload one flushed accumulator.

        Raises:
            NetworkFailureError: transport error or HTTP error status.
            DecodeFailureError: response body does not parse.
        """
        ...

    async def post_hrspo2(
        self, req_date: str, session_id: str, reading: HRSpO2
    ) -> SleepCommResponse:
        ...

    async def start_session(self, req_date: str, session_id: str) -> SleepCommResponse:
        ...

    async def end_session(self, req_date: str, session_id: str) -> SleepResultResponse:
        ...
