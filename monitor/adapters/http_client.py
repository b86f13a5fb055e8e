"""Upload POST with tenacity retry.

Only transient failures are retried: 429, 5xx gateway/availability codes
and timeouts. Other 4xx answers and connection failures surface at once
so the dispatcher can report them. Retries run inside upload tasks, never
on the frame-routing path.
"""

import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from monitor.domain.models import ProtocolId
from shared.config import settings

logger = structlog.get_logger()

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}


class TransientHTTPError(Exception):
    """Backend answered with a status worth retrying."""

    def __init__(self, status_code: int, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


def _log_upload_retry(retry_state: RetryCallState) -> None:
    protocol_id: ProtocolId = retry_state.args[1]
    logger.warning(
        "upload_retrying",
        protocol=protocol_id.label,
        attempt=retry_state.attempt_number,
        wait_seconds=round(retry_state.next_action.sleep, 2),
        error=str(retry_state.outcome.exception()),
    )


@retry(
    retry=retry_if_exception_type((TransientHTTPError, httpx.TimeoutException)),
    wait=wait_exponential_jitter(initial=1, max=settings.retry_max_wait_seconds, jitter=2),
    stop=stop_after_attempt(settings.retry_max_attempts),
    before_sleep=_log_upload_retry,
    reraise=True,
)
async def post_with_retry(
    client: httpx.AsyncClient,
    protocol_id: ProtocolId,
    url: str,
    body: dict,
) -> httpx.Response:
    """POST one upload body for `protocol_id`.

    Arguments are positional so the retry log can name the protocol.
    """
    response = await client.post(url, json=body)
    if response.status_code in TRANSIENT_STATUS_CODES:
        raise TransientHTTPError(response.status_code, response.text[:200])
    response.raise_for_status()
    return response
