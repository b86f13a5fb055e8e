"""Tests for the httpx-backed SleepApiClient (no network, httpx.MockTransport)."""

import json

import httpx
import pytest
from structlog.testing import capture_logs
from tenacity import wait_none

from monitor.adapters.api_client import ENDPOINTS, SleepApiClient
from monitor.adapters.http_client import post_with_retry
from monitor.adapters.protocol import UploadClient
from monitor.domain.models import HRSpO2, ProtocolId, SleepResultResponse
from shared.config import settings
from shared.exceptions import DecodeFailureError, NetworkFailureError
from tests.conftest import FIXED_REQ_DATE, USER_SNO

BASE_URL = "https://backend.test/"


def _client(handler) -> SleepApiClient:
    transport = httpx.MockTransport(handler)
    return SleepApiClient(
        httpx.AsyncClient(base_url=BASE_URL, transport=transport), user_sno=USER_SNO
    )


def _recording(requests: list, status: int = 200, body=None):
    body = {"retCd": "0", "retMsg": "OK"} if body is None else body

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status, json=body)

    return handler


class TestRequests:
    @pytest.mark.asyncio
    async def test_frames_body(self):
        requests: list[httpx.Request] = []
        api = _client(_recording(requests))

        resp = await api.post_frames(ProtocolId.P06, FIXED_REQ_DATE, "sess-1", b"\xaa\xbb\xcc")

        assert resp.ret_cd == "0"
        assert resp.ret_msg == "OK"
        assert len(requests) == 1
        assert requests[0].method == "POST"
        assert requests[0].url == BASE_URL + "poli/sleep/protocol6"
        assert json.loads(requests[0].content) == {
            "reqDate": "20240704054513",
            "userSno": USER_SNO,
            "sessionId": "sess-1",
            "data": "aabbcc",
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "protocol_id, path",
        [
            (ProtocolId.P06, "poli/sleep/protocol6"),
            (ProtocolId.P07, "poli/sleep/protocol7"),
            (ProtocolId.P08, "poli/sleep/protocol8"),
        ],
    )
    async def test_frames_endpoint_per_protocol(self, protocol_id, path):
        requests: list[httpx.Request] = []
        api = _client(_recording(requests))
        await api.post_frames(protocol_id, FIXED_REQ_DATE, "s", b"\x01")
        assert requests[0].url.path == "/" + path

    @pytest.mark.asyncio
    async def test_hrspo2_body(self):
        requests: list[httpx.Request] = []
        api = _client(_recording(requests))

        await api.post_hrspo2(FIXED_REQ_DATE, "sess-1", HRSpO2(heart_rate=72, spo2=98))

        assert requests[0].url.path == "/poli/sleep/protocol9"
        assert json.loads(requests[0].content) == {
            "reqDate": FIXED_REQ_DATE,
            "userSno": USER_SNO,
            "sessionId": "sess-1",
            "data": {"oxygenVal": 98, "heartRateVal": 72},
        }

    @pytest.mark.asyncio
    async def test_session_end_parses_result(self):
        requests: list[httpx.Request] = []
        body = {"retCd": "0", "retMsg": "OK", "data": {"sleepScore": 81}}
        api = _client(_recording(requests, body=body))

        resp = await api.end_session(FIXED_REQ_DATE, "sess-1")

        assert isinstance(resp, SleepResultResponse)
        assert resp.data == {"sleepScore": 81}
        assert requests[0].url.path == "/" + ENDPOINTS[ProtocolId.SLEEP_END]
        assert json.loads(requests[0].content) == {
            "reqDate": FIXED_REQ_DATE,
            "userSno": USER_SNO,
            "sessionId": "sess-1",
        }

    @pytest.mark.asyncio
    async def test_unknown_response_fields_are_kept(self):
        api = _client(_recording([], body={"retCd": "0", "serverTime": "x"}))
        resp = await api.start_session(FIXED_REQ_DATE, "s")
        assert resp.model_extra == {"serverTime": "x"}


class TestErrors:
    @pytest.mark.asyncio
    async def test_client_error_is_network_failure(self):
        api = _client(_recording([], status=400, body={"error": "bad"}))
        with pytest.raises(NetworkFailureError) as exc:
            await api.post_frames(ProtocolId.P07, FIXED_REQ_DATE, "s", b"\x01")
        assert exc.value.protocol_id == ProtocolId.P07
        assert "400" in exc.value.detail

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        requests: list[httpx.Request] = []
        api = _client(_recording(requests, status=401, body={}))
        with pytest.raises(NetworkFailureError):
            await api.post_frames(ProtocolId.P06, FIXED_REQ_DATE, "s", b"\x01")
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        api = _client(handler)
        with pytest.raises(NetworkFailureError) as exc:
            await api.post_frames(ProtocolId.P08, FIXED_REQ_DATE, "s", b"\x01")
        assert "ConnectError" in exc.value.detail

    @pytest.mark.asyncio
    async def test_non_json_response_is_decode_failure(self):
        def handler(request):
            return httpx.Response(200, text="<html>oops</html>")

        api = _client(handler)
        with pytest.raises(DecodeFailureError) as exc:
            await api.post_frames(ProtocolId.P06, FIXED_REQ_DATE, "s", b"\x01")
        assert exc.value.protocol_id == ProtocolId.P06

    @pytest.mark.asyncio
    async def test_schema_mismatch_is_decode_failure(self):
        api = _client(_recording([], body={"unexpected": True}))
        with pytest.raises(DecodeFailureError):
            await api.post_hrspo2(FIXED_REQ_DATE, "s", HRSpO2(heart_rate=60, spo2=97))

    @pytest.mark.asyncio
    async def test_json_array_is_decode_failure(self):
        api = _client(_recording([], body=[1, 2, 3]))
        with pytest.raises(DecodeFailureError):
            await api.post_frames(ProtocolId.P06, FIXED_REQ_DATE, "s", b"\x01")


class TestRetry:
    @pytest.fixture(autouse=True)
    def no_backoff(self, monkeypatch):
        monkeypatch.setattr(post_with_retry.retry, "wait", wait_none())

    @pytest.mark.asyncio
    async def test_transient_status_retried_with_protocol_logged(self):
        statuses = [503, 200]
        requests: list[httpx.Request] = []

        def handler(request):
            requests.append(request)
            return httpx.Response(statuses.pop(0), json={"retCd": "0"})

        api = _client(handler)
        with capture_logs() as logs:
            resp = await api.post_frames(ProtocolId.P07, FIXED_REQ_DATE, "s", b"\x01")

        assert resp.ret_cd == "0"
        assert len(requests) == 2
        retries = [e for e in logs if e["event"] == "upload_retrying"]
        assert len(retries) == 1
        assert retries[0]["protocol"] == "0x07"
        assert retries[0]["attempt"] == 1
        assert "503" in retries[0]["error"]

    @pytest.mark.asyncio
    async def test_exhausted_retries_are_network_failure(self):
        requests: list[httpx.Request] = []
        api = _client(_recording(requests, status=502, body={}))
        with pytest.raises(NetworkFailureError) as exc:
            await api.post_hrspo2(FIXED_REQ_DATE, "s", HRSpO2(heart_rate=60, spo2=97))
        assert exc.value.protocol_id == ProtocolId.P09_HR_SPO2
        assert "502" in exc.value.detail
        assert len(requests) == settings.retry_max_attempts


def test_satisfies_upload_client_protocol():
    api = SleepApiClient(httpx.AsyncClient(base_url=BASE_URL), user_sno=USER_SNO)
    assert isinstance(api, UploadClient)
