"""
Tests for the telephony and collaborator HTTP clients, using httpx's mock transport.
"""

import json

import httpx
import pytest

from receptionist.exceptions import DispatchError, SessionUnavailable, TransportError
from receptionist.services.collaborators import (
    BillingService,
    CallLogService,
    NotificationService,
    TenantConfigService,
)
from receptionist.services.telephony import TelephonyClient

BASE_URL = "https://api.example.com"


class Recorder:
    """httpx mock transport handler that records requests and replays canned responses."""

    def __init__(self, status=200, body=None):
        self.status = status
        self.body = body
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.body is None:
            return httpx.Response(self.status)
        return httpx.Response(self.status, json=self.body)

    def client(self):
        return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(self))

    def json_body(self, index=-1):
        return json.loads(self.requests[index].content)


@pytest.mark.asyncio
async def test_answer_sends_stream_url():
    recorder = Recorder()
    telephony = TelephonyClient(BASE_URL, client=recorder.client())

    await telephony.answer("v3:call-1", "wss://engine.example.com/media")

    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/calls/v3:call-1/actions/answer"
    assert recorder.json_body()["stream_url"] == "wss://engine.example.com/media"
    await telephony.aclose()


@pytest.mark.asyncio
async def test_speak_and_record_commands():
    recorder = Recorder()
    telephony = TelephonyClient(BASE_URL, client=recorder.client())

    await telephony.speak("v3:call-1", "Please leave a message")
    await telephony.start_recording("v3:call-1")
    await telephony.hangup("v3:call-1")

    paths = [r.url.path for r in recorder.requests]
    assert paths == [
        "/calls/v3:call-1/actions/speak",
        "/calls/v3:call-1/actions/record_start",
        "/calls/v3:call-1/actions/hangup",
    ]
    assert recorder.json_body(0)["payload"] == "Please leave a message"


@pytest.mark.asyncio
async def test_telephony_error_status_raises_transport_error():
    telephony = TelephonyClient(BASE_URL, client=Recorder(status=422).client())

    with pytest.raises(TransportError, match="422"):
        await telephony.hangup("v3:call-1")


@pytest.mark.asyncio
async def test_unconfigured_telephony_is_skipped():
    telephony = TelephonyClient(None)

    await telephony.answer("v3:call-1")

    assert telephony._client is None


@pytest.mark.asyncio
async def test_agent_config_is_fetched_per_tenant():
    recorder = Recorder(body={"greeting": "Bright Smiles, how can I help?", "voice": "sage"})
    tenants = TenantConfigService(BASE_URL, client=recorder.client())

    config = await tenants.get_agent_config("biz-1")

    assert recorder.requests[0].url.path == "/tenants/biz-1/agent-config"
    assert config.greeting == "Bright Smiles, how can I help?"
    assert config.voice == "sage"


@pytest.mark.asyncio
async def test_agent_config_failure_is_session_unavailable():
    tenants = TenantConfigService(BASE_URL, client=Recorder(status=503).client())

    with pytest.raises(SessionUnavailable):
        await tenants.get_agent_config("biz-1")

    with pytest.raises(SessionUnavailable):
        await tenants.get_agent_config(None)


@pytest.mark.asyncio
async def test_unconfigured_tenant_service_uses_default_agent():
    config = await TenantConfigService(None).get_agent_config("biz-1")

    assert config.voice == "alloy"


@pytest.mark.asyncio
async def test_tenant_lookup_is_cached():
    recorder = Recorder(body={"tenant_id": "biz-9"})
    tenants = TenantConfigService(BASE_URL, client=recorder.client())

    assert await tenants.resolve_tenant("+15550199") == "biz-9"
    assert await tenants.resolve_tenant("+15550199") == "biz-9"

    assert len(recorder.requests) == 1
    assert recorder.requests[0].url.params["number"] == "+15550199"


@pytest.mark.asyncio
async def test_tenant_lookup_failure_returns_none():
    tenants = TenantConfigService(BASE_URL, client=Recorder(status=500).client())

    assert await tenants.resolve_tenant("+15550199") is None


@pytest.mark.asyncio
async def test_call_log_billing_and_notifications():
    recorder = Recorder()
    client = recorder.client()

    await CallLogService(BASE_URL, client=client).record_call({"call_id": "v3:call-1"})
    await CallLogService(BASE_URL, client=client).attach_recording("v3:call-1", "https://r/1.mp3")
    await BillingService(BASE_URL, client=client).report_billable_event(
        "biz-1", "v3:call-1", "appointment_booked")
    await NotificationService(BASE_URL, client=client).notify("biz-1", "high", "fallback")

    assert [r.url.path for r in recorder.requests] == [
        "/calls", "/calls/v3:call-1/recording", "/billable-events", "/notifications",
    ]
    assert recorder.json_body(2) == {"tenant_id": "biz-1", "call_id": "v3:call-1",
                                     "kind": "appointment_booked"}
    await client.aclose()


@pytest.mark.asyncio
async def test_collaborator_failure_raises_dispatch_error():
    call_log = CallLogService(BASE_URL, client=Recorder(status=500).client())

    with pytest.raises(DispatchError):
        await call_log.record_call({"call_id": "v3:call-1"})


def test_bearer_token_header():
    service = CallLogService(BASE_URL, token="svc-token")

    client = service._get_client()

    assert client.headers["Authorization"] == "Bearer svc-token"


@pytest.mark.asyncio
async def test_invalid_url_is_mapped_to_service_error():
    def reject(request):
        raise httpx.InvalidURL("Invalid non-printable ASCII character in URL")

    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(reject))
    billing = BillingService(BASE_URL, client=client)

    with pytest.raises(DispatchError, match="failed"):
        await billing.report_billable_event("biz-1", "v3:call-1", "appointment_booked")
