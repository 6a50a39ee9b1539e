try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from typing import Callable, List

import httpx
import pytest

from _fakes import FakeClock, RecordingSleep, StubAuthClient, StubTenants, make_tenant
from app.clients.cache_store import InMemoryCacheStore
from app.core.config import ErpSettings, RequestSettings, TokenSettings
from app.core.errors import (
    NoActiveTenantError,
    RequestFailedError,
    SessionExpiredError,
    UpstreamUnavailableError,
)
from app.schemas import RequestLogEvent
from app.services.request_executor import RequestExecutor
from app.services.request_log import RequestLogBuffer
from app.services.token_manager import TokenManager

URL = "https://erp.example.com/gateway/v1/mge/service.sbr"


class ExplodingObserver:
    def record(self, event: RequestLogEvent) -> None:
        raise RuntimeError("observer is broken")


class Harness:
    def __init__(
        self,
        handler: Callable[[httpx.Request], httpx.Response],
        *,
        tenants: StubTenants | None = None,
        observer=None,
    ) -> None:
        self.requests: List[httpx.Request] = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        self.clock = FakeClock()
        self.sleep = RecordingSleep(self.clock)
        self.auth = StubAuthClient()
        self.log = RequestLogBuffer()
        tenants = tenants or StubTenants(make_tenant(1))
        self.http = httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))
        self.tokens = TokenManager(
            cache=InMemoryCacheStore(clock=self.clock),
            tenants=tenants,
            auth_client=self.auth,
            settings=TokenSettings(),
            clock=self.clock,
            sleep=self.sleep,
        )
        self.executor = RequestExecutor(
            token_manager=self.tokens,
            tenants=tenants,
            http_client=self.http,
            erp_settings=ErpSettings(),
            settings=RequestSettings(),
            observer=observer if observer is not None else self.log,
            clock=self.clock,
            sleep=self.sleep,
        )

    def bearer_tokens(self) -> List[str]:
        return [request.headers["Authorization"] for request in self.requests]


def _sequence(*responses):
    """Handler replaying ``responses``; exceptions are raised as transport errors."""
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        outcome = queue.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return handler


@pytest.mark.asyncio
async def test_execute_attaches_bearer_token_and_returns_json() -> None:
    harness = Harness(_sequence(httpx.Response(200, json={"status": "1", "responseBody": {}})))

    result = await harness.executor.execute(URL, "POST", {"requestBody": {}}, tenant_id=1)

    assert result == {"status": "1", "responseBody": {}}
    assert harness.bearer_tokens() == ["Bearer token-1"]
    assert harness.requests[0].headers["Content-Type"] == "application/json"
    events = harness.log.recent()
    assert [event.outcome for event in events] == ["success"]
    assert events[0].status == 200
    assert events[0].tenant_id == 1


@pytest.mark.asyncio
async def test_execute_defaults_to_the_active_tenant() -> None:
    tenants = StubTenants(make_tenant(7), make_tenant(3, active=False))
    harness = Harness(_sequence(httpx.Response(200, json={})), tenants=tenants)

    await harness.executor.execute(URL)

    assert harness.auth.calls[0].token == "integration-7"
    assert await harness.executor.resolve_default_tenant() == 7


@pytest.mark.asyncio
async def test_execute_without_active_tenant_fails() -> None:
    harness = Harness(_sequence(), tenants=StubTenants(make_tenant(1, active=False)))

    with pytest.raises(NoActiveTenantError):
        await harness.executor.execute(URL)
    assert harness.requests == []


@pytest.mark.asyncio
async def test_rejected_token_is_refreshed_and_request_retried_once() -> None:
    harness = Harness(
        _sequence(
            httpx.Response(401, json={"statusMessage": "Token expirado"}),
            httpx.Response(200, json={"ok": True}),
        )
    )

    assert await harness.executor.execute(URL, tenant_id=1) == {"ok": True}

    assert harness.bearer_tokens() == ["Bearer token-1", "Bearer token-2"]
    assert len(harness.auth.calls) == 2
    assert [event.outcome for event in reversed(harness.log.recent())] == [
        "unauthorized",
        "success",
    ]


@pytest.mark.asyncio
async def test_second_rejection_raises_session_expired() -> None:
    harness = Harness(_sequence(httpx.Response(403), httpx.Response(401)))

    with pytest.raises(SessionExpiredError):
        await harness.executor.execute(URL, tenant_id=1)

    assert len(harness.requests) == 2
    assert len(harness.auth.calls) == 2
    assert await harness.tokens.token_status(1) is None


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_reported_unavailable() -> None:
    harness = Harness(
        _sequence(httpx.Response(503), httpx.Response(502), httpx.Response(500))
    )

    with pytest.raises(UpstreamUnavailableError):
        await harness.executor.execute(URL, tenant_id=1)

    assert len(harness.requests) == 3
    assert harness.sleep.delays == [1.0, 2.0]
    # The token stays cached across transient failures.
    assert len(harness.auth.calls) == 1


@pytest.mark.asyncio
async def test_transport_error_recovers_on_retry() -> None:
    request = httpx.Request("POST", URL)
    harness = Harness(
        _sequence(
            httpx.ConnectError("connection reset", request=request),
            httpx.Response(200, json={"recovered": True}),
        )
    )

    assert await harness.executor.execute(URL, tenant_id=1) == {"recovered": True}
    events = list(reversed(harness.log.recent()))
    assert events[0].outcome == "transport_error"
    assert events[0].status is None
    assert events[1].outcome == "success"


@pytest.mark.asyncio
async def test_persistent_transport_errors_raise_unavailable() -> None:
    request = httpx.Request("POST", URL)
    harness = Harness(
        _sequence(*(httpx.ReadTimeout("timed out", request=request) for _ in range(3)))
    )

    with pytest.raises(UpstreamUnavailableError):
        await harness.executor.execute(URL, tenant_id=1)
    assert len(harness.requests) == 3


@pytest.mark.asyncio
async def test_client_error_surfaces_remote_message_without_retry() -> None:
    harness = Harness(
        _sequence(httpx.Response(400, json={"statusMessage": "Campo CODCID inválido"}))
    )

    with pytest.raises(RequestFailedError) as excinfo:
        await harness.executor.execute(URL, tenant_id=1)

    assert "CODCID" in str(excinfo.value)
    assert excinfo.value.status_code == 400
    assert len(harness.requests) == 1
    assert harness.sleep.delays == []


@pytest.mark.asyncio
async def test_broken_observer_does_not_affect_the_request() -> None:
    harness = Harness(_sequence(httpx.Response(200, json={"ok": 1})), observer=ExplodingObserver())

    assert await harness.executor.execute(URL, tenant_id=1) == {"ok": 1}


@pytest.mark.asyncio
async def test_get_requests_carry_no_body() -> None:
    harness = Harness(_sequence(httpx.Response(200, json=[1, 2])))

    assert await harness.executor.execute(URL, "get", tenant_id=1) == [1, 2]
    assert harness.requests[0].method == "GET"
    assert harness.requests[0].content == b""
