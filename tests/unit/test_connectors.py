"""Unit tests for connector clients"""

import random
from unittest.mock import AsyncMock

import httpx
import pytest
from flow_gateway.domain.models import FailureType
from flow_gateway.infrastructure.clients.connectors import (
    HttpConnectorClient,
    SimulatedConnectorClient,
    build_connector_client,
    classify_failure,
)


@pytest.mark.parametrize(
    "message,expected",
    [
        ("Insufficient balance on connector", FailureType.INSUFFICIENT_FUNDS),
        ("Connection timeout", FailureType.CONNECTOR_UNAVAILABLE),
        ("Connector temporarily unavailable", FailureType.CONNECTOR_UNAVAILABLE),
        ("FLOW is paused", FailureType.USER_PAUSED),
        ("Blocked by risk engine", FailureType.RISK_BLOCKED),
        ("Identity suspended", FailureType.IDENTITY_BLOCKED),
        ("Something odd happened", FailureType.UNKNOWN),
    ],
)
def test_classify_failure(message, expected):
    assert classify_failure(message) is expected


async def test_simulated_client_success():
    sleep = AsyncMock()
    client = SimulatedConnectorClient(
        failure_rate=0.0, min_latency_ms=100, max_latency_ms=500, rng=random.Random(7), sleep=sleep
    )

    result = await client.call("TNG", "charge", 5_000)

    assert result.success is True
    assert result.failure_type is None
    assert result.latency_ms >= 0
    delay = sleep.await_args.args[0]
    assert 0.1 <= delay <= 0.5


async def test_simulated_client_failures_are_typed():
    client = SimulatedConnectorClient(failure_rate=1.0, rng=random.Random(3), sleep=AsyncMock())

    for _ in range(10):
        result = await client.call("TNG", "charge", 5_000)
        assert result.success is False
        assert result.failure_type in (FailureType.CONNECTOR_UNAVAILABLE, FailureType.INSUFFICIENT_FUNDS)
        assert result.error in [error for _, error in SimulatedConnectorClient.FAILURES]


async def test_unexpected_client_error_becomes_unknown_failure():
    client = SimulatedConnectorClient(failure_rate=0.0, sleep=AsyncMock(side_effect=RuntimeError("event loop closed")))

    result = await client.call("TNG", "charge", 5_000)

    assert result.success is False
    assert result.failure_type is FailureType.UNKNOWN
    assert result.error == "event loop closed"


def http_client(handler) -> HttpConnectorClient:
    return HttpConnectorClient(base_url="http://rails.test", timeout=1.0, transport=httpx.MockTransport(handler))


async def test_http_client_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = request.read()
        return httpx.Response(200, json={"success": True, "error": None, "failure_type": None})

    result = await http_client(handler).call("TNG", "top_up", 3_000)

    assert result.success is True
    assert seen["path"] == "/rails/TNG/top_up"
    assert b'"amount_cents":3000' in seen["body"].replace(b" ", b"")


async def test_http_client_declined_with_failure_type():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"success": False, "error": "Card declined", "failure_type": "insufficient_funds"}
        )

    result = await http_client(handler).call("Visa", "charge", 5_000)

    assert result.success is False
    assert result.failure_type is FailureType.INSUFFICIENT_FUNDS
    assert result.error == "Card declined"


async def test_http_client_declined_free_text_is_classified():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": "Insufficient balance"})

    result = await http_client(handler).call("TNG", "charge", 5_000)

    assert result.failure_type is FailureType.INSUFFICIENT_FUNDS


async def test_http_client_server_error_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"detail": "rail unavailable"})

    result = await http_client(handler).call("TNG", "charge", 5_000)

    assert result.success is False
    assert result.failure_type is FailureType.CONNECTOR_UNAVAILABLE
    assert "503" in result.error


async def test_http_client_timeout_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    result = await http_client(handler).call("TNG", "charge", 5_000)

    assert result.failure_type is FailureType.CONNECTOR_UNAVAILABLE
    assert result.error == "Rail TNG timeout after 1.0s"


async def test_http_client_malformed_response_is_unknown():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="not json")

    result = await http_client(handler).call("TNG", "charge", 5_000)

    assert result.failure_type is FailureType.UNKNOWN


def test_build_connector_client():
    assert isinstance(build_connector_client("simulated"), SimulatedConnectorClient)
    assert isinstance(build_connector_client("http"), HttpConnectorClient)
    with pytest.raises(ValueError):
        build_connector_client("carrier-pigeon")
