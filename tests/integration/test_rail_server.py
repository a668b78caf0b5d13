"""HTTP connector client against the mock rail server, in-process over ASGI"""

import importlib.util
from pathlib import Path

import httpx
import pytest

from flow_gateway.domain.models import FailureType
from flow_gateway.infrastructure.clients.connectors import HttpConnectorClient

RAIL_SERVER_PATH = Path(__file__).resolve().parents[2] / "mock" / "rail_server" / "main.py"


def load_rail_server():
    spec = importlib.util.spec_from_file_location("rail_server_main", RAIL_SERVER_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


rail_server = load_rail_server()


@pytest.fixture
def rail_client() -> HttpConnectorClient:
    return HttpConnectorClient(
        base_url="http://rails.test",
        timeout=1.0,
        transport=httpx.ASGITransport(app=rail_server.app),
    )


async def test_charge_succeeds(rail_client: HttpConnectorClient):
    result = await rail_client.call("TNG", "charge", 4_500)

    assert result.success is True
    assert result.latency_ms > 0


async def test_declined_rail(rail_client: HttpConnectorClient, monkeypatch):
    monkeypatch.setattr(rail_server, "DECLINE", {"TNG"})

    result = await rail_client.call("TNG", "charge", 4_500)

    assert result.success is False
    assert result.failure_type is FailureType.INSUFFICIENT_FUNDS
    assert result.error == "Insufficient balance on connector"


async def test_rail_down(rail_client: HttpConnectorClient, monkeypatch):
    monkeypatch.setattr(rail_server, "DOWN", {"Maybank"})

    result = await rail_client.call("Maybank", "top_up", 2_000)

    assert result.failure_type is FailureType.CONNECTOR_UNAVAILABLE
    assert result.error == "Rail Maybank unavailable: 503"


async def test_unknown_action(rail_client: HttpConnectorClient):
    result = await rail_client.call("TNG", "refund", 100)

    assert result.success is False
    assert result.failure_type is FailureType.CONNECTOR_UNAVAILABLE
