"""Connector clients - execute a single (rail, action, amount) call against a payment rail"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, List, Optional, Tuple

import httpx

from flow_gateway.config import settings
from flow_gateway.domain.exceptions import ConnectorError
from flow_gateway.domain.models import ConnectorCallResult, FailureType
from flow_gateway.infrastructure.observability.metrics import connector_failure_counter, connector_latency_histogram

logger = logging.getLogger(__name__)

# Substring -> failure type, checked in order. Only for rails that answer with free text.
_FAILURE_KEYWORDS: List[Tuple[Tuple[str, ...], FailureType]] = [
    (("insufficient", "balance"), FailureType.INSUFFICIENT_FUNDS),
    (("connector", "unavailable", "timeout"), FailureType.CONNECTOR_UNAVAILABLE),
    (("paused",), FailureType.USER_PAUSED),
    (("risk", "blocked"), FailureType.RISK_BLOCKED),
    (("identity", "suspended"), FailureType.IDENTITY_BLOCKED),
]


def classify_failure(message: str) -> FailureType:
    """
    Map a free-text rail error to a failure type.

    Compatibility shim: connector clients return typed failures, this is
    used only when a rail response carries no failure_type.
    """
    lowered = message.lower()
    for keywords, failure_type in _FAILURE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return failure_type
    return FailureType.UNKNOWN


class ConnectorClient:
    """Execution surface for a payment rail"""

    async def call(self, connector_name: str, action: str, amount_cents: int) -> ConnectorCallResult:
        start = time.perf_counter()
        with connector_latency_histogram.labels(action=action).time():
            try:
                result = await self._call(connector_name, action, amount_cents)
            except Exception as e:
                logger.exception("Connector call raised", extra={"connector": connector_name, "action": action})
                result = ConnectorCallResult(success=False, failure_type=FailureType.UNKNOWN, error=str(e))
        result.latency_ms = (time.perf_counter() - start) * 1000

        if not result.success:
            failure_type = result.failure_type or FailureType.UNKNOWN
            connector_failure_counter.labels(failure_type=failure_type.value).inc()
            logger.warning(
                "Connector call failed",
                extra={
                    "connector": connector_name,
                    "action": action,
                    "amount_cents": amount_cents,
                    "failure_type": failure_type.value,
                    "error": result.error,
                },
            )
        return result

    async def _call(self, connector_name: str, action: str, amount_cents: int) -> ConnectorCallResult:
        raise NotImplementedError


class SimulatedConnectorClient(ConnectorClient):
    """
    In-process rail simulation.

    Each call sleeps a uniform latency, then fails with probability
    `failure_rate`, picking one of the canned failures below.
    """

    FAILURES = [
        (FailureType.CONNECTOR_UNAVAILABLE, "Connection timeout"),
        (FailureType.INSUFFICIENT_FUNDS, "Insufficient balance on connector"),
        (FailureType.CONNECTOR_UNAVAILABLE, "Connector temporarily unavailable"),
    ]

    def __init__(
        self,
        failure_rate: Optional[float] = None,
        min_latency_ms: Optional[int] = None,
        max_latency_ms: Optional[int] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.failure_rate = settings.connector_failure_rate if failure_rate is None else failure_rate
        self.min_latency_ms = settings.connector_min_latency_ms if min_latency_ms is None else min_latency_ms
        self.max_latency_ms = settings.connector_max_latency_ms if max_latency_ms is None else max_latency_ms
        self.rng = rng or random.Random()
        self.sleep = sleep

    async def _call(self, connector_name: str, action: str, amount_cents: int) -> ConnectorCallResult:
        await self.sleep(self.rng.uniform(self.min_latency_ms, self.max_latency_ms) / 1000)

        if self.rng.random() < self.failure_rate:
            failure_type, error = self.rng.choice(self.FAILURES)
            return ConnectorCallResult(success=False, failure_type=failure_type, error=error)

        return ConnectorCallResult(success=True)


class HttpConnectorClient(ConnectorClient):
    """Client for rails reachable over HTTP (see mock/rail_server)"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.rail_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def _call(self, connector_name: str, action: str, amount_cents: int) -> ConnectorCallResult:
        try:
            await self._post(connector_name, action, amount_cents)
            return ConnectorCallResult(success=True)
        except ConnectorError as e:
            return ConnectorCallResult(success=False, failure_type=e.failure_type, error=str(e))

    async def _post(self, connector_name: str, action: str, amount_cents: int) -> None:
        """
        POST {base}/rails/{name}/{action}.

        Raises:
            ConnectorError: On timeout, transport or HTTP errors, a declined
                call or an unreadable response
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/rails/{connector_name}/{action}",
                    json={"amount_cents": amount_cents},
                )
                response.raise_for_status()
                data = response.json()

                if not data["success"]:
                    error = data.get("error") or "Connector call failed"
                    failure_type = data.get("failure_type")
                    raise ConnectorError(
                        error,
                        FailureType(failure_type) if failure_type else classify_failure(error),
                    )

            except httpx.TimeoutException as e:
                raise ConnectorError(f"Rail {connector_name} timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise ConnectorError(f"Rail {connector_name} unavailable: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise ConnectorError(f"Rail {connector_name} unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise ConnectorError(f"Invalid response from rail {connector_name}: {e}", FailureType.UNKNOWN) from e


def build_connector_client(mode: str | None = None) -> ConnectorClient:
    mode = mode or settings.connector_mode
    if mode == "http":
        return HttpConnectorClient()
    if mode == "simulated":
        return SimulatedConnectorClient()
    raise ValueError(f"Unknown connector mode: {mode}")
