"""Authenticated HTTP access to the payment gateway.

Hides which credential header the gateway accepts by walking an ordered list
of `AuthStrategy` objects, retries transient upstream failures with linear
backoff, and classifies everything else into the error taxonomy.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from paygate.common.config import GatewayConfig
from paygate.common.logging import logger, mask_secret
from paygate.common.metrics import gateway_attempts_total, gateway_latency_seconds, retries_total
from paygate.services.gateway.auth import AuthStrategy, default_strategies
from paygate.services.gateway.errors import (
    AttemptRecord,
    GatewayError,
    GatewayTimeout,
    ServiceUnavailable,
    UnknownGatewayError,
    error_for_status,
)
from paygate.services.gateway.schemas import ConnectionReport

TRANSIENT_STATUSES = frozenset({502, 503, 504})
HEALTH_ENDPOINT = "/health"


@dataclass
class GatewayResult:
    """Parsed body of a successful call plus the attempts it took."""

    body: dict[str, Any]
    strategy: str
    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def failed_attempts(self) -> list[AttemptRecord]:
        return [a for a in self.attempts if a.outcome != "success"]


def _gateway_message(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:500] or None
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error")
        return str(message) if message is not None else None
    return None


class GatewayClient:
    """Async gateway client; construct once per process and inject it."""

    def __init__(
        self,
        config: GatewayConfig,
        http: httpx.AsyncClient | None = None,
        strategies: list[AuthStrategy] | None = None,
        sleep=asyncio.sleep,
    ) -> None:
        self.config = config
        self._http = http or httpx.AsyncClient()
        self.strategies = strategies if strategies is not None else default_strategies(config.secret_key)
        self._sleep = sleep

    async def close(self) -> None:
        await self._http.aclose()

    def _url(self, endpoint: str) -> str:
        return f"{self.config.base_url}{endpoint}"

    async def call(
        self,
        method: str,
        endpoint: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float,
        strategies: list[AuthStrategy] | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ) -> GatewayResult:
        """Perform one logical call, trying strategies in order.

        401 advances to the next strategy without spending retries. 502/503/504,
        timeouts and transport errors retry the same strategy up to
        `max_retries` times, sleeping `retry_delay * n` before retry n, then
        advance. Any other error status is raised immediately.
        """

        strategies = self.strategies if strategies is None else strategies
        max_retries = self.config.max_retries if max_retries is None else max_retries
        retry_delay = self.config.retry_delay_seconds if retry_delay is None else retry_delay

        attempts: list[AttemptRecord] = []
        last_error: GatewayError | None = None
        for strategy in strategies:
            retry = 0
            while True:
                if retry:
                    delay = retry_delay * retry
                    retries_total.labels(service="gateway-client", dependency=endpoint).inc()
                    logger.warning(
                        "gateway retry endpoint=%s strategy=%s retry=%s/%s delay_s=%s",
                        endpoint,
                        strategy.name,
                        retry,
                        max_retries,
                        delay,
                    )
                    await self._sleep(delay)

                headers = strategy.apply({"Content-Type": "application/json", "Accept": "application/json"})
                started = time.perf_counter()
                status_code: int | None = None
                try:
                    response = await self._http.request(
                        method,
                        self._url(endpoint),
                        json=json,
                        params=params,
                        headers=headers,
                        timeout=timeout,
                    )
                except httpx.TimeoutException:
                    outcome = "timeout"
                    error: GatewayError = GatewayTimeout(
                        f"Request timed out after {timeout}s - please try again or check your network connection"
                    )
                except httpx.TransportError as exc:
                    outcome = "transport_error"
                    error = ServiceUnavailable(f"Gateway unreachable: {exc}")
                else:
                    gateway_latency_seconds.labels(endpoint=endpoint).observe(time.perf_counter() - started)
                    status_code = response.status_code
                    if response.is_success:
                        attempts.append(AttemptRecord(strategy.name, retry + 1, status_code, "success", False))
                        gateway_attempts_total.labels(endpoint=endpoint, strategy=strategy.name, outcome="success").inc()
                        logger.info(
                            "gateway call succeeded endpoint=%s strategy=%s status=%s failed_attempts=%s",
                            endpoint,
                            strategy.name,
                            status_code,
                            len(attempts) - 1,
                        )
                        return GatewayResult(self._parse(response, attempts), strategy.name, attempts)
                    outcome = f"http_{status_code}"
                    error = error_for_status(status_code, _gateway_message(response))

                transient = status_code is None or status_code in TRANSIENT_STATUSES
                will_retry = transient and retry < max_retries
                attempts.append(AttemptRecord(strategy.name, retry + 1, status_code, outcome, will_retry))
                gateway_attempts_total.labels(endpoint=endpoint, strategy=strategy.name, outcome=outcome).inc()
                logger.warning(
                    "gateway attempt failed endpoint=%s strategy=%s attempt=%s status=%s outcome=%s retried=%s",
                    endpoint,
                    strategy.name,
                    retry + 1,
                    status_code,
                    outcome,
                    will_retry,
                )
                error.attempts = attempts
                last_error = error

                if will_retry:
                    retry += 1
                    continue
                if transient or status_code == 401:
                    break
                raise error

        if last_error is None:
            raise UnknownGatewayError("No authentication strategies configured")
        logger.error(
            "gateway call exhausted all strategies endpoint=%s attempts=%s last_status=%s key_prefix=%s",
            endpoint,
            len(attempts),
            last_error.status_code,
            mask_secret(self.config.secret_key),
        )
        raise last_error

    @staticmethod
    def _parse(response: httpx.Response, attempts: list[AttemptRecord]) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise UnknownGatewayError(
                "Gateway returned a non-JSON body",
                status_code=response.status_code,
                gateway_message=response.text[:500],
                attempts=attempts,
            ) from exc
        if not isinstance(body, dict):
            raise UnknownGatewayError(
                "Gateway returned an unexpected payload",
                status_code=response.status_code,
                attempts=attempts,
            )
        return body

    async def check_connection(self) -> ConnectionReport:
        """Probe `/health` with each strategy in turn; first pass wins."""

        tried = [s.name for s in self.strategies]
        logger.info(
            "testing gateway connection base_url=%s key_prefix=%s mock_mode=%s",
            self.config.base_url,
            mask_secret(self.config.secret_key),
            self.config.mock_mode,
        )
        if self.config.mock_mode:
            return ConnectionReport(
                success=True,
                message="Mock mode enabled - API test skipped",
                tried=[],
                mock_mode=True,
            )

        last_error: GatewayError | None = None
        for strategy in self.strategies:
            try:
                result = await self.call(
                    "GET",
                    HEALTH_ENDPOINT,
                    timeout=self.config.health_timeout_seconds,
                    strategies=[strategy],
                    max_retries=0,
                )
            except GatewayError as exc:
                last_error = exc
                continue
            return ConnectionReport(
                success=True,
                message=f"Gateway connection successful using {result.strategy}",
                strategy=result.strategy,
                status_code=result.attempts[-1].status_code,
                tried=tried,
            )

        logger.error("all authentication methods failed for %s", HEALTH_ENDPOINT)
        if last_error is None:
            return ConnectionReport(success=False, message="No authentication strategies configured", tried=tried)
        return ConnectionReport(
            success=False,
            message=f"All authentication methods failed. Last error: {last_error.status_code} {last_error.message}",
            status_code=last_error.status_code,
            tried=tried,
        )
