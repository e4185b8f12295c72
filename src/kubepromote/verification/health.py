"""HTTP smoke tests against a deployed service endpoint.

Each metric (status code, total time, download size) is measured by its own
probe request. Probes are independent read-only requests, so the three run
concurrently in one anyio task group and are joined before results are
returned. Transient failures are retried with a fixed delay inside a bounded
window, the same budget the pipeline's curl call used
(``--connect-timeout 5 --retry 5 --retry-delay 5 --retry-max-time 30``).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
import time

import anyio
import httpx

from kubepromote.contracts.models import VerificationCriteria, VerificationResult
from kubepromote.contracts.types import Metric
from kubepromote.observability.metrics import PROBE_DURATION
from kubepromote.observability.telemetry import stage_span

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True, slots=True)
class ProbeSettings:
    connect_timeout: float = 5.0
    request_timeout: float = 10.0
    retries: int = 5
    retry_delay: float = 5.0
    retry_window: float = 30.0


@dataclass(frozen=True, slots=True)
class ProbeResponse:
    """What one probe observed after its final attempt."""

    attempts: int
    status_code: int | None = None
    elapsed: float | None = None
    size: int | None = None
    error: str | None = None


def evaluate(
    metric: Metric, response: ProbeResponse, criteria: VerificationCriteria
) -> VerificationResult:
    """Turn a probe observation into a pass/fail result for ``metric``."""
    observed: float | None
    if metric is Metric.STATUS_CODE:
        observed = response.status_code
        passed = observed is not None and observed == criteria.status_code
    elif metric is Metric.TOTAL_TIME:
        observed = response.elapsed
        passed = observed is not None and observed <= criteria.max_total_time
    else:
        observed = response.size
        passed = observed is not None and observed >= criteria.min_size_download
        if passed and criteria.max_size_download is not None:
            passed = observed <= criteria.max_size_download
    return VerificationResult(
        metric=metric,
        observed_value=observed,
        passed=passed,
        attempts=response.attempts,
        error=response.error,
    )


class HealthVerifier:
    """Probes an endpoint and evaluates each metric against its criteria."""

    def __init__(
        self,
        settings: ProbeSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or ProbeSettings()
        self._transport = transport
        self._sleep = sleep
        self._clock = clock

    def verify(self, endpoint: str, criteria: VerificationCriteria) -> list[VerificationResult]:
        return anyio.run(self.verify_async, endpoint, criteria)

    async def verify_async(
        self, endpoint: str, criteria: VerificationCriteria
    ) -> list[VerificationResult]:
        url = endpoint if "://" in endpoint else f"http://{endpoint}"
        url = f"{url.rstrip('/')}{criteria.path}"
        results: dict[Metric, VerificationResult] = {}
        timeout = httpx.Timeout(
            self.settings.request_timeout, connect=self.settings.connect_timeout
        )
        with stage_span("kubepromote.verifier", "verify", url=url) as span:
            async with httpx.AsyncClient(
                timeout=timeout, transport=self._transport, follow_redirects=True
            ) as client:
                async with anyio.create_task_group() as group:
                    for metric in Metric:
                        group.start_soon(self._probe, client, url, metric, criteria, results)
            span.set_attribute("passed", all(result.passed for result in results.values()))
        ordered = [results[metric] for metric in Metric]
        for result in ordered:
            logger.info(
                "verification.metric",
                extra={
                    "extra": {
                        "url": url,
                        "metric": result.metric.value,
                        "observed": result.observed_value,
                        "passed": result.passed,
                        "attempts": result.attempts,
                    }
                },
            )
        return ordered

    async def _probe(
        self,
        client: httpx.AsyncClient,
        url: str,
        metric: Metric,
        criteria: VerificationCriteria,
        results: dict[Metric, VerificationResult],
    ) -> None:
        with PROBE_DURATION.labels(metric=metric.name).time():
            response = await self._fetch(client, url)
        results[metric] = evaluate(metric, response, criteria)

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> ProbeResponse:
        started = self._clock()
        attempts = 0
        while True:
            attempts += 1
            attempt_started = self._clock()
            try:
                response = await client.get(url)
            except httpx.TransportError as exc:
                observed = ProbeResponse(attempts=attempts, error=f"{type(exc).__name__}: {exc}")
            except httpx.RequestError as exc:
                # Redirect loops and undecodable bodies do not heal on retry.
                return ProbeResponse(attempts=attempts, error=f"{type(exc).__name__}: {exc}")
            else:
                observed = ProbeResponse(
                    attempts=attempts,
                    status_code=response.status_code,
                    elapsed=self._clock() - attempt_started,
                    size=len(response.content),
                    error=None
                    if response.status_code not in RETRYABLE_STATUS
                    else f"HTTP {response.status_code}",
                )
                if response.status_code not in RETRYABLE_STATUS:
                    return observed
            if not self._may_retry(attempts, started):
                return observed
            logger.warning(
                "verification.retry",
                extra={"extra": {"url": url, "attempt": attempts, "error": observed.error}},
            )
            await self._sleep(self.settings.retry_delay)

    def _may_retry(self, attempts: int, started: float) -> bool:
        if attempts > self.settings.retries:
            return False
        return self._clock() - started + self.settings.retry_delay <= self.settings.retry_window
