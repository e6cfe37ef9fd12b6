"""Monitoring endpoint client with timeout and fallback substitution.

This module provides:
- MetricsFetcher: async client for GET {base_url}/api/metrics/agents
- FetchResult: counters plus provenance and the cause of any degradation
- parse_metrics_payload: shape validation of the endpoint response

fetch() never raises. On network, status or schema problems, or any
unexpected client error, it returns the deterministic fallback dataset
tagged as synthetic together with the error that caused it, so the caller
can log and show a warning.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from src.metrics.errors import EmptyDatasetError, MetricsPipelineError, NetworkError, SchemaError
from src.metrics.fallback import build_fallback_dataset
from src.metrics.models import DataSource, RawAgentCounters, ResourceUsage

logger = structlog.get_logger(__name__)

AGENTS_ENDPOINT = "/api/metrics/agents"
HEALTH_ENDPOINT = "/health"


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one fetch.

    Attributes:
        agents: Raw counters, live or fallback.
        source: Whether the counters are live or the fallback roster.
        error: Cause of the fallback or empty state, None on success.
        fetched_at: When the fetch completed.
        resources: CPU/memory figures keyed by agent id, when known.
        reported_total_agents: totalAgents as reported by the backend.
        reported_active_agents: activeAgents as reported by the backend.
    """

    agents: list[RawAgentCounters]
    source: DataSource = DataSource.LIVE
    error: MetricsPipelineError | None = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    resources: dict[str, ResourceUsage] = field(default_factory=dict)
    reported_total_agents: int | None = None
    reported_active_agents: int | None = None

    @property
    def is_synthetic(self) -> bool:
        """True when the counters come from the fallback roster."""
        return self.source == DataSource.FALLBACK

    @property
    def is_empty(self) -> bool:
        """True when the backend answered but reported no agents."""
        return isinstance(self.error, EmptyDatasetError)


@dataclass(frozen=True)
class BackendHealth:
    """Result of probing the backend health endpoint."""

    reachable: bool
    status: str | None = None
    error: str | None = None


def parse_metrics_payload(payload: Any, url: str | None = None) -> tuple[list[RawAgentCounters], dict[str, Any]]:
    """Validate the agents endpoint response.

    Individual records with malformed fields are repaired by the model;
    records that are not objects or lack an id are skipped with a warning.
    An empty or null ``metrics`` list is a valid empty answer; a body
    without the field at all is not.

    Args:
        payload: Decoded JSON body.
        url: URL the payload came from, for error context.

    Returns:
        Tuple of (counters, envelope fields).

    Raises:
        SchemaError: If the envelope is malformed or every record is invalid.
    """
    if not isinstance(payload, dict):
        raise SchemaError(
            f"Expected a JSON object, got {type(payload).__name__}",
            url=url,
        )

    if "metrics" not in payload:
        raise SchemaError(
            "Response has no 'metrics' field",
            url=url,
            details={"keys": sorted(str(key) for key in payload)},
        )
    records = payload["metrics"]
    if records is None:
        records = []
    if not isinstance(records, list):
        raise SchemaError(
            f"Expected 'metrics' to be a list, got {type(records).__name__}",
            url=url,
        )

    agents: list[RawAgentCounters] = []
    rejected = 0
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            rejected += 1
            logger.warning("metrics_record_rejected", index=index, reason="not_an_object")
            continue
        try:
            agents.append(RawAgentCounters.model_validate(record))
        except ValidationError as e:
            rejected += 1
            logger.warning(
                "metrics_record_rejected",
                index=index,
                reason="invalid_record",
                error=str(e),
            )

    if records and not agents:
        raise SchemaError(
            "No valid agent records in payload",
            url=url,
            details={"rejected": rejected},
        )

    envelope = {
        "timestamp": payload.get("timestamp"),
        "total_agents": _optional_int(payload.get("totalAgents")),
        "active_agents": _optional_int(payload.get("activeAgents")),
        "rejected": rejected,
    }
    return agents, envelope


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return int(value)
    return None


class MetricsFetcher:
    """Async client for the monitoring endpoint.

    Owns the request timeout and the fallback substitution; holds no cache.

    Example:
        async with MetricsFetcher("http://localhost:4001") as fetcher:
            result = await fetcher.fetch()
            if result.is_synthetic:
                print(f"Showing demo data: {result.error}")
    """

    def __init__(
        self,
        base_url: str = "http://localhost:4001",
        *,
        timeout_seconds: float = 10.0,
        retry_attempts: int = 2,
        retry_wait_seconds: float = 0.2,
        fallback_seed: int = 42,
        check_health_on_empty: bool = True,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            base_url: Monitoring backend base URL.
            timeout_seconds: Overall time budget for one fetch, retries included.
            retry_attempts: Attempts for transient failures.
            retry_wait_seconds: Base of the exponential backoff.
            fallback_seed: Seed of the fallback roster.
            check_health_on_empty: Check /health when no agents are reported.
            http_client: Optional preconfigured HTTP client.
            clock: Source of "now"; defaults to the UTC wall clock.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = max(1, retry_attempts)
        self.retry_wait_seconds = retry_wait_seconds
        self.fallback_seed = fallback_seed
        self.check_health_on_empty = check_health_on_empty
        self._client = http_client
        self._owns_client = http_client is None
        self._clock = clock or (lambda: datetime.now(UTC))
        self._logger = logger.bind(component="metrics_fetcher")

    @property
    def agents_url(self) -> str:
        return f"{self.base_url}{AGENTS_ENDPOINT}"

    @property
    def health_url(self) -> str:
        return f"{self.base_url}{HEALTH_ENDPOINT}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx client."""
        if self._client is None or (self._owns_client and self._client.is_closed):
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch(self) -> FetchResult:
        """Fetch raw counters for all agents.

        The request, its retries and the /health check on an empty answer
        all share one deadline of ``timeout_seconds``.

        Returns:
            FetchResult with live counters, an empty live result carrying
            EmptyDatasetError, or the fallback roster carrying the
            NetworkError/SchemaError that caused it.
        """
        url = self.agents_url
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        try:
            payload = await asyncio.wait_for(
                self._get_with_retry(url),
                timeout=self.timeout_seconds,
            )
            agents, envelope = parse_metrics_payload(payload, url=url)
        except TimeoutError:
            return self._fallback(
                NetworkError(
                    f"Timed out after {self.timeout_seconds}s",
                    url=url,
                    details={"timeout_seconds": self.timeout_seconds},
                )
            )
        except (NetworkError, SchemaError) as e:
            return self._fallback(e)
        except Exception as e:
            self._logger.exception("metrics_fetch_unexpected_error", url=url)
            return self._fallback(
                NetworkError(
                    f"Unexpected error: {e}",
                    url=url,
                    details={"exception_type": type(e).__name__},
                )
            )

        if not agents:
            return await self._empty_result(url, envelope, max(0.0, deadline - loop.time()))

        self._logger.info(
            "metrics_fetched",
            url=url,
            agents=len(agents),
            rejected=envelope["rejected"],
        )
        return FetchResult(
            agents=agents,
            source=DataSource.LIVE,
            fetched_at=self._clock(),
            reported_total_agents=envelope["total_agents"],
            reported_active_agents=envelope["active_agents"],
        )

    async def check_health(self, timeout_seconds: float | None = None) -> BackendHealth:
        """Check the backend health endpoint.

        Args:
            timeout_seconds: Time budget for the check; defaults to the
                fetcher timeout.

        Returns:
            BackendHealth; never raises.
        """
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        try:
            client = await self._get_client()
            response = await asyncio.wait_for(
                client.get(self.health_url),
                timeout=timeout,
            )
        except TimeoutError:
            return BackendHealth(reachable=False, error="timeout")
        except httpx.HTTPError as e:
            return BackendHealth(reachable=False, error=str(e))
        except Exception as e:
            self._logger.warning(
                "health_check_unexpected_error",
                url=self.health_url,
                error=str(e),
                error_type=type(e).__name__,
            )
            return BackendHealth(reachable=False, error=str(e))

        if response.status_code >= 400:
            return BackendHealth(reachable=False, error=f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            body = {}
        status = body.get("status") if isinstance(body, dict) else None
        return BackendHealth(reachable=True, status=status)

    async def _get_with_retry(self, url: str) -> Any:
        attempt = 0
        async for attempt_context in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait_seconds, max=self.timeout_seconds),
            retry=retry_if_exception(lambda e: isinstance(e, NetworkError) and e.retryable),
            reraise=True,
        ):
            with attempt_context:
                attempt += 1
                if attempt > 1:
                    self._logger.info(
                        "metrics_fetch_retry",
                        url=url,
                        attempt=attempt,
                        max_attempts=self.retry_attempts,
                    )
                return await self._get_json(url)

        # This should not be reached due to reraise=True
        raise RuntimeError("Retry loop exited unexpectedly")

    async def _get_json(self, url: str) -> Any:
        client = await self._get_client()
        self._logger.debug("metrics_request", url=url)

        try:
            response = await client.get(url)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timed out: {e}", url=url) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Connection failed: {e}", url=url) from e

        if response.status_code != 200:
            raise NetworkError(
                f"Monitoring endpoint returned HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise SchemaError(f"Response is not valid JSON: {e}", url=url) from e

    async def _empty_result(
        self, url: str, envelope: dict[str, Any], remaining_seconds: float
    ) -> FetchResult:
        health: BackendHealth | None = None
        if self.check_health_on_empty:
            health = await self.check_health(timeout_seconds=remaining_seconds)
            if not health.reachable:
                return self._fallback(
                    NetworkError(
                        "Backend reported no agents and failed its health check",
                        url=self.health_url,
                        details={"health_error": health.error},
                    )
                )

        error = EmptyDatasetError(
            "No agent data available",
            url=url,
            details={
                "reported_total_agents": envelope["total_agents"],
                "health_status": health.status if health else None,
            },
        )
        self._logger.warning("metrics_empty", **error.to_dict())
        return FetchResult(
            agents=[],
            source=DataSource.LIVE,
            error=error,
            fetched_at=self._clock(),
            reported_total_agents=envelope["total_agents"],
            reported_active_agents=envelope["active_agents"],
        )

    def _fallback(self, error: MetricsPipelineError) -> FetchResult:
        self._logger.warning("metrics_fetch_failed", fallback=True, **error.to_dict())
        now = self._clock()
        dataset = build_fallback_dataset(self.fallback_seed, now)
        return FetchResult(
            agents=dataset.agents,
            source=DataSource.FALLBACK,
            error=error,
            fetched_at=now,
            resources=dataset.resources,
        )

    async def __aenter__(self) -> "MetricsFetcher":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
