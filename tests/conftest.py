"""Shared fixtures for metrics pipeline tests."""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from src.metrics.errors import EmptyDatasetError, MetricsPipelineError, NetworkError
from src.metrics.fallback import build_fallback_dataset
from src.metrics.fetcher import FetchResult
from src.metrics.models import DataSource, RawAgentCounters

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock for deterministic time."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class ScriptedFetcher:
    """Fetcher double returning scripted results in order.

    The last result repeats once the script is exhausted. When ``gate`` is
    set, every fetch waits for it before returning.
    """

    def __init__(self, results: list[FetchResult]) -> None:
        self.results = list(results)
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def fetch(self) -> FetchResult:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


def live_result(records: list[dict[str, Any]], fetched_at: datetime = NOW) -> FetchResult:
    return FetchResult(
        agents=[RawAgentCounters.model_validate(r) for r in records],
        source=DataSource.LIVE,
        fetched_at=fetched_at,
    )


def fallback_result(
    error: MetricsPipelineError | None = None, seed: int = 42, now: datetime = NOW
) -> FetchResult:
    dataset = build_fallback_dataset(seed, now)
    return FetchResult(
        agents=dataset.agents,
        source=DataSource.FALLBACK,
        error=error or NetworkError("Connection failed", url="http://test/api/metrics/agents"),
        fetched_at=now,
        resources=dataset.resources,
    )


def empty_result(fetched_at: datetime = NOW) -> FetchResult:
    return FetchResult(
        agents=[],
        source=DataSource.LIVE,
        error=EmptyDatasetError("No agent data available"),
        fetched_at=fetched_at,
    )


SAMPLE_RECORDS: list[dict[str, Any]] = [
    {
        "agentId": "python-pro",
        "requests": 50,
        "errors": 2,
        "totalDuration": 40000,
        "lastUsed": (NOW - timedelta(minutes=30)).isoformat(),
        "isActive": True,
        "totalTokens": 60000,
    },
    {
        "agentId": "data-analyst",
        "requests": 0,
        "errors": 0,
    },
    {
        "agentId": "security-auditor",
        "requests": 20,
        "errors": 5,
        "totalDuration": 48000,
        "lastUsed": (NOW - timedelta(hours=3)).isoformat(),
        "isActive": False,
        "totalTokens": 25000,
    },
]


@pytest.fixture
def clock() -> FakeClock:
    """Clock frozen at NOW."""
    return FakeClock()


@pytest.fixture
def sample_records() -> list[dict[str, Any]]:
    """Three raw records: healthy, idle, error-prone."""
    return [dict(r) for r in SAMPLE_RECORDS]


@pytest.fixture
def make_fetcher() -> Callable[..., ScriptedFetcher]:
    """Factory for scripted fetchers."""

    def factory(*results: FetchResult) -> ScriptedFetcher:
        return ScriptedFetcher(list(results))

    return factory


@pytest.fixture
def make_live_result() -> Callable[..., FetchResult]:
    """Factory for live fetch results from raw record dicts."""
    return live_result


@pytest.fixture
def make_fallback_result() -> Callable[..., FetchResult]:
    """Factory for fallback fetch results."""
    return fallback_result


@pytest.fixture
def make_empty_result() -> Callable[..., FetchResult]:
    """Factory for empty-dataset fetch results."""
    return empty_result
