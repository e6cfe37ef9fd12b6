"""Transformation of raw agent counters into derived performance records.

MetricsTransformer is a pure mapping: no I/O, no state that changes between
calls. Given the same counters and the same "now" it always returns the
same AgentPerformance, which makes it fully unit-testable.

Derivations:
- agentType from the agent id via a known-specialization lexicon
- throughput from request count and recency of last use
- latency average plus estimated (or backend-measured) percentiles
- error rate and an exact per-category error breakdown
- task distribution from a per-type weight table
- trends from backend history, else from TrendSynthesizer
"""

from collections.abc import Callable, Sequence
from datetime import UTC, datetime

import structlog

from src.metrics.models import (
    AgentPerformance,
    ErrorMetrics,
    EstimatedPercentiles,
    MeasuredPercentiles,
    MetricPoint,
    PerformanceMetrics,
    RawAgentCounters,
    ResourceUsage,
    ResponseTimeMetrics,
    SuccessRateMetrics,
    ThroughputMetrics,
    TimeSeries,
)
from src.metrics.trends import TrendSynthesizer

logger = structlog.get_logger(__name__)

DEFAULT_AGENT_TYPE = "general-agent"

# Known agent specializations, in priority order for equal-length matches
AGENT_TYPE_LEXICON: tuple[str, ...] = (
    "python-pro",
    "data-analyst",
    "frontend-developer",
    "devops-engineer",
    "code-reviewer",
    "security-auditor",
    "backend-architect",
    "database-optimizer",
    "javascript-pro",
    "typescript-pro",
    "java-pro",
    "cpp-pro",
    "rust-pro",
    "golang-pro",
    "mobile-developer",
    "flutter-expert",
    "ios-developer",
    "android-developer",
    "test-automator",
    "performance-engineer",
)

# Error categories as (name, percent); the last one takes the remainder
ERROR_CATEGORY_SHARES: tuple[tuple[str, int], ...] = (
    ("timeout", 30),
    ("validation", 20),
    ("execution", 40),
    ("resource", 10),
)

GENERIC_TASK_DISTRIBUTION: dict[str, float] = {
    "code_analysis": 30.0,
    "data_processing": 25.0,
    "report_generation": 20.0,
    "optimization": 15.0,
    "monitoring": 10.0,
}

TASK_DISTRIBUTIONS: dict[str, dict[str, float]] = {
    "python-pro": {
        "code_analysis": 35.0,
        "code_generation": 30.0,
        "optimization": 20.0,
        "testing": 15.0,
    },
    "data-analyst": {
        "data_processing": 40.0,
        "report_generation": 30.0,
        "visualization": 20.0,
        "monitoring": 10.0,
    },
    "frontend-developer": {
        "ui_implementation": 45.0,
        "code_analysis": 20.0,
        "testing": 20.0,
        "optimization": 15.0,
    },
    "devops-engineer": {
        "deployment": 35.0,
        "monitoring": 30.0,
        "optimization": 20.0,
        "incident_response": 15.0,
    },
    "code-reviewer": {
        "code_analysis": 55.0,
        "report_generation": 25.0,
        "testing": 20.0,
    },
    "security-auditor": {
        "vulnerability_scanning": 40.0,
        "code_analysis": 35.0,
        "report_generation": 25.0,
    },
    "database-optimizer": {
        "query_optimization": 50.0,
        "data_processing": 30.0,
        "monitoring": 20.0,
    },
}

SUCCESS_RATE_BOUNDS = (0.5, 1.0)
SUCCESS_RATE_JITTER = 0.05


def detect_agent_type(agent_id: str, lexicon: Sequence[str] = AGENT_TYPE_LEXICON) -> str:
    """Match an agent id against the known-specialization lexicon.

    The longest lexicon entry contained in the id wins; among equally long
    matches the one listed first wins.

    Args:
        agent_id: Agent identifier, e.g. "python-pro-2".
        lexicon: Known agent types.

    Returns:
        Matched agent type or "general-agent".
    """
    normalized = agent_id.lower()
    best: str | None = None
    for candidate in lexicon:
        if candidate in normalized and (best is None or len(candidate) > len(best)):
            best = candidate
    return best or DEFAULT_AGENT_TYPE


def error_breakdown(count: int) -> dict[str, int]:
    """Split an error count across fixed categories.

    Integer floor is applied to every category but the last, which absorbs
    the remainder so the buckets always sum to ``count`` exactly.
    """
    count = max(0, count)
    breakdown: dict[str, int] = {}
    assigned = 0
    for name, percent in ERROR_CATEGORY_SHARES[:-1]:
        share = count * percent // 100
        breakdown[name] = share
        assigned += share
    breakdown[ERROR_CATEGORY_SHARES[-1][0]] = count - assigned
    return breakdown


def requests_per_minute(requests: int, last_used_at: datetime | None, now: datetime) -> float:
    """Estimate throughput from request count and recency of last use.

    Zero when nothing has been processed or the agent was never used.
    """
    if requests <= 0 or last_used_at is None:
        return 0.0
    hours_since_last_use = (now - last_used_at).total_seconds() / 3600
    return requests / max(1.0, hours_since_last_use) / 60


class MetricsTransformer:
    """Maps RawAgentCounters to AgentPerformance.

    Example:
        transformer = MetricsTransformer(synthesizer=TrendSynthesizer(seed=7))
        record = transformer.transform(raw)
        print(record.errors.rate, record.performance.throughput.requests_per_minute)
    """

    def __init__(
        self,
        synthesizer: TrendSynthesizer | None = None,
        *,
        default_response_time_ms: float = 0.0,
        cost_per_1k_tokens: float = 0.02,
        lexicon: Sequence[str] = AGENT_TYPE_LEXICON,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the transformer.

        Args:
            synthesizer: Trend synthesizer for metrics without history.
            default_response_time_ms: Average latency when duration is unknown.
            cost_per_1k_tokens: USD cost per thousand tokens.
            lexicon: Known agent types for type detection.
            clock: Source of "now"; defaults to the UTC wall clock.
        """
        self._clock = clock or (lambda: datetime.now(UTC))
        self._synthesizer = synthesizer or TrendSynthesizer(clock=self._clock)
        self.default_response_time_ms = default_response_time_ms
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self.lexicon = tuple(lexicon)

    def transform(
        self,
        raw: RawAgentCounters,
        *,
        now: datetime | None = None,
        resources: ResourceUsage | None = None,
    ) -> AgentPerformance:
        """Derive a performance record from raw counters.

        Args:
            raw: Counters for one agent.
            now: Reference time; defaults to the clock.
            resources: Known CPU/memory figures. Cost is always derived
                from tokens.

        Returns:
            AgentPerformance satisfying the rate, breakdown, percentile
            ordering and zero-throughput invariants.
        """
        now = now or self._clock()
        agent_type = detect_agent_type(raw.agent_id, self.lexicon)
        requests = raw.requests

        error_count = raw.errors
        if error_count > requests:
            logger.warning(
                "data_quality_warning",
                agent_id=raw.agent_id,
                field="errors",
                value=repr(error_count),
                reason="errors_exceed_requests",
            )
            error_count = requests
        error_rate = min(1.0, max(0.0, error_count / max(requests, 1)))
        success_rate = 1.0 - error_rate

        average = self._average_response_time(raw)
        throughput = requests_per_minute(requests, raw.last_used_at, now)

        history = raw.history
        response_trend = self._trend(
            history.response_time if history else [],
            average,
            key=f"{raw.agent_id}:response_time",
            bounds=(0.0, None),
            now=now,
        )
        success_trend = self._trend(
            history.success_rate if history else [],
            success_rate,
            key=f"{raw.agent_id}:success_rate",
            bounds=SUCCESS_RATE_BOUNDS,
            jitter=SUCCESS_RATE_JITTER,
            now=now,
        )
        throughput_trend = self._trend(
            history.throughput if history else [],
            throughput,
            key=f"{raw.agent_id}:throughput",
            bounds=(0.0, None),
            now=now,
        )

        if raw.percentiles is not None:
            percentiles: EstimatedPercentiles | MeasuredPercentiles = MeasuredPercentiles(
                p50=raw.percentiles.p50,
                p95=raw.percentiles.p95,
                p99=raw.percentiles.p99,
                sample_count=raw.percentiles.samples,
            )
        else:
            percentiles = EstimatedPercentiles.from_average(average)

        cost = raw.total_tokens / 1000 * self.cost_per_1k_tokens
        base_resources = resources or ResourceUsage()

        return AgentPerformance(
            agent_id=raw.agent_id,
            agent_type=agent_type,
            performance=PerformanceMetrics(
                response_time=ResponseTimeMetrics(
                    average=average,
                    percentiles=percentiles,
                    trend=response_trend,
                ),
                success_rate=SuccessRateMetrics(current=success_rate, trend=success_trend),
                throughput=ThroughputMetrics(
                    requests_per_minute=throughput,
                    trend=throughput_trend,
                ),
            ),
            resources=ResourceUsage(
                cpu_usage=base_resources.cpu_usage,
                memory_usage=base_resources.memory_usage,
                cost=cost,
            ),
            errors=ErrorMetrics(
                count=error_count,
                rate=error_rate,
                breakdown=error_breakdown(error_count),
            ),
            task_distribution=dict(TASK_DISTRIBUTIONS.get(agent_type, GENERIC_TASK_DISTRIBUTION)),
            is_active=raw.is_active,
            last_used_at=raw.last_used_at,
            total_tokens=raw.total_tokens,
            total_requests=requests,
        )

    def transform_all(
        self,
        raws: Sequence[RawAgentCounters],
        *,
        now: datetime | None = None,
        resources: dict[str, ResourceUsage] | None = None,
    ) -> list[AgentPerformance]:
        """Transform a batch against a single reference time."""
        now = now or self._clock()
        resources = resources or {}
        return [
            self.transform(raw, now=now, resources=resources.get(raw.agent_id))
            for raw in raws
        ]

    def _average_response_time(self, raw: RawAgentCounters) -> float:
        if raw.total_duration_ms > 0:
            return raw.total_duration_ms / max(raw.requests, 1)
        if raw.avg_duration_ms is not None:
            return raw.avg_duration_ms
        return self.default_response_time_ms

    def _trend(
        self,
        measured: list[MetricPoint],
        baseline: float,
        *,
        key: str,
        bounds: tuple[float | None, float | None],
        now: datetime,
        jitter: float | None = None,
    ) -> TimeSeries:
        if measured:
            return _measured_series(measured)
        return self._synthesizer.synthesize(
            baseline,
            bounds=bounds,
            jitter=jitter,
            key=key,
            now=now,
        )


def _measured_series(points: list[MetricPoint]) -> TimeSeries:
    # Backend samples may arrive unordered or with duplicate timestamps
    unique: dict[datetime, MetricPoint] = {}
    for point in points:
        timestamp = point.timestamp if point.timestamp.tzinfo else point.timestamp.replace(tzinfo=UTC)
        unique[timestamp] = MetricPoint(timestamp=timestamp, value=point.value)
    ordered = tuple(unique[ts] for ts in sorted(unique))
    return TimeSeries(points=ordered, synthetic=False)
