"""Data models for the agent metrics pipeline.

This module defines the Pydantic models shared by the fetcher, transformer,
aggregation engine and the dashboard adapter:
- RawAgentCounters: sparse counters as reported by the monitoring endpoint
- TimeSeries / MetricPoint: fixed-spacing trend data for charts
- EstimatedPercentiles / MeasuredPercentiles: latency percentile variants
- AgentPerformance: the derived, comparable record per agent
"""

import math
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

import structlog
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

logger = structlog.get_logger(__name__)

# Fixed multipliers applied to the average when no samples are available
P50_MULTIPLIER = 0.8
P95_MULTIPLIER = 1.5
P99_MULTIPLIER = 2.2


class DataSource(str, Enum):
    """Origin of the counters behind a snapshot."""

    LIVE = "live"
    FALLBACK = "fallback"


class FrozenModel(BaseModel):
    """Immutable model with camelCase aliases for JSON output."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


# ============================================================================
# Time Series
# ============================================================================


class MetricPoint(FrozenModel):
    """A single sample of a metric."""

    timestamp: datetime
    value: float = Field(allow_inf_nan=False)


class TimeSeries(FrozenModel):
    """Ordered metric samples used for charting.

    Attributes:
        points: Samples with strictly increasing timestamps.
        synthetic: True when the series was synthesized rather than measured.
    """

    points: tuple[MetricPoint, ...] = ()
    synthetic: bool = False

    @model_validator(mode="after")
    def _check_ordering(self) -> "TimeSeries":
        for previous, current in zip(self.points, self.points[1:], strict=False):
            if current.timestamp <= previous.timestamp:
                raise ValueError("time series timestamps must be strictly increasing")
        return self

    @property
    def values(self) -> list[float]:
        """Sample values in order."""
        return [p.value for p in self.points]

    @property
    def latest(self) -> MetricPoint | None:
        """Most recent sample, if any."""
        return self.points[-1] if self.points else None

    def __len__(self) -> int:
        return len(self.points)


# ============================================================================
# Latency Percentiles
# ============================================================================


class EstimatedPercentiles(FrozenModel):
    """Percentiles derived from an average via fixed multipliers.

    This is an approximation: no order statistics are computed. It always
    satisfies p50 <= average <= p95 <= p99.
    """

    kind: Literal["estimated"] = "estimated"
    p50: float = Field(ge=0)
    p95: float = Field(ge=0)
    p99: float = Field(ge=0)

    @classmethod
    def from_average(cls, average: float) -> "EstimatedPercentiles":
        """Estimate percentiles from a non-negative average latency."""
        average = max(0.0, average)
        return cls(
            p50=average * P50_MULTIPLIER,
            p95=average * P95_MULTIPLIER,
            p99=average * P99_MULTIPLIER,
        )


class MeasuredPercentiles(FrozenModel):
    """Percentiles reported by the backend from real samples."""

    kind: Literal["measured"] = "measured"
    p50: float = Field(ge=0)
    p95: float = Field(ge=0)
    p99: float = Field(ge=0)
    sample_count: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_ordering(self) -> "MeasuredPercentiles":
        if not self.p50 <= self.p95 <= self.p99:
            raise ValueError("percentiles must satisfy p50 <= p95 <= p99")
        return self


Percentiles = Annotated[EstimatedPercentiles | MeasuredPercentiles, Field(discriminator="kind")]


# ============================================================================
# Derived Records
# ============================================================================


class ResponseTimeMetrics(FrozenModel):
    """Latency figures for an agent, in milliseconds."""

    average: float = Field(ge=0)
    percentiles: Percentiles
    trend: TimeSeries = Field(default_factory=TimeSeries)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def p50(self) -> float:
        return self.percentiles.p50

    @computed_field  # type: ignore[prop-decorator]
    @property
    def p95(self) -> float:
        return self.percentiles.p95

    @computed_field  # type: ignore[prop-decorator]
    @property
    def p99(self) -> float:
        return self.percentiles.p99


class SuccessRateMetrics(FrozenModel):
    """Fraction of requests that completed without error."""

    current: float = Field(ge=0, le=1)
    trend: TimeSeries = Field(default_factory=TimeSeries)


class ThroughputMetrics(FrozenModel):
    """Requests processed per minute."""

    requests_per_minute: float = Field(ge=0)
    trend: TimeSeries = Field(default_factory=TimeSeries)


class PerformanceMetrics(FrozenModel):
    """Performance indicators grouped for display."""

    response_time: ResponseTimeMetrics
    success_rate: SuccessRateMetrics
    throughput: ThroughputMetrics


class ResourceUsage(FrozenModel):
    """Resource consumption of an agent.

    Attributes:
        cpu_usage: CPU utilisation in percent.
        memory_usage: Resident memory in MB.
        cost: Spend in USD attributed to the agent's tokens.
    """

    cpu_usage: float = Field(default=0.0, ge=0)
    memory_usage: float = Field(default=0.0, ge=0)
    cost: float = Field(default=0.0, ge=0)


class ErrorMetrics(FrozenModel):
    """Error count, rate and per-category composition."""

    count: int = Field(ge=0)
    rate: float = Field(ge=0, le=1)
    breakdown: dict[str, int] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_breakdown(self) -> "ErrorMetrics":
        if self.breakdown and sum(self.breakdown.values()) != self.count:
            raise ValueError("error breakdown must sum to the error count")
        return self


class AgentPerformance(FrozenModel):
    """Derived, comparable performance record for one agent."""

    agent_id: str
    agent_type: str
    performance: PerformanceMetrics
    resources: ResourceUsage = Field(default_factory=ResourceUsage)
    errors: ErrorMetrics
    task_distribution: dict[str, float] = Field(default_factory=dict)
    is_active: bool = False
    last_used_at: datetime | None = None
    total_tokens: int = Field(default=0, ge=0)
    total_requests: int = Field(default=0, ge=0)


# ============================================================================
# Raw Counters
# ============================================================================


def _data_quality_warning(info: ValidationInfo, value: Any, reason: str) -> None:
    logger.warning(
        "data_quality_warning",
        agent_id=info.data.get("agent_id"),
        field=info.field_name,
        value=repr(value),
        reason=reason,
    )


class RawHistory(FrozenModel):
    """Measured series optionally supplied by the backend."""

    response_time: list[MetricPoint] = Field(default_factory=list)
    success_rate: list[MetricPoint] = Field(default_factory=list)
    throughput: list[MetricPoint] = Field(default_factory=list)


class RawPercentiles(FrozenModel):
    """Measured latency percentiles optionally supplied by the backend."""

    p50: float = Field(ge=0, allow_inf_nan=False)
    p95: float = Field(ge=0, allow_inf_nan=False)
    p99: float = Field(ge=0, allow_inf_nan=False)
    samples: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_ordering(self) -> "RawPercentiles":
        if not self.p50 <= self.p95 <= self.p99:
            raise ValueError("percentiles must satisfy p50 <= p95 <= p99")
        return self


class RawAgentCounters(FrozenModel):
    """Raw per-agent counters from the monitoring endpoint.

    Every field except the id may be missing and defaults to zero/null.
    Malformed values (negative or non-numeric counts, unparseable timestamps)
    are replaced by their default and logged as data-quality warnings rather
    than rejected.
    """

    agent_id: str = Field(validation_alias=AliasChoices("agentId", "agent_id", "id"))
    requests: int = 0
    errors: int = 0
    total_duration_ms: float = Field(
        default=0.0,
        validation_alias=AliasChoices("totalDurationMs", "totalDuration", "total_duration_ms"),
    )
    avg_duration_ms: float | None = Field(
        default=None,
        validation_alias=AliasChoices("avgDurationMs", "avgDuration", "avg_duration_ms"),
    )
    last_used_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("lastUsedAt", "lastUsed", "last_used_at"),
    )
    is_active: bool = Field(default=False, validation_alias=AliasChoices("isActive", "is_active"))
    total_tokens: int = Field(
        default=0, validation_alias=AliasChoices("totalTokens", "total_tokens")
    )
    history: RawHistory | None = None
    percentiles: RawPercentiles | None = None

    @field_validator("agent_id", mode="before")
    @classmethod
    def _normalize_agent_id(cls, value: Any) -> str:
        if value is None or isinstance(value, bool | dict | list):
            raise ValueError("agentId is required")
        agent_id = str(value).strip()
        if not agent_id:
            raise ValueError("agentId is required")
        return agent_id

    @field_validator("requests", "errors", "total_tokens", mode="before")
    @classmethod
    def _coerce_count(cls, value: Any, info: ValidationInfo) -> int:
        if value is None:
            return 0
        try:
            number = float(value)
        except (TypeError, ValueError):
            _data_quality_warning(info, value, "not_numeric")
            return 0
        if not math.isfinite(number) or number < 0:
            _data_quality_warning(info, value, "negative_or_non_finite")
            return 0
        return int(number)

    @field_validator("total_duration_ms", "avg_duration_ms", mode="before")
    @classmethod
    def _coerce_duration(cls, value: Any, info: ValidationInfo) -> float | None:
        if value is None:
            return None if info.field_name == "avg_duration_ms" else 0.0
        try:
            number = float(value)
        except (TypeError, ValueError):
            _data_quality_warning(info, value, "not_numeric")
            return None if info.field_name == "avg_duration_ms" else 0.0
        if not math.isfinite(number) or number < 0:
            _data_quality_warning(info, value, "negative_or_non_finite")
            return None if info.field_name == "avg_duration_ms" else 0.0
        return number

    @field_validator("last_used_at", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any, info: ValidationInfo) -> datetime | None:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=UTC)
        if isinstance(value, int | float) and not isinstance(value, bool):
            # Epoch milliseconds, as produced by Date.now()
            try:
                return datetime.fromtimestamp(value / 1000, UTC)
            except (OverflowError, OSError, ValueError):
                _data_quality_warning(info, value, "timestamp_out_of_range")
                return None
        if isinstance(value, str):
            try:
                parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                _data_quality_warning(info, value, "unparseable_timestamp")
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
        _data_quality_warning(info, value, "unparseable_timestamp")
        return None

    @field_validator("is_active", mode="before")
    @classmethod
    def _coerce_flag(cls, value: Any, info: ValidationInfo) -> bool:
        if value is None:
            return False
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "1", "yes"):
            return True
        if isinstance(value, str) and value.lower() in ("false", "0", "no", ""):
            return False
        if isinstance(value, int | float):
            return bool(value)
        _data_quality_warning(info, value, "not_boolean")
        return False

    @field_validator("history", mode="before")
    @classmethod
    def _lenient_history(cls, value: Any, info: ValidationInfo) -> RawHistory | None:
        if value is None:
            return None
        try:
            return RawHistory.model_validate(value)
        except ValidationError:
            _data_quality_warning(info, value, "malformed_history")
            return None

    @field_validator("percentiles", mode="before")
    @classmethod
    def _lenient_percentiles(cls, value: Any, info: ValidationInfo) -> RawPercentiles | None:
        if value is None:
            return None
        try:
            return RawPercentiles.model_validate(value)
        except ValidationError:
            _data_quality_warning(info, value, "malformed_percentiles")
            return None
