"""Agent performance metrics pipeline.

This module provides:
- MetricsFetcher: monitoring endpoint client with fallback substitution
- MetricsTransformer: raw counters to derived AgentPerformance records
- TrendSynthesizer: fixed-length synthetic trends when history is missing
- AggregationEngine: top performers, comparison rows and KPIs
- PollingController: scheduled, coalesced refresh owning the snapshot
- DashboardViewModel: selection, view mode and render data
"""

from src.metrics.aggregation import (
    AggregateView,
    AggregationEngine,
    ComparisonRow,
    SystemKpis,
)
from src.metrics.errors import (
    EmptyDatasetError,
    MetricsPipelineError,
    NetworkError,
    SchemaError,
)
from src.metrics.fetcher import BackendHealth, FetchResult, MetricsFetcher
from src.metrics.models import (
    AgentPerformance,
    DataSource,
    EstimatedPercentiles,
    MeasuredPercentiles,
    MetricPoint,
    RawAgentCounters,
    TimeSeries,
)
from src.metrics.polling import (
    ControllerState,
    ControllerStatus,
    MetricsSnapshot,
    PollingController,
    Ticker,
)
from src.metrics.transformer import MetricsTransformer
from src.metrics.trends import TrendSynthesizer
from src.metrics.view import DashboardView, DashboardViewModel, ViewMode

__all__ = [
    # Models
    "AgentPerformance",
    "DataSource",
    "EstimatedPercentiles",
    "MeasuredPercentiles",
    "MetricPoint",
    "RawAgentCounters",
    "TimeSeries",
    # Errors
    "EmptyDatasetError",
    "MetricsPipelineError",
    "NetworkError",
    "SchemaError",
    # Pipeline stages
    "AggregateView",
    "AggregationEngine",
    "BackendHealth",
    "ComparisonRow",
    "FetchResult",
    "MetricsFetcher",
    "MetricsTransformer",
    "SystemKpis",
    "TrendSynthesizer",
    # Polling and presentation
    "ControllerState",
    "ControllerStatus",
    "DashboardView",
    "DashboardViewModel",
    "MetricsSnapshot",
    "PollingController",
    "Ticker",
    "ViewMode",
]
