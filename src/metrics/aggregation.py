"""Cross-agent rankings and system-wide KPIs.

AggregationEngine reduces a snapshot of AgentPerformance records to the
figures the dashboard shows above the per-agent detail: a ranked list of
top performers, one comparison row per agent, and four headline KPIs.
Every aggregate is 0 for an empty snapshot, never NaN.
"""

import math
from collections.abc import Sequence

from pydantic import Field

from src.metrics.models import AgentPerformance, FrozenModel

# Success rate above which an agent counts towards activeAgents
ACTIVE_SUCCESS_THRESHOLD = 0.8
DEFAULT_TOP_PERFORMERS = 5


class ComparisonRow(FrozenModel):
    """Side-by-side figures for one agent.

    Attributes:
        agent_id: Agent identifier.
        name: Display name (the agent type).
        response_time: Average response time in ms.
        success_rate: Success rate in percent.
        throughput: Requests per minute.
        cost: USD cost.
        error_rate: Error rate in percent.
    """

    agent_id: str
    name: str
    response_time: float
    success_rate: float
    throughput: float
    cost: float
    error_rate: float


class SystemKpis(FrozenModel):
    """Headline figures across all agents."""

    total_agents: int = 0
    active_agents: int = 0
    avg_response_time: float = 0.0
    total_cost: float = 0.0
    avg_success_rate: float = 0.0


class AggregateView(FrozenModel):
    """Everything the aggregation engine derives from one snapshot."""

    top_performers: tuple[AgentPerformance, ...] = ()
    comparison_rows: tuple[ComparisonRow, ...] = ()
    kpis: SystemKpis = Field(default_factory=SystemKpis)


def ranking_key(agent: AgentPerformance) -> tuple[float, float, str]:
    """Sort key: success rate desc, average response time asc, id asc."""
    return (
        -agent.performance.success_rate.current,
        agent.performance.response_time.average,
        agent.agent_id,
    )


def _mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return math.fsum(values) / len(values)


class AggregationEngine:
    """Computes rankings and KPIs from derived agent records.

    Example:
        engine = AggregationEngine(top_n=3)
        view = engine.aggregate(agents)
        print(view.kpis.active_agents, [a.agent_id for a in view.top_performers])
    """

    def __init__(self, top_n: int = DEFAULT_TOP_PERFORMERS) -> None:
        self.top_n = max(0, top_n)

    def aggregate(self, agents: Sequence[AgentPerformance]) -> AggregateView:
        """Aggregate a snapshot.

        Args:
            agents: Derived records, possibly empty.

        Returns:
            AggregateView with top performers, comparison rows and KPIs.
        """
        return AggregateView(
            top_performers=tuple(self.top_performers(agents)),
            comparison_rows=tuple(self.comparison_rows(agents)),
            kpis=self.kpis(agents),
        )

    def top_performers(
        self, agents: Sequence[AgentPerformance], limit: int | None = None
    ) -> list[AgentPerformance]:
        """Rank agents and take the first ``limit`` (default top_n)."""
        limit = self.top_n if limit is None else max(0, limit)
        return sorted(agents, key=ranking_key)[:limit]

    def comparison_rows(self, agents: Sequence[AgentPerformance]) -> list[ComparisonRow]:
        """One display row per agent, in input order."""
        return [
            ComparisonRow(
                agent_id=agent.agent_id,
                name=agent.agent_type,
                response_time=agent.performance.response_time.average,
                success_rate=agent.performance.success_rate.current * 100,
                throughput=agent.performance.throughput.requests_per_minute,
                cost=agent.resources.cost,
                error_rate=agent.errors.rate * 100,
            )
            for agent in agents
        ]

    def kpis(self, agents: Sequence[AgentPerformance]) -> SystemKpis:
        """Headline KPIs; all zero when there are no agents."""
        return SystemKpis(
            total_agents=len(agents),
            active_agents=sum(
                1
                for agent in agents
                if agent.performance.success_rate.current > ACTIVE_SUCCESS_THRESHOLD
            ),
            avg_response_time=_mean([a.performance.response_time.average for a in agents]),
            total_cost=math.fsum(a.resources.cost for a in agents),
            avg_success_rate=_mean([a.performance.success_rate.current for a in agents]),
        )
