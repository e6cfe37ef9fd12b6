"""Presentation-facing view model over the polling controller.

DashboardViewModel is what a dashboard binds to: the read-only agent list,
the selected agent (with fallback to the first agent when a refresh drops
it), the view mode, and a refresh action. Each ViewMode has exactly one
render-data selector, dispatched through a table that covers every mode.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal

import structlog
from pydantic import Field

from src.metrics.aggregation import ComparisonRow, SystemKpis
from src.metrics.models import AgentPerformance, FrozenModel, TimeSeries
from src.metrics.polling import ControllerStatus, MetricsSnapshot, PollingController

logger = structlog.get_logger(__name__)


class ViewMode(str, Enum):
    """Dashboard layouts."""

    OVERVIEW = "overview"
    DETAILED = "detailed"
    COMPARISON = "comparison"


class ChartBar(FrozenModel):
    """A labelled value for bar charts."""

    label: str
    value: float


class OverviewData(FrozenModel):
    """KPIs, leaders, cost per agent and the selected agent's trends."""

    mode: Literal["overview"] = "overview"
    kpis: SystemKpis
    top_performers: list[AgentPerformance] = Field(default_factory=list)
    cost_per_agent: list[ChartBar] = Field(default_factory=list)
    response_time_trend: TimeSeries | None = None
    success_rate_trend: TimeSeries | None = None


class AgentOption(FrozenModel):
    """Entry of the agent selector."""

    agent_id: str
    label: str


class DetailedData(FrozenModel):
    """Everything shown for the selected agent."""

    mode: Literal["detailed"] = "detailed"
    agent_options: list[AgentOption] = Field(default_factory=list)
    agent: AgentPerformance | None = None
    task_distribution: list[ChartBar] = Field(default_factory=list)
    error_breakdown: list[ChartBar] = Field(default_factory=list)


class ComparisonData(FrozenModel):
    """Side-by-side rows for all agents."""

    mode: Literal["comparison"] = "comparison"
    rows: list[ComparisonRow] = Field(default_factory=list)


RenderData = Annotated[OverviewData | DetailedData | ComparisonData, Field(discriminator="mode")]


class DashboardView(FrozenModel):
    """Render data plus the status banner."""

    view_mode: ViewMode
    selected_agent_id: str | None
    status: ControllerStatus
    data: RenderData


def _label(key: str) -> str:
    return key.replace("_", " ")


class DashboardViewModel:
    """Selection, view mode and render data over a PollingController.

    Example:
        view_model = DashboardViewModel(controller)
        await view_model.refresh()
        view_model.view_mode = ViewMode.DETAILED
        view = view_model.render()
    """

    def __init__(
        self,
        controller: PollingController,
        view_mode: ViewMode = ViewMode.OVERVIEW,
    ) -> None:
        self._controller = controller
        self._view_mode = view_mode
        self._selected_agent_id: str | None = None
        self._selectors = {
            ViewMode.OVERVIEW: self._overview_data,
            ViewMode.DETAILED: self._detailed_data,
            ViewMode.COMPARISON: self._comparison_data,
        }
        missing = set(ViewMode) - set(self._selectors)
        if missing:
            raise RuntimeError(f"No selector for view modes: {sorted(m.value for m in missing)}")
        self._unsubscribe = controller.subscribe(self._on_snapshot)
        self._reconcile_selection(controller.snapshot)

    @property
    def controller(self) -> PollingController:
        return self._controller

    @property
    def agents(self) -> tuple[AgentPerformance, ...]:
        """Current agents; the tuple is immutable and replaced on refresh."""
        return self._controller.agents

    @property
    def view_mode(self) -> ViewMode:
        return self._view_mode

    @view_mode.setter
    def view_mode(self, mode: ViewMode | str) -> None:
        try:
            self._view_mode = ViewMode(mode)
        except ValueError as e:
            raise ValueError(f"Unknown view mode: {mode!r}") from e

    @property
    def selected_agent_id(self) -> str | None:
        self._reconcile_selection(self._controller.snapshot)
        return self._selected_agent_id

    @selected_agent_id.setter
    def selected_agent_id(self, agent_id: str) -> None:
        if self._controller.snapshot.find(agent_id) is None:
            raise ValueError(f"Unknown agent: {agent_id!r}")
        self._selected_agent_id = agent_id

    @property
    def selected_agent(self) -> AgentPerformance | None:
        agent_id = self.selected_agent_id
        if agent_id is None:
            return None
        return self._controller.snapshot.find(agent_id)

    async def refresh(self) -> MetricsSnapshot:
        """Refresh through the controller (coalesced with any in-flight poll)."""
        return await self._controller.refresh()

    def close(self) -> None:
        """Detach from the controller."""
        self._unsubscribe()

    def render_data(self, mode: ViewMode | None = None) -> RenderData:
        """Render data for ``mode`` (default: the current view mode)."""
        return self._selectors[mode or self._view_mode]()

    def render(self, now: datetime | None = None) -> DashboardView:
        """Render data for the current mode plus the status banner."""
        return DashboardView(
            view_mode=self._view_mode,
            selected_agent_id=self.selected_agent_id,
            status=self._controller.status(now),
            data=self.render_data(),
        )

    def _on_snapshot(self, snapshot: MetricsSnapshot) -> None:
        self._reconcile_selection(snapshot)

    def _reconcile_selection(self, snapshot: MetricsSnapshot) -> None:
        if self._selected_agent_id is not None and snapshot.find(self._selected_agent_id):
            return
        previous = self._selected_agent_id
        self._selected_agent_id = snapshot.agents[0].agent_id if snapshot.agents else None
        if previous is not None and previous != self._selected_agent_id:
            logger.info(
                "selection_fallback",
                previous=previous,
                selected=self._selected_agent_id,
            )

    def _overview_data(self) -> OverviewData:
        snapshot = self._controller.snapshot
        agent = self.selected_agent
        return OverviewData(
            kpis=snapshot.aggregates.kpis,
            top_performers=list(snapshot.aggregates.top_performers),
            cost_per_agent=[
                ChartBar(label=row.agent_id, value=row.cost)
                for row in snapshot.aggregates.comparison_rows
            ],
            response_time_trend=agent.performance.response_time.trend if agent else None,
            success_rate_trend=agent.performance.success_rate.trend if agent else None,
        )

    def _detailed_data(self) -> DetailedData:
        agent = self.selected_agent
        return DetailedData(
            agent_options=[
                AgentOption(agent_id=a.agent_id, label=f"{a.agent_type} ({a.agent_id})")
                for a in self.agents
            ],
            agent=agent,
            task_distribution=[
                ChartBar(label=_label(task), value=weight)
                for task, weight in (agent.task_distribution.items() if agent else [])
            ],
            error_breakdown=[
                ChartBar(label=_label(category), value=count)
                for category, count in (agent.errors.breakdown.items() if agent else [])
            ],
        )

    def _comparison_data(self) -> ComparisonData:
        return ComparisonData(rows=list(self._controller.snapshot.aggregates.comparison_rows))
