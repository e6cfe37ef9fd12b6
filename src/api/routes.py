"""FastAPI routes exposing the agent performance dashboard.

This module provides:
- /health for liveness of the dashboard service itself
- /dashboard for the status banner plus render data of the current view
- /dashboard/agents for the current AgentPerformance snapshot
- selection, view mode and refresh actions
- create_view_model() wiring the pipeline from Settings
- create_app() whose lifespan starts and stops polling
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from src.config import Settings, configure_logging, settings
from src.metrics.aggregation import AggregationEngine
from src.metrics.fetcher import MetricsFetcher
from src.metrics.polling import PollingController
from src.metrics.transformer import MetricsTransformer
from src.metrics.trends import TrendSynthesizer
from src.metrics.view import DashboardViewModel, ViewMode

logger = structlog.get_logger(__name__)


# ============================================================================
# Request Models
# ============================================================================


class SelectionRequest(BaseModel):
    """Request model for changing the selected agent."""

    agent_id: str = Field(..., description="Identifier of the agent to select", min_length=1)


class ViewModeRequest(BaseModel):
    """Request model for changing the view mode."""

    view_mode: ViewMode = Field(..., description="overview, detailed or comparison")


# ============================================================================
# Wiring
# ============================================================================


def create_view_model(config: Settings | None = None) -> DashboardViewModel:
    """Build the fetch → transform → aggregate pipeline from settings.

    Args:
        config: Settings to use; defaults to the environment settings.

    Returns:
        DashboardViewModel over a fresh PollingController.
    """
    config = config or settings
    fetcher = MetricsFetcher(
        config.METRICS_BASE_URL,
        timeout_seconds=config.METRICS_TIMEOUT_SECONDS,
        retry_attempts=config.METRICS_RETRY_ATTEMPTS,
        fallback_seed=config.FALLBACK_SEED,
        check_health_on_empty=config.CHECK_HEALTH_ON_EMPTY,
    )
    transformer = MetricsTransformer(
        TrendSynthesizer(seed=config.FALLBACK_SEED),
        default_response_time_ms=config.DEFAULT_RESPONSE_TIME_MS,
        cost_per_1k_tokens=config.COST_PER_1K_TOKENS,
    )
    controller = PollingController(
        fetcher,
        transformer,
        AggregationEngine(top_n=config.TOP_PERFORMERS_LIMIT),
        interval_seconds=config.POLL_INTERVAL_SECONDS,
        degraded_threshold=config.DEGRADED_FAILURE_THRESHOLD,
        stale_after_seconds=config.STALE_AFTER_SECONDS,
    )
    return DashboardViewModel(controller)


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def _view_model(request: Request) -> DashboardViewModel:
    return request.app.state.view_model


# ============================================================================
# Application
# ============================================================================


def create_app(
    view_model: DashboardViewModel | None = None,
    *,
    title: str = "Agent Performance Dashboard API",
    version: str = "0.1.0",
    start_polling: bool = True,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        view_model: View model to serve; built from settings if omitted.
        title: API title.
        version: API version.
        start_polling: Start the controller in the lifespan.

    Returns:
        Configured FastAPI application.
    """
    view_model = view_model or create_view_model()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.LOG_LEVEL)
        controller = view_model.controller
        if start_polling:
            await controller.start()
        logger.info("dashboard_started", state=controller.state.value)
        try:
            yield
        finally:
            await controller.stop()
            logger.info("dashboard_stopped")

    app = FastAPI(title=title, version=version, lifespan=lifespan)
    app.state.view_model = view_model

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Liveness of the dashboard service."""
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": version,
        }

    @app.get("/dashboard")
    async def dashboard(request: Request) -> dict[str, Any]:
        """Status banner plus render data for the current view mode."""
        return _dump(_view_model(request).render())

    @app.get("/dashboard/agents")
    async def agents(request: Request) -> list[dict[str, Any]]:
        """Current agent performance records."""
        return [_dump(agent) for agent in _view_model(request).agents]

    @app.get("/dashboard/agents/{agent_id}")
    async def agent(agent_id: str, request: Request) -> dict[str, Any]:
        """One agent's performance record."""
        record = _view_model(request).controller.snapshot.find(agent_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Unknown agent: {agent_id}")
        return _dump(record)

    @app.put("/dashboard/selection")
    async def select_agent(body: SelectionRequest, request: Request) -> dict[str, Any]:
        """Change the selected agent."""
        vm = _view_model(request)
        try:
            vm.selected_agent_id = body.agent_id
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        return {"selectedAgentId": vm.selected_agent_id}

    @app.put("/dashboard/view-mode")
    async def set_view_mode(body: ViewModeRequest, request: Request) -> dict[str, Any]:
        """Change the view mode."""
        vm = _view_model(request)
        vm.view_mode = body.view_mode
        return {"viewMode": vm.view_mode.value}

    @app.post("/dashboard/refresh")
    async def refresh(request: Request) -> dict[str, Any]:
        """Refresh now; joins a poll already in flight."""
        vm = _view_model(request)
        await vm.refresh()
        return _dump(vm.render())

    return app


# Default application instance
app = create_app()
