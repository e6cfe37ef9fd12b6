"""Polling controller owning the live metrics snapshot.

This module provides:
- Ticker: cancellable fixed-interval task driving scheduled refreshes
- MetricsSnapshot: immutable result of one poll cycle
- ControllerState: LOADING / READY / ERROR / EMPTY / DEGRADED
- PollingController: schedules refreshes, coalesces concurrent requests,
  and exposes staleness and failure state

State transitions:
    LOADING → READY | EMPTY | ERROR
    ERROR → LOADING (next tick or manual refresh)
    READY / EMPTY → LOADING (next tick or manual refresh)
    ERROR → DEGRADED after ``degraded_threshold`` consecutive failures;
    DEGRADED stays DEGRADED while refreshing and leaves only on success.

Everything runs on one event loop. At most one fetch is in flight; a
refresh requested meanwhile awaits the same fetch. Each fetch carries a
generation number and only the latest generation may replace the
snapshot, so a late result after teardown or restart is discarded.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import Field

from src.metrics.aggregation import AggregateView, AggregationEngine
from src.metrics.fetcher import FetchResult, MetricsFetcher
from src.metrics.models import AgentPerformance, DataSource, FrozenModel
from src.metrics.transformer import MetricsTransformer

logger = structlog.get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 30.0
DEFAULT_DEGRADED_THRESHOLD = 3
DEFAULT_STALE_AFTER_SECONDS = 90.0


class ControllerState(str, Enum):
    """Lifecycle state exposed to the presentation layer."""

    LOADING = "loading"
    READY = "ready"
    ERROR = "error"
    EMPTY = "empty"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class MetricsSnapshot:
    """Atomic, immutable result of one poll cycle.

    Attributes:
        agents: Derived records in backend order.
        aggregates: Rankings and KPIs over ``agents``.
        source: Live counters or the fallback roster.
        generation: Fetch generation that produced the snapshot.
        built_at: When the snapshot was built; None for the initial one.
    """

    agents: tuple[AgentPerformance, ...] = ()
    aggregates: AggregateView = field(default_factory=AggregateView)
    source: DataSource = DataSource.LIVE
    generation: int = 0
    built_at: datetime | None = None

    @property
    def is_synthetic(self) -> bool:
        return self.source == DataSource.FALLBACK

    @property
    def has_live_data(self) -> bool:
        """True for a built snapshot of live counters with at least one agent."""
        return self.built_at is not None and not self.is_synthetic and bool(self.agents)

    def find(self, agent_id: str) -> AgentPerformance | None:
        """Look up an agent by id."""
        for agent in self.agents:
            if agent.agent_id == agent_id:
                return agent
        return None


class ControllerStatus(FrozenModel):
    """Staleness and failure information for a status banner."""

    state: ControllerState
    is_refreshing: bool = False
    is_synthetic: bool = False
    is_stale: bool = False
    staleness_seconds: float | None = None
    last_success_at: datetime | None = None
    consecutive_failures: int = 0
    last_error: dict[str, Any] | None = None
    warnings: list[str] = Field(default_factory=list)


class Ticker:
    """Cancellable fixed-interval scheduler.

    Calls ``callback`` every ``interval_seconds`` until stopped. The wait
    between ticks is interruptible, so stop() returns promptly. A callback
    that raises is logged and the next tick still runs.

    Example:
        ticker = Ticker(30.0, controller.refresh)
        ticker.start()
        ...
        await ticker.stop()
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[Any]],
        name: str = "ticker",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.interval_seconds = interval_seconds
        self.name = name
        self._callback = callback
        self._stopped = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.ticks = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking. Must be called from a running event loop."""
        if self.is_running:
            return
        self._stopped = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        """Stop ticking and wait for the loop to exit."""
        self._stopped.set()
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                self.ticks += 1
                try:
                    await self._callback()
                except Exception:
                    logger.exception("tick_failed", ticker=self.name, tick=self.ticks)


class PollingController:
    """Drives the fetch → transform → aggregate cycle.

    Owns the single current snapshot and replaces it wholesale. Never
    raises for backend problems; the worst outcome is a stale or synthetic
    snapshot with a warning.

    Example:
        controller = PollingController(MetricsFetcher("http://localhost:4001"))
        await controller.start()
        print(controller.state, controller.snapshot.aggregates.kpis)
        await controller.stop()
    """

    def __init__(
        self,
        fetcher: MetricsFetcher,
        transformer: MetricsTransformer | None = None,
        aggregator: AggregationEngine | None = None,
        *,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        degraded_threshold: int = DEFAULT_DEGRADED_THRESHOLD,
        stale_after_seconds: float = DEFAULT_STALE_AFTER_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            fetcher: Source of raw counters.
            transformer: Counter-to-record mapping.
            aggregator: Rankings and KPI computation.
            interval_seconds: Interval between scheduled refreshes.
            degraded_threshold: Consecutive failures before DEGRADED.
            stale_after_seconds: Age after which data is flagged stale.
            clock: Source of "now"; defaults to the UTC wall clock.
        """
        self._clock = clock or (lambda: datetime.now(UTC))
        self._fetcher = fetcher
        self._transformer = transformer or MetricsTransformer(clock=self._clock)
        self._aggregator = aggregator or AggregationEngine()
        self.interval_seconds = interval_seconds
        self.degraded_threshold = max(1, degraded_threshold)
        self.stale_after_seconds = stale_after_seconds

        self._snapshot = MetricsSnapshot()
        self._state = ControllerState.LOADING
        self._generation = 0
        self._inflight: asyncio.Task[MetricsSnapshot] | None = None
        self._inflight_generation = 0
        self._superseded: set[asyncio.Task[MetricsSnapshot]] = set()
        self._alive = True
        self._ticker: Ticker | None = None
        self._listeners: list[Callable[[MetricsSnapshot], None]] = []

        self.last_success_at: datetime | None = None
        self.consecutive_failures = 0
        self.last_error: Exception | None = None
        self.fetch_count = 0
        self._logger = logger.bind(component="polling_controller")

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> MetricsSnapshot:
        return self._snapshot

    @property
    def agents(self) -> tuple[AgentPerformance, ...]:
        return self._snapshot.agents

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_refreshing(self) -> bool:
        return (
            self._inflight is not None
            and not self._inflight.done()
            and self._inflight_generation == self._generation
        )

    @property
    def is_running(self) -> bool:
        return self._ticker is not None and self._ticker.is_running

    def staleness_seconds(self, now: datetime | None = None) -> float | None:
        """Seconds since the last successful fetch, None if there was none."""
        if self.last_success_at is None:
            return None
        now = now or self._clock()
        return max(0.0, (now - self.last_success_at).total_seconds())

    def is_stale(self, now: datetime | None = None) -> bool:
        """True when no fetch succeeded within ``stale_after_seconds``."""
        age = self.staleness_seconds(now)
        return age is None or age > self.stale_after_seconds

    def status(self, now: datetime | None = None) -> ControllerStatus:
        """Build the status banner for the presentation layer."""
        now = now or self._clock()
        age = self.staleness_seconds(now)
        stale = self.is_stale(now)
        warnings: list[str] = []

        if self._snapshot.is_synthetic:
            warnings.append("Live metrics unavailable, showing fallback data")
        if self._state == ControllerState.DEGRADED:
            warnings.append(
                f"Metrics backend failed {self.consecutive_failures} consecutive polls"
            )
        if self._state == ControllerState.EMPTY:
            warnings.append("No agent data available")
        if stale and age is not None:
            warnings.append(f"Data is {int(age)} seconds old")

        error_dict = None
        if self.last_error is not None:
            to_dict = getattr(self.last_error, "to_dict", None)
            error_dict = to_dict() if callable(to_dict) else {"message": str(self.last_error)}

        return ControllerStatus(
            state=self._state,
            is_refreshing=self.is_refreshing,
            is_synthetic=self._snapshot.is_synthetic,
            is_stale=stale,
            staleness_seconds=age,
            last_success_at=self.last_success_at,
            consecutive_failures=self.consecutive_failures,
            last_error=error_dict,
            warnings=warnings,
        )

    def subscribe(self, listener: Callable[[MetricsSnapshot], None]) -> Callable[[], None]:
        """Register a callback invoked after each applied snapshot.

        Returns:
            Function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, *, initial_refresh: bool = True) -> None:
        """Begin polling: optionally refresh now, then every interval."""
        self._alive = True
        if initial_refresh:
            await self.refresh()
        if self._ticker is None or not self._ticker.is_running:
            self._ticker = Ticker(self.interval_seconds, self._tick, name="metrics_poll")
            self._ticker.start()
        self._logger.info("polling_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop polling and discard any fetch still in flight."""
        self._alive = False
        # Supersede whatever is in flight; a later refresh must not join it
        self._generation += 1
        if self._inflight is not None and not self._inflight.done():
            self._superseded.add(self._inflight)
            self._inflight.add_done_callback(self._superseded.discard)
        self._inflight = None
        if self._ticker is not None:
            await self._ticker.stop()
            self._ticker = None
        self._logger.info("polling_stopped", generation=self._generation)

    async def refresh(self) -> MetricsSnapshot:
        """Refresh now, or join the fetch already in flight.

        Returns:
            The snapshot current after the fetch completes.
        """
        if self.is_refreshing:
            self._logger.debug("refresh_coalesced", generation=self._generation)
            return await asyncio.shield(self._inflight)

        self._generation += 1
        generation = self._generation
        if self._state != ControllerState.DEGRADED:
            self._state = ControllerState.LOADING

        task = asyncio.create_task(self._run_cycle(generation))
        self._inflight = task
        self._inflight_generation = generation
        return await asyncio.shield(task)

    async def _tick(self) -> None:
        await self.refresh()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _run_cycle(self, generation: int) -> MetricsSnapshot:
        self.fetch_count += 1
        try:
            result = await self._fetcher.fetch()
        except Exception as e:
            self._logger.exception("fetch_unexpected_error", generation=generation)
            if self._is_current(generation):
                self._record_failure(e)
            return self._snapshot

        if not self._is_current(generation):
            self._logger.info(
                "stale_result_discarded",
                generation=generation,
                current_generation=self._generation,
                alive=self._alive,
            )
            return self._snapshot

        try:
            self._apply(result, generation)
        except Exception as e:
            self._logger.exception("snapshot_build_failed", generation=generation)
            self._record_failure(e)
            return self._snapshot

        self._notify_listeners()
        return self._snapshot

    def _is_current(self, generation: int) -> bool:
        return self._alive and generation == self._generation

    def _apply(self, result: FetchResult, generation: int) -> None:
        now = self._clock()

        if result.error is None or result.is_empty:
            self._snapshot = self._build(result, generation, now)
            self.last_success_at = now
            self.consecutive_failures = 0
            self.last_error = result.error
            self._state = ControllerState.EMPTY if result.is_empty else ControllerState.READY
        else:
            if not self._snapshot.has_live_data:
                self._snapshot = self._build(result, generation, now)
            self._record_failure(result.error)

        self._logger.info(
            "snapshot_applied",
            generation=generation,
            state=self._state.value,
            source=self._snapshot.source.value,
            agents=len(self._snapshot.agents),
            consecutive_failures=self.consecutive_failures,
        )

    def _record_failure(self, error: Exception) -> None:
        self.consecutive_failures += 1
        self.last_error = error
        if self.consecutive_failures >= self.degraded_threshold:
            self._state = ControllerState.DEGRADED
        else:
            self._state = ControllerState.ERROR

    def _notify_listeners(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._snapshot)
            except Exception as e:
                self._logger.warning(
                    "listener_error",
                    generation=self._snapshot.generation,
                    error=str(e),
                )

    def _build(self, result: FetchResult, generation: int, now: datetime) -> MetricsSnapshot:
        agents = self._transformer.transform_all(
            result.agents,
            now=now,
            resources=result.resources,
        )
        return MetricsSnapshot(
            agents=tuple(agents),
            aggregates=self._aggregator.aggregate(agents),
            source=result.source,
            generation=generation,
            built_at=now,
        )
