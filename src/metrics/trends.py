"""Trend synthesis for metrics without backend history.

The monitoring endpoint only reports cumulative counters, so charts would
have nothing to draw. TrendSynthesizer produces a fixed-length series that
ends at "now" and wanders around a baseline. Every synthesized series is
flagged ``synthetic=True`` so it is never mistaken for measured history;
measured samples, when present, bypass this module entirely.

Example:
    synthesizer = TrendSynthesizer(seed=42)
    series = synthesizer.synthesize(850.0, key="agent-001:response_time")
    assert len(series) == 50 and series.synthetic
"""

import random
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from src.metrics.models import MetricPoint, TimeSeries

DEFAULT_POINTS = 50
DEFAULT_SPACING_MINUTES = 5
DEFAULT_JITTER_RATIO = 0.1


class TrendSynthesizer:
    """Builds reproducible synthetic trends around a baseline value.

    Output is a pure function of (seed, key, baseline, arguments, now), so
    repeated polls over the same counters produce the same chart.
    """

    def __init__(
        self,
        seed: int = 42,
        jitter_ratio: float = DEFAULT_JITTER_RATIO,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the synthesizer.

        Args:
            seed: Seed mixed into every series' random generator.
            jitter_ratio: Default jitter amplitude relative to the baseline.
            clock: Source of "now"; defaults to the UTC wall clock.
        """
        self.seed = seed
        self.jitter_ratio = jitter_ratio
        self._clock = clock or (lambda: datetime.now(UTC))

    def synthesize(
        self,
        baseline: float,
        points: int = DEFAULT_POINTS,
        spacing_minutes: int = DEFAULT_SPACING_MINUTES,
        bounds: tuple[float | None, float | None] | None = None,
        *,
        jitter: float | None = None,
        key: str = "",
        now: datetime | None = None,
    ) -> TimeSeries:
        """Produce a synthetic series ending at ``now``.

        Args:
            baseline: Value the series wanders around.
            points: Number of samples.
            spacing_minutes: Gap between consecutive samples.
            bounds: Optional (min, max) clamp; either side may be None.
            jitter: Absolute jitter amplitude; defaults to
                ``jitter_ratio * abs(baseline)``.
            key: Identifies the series so different metrics differ.
            now: Timestamp of the last sample; defaults to the clock.

        Returns:
            TimeSeries of ``points`` samples flagged as synthetic.

        Raises:
            ValueError: If points or spacing_minutes is not positive.
        """
        if points < 1:
            raise ValueError(f"points must be positive, got {points}")
        if spacing_minutes < 1:
            raise ValueError(f"spacing_minutes must be positive, got {spacing_minutes}")

        end = now or self._clock()
        amplitude = jitter if jitter is not None else self.jitter_ratio * abs(baseline)
        rng = random.Random(f"{self.seed}:{key}")
        spacing = timedelta(minutes=spacing_minutes)

        samples = []
        for i in range(points):
            value = baseline + (rng.random() - 0.5) * 2 * amplitude
            samples.append(
                MetricPoint(
                    timestamp=end - spacing * (points - 1 - i),
                    value=_clamp(value, bounds),
                )
            )

        return TimeSeries(points=tuple(samples), synthetic=True)


def _clamp(value: float, bounds: tuple[float | None, float | None] | None) -> float:
    if bounds is None:
        return value
    low, high = bounds
    if low is not None and value < low:
        value = low
    if high is not None and value > high:
        value = high
    return value
