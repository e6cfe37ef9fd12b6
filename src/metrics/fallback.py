"""Deterministic fallback dataset for when live counters are unavailable.

The roster mirrors the specializations the monitoring backend usually
reports. Values are drawn from a seeded generator so the same seed and
reference time always yield the same dataset.
"""

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from src.metrics.models import RawAgentCounters, ResourceUsage

# (agent id, baseline response time in ms)
FALLBACK_ROSTER: tuple[tuple[str, float], ...] = (
    ("python-pro", 800.0),
    ("data-analyst", 1200.0),
    ("frontend-developer", 600.0),
    ("devops-engineer", 600.0),
    ("code-reviewer", 600.0),
    ("security-auditor", 600.0),
)


@dataclass(frozen=True)
class FallbackDataset:
    """Synthetic counters plus the resource figures live data lacks."""

    agents: list[RawAgentCounters]
    resources: dict[str, ResourceUsage] = field(default_factory=dict)


def build_fallback_dataset(seed: int, now: datetime) -> FallbackDataset:
    """Build the fallback roster.

    Args:
        seed: Seed for the value generator.
        now: Reference time for last-use timestamps.

    Returns:
        FallbackDataset with one entry per roster agent.
    """
    rng = random.Random(seed)
    agents: list[RawAgentCounters] = []
    resources: dict[str, ResourceUsage] = {}

    for agent_id, base_response_ms in FALLBACK_ROSTER:
        requests = rng.randint(40, 400)
        errors = int(requests * rng.uniform(0.01, 0.12))
        average = base_response_ms + rng.uniform(0.0, 200.0)

        agents.append(
            RawAgentCounters(
                agent_id=agent_id,
                requests=requests,
                errors=errors,
                total_duration_ms=round(requests * average),
                last_used_at=now - timedelta(minutes=rng.randint(1, 120)),
                is_active=rng.random() > 0.2,
                total_tokens=requests * rng.randint(400, 1500),
            )
        )
        resources[agent_id] = ResourceUsage(
            cpu_usage=round(20 + rng.random() * 40, 1),
            memory_usage=round(512 + rng.random() * 1024, 1),
        )

    return FallbackDataset(agents=agents, resources=resources)
