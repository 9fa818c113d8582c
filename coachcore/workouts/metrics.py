from __future__ import annotations

import math
from collections.abc import Iterable

from coachcore.workouts.types import WorkoutSetLog


def _number(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def calculate_total_volume(logs: Iterable[WorkoutSetLog]) -> float:
    """Sum of reps * weight over completed sets where both values are finite numbers."""
    total = 0.0
    for log in logs:
        if not log.completed:
            continue
        reps = _number(log.reps)
        weight = _number(log.weight)
        if reps is None or weight is None:
            continue
        total += reps * weight
    return total


def format_duration_seconds(seconds: float | None) -> str:
    """Format a duration as `m:ss`; negative or missing durations render as `0:00`."""
    value = seconds if seconds is not None and math.isfinite(seconds) else 0
    total = max(0, math.floor(value))
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"
