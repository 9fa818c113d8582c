import math

import pytest

from coachcore.workouts.metrics import calculate_total_volume, format_duration_seconds
from coachcore.workouts.types import WorkoutSetLog


def _log(set_index, reps, weight, completed=True):
    return WorkoutSetLog(id=f"l-{set_index}", session_id="s-1", exercise_id="squat", set_index=set_index, reps=reps, weight=weight, completed=completed)


def test_volume_counts_only_completed_sets_with_both_values():
    logs = [
        _log(0, 5, 100),
        _log(1, 8, 62.5),
        _log(2, 5, 100, completed=False),
        _log(3, None, 100),
        _log(4, 10, None),
        _log(5, 3, math.inf),
    ]

    assert calculate_total_volume(logs) == 1000
    assert calculate_total_volume([]) == 0


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [
        (0, "0:00"),
        (59.9, "0:59"),
        (61, "1:01"),
        (3600, "60:00"),
        (-5, "0:00"),
        (None, "0:00"),
        (math.nan, "0:00"),
    ],
)
def test_format_duration_seconds(seconds, expected):
    assert format_duration_seconds(seconds) == expected
