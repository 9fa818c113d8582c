"""Schedule projection.

Maps an assignment's start date plus flattened day offsets to calendar
dates, and answers "what is planned today" for a trainee.
"""

from __future__ import annotations

from datetime import date as date_type
from typing import Any

from pydantic import BaseModel

from coachcore.common.dates import DateLike, add_days, days_between, parse_ymd
from coachcore.programs.flatten import first_workout_template_id, flatten_program_days
from coachcore.programs.progress import ProgramProgress, normalize_completed_day_keys
from coachcore.programs.types import ProgramTemplateState


class PlannedWorkout(BaseModel):
    """Representative workout planned for one calendar date."""

    workout_template_id: str
    day_key: str | None
    offset: int


class ScheduledProgramDay(BaseModel):
    offset: int
    week_index1: int
    day_index1: int
    day_key: str
    date: date_type
    workout_template_id: str | None
    completed: bool


def project_date(start_date: DateLike, offset: int) -> date_type:
    """Calendar date of the day at `offset` (start date + offset days)."""
    return add_days(start_date, offset)


def offset_for_date(start_date: DateLike | None, on: DateLike | None) -> int | None:
    """Program offset of `on`; None when the program has not started or dates are malformed."""
    offset = days_between(on, start_date)
    if offset is None or offset < 0:
        return None
    return offset


def planned_workout_for_date(
    state: ProgramTemplateState | dict[str, Any] | None,
    start_date: DateLike | None,
    on: DateLike | None,
) -> PlannedWorkout | None:
    """Workout planned on a date, resolved through the first catalog reference of that day.

    Returns None before the start date, past the last authored day, on days
    without a catalog workout, and whenever a date is malformed.
    """
    offset = offset_for_date(start_date, on)
    if offset is None:
        return None
    days = flatten_program_days(state)
    if offset >= len(days):
        return None
    day = days[offset]
    workout_id = first_workout_template_id(day)
    if not workout_id:
        return None
    return PlannedWorkout(workout_template_id=workout_id, day_key=day.day_key or None, offset=offset)


def build_program_schedule(
    state: ProgramTemplateState | dict[str, Any] | None,
    start_date: DateLike,
    progress: ProgramProgress | dict[str, Any] | None = None,
) -> list[ScheduledProgramDay]:
    """Per-day schedule of an assignment with projected dates and completion flags."""
    start = parse_ymd(start_date)
    if start is None:
        return []
    completed = set(normalize_completed_day_keys(progress))
    return [
        ScheduledProgramDay(
            offset=d.offset,
            week_index1=d.week_index1,
            day_index1=d.day_index1,
            day_key=d.day_key,
            date=project_date(start, d.offset),
            workout_template_id=first_workout_template_id(d),
            completed=bool(d.day_key) and d.day_key in completed,
        )
        for d in flatten_program_days(state)
    ]


def program_end_date(state: ProgramTemplateState | dict[str, Any] | None, start_date: DateLike) -> date_type | None:
    """Date of the last authored day, or None for an empty template."""
    days = flatten_program_days(state)
    if not days or parse_ymd(start_date) is None:
        return None
    return project_date(start_date, days[-1].offset)
