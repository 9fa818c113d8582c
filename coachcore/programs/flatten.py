"""Program flattening.

Turns the nested phases -> weeks -> days structure into the linear day
sequence every schedule, progress and assignment computation runs on.
Pure and deterministic; safe to call on every read.
"""

from __future__ import annotations

from typing import Any

from coachcore.programs.types import (
    CatalogWorkoutRef,
    FlattenedProgramDay,
    ProgramDay,
    ProgramTemplateState,
    WorkoutRef,
)

DAYS_PER_WEEK = 7


def refs_for_day(day: ProgramDay) -> list[WorkoutRef]:
    """Workout references for a day: the multi-workout list, else the legacy single ref."""
    if day.workouts:
        return list(day.workouts)
    return [day.workout_ref] if day.workout_ref is not None else []


def flatten_program_days(state: ProgramTemplateState | dict[str, Any] | None) -> list[FlattenedProgramDay]:
    """Flatten a program template into document-ordered days.

    Offsets run 0..N-1 without gaps. `week_index1 = offset // 7 + 1` and
    `day_index1 = offset % 7 + 1`.

    Args:
        state: Parsed state or raw JSON; anything malformed yields an empty list

    Returns:
        One FlattenedProgramDay per authored day
    """
    parsed = ProgramTemplateState.from_raw(state)
    out: list[FlattenedProgramDay] = []
    offset = 0
    for phase in parsed.phases:
        for week in phase.weeks:
            for day in week.days:
                out.append(
                    FlattenedProgramDay(
                        offset=offset,
                        week_index1=offset // DAYS_PER_WEEK + 1,
                        day_index1=offset % DAYS_PER_WEEK + 1,
                        day_key=day.id or "",
                        day=day,
                        workout_refs=tuple(refs_for_day(day)),
                    )
                )
                offset += 1
    return out


def first_catalog_workout_id(refs: list[WorkoutRef] | tuple[WorkoutRef, ...] | None) -> str | None:
    """Representative workout: the first reference that resolves into the catalog."""
    for ref in refs or ():
        if isinstance(ref, CatalogWorkoutRef):
            return ref.workout_id
    return None


def first_workout_template_id(day: FlattenedProgramDay) -> str | None:
    return first_catalog_workout_id(day.workout_refs)


def total_planned_day_keys(state: ProgramTemplateState | dict[str, Any] | None) -> list[str]:
    """Day keys of every authored day that carries a non-empty key, in order."""
    return [d.day_key for d in flatten_program_days(state) if d.day_key]


def catalog_workout_ids(state: ProgramTemplateState | dict[str, Any] | None) -> list[str]:
    """Distinct catalog workout ids referenced anywhere in the template."""
    seen: set[str] = set()
    out: list[str] = []
    for day in flatten_program_days(state):
        for ref in day.workout_refs:
            if isinstance(ref, CatalogWorkoutRef) and ref.workout_id not in seen:
                seen.add(ref.workout_id)
                out.append(ref.workout_id)
    return out
