"""Domain types for program templates.

A program template is authored as phases -> weeks -> days. Each day names
zero or more workout references. A reference either points into the
workout catalog (resolvable to a workout id) or at a legacy/external source
(inline workouts, imports) that this core never resolves.

Raw template state arrives as JSON from the authoring side. Parsing is
lenient: malformed pieces degrade to empty structures instead of raising.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

CATALOG_SOURCE = "workoutsTable"


class CatalogWorkoutRef(BaseModel):
    """Reference to a workout in the workout catalog."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["catalog"] = "catalog"
    workout_id: str
    title: str | None = None


class LegacyWorkoutRef(BaseModel):
    """Reference to a workout outside the catalog (inline or external)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["legacy"] = "legacy"
    source: str | None = None
    ref_id: str | None = None
    title: str | None = None


WorkoutRef = CatalogWorkoutRef | LegacyWorkoutRef


def parse_workout_ref(raw: Any) -> WorkoutRef | None:
    """Parse one raw reference into its tagged variant.

    Only `source == "workoutsTable"` with a string `workoutId` is a catalog
    reference. Every other dict is kept as a legacy reference; non-dicts
    are dropped.
    """
    if isinstance(raw, (CatalogWorkoutRef, LegacyWorkoutRef)):
        return raw
    if not isinstance(raw, dict):
        return None
    source = raw.get("source")
    title = raw.get("title") if isinstance(raw.get("title"), str) else None
    workout_id = raw.get("workoutId")
    if source == CATALOG_SOURCE and isinstance(workout_id, str) and workout_id:
        return CatalogWorkoutRef(workout_id=workout_id, title=title)
    ref_id = raw.get("inlineWorkoutId") or raw.get("workoutId") or raw.get("id")
    return LegacyWorkoutRef(
        source=source if isinstance(source, str) else None,
        ref_id=ref_id if isinstance(ref_id, str) else None,
        title=title,
    )


class ProgramDay(BaseModel):
    """One authored day.

    Attributes:
        id: Stable day key; empty string when the author left it out
        workouts: Multi-workout list (current shape)
        workout_ref: Single reference (legacy shape)
    """

    id: str = ""
    workouts: list[WorkoutRef] = Field(default_factory=list)
    workout_ref: WorkoutRef | None = None


class ProgramWeek(BaseModel):
    days: list[ProgramDay] = Field(default_factory=list)


class ProgramPhase(BaseModel):
    title: str | None = None
    weeks: list[ProgramWeek] = Field(default_factory=list)


class ProgramTemplateState(BaseModel):
    """Ordered phases -> weeks -> days of a program template."""

    phases: list[ProgramPhase] = Field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: Any) -> ProgramTemplateState:
        """Build a state from raw JSON without ever raising.

        Args:
            raw: Decoded JSON (dict with `phases`), an existing state, or anything else

        Returns:
            Parsed state; an empty state when `raw` is unusable
        """
        if isinstance(raw, ProgramTemplateState):
            return raw
        if not isinstance(raw, dict):
            return cls()

        phases: list[ProgramPhase] = []
        for raw_phase in _as_list(raw.get("phases")):
            if not isinstance(raw_phase, dict):
                continue
            weeks: list[ProgramWeek] = []
            for raw_week in _as_list(raw_phase.get("weeks")):
                if not isinstance(raw_week, dict):
                    continue
                days = [_parse_day(d) for d in _as_list(raw_week.get("days")) if isinstance(d, dict)]
                weeks.append(ProgramWeek(days=days))
            title = raw_phase.get("title")
            phases.append(ProgramPhase(title=title if isinstance(title, str) else None, weeks=weeks))
        return cls(phases=phases)


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _parse_day(raw: dict[str, Any]) -> ProgramDay:
    day_id = raw.get("id")
    refs = [ref for ref in (parse_workout_ref(r) for r in _as_list(raw.get("workouts"))) if ref is not None]
    return ProgramDay(
        id=str(day_id) if day_id is not None else "",
        workouts=refs,
        workout_ref=parse_workout_ref(raw.get("workoutRef")),
    )


class FlattenedProgramDay(BaseModel):
    """One day of the linear program sequence.

    Week and day indices are derived from the offset in fixed 7-day blocks,
    independent of authored week boundaries.
    """

    model_config = ConfigDict(frozen=True)

    offset: int
    week_index1: int
    day_index1: int
    day_key: str
    day: ProgramDay
    workout_refs: tuple[WorkoutRef, ...] = ()


class ProgramTemplate(BaseModel):
    """Published program template as read from the authoring side."""

    id: str
    owner_trainer_id: str | None = None
    title: str = "Program"
    description: str | None = None
    difficulty: str | None = None
    duration_weeks: int | None = None
    state: ProgramTemplateState = Field(default_factory=ProgramTemplateState)

    @field_validator("state", mode="before")
    @classmethod
    def parse_state(cls, value: Any) -> ProgramTemplateState:
        """Template state is stored as raw JSON; parse it leniently."""
        return ProgramTemplateState.from_raw(value)
