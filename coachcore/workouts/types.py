"""Domain types for workout templates, run sessions and set logs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

SessionStatus = Literal["in_progress", "completed", "cancelled"]


class TemplateExercise(BaseModel):
    """Exercise inside a series block; only its id and authored set count matter here."""

    id: str
    name: str | None = None
    set_count: int = 0


class TemplateSeries(BaseModel):
    id: str | None = None
    exercises: list[TemplateExercise] = Field(default_factory=list)


class WorkoutTemplateState(BaseModel):
    series: list[TemplateSeries] = Field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: Any) -> WorkoutTemplateState:
        """Parse the authored `series[].exercises[].sets[]` JSON leniently."""
        if isinstance(raw, WorkoutTemplateState):
            return raw
        if not isinstance(raw, dict):
            return cls()
        series: list[TemplateSeries] = []
        for block in raw.get("series") or []:
            if not isinstance(block, dict):
                continue
            exercises: list[TemplateExercise] = []
            for ex in block.get("exercises") or []:
                if not isinstance(ex, dict) or not ex.get("id"):
                    continue
                sets = ex.get("sets")
                name = ex.get("name") or ex.get("title")
                exercises.append(
                    TemplateExercise(
                        id=str(ex["id"]),
                        name=name if isinstance(name, str) else None,
                        set_count=len(sets) if isinstance(sets, list) else 0,
                    )
                )
            block_id = block.get("id")
            series.append(TemplateSeries(id=str(block_id) if block_id is not None else None, exercises=exercises))
        return cls(series=series)

    def set_slots(self) -> list[tuple[str, str | None, int]]:
        """Every (exercise_id, series_id, set_index) the template authors, in order."""
        return [
            (ex.id, block.id, set_index)
            for block in self.series
            for ex in block.exercises
            for set_index in range(ex.set_count)
        ]


class WorkoutTemplate(BaseModel):
    id: str
    trainer_id: str | None = None
    title: str = "Workout"
    state: WorkoutTemplateState = Field(default_factory=WorkoutTemplateState)

    @field_validator("state", mode="before")
    @classmethod
    def parse_state(cls, value: Any) -> WorkoutTemplateState:
        return WorkoutTemplateState.from_raw(value)


class WorkoutSession(BaseModel):
    """One execution attempt of a workout template by a client."""

    id: str
    client_id: str
    trainer_id: str
    workout_assignment_id: str | None = None
    workout_template_id: str
    started_at: datetime
    finished_at: datetime | None = None
    duration_sec: int | None = None
    status: SessionStatus = "in_progress"


class WorkoutSetLog(BaseModel):
    """Persisted outcome of one set. Unique on (session_id, exercise_id, set_index)."""

    id: str
    session_id: str
    series_block_id: str | None = None
    exercise_id: str | None = None
    set_index: int
    reps: float | None = None
    weight: float | None = None
    completed: bool | None = None
    created_at: datetime | None = None


class WorkoutSetLogDraft(BaseModel):
    """Upsert payload for one set log."""

    session_id: str
    series_block_id: str | None = None
    exercise_id: str
    set_index: int
    reps: float | None = None
    weight: float | None = None
    completed: bool = False


class SessionStart(BaseModel):
    session: WorkoutSession
    resumed: bool
