from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""


class ProgramTemplate(Base):
    """Coach-authored program template.

    `state` holds the phases -> weeks -> days JSON owned by the authoring side.
    """

    __tablename__ = "program_templates"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid, index=True)
    owner_trainer_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    title: Mapped[str] = mapped_column(String, nullable=False, default="Program")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    difficulty: Mapped[str | None] = mapped_column(String, nullable=True)
    duration_weeks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    state: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_now, onupdate=_now)


class WorkoutTemplate(Base):
    """Workout catalog entry. `state` holds the series -> exercises -> sets JSON."""

    __tablename__ = "workout_templates"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid, index=True)
    trainer_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    title: Mapped[str] = mapped_column(String, nullable=False, default="Workout")
    state: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_now, onupdate=_now)


class ClientProgramAssignment(Base):
    """Program template bound to a client from a start date.

    Unique on (client_id, program_template_id, start_date) regardless of
    status, which is why archived duplicates are reactivated instead of
    re-inserted.
    """

    __tablename__ = "client_program_assignments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid, index=True)
    trainer_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    client_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    program_template_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str | None] = mapped_column(String, nullable=True, default="active", index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    progress: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_now, onupdate=_now)

    __table_args__ = (
        UniqueConstraint("client_id", "program_template_id", "start_date", name="uq_program_assignment_client_template_start"),
    )


class ClientWorkoutAssignment(Base):
    """Workout scheduled for a client on a date, manual or program-generated."""

    __tablename__ = "client_workout_assignments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid, index=True)
    trainer_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    client_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    workout_template_id: Mapped[str] = mapped_column(String, nullable=False)
    scheduled_for: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str | None] = mapped_column(String, nullable=True, default="assigned")
    source: Mapped[str | None] = mapped_column(String, nullable=True, default="manual")
    program_assignment_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    program_day_key: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_now)

    __table_args__ = (Index("idx_workout_assignments_client_date", "client_id", "scheduled_for"),)


class WorkoutSession(Base):
    """One execution attempt. At most one in_progress row per (client, assignment) by convention."""

    __tablename__ = "workout_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid, index=True)
    client_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    trainer_id: Mapped[str] = mapped_column(String, nullable=False)
    workout_assignment_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    workout_template_id: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="in_progress")
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_now)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    duration_sec: Mapped[int | None] = mapped_column(Integer, nullable=True)


class WorkoutSetLog(Base):
    """Logged set outcome; last write wins on (session_id, exercise_id, set_index)."""

    __tablename__ = "workout_set_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid, index=True)
    session_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    series_block_id: Mapped[str | None] = mapped_column(String, nullable=True)
    exercise_id: Mapped[str] = mapped_column(String, nullable=False)
    set_index: Mapped[int] = mapped_column(Integer, nullable=False)
    reps: Mapped[float | None] = mapped_column(Float, nullable=True)
    weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    completed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_now, onupdate=_now)

    __table_args__ = (
        UniqueConstraint("session_id", "exercise_id", "set_index", name="uq_set_log_session_exercise_set"),
    )
