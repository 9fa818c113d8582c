"""Domain types for assignments and the typed outcomes of assignment flows."""

from __future__ import annotations

from datetime import date as date_type
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from coachcore.programs.progress import ProgramProgress

PROGRAM_STATUS_ACTIVE = "active"
PROGRAM_STATUS_ARCHIVED = "archived"
PROGRAM_STATUS_COMPLETED = "completed"

WorkoutAssignmentStatus = Literal["assigned", "completed", "skipped", "cancelled"]

WORKOUT_SOURCE_MANUAL = "manual"
WORKOUT_SOURCE_PROGRAM = "program"


class ClientProgramAssignment(BaseModel):
    """Binding of a program template to one client from a start date.

    Unique on (client_id, program_template_id, start_date) regardless of status.
    """

    id: str
    trainer_id: str
    client_id: str
    program_template_id: str
    start_date: date_type
    status: str | None = PROGRAM_STATUS_ACTIVE
    notes: str | None = None
    progress: ProgramProgress | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("progress", mode="before")
    @classmethod
    def parse_progress(cls, value: Any) -> ProgramProgress | None:
        return ProgramProgress.from_raw(value)

    @property
    def is_active(self) -> bool:
        return self.status == PROGRAM_STATUS_ACTIVE

    @property
    def is_archived(self) -> bool:
        return self.status == PROGRAM_STATUS_ARCHIVED


class ClientWorkoutAssignment(BaseModel):
    """One workout scheduled for a client on a calendar date.

    Program-generated rows carry back-references to the program assignment
    and the day key that produced them; manual rows leave both empty.
    """

    id: str
    trainer_id: str
    client_id: str
    workout_template_id: str
    scheduled_for: date_type
    status: WorkoutAssignmentStatus | None = "assigned"
    source: str | None = WORKOUT_SOURCE_MANUAL
    program_assignment_id: str | None = None
    program_day_key: str | None = None


DuplicateMode = Literal["archived", "active"]
Resolution = Literal["reactivate", "reset_progress", "reset_and_reactivate"]


class DuplicateProgramAssignment(BaseModel):
    """Existing assignment found for the same (client, template, start date).

    An archived duplicate may be reactivated (optionally with a progress
    reset). An active duplicate can only have its progress reset.
    """

    existing: ClientProgramAssignment
    mode: DuplicateMode

    @classmethod
    def from_existing(cls, existing: ClientProgramAssignment) -> DuplicateProgramAssignment:
        mode: DuplicateMode = "archived" if existing.is_archived else "active"
        return cls(existing=existing, mode=mode)

    @property
    def allowed_resolutions(self) -> tuple[Resolution, ...]:
        if self.mode == "archived":
            return ("reactivate", "reset_and_reactivate")
        return ("reset_progress",)


class WorkoutAssignmentOutcome(BaseModel):
    """Result of assigning a standalone workout to a batch of clients."""

    kind: Literal["assigned", "not_found", "invalid", "failed", "skipped"]
    assigned_client_ids: list[str] = Field(default_factory=list)
    skipped_client_ids: list[str] = Field(default_factory=list)
    failed_client_id: str | None = None
    message: str | None = None


class ProgramAssignmentOutcome(BaseModel):
    """Result of assigning a program to a batch of clients.

    Clients are processed in order; a duplicate stops the batch with
    `kind="conflict"` so the caller can resolve it. Clients assigned before
    the conflict stay assigned.
    """

    kind: Literal["assigned", "conflict", "invalid", "failed", "skipped", "not_found"]
    assigned: list[ClientProgramAssignment] = Field(default_factory=list)
    skipped_client_ids: list[str] = Field(default_factory=list)
    conflict: DuplicateProgramAssignment | None = None
    conflict_client_id: str | None = None
    failed_client_id: str | None = None
    message: str | None = None

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_client_ids)


class AssignmentUpdateOutcome(BaseModel):
    """Result of a single-assignment mutation (resolution, archive, date edit)."""

    kind: Literal["ok", "not_found", "invalid", "failed"]
    assignment: ClientProgramAssignment | None = None
    workout_assignment: ClientWorkoutAssignment | None = None
    message: str | None = None
