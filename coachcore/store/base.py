"""Remote store contract.

Every call into the remote data service is a suspension point. Calls are
request/response, carry no abort semantics, and mutations are idempotent
or keyed by natural keys so that replays are harmless.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime

from coachcore.assignments.types import ClientProgramAssignment, ClientWorkoutAssignment
from coachcore.programs.types import ProgramTemplate
from coachcore.workouts.types import SessionStart, WorkoutSession, WorkoutSetLog, WorkoutSetLogDraft, WorkoutTemplate


class RemoteStore(ABC):
    """Async call-and-response interface to the remote relational service.

    Failures surface as `coachcore.common.errors` exceptions:
    DuplicateKeyError on uniqueness violations, RecordNotFoundError when a
    mutated row is missing, StoreError for everything else.
    """

    # Templates

    @abstractmethod
    async def workout_template_exists(self, workout_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def get_workout_template(self, workout_id: str) -> WorkoutTemplate | None:
        raise NotImplementedError

    @abstractmethod
    async def get_program_template(self, program_template_id: str) -> ProgramTemplate | None:
        raise NotImplementedError

    # Workout assignments

    @abstractmethod
    async def assign_workout(
        self,
        *,
        trainer_id: str,
        client_id: str,
        workout_id: str,
        scheduled_for: date,
        source: str = "manual",
        program_assignment_id: str | None = None,
        program_day_key: str | None = None,
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_workout_assignments(
        self,
        *,
        client_id: str,
        start: date,
        end: date,
        trainer_id: str | None = None,
    ) -> list[ClientWorkoutAssignment]:
        """Assignments scheduled within [start, end], ascending by date."""
        raise NotImplementedError

    @abstractmethod
    async def list_workout_assignments_on(
        self,
        *,
        trainer_id: str,
        client_ids: list[str],
        on: date,
    ) -> list[ClientWorkoutAssignment]:
        raise NotImplementedError

    @abstractmethod
    async def list_workout_assignments_for_program(
        self,
        *,
        client_id: str,
        program_assignment_id: str,
    ) -> list[ClientWorkoutAssignment]:
        raise NotImplementedError

    @abstractmethod
    async def get_workout_assignment(self, assignment_id: str) -> ClientWorkoutAssignment | None:
        raise NotImplementedError

    @abstractmethod
    async def update_workout_assignment_date(self, assignment_id: str, scheduled_for: date) -> None:
        raise NotImplementedError

    @abstractmethod
    async def unassign_workout(self, assignment_id: str) -> None:
        raise NotImplementedError

    # Program assignments

    @abstractmethod
    async def insert_program_assignment(
        self,
        *,
        trainer_id: str,
        client_id: str,
        program_template_id: str,
        start_date: date,
        notes: str | None = None,
    ) -> ClientProgramAssignment:
        """Insert an active assignment. Raises DuplicateKeyError on an existing triple."""
        raise NotImplementedError

    @abstractmethod
    async def get_program_assignment(self, assignment_id: str) -> ClientProgramAssignment | None:
        raise NotImplementedError

    @abstractmethod
    async def find_program_assignment(
        self,
        *,
        client_id: str,
        program_template_id: str,
        start_date: date,
    ) -> ClientProgramAssignment | None:
        """Look up an assignment by its unique (client, template, start date) triple."""
        raise NotImplementedError

    @abstractmethod
    async def list_program_assignments(
        self,
        *,
        client_id: str,
        trainer_id: str | None = None,
    ) -> list[ClientProgramAssignment]:
        """All assignments of a client, newest start date first."""
        raise NotImplementedError

    @abstractmethod
    async def list_active_program_assignments(
        self,
        *,
        trainer_id: str,
        client_ids: list[str],
    ) -> list[ClientProgramAssignment]:
        raise NotImplementedError

    @abstractmethod
    async def list_program_assignments_for_templates(
        self,
        *,
        trainer_id: str,
        program_template_ids: list[str],
    ) -> list[ClientProgramAssignment]:
        raise NotImplementedError

    @abstractmethod
    async def generate_program_workout_assignments(self, program_assignment_id: str, *, replace_existing: bool) -> None:
        """Materialize per-day workout assignments from the program template."""
        raise NotImplementedError

    @abstractmethod
    async def reactivate_program_assignment(self, assignment_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def reset_program_assignment_progress(self, assignment_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def archive_program_assignment(self, assignment_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def update_program_assignment_start_date(self, assignment_id: str, new_start_date: date) -> None:
        raise NotImplementedError

    @abstractmethod
    async def mark_day_complete(self, program_assignment_id: str, day_key: str) -> ClientProgramAssignment:
        """Idempotently add a day key to the completed set; returns the post-state."""
        raise NotImplementedError

    @abstractmethod
    async def unmark_day_complete(self, program_assignment_id: str, day_key: str) -> ClientProgramAssignment:
        """Idempotently remove a day key from the completed set; returns the post-state."""
        raise NotImplementedError

    # Sessions and set logs

    @abstractmethod
    async def get_or_create_in_progress_session(
        self,
        *,
        client_id: str,
        trainer_id: str,
        workout_assignment_id: str | None,
        workout_template_id: str,
    ) -> SessionStart:
        raise NotImplementedError

    @abstractmethod
    async def get_session(self, session_id: str) -> WorkoutSession | None:
        raise NotImplementedError

    @abstractmethod
    async def list_sessions(
        self,
        *,
        client_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[WorkoutSession]:
        """Sessions started within [start, end), newest first."""
        raise NotImplementedError

    @abstractmethod
    async def list_set_logs(self, session_id: str) -> list[WorkoutSetLog]:
        raise NotImplementedError

    @abstractmethod
    async def upsert_set_logs(self, drafts: list[WorkoutSetLogDraft]) -> None:
        """Overwrite logs keyed by (session_id, exercise_id, set_index)."""
        raise NotImplementedError

    @abstractmethod
    async def finish_session(self, session_id: str, duration_sec: int) -> None:
        raise NotImplementedError
