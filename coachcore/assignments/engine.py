"""Assignment engine.

Binds program and workout templates to clients against the remote store and
handles the duplicate (client, template, start date) case through an
explicit resolution step. Remote failures are converted into typed outcomes
at the call site; nothing here lets a StoreError escape to the caller.
"""

from __future__ import annotations

from datetime import date

from loguru import logger

from coachcore.assignments.types import (
    AssignmentUpdateOutcome,
    ClientProgramAssignment,
    DuplicateProgramAssignment,
    ProgramAssignmentOutcome,
    Resolution,
    WorkoutAssignmentOutcome,
)
from coachcore.common.dates import DateLike, parse_ymd
from coachcore.common.errors import InvalidRequestError, RecordNotFoundError, StoreError, is_duplicate_key_error
from coachcore.store.base import RemoteStore


def _clean_ids(values: list[str] | None) -> list[str]:
    """Drop empty ids and duplicates, keeping first-occurrence order."""
    out: list[str] = []
    for value in values or []:
        text = (value or "").strip()
        if text and text not in out:
            out.append(text)
    return out


def _skipped_message(count: int) -> str:
    return f"{count} client(s) have an active program and were skipped."


def _validate_batch(
    trainer_id: str,
    client_ids: list[str] | None,
    target_id: str,
    target_label: str,
    day_value: DateLike | None,
    date_label: str,
) -> tuple[list[str], date]:
    """Clean and check a batch request before any remote call.

    Raises:
        InvalidRequestError: If the trainer, clients, target or date are missing or malformed
    """
    clients = _clean_ids(client_ids)
    day = parse_ymd(day_value)
    if not trainer_id:
        raise InvalidRequestError("Missing trainer")
    if not clients:
        raise InvalidRequestError("Select at least one client")
    if not target_id:
        raise InvalidRequestError(f"Missing {target_label}")
    if day is None:
        raise InvalidRequestError(f"Invalid {date_label}: {day_value!r}")
    return clients, day


class AssignmentEngine:
    """Creates and maintains program/workout assignments for a trainer.

    Attributes:
        store: Remote store every call is issued against
    """

    def __init__(self, store: RemoteStore) -> None:
        self.store = store

    async def _locked_client_ids(self, trainer_id: str, client_ids: list[str]) -> set[str]:
        """Clients that already have an active program.

        A failed lookup locks nobody; the assignment calls themselves still
        go through the store and fail on their own if the service is down.
        """
        try:
            active = await self.store.list_active_program_assignments(trainer_id=trainer_id, client_ids=client_ids)
        except StoreError as e:
            logger.bind(trainer_id=trainer_id).warning(f"Active program lookup failed, not excluding any client: {e}")
            return set()
        return {a.client_id for a in active}

    async def _partition_locked(self, trainer_id: str, client_ids: list[str]) -> tuple[list[str], list[str]]:
        locked = await self._locked_client_ids(trainer_id, client_ids)
        allowed = [c for c in client_ids if c not in locked]
        skipped = [c for c in client_ids if c in locked]
        if skipped:
            logger.bind(trainer_id=trainer_id, skipped=skipped).info(_skipped_message(len(skipped)))
        return allowed, skipped

    async def assign_workout(
        self,
        trainer_id: str,
        client_ids: list[str],
        workout_id: str,
        scheduled_for: DateLike,
    ) -> WorkoutAssignmentOutcome:
        """Assign a standalone workout to a batch of clients on one date.

        Clients with an active program are skipped. The workout template is
        re-checked before any assignment call because it may have been
        deleted after being picked from a stale list.

        Args:
            trainer_id: Assigning trainer
            client_ids: Target clients (empty and repeated ids are ignored)
            workout_id: Workout template id
            scheduled_for: Calendar date of the workout

        Returns:
            WorkoutAssignmentOutcome describing what happened
        """
        try:
            clients, day = _validate_batch(trainer_id, client_ids, workout_id, "workout", scheduled_for, "date")
        except InvalidRequestError as e:
            return WorkoutAssignmentOutcome(kind="invalid", message=str(e))

        allowed, skipped = await self._partition_locked(trainer_id, clients)
        if not allowed:
            return WorkoutAssignmentOutcome(kind="skipped", skipped_client_ids=skipped, message=_skipped_message(len(skipped)))

        try:
            exists = await self.store.workout_template_exists(workout_id)
        except StoreError as e:
            return WorkoutAssignmentOutcome(kind="failed", skipped_client_ids=skipped, message=e.message)
        if not exists:
            logger.bind(workout_id=workout_id).info("Workout template no longer exists")
            return WorkoutAssignmentOutcome(
                kind="not_found",
                skipped_client_ids=skipped,
                message="This workout template doesn't exist anymore. Refresh the list and pick a valid workout.",
            )

        assigned: list[str] = []
        for client_id in allowed:
            try:
                await self.store.assign_workout(
                    trainer_id=trainer_id,
                    client_id=client_id,
                    workout_id=workout_id,
                    scheduled_for=day,
                )
            except RecordNotFoundError as e:
                return WorkoutAssignmentOutcome(
                    kind="not_found",
                    assigned_client_ids=assigned,
                    skipped_client_ids=skipped,
                    failed_client_id=client_id,
                    message=e.message,
                )
            except StoreError as e:
                logger.bind(client_id=client_id, workout_id=workout_id).warning(f"Workout assignment failed: {e}")
                return WorkoutAssignmentOutcome(
                    kind="failed",
                    assigned_client_ids=assigned,
                    skipped_client_ids=skipped,
                    failed_client_id=client_id,
                    message=e.message,
                )
            assigned.append(client_id)

        logger.bind(trainer_id=trainer_id, workout_id=workout_id, clients=len(assigned)).info("Workout assigned")
        return WorkoutAssignmentOutcome(kind="assigned", assigned_client_ids=assigned, skipped_client_ids=skipped)

    async def assign_program(
        self,
        trainer_id: str,
        client_ids: list[str],
        program_template_id: str,
        start_date: DateLike,
        notes: str | None = None,
    ) -> ProgramAssignmentOutcome:
        """Assign a program to a batch of clients from a start date.

        Each client gets an inserted assignment row followed by day-row
        generation without replacement. A uniqueness violation on the insert
        stops the batch and returns the existing row as a conflict to resolve
        with `resolve_duplicate`.

        Args:
            trainer_id: Assigning trainer
            client_ids: Target clients (empty and repeated ids are ignored)
            program_template_id: Program template id
            start_date: Calendar date of program day 0
            notes: Optional free-text notes, stripped; blank stores as None

        Returns:
            ProgramAssignmentOutcome describing what happened
        """
        try:
            clients, start = _validate_batch(trainer_id, client_ids, program_template_id, "program", start_date, "start date")
        except InvalidRequestError as e:
            return ProgramAssignmentOutcome(kind="invalid", message=str(e))
        clean_notes = notes.strip() if notes and notes.strip() else None

        allowed, skipped = await self._partition_locked(trainer_id, clients)
        if not allowed:
            return ProgramAssignmentOutcome(kind="skipped", skipped_client_ids=skipped, message=_skipped_message(len(skipped)))

        try:
            template = await self.store.get_program_template(program_template_id)
        except StoreError as e:
            return ProgramAssignmentOutcome(kind="failed", skipped_client_ids=skipped, message=e.message)
        if template is None:
            return ProgramAssignmentOutcome(kind="not_found", skipped_client_ids=skipped, message="Program not found")

        assigned: list[ClientProgramAssignment] = []
        for client_id in allowed:
            try:
                inserted = await self.store.insert_program_assignment(
                    trainer_id=trainer_id,
                    client_id=client_id,
                    program_template_id=program_template_id,
                    start_date=start,
                    notes=clean_notes,
                )
            except StoreError as e:
                if not is_duplicate_key_error(e):
                    logger.bind(client_id=client_id).warning(f"Program assignment insert failed: {e}")
                    return ProgramAssignmentOutcome(
                        kind="failed",
                        assigned=assigned,
                        skipped_client_ids=skipped,
                        failed_client_id=client_id,
                        message=e.message,
                    )
                return await self._conflict_outcome(e, client_id, program_template_id, start, assigned, skipped)

            try:
                await self.store.generate_program_workout_assignments(inserted.id, replace_existing=False)
            except StoreError as e:
                logger.bind(program_assignment_id=inserted.id).warning(f"Day-row generation failed: {e}")
                return ProgramAssignmentOutcome(
                    kind="failed",
                    assigned=assigned,
                    skipped_client_ids=skipped,
                    failed_client_id=client_id,
                    message=e.message,
                )
            assigned.append(inserted)

        logger.bind(trainer_id=trainer_id, program_template_id=program_template_id, clients=len(assigned)).info(
            "Program assigned"
        )
        return ProgramAssignmentOutcome(kind="assigned", assigned=assigned, skipped_client_ids=skipped)

    async def _conflict_outcome(
        self,
        error: StoreError,
        client_id: str,
        program_template_id: str,
        start: date,
        assigned: list[ClientProgramAssignment],
        skipped: list[str],
    ) -> ProgramAssignmentOutcome:
        try:
            existing = await self.store.find_program_assignment(
                client_id=client_id,
                program_template_id=program_template_id,
                start_date=start,
            )
        except StoreError as e:
            existing = None
            error = e
        if existing is None:
            return ProgramAssignmentOutcome(
                kind="failed",
                assigned=assigned,
                skipped_client_ids=skipped,
                failed_client_id=client_id,
                message=error.message,
            )

        duplicate = DuplicateProgramAssignment.from_existing(existing)
        logger.bind(client_id=client_id, assignment_id=existing.id, mode=duplicate.mode).warning(
            "Program already assigned for this start date"
        )
        return ProgramAssignmentOutcome(
            kind="conflict",
            assigned=assigned,
            skipped_client_ids=skipped,
            conflict=duplicate,
            conflict_client_id=client_id,
            message=f"Program already assigned starting {start.isoformat()}",
        )

    async def resolve_duplicate(self, duplicate: DuplicateProgramAssignment, resolution: Resolution) -> AssignmentUpdateOutcome:
        """Apply one of the resolutions a duplicate allows, then regenerate its day rows.

        Archived duplicates accept `reactivate` and `reset_and_reactivate`;
        active duplicates accept only `reset_progress`. Every path ends with
        generation in replace mode so the day rows follow the template's
        current shape.
        """
        if resolution not in duplicate.allowed_resolutions:
            return AssignmentUpdateOutcome(
                kind="invalid",
                assignment=duplicate.existing,
                message=f"Resolution {resolution!r} is not available for an {duplicate.mode} assignment",
            )

        assignment_id = duplicate.existing.id
        try:
            if resolution in ("reset_progress", "reset_and_reactivate"):
                await self.store.reset_program_assignment_progress(assignment_id)
            if resolution in ("reactivate", "reset_and_reactivate"):
                await self.store.reactivate_program_assignment(assignment_id)
            await self.store.generate_program_workout_assignments(assignment_id, replace_existing=True)
        except StoreError as e:
            return self._update_failure(e, assignment_id)

        logger.bind(assignment_id=assignment_id, resolution=resolution).info("Duplicate program assignment resolved")
        return await self._reload(assignment_id)

    async def update_start_date(self, assignment_id: str, new_start_date: DateLike) -> AssignmentUpdateOutcome:
        """Move a program assignment to a new start date and regenerate every day row."""
        start = parse_ymd(new_start_date)
        if not assignment_id:
            return AssignmentUpdateOutcome(kind="invalid", message="Missing assignment")
        if start is None:
            return AssignmentUpdateOutcome(kind="invalid", message=f"Invalid start date: {new_start_date!r}")
        try:
            await self.store.update_program_assignment_start_date(assignment_id, start)
            await self.store.generate_program_workout_assignments(assignment_id, replace_existing=True)
        except StoreError as e:
            return self._update_failure(e, assignment_id)
        logger.bind(assignment_id=assignment_id, start_date=start.isoformat()).info("Program start date updated")
        return await self._reload(assignment_id)

    async def archive_program_assignment(self, assignment_id: str) -> AssignmentUpdateOutcome:
        if not assignment_id:
            return AssignmentUpdateOutcome(kind="invalid", message="Missing assignment")
        try:
            await self.store.archive_program_assignment(assignment_id)
        except StoreError as e:
            return self._update_failure(e, assignment_id)
        logger.bind(assignment_id=assignment_id).info("Program assignment archived")
        return await self._reload(assignment_id)

    async def mark_day_complete(self, program_assignment_id: str, day_key: str) -> AssignmentUpdateOutcome:
        return await self._set_day(program_assignment_id, day_key, complete=True)

    async def unmark_day_complete(self, program_assignment_id: str, day_key: str) -> AssignmentUpdateOutcome:
        return await self._set_day(program_assignment_id, day_key, complete=False)

    async def _set_day(self, program_assignment_id: str, day_key: str, *, complete: bool) -> AssignmentUpdateOutcome:
        # Empty keys would collide across every keyless day of the template.
        if not program_assignment_id:
            return AssignmentUpdateOutcome(kind="invalid", message="Missing assignment")
        if not day_key:
            return AssignmentUpdateOutcome(kind="invalid", message="Day has no key and cannot be tracked")
        try:
            if complete:
                updated = await self.store.mark_day_complete(program_assignment_id, day_key)
            else:
                updated = await self.store.unmark_day_complete(program_assignment_id, day_key)
        except StoreError as e:
            return self._update_failure(e, program_assignment_id)
        return AssignmentUpdateOutcome(kind="ok", assignment=updated)

    async def reschedule_workout(self, workout_assignment_id: str, scheduled_for: DateLike) -> AssignmentUpdateOutcome:
        day = parse_ymd(scheduled_for)
        if not workout_assignment_id:
            return AssignmentUpdateOutcome(kind="invalid", message="Missing assignment")
        if day is None:
            return AssignmentUpdateOutcome(kind="invalid", message=f"Invalid date: {scheduled_for!r}")
        try:
            await self.store.update_workout_assignment_date(workout_assignment_id, day)
            updated = await self.store.get_workout_assignment(workout_assignment_id)
        except StoreError as e:
            return self._update_failure(e, workout_assignment_id)
        if updated is None:
            return AssignmentUpdateOutcome(kind="not_found", message="Workout assignment not found")
        return AssignmentUpdateOutcome(kind="ok", workout_assignment=updated)

    async def unassign_workout(self, workout_assignment_id: str) -> AssignmentUpdateOutcome:
        if not workout_assignment_id:
            return AssignmentUpdateOutcome(kind="invalid", message="Missing assignment")
        try:
            await self.store.unassign_workout(workout_assignment_id)
        except StoreError as e:
            return self._update_failure(e, workout_assignment_id)
        logger.bind(workout_assignment_id=workout_assignment_id).info("Workout unassigned")
        return AssignmentUpdateOutcome(kind="ok")

    async def _reload(self, assignment_id: str) -> AssignmentUpdateOutcome:
        try:
            assignment = await self.store.get_program_assignment(assignment_id)
        except StoreError as e:
            return self._update_failure(e, assignment_id)
        if assignment is None:
            return AssignmentUpdateOutcome(kind="not_found", message="Program assignment not found")
        return AssignmentUpdateOutcome(kind="ok", assignment=assignment)

    @staticmethod
    def _update_failure(error: StoreError, record_id: str) -> AssignmentUpdateOutcome:
        if isinstance(error, RecordNotFoundError):
            return AssignmentUpdateOutcome(kind="not_found", message=error.message)
        logger.bind(record_id=record_id).warning(f"Assignment update failed: {error}")
        return AssignmentUpdateOutcome(kind="failed", message=error.message)
