"""SQLAlchemy-backed remote store.

Implements the remote service contract against a relational database,
including the server-side procedure semantics (day-row generation,
idempotent progress marks, session get-or-create). ORM work is synchronous
and runs in a worker thread so callers on the event loop never block.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from coachcore.assignments.types import (
    PROGRAM_STATUS_ACTIVE,
    PROGRAM_STATUS_ARCHIVED,
    WORKOUT_SOURCE_PROGRAM,
    ClientProgramAssignment,
    ClientWorkoutAssignment,
)
from coachcore.common.dates import add_days
from coachcore.common.errors import DuplicateKeyError, RecordNotFoundError, StoreError
from coachcore.db import models
from coachcore.db.session import get_session_factory, make_session_factory, session_scope
from coachcore.programs.flatten import first_workout_template_id, flatten_program_days
from coachcore.programs.progress import ProgramProgress, normalize_completed_day_keys
from coachcore.programs.types import ProgramTemplate
from coachcore.store.base import RemoteStore
from coachcore.workouts.types import SessionStart, WorkoutSession, WorkoutSetLog, WorkoutSetLogDraft, WorkoutTemplate

T = TypeVar("T")


def _aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _naive_utc(value: datetime) -> datetime:
    return value.astimezone(UTC).replace(tzinfo=None) if value.tzinfo else value


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    if getattr(orig, "pgcode", None) == "23505" or getattr(orig, "sqlstate", None) == "23505":
        return True
    return "unique" in str(orig).lower()


def _program_assignment(row: models.ClientProgramAssignment) -> ClientProgramAssignment:
    return ClientProgramAssignment(
        id=row.id,
        trainer_id=row.trainer_id,
        client_id=row.client_id,
        program_template_id=row.program_template_id,
        start_date=row.start_date,
        status=row.status,
        notes=row.notes,
        progress=ProgramProgress.from_raw(row.progress),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _workout_assignment(row: models.ClientWorkoutAssignment) -> ClientWorkoutAssignment:
    return ClientWorkoutAssignment(
        id=row.id,
        trainer_id=row.trainer_id,
        client_id=row.client_id,
        workout_template_id=row.workout_template_id,
        scheduled_for=row.scheduled_for,
        status=row.status,
        source=row.source,
        program_assignment_id=row.program_assignment_id,
        program_day_key=row.program_day_key,
    )


def _workout_session(row: models.WorkoutSession) -> WorkoutSession:
    return WorkoutSession(
        id=row.id,
        client_id=row.client_id,
        trainer_id=row.trainer_id,
        workout_assignment_id=row.workout_assignment_id,
        workout_template_id=row.workout_template_id,
        started_at=_aware(row.started_at),
        finished_at=_aware(row.finished_at),
        duration_sec=row.duration_sec,
        status=row.status,
    )


def _set_log(row: models.WorkoutSetLog) -> WorkoutSetLog:
    return WorkoutSetLog(
        id=row.id,
        session_id=row.session_id,
        series_block_id=row.series_block_id,
        exercise_id=row.exercise_id,
        set_index=row.set_index,
        reps=row.reps,
        weight=row.weight,
        completed=row.completed,
        created_at=_aware(row.created_at),
    )


class SqlRemoteStore(RemoteStore):
    """RemoteStore over a SQLAlchemy engine."""

    def __init__(self, engine: Engine | None = None, session_factory: sessionmaker[Session] | None = None) -> None:
        if session_factory is not None:
            self._factory = session_factory
        elif engine is not None:
            self._factory = make_session_factory(engine)
        else:
            self._factory = get_session_factory()

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._transact, fn, *args)

    def _transact(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            with session_scope(self._factory) as session:
                return fn(session, *args)
        except IntegrityError as e:
            if _is_unique_violation(e):
                raise DuplicateKeyError(str(e.orig)) from e
            raise StoreError(str(e.orig)) from e
        except SQLAlchemyError as e:
            logger.bind(operation=getattr(fn, "__name__", "unknown")).warning(f"Database operation failed: {e}")
            raise StoreError(str(e)) from e

    @staticmethod
    def _require_program_assignment(session: Session, assignment_id: str) -> models.ClientProgramAssignment:
        row = session.get(models.ClientProgramAssignment, assignment_id)
        if row is None:
            raise RecordNotFoundError("program assignment", assignment_id)
        return row

    # Templates

    async def workout_template_exists(self, workout_id: str) -> bool:
        def _exists(session: Session) -> bool:
            return session.execute(select(models.WorkoutTemplate.id).where(models.WorkoutTemplate.id == workout_id)).first() is not None

        return await self._call(_exists)

    async def get_workout_template(self, workout_id: str) -> WorkoutTemplate | None:
        def _get(session: Session) -> WorkoutTemplate | None:
            row = session.get(models.WorkoutTemplate, workout_id)
            if row is None:
                return None
            return WorkoutTemplate(id=row.id, trainer_id=row.trainer_id, title=row.title, state=row.state)

        return await self._call(_get)

    async def get_program_template(self, program_template_id: str) -> ProgramTemplate | None:
        def _get(session: Session) -> ProgramTemplate | None:
            row = session.get(models.ProgramTemplate, program_template_id)
            if row is None:
                return None
            return ProgramTemplate(
                id=row.id,
                owner_trainer_id=row.owner_trainer_id,
                title=row.title,
                description=row.description,
                difficulty=row.difficulty,
                duration_weeks=row.duration_weeks,
                state=row.state,
            )

        return await self._call(_get)

    # Workout assignments

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
        def _assign(session: Session) -> None:
            if session.get(models.WorkoutTemplate, workout_id) is None:
                raise RecordNotFoundError("workout", workout_id)
            session.add(
                models.ClientWorkoutAssignment(
                    trainer_id=trainer_id,
                    client_id=client_id,
                    workout_template_id=workout_id,
                    scheduled_for=scheduled_for,
                    status="assigned",
                    source=source,
                    program_assignment_id=program_assignment_id,
                    program_day_key=program_day_key,
                )
            )

        await self._call(_assign)

    async def list_workout_assignments(
        self,
        *,
        client_id: str,
        start: date,
        end: date,
        trainer_id: str | None = None,
    ) -> list[ClientWorkoutAssignment]:
        def _list(session: Session) -> list[ClientWorkoutAssignment]:
            stmt = select(models.ClientWorkoutAssignment).where(
                models.ClientWorkoutAssignment.client_id == client_id,
                models.ClientWorkoutAssignment.scheduled_for >= start,
                models.ClientWorkoutAssignment.scheduled_for <= end,
            )
            if trainer_id:
                stmt = stmt.where(models.ClientWorkoutAssignment.trainer_id == trainer_id)
            stmt = stmt.order_by(models.ClientWorkoutAssignment.scheduled_for.asc())
            return [_workout_assignment(r) for r in session.execute(stmt).scalars()]

        return await self._call(_list)

    async def list_workout_assignments_on(
        self,
        *,
        trainer_id: str,
        client_ids: list[str],
        on: date,
    ) -> list[ClientWorkoutAssignment]:
        ids = sorted({c for c in client_ids if c})
        if not ids:
            return []

        def _list(session: Session) -> list[ClientWorkoutAssignment]:
            stmt = select(models.ClientWorkoutAssignment).where(
                models.ClientWorkoutAssignment.trainer_id == trainer_id,
                models.ClientWorkoutAssignment.client_id.in_(ids),
                models.ClientWorkoutAssignment.scheduled_for == on,
            )
            return [_workout_assignment(r) for r in session.execute(stmt).scalars()]

        return await self._call(_list)

    async def list_workout_assignments_for_program(
        self,
        *,
        client_id: str,
        program_assignment_id: str,
    ) -> list[ClientWorkoutAssignment]:
        def _list(session: Session) -> list[ClientWorkoutAssignment]:
            stmt = (
                select(models.ClientWorkoutAssignment)
                .where(
                    models.ClientWorkoutAssignment.client_id == client_id,
                    models.ClientWorkoutAssignment.program_assignment_id == program_assignment_id,
                )
                .order_by(models.ClientWorkoutAssignment.scheduled_for.asc())
            )
            return [_workout_assignment(r) for r in session.execute(stmt).scalars()]

        return await self._call(_list)

    async def get_workout_assignment(self, assignment_id: str) -> ClientWorkoutAssignment | None:
        def _get(session: Session) -> ClientWorkoutAssignment | None:
            row = session.get(models.ClientWorkoutAssignment, assignment_id)
            return _workout_assignment(row) if row is not None else None

        return await self._call(_get)

    async def update_workout_assignment_date(self, assignment_id: str, scheduled_for: date) -> None:
        def _update(session: Session) -> None:
            row = session.get(models.ClientWorkoutAssignment, assignment_id)
            if row is None:
                raise RecordNotFoundError("workout assignment", assignment_id)
            row.scheduled_for = scheduled_for

        await self._call(_update)

    async def unassign_workout(self, assignment_id: str) -> None:
        def _delete(session: Session) -> None:
            row = session.get(models.ClientWorkoutAssignment, assignment_id)
            if row is None:
                raise RecordNotFoundError("workout assignment", assignment_id)
            session.delete(row)

        await self._call(_delete)

    # Program assignments

    async def insert_program_assignment(
        self,
        *,
        trainer_id: str,
        client_id: str,
        program_template_id: str,
        start_date: date,
        notes: str | None = None,
    ) -> ClientProgramAssignment:
        def _insert(session: Session) -> ClientProgramAssignment:
            row = models.ClientProgramAssignment(
                trainer_id=trainer_id,
                client_id=client_id,
                program_template_id=program_template_id,
                start_date=start_date,
                status=PROGRAM_STATUS_ACTIVE,
                notes=notes,
                progress=ProgramProgress().to_raw(),
            )
            session.add(row)
            session.flush()
            return _program_assignment(row)

        return await self._call(_insert)

    async def get_program_assignment(self, assignment_id: str) -> ClientProgramAssignment | None:
        def _get(session: Session) -> ClientProgramAssignment | None:
            row = session.get(models.ClientProgramAssignment, assignment_id)
            return _program_assignment(row) if row is not None else None

        return await self._call(_get)

    async def find_program_assignment(
        self,
        *,
        client_id: str,
        program_template_id: str,
        start_date: date,
    ) -> ClientProgramAssignment | None:
        def _find(session: Session) -> ClientProgramAssignment | None:
            row = session.execute(
                select(models.ClientProgramAssignment).where(
                    models.ClientProgramAssignment.client_id == client_id,
                    models.ClientProgramAssignment.program_template_id == program_template_id,
                    models.ClientProgramAssignment.start_date == start_date,
                )
            ).scalar_one_or_none()
            return _program_assignment(row) if row is not None else None

        return await self._call(_find)

    async def list_program_assignments(
        self,
        *,
        client_id: str,
        trainer_id: str | None = None,
    ) -> list[ClientProgramAssignment]:
        def _list(session: Session) -> list[ClientProgramAssignment]:
            stmt = select(models.ClientProgramAssignment).where(models.ClientProgramAssignment.client_id == client_id)
            if trainer_id:
                stmt = stmt.where(models.ClientProgramAssignment.trainer_id == trainer_id)
            stmt = stmt.order_by(models.ClientProgramAssignment.start_date.desc())
            return [_program_assignment(r) for r in session.execute(stmt).scalars()]

        return await self._call(_list)

    async def list_active_program_assignments(
        self,
        *,
        trainer_id: str,
        client_ids: list[str],
    ) -> list[ClientProgramAssignment]:
        ids = sorted({c for c in client_ids if c})
        if not ids:
            return []

        def _list(session: Session) -> list[ClientProgramAssignment]:
            stmt = select(models.ClientProgramAssignment).where(
                models.ClientProgramAssignment.trainer_id == trainer_id,
                models.ClientProgramAssignment.client_id.in_(ids),
                models.ClientProgramAssignment.status == PROGRAM_STATUS_ACTIVE,
            )
            return [_program_assignment(r) for r in session.execute(stmt).scalars()]

        return await self._call(_list)

    async def list_program_assignments_for_templates(
        self,
        *,
        trainer_id: str,
        program_template_ids: list[str],
    ) -> list[ClientProgramAssignment]:
        ids = sorted({t for t in program_template_ids if t})
        if not ids:
            return []

        def _list(session: Session) -> list[ClientProgramAssignment]:
            stmt = select(models.ClientProgramAssignment).where(
                models.ClientProgramAssignment.trainer_id == trainer_id,
                models.ClientProgramAssignment.program_template_id.in_(ids),
            )
            return [_program_assignment(r) for r in session.execute(stmt).scalars()]

        return await self._call(_list)

    async def generate_program_workout_assignments(self, program_assignment_id: str, *, replace_existing: bool) -> None:
        def _generate(session: Session) -> int:
            assignment = self._require_program_assignment(session, program_assignment_id)
            template = session.get(models.ProgramTemplate, assignment.program_template_id)
            if template is None:
                raise RecordNotFoundError("program template", assignment.program_template_id)

            existing_keys: set[str] = set()
            existing_dates: set[date] = set()
            if replace_existing:
                session.execute(
                    delete(models.ClientWorkoutAssignment).where(
                        models.ClientWorkoutAssignment.program_assignment_id == program_assignment_id
                    )
                )
            else:
                for r in session.execute(
                    select(models.ClientWorkoutAssignment).where(
                        models.ClientWorkoutAssignment.program_assignment_id == program_assignment_id
                    )
                ).scalars():
                    if r.program_day_key:
                        existing_keys.add(r.program_day_key)
                    else:
                        existing_dates.add(r.scheduled_for)

            created = 0
            for day in flatten_program_days(template.state):
                workout_id = first_workout_template_id(day)
                if not workout_id:
                    continue
                scheduled_for = add_days(assignment.start_date, day.offset)
                day_key = day.day_key or None
                already = day_key in existing_keys if day_key else scheduled_for in existing_dates
                if already:
                    continue
                session.add(
                    models.ClientWorkoutAssignment(
                        trainer_id=assignment.trainer_id,
                        client_id=assignment.client_id,
                        workout_template_id=workout_id,
                        scheduled_for=scheduled_for,
                        status="assigned",
                        source=WORKOUT_SOURCE_PROGRAM,
                        program_assignment_id=assignment.id,
                        program_day_key=day_key,
                    )
                )
                created += 1
            return created

        created = await self._call(_generate)
        logger.bind(
            program_assignment_id=program_assignment_id,
            replace_existing=replace_existing,
            created=created,
        ).debug("Generated program workout assignments")

    async def reactivate_program_assignment(self, assignment_id: str) -> None:
        def _reactivate(session: Session) -> None:
            self._require_program_assignment(session, assignment_id).status = PROGRAM_STATUS_ACTIVE

        await self._call(_reactivate)

    async def reset_program_assignment_progress(self, assignment_id: str) -> None:
        def _reset(session: Session) -> None:
            self._require_program_assignment(session, assignment_id).progress = ProgramProgress().to_raw()

        await self._call(_reset)

    async def archive_program_assignment(self, assignment_id: str) -> None:
        def _archive(session: Session) -> None:
            self._require_program_assignment(session, assignment_id).status = PROGRAM_STATUS_ARCHIVED

        await self._call(_archive)

    async def update_program_assignment_start_date(self, assignment_id: str, new_start_date: date) -> None:
        def _update(session: Session) -> None:
            self._require_program_assignment(session, assignment_id).start_date = new_start_date

        await self._call(_update)

    async def mark_day_complete(self, program_assignment_id: str, day_key: str) -> ClientProgramAssignment:
        def _mark(session: Session) -> ClientProgramAssignment:
            row = self._require_program_assignment(session, program_assignment_id)
            keys = normalize_completed_day_keys(row.progress)
            if day_key not in keys:
                keys.append(day_key)
            row.progress = ProgramProgress(completed_day_keys=keys, last_completed_at=datetime.now(UTC)).to_raw()
            session.flush()
            return _program_assignment(row)

        return await self._call(_mark)

    async def unmark_day_complete(self, program_assignment_id: str, day_key: str) -> ClientProgramAssignment:
        def _unmark(session: Session) -> ClientProgramAssignment:
            row = self._require_program_assignment(session, program_assignment_id)
            current = ProgramProgress.from_raw(row.progress) or ProgramProgress()
            keys = [k for k in normalize_completed_day_keys(current) if k != day_key]
            row.progress = ProgramProgress(completed_day_keys=keys, last_completed_at=current.last_completed_at).to_raw()
            session.flush()
            return _program_assignment(row)

        return await self._call(_unmark)

    # Sessions and set logs

    async def get_or_create_in_progress_session(
        self,
        *,
        client_id: str,
        trainer_id: str,
        workout_assignment_id: str | None,
        workout_template_id: str,
    ) -> SessionStart:
        def _get_or_create(session: Session) -> SessionStart:
            if workout_assignment_id:
                row = session.execute(
                    select(models.WorkoutSession)
                    .where(
                        models.WorkoutSession.client_id == client_id,
                        models.WorkoutSession.workout_assignment_id == workout_assignment_id,
                        models.WorkoutSession.status == "in_progress",
                    )
                    .order_by(models.WorkoutSession.started_at.desc())
                    .limit(1)
                ).scalar_one_or_none()
                if row is not None:
                    return SessionStart(session=_workout_session(row), resumed=True)

            created = models.WorkoutSession(
                client_id=client_id,
                trainer_id=trainer_id,
                workout_assignment_id=workout_assignment_id,
                workout_template_id=workout_template_id,
                status="in_progress",
                started_at=datetime.now(UTC),
            )
            session.add(created)
            session.flush()
            return SessionStart(session=_workout_session(created), resumed=False)

        return await self._call(_get_or_create)

    async def get_session(self, session_id: str) -> WorkoutSession | None:
        def _get(session: Session) -> WorkoutSession | None:
            row = session.get(models.WorkoutSession, session_id)
            return _workout_session(row) if row is not None else None

        return await self._call(_get)

    async def list_sessions(
        self,
        *,
        client_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[WorkoutSession]:
        def _list(session: Session) -> list[WorkoutSession]:
            stmt = select(models.WorkoutSession).where(models.WorkoutSession.client_id == client_id)
            if start is not None:
                stmt = stmt.where(models.WorkoutSession.started_at >= _naive_utc(start))
            if end is not None:
                stmt = stmt.where(models.WorkoutSession.started_at < _naive_utc(end))
            stmt = stmt.order_by(models.WorkoutSession.started_at.desc())
            if limit:
                stmt = stmt.limit(limit)
            return [_workout_session(r) for r in session.execute(stmt).scalars()]

        return await self._call(_list)

    async def list_set_logs(self, session_id: str) -> list[WorkoutSetLog]:
        def _list(session: Session) -> list[WorkoutSetLog]:
            stmt = (
                select(models.WorkoutSetLog)
                .where(models.WorkoutSetLog.session_id == session_id)
                .order_by(models.WorkoutSetLog.created_at.asc(), models.WorkoutSetLog.set_index.asc())
            )
            return [_set_log(r) for r in session.execute(stmt).scalars()]

        return await self._call(_list)

    async def upsert_set_logs(self, drafts: list[WorkoutSetLogDraft]) -> None:
        if not drafts:
            return

        def _upsert(session: Session) -> None:
            for draft in drafts:
                row = session.execute(
                    select(models.WorkoutSetLog).where(
                        models.WorkoutSetLog.session_id == draft.session_id,
                        models.WorkoutSetLog.exercise_id == draft.exercise_id,
                        models.WorkoutSetLog.set_index == draft.set_index,
                    )
                ).scalar_one_or_none()
                if row is None:
                    row = models.WorkoutSetLog(
                        session_id=draft.session_id,
                        exercise_id=draft.exercise_id,
                        set_index=draft.set_index,
                    )
                    session.add(row)
                row.series_block_id = draft.series_block_id
                row.reps = draft.reps
                row.weight = draft.weight
                row.completed = draft.completed

        await self._call(_upsert)

    async def finish_session(self, session_id: str, duration_sec: int) -> None:
        def _finish(session: Session) -> None:
            row = session.get(models.WorkoutSession, session_id)
            if row is None:
                raise RecordNotFoundError("workout session", session_id)
            row.status = "completed"
            row.finished_at = datetime.now(UTC)
            row.duration_sec = duration_sec

        await self._call(_finish)
