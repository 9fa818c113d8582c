"""Read-side aggregates over assignments for the trainer views."""

from __future__ import annotations

from datetime import date

from loguru import logger
from pydantic import BaseModel

from coachcore.assignments.types import (
    PROGRAM_STATUS_COMPLETED,
    WORKOUT_SOURCE_PROGRAM,
    ClientProgramAssignment,
    ClientWorkoutAssignment,
)
from coachcore.common.dates import DateLike, parse_ymd, today_utc
from coachcore.common.errors import StoreError
from coachcore.programs.schedule import planned_workout_for_date
from coachcore.programs.types import ProgramTemplateState
from coachcore.store.base import RemoteStore


class AssignmentCounts(BaseModel):
    doing: int = 0
    finished: int = 0


class ClientAssignmentSummary(BaseModel):
    """What a trainer's client card shows: the active program and today's workout.

    `today_workout` is the stored assignment row when one exists for today,
    otherwise a projection from the active program (`projected=True`, never
    persisted).
    """

    client_id: str
    active_program: ClientProgramAssignment | None = None
    today_workout: ClientWorkoutAssignment | None = None
    projected: bool = False


async def program_assignment_stats(
    store: RemoteStore,
    trainer_id: str,
    program_template_ids: list[str],
) -> dict[str, AssignmentCounts]:
    """Per-template counts of assignments still running versus completed.

    Every requested template id is present in the result, with zero counts
    when it has never been assigned.
    """
    ids = sorted({t for t in program_template_ids if t})
    out = {template_id: AssignmentCounts() for template_id in ids}
    if not trainer_id or not ids:
        return out
    rows = await store.list_program_assignments_for_templates(trainer_id=trainer_id, program_template_ids=ids)
    for row in rows:
        counts = out.setdefault(row.program_template_id, AssignmentCounts())
        if row.status == PROGRAM_STATUS_COMPLETED:
            counts.finished += 1
        else:
            counts.doing += 1
    return out


def _projected_workout(
    assignment: ClientProgramAssignment,
    state: ProgramTemplateState,
    on: date,
) -> ClientWorkoutAssignment | None:
    planned = planned_workout_for_date(state, assignment.start_date, on)
    if planned is None:
        return None
    return ClientWorkoutAssignment(
        id=f"planned_{assignment.id}_{on.isoformat()}",
        trainer_id=assignment.trainer_id,
        client_id=assignment.client_id,
        workout_template_id=planned.workout_template_id,
        scheduled_for=on,
        status="assigned",
        source=WORKOUT_SOURCE_PROGRAM,
        program_assignment_id=assignment.id,
        program_day_key=planned.day_key,
    )


async def trainer_clients_summary(
    store: RemoteStore,
    trainer_id: str,
    client_ids: list[str],
    today: DateLike | None = None,
) -> dict[str, ClientAssignmentSummary]:
    """Active program and today's workout for each client of a trainer.

    The active-program query is required; today's workout rows and the
    program templates used for projection are best effort, so a failure
    there leaves `today_workout` empty instead of failing the summary.

    Raises:
        StoreError: If the active-program query fails
    """
    ids = sorted({c for c in client_ids if c})
    on = parse_ymd(today) or today_utc()
    out = {client_id: ClientAssignmentSummary(client_id=client_id) for client_id in ids}
    if not trainer_id or not ids:
        return out

    active = await store.list_active_program_assignments(trainer_id=trainer_id, client_ids=ids)
    for assignment in active:
        out[assignment.client_id].active_program = assignment

    try:
        rows = await store.list_workout_assignments_on(trainer_id=trainer_id, client_ids=ids, on=on)
    except StoreError as e:
        logger.bind(trainer_id=trainer_id).warning(f"Today's workout lookup failed: {e}")
        rows = []
    for row in rows:
        out[row.client_id].today_workout = row

    template_states: dict[str, ProgramTemplateState | None] = {}
    for summary in out.values():
        assignment = summary.active_program
        if assignment is None or summary.today_workout is not None:
            continue
        template_id = assignment.program_template_id
        if template_id not in template_states:
            try:
                template = await store.get_program_template(template_id)
            except StoreError as e:
                logger.bind(program_template_id=template_id).warning(f"Program template lookup failed: {e}")
                template = None
            template_states[template_id] = template.state if template is not None else None
        state = template_states[template_id]
        if state is None:
            continue
        projected = _projected_workout(assignment, state, on)
        if projected is not None:
            summary.today_workout = projected
            summary.projected = True
    return out
