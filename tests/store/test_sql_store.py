"""Tests for the SQLAlchemy remote store and its procedure semantics."""

from datetime import UTC, date, datetime, timedelta

import pytest

from coachcore.common.errors import DuplicateKeyError, RecordNotFoundError
from coachcore.db import models
from coachcore.workouts.types import WorkoutSetLogDraft

TRAINER = "trainer-1"


async def _insert(store, client_id="c-1", program_id="p-1", start=date(2024, 1, 1)):
    return await store.insert_program_assignment(
        trainer_id=TRAINER,
        client_id=client_id,
        program_template_id=program_id,
        start_date=start,
    )


@pytest.mark.asyncio
async def test_insert_duplicate_triple_raises_duplicate_key(store, two_week_program):
    first = await _insert(store)
    assert first.status == "active"
    assert first.progress is not None
    assert first.progress.completed_day_keys == []

    with pytest.raises(DuplicateKeyError) as exc_info:
        await _insert(store)
    assert exc_info.value.status == 409
    assert exc_info.value.code == "23505"

    # A different start date is a different assignment.
    await _insert(store, start=date(2024, 2, 1))


@pytest.mark.asyncio
async def test_find_and_list_program_assignments(store, two_week_program):
    older = await _insert(store, start=date(2024, 1, 1))
    newer = await _insert(store, start=date(2024, 3, 1))
    await _insert(store, client_id="c-2")

    found = await store.find_program_assignment(client_id="c-1", program_template_id="p-1", start_date=date(2024, 1, 1))
    assert found is not None and found.id == older.id
    assert await store.find_program_assignment(client_id="c-1", program_template_id="p-1", start_date=date(2024, 1, 2)) is None

    listed = await store.list_program_assignments(client_id="c-1")
    assert [a.id for a in listed] == [newer.id, older.id]

    await store.archive_program_assignment(older.id)
    active = await store.list_active_program_assignments(trainer_id=TRAINER, client_ids=["c-1", "c-2", ""])
    assert sorted(a.client_id for a in active) == ["c-1", "c-2"]
    assert await store.list_active_program_assignments(trainer_id=TRAINER, client_ids=[]) == []


@pytest.mark.asyncio
async def test_generate_creates_one_row_per_catalog_day(store, two_week_program):
    assignment = await _insert(store, start=date(2024, 1, 1))

    await store.generate_program_workout_assignments(assignment.id, replace_existing=False)

    rows = await store.list_workout_assignments_for_program(client_id="c-1", program_assignment_id=assignment.id)
    assert [(r.program_day_key, r.scheduled_for, r.workout_template_id) for r in rows] == [
        ("d1", date(2024, 1, 1), "w-a"),
        ("d3", date(2024, 1, 3), "w-b"),
        ("d8", date(2024, 1, 8), "w-a"),
    ]
    assert {r.source for r in rows} == {"program"}
    assert {r.status for r in rows} == {"assigned"}


@pytest.mark.asyncio
async def test_generate_without_replace_is_idempotent(store, two_week_program):
    assignment = await _insert(store)

    await store.generate_program_workout_assignments(assignment.id, replace_existing=False)
    await store.generate_program_workout_assignments(assignment.id, replace_existing=False)

    rows = await store.list_workout_assignments_for_program(client_id="c-1", program_assignment_id=assignment.id)
    assert len(rows) == 3


@pytest.mark.asyncio
async def test_generate_with_replace_rebuilds_after_date_change(store, two_week_program):
    assignment = await _insert(store, start=date(2024, 1, 1))
    await store.generate_program_workout_assignments(assignment.id, replace_existing=False)

    await store.update_program_assignment_start_date(assignment.id, date(2024, 2, 1))
    await store.generate_program_workout_assignments(assignment.id, replace_existing=True)

    rows = await store.list_workout_assignments_for_program(client_id="c-1", program_assignment_id=assignment.id)
    assert [r.scheduled_for for r in rows] == [date(2024, 2, 1), date(2024, 2, 3), date(2024, 2, 8)]


@pytest.mark.asyncio
async def test_generate_for_missing_assignment_raises_not_found(store):
    with pytest.raises(RecordNotFoundError):
        await store.generate_program_workout_assignments("missing", replace_existing=True)


@pytest.mark.asyncio
async def test_mark_and_unmark_are_idempotent(store, two_week_program):
    assignment = await _insert(store)

    first = await store.mark_day_complete(assignment.id, "d1")
    again = await store.mark_day_complete(assignment.id, "d1")
    both = await store.mark_day_complete(assignment.id, "d3")

    assert first.progress.completed_day_keys == ["d1"]
    assert again.progress.completed_day_keys == ["d1"]
    assert both.progress.completed_day_keys == ["d1", "d3"]
    assert both.progress.last_completed_at is not None

    removed = await store.unmark_day_complete(assignment.id, "d1")
    removed_again = await store.unmark_day_complete(assignment.id, "d1")
    assert removed.progress.completed_day_keys == ["d3"]
    assert removed_again.progress.completed_day_keys == ["d3"]
    assert removed_again.progress.last_completed_at == both.progress.last_completed_at


@pytest.mark.asyncio
async def test_reset_and_reactivate(store, two_week_program):
    assignment = await _insert(store)
    await store.mark_day_complete(assignment.id, "d1")
    await store.archive_program_assignment(assignment.id)

    await store.reset_program_assignment_progress(assignment.id)
    reset = await store.get_program_assignment(assignment.id)
    assert reset.status == "archived"
    assert reset.progress.completed_day_keys == []

    await store.reactivate_program_assignment(assignment.id)
    reactivated = await store.get_program_assignment(assignment.id)
    assert reactivated.status == "active"

    with pytest.raises(RecordNotFoundError):
        await store.reactivate_program_assignment("missing")


@pytest.mark.asyncio
async def test_assign_reschedule_and_unassign_workout(store, make_workout_template):
    make_workout_template("w-1")

    await store.assign_workout(trainer_id=TRAINER, client_id="c-1", workout_id="w-1", scheduled_for=date(2024, 1, 5))
    with pytest.raises(RecordNotFoundError):
        await store.assign_workout(trainer_id=TRAINER, client_id="c-1", workout_id="nope", scheduled_for=date(2024, 1, 5))

    (row,) = await store.list_workout_assignments(client_id="c-1", start=date(2024, 1, 1), end=date(2024, 1, 31))
    assert row.source == "manual"
    assert row.program_assignment_id is None

    await store.update_workout_assignment_date(row.id, date(2024, 1, 9))
    moved = await store.get_workout_assignment(row.id)
    assert moved.scheduled_for == date(2024, 1, 9)
    on_day = await store.list_workout_assignments_on(trainer_id=TRAINER, client_ids=["c-1"], on=date(2024, 1, 9))
    assert [r.id for r in on_day] == [row.id]

    await store.unassign_workout(row.id)
    assert await store.get_workout_assignment(row.id) is None
    with pytest.raises(RecordNotFoundError):
        await store.unassign_workout(row.id)


@pytest.mark.asyncio
async def test_workout_template_lookup(store, make_workout_template):
    make_workout_template("w-1", sets={"squat": 3, "bench": 1})

    assert await store.workout_template_exists("w-1")
    assert not await store.workout_template_exists("w-2")

    template = await store.get_workout_template("w-1")
    assert [(ex, idx) for ex, _, idx in template.state.set_slots()] == [
        ("squat", 0),
        ("squat", 1),
        ("squat", 2),
        ("bench", 0),
    ]
    assert await store.get_workout_template("w-2") is None


@pytest.mark.asyncio
async def test_get_or_create_session_resumes_in_progress(store):
    created = await store.get_or_create_in_progress_session(
        client_id="c-1", trainer_id=TRAINER, workout_assignment_id="wa-1", workout_template_id="w-1"
    )
    resumed = await store.get_or_create_in_progress_session(
        client_id="c-1", trainer_id=TRAINER, workout_assignment_id="wa-1", workout_template_id="w-1"
    )
    resumed_again = await store.get_or_create_in_progress_session(
        client_id="c-1", trainer_id=TRAINER, workout_assignment_id="wa-1", workout_template_id="w-1"
    )

    assert created.resumed is False
    assert resumed.resumed is True and resumed_again.resumed is True
    assert created.session.id == resumed.session.id == resumed_again.session.id
    assert created.session.started_at.tzinfo is not None
    assert len(await store.list_sessions(client_id="c-1")) == 1

    # Without an assignment id there is nothing to resume by.
    adhoc = await store.get_or_create_in_progress_session(
        client_id="c-1", trainer_id=TRAINER, workout_assignment_id=None, workout_template_id="w-1"
    )
    assert adhoc.resumed is False


@pytest.mark.asyncio
async def test_finished_session_is_not_resumed(store):
    start = await store.get_or_create_in_progress_session(
        client_id="c-1", trainer_id=TRAINER, workout_assignment_id="wa-1", workout_template_id="w-1"
    )
    await store.finish_session(start.session.id, 1234)

    finished = await store.get_session(start.session.id)
    assert finished.status == "completed"
    assert finished.duration_sec == 1234
    assert finished.finished_at is not None

    again = await store.get_or_create_in_progress_session(
        client_id="c-1", trainer_id=TRAINER, workout_assignment_id="wa-1", workout_template_id="w-1"
    )
    assert again.resumed is False
    assert again.session.id != start.session.id


@pytest.mark.asyncio
async def test_upsert_set_logs_overwrites_by_natural_key(store):
    start = await store.get_or_create_in_progress_session(
        client_id="c-1", trainer_id=TRAINER, workout_assignment_id=None, workout_template_id="w-1"
    )
    sid = start.session.id

    await store.upsert_set_logs(
        [
            WorkoutSetLogDraft(session_id=sid, exercise_id="squat", set_index=0, reps=5, weight=100),
            WorkoutSetLogDraft(session_id=sid, exercise_id="squat", set_index=1, reps=5, weight=100),
        ]
    )
    await store.upsert_set_logs(
        [WorkoutSetLogDraft(session_id=sid, exercise_id="squat", set_index=0, reps=6, weight=None, completed=True)]
    )
    await store.upsert_set_logs([])

    logs = sorted(await store.list_set_logs(sid), key=lambda log: log.set_index)
    assert [(log.set_index, log.reps, log.weight, log.completed) for log in logs] == [
        (0, 6, None, True),
        (1, 5, 100, False),
    ]


@pytest.mark.asyncio
async def test_list_sessions_window_and_order(store, session_factory):
    now = datetime(2024, 6, 10, 12, tzinfo=UTC)
    with session_factory() as session:
        for days_ago in (1, 5, 40):
            session.add(
                models.WorkoutSession(
                    id=f"s-{days_ago}",
                    client_id="c-1",
                    trainer_id=TRAINER,
                    workout_template_id="w-1",
                    status="completed",
                    started_at=now - timedelta(days=days_ago),
                )
            )
        session.commit()

    listed = await store.list_sessions(client_id="c-1", start=now - timedelta(days=28), end=now)
    assert [s.id for s in listed] == ["s-1", "s-5"]

    limited = await store.list_sessions(client_id="c-1", limit=1)
    assert [s.id for s in limited] == ["s-1"]
