import json
from datetime import date

import httpx
import pytest

from coachcore.assignments.engine import AssignmentEngine
from coachcore.common.errors import DuplicateKeyError, RecordNotFoundError, StoreError
from coachcore.store.http import HttpRemoteStore
from coachcore.workouts.types import WorkoutSetLogDraft

BASE_URL = "https://db.example.test"

# Rows as the service returns them: lowercase assignment columns,
# camelCase session and set-log columns.
ASSIGNMENT_ROW = {
    "id": "pa-1",
    "trainerid": "trainer-1",
    "clientid": "c-1",
    "programtemplateid": "p-1",
    "startdate": "2024-01-01",
    "status": "active",
    "notes": None,
    "progress": {"completedDayKeys": ["d1", "d3"], "lastCompletedAt": "2024-01-03T10:00:00Z"},
    "createdat": "2024-01-01T09:00:00Z",
    "updatedat": "2024-01-03T10:00:00Z",
}

WORKOUT_ASSIGNMENT_ROW = {
    "id": "wa-1",
    "trainerid": "trainer-1",
    "clientid": "c-1",
    "workouttemplateid": "w-1",
    "scheduledfor": "2024-01-03",
    "status": "assigned",
    "source": "program",
    "programassignmentid": "pa-1",
    "programdaykey": "d3",
}

SESSION_ROW = {
    "id": "s-1",
    "clientId": "c-1",
    "trainerId": "trainer-1",
    "workoutAssignmentId": "wa-1",
    "workoutTemplateId": "w-1",
    "startedAt": "2024-01-05T08:00:00+00:00",
    "finishedAt": None,
    "durationSec": None,
    "status": "in_progress",
}


class Recorder:
    """MockTransport handler that records requests and replies from a queue."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            return httpx.Response(204)
        return self.responses.pop(0)

    def body(self, index: int = -1):
        return json.loads(self.requests[index].content)


def make_store(recorder: Recorder) -> HttpRemoteStore:
    return HttpRemoteStore(BASE_URL, "anon-key", transport=httpx.MockTransport(recorder))


@pytest.mark.asyncio
async def test_rpc_payload_and_auth_headers():
    recorder = Recorder()
    async with make_store(recorder) as store:
        await store.generate_program_workout_assignments("pa-1", replace_existing=True)

    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/rest/v1/rpc/generate_program_workout_assignments"
    assert recorder.body() == {"p_program_assignment_id": "pa-1", "p_replace_existing": True}
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Authorization"] == "Bearer anon-key"


@pytest.mark.asyncio
async def test_start_date_update_uses_named_argument():
    recorder = Recorder()
    async with make_store(recorder) as store:
        await store.update_program_assignment_start_date("pa-1", date(2024, 3, 4))

    assert recorder.requests[0].url.path.endswith("/rpc/update_client_program_assignment_start_date")
    assert recorder.body() == {"p_assignment_id": "pa-1", "p_new_start_date": "2024-03-04"}


@pytest.mark.asyncio
async def test_mark_day_complete_parses_service_row():
    recorder = Recorder(httpx.Response(200, json=[ASSIGNMENT_ROW]))
    async with make_store(recorder) as store:
        assignment = await store.mark_day_complete("pa-1", "d3")

    assert recorder.body() == {"p_program_assignment_id": "pa-1", "p_day_key": "d3"}
    assert (assignment.client_id, assignment.program_template_id) == ("c-1", "p-1")
    assert assignment.start_date == date(2024, 1, 1)
    assert assignment.progress.completed_day_keys == ["d1", "d3"]
    assert assignment.progress.last_completed_at is not None
    assert assignment.updated_at is not None


@pytest.mark.asyncio
async def test_insert_program_assignment_sends_lowercase_columns():
    recorder = Recorder(httpx.Response(201, json=[ASSIGNMENT_ROW]))
    async with make_store(recorder) as store:
        assignment = await store.insert_program_assignment(
            trainer_id="trainer-1", client_id="c-1", program_template_id="p-1", start_date=date(2024, 1, 1)
        )

    request = recorder.requests[0]
    assert request.url.path == "/rest/v1/clientProgramAssignments"
    assert request.headers["Prefer"] == "return=representation"
    assert recorder.body() == {
        "trainerid": "trainer-1",
        "clientid": "c-1",
        "programtemplateid": "p-1",
        "startdate": "2024-01-01",
        "status": "active",
        "notes": None,
    }
    assert assignment.id == "pa-1"


@pytest.mark.asyncio
async def test_find_program_assignment_filters_on_unique_key():
    recorder = Recorder(httpx.Response(200, json=[ASSIGNMENT_ROW]))
    async with make_store(recorder) as store:
        found = await store.find_program_assignment(client_id="c-1", program_template_id="p-1", start_date=date(2024, 1, 1))

    params = recorder.requests[0].url.params
    assert (params["clientid"], params["programtemplateid"], params["startdate"]) == (
        "eq.c-1",
        "eq.p-1",
        "eq.2024-01-01",
    )
    assert found.id == "pa-1"


@pytest.mark.asyncio
async def test_workout_assignments_for_program_are_mapped():
    recorder = Recorder(httpx.Response(200, json=[WORKOUT_ASSIGNMENT_ROW]))
    async with make_store(recorder) as store:
        (row,) = await store.list_workout_assignments_for_program(client_id="c-1", program_assignment_id="pa-1")

    request = recorder.requests[0]
    assert request.url.path == "/rest/v1/clientWorkoutAssignments"
    assert request.url.params["programassignmentid"] == "eq.pa-1"
    assert request.url.params["order"] == "scheduledfor.asc"
    assert (row.workout_template_id, row.scheduled_for, row.program_day_key) == ("w-1", date(2024, 1, 3), "d3")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(409, json={"code": "23505", "message": "duplicate key value"}),
        httpx.Response(400, json={"code": "23505", "message": "duplicate key value"}),
    ],
)
async def test_duplicate_insert_raises_duplicate_key(response):
    async with make_store(Recorder(response)) as store:
        with pytest.raises(DuplicateKeyError) as exc_info:
            await store.insert_program_assignment(
                trainer_id="trainer-1", client_id="c-1", program_template_id="p-1", start_date=date(2024, 1, 1)
            )

    assert exc_info.value.message == "duplicate key value"


@pytest.mark.asyncio
async def test_server_error_raises_store_error():
    response = httpx.Response(500, json={"code": "XX000", "message": "internal"})
    async with make_store(Recorder(response)) as store:
        with pytest.raises(StoreError) as exc_info:
            await store.archive_program_assignment("pa-1")

    assert not isinstance(exc_info.value, DuplicateKeyError)
    assert exc_info.value.status == 500
    assert exc_info.value.code == "XX000"


@pytest.mark.asyncio
async def test_transport_error_raises_store_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with HttpRemoteStore(BASE_URL, "k", transport=httpx.MockTransport(handler)) as store:
        with pytest.raises(StoreError, match="connection refused"):
            await store.workout_template_exists("w-1")


@pytest.mark.asyncio
async def test_malformed_row_raises_store_error():
    row = {"id": "pa-1", "clientid": "c-1", "startdate": "not a date"}
    async with make_store(Recorder(httpx.Response(200, json=[row]))) as store:
        with pytest.raises(StoreError, match="clientProgramAssignments"):
            await store.get_program_assignment("pa-1")


@pytest.mark.asyncio
async def test_non_json_body_raises_store_error():
    response = httpx.Response(200, content=b"<html>gateway</html>")
    async with make_store(Recorder(response)) as store:
        with pytest.raises(StoreError, match="not JSON"):
            await store.get_session("s-1")


@pytest.mark.asyncio
async def test_engine_archive_reloads_service_row():
    recorder = Recorder(httpx.Response(204), httpx.Response(200, json=[{**ASSIGNMENT_ROW, "status": "archived"}]))
    async with make_store(recorder) as store:
        outcome = await AssignmentEngine(store).archive_program_assignment("pa-1")

    assert outcome.kind == "ok"
    assert outcome.assignment.status == "archived"
    assert outcome.assignment.client_id == "c-1"


@pytest.mark.asyncio
async def test_engine_archive_reports_malformed_reload_as_failed():
    broken = {"id": "pa-1", "clientid": "c-1"}
    recorder = Recorder(httpx.Response(204), httpx.Response(200, json=[broken]))
    async with make_store(recorder) as store:
        outcome = await AssignmentEngine(store).archive_program_assignment("pa-1")

    assert outcome.kind == "failed"
    assert outcome.assignment is None


@pytest.mark.asyncio
async def test_list_active_uses_in_filter_and_skips_empty_batch():
    recorder = Recorder(httpx.Response(200, json=[ASSIGNMENT_ROW]))
    async with make_store(recorder) as store:
        assert await store.list_active_program_assignments(trainer_id="trainer-1", client_ids=[""]) == []
        active = await store.list_active_program_assignments(trainer_id="trainer-1", client_ids=["c-2", "c-1", "c-1"])

    assert len(recorder.requests) == 1
    params = recorder.requests[0].url.params
    assert params["clientid"] == "in.(c-1,c-2)"
    assert params["status"] == "eq.active"
    assert params["trainerid"] == "eq.trainer-1"
    assert [a.id for a in active] == ["pa-1"]


@pytest.mark.asyncio
async def test_upsert_set_logs_merges_on_natural_key():
    recorder = Recorder(httpx.Response(201))
    async with make_store(recorder) as store:
        await store.upsert_set_logs([])
        await store.upsert_set_logs(
            [WorkoutSetLogDraft(session_id="s-1", exercise_id="squat", set_index=0, reps=5, weight=None, completed=True)]
        )

    (request,) = recorder.requests
    assert request.url.path == "/rest/v1/workoutSetLogs"
    assert request.url.params["on_conflict"] == "sessionId,seriesExerciseId,setIndex"
    assert request.headers["Prefer"] == "resolution=merge-duplicates,return=minimal"
    (row,) = recorder.body()
    assert (row["sessionId"], row["seriesExerciseId"], row["setIndex"]) == ("s-1", "squat", 0)
    assert (row["reps"], row["weight"], row["completed"]) == (5, None, True)


@pytest.mark.asyncio
async def test_list_set_logs_maps_camel_case_columns():
    log = {
        "id": "l-1",
        "sessionId": "s-1",
        "seriesBlockId": "b-1",
        "seriesExerciseId": "squat",
        "setIndex": 2,
        "reps": 5,
        "weight": 80,
        "completed": True,
        "createdAt": "2024-01-05T08:10:00Z",
    }
    recorder = Recorder(httpx.Response(200, json=[log]))
    async with make_store(recorder) as store:
        (parsed,) = await store.list_set_logs("s-1")

    assert recorder.requests[0].url.params["order"] == "createdAt.asc,setIndex.asc"
    assert (parsed.exercise_id, parsed.series_block_id, parsed.set_index) == ("squat", "b-1", 2)


@pytest.mark.asyncio
async def test_get_or_create_session_resumes_existing_row():
    recorder = Recorder(httpx.Response(200, json=[SESSION_ROW]))
    async with make_store(recorder) as store:
        start = await store.get_or_create_in_progress_session(
            client_id="c-1", trainer_id="trainer-1", workout_assignment_id="wa-1", workout_template_id="w-1"
        )

    params = recorder.requests[0].url.params
    assert start.resumed is True
    assert start.session.id == "s-1"
    assert start.session.workout_assignment_id == "wa-1"
    assert params["order"] == "startedAt.desc"
    assert params["workoutAssignmentId"] == "eq.wa-1"


@pytest.mark.asyncio
async def test_get_or_create_session_inserts_when_none_in_progress():
    recorder = Recorder(httpx.Response(200, json=[]), httpx.Response(201, json=[SESSION_ROW]))
    async with make_store(recorder) as store:
        start = await store.get_or_create_in_progress_session(
            client_id="c-1", trainer_id="trainer-1", workout_assignment_id="wa-1", workout_template_id="w-1"
        )

    assert start.resumed is False
    insert = recorder.body()
    assert recorder.requests[-1].url.path == "/rest/v1/workoutSessions"
    assert (insert["clientId"], insert["workoutTemplateId"], insert["status"]) == ("c-1", "w-1", "in_progress")
    assert "startedAt" in insert


@pytest.mark.asyncio
async def test_finish_session_without_matching_row_raises_not_found():
    recorder = Recorder(httpx.Response(200, json=[]))
    async with make_store(recorder) as store:
        with pytest.raises(RecordNotFoundError):
            await store.finish_session("missing", 60)

    request = recorder.requests[0]
    assert request.method == "PATCH"
    assert request.url.params["id"] == "eq.missing"
    assert recorder.body()["durationSec"] == 60
    assert recorder.body()["status"] == "completed"
