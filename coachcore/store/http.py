"""HTTP remote store for a PostgREST-style data service.

Tables are read and written under `/rest/v1/<table>`; server-side
procedures (generation, progress marks, status changes) are invoked as
`/rest/v1/rpc/<fn>` with `p_`-prefixed arguments.

The service does not share one naming scheme: assignment tables use
lowercase column names (`clientid`, `startdate`), while templates, sessions
and set logs use camelCase (`startedAt`, `setIndex`). Every table's column
map lives in a `RemoteTable`, and all filters, payloads and rows go through it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any, TypeVar

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from coachcore.assignments.types import PROGRAM_STATUS_ACTIVE, ClientProgramAssignment, ClientWorkoutAssignment
from coachcore.common.errors import (
    DUPLICATE_KEY_HTTP_STATUS,
    DUPLICATE_KEY_PG_CODE,
    DuplicateKeyError,
    RecordNotFoundError,
    StoreError,
)
from coachcore.config.settings import settings
from coachcore.programs.types import ProgramTemplate
from coachcore.store.base import RemoteStore
from coachcore.workouts.types import SessionStart, WorkoutSession, WorkoutSetLog, WorkoutSetLogDraft, WorkoutTemplate

REST_PREFIX = "/rest/v1"

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class RemoteTable:
    """A remote table and the remote column name of each domain field.

    Fields missing from `columns` have the same name on both sides.
    """

    name: str
    columns: dict[str, str] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return f"/{self.name}"

    def col(self, name: str) -> str:
        return self.columns.get(name, name)

    def order(self, *fields: str, descending: bool = False) -> str:
        direction = "desc" if descending else "asc"
        return ",".join(f"{self.col(f)}.{direction}" for f in fields)

    def to_remote(self, values: dict[str, Any]) -> dict[str, Any]:
        return {self.col(k): v for k, v in values.items()}

    def from_remote(self, row: dict[str, Any]) -> dict[str, Any]:
        fields = {remote: name for name, remote in self.columns.items()}
        return {fields.get(k, k): v for k, v in row.items()}

    def parse(self, model: type[ModelT], row: Any) -> ModelT:
        """Validate one remote row into a domain model.

        Raises:
            StoreError: If the row does not have the expected shape
        """
        if not isinstance(row, dict):
            raise StoreError(f"Unexpected {self.name} row: {row!r}")
        try:
            return model.model_validate(self.from_remote(row))
        except ValidationError as e:
            logger.bind(table=self.name, row_id=row.get("id")).warning(f"Malformed row: {e.error_count()} errors")
            raise StoreError(f"Unexpected {self.name} row: {e.error_count()} invalid fields") from e


PROGRAM_TEMPLATES = RemoteTable(
    "programTemplates",
    {"owner_trainer_id": "ownerTrainerId", "duration_weeks": "durationWeeks"},
)
WORKOUT_TEMPLATES = RemoteTable("workouts", {"trainer_id": "trainerId"})
PROGRAM_ASSIGNMENTS = RemoteTable(
    "clientProgramAssignments",
    {
        "trainer_id": "trainerid",
        "client_id": "clientid",
        "program_template_id": "programtemplateid",
        "start_date": "startdate",
        "created_at": "createdat",
        "updated_at": "updatedat",
    },
)
WORKOUT_ASSIGNMENTS = RemoteTable(
    "clientWorkoutAssignments",
    {
        "trainer_id": "trainerid",
        "client_id": "clientid",
        "workout_template_id": "workouttemplateid",
        "scheduled_for": "scheduledfor",
        "program_assignment_id": "programassignmentid",
        "program_day_key": "programdaykey",
    },
)
WORKOUT_SESSIONS = RemoteTable(
    "workoutSessions",
    {
        "client_id": "clientId",
        "trainer_id": "trainerId",
        "workout_assignment_id": "workoutAssignmentId",
        "workout_template_id": "workoutTemplateId",
        "started_at": "startedAt",
        "finished_at": "finishedAt",
        "duration_sec": "durationSec",
    },
)
WORKOUT_SET_LOGS = RemoteTable(
    "workoutSetLogs",
    {
        "session_id": "sessionId",
        "series_block_id": "seriesBlockId",
        "exercise_id": "seriesExerciseId",
        "set_index": "setIndex",
        "created_at": "createdAt",
    },
)

SET_LOG_CONFLICT_FIELDS = ("session_id", "exercise_id", "set_index")


def _eq(value: Any) -> str:
    return f"eq.{value}"


def _in(values: list[str]) -> str:
    return "in.(" + ",".join(values) + ")"


def _iso(value: date | datetime) -> str:
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


def _error_from_response(response: httpx.Response) -> StoreError:
    """Convert a non-2xx response into the store error taxonomy."""
    code: str | None = None
    message = response.text or response.reason_phrase
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = str(body["code"]) if body.get("code") is not None else None
        message = body.get("message") or message

    if response.status_code == DUPLICATE_KEY_HTTP_STATUS or code == DUPLICATE_KEY_PG_CODE:
        return DuplicateKeyError(message)
    return StoreError(message, status=response.status_code, code=code)


class HttpRemoteStore(RemoteStore):
    """RemoteStore over HTTP.

    The client is created lazily and reused; call `aclose()` (or use the store
    as an async context manager) when done.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.remote_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.remote_api_key
        self.timeout = timeout if timeout is not None else settings.remote_http_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["apikey"] = self.api_key
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}{REST_PREFIX}",
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpRemoteStore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | list[tuple[str, str]] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        headers = {"Prefer": prefer} if prefer else None
        logger.bind(method=method, path=path).debug("Remote store request")
        try:
            response = await self._get_client().request(method, path, params=params, json=json, headers=headers)
        except httpx.RequestError as e:
            logger.bind(method=method, path=path).warning(f"Remote store request failed: {e}")
            raise StoreError(f"Request to {path} failed: {e}") from e

        if response.status_code >= 400:
            error = _error_from_response(response)
            logger.bind(method=method, path=path, status=response.status_code, code=error.code).warning(
                f"Remote store returned an error: {error.message}"
            )
            raise error

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise StoreError(f"Response from {path} is not JSON", status=response.status_code) from e


    async def _select(
        self,
        table: RemoteTable,
        filters: list[tuple[str, str]],
        *,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Read rows of `table`; filters name domain fields."""
        params = [("select", "*"), *((table.col(name), value) for name, value in filters)]
        if order:
            params.append(("order", order))
        if limit:
            params.append(("limit", str(limit)))
        rows = await self._request("GET", table.path, params=params)
        return rows if isinstance(rows, list) else []

    async def _select_one(self, table: RemoteTable, filters: list[tuple[str, str]]) -> dict[str, Any] | None:
        rows = await self._select(table, filters, limit=1)
        return rows[0] if rows else None

    async def _insert(self, table: RemoteTable, values: dict[str, Any]) -> dict[str, Any]:
        data = await self._request("POST", table.path, json=table.to_remote(values), prefer="return=representation")
        row = data[0] if isinstance(data, list) and data else data
        if not isinstance(row, dict):
            raise StoreError(f"Insert into {table.name} returned no row")
        return row

    async def _rpc(self, fn: str, payload: dict[str, Any]) -> Any:
        return await self._request("POST", f"/rpc/{fn}", json=payload)

    @staticmethod
    def _returned_assignment(data: Any, assignment_id: str) -> ClientProgramAssignment:
        row = data[0] if isinstance(data, list) and data else data
        if not isinstance(row, dict):
            raise RecordNotFoundError("program assignment", assignment_id)
        return PROGRAM_ASSIGNMENTS.parse(ClientProgramAssignment, row)

    # Templates

    async def workout_template_exists(self, workout_id: str) -> bool:
        row = await self._select_one(WORKOUT_TEMPLATES, [("id", _eq(workout_id))])
        return row is not None

    async def get_workout_template(self, workout_id: str) -> WorkoutTemplate | None:
        row = await self._select_one(WORKOUT_TEMPLATES, [("id", _eq(workout_id))])
        return WORKOUT_TEMPLATES.parse(WorkoutTemplate, row) if row else None

    async def get_program_template(self, program_template_id: str) -> ProgramTemplate | None:
        row = await self._select_one(PROGRAM_TEMPLATES, [("id", _eq(program_template_id))])
        return PROGRAM_TEMPLATES.parse(ProgramTemplate, row) if row else None

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
        # The procedure resolves the trainer from the caller's credentials.
        await self._rpc(
            "assign_client_workout",
            {
                "p_client_id": client_id,
                "p_workout_id": workout_id,
                "p_scheduled_for": scheduled_for.isoformat(),
                "p_source": source,
                "p_program_assignment_id": program_assignment_id,
                "p_program_day_key": program_day_key,
            },
        )

    async def list_workout_assignments(
        self,
        *,
        client_id: str,
        start: date,
        end: date,
        trainer_id: str | None = None,
    ) -> list[ClientWorkoutAssignment]:
        filters = [
            ("client_id", _eq(client_id)),
            ("scheduled_for", f"gte.{start.isoformat()}"),
            ("scheduled_for", f"lte.{end.isoformat()}"),
        ]
        if trainer_id:
            filters.append(("trainer_id", _eq(trainer_id)))
        rows = await self._select(WORKOUT_ASSIGNMENTS, filters, order=WORKOUT_ASSIGNMENTS.order("scheduled_for"))
        return [WORKOUT_ASSIGNMENTS.parse(ClientWorkoutAssignment, r) for r in rows]

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
        rows = await self._select(
            WORKOUT_ASSIGNMENTS,
            [("trainer_id", _eq(trainer_id)), ("client_id", _in(ids)), ("scheduled_for", _eq(on.isoformat()))],
        )
        return [WORKOUT_ASSIGNMENTS.parse(ClientWorkoutAssignment, r) for r in rows]

    async def list_workout_assignments_for_program(
        self,
        *,
        client_id: str,
        program_assignment_id: str,
    ) -> list[ClientWorkoutAssignment]:
        rows = await self._select(
            WORKOUT_ASSIGNMENTS,
            [("client_id", _eq(client_id)), ("program_assignment_id", _eq(program_assignment_id))],
            order=WORKOUT_ASSIGNMENTS.order("scheduled_for"),
        )
        return [WORKOUT_ASSIGNMENTS.parse(ClientWorkoutAssignment, r) for r in rows]

    async def get_workout_assignment(self, assignment_id: str) -> ClientWorkoutAssignment | None:
        row = await self._select_one(WORKOUT_ASSIGNMENTS, [("id", _eq(assignment_id))])
        return WORKOUT_ASSIGNMENTS.parse(ClientWorkoutAssignment, row) if row else None

    async def update_workout_assignment_date(self, assignment_id: str, scheduled_for: date) -> None:
        await self._rpc(
            "update_workout_assignment_date",
            {"p_assignment_id": assignment_id, "p_scheduled_for": scheduled_for.isoformat()},
        )

    async def unassign_workout(self, assignment_id: str) -> None:
        await self._rpc("unassign_workout_from_client", {"p_assignment_id": assignment_id})

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
        row = await self._insert(
            PROGRAM_ASSIGNMENTS,
            {
                "trainer_id": trainer_id,
                "client_id": client_id,
                "program_template_id": program_template_id,
                "start_date": start_date.isoformat(),
                "status": PROGRAM_STATUS_ACTIVE,
                "notes": notes,
            },
        )
        return PROGRAM_ASSIGNMENTS.parse(ClientProgramAssignment, row)

    async def get_program_assignment(self, assignment_id: str) -> ClientProgramAssignment | None:
        row = await self._select_one(PROGRAM_ASSIGNMENTS, [("id", _eq(assignment_id))])
        return PROGRAM_ASSIGNMENTS.parse(ClientProgramAssignment, row) if row else None

    async def find_program_assignment(
        self,
        *,
        client_id: str,
        program_template_id: str,
        start_date: date,
    ) -> ClientProgramAssignment | None:
        row = await self._select_one(
            PROGRAM_ASSIGNMENTS,
            [
                ("client_id", _eq(client_id)),
                ("program_template_id", _eq(program_template_id)),
                ("start_date", _eq(start_date.isoformat())),
            ],
        )
        return PROGRAM_ASSIGNMENTS.parse(ClientProgramAssignment, row) if row else None

    async def list_program_assignments(
        self,
        *,
        client_id: str,
        trainer_id: str | None = None,
    ) -> list[ClientProgramAssignment]:
        filters = [("client_id", _eq(client_id))]
        if trainer_id:
            filters.append(("trainer_id", _eq(trainer_id)))
        rows = await self._select(
            PROGRAM_ASSIGNMENTS, filters, order=PROGRAM_ASSIGNMENTS.order("start_date", descending=True)
        )
        return [PROGRAM_ASSIGNMENTS.parse(ClientProgramAssignment, r) for r in rows]

    async def list_active_program_assignments(
        self,
        *,
        trainer_id: str,
        client_ids: list[str],
    ) -> list[ClientProgramAssignment]:
        ids = sorted({c for c in client_ids if c})
        if not ids:
            return []
        rows = await self._select(
            PROGRAM_ASSIGNMENTS,
            [("trainer_id", _eq(trainer_id)), ("client_id", _in(ids)), ("status", _eq(PROGRAM_STATUS_ACTIVE))],
        )
        return [PROGRAM_ASSIGNMENTS.parse(ClientProgramAssignment, r) for r in rows]

    async def list_program_assignments_for_templates(
        self,
        *,
        trainer_id: str,
        program_template_ids: list[str],
    ) -> list[ClientProgramAssignment]:
        ids = sorted({t for t in program_template_ids if t})
        if not ids:
            return []
        rows = await self._select(
            PROGRAM_ASSIGNMENTS,
            [("trainer_id", _eq(trainer_id)), ("program_template_id", _in(ids))],
        )
        return [PROGRAM_ASSIGNMENTS.parse(ClientProgramAssignment, r) for r in rows]

    async def generate_program_workout_assignments(self, program_assignment_id: str, *, replace_existing: bool) -> None:
        await self._rpc(
            "generate_program_workout_assignments",
            {"p_program_assignment_id": program_assignment_id, "p_replace_existing": replace_existing},
        )

    async def reactivate_program_assignment(self, assignment_id: str) -> None:
        await self._rpc("reactivate_client_program_assignment", {"p_assignment_id": assignment_id})

    async def reset_program_assignment_progress(self, assignment_id: str) -> None:
        await self._rpc("reset_client_program_assignment_progress", {"p_assignment_id": assignment_id})

    async def archive_program_assignment(self, assignment_id: str) -> None:
        await self._rpc("archive_client_program_assignment", {"p_assignment_id": assignment_id})

    async def update_program_assignment_start_date(self, assignment_id: str, new_start_date: date) -> None:
        await self._rpc(
            "update_client_program_assignment_start_date",
            {"p_assignment_id": assignment_id, "p_new_start_date": new_start_date.isoformat()},
        )

    async def mark_day_complete(self, program_assignment_id: str, day_key: str) -> ClientProgramAssignment:
        data = await self._rpc(
            "mark_program_day_complete",
            {"p_program_assignment_id": program_assignment_id, "p_day_key": day_key},
        )
        return self._returned_assignment(data, program_assignment_id)

    async def unmark_day_complete(self, program_assignment_id: str, day_key: str) -> ClientProgramAssignment:
        data = await self._rpc(
            "unmark_program_day_complete",
            {"p_program_assignment_id": program_assignment_id, "p_day_key": day_key},
        )
        return self._returned_assignment(data, program_assignment_id)

    # Sessions and set logs

    async def get_or_create_in_progress_session(
        self,
        *,
        client_id: str,
        trainer_id: str,
        workout_assignment_id: str | None,
        workout_template_id: str,
    ) -> SessionStart:
        if workout_assignment_id:
            rows = await self._select(
                WORKOUT_SESSIONS,
                [
                    ("client_id", _eq(client_id)),
                    ("workout_assignment_id", _eq(workout_assignment_id)),
                    ("status", _eq("in_progress")),
                ],
                order=WORKOUT_SESSIONS.order("started_at", descending=True),
                limit=1,
            )
            if rows:
                return SessionStart(session=WORKOUT_SESSIONS.parse(WorkoutSession, rows[0]), resumed=True)

        row = await self._insert(
            WORKOUT_SESSIONS,
            {
                "client_id": client_id,
                "trainer_id": trainer_id,
                "workout_assignment_id": workout_assignment_id,
                "workout_template_id": workout_template_id,
                "status": "in_progress",
                "started_at": _iso(datetime.now(UTC)),
            },
        )
        return SessionStart(session=WORKOUT_SESSIONS.parse(WorkoutSession, row), resumed=False)

    async def get_session(self, session_id: str) -> WorkoutSession | None:
        row = await self._select_one(WORKOUT_SESSIONS, [("id", _eq(session_id))])
        return WORKOUT_SESSIONS.parse(WorkoutSession, row) if row else None

    async def list_sessions(
        self,
        *,
        client_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[WorkoutSession]:
        filters = [("client_id", _eq(client_id))]
        if start is not None:
            filters.append(("started_at", f"gte.{_iso(start)}"))
        if end is not None:
            filters.append(("started_at", f"lt.{_iso(end)}"))
        rows = await self._select(
            WORKOUT_SESSIONS, filters, order=WORKOUT_SESSIONS.order("started_at", descending=True), limit=limit
        )
        return [WORKOUT_SESSIONS.parse(WorkoutSession, r) for r in rows]

    async def list_set_logs(self, session_id: str) -> list[WorkoutSetLog]:
        rows = await self._select(
            WORKOUT_SET_LOGS,
            [("session_id", _eq(session_id))],
            order=WORKOUT_SET_LOGS.order("created_at", "set_index"),
        )
        return [WORKOUT_SET_LOGS.parse(WorkoutSetLog, r) for r in rows]

    async def upsert_set_logs(self, drafts: list[WorkoutSetLogDraft]) -> None:
        if not drafts:
            return
        await self._request(
            "POST",
            WORKOUT_SET_LOGS.path,
            params={"on_conflict": ",".join(WORKOUT_SET_LOGS.col(f) for f in SET_LOG_CONFLICT_FIELDS)},
            json=[WORKOUT_SET_LOGS.to_remote(d.model_dump()) for d in drafts],
            prefer="resolution=merge-duplicates,return=minimal",
        )

    async def finish_session(self, session_id: str, duration_sec: int) -> None:
        data = await self._request(
            "PATCH",
            WORKOUT_SESSIONS.path,
            params={"id": _eq(session_id)},
            json=WORKOUT_SESSIONS.to_remote(
                {"status": "completed", "finished_at": _iso(datetime.now(UTC)), "duration_sec": duration_sec}
            ),
            prefer="return=representation",
        )
        if isinstance(data, list) and not data:
            raise RecordNotFoundError("workout session", session_id)
