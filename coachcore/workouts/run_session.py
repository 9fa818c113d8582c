"""Run session manager.

Owns one workout execution attempt: start or resume the session, keep a
local draft per (exercise, set index), and persist edits in debounced
batches. Local drafts are authoritative; the remote copy catches up on the
next successful flush and a failed flush never reverts user input.

Flush state is an explicit machine:

    clean --edit--> dirty --timer/finish--> flushing --ok--> clean
                                              |  `--ok, edited meanwhile--> dirty
                                              `--error--> dirty (save_error set)

Only one flush is in flight at a time. Finish cancels the pending timer and
runs its own flush after any in-flight one, so nothing dirty is dropped
before the session is marked completed. Edits are refused from the moment
finish starts; once the session is completed no set log is written again.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel

from coachcore.common.errors import StoreError
from coachcore.config.settings import settings
from coachcore.store.base import RemoteStore
from coachcore.workouts.types import WorkoutSession, WorkoutSetLog, WorkoutSetLogDraft, WorkoutTemplate

FlushState = Literal["clean", "dirty", "flushing"]
SetKey = tuple[str, int]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def parse_number(text: str) -> float | None:
    """Numeric value of a free-text field; blank or unparseable text persists as None."""
    stripped = (text or "").strip()
    if not stripped:
        return None
    try:
        value = float(stripped)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def format_number(value: float | None) -> str:
    if value is None or not math.isfinite(value):
        return ""
    return str(int(value)) if float(value).is_integer() else str(value)


@dataclass
class SetDraft:
    """Editable state of one set. `reps` and `weight` hold the raw field text."""

    exercise_id: str
    set_index: int
    series_block_id: str | None = None
    reps: str = ""
    weight: str = ""
    completed: bool = False

    @property
    def key(self) -> SetKey:
        return (self.exercise_id, self.set_index)

    @classmethod
    def from_log(cls, log: WorkoutSetLog) -> SetDraft:
        return cls(
            exercise_id=log.exercise_id or "",
            set_index=log.set_index,
            series_block_id=log.series_block_id,
            reps=format_number(log.reps),
            weight=format_number(log.weight),
            completed=bool(log.completed),
        )

    def to_log_draft(self, session_id: str) -> WorkoutSetLogDraft:
        return WorkoutSetLogDraft(
            session_id=session_id,
            series_block_id=self.series_block_id,
            exercise_id=self.exercise_id,
            set_index=self.set_index,
            reps=parse_number(self.reps),
            weight=parse_number(self.weight),
            completed=self.completed,
        )


class RunStartOutcome(BaseModel):
    kind: Literal["started", "resumed", "failed"]
    session: WorkoutSession | None = None
    message: str | None = None


class FinishOutcome(BaseModel):
    kind: Literal["completed", "failed", "not_started"]
    duration_sec: int | None = None
    message: str | None = None


class RunSessionManager:
    """Lifecycle of one workout attempt for one client.

    One instance per active run; no two instances should drive the same
    session concurrently.

    Args:
        store: Remote store
        client_id: Client running the workout
        trainer_id: Trainer owning the assignment
        template: Workout template being run (defines the draft slots)
        workout_assignment_id: Assignment occurrence, when known; enables resume
        debounce_seconds: Inactivity window before a flush
        tick_seconds: Interval of the elapsed-time ticker
        clock: Current-time source, UTC aware
        on_tick: Called with the elapsed seconds on every tick
    """

    def __init__(
        self,
        store: RemoteStore,
        *,
        client_id: str,
        trainer_id: str,
        template: WorkoutTemplate,
        workout_assignment_id: str | None = None,
        debounce_seconds: float | None = None,
        tick_seconds: float | None = None,
        clock: Clock | None = None,
        on_tick: Callable[[int], None] | None = None,
    ) -> None:
        self.store = store
        self.client_id = client_id
        self.trainer_id = trainer_id
        self.template = template
        self.workout_assignment_id = workout_assignment_id
        self.debounce_seconds = debounce_seconds if debounce_seconds is not None else settings.run_flush_debounce_seconds
        self.tick_seconds = tick_seconds if tick_seconds is not None else settings.run_tick_seconds
        self.clock = clock or _utcnow
        self.on_tick = on_tick

        self.session: WorkoutSession | None = None
        self.resumed = False
        self.save_error: str | None = None

        self._drafts: dict[SetKey, SetDraft] = {}
        self._dirty: set[SetKey] = set()
        self._revisions: dict[SetKey, int] = {}
        self._flushing = False
        self._finishing = False
        self._flush_lock = asyncio.Lock()
        self._timer: asyncio.Task[None] | None = None
        self._ticker: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[None]] = set()

    # State

    @property
    def state(self) -> FlushState:
        if self._flushing:
            return "flushing"
        return "dirty" if self._dirty else "clean"

    @property
    def completed(self) -> bool:
        return self.session is not None and self.session.status == "completed"

    @property
    def drafts(self) -> dict[SetKey, SetDraft]:
        return dict(self._drafts)

    @property
    def dirty_keys(self) -> set[SetKey]:
        return set(self._dirty)

    @property
    def elapsed_sec(self) -> int:
        if self.session is None:
            return 0
        started_at = self.session.started_at
        if started_at.tzinfo is None:
            started_at = started_at.replace(tzinfo=UTC)
        return max(0, math.floor((self.clock() - started_at).total_seconds()))

    # Start / resume

    async def start(self) -> RunStartOutcome:
        """Resume the in-progress session for this assignment, or create one, and hydrate drafts."""
        try:
            start = await self.store.get_or_create_in_progress_session(
                client_id=self.client_id,
                trainer_id=self.trainer_id,
                workout_assignment_id=self.workout_assignment_id,
                workout_template_id=self.template.id,
            )
            logs = await self.store.list_set_logs(start.session.id)
        except StoreError as e:
            logger.bind(client_id=self.client_id, workout_assignment_id=self.workout_assignment_id).warning(
                f"Failed to start session: {e}"
            )
            return RunStartOutcome(kind="failed", message=e.message)

        self.session = start.session
        self.resumed = start.resumed
        self._hydrate(logs)
        self._start_ticker()
        logger.bind(session_id=start.session.id, resumed=start.resumed, sets=len(self._drafts)).info(
            "Resumed session" if start.resumed else "Session started"
        )
        return RunStartOutcome(kind="resumed" if start.resumed else "started", session=start.session)

    def _hydrate(self, logs: list[WorkoutSetLog]) -> None:
        for exercise_id, series_id, set_index in self.template.state.set_slots():
            key = (exercise_id, set_index)
            if key not in self._drafts:
                self._drafts[key] = SetDraft(exercise_id=exercise_id, set_index=set_index, series_block_id=series_id)
        for log in logs:
            if not log.exercise_id:
                continue
            draft = SetDraft.from_log(log)
            # Unflushed local edits win over what the remote has.
            if draft.key in self._dirty:
                continue
            if draft.series_block_id is None and draft.key in self._drafts:
                draft.series_block_id = self._drafts[draft.key].series_block_id
            self._drafts[draft.key] = draft

    # Edits

    def update_reps(self, exercise_id: str, set_index: int, value: str) -> bool:
        return self._edit((exercise_id, set_index), reps=value)

    def update_weight(self, exercise_id: str, set_index: int, value: str) -> bool:
        return self._edit((exercise_id, set_index), weight=value)

    def set_completed(self, exercise_id: str, set_index: int, value: bool) -> bool:
        return self._edit((exercise_id, set_index), completed=value)

    def toggle_completed(self, exercise_id: str, set_index: int) -> bool:
        draft = self._drafts.get((exercise_id, set_index))
        if draft is None:
            return False
        return self._edit(draft.key, completed=not draft.completed)

    def _edit(self, key: SetKey, **changes: str | bool) -> bool:
        """Apply a field edit; unknown keys and edits once finish has started are ignored."""
        draft = self._drafts.get(key)
        if draft is None or self._finishing or self.completed:
            return False
        for field, value in changes.items():
            setattr(draft, field, value)
        self._revisions[key] = self._revisions.get(key, 0) + 1
        self._dirty.add(key)
        self._schedule_flush()
        return True

    # Flush

    def _schedule_flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._spawn(self._debounced_flush())

    async def _debounced_flush(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        # Past this point the timer is no longer cancellable; the flush must finish.
        self._timer = None
        await self.flush()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def flush(self) -> bool:
        """Persist every dirty draft in one upsert.

        Returns:
            True when nothing is left unsaved from this batch, False on a
            save error (kept in `save_error`; drafts stay dirty for retry)
        """
        async with self._flush_lock:
            # Set logs of a completed session are history.
            if self.session is None or self.completed or not self._dirty:
                return True
            keys = sorted(self._dirty)
            revisions = {key: self._revisions.get(key, 0) for key in keys}
            payload = [self._drafts[key].to_log_draft(self.session.id) for key in keys if key in self._drafts]

            self._flushing = True
            self.save_error = None
            try:
                await self.store.upsert_set_logs(payload)
            except StoreError as e:
                self.save_error = e.message or "Save failed"
                logger.bind(session_id=self.session.id, sets=len(payload)).warning(f"Set log flush failed: {e}")
                return False
            finally:
                self._flushing = False

            for key in keys:
                if self._revisions.get(key, 0) == revisions[key]:
                    self._dirty.discard(key)
            logger.bind(session_id=self.session.id, sets=len(payload), still_dirty=len(self._dirty)).debug(
                "Set logs flushed"
            )
            return True

    async def retry(self) -> bool:
        """Manual retry after a save error."""
        return await self.flush()

    # Elapsed time

    def _start_ticker(self) -> None:
        if self._ticker is None or self._ticker.done():
            self._ticker = self._spawn(self._tick())

    async def _tick(self) -> None:
        while self.session is not None and not self.completed:
            if self.on_tick is not None:
                self.on_tick(self.elapsed_sec)
            await asyncio.sleep(self.tick_seconds)

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    # Finish

    async def finish(self) -> FinishOutcome:
        """Flush pending edits, then mark the session completed with the elapsed duration.

        The session is not completed while any edit is still unsaved; a save
        error yields a failed outcome and finish can be called again. Edits
        are refused while finish runs and accepted again only if it fails.
        """
        if self.session is None:
            return FinishOutcome(kind="not_started", message="Session has not started")
        if self.completed:
            return FinishOutcome(kind="completed", duration_sec=self.session.duration_sec)
        if self._finishing:
            return FinishOutcome(kind="failed", message="Finish already in progress")

        self._finishing = True
        try:
            return await self._finish(self.session)
        finally:
            self._finishing = False

    async def _finish(self, session: WorkoutSession) -> FinishOutcome:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        # Waits for an in-flight flush, then saves whatever it left dirty.
        if not await self.flush():
            return FinishOutcome(kind="failed", message=self.save_error)

        duration = self.elapsed_sec
        try:
            await self.store.finish_session(session.id, duration)
        except StoreError as e:
            logger.bind(session_id=session.id).warning(f"Failed to finish session: {e}")
            return FinishOutcome(kind="failed", duration_sec=duration, message=e.message)

        self.session = session.model_copy(
            update={"status": "completed", "finished_at": self.clock(), "duration_sec": duration}
        )
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._stop_ticker()
        logger.bind(session_id=session.id, duration_sec=duration).info("Session completed")
        return FinishOutcome(kind="completed", duration_sec=duration)

    async def close(self) -> None:
        """Stop timers without flushing. Pending edits stay dirty in memory."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._stop_ticker()
