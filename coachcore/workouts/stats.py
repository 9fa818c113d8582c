"""Adherence and volume statistics for one trainee, and per-session details."""

from __future__ import annotations

from collections import Counter
from datetime import UTC, datetime, time, timedelta

from loguru import logger
from pydantic import BaseModel, Field

from coachcore.common.dates import start_of_week_monday
from coachcore.common.errors import StoreError
from coachcore.config.settings import settings
from coachcore.store.base import RemoteStore
from coachcore.workouts.metrics import calculate_total_volume
from coachcore.workouts.types import WorkoutSession, WorkoutSetLog, WorkoutTemplate

DEFAULT_EXERCISE_TITLE = "Exercise"


class WeeklySessionCount(BaseModel):
    week: str
    count: int


class ClientWorkoutStats(BaseModel):
    """Trailing-window stats for one client.

    Attributes:
        assigned_count: Workout assignments scheduled within the window
        completed_count: Completed sessions started within the window
        adherence: min(1, completed / assigned), 0 when nothing was assigned
        avg_duration_sec: Rounded mean over completed sessions with a positive duration
        volume_total: Sum of reps * weight over the most recent sessions
        sessions_per_week: Completed sessions per Monday-anchored week, ascending
    """

    window_start: str
    window_end: str
    assigned_count: int = 0
    completed_count: int = 0
    adherence: float = 0.0
    avg_duration_sec: int = 0
    volume_total: float = 0.0
    sessions_per_week: list[WeeklySessionCount] = Field(default_factory=list)


def compute_adherence(completed: int, assigned: int) -> float:
    if assigned <= 0:
        return 0.0
    return min(1.0, completed / assigned)


def average_duration_sec(sessions: list[WorkoutSession]) -> int:
    durations = [s.duration_sec for s in sessions if s.duration_sec is not None and s.duration_sec > 0]
    if not durations:
        return 0
    return round(sum(durations) / len(durations))


def sessions_per_week(sessions: list[WorkoutSession]) -> list[WeeklySessionCount]:
    counts: Counter[str] = Counter()
    for session in sessions:
        started = session.started_at.astimezone(UTC) if session.started_at.tzinfo else session.started_at
        counts[start_of_week_monday(started).isoformat()] += 1
    return [WeeklySessionCount(week=week, count=counts[week]) for week in sorted(counts)]


async def client_workout_stats(
    store: RemoteStore,
    client_id: str,
    *,
    now: datetime | None = None,
    window_days: int | None = None,
    session_limit: int | None = None,
    volume_session_limit: int | None = None,
) -> ClientWorkoutStats:
    """Load and aggregate a client's sessions and assignments over the trailing window.

    Set logs are fetched only for the most recent sessions; a session whose
    logs fail to load counts as zero volume.

    Raises:
        StoreError: If the session or assignment listing fails
    """
    current = now or datetime.now(UTC)
    days = window_days if window_days is not None else settings.client_stats_window_days
    limit = session_limit if session_limit is not None else settings.client_stats_session_limit
    volume_limit = volume_session_limit if volume_session_limit is not None else settings.client_stats_volume_session_limit

    end_day = current.astimezone(UTC).date()
    start_day = end_day - timedelta(days=days)
    window_start = datetime.combine(start_day, time.min, tzinfo=UTC)

    sessions = await store.list_sessions(client_id=client_id, start=window_start, end=current, limit=limit)
    assignments = await store.list_workout_assignments(client_id=client_id, start=start_day, end=end_day)

    volume = 0.0
    for session in sessions[:volume_limit]:
        try:
            logs = await store.list_set_logs(session.id)
        except StoreError as e:
            logger.bind(session_id=session.id).warning(f"Set log lookup failed, counting no volume: {e}")
            continue
        volume += calculate_total_volume(logs)

    completed = [s for s in sessions if s.status == "completed"]
    return ClientWorkoutStats(
        window_start=start_day.isoformat(),
        window_end=end_day.isoformat(),
        assigned_count=len(assignments),
        completed_count=len(completed),
        adherence=compute_adherence(len(completed), len(assignments)),
        avg_duration_sec=average_duration_sec(completed),
        volume_total=volume,
        sessions_per_week=sessions_per_week(completed),
    )


class SessionExerciseGroup(BaseModel):
    exercise_id: str
    title: str
    logs: list[WorkoutSetLog]
    volume: float = 0.0
    completed_sets: int = 0


class SessionDetails(BaseModel):
    session: WorkoutSession
    template: WorkoutTemplate | None = None
    logs: list[WorkoutSetLog] = Field(default_factory=list)
    groups: list[SessionExerciseGroup] = Field(default_factory=list)
    volume: float = 0.0


def group_logs_by_exercise(logs: list[WorkoutSetLog], template: WorkoutTemplate | None) -> list[SessionExerciseGroup]:
    """Group logs per exercise, each group ordered by set index.

    Groups follow the template's exercise order; exercises unknown to the
    template come last, sorted by title.
    """
    order: list[str] = []
    titles: dict[str, str] = {}
    if template is not None:
        for block in template.state.series:
            for exercise in block.exercises:
                if exercise.id not in titles:
                    order.append(exercise.id)
                titles[exercise.id] = exercise.name or DEFAULT_EXERCISE_TITLE

    by_exercise: dict[str, list[WorkoutSetLog]] = {}
    for log in logs:
        if not log.exercise_id:
            continue
        by_exercise.setdefault(log.exercise_id, []).append(log)

    groups = [
        SessionExerciseGroup(
            exercise_id=exercise_id,
            title=titles.get(exercise_id, DEFAULT_EXERCISE_TITLE),
            logs=sorted(items, key=lambda log: log.set_index),
            volume=calculate_total_volume(items),
            completed_sets=sum(1 for log in items if log.completed),
        )
        for exercise_id, items in by_exercise.items()
    ]

    position = {exercise_id: i for i, exercise_id in enumerate(order)}
    groups.sort(key=lambda g: (g.exercise_id not in position, position.get(g.exercise_id, 0), g.title))
    return groups


async def load_session_details(store: RemoteStore, session_id: str) -> SessionDetails | None:
    """Session with its template, logs grouped per exercise and total volume; None if missing."""
    session = await store.get_session(session_id)
    if session is None:
        return None
    template = await store.get_workout_template(session.workout_template_id) if session.workout_template_id else None
    logs = await store.list_set_logs(session.id)
    return SessionDetails(
        session=session,
        template=template,
        logs=logs,
        groups=group_logs_by_exercise(logs, template),
        volume=calculate_total_volume(logs),
    )
