"""Progress tracking over completed day keys.

`completedDayKeys` is stored as a list but treated as a set. Marking and
unmarking days happens remotely as single idempotent operations; the
functions here only read and summarize.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from coachcore.programs.flatten import flatten_program_days
from coachcore.programs.types import FlattenedProgramDay, ProgramTemplateState


class ProgramProgress(BaseModel):
    """Progress payload of a program assignment."""

    completed_day_keys: list[str] = Field(default_factory=list)
    last_completed_at: datetime | None = None

    @classmethod
    def from_raw(cls, raw: Any) -> ProgramProgress | None:
        """Parse the remote `progress` JSON (`completedDayKeys`, `lastCompletedAt`)."""
        if isinstance(raw, ProgramProgress):
            return raw
        if not isinstance(raw, dict):
            return None
        keys = raw.get("completedDayKeys", raw.get("completed_day_keys"))
        last = raw.get("lastCompletedAt", raw.get("last_completed_at"))
        parsed_last: datetime | None = None
        if isinstance(last, datetime):
            parsed_last = last
        elif isinstance(last, str):
            try:
                parsed_last = datetime.fromisoformat(last.replace("Z", "+00:00"))
            except ValueError:
                parsed_last = None
        return cls(
            completed_day_keys=[k for k in keys if isinstance(k, str)] if isinstance(keys, list) else [],
            last_completed_at=parsed_last,
        )

    def to_raw(self) -> dict[str, Any]:
        return {
            "completedDayKeys": list(self.completed_day_keys),
            "lastCompletedAt": self.last_completed_at.isoformat() if self.last_completed_at else None,
        }


def normalize_completed_day_keys(progress: ProgramProgress | dict[str, Any] | list[Any] | None) -> list[str]:
    """Deduplicate completed day keys, keeping first occurrences in order.

    Falsy and non-string entries are dropped. Idempotent.
    """
    if isinstance(progress, list):
        keys: list[Any] = progress
    elif isinstance(progress, ProgramProgress):
        keys = progress.completed_day_keys
    elif isinstance(progress, dict):
        raw_keys = progress.get("completedDayKeys", progress.get("completed_day_keys"))
        keys = raw_keys if isinstance(raw_keys, list) else []
    else:
        keys = []

    out: list[str] = []
    seen: set[str] = set()
    for key in keys:
        if not key or not isinstance(key, str):
            continue
        if key in seen:
            continue
        seen.add(key)
        out.append(key)
    return out


def compute_progress_percent(total_planned_days: float, completed_days: float) -> int:
    """Whole percent complete, floored.

    `completed` is clamped into [0, total]. A zero (or unusable) total gives 0.
    """
    if not _finite(total_planned_days) or not _finite(completed_days):
        return 0
    total = max(0.0, float(total_planned_days))
    if total == 0:
        return 0
    completed = min(total, max(0.0, float(completed_days)))
    return math.floor(completed / total * 100)


def _finite(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


class ProgressSummary(BaseModel):
    completed_days: int
    total_planned_days: int
    percent: int
    next_day: FlattenedProgramDay | None = None


def summarize_progress(
    state: ProgramTemplateState | dict[str, Any] | None,
    progress: ProgramProgress | dict[str, Any] | None,
) -> ProgressSummary:
    """Completed/total/percent for an assignment, plus the first day not yet completed.

    Only completed keys that exist in the template count toward the total,
    so keys left over from an older template shape do not inflate progress.
    """
    days = flatten_program_days(state)
    planned = [d for d in days if d.day_key]
    planned_keys = {d.day_key for d in planned}
    completed = {k for k in normalize_completed_day_keys(progress) if k in planned_keys}
    next_day = next((d for d in planned if d.day_key not in completed), None)
    return ProgressSummary(
        completed_days=len(completed),
        total_planned_days=len(planned),
        percent=compute_progress_percent(len(planned), len(completed)),
        next_day=next_day,
    )
