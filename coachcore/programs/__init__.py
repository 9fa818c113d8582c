"""Program templates: flattening, schedule projection and progress."""

from coachcore.programs.flatten import (
    first_catalog_workout_id,
    first_workout_template_id,
    flatten_program_days,
    total_planned_day_keys,
)
from coachcore.programs.progress import (
    ProgramProgress,
    ProgressSummary,
    compute_progress_percent,
    normalize_completed_day_keys,
    summarize_progress,
)
from coachcore.programs.schedule import (
    PlannedWorkout,
    ScheduledProgramDay,
    build_program_schedule,
    planned_workout_for_date,
    project_date,
)
from coachcore.programs.types import (
    CatalogWorkoutRef,
    FlattenedProgramDay,
    LegacyWorkoutRef,
    ProgramTemplateState,
    WorkoutRef,
)

__all__ = [
    "CatalogWorkoutRef",
    "FlattenedProgramDay",
    "LegacyWorkoutRef",
    "PlannedWorkout",
    "ProgramProgress",
    "ProgramTemplateState",
    "ProgressSummary",
    "ScheduledProgramDay",
    "WorkoutRef",
    "build_program_schedule",
    "compute_progress_percent",
    "first_catalog_workout_id",
    "first_workout_template_id",
    "flatten_program_days",
    "normalize_completed_day_keys",
    "planned_workout_for_date",
    "project_date",
    "summarize_progress",
    "total_planned_day_keys",
]
