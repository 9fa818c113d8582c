"""Coach program assignment and progress scheduling core.

Turns coach-authored program templates into dated obligations for a
trainee, tracks per-day completion, and logs live workout runs.
"""

__version__ = "0.1.0"

from coachcore.core import logger as _logger  # noqa: F401  configures loguru sinks
