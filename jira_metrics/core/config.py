"""Central constants, field classification and run defaults."""

from __future__ import annotations

from collections.abc import Sequence

# =============================================================================
# Time handling
# =============================================================================
DEFAULT_TIMEZONE = "UTC"

# =============================================================================
# Status categories (Jira's fixed three-bucket taxonomy)
# =============================================================================
CATEGORY_TODO = "To Do"
CATEGORY_IN_PROGRESS = "In Progress"
CATEGORY_DONE = "Done"

STATUS_CATEGORY_NAMES: Sequence[str] = (CATEGORY_TODO, CATEGORY_IN_PROGRESS, CATEGORY_DONE)

# =============================================================================
# Changelog field classification
# Keys are lowercase; Jira is inconsistent about casing between Server/Cloud.
# =============================================================================
FIELD_KIND_ALIASES: dict[str, str] = {
    "status": "status",
    "resolution": "resolution",
    "flagged": "flagged",
    "sprint": "sprint",
    "story points": "story_points",
    "story point estimate": "story_points",
    "priority": "priority",
    "comment": "comment",
}

# Fields that get a synthetic "state at creation" event
FABRICATED_FIELDS: Sequence[str] = ("status", "priority")

# =============================================================================
# Metric tuning knobs
# =============================================================================
DEFAULT_STALLED_THRESHOLD_DAYS: int = 5
DEFAULT_EXPEDITED_PRIORITY_NAMES: Sequence[str] = ("Critical", "Highest", "Blocker")

# Parent references live in one of several custom fields depending on the
# Jira flavour; these are consulted after `parent` and `epic`.
DEFAULT_PARENT_LINK_FIELDS: Sequence[str] = ()

# Subtask summaries are clipped to their first 51 characters in data quality details
SUMMARY_PREVIEW_CHARS: int = 51

# Parallel sprint reconstruction
SPRINT_BURNDOWN_MAX_WORKERS = 4
SPRINT_BURNDOWN_MIN_PARALLEL = 3  # below this, stay sequential

UNKNOWN_AUTHOR = "Unknown author"
