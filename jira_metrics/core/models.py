"""Domain data models for change events, statuses, boards and sprints."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from .config import FIELD_KIND_ALIASES
from .errors import ConfigurationError

if TYPE_CHECKING:
    from .issue import IssueHistory
    from .settings import MetricsSettings


class FieldKind(str, Enum):
    STATUS = "status"
    RESOLUTION = "resolution"
    FLAGGED = "flagged"
    SPRINT = "sprint"
    STORY_POINTS = "story_points"
    PRIORITY = "priority"
    COMMENT = "comment"
    OTHER = "other"

    @classmethod
    def from_field_name(cls, name: str | None) -> FieldKind:
        """Classify a raw changelog field name; anything unrecognised is OTHER."""
        if not name:
            return cls.OTHER
        alias = FIELD_KIND_ALIASES.get(str(name).strip().lower())
        return cls(alias) if alias else cls.OTHER


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    time: datetime
    field: FieldKind
    value: str | None
    value_id: int | str | None = None
    old_value: str | None = None
    old_value_id: int | str | None = None
    author: str | None = None
    artificial: bool = False
    field_name: str | None = None

    @property
    def is_status(self) -> bool:
        return self.field is FieldKind.STATUS

    @property
    def is_resolution(self) -> bool:
        return self.field is FieldKind.RESOLUTION

    @property
    def is_flagged(self) -> bool:
        return self.field is FieldKind.FLAGGED

    @property
    def is_sprint(self) -> bool:
        return self.field is FieldKind.SPRINT

    @property
    def is_story_points(self) -> bool:
        return self.field is FieldKind.STORY_POINTS

    @property
    def is_priority(self) -> bool:
        return self.field is FieldKind.PRIORITY

    @property
    def is_comment(self) -> bool:
        return self.field is FieldKind.COMMENT

    def matches_status(self, names_or_ids: Iterable) -> bool:
        if not self.is_status:
            return False
        wanted = set(names_or_ids)
        return self.value in wanted or (self.value_id is not None and self.value_id in wanted)

    def sprint_ids(self) -> list[int]:
        """Sprint ids the issue belongs to after this change (empty if none)."""
        match self.field:
            case FieldKind.SPRINT:
                raw = "" if self.value_id is None else str(self.value_id)
                return [int(part) for part in raw.split(",") if part.strip().isdigit()]
            case _:
                return []

    def __repr__(self) -> str:
        flag = " artificial" if self.artificial else ""
        return (
            f"ChangeEvent({self.field.value}: {self.old_value!r} -> {self.value!r}"
            f" @ {self.time.isoformat()}{flag})"
        )


@dataclass(frozen=True, slots=True)
class Status:
    name: str
    id: int | None
    category_name: str | None
    category_id: int | None = None
    project_id: int | str | None = None

    @property
    def is_global(self) -> bool:
        return self.project_id is None


@dataclass(frozen=True, slots=True)
class IssueSnapshot:
    """Current field values of an issue as exported by the tracker."""

    summary: str | None = None
    issue_type: str | None = None
    status: Status | None = None
    priority_name: str | None = None
    priority_id: int | str | None = None
    resolution: str | None = None
    assignee: str | None = None
    creator: str | None = None
    updated: datetime | None = None
    url: str | None = None
    parent_key: str | None = None
    labels: tuple[str, ...] = ()
    components: tuple[str, ...] = ()
    fix_versions: tuple[str, ...] = ()
    subtask_keys: tuple[str, ...] = ()

    def current_value(self, field_kind: FieldKind) -> tuple[str | None, int | str | None]:
        """Return (name, id) for the fields that get a synthetic creation event."""
        match field_kind:
            case FieldKind.STATUS:
                if self.status is None:
                    return None, None
                return self.status.name, self.status.id
            case FieldKind.PRIORITY:
                return self.priority_name, self.priority_id
            case _:
                return None, None


@dataclass(frozen=True, slots=True)
class BoardColumn:
    name: str
    status_ids: frozenset[int]
    min_wip: int | None = None
    max_wip: int | None = None


@dataclass(frozen=True, slots=True)
class Board:
    """Board layout as handed over by the configuration collaborator.

    Scrum boards carry no backlog statuses; that is a known gap in what the
    tracker exposes, not something to infer here.
    """

    board_id: int
    kind: str
    visible_columns: tuple[BoardColumn, ...] = ()
    backlog_status_ids: tuple[int, ...] = ()
    name: str | None = None

    @property
    def is_kanban(self) -> bool:
        return self.kind == "kanban"

    @property
    def is_scrum(self) -> bool:
        return self.kind == "scrum"

    def column_index_for(self, status_id) -> int | None:
        for index, column in enumerate(self.visible_columns):
            if status_id in column.status_ids:
                return index
        return None


@dataclass(frozen=True, slots=True)
class Sprint:
    sprint_id: int
    name: str
    start_time: datetime
    completed_time: datetime | None = None


@dataclass(frozen=True, slots=True)
class TruncationRecord:
    original_start_time: datetime
    cutoff_time: datetime


IssueTimeFn = Callable[["IssueHistory"], "datetime | None"]


@dataclass(frozen=True, slots=True)
class CycleTimePolicy:
    """Opaque start/stop predicates used by every scanner and chart."""

    start_of: IssueTimeFn
    stop_of: IssueTimeFn
    label: str | None = field(default=None, compare=False)

    @classmethod
    def from_settings(cls, settings: MetricsSettings) -> CycleTimePolicy:
        """Build a policy from status or status-category rules in settings.

        Start is the first time the issue entered a start status (or category);
        stop is the time it most recently entered a stop status and has stayed
        there since.
        """
        start_statuses = tuple(settings.start_statuses)
        start_categories = tuple(settings.start_status_categories)
        stop_statuses = tuple(settings.stop_statuses)
        stop_categories = tuple(settings.stop_status_categories)
        if not (start_statuses or start_categories):
            raise ConfigurationError("Cycle time start rules must be set (start_statuses or start_status_categories)")
        if not (stop_statuses or stop_categories):
            raise ConfigurationError("Cycle time stop rules must be set (stop_statuses or stop_status_categories)")

        def start_of(issue: IssueHistory) -> datetime | None:
            if start_statuses:
                return issue.first_time_in_status(*start_statuses)
            return issue.first_time_in_status_category(*start_categories)

        def stop_of(issue: IssueHistory) -> datetime | None:
            if stop_statuses:
                return issue.still_in_status(*stop_statuses)
            return issue.still_in_status_category(*stop_categories)

        return cls(start_of=start_of, stop_of=stop_of, label="settings")
