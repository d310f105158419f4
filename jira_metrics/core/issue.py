"""Per-issue change history and the temporal queries derived from it."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from datetime import date, datetime

import pytz

from .config import DEFAULT_EXPEDITED_PRIORITY_NAMES, DEFAULT_STALLED_THRESHOLD_DAYS, FABRICATED_FIELDS
from .models import ChangeEvent, FieldKind, IssueSnapshot, Status
from .status import StatusTaxonomy

logger = logging.getLogger(__name__)

_KEY_NUMBER = re.compile(r"-(\d+)$")


def sort_changes(changes: Iterable[ChangeEvent]) -> list[ChangeEvent]:
    """Sort ascending by time; a resolution lands after anything else on the same tick.

    Resolutions are commonly written on the same instant as the status change that
    triggered them and must be treated as happening logically afterwards.
    """
    return sorted(changes, key=lambda change: (change.time, change.is_resolution))


def fabricate_initial_events(
    changes: Iterable[ChangeEvent],
    *,
    created: datetime,
    snapshot: IssueSnapshot,
    author: str | None = None,
) -> list[ChangeEvent]:
    """Synthesize the status/priority the issue had at creation.

    An issue can be created with fields already set, in which case the changelog
    never mentions them. The value comes from the first observed change of the
    field (what it changed away from) or, failing that, the current snapshot.
    Artificial events in ``changes`` are ignored so re-deriving is stable.
    """
    observed = [change for change in changes if not change.artificial]
    fabricated: list[ChangeEvent] = []
    for field_name in FABRICATED_FIELDS:
        kind = FieldKind(field_name)
        first_change = next((change for change in observed if change.field is kind), None)
        if first_change is None:
            value, value_id = snapshot.current_value(kind)
            if value is None and value_id is None:
                continue
        else:
            value, value_id = first_change.old_value, first_change.old_value_id
        fabricated.append(
            ChangeEvent(
                time=created,
                field=kind,
                value=value,
                value_id=value_id,
                author=author,
                artificial=True,
                field_name=field_name,
            )
        )
    return fabricated


class IssueHistory:
    """Frozen, time-ordered change sequence for one issue.

    Parent/subtask relationships are stored as keys and resolved through the
    ``IssueArena`` the issue is registered in, never as direct references.
    """

    def __init__(
        self,
        key: str,
        created: datetime,
        changes: Iterable[ChangeEvent] = (),
        *,
        snapshot: IssueSnapshot | None = None,
        taxonomy: StatusTaxonomy | None = None,
        fabricate: bool = True,
    ):
        self.key = key
        self.created = created
        self.snapshot = snapshot or IssueSnapshot()
        self.taxonomy = taxonomy if taxonomy is not None else StatusTaxonomy()
        self.parent_key: str | None = self.snapshot.parent_key
        self.subtask_keys: list[str] = list(self.snapshot.subtask_keys)
        self._arena: IssueArena | None = None

        ordered = sort_changes(changes)
        if fabricate:
            ordered = (
                fabricate_initial_events(ordered, created=created, snapshot=self.snapshot, author=self.snapshot.creator)
                + ordered
            )
        self._changes: tuple[ChangeEvent, ...] = tuple(ordered)

    # ------------------ Snapshot accessors ------------------
    @property
    def changes(self) -> tuple[ChangeEvent, ...]:
        return self._changes

    @property
    def summary(self) -> str | None:
        return self.snapshot.summary

    @property
    def status(self) -> Status | None:
        return self.snapshot.status

    @property
    def updated(self) -> datetime:
        if self.snapshot.updated is not None:
            return self.snapshot.updated
        if self._changes:
            return self._changes[-1].time
        return self.created

    @property
    def key_as_int(self) -> int | None:
        match = _KEY_NUMBER.search(self.key or "")
        return int(match.group(1)) if match else None

    @property
    def subtasks(self) -> list[IssueHistory]:
        if self._arena is None:
            return []
        return [self._arena[key] for key in self.subtask_keys if key in self._arena]

    @property
    def parent(self) -> IssueHistory | None:
        if self._arena is None or self.parent_key is None:
            return None
        return self._arena.get(self.parent_key)

    # ------------------ Status queries ------------------
    def _category_of(self, change: ChangeEvent) -> str | None:
        """Category of the status a change moved into; None if the status is unknown."""
        status = self.taxonomy.resolve(change.value)
        if status is None and change.value_id is not None:
            status = self.taxonomy.resolve(change.value_id)
        if status is None:
            # Deleted statuses still show up in old changelogs; the data quality scan reports them.
            logger.warning("%s: status %r is not in the taxonomy", self.key, change.value)
            return None
        return status.category_name

    def _status_changes(self) -> Iterator[ChangeEvent]:
        return (change for change in self._changes if change.is_status)

    def first_time_in_status(self, *status_names) -> datetime | None:
        return next((c.time for c in self._changes if c.matches_status(status_names)), None)

    def first_time_not_in_status(self, *status_names) -> datetime | None:
        return next((c.time for c in self._status_changes() if not c.matches_status(status_names)), None)

    def first_time_in_status_category(self, *category_names) -> datetime | None:
        for change in self._status_changes():
            if self._category_of(change) in category_names:
                return change.time
        return None

    def _still_in(self, matcher: Callable[[ChangeEvent], bool]) -> datetime | None:
        time = None
        for change in self._status_changes():
            matched = matcher(change)
            if matched and time is None:
                time = change.time
            elif not matched and time is not None:
                time = None
        return time

    def still_in_status(self, *status_names) -> datetime | None:
        """When the issue last entered one of these statuses, if it has stayed in them since."""
        return self._still_in(lambda change: change.matches_status(status_names))

    def still_in_status_category(self, *category_names) -> datetime | None:
        return self._still_in(lambda change: self._category_of(change) in category_names)

    def most_recent_status_change(self) -> ChangeEvent | None:
        return next((c for c in reversed(self._changes) if c.is_status), None)

    def currently_in_status(self, *status_names) -> datetime | None:
        change = self.most_recent_status_change()
        if change is None or not change.matches_status(status_names):
            return None
        return change.time

    def currently_in_status_category(self, *category_names) -> datetime | None:
        change = self.most_recent_status_change()
        if change is None:
            return None
        if self._category_of(change) not in category_names:
            return None
        return change.time

    def first_status_change_after_created(self) -> datetime | None:
        return next((c.time for c in self._status_changes() if not c.artificial), None)

    def first_resolution(self) -> datetime | None:
        return next((c.time for c in self._changes if c.is_resolution), None)

    def last_resolution(self) -> datetime | None:
        return next((c.time for c in reversed(self._changes) if c.is_resolution), None)

    # ------------------ Blocked / stalled / expedited ------------------
    def blocked_percentage(self, start_fn, end_fn) -> float | None:
        """Percentage of the [start, end] window spent flagged.

        Returns None when either end of the window is undefined. An unblock with
        no preceding block has been seen in production and is skipped.
        """
        started = start_fn(self)
        finished = end_fn(self)
        if started is None or finished is None:
            return None

        total_blocked = 0.0
        blocked_since: datetime | None = None
        for change in self._changes:
            if not change.is_flagged:
                continue
            if change.value:
                blocked_since = change.time
                continue
            if blocked_since is None:
                logger.warning("%s: unblock at %s without a preceding block", self.key, change.time)
                continue
            if change.time >= started:
                window_start = max(blocked_since, started)
                window_end = min(change.time, finished)
                total_blocked += max((window_end - window_start).total_seconds(), 0.0)
            blocked_since = None

        total = (finished - started).total_seconds()
        if total <= 0:
            return 0.0
        return total_blocked * 100.0 / total

    def blocked_on_date(self, day: date) -> bool:
        blocked_since: date | None = None
        for change in self._changes:
            if not change.is_flagged:
                continue
            if change.value:
                # Jira sends a variety of values when the flag goes on; any non-empty one counts.
                blocked_since = change.time.date()
                continue
            if blocked_since is None:
                continue
            if blocked_since <= day <= change.time.date():
                return True
            blocked_since = None
        return blocked_since is not None and day >= blocked_since

    def stalled_on_date(
        self,
        day: date,
        stalled_threshold: int = DEFAULT_STALLED_THRESHOLD_DAYS,
        *,
        _visited: set[str] | None = None,
    ) -> bool:
        visited = _visited if _visited is not None else set()
        visited.add(self.key)

        for change in self._changes:
            change_date = change.time.date()
            if change_date > day:
                continue
            if (day - change_date).days < stalled_threshold:
                return False

        for subtask in self.subtasks:
            if subtask.key in visited:
                continue
            if not subtask.stalled_on_date(day, stalled_threshold, _visited=visited):
                return False

        updated_date = self.updated.date()
        if day < updated_date:
            return False
        return (day - updated_date).days >= stalled_threshold

    def expedited(self, expedited_names: Iterable[str] = DEFAULT_EXPEDITED_PRIORITY_NAMES) -> bool:
        return self.snapshot.priority_name in set(expedited_names)

    def expedited_on_date(self, day: date, expedited_names: Iterable[str] = DEFAULT_EXPEDITED_PRIORITY_NAMES) -> bool:
        names = set(expedited_names)
        expedited_since: date | None = None
        for change in self._changes:
            if not change.is_priority:
                continue
            if change.value in names:
                if expedited_since is None:
                    expedited_since = change.time.date()
                continue
            if expedited_since is not None and expedited_since <= day <= change.time.date():
                return True
            expedited_since = None
        return expedited_since is not None and expedited_since <= day

    def last_activity(self, now: datetime | None = None, *, _visited: set[str] | None = None) -> datetime | None:
        """Latest event at or before ``now``, widened by every subtask's activity."""
        now = now or datetime.now(pytz.UTC)
        result = next((c.time for c in reversed(self._changes) if c.time <= now), None)
        if result is None:
            return None

        visited = _visited if _visited is not None else set()
        visited.add(self.key)
        for subtask in self.subtasks:
            if subtask.key in visited:
                continue
            subtask_activity = subtask.last_activity(now, _visited=visited)
            if subtask_activity is not None and subtask_activity > result:
                result = subtask_activity
        return result

    # ------------------ Derivation ------------------
    def discard_changes_before(self, cutoff: datetime) -> IssueHistory:
        """A new history holding only the events strictly after ``cutoff``."""
        kept = [change for change in self._changes if change.time > cutoff]
        trimmed = IssueHistory(
            self.key,
            self.created,
            kept,
            snapshot=self.snapshot,
            taxonomy=self.taxonomy,
            fabricate=False,
        )
        trimmed.parent_key = self.parent_key
        trimmed.subtask_keys = list(self.subtask_keys)
        return trimmed

    def __repr__(self) -> str:
        return f"IssueHistory({self.key!r})"


class IssueArena(Mapping[str, IssueHistory]):
    """Owns every loaded issue, keyed by issue key."""

    def __init__(self, issues: Iterable[IssueHistory] = ()):
        self._issues: dict[str, IssueHistory] = {}
        for issue in issues:
            self.add(issue)

    def add(self, issue: IssueHistory) -> None:
        if issue.key in self._issues:
            logger.debug("Replacing issue %s in arena", issue.key)
        issue._arena = self
        self._issues[issue.key] = issue

    def link_relationships(self) -> None:
        """Point every loaded subtask back at the issue that lists it."""
        for issue in self._issues.values():
            for subtask_key in issue.subtask_keys:
                subtask = self._issues.get(subtask_key)
                if subtask is not None and subtask.parent_key is None:
                    subtask.parent_key = issue.key

    def __getitem__(self, key: str) -> IssueHistory:
        return self._issues[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._issues)

    def __len__(self) -> int:
        return len(self._issues)
