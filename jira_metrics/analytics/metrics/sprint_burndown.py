"""Sprint burndown reconstruction from per-issue sprint and story point changes."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import pandas as pd

from jira_metrics.core.errors import UnexpectedActionError
from jira_metrics.core.issue import IssueHistory
from jira_metrics.core.models import ChangeEvent, CycleTimePolicy, Sprint


class SprintAction(str, Enum):
    ENTER_SPRINT = "enter_sprint"
    LEAVE_SPRINT = "leave_sprint"
    STORY_POINTS = "story_points"
    ISSUE_STOPPED = "issue_stopped"


@dataclass(frozen=True, slots=True)
class SprintChangeRecord:
    time: datetime
    action: SprintAction
    value: float
    story_points: float
    issue: IssueHistory = field(compare=False)

    @property
    def issue_key(self) -> str:
        return self.issue.key


@dataclass(frozen=True, slots=True)
class BurndownPoint:
    time: datetime
    points: float
    label: str


def _to_points(value) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _fmt(points: float) -> str:
    return f"{points:g}"


def sprint_in_change(sprint: Sprint, change: ChangeEvent) -> bool:
    return sprint.sprint_id in change.sprint_ids()


def single_issue_change_records(
    issue: IssueHistory,
    sprint: Sprint,
    *,
    policy: CycleTimePolicy,
) -> list[SprintChangeRecord]:
    """Changes of ``issue`` that move the burndown for ``sprint``.

    Returns an empty list if the issue never entered the sprint.
    """
    story_points = 0.0
    ever_in_sprint = False
    currently_in_sprint = False
    completed_time = policy.stop_of(issue)
    completion_tracked = False
    records: list[SprintChangeRecord] = []

    def emit(time, action, value):
        records.append(
            SprintChangeRecord(time=time, action=action, value=value, story_points=story_points, issue=issue)
        )

    for change in issue.changes:
        if change.is_sprint:
            # Two sprint changes in a row can say the same thing; only real toggles count.
            in_change = sprint_in_change(sprint, change)
            if not currently_in_sprint and in_change:
                ever_in_sprint = True
                emit(change.time, SprintAction.ENTER_SPRINT, story_points)
            elif currently_in_sprint and not in_change:
                emit(change.time, SprintAction.LEAVE_SPRINT, -story_points)
            currently_in_sprint = in_change
        elif change.is_story_points and (completed_time is None or change.time < completed_time):
            story_points = _to_points(change.value)
            emit(change.time, SprintAction.STORY_POINTS, story_points - _to_points(change.old_value))

        if not completion_tracked and completed_time is not None and change.time >= completed_time:
            completion_tracked = True
            emit(completed_time, SprintAction.ISSUE_STOPPED, -story_points)

    if not ever_in_sprint:
        return []
    return records


def collect_sprint_records(
    issues: Iterable[IssueHistory],
    sprint: Sprint,
    *,
    policy: CycleTimePolicy,
) -> list[SprintChangeRecord]:
    records: list[SprintChangeRecord] = []
    for issue in issues:
        records.extend(single_issue_change_records(issue, sprint, policy=policy))
    # Stable: insertion order breaks remaining ties
    records.sort(key=lambda record: record.time)
    return records


def _apply_record(
    record: SprintChangeRecord,
    in_sprint: set[str],
    completed: set[str],
) -> tuple[float, str] | None:
    """Apply one record to the sprint membership; returns (delta, label) or None if it has no effect.

    Completion takes an issue out of the burndown for good, whatever the sprint
    field says afterwards.
    """
    key = record.issue_key
    match record.action:
        case SprintAction.ENTER_SPRINT:
            if key in completed or key in in_sprint:
                return None
            in_sprint.add(key)
            return record.story_points, f"Added to sprint with {_fmt(record.story_points)} points"
        case SprintAction.LEAVE_SPRINT:
            if key not in in_sprint:
                return None
            in_sprint.remove(key)
            return -record.story_points, f"Removed from sprint with {_fmt(record.story_points)} points"
        case SprintAction.STORY_POINTS:
            if key not in in_sprint:
                return None
            old_points = record.story_points - record.value
            return (
                record.value,
                f"Story points changed from {_fmt(old_points)} points to {_fmt(record.story_points)} points",
            )
        case SprintAction.ISSUE_STOPPED:
            completed.add(key)
            if key not in in_sprint:
                return None
            in_sprint.remove(key)
            return -record.story_points, f"Completed with {_fmt(record.story_points)} points"
        case _:
            raise UnexpectedActionError(f"Unexpected action {record.action}")


def burndown_points(sprint: Sprint, records: Iterable[SprintChangeRecord]) -> list[BurndownPoint]:
    """Sweep time-sorted records into ``(time, running total, label)`` points.

    Records before the sprint start silently seed the starting total; records
    after the sprint completed are ignored.
    """
    total = 0.0
    start_written = False
    points: list[BurndownPoint] = []
    in_sprint: set[str] = set()
    completed: set[str] = set()

    def start_point():
        return BurndownPoint(sprint.start_time, total, f"Sprint started with {_fmt(total)} points")

    for record in records:
        if sprint.completed_time is not None and record.time > sprint.completed_time:
            break

        if record.time >= sprint.start_time and not start_written:
            points.append(start_point())
            start_written = True

        applied = _apply_record(record, in_sprint, completed)
        if applied is None:
            continue
        delta, message = applied
        total += delta
        if start_written:
            points.append(BurndownPoint(record.time, total, f"{record.issue_key} {message}"))

    if not start_written:
        points.append(start_point())

    if sprint.completed_time is not None:
        points.append(
            BurndownPoint(sprint.completed_time, total, f"Sprint ended with {_fmt(total)} points unfinished")
        )
    return points


def sprint_burndown(
    issues: Iterable[IssueHistory],
    sprint: Sprint,
    *,
    policy: CycleTimePolicy,
) -> list[BurndownPoint]:
    return burndown_points(sprint, collect_sprint_records(issues, sprint, policy=policy))


def burndown_to_dataframe(points: Iterable[BurndownPoint], sprint: Sprint | None = None) -> pd.DataFrame:
    df = pd.DataFrame(
        [{"time": p.time, "points": p.points, "label": p.label} for p in points],
        columns=["time", "points", "label"],
    )
    if sprint is not None:
        df["sprint"] = sprint.name
    return df
