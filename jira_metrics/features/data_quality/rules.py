"""Independent anomaly rules run over one issue's history.

Each rule appends zero or more problems to the entry it is given and never
raises for bad data: production changelogs violate the "obvious" invariants
often enough that the findings are the product.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from jira_metrics.core.config import SUMMARY_PREVIEW_CHARS
from jira_metrics.core.models import Board, CycleTimePolicy, Status, TruncationRecord
from jira_metrics.core.status import StatusTaxonomy
from jira_metrics.features.data_quality.context import DataQualityEntry, ProblemKey


def scan_completed_without_start(entry: DataQualityEntry) -> None:
    if entry.stopped is None or entry.started is not None:
        return

    changes = [c for c in entry.issue.changes if c.is_status and c.time == entry.stopped]
    detail = "No status changes found at the time that this item was marked completed."
    if changes:
        detail = " ".join(
            f"Status changed from {c.old_value} to {c.value} on {c.time.isoformat()}." for c in changes
        )
    entry.report(
        ProblemKey.COMPLETED_BUT_NOT_STARTED,
        detail,
        status_changes=[(c.old_value, c.value, c.time) for c in changes],
    )


def scan_status_change_after_done(entry: DataQualityEntry) -> None:
    if entry.stopped is None:
        return

    changes_after_done = [c for c in entry.issue.changes if c.is_status and c.time > entry.stopped]
    if not changes_after_done:
        return

    parts = [f"This item was done on {entry.stopped.isoformat()} but status changes continued after that."]
    parts.extend(f"Status change to {c.value} on {c.time.isoformat()}." for c in changes_after_done)
    entry.report(
        ProblemKey.STATUS_CHANGES_AFTER_DONE,
        " ".join(parts),
        stopped=entry.stopped,
        status_changes=[(c.value, c.time) for c in changes_after_done],
    )


def scan_backwards_movement(
    entry: DataQualityEntry,
    *,
    board: Board,
    taxonomy: StatusTaxonomy,
    backlog_statuses: Sequence[Status],
) -> None:
    """Moving backwards through statuses is bad; backwards through categories is usually worse."""
    backlog_names = {status.name for status in backlog_statuses}
    last_index = -1
    for change in entry.issue.changes:
        if not change.is_status:
            continue

        index = board.column_index_for(change.value_id)
        if index is None:
            if change.value in backlog_names:
                # Moved back to the backlog; that is covered by a different report.
                pass
            elif taxonomy.resolve(change.value) is None:
                entry.report(
                    ProblemKey.STATUS_NOT_ON_BOARD,
                    f"Status {change.value} cannot be found at all. Was it deleted?",
                    status=change.value,
                    deleted=True,
                )
            else:
                entry.report(
                    ProblemKey.STATUS_NOT_ON_BOARD,
                    f"Status {change.value} is not on the board",
                    status=change.value,
                    deleted=False,
                )
        elif change.old_value is not None and index < last_index:
            new_category = taxonomy.category_name_for(change.value)
            old_category = taxonomy.category_name_for(change.old_value)
            moved = f"Moved from {change.old_value} to {change.value} on {change.time.date().isoformat()}"
            if new_category == old_category:
                entry.report(
                    ProblemKey.BACKWARDS_THROUGH_STATUSES,
                    moved,
                    old_status=change.old_value,
                    new_status=change.value,
                )
            else:
                entry.report(
                    ProblemKey.BACKWARDS_THROUGH_STATUS_CATEGORIES,
                    f"{moved}, crossing from category {old_category} to {new_category}.",
                    old_status=change.old_value,
                    new_status=change.value,
                    old_category=old_category,
                    new_category=new_category,
                )
        last_index = -1 if index is None else index


def scan_created_in_wrong_status(entry: DataQualityEntry, *, board: Board) -> None:
    # Scrum boards expose no backlog statuses, so this never fires for them.
    valid_initial_ids = set(board.backlog_status_ids)
    if not valid_initial_ids:
        return

    creation_change = next((c for c in entry.issue.changes if c.is_status), None)
    if creation_change is None or creation_change.value_id in valid_initial_ids:
        return

    entry.report(
        ProblemKey.CREATED_IN_WRONG_STATUS,
        f"Issue was created in {creation_change.value} status on {creation_change.time.date().isoformat()}",
        status=creation_change.value,
    )


def scan_stopped_before_started(entry: DataQualityEntry) -> None:
    if entry.stopped is None or entry.started is None or not entry.stopped < entry.started:
        return
    entry.report(
        ProblemKey.STOPPED_BEFORE_STARTED,
        f"The stopped time '{entry.stopped.isoformat()}' is before the started time '{entry.started.isoformat()}'",
        started=entry.started,
        stopped=entry.stopped,
    )


def scan_unstarted_with_started_subtasks(entry: DataQualityEntry, *, policy: CycleTimePolicy) -> None:
    if entry.started is not None:
        return

    started_subtasks = [subtask for subtask in entry.issue.subtasks if policy.start_of(subtask) is not None]
    if not started_subtasks:
        return

    lines = []
    for subtask in started_subtasks:
        status_name = subtask.status.name if subtask.status else None
        summary = (subtask.summary or "")[:SUMMARY_PREVIEW_CHARS]
        lines.append(f"Started subtask: {subtask.key} ({status_name}) {summary!r}")
    entry.report(
        ProblemKey.ISSUE_NOT_STARTED_BUT_SUBTASKS_HAVE,
        "\n".join(lines),
        subtask_keys=[subtask.key for subtask in started_subtasks],
    )


def _label_days(days: int) -> str:
    return "1 day" if days == 1 else f"{days} days"


def scan_discarded_data(entry: DataQualityEntry, *, truncations: Mapping[str, TruncationRecord]) -> None:
    record = truncations.get(entry.issue.key)
    if record is None:
        return

    start_date = record.original_start_time.date()
    cutoff_date = record.cutoff_time.date()
    days_ignored = (cutoff_date - start_date).days + 1
    # A single day can't affect any of the calculations.
    if days_ignored == 1:
        return

    entry.report(
        ProblemKey.DISCARDED_CHANGES,
        f"Started: {start_date.isoformat()}, Discarded: {cutoff_date.isoformat()}, Ignored: {_label_days(days_ignored)}",
        original_start_date=start_date,
        cutoff_date=cutoff_date,
        days_ignored=days_ignored,
    )
