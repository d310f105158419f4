"""Pure helpers to build the data quality report (no rendering)."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import pandas as pd

from jira_metrics.core.issue import IssueHistory
from jira_metrics.core.models import Board, CycleTimePolicy, TruncationRecord
from jira_metrics.core.status import StatusTaxonomy

logger = logging.getLogger(__name__)


class ProblemKey(str, Enum):
    COMPLETED_BUT_NOT_STARTED = "completed_but_not_started"
    STATUS_CHANGES_AFTER_DONE = "status_changes_after_done"
    STATUS_NOT_ON_BOARD = "status_not_on_board"
    BACKWARDS_THROUGH_STATUSES = "backwards_through_statuses"
    BACKWARDS_THROUGH_STATUS_CATEGORIES = "backwards_through_status_categories"
    CREATED_IN_WRONG_STATUS = "created_in_wrong_status"
    STOPPED_BEFORE_STARTED = "stopped_before_started"
    ISSUE_NOT_STARTED_BUT_SUBTASKS_HAVE = "issue_not_started_but_subtasks_have"
    DISCARDED_CHANGES = "discarded_changes"


@dataclass(slots=True)
class DataQualityProblem:
    problem_key: ProblemKey
    detail: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DataQualityEntry:
    """Findings for one issue during a single scan pass."""

    started: datetime | None
    stopped: datetime | None
    issue: IssueHistory
    problems: list[DataQualityProblem] = field(default_factory=list)

    def report(self, problem_key: ProblemKey, detail: str, **data) -> None:
        self.problems.append(DataQualityProblem(problem_key=problem_key, detail=detail, data=data))


@dataclass(slots=True)
class DataQualityReport:
    entries: list[DataQualityEntry]

    @property
    def entries_with_problems(self) -> list[DataQualityEntry]:
        return [entry for entry in self.entries if entry.problems]

    def problems_for(self, problem_key: ProblemKey | str) -> list[tuple[IssueHistory, str]]:
        key = ProblemKey(problem_key)
        return [
            (entry.issue, problem.detail)
            for entry in self.entries
            for problem in entry.problems
            if problem.problem_key is key
        ]


def _entry_sort_key(entry: DataQualityEntry):
    return (entry.issue.key_as_int or 0, entry.issue.key)


def build_data_quality_report(
    issues: Iterable[IssueHistory],
    *,
    taxonomy: StatusTaxonomy,
    board: Board,
    policy: CycleTimePolicy,
    truncations: Mapping[str, TruncationRecord] | None = None,
) -> DataQualityReport:
    """Run every rule over every issue and collect the findings.

    Parameters
    ----------
    issues : Iterable[IssueHistory]
        Frozen issue histories to scan.
    taxonomy : StatusTaxonomy
        Read-only status registry shared with the histories.
    board : Board
        Board whose columns define forward movement and backlog statuses.
    policy : CycleTimePolicy
        Supplies each issue's start and stop time.
    truncations : Mapping[str, TruncationRecord], optional
        Per-issue record of data dropped by an earlier discard pass.

    Returns
    -------
    DataQualityReport
        One entry per issue, sorted by the numeric part of the key.
    """
    from jira_metrics.features.data_quality import rules

    truncations = truncations or {}
    backlog_statuses = taxonomy.expand(list(board.backlog_status_ids), on_missing=lambda _missing: None)

    entries = sorted(
        (DataQualityEntry(started=policy.start_of(i), stopped=policy.stop_of(i), issue=i) for i in issues),
        key=_entry_sort_key,
    )
    for entry in entries:
        rules.scan_completed_without_start(entry)
        rules.scan_status_change_after_done(entry)
        rules.scan_backwards_movement(entry, board=board, taxonomy=taxonomy, backlog_statuses=backlog_statuses)
        rules.scan_created_in_wrong_status(entry, board=board)
        rules.scan_stopped_before_started(entry)
        rules.scan_unstarted_with_started_subtasks(entry, policy=policy)
        rules.scan_discarded_data(entry, truncations=truncations)

    report = DataQualityReport(entries=entries)
    logger.info(
        "Data quality scan: %s of %s issues have problems", len(report.entries_with_problems), len(entries)
    )
    return report


def report_to_dataframe(report: DataQualityReport) -> pd.DataFrame:
    rows = [
        {
            "key": entry.issue.key,
            "started": entry.started,
            "stopped": entry.stopped,
            "problem_key": problem.problem_key.value,
            "detail": problem.detail,
        }
        for entry in report.entries_with_problems
        for problem in entry.problems
    ]
    return pd.DataFrame(rows, columns=["key", "started", "stopped", "problem_key", "detail"])
