"""MetricsService: one explicit run from loaded tracker data to metrics."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

from jira_metrics.analytics.metrics.sprint_burndown import BurndownPoint, sprint_burndown
from jira_metrics.analytics.metrics.wip import WipTransition, wip_over_time
from jira_metrics.features.data_quality import DataQualityReport, build_data_quality_report

from .config import SPRINT_BURNDOWN_MAX_WORKERS, SPRINT_BURNDOWN_MIN_PARALLEL
from .errors import ConfigurationError
from .issue import IssueArena, IssueHistory
from .mappers import map_issue_history, map_taxonomy
from .models import Board, CycleTimePolicy, Sprint, TruncationRecord
from .settings import MetricsSettings
from .status import StatusTaxonomy

ProgressCallback = Callable[[str, int | None, int | None], None]
CutoffFn = Callable[[IssueHistory], "datetime | None"]

logger = logging.getLogger(__name__)


class MetricsService:
    def __init__(self, settings: MetricsSettings | None = None, policy: CycleTimePolicy | None = None):
        self.settings = settings or MetricsSettings()
        self._policy = policy
        self._tz = self.settings.tzinfo
        self.taxonomy = StatusTaxonomy(project_id=self.settings.project_id)
        self.arena = IssueArena()
        self.truncations: dict[str, TruncationRecord] = {}

    @property
    def policy(self) -> CycleTimePolicy:
        if self._policy is None:
            self._policy = CycleTimePolicy.from_settings(self.settings)
        return self._policy

    # ------------------ Loading ------------------
    def load_statuses(self, raw_statuses: Iterable[dict[str, Any]]) -> StatusTaxonomy:
        self.taxonomy = map_taxonomy(raw_statuses, project_id=self.settings.project_id)
        logger.info("Loaded %s statuses for project %s", len(self.taxonomy), self.settings.project_id)
        return self.taxonomy

    def load_issues(
        self,
        raw_issues: Iterable[dict[str, Any]],
        *,
        progress: ProgressCallback | None = None,
    ) -> IssueArena:
        raw_list = list(raw_issues)
        if progress:
            progress("Building issue histories", 0, len(raw_list))
        arena = IssueArena()
        for idx, raw in enumerate(raw_list, start=1):
            arena.add(
                map_issue_history(
                    raw,
                    self.taxonomy,
                    tz=self._tz,
                    parent_link_fields=tuple(self.settings.customfield_parent_links),
                )
            )
            if progress:
                progress("Building issue histories", idx, len(raw_list))
        arena.link_relationships()
        self.arena = arena
        self.truncations = {}
        logger.info("Loaded %s issues", len(arena))
        return arena

    def select_board(self, boards: Mapping[int, Board] | Sequence[Board]) -> Board:
        """Pick the configured board, or the only one available."""
        by_id = dict(boards) if isinstance(boards, Mapping) else {board.board_id: board for board in boards}
        board_id = self.settings.board_id
        if board_id is not None:
            if board_id not in by_id:
                raise ConfigurationError(
                    f"Board {board_id} was configured but only these were loaded: {sorted(by_id)}"
                )
            return by_id[board_id]
        if not by_id:
            raise ConfigurationError("No board id was set and we couldn't find any configuration files for boards")
        if len(by_id) > 1:
            raise ConfigurationError(
                f"No board id was set and we found the following board ids and this is ambiguous: {sorted(by_id)}"
            )
        return next(iter(by_id.values()))

    # ------------------ Truncation ------------------
    def discard_changes_before(
        self,
        *,
        status_becomes: Sequence[str] | str | None = None,
        cutoff_fn: CutoffFn | None = None,
        board: Board | None = None,
    ) -> dict[str, TruncationRecord]:
        """Drop every event at or before each issue's cutoff.

        The cutoff is the last time the issue moved into one of ``status_becomes``
        (``":backlog"`` stands for the board's backlog statuses) or whatever
        ``cutoff_fn`` returns. Issues that had already started by then get a
        ``TruncationRecord`` for the discarded-data rule. Each pass replaces the
        records of the previous one.
        """
        if (status_becomes is None) == (cutoff_fn is None):
            raise ConfigurationError("discard_changes_before needs exactly one of status_becomes or cutoff_fn")

        if status_becomes is not None:
            names = [status_becomes] if isinstance(status_becomes, str) else list(status_becomes)
            expanded: set = set()
            for name in names:
                if name == ":backlog":
                    if board is None:
                        raise ConfigurationError(":backlog requires a board")
                    expanded.update(board.backlog_status_ids)
                    expanded.update(
                        s.name
                        for s in self.taxonomy.expand(list(board.backlog_status_ids), on_missing=lambda _m: None)
                    )
                else:
                    expanded.add(name)

            def cutoff_fn(issue: IssueHistory) -> datetime | None:
                matching = [c.time for c in issue.changes if c.matches_status(expanded)]
                return matching[-1] if matching else None

        self.truncations = {}
        trimmed = IssueArena()
        for issue in self.arena.values():
            cutoff = cutoff_fn(issue)
            if cutoff is None:
                trimmed.add(issue)
                continue
            started = self.policy.start_of(issue)
            if started is not None and started <= cutoff:
                self.truncations[issue.key] = TruncationRecord(original_start_time=started, cutoff_time=cutoff)
            trimmed.add(issue.discard_changes_before(cutoff))
            logger.debug("%s: discarded changes up to %s", issue.key, cutoff)
        self.arena = trimmed
        return self.truncations

    # ------------------ Metrics ------------------
    def scan_data_quality(self, board: Board) -> DataQualityReport:
        return build_data_quality_report(
            self.arena.values(),
            taxonomy=self.taxonomy,
            board=board,
            policy=self.policy,
            truncations=self.truncations,
        )

    def sprint_burndowns(
        self,
        sprints: Sequence[Sprint],
        *,
        progress: ProgressCallback | None = None,
    ) -> dict[int, list[BurndownPoint]]:
        """Burndown series per sprint id; sprints are independent of each other."""
        issues = list(self.arena.values())
        policy = self.policy
        results: dict[int, list[BurndownPoint]] = {}
        if not sprints:
            return results

        if len(sprints) < SPRINT_BURNDOWN_MIN_PARALLEL:
            for idx, sprint in enumerate(sprints, start=1):
                results[sprint.sprint_id] = sprint_burndown(issues, sprint, policy=policy)
                if progress:
                    progress("Reconstructing sprint burndowns", idx, len(sprints))
            return results

        from concurrent.futures import ThreadPoolExecutor, as_completed

        completed = 0
        with ThreadPoolExecutor(max_workers=SPRINT_BURNDOWN_MAX_WORKERS) as pool:
            futures = {pool.submit(sprint_burndown, issues, sprint, policy=policy): sprint for sprint in sprints}
            for fut in as_completed(futures):
                sprint = futures[fut]
                results[sprint.sprint_id] = fut.result()
                completed += 1
                logger.debug("Burndown for sprint %s: %s points", sprint.name, len(results[sprint.sprint_id]))
                if progress:
                    progress("Reconstructing sprint burndowns", completed, len(sprints))
        # Keep the caller's sprint order
        return {sprint.sprint_id: results[sprint.sprint_id] for sprint in sprints}

    def wip_over_time(self) -> list[WipTransition]:
        return wip_over_time(self.arena.values(), self.policy)
