"""Total work-in-progress over time from per-issue start/stop times."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from itertools import groupby

import pandas as pd

from jira_metrics.core.errors import UnexpectedActionError
from jira_metrics.core.issue import IssueHistory
from jira_metrics.core.models import CycleTimePolicy

logger = logging.getLogger(__name__)


class WipAction(str, Enum):
    START = "start"
    STOP = "stop"


@dataclass(frozen=True, slots=True)
class StartStopEvent:
    time: datetime
    action: WipAction | str
    issue: IssueHistory


@dataclass(frozen=True, slots=True)
class WipTransition:
    """Active issues at ``time``, including the ones that stop at that instant."""

    time: datetime
    active: tuple[IssueHistory, ...]
    removed: tuple[IssueHistory, ...]

    @property
    def remaining(self) -> tuple[IssueHistory, ...]:
        removed_keys = {issue.key for issue in self.removed}
        return tuple(issue for issue in self.active if issue.key not in removed_keys)


def make_start_stop_sequence(issues: Iterable[IssueHistory], policy: CycleTimePolicy) -> list[StartStopEvent]:
    events: list[StartStopEvent] = []
    for issue in issues:
        started = policy.start_of(issue)
        stopped = policy.stop_of(issue)
        if started is not None and stopped is not None and stopped < started:
            # Never in progress; the data quality scan reports it as stopped before started.
            logger.debug("%s: stopped %s before it started %s, left out of WIP", issue.key, stopped, started)
            continue
        if started is not None:
            events.append(StartStopEvent(started, WipAction.START, issue))
        if stopped is not None:
            events.append(StartStopEvent(stopped, WipAction.STOP, issue))
    events.sort(key=lambda event: event.time)
    return events


def _coerce_action(action) -> WipAction:
    try:
        return WipAction(action)
    except ValueError:
        raise UnexpectedActionError(f"Unexpected action {getattr(action, 'value', action)}") from None


def make_wip_transitions(events: Iterable[StartStopEvent]) -> list[WipTransition]:
    """Sweep start/stop events, emitting one transition per distinct timestamp."""
    transitions: list[WipTransition] = []
    active: dict[str, IssueHistory] = {}
    stopped: set[str] = set()
    ordered = sorted(events, key=lambda event: event.time)

    for time, group in groupby(ordered, key=lambda event: event.time):
        removed: dict[str, IssueHistory] = {}
        for event in group:
            match _coerce_action(event.action):
                case WipAction.START:
                    # A start after the issue already stopped never makes it active again.
                    if event.issue.key not in stopped:
                        active.setdefault(event.issue.key, event.issue)
                case WipAction.STOP:
                    stopped.add(event.issue.key)
                    if event.issue.key in active:
                        removed[event.issue.key] = event.issue

        snapshot = tuple(active[key] for key in sorted(active))
        for key in removed:
            del active[key]
        transitions.append(WipTransition(time, snapshot, tuple(removed[key] for key in sorted(removed))))
    return transitions


def wip_over_time(issues: Iterable[IssueHistory], policy: CycleTimePolicy) -> list[WipTransition]:
    return make_wip_transitions(make_start_stop_sequence(issues, policy))


def wip_to_dataframe(transitions: Iterable[WipTransition]) -> pd.DataFrame:
    rows = [
        {
            "time": t.time,
            "active_count": len(t.remaining),
            "active_keys": [issue.key for issue in t.active],
            "removed_keys": [issue.key for issue in t.removed],
        }
        for t in transitions
    ]
    return pd.DataFrame(rows, columns=["time", "active_count", "active_keys", "removed_keys"])
