from datetime import datetime

import pytest
import pytz

from conftest import status_item
from jira_metrics.analytics.metrics.wip import (
    StartStopEvent,
    WipAction,
    make_start_stop_sequence,
    make_wip_transitions,
    wip_over_time,
    wip_to_dataframe,
)
from jira_metrics.core.errors import UnexpectedActionError
from jira_metrics.core.models import CycleTimePolicy


def _t(text: str) -> datetime:
    return pytz.UTC.localize(datetime.fromisoformat(text))


@pytest.fixture
def issues(make_issue):
    return {key: make_issue(key) for key in ("SP-1", "SP-2", "SP-10")}


def test_empty_sequences():
    assert make_wip_transitions([]) == []
    assert wip_to_dataframe([]).empty


def test_multiple_items_starting_at_once(issues):
    events = [
        StartStopEvent(_t("2021-10-10"), WipAction.START, issues["SP-1"]),
        StartStopEvent(_t("2021-10-10"), WipAction.START, issues["SP-2"]),
    ]
    transitions = make_wip_transitions(events)
    assert len(transitions) == 1
    assert [i.key for i in transitions[0].active] == ["SP-1", "SP-2"]
    assert transitions[0].removed == ()


def test_multiple_items(issues):
    events = [
        StartStopEvent(_t("2021-10-10"), "start", issues["SP-1"]),
        StartStopEvent(_t("2021-10-10"), "start", issues["SP-2"]),
        StartStopEvent(_t("2021-10-12"), "start", issues["SP-10"]),
        StartStopEvent(_t("2021-10-14"), "stop", issues["SP-10"]),
    ]
    transitions = make_wip_transitions(events)
    assert [t.time for t in transitions] == [_t("2021-10-10"), _t("2021-10-12"), _t("2021-10-14")]
    assert [[i.key for i in t.active] for t in transitions] == [
        ["SP-1", "SP-2"],
        ["SP-1", "SP-10", "SP-2"],
        ["SP-1", "SP-10", "SP-2"],
    ]
    assert [i.key for i in transitions[-1].removed] == ["SP-10"]
    assert [i.key for i in transitions[-1].remaining] == ["SP-1", "SP-2"]


def test_stop_for_unstarted_issue_is_ignored(issues):
    transitions = make_wip_transitions([StartStopEvent(_t("2021-10-10"), "stop", issues["SP-1"])])
    assert transitions[0].active == ()
    assert transitions[0].removed == ()


def test_invalid_action(issues):
    events = [StartStopEvent(_t("2021-10-10"), "foo", issues["SP-1"])]
    with pytest.raises(UnexpectedActionError, match="Unexpected action foo"):
        make_wip_transitions(events)


def test_start_stop_sequence_from_policy(make_issue, policy):
    done = make_issue(
        "SP-10",
        status="Done",
        histories=[
            ("2022-01-03T00:00:00+00:00", [status_item("Backlog", "In Progress")]),
            ("2022-01-05T00:00:00+00:00", [status_item("In Progress", "Done")]),
        ],
    )
    in_progress = make_issue("SP-1", status="In Progress", histories=[("2022-01-02T00:00:00+00:00", [status_item("Backlog", "In Progress")])])
    never_started = make_issue("SP-2")

    events = make_start_stop_sequence([done, in_progress, never_started], policy)
    assert [(e.time, e.action, e.issue.key) for e in events] == [
        (_t("2022-01-02"), WipAction.START, "SP-1"),
        (_t("2022-01-03"), WipAction.START, "SP-10"),
        (_t("2022-01-05"), WipAction.STOP, "SP-10"),
    ]

    df = wip_to_dataframe(wip_over_time([done, in_progress, never_started], policy))
    assert df["active_count"].tolist() == [1, 2, 1]


def test_issue_stopped_before_started_is_never_active(make_issue):
    odd = CycleTimePolicy(
        start_of=lambda issue: issue.first_time_in_status("Review"),
        stop_of=lambda issue: issue.first_time_in_status("In Progress"),
    )
    issue = make_issue(
        "SP-1",
        status="Review",
        histories=[
            ("2022-01-03T00:00:00+00:00", [status_item("Backlog", "In Progress")]),
            ("2022-01-05T00:00:00+00:00", [status_item("In Progress", "Review")]),
        ],
    )
    assert make_start_stop_sequence([issue], odd) == []

    transitions = make_wip_transitions(
        [
            StartStopEvent(_t("2022-01-03"), "stop", issue),
            StartStopEvent(_t("2022-01-05"), "start", issue),
        ]
    )
    assert [(t.time, t.active, t.removed) for t in transitions] == [
        (_t("2022-01-03"), (), ()),
        (_t("2022-01-05"), (), ()),
    ]


def test_remaining_matches_start_and_stop_times(make_issue, policy):
    def moves(*steps):
        return [(f"2022-01-{day:02d}T00:00:00+00:00", [status_item(old, new)]) for day, old, new in steps]

    issues = [
        make_issue("SP-1", status="Done", histories=moves((2, "Backlog", "In Progress"), (6, "In Progress", "Done"))),
        make_issue("SP-2", status="Review", histories=moves((3, "Backlog", "In Progress"), (4, "In Progress", "Review"))),
        make_issue("SP-3", status="Done", histories=moves((4, "Backlog", "Review"), (4, "Review", "Done"))),
        make_issue("SP-4", status="Done", histories=moves((5, "Backlog", "Done"))),
    ]
    for transition in wip_over_time(issues, policy):
        t = transition.time
        expected = {
            issue.key
            for issue in issues
            if policy.start_of(issue) is not None
            and policy.start_of(issue) <= t
            and (policy.stop_of(issue) is None or policy.stop_of(issue) > t)
        }
        assert {issue.key for issue in transition.remaining} == expected
