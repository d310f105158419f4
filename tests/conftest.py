"""Test configuration ensuring local package import when editable install not active.

If users invoke `pytest` outside the project's virtualenv, we still add the project
root to sys.path so `import jira_metrics` works. Shared fixtures build a small
kanban board, its status taxonomy and raw Jira issue payloads.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from jira_metrics.core.mappers import map_issue_history  # noqa: E402
from jira_metrics.core.models import Board, BoardColumn, CycleTimePolicy, Status  # noqa: E402
from jira_metrics.core.status import StatusTaxonomy  # noqa: E402

STATUSES = {
    "Backlog": (10000, "To Do", 2),
    "Ready": (10001, "To Do", 2),
    "In Progress": (3, "In Progress", 4),
    "Review": (10011, "In Progress", 4),
    "Done": (10002, "Done", 3),
}


def status_item(old: str | None, new: str | None) -> dict:
    return {
        "field": "status",
        "fromString": old,
        "from": str(STATUSES[old][0]) if old in STATUSES else None,
        "toString": new,
        "to": str(STATUSES[new][0]) if new in STATUSES else None,
    }


@pytest.fixture
def taxonomy() -> StatusTaxonomy:
    return StatusTaxonomy(
        statuses=[
            Status(name=name, id=status_id, category_name=category, category_id=category_id)
            for name, (status_id, category, category_id) in STATUSES.items()
        ]
    )


@pytest.fixture
def board() -> Board:
    return Board(
        board_id=1,
        kind="kanban",
        visible_columns=(
            BoardColumn("Ready", frozenset({10001}), min_wip=1, max_wip=4),
            BoardColumn("In Progress", frozenset({3}), max_wip=3),
            BoardColumn("Review", frozenset({10011}), max_wip=3),
            BoardColumn("Done", frozenset({10002})),
        ),
        backlog_status_ids=(10000,),
    )


@pytest.fixture
def policy() -> CycleTimePolicy:
    return CycleTimePolicy(
        start_of=lambda issue: issue.first_time_in_status_category("In Progress"),
        stop_of=lambda issue: issue.still_in_status_category("Done"),
    )


@pytest.fixture
def make_raw_issue():
    def _make(
        key: str = "SP-1",
        *,
        created: str = "2022-01-01T00:00:00+00:00",
        updated: str | None = None,
        status: str = "Backlog",
        priority: str | None = "Medium",
        histories: list[tuple[str, list[dict]]] | None = None,
        comments: list[tuple[str, str]] | None = None,
        subtasks: list[str] | None = None,
        summary: str = "Sample issue",
        extra_fields: dict | None = None,
    ) -> dict:
        status_id, category, category_id = STATUSES.get(status, (99999, "To Do", 2))
        fields = {
            "created": created,
            "updated": updated or created,
            "summary": summary,
            "issuetype": {"name": "Story"},
            "creator": {"displayName": "Creator"},
            "status": {
                "name": status,
                "id": str(status_id),
                "statusCategory": {"name": category, "id": category_id},
            },
            "priority": {"name": priority, "id": "3"} if priority else None,
            "labels": [],
            "subtasks": [{"key": k} for k in subtasks or []],
            "comment": {
                "comments": [
                    {"id": str(idx), "created": ts, "body": body, "author": {"displayName": "Commenter"}}
                    for idx, (ts, body) in enumerate(comments or [], start=1)
                ]
            },
        }
        fields.update(extra_fields or {})
        return {
            "key": key,
            "self": f"https://example.atlassian.net/rest/api/2/issue/{key}",
            "fields": fields,
            "changelog": {
                "histories": [
                    {"created": ts, "author": {"displayName": "Dev"}, "items": items}
                    for ts, items in histories or []
                ]
            },
        }

    return _make


@pytest.fixture
def make_issue(make_raw_issue, taxonomy):
    def _make(key: str = "SP-1", **kwargs):
        return map_issue_history(make_raw_issue(key, **kwargs), taxonomy)

    return _make
