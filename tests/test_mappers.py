from datetime import datetime

import pytest
import pytz

from conftest import status_item
from jira_metrics.core.mappers import (
    extract_parent_key,
    map_change_events,
    map_issue_history,
    map_snapshot,
    parse_dt,
    parse_id,
)
from jira_metrics.core.models import FieldKind


def test_parse_dt_converts_to_timezone():
    santiago = pytz.timezone("America/Santiago")
    parsed = parse_dt("2022-01-02T10:00:00.000+0000", santiago)
    assert parsed == pytz.UTC.localize(datetime(2022, 1, 2, 10))
    assert parsed.utcoffset() == santiago.utcoffset(datetime(2022, 1, 2, 7))
    assert parse_dt(None) is None
    assert parse_dt("not a date") is None


@pytest.mark.parametrize("raw, expected", [("10002", 10002), (3, 3), ("", None), (None, None), ("abc", "abc")])
def test_parse_id(raw, expected):
    assert parse_id(raw) == expected


def test_field_classification():
    assert FieldKind.from_field_name("Story Point Estimate") is FieldKind.STORY_POINTS
    assert FieldKind.from_field_name("Flagged") is FieldKind.FLAGGED
    assert FieldKind.from_field_name("Fix Version") is FieldKind.OTHER
    assert FieldKind.from_field_name(None) is FieldKind.OTHER


def test_map_change_events(make_raw_issue):
    adf = {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": "ship it"}]}]}
    raw = make_raw_issue(
        histories=[("2022-01-02T00:00:00+00:00", [status_item("Backlog", "In Progress")])],
        comments=[("2022-01-03T00:00:00+00:00", adf)],
    )
    raw["changelog"]["histories"].append({"created": None, "items": [status_item("In Progress", "Done")]})
    raw["changelog"]["histories"].append(
        {"created": "2022-01-04T00:00:00+00:00", "items": [{"field": "labels", "toString": "x"}]}
    )

    status, other, comment = map_change_events(raw)
    assert (status.field, status.value, status.value_id, status.old_value_id) == (FieldKind.STATUS, "In Progress", 3, 10000)
    assert status.author == "Dev"
    assert (comment.field, comment.value) == (FieldKind.COMMENT, "ship it")
    assert other.field is FieldKind.OTHER
    assert other.author == "Unknown author"


def test_map_snapshot(make_raw_issue):
    raw = make_raw_issue("SP-7", extra_fields={"parent": {"key": "SP-1"}, "fixVersions": [{"name": "1.0"}]})
    snapshot = map_snapshot(raw)
    assert snapshot.url == "https://example.atlassian.net/browse/SP-7"
    assert snapshot.parent_key == "SP-1"
    assert snapshot.fix_versions == ("1.0",)
    assert snapshot.status.name == "Backlog"
    assert snapshot.status.category_name == "To Do"


def test_extract_parent_key_fallbacks():
    assert extract_parent_key({"epic": {"key": "SP-2"}}) == "SP-2"
    assert extract_parent_key({"customfield_10014": "SP-3"}, ["customfield_10014"]) == "SP-3"
    assert extract_parent_key({"customfield_10014": {"key": "SP-4"}}, ["customfield_10014"]) == "SP-4"
    assert extract_parent_key({}) is None


def test_missing_created_falls_back_to_first_change(make_raw_issue, taxonomy):
    raw = make_raw_issue(histories=[("2022-01-02T00:00:00+00:00", [status_item("Backlog", "In Progress")])])
    raw["fields"]["created"] = None
    issue = map_issue_history(raw, taxonomy)
    assert issue.created == pytz.UTC.localize(datetime(2022, 1, 2))

    raw = make_raw_issue()
    raw["fields"]["created"] = None
    with pytest.raises(ValueError, match="neither a created time"):
        map_issue_history(raw, taxonomy)
