from datetime import datetime

import pytest
import pytz

from conftest import status_item
from jira_metrics.core.errors import ConfigurationError
from jira_metrics.core.models import CycleTimePolicy
from jira_metrics.core.settings import MetricsSettings, load_settings, settings_from_mapping


def test_missing_file_gives_defaults(tmp_path):
    settings = load_settings(tmp_path / "nope.yaml")
    assert settings == MetricsSettings()
    assert settings.stalled_threshold_days == 5
    assert load_settings(None).timezone == "UTC"


def test_load_settings_from_yaml(tmp_path):
    path = tmp_path / "metrics.yaml"
    path.write_text(
        "timezone: America/Santiago\n"
        "board_id: 12\n"
        "project_id: 10001\n"
        "start_status_categories: In Progress\n"
        "stop_statuses: [Done, Closed]\n"
    )
    settings = load_settings(path)
    assert settings.board_id == 12
    assert settings.start_status_categories == ["In Progress"]
    assert settings.stop_statuses == ["Done", "Closed"]
    assert settings.tzinfo.zone == "America/Santiago"


@pytest.mark.parametrize(
    "content, message",
    [
        ("- just\n- a list\n", "must contain a mapping"),
        ("timezone: [unclosed\n", "Could not parse"),
        ("colour: blue\n", "Unknown settings keys: colour"),
        ("timezone: Mars/Olympus\n", "Unknown timezone"),
    ],
)
def test_invalid_settings(tmp_path, content, message):
    path = tmp_path / "metrics.yaml"
    path.write_text(content)
    with pytest.raises(ConfigurationError, match=message):
        load_settings(path)


def test_policy_from_settings(make_issue):
    settings = settings_from_mapping({"start_statuses": "Review", "stop_status_categories": ["Done"]})
    policy = CycleTimePolicy.from_settings(settings)
    issue = make_issue(
        status="Done",
        histories=[
            ("2022-01-02T00:00:00+00:00", [status_item("Backlog", "In Progress")]),
            ("2022-01-03T00:00:00+00:00", [status_item("In Progress", "Review")]),
            ("2022-01-04T00:00:00+00:00", [status_item("Review", "Done")]),
        ],
    )
    assert policy.start_of(issue) == pytz.UTC.localize(datetime(2022, 1, 3))
    assert policy.stop_of(issue) == pytz.UTC.localize(datetime(2022, 1, 4))


def test_policy_requires_rules():
    with pytest.raises(ConfigurationError, match="start rules"):
        CycleTimePolicy.from_settings(MetricsSettings(stop_statuses=["Done"]))
    with pytest.raises(ConfigurationError, match="stop rules"):
        CycleTimePolicy.from_settings(MetricsSettings(start_statuses=["In Progress"]))
