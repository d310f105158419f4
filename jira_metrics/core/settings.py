"""Load run settings from YAML (with fallbacks to defaults)."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, fields
from pathlib import Path

import pytz
import yaml

from .config import (
    DEFAULT_EXPEDITED_PRIORITY_NAMES,
    DEFAULT_PARENT_LINK_FIELDS,
    DEFAULT_STALLED_THRESHOLD_DAYS,
    DEFAULT_TIMEZONE,
)
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_LIST_KEYS = (
    "expedited_priority_names",
    "customfield_parent_links",
    "start_statuses",
    "start_status_categories",
    "stop_statuses",
    "stop_status_categories",
)


@dataclass(slots=True)
class MetricsSettings:
    """Explicit per-run configuration, passed to every component that needs it."""

    timezone: str = DEFAULT_TIMEZONE
    project_id: int | str | None = None
    board_id: int | None = None
    stalled_threshold_days: int = DEFAULT_STALLED_THRESHOLD_DAYS
    expedited_priority_names: Sequence[str] = field(default_factory=lambda: list(DEFAULT_EXPEDITED_PRIORITY_NAMES))
    customfield_parent_links: Sequence[str] = field(default_factory=lambda: list(DEFAULT_PARENT_LINK_FIELDS))
    start_statuses: Sequence[str] = field(default_factory=list)
    start_status_categories: Sequence[str] = field(default_factory=list)
    stop_statuses: Sequence[str] = field(default_factory=list)
    stop_status_categories: Sequence[str] = field(default_factory=list)

    @property
    def tzinfo(self) -> pytz.BaseTzInfo:
        try:
            return pytz.timezone(self.timezone)
        except pytz.UnknownTimeZoneError as exc:
            raise ConfigurationError(f"Unknown timezone {self.timezone!r}") from exc


def settings_from_mapping(data: dict) -> MetricsSettings:
    known = {f.name for f in fields(MetricsSettings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown settings keys: {', '.join(unknown)}")
    values = dict(data)
    for key in _LIST_KEYS:
        if key in values and isinstance(values[key], str):
            values[key] = [values[key]]
    settings = MetricsSettings(**values)
    settings.tzinfo  # noqa: B018 (validate early)
    return settings


def load_settings(path: str | Path | None = None) -> MetricsSettings:
    """Read settings from ``path``; a missing file yields the defaults."""
    if path is None:
        return MetricsSettings()
    yaml_path = Path(path)
    if not yaml_path.exists():
        logger.info("Settings file %s not found, using defaults", yaml_path)
        return MetricsSettings()
    try:
        data = yaml.safe_load(yaml_path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Could not parse settings file {yaml_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {yaml_path} must contain a mapping, got {type(data).__name__}")
    return settings_from_mapping(data)
