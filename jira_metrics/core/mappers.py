"""Mapping raw Jira issue/status JSON into change events, statuses and histories."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Sequence
from datetime import datetime, tzinfo
from typing import Any

import pandas as pd
import pytz

from .config import UNKNOWN_AUTHOR
from .issue import IssueHistory
from .models import ChangeEvent, FieldKind, IssueSnapshot, Status
from .status import StatusTaxonomy

logger = logging.getLogger(__name__)

_BASE_URL = re.compile(r"^(https?://[^/]+)/")


def parse_dt(val, tz: tzinfo = pytz.UTC) -> datetime | None:
    if not val:
        return None
    ts = pd.to_datetime(val, utc=True, errors="coerce")
    if ts is None or pd.isna(ts):
        return None
    return ts.tz_convert(tz).to_pydatetime()


def parse_id(val) -> int | str | None:
    """Ids that are pure digits become ints so they compare with board column ids."""
    if val is None:
        return None
    if isinstance(val, int):
        return val
    text = str(val).strip()
    if not text:
        return None
    return int(text) if text.isdigit() else text


def _author_name(raw: dict[str, Any]) -> str:
    # It should be impossible to not have an author but it has been seen in production
    author = raw.get("author") or {}
    return author.get("displayName") or author.get("name") or UNKNOWN_AUTHOR


def _comment_text(body) -> str:
    """Plain text of a comment body, flattening Atlassian Document Format if needed."""
    if body is None:
        return ""
    if isinstance(body, str):
        stripped = body.strip()
        if stripped.startswith("{") and '"type"' in stripped:
            try:
                body = json.loads(stripped)
            except (json.JSONDecodeError, ValueError):
                return stripped
        else:
            return stripped
    if isinstance(body, dict):
        texts: list[str] = []
        if body.get("type") == "text" and "text" in body:
            texts.append(str(body["text"]))
        for item in body.get("content") or []:
            extracted = _comment_text(item)
            if extracted:
                texts.append(extracted)
        return " ".join(texts)
    if isinstance(body, list):
        return " ".join(t for t in (_comment_text(item) for item in body) if t)
    return str(body)


def map_change_item(item: dict[str, Any], *, time: datetime, author: str) -> ChangeEvent:
    field_name = item.get("field")
    return ChangeEvent(
        time=time,
        field=FieldKind.from_field_name(field_name),
        value=item.get("toString"),
        value_id=parse_id(item.get("to")),
        old_value=item.get("fromString"),
        old_value_id=parse_id(item.get("from")),
        author=author,
        artificial=False,
        field_name=field_name,
    )


def map_change_events(raw: dict[str, Any], tz: tzinfo = pytz.UTC) -> list[ChangeEvent]:
    """Every changelog item and comment of a raw issue, unsorted."""
    events: list[ChangeEvent] = []
    histories = (raw.get("changelog") or {}).get("histories") or []
    for history in histories:
        created = parse_dt(history.get("created"), tz)
        if created is None:
            logger.warning("%s: skipping changelog entry without a timestamp", raw.get("key"))
            continue
        author = _author_name(history)
        for item in history.get("items") or []:
            events.append(map_change_item(item, time=created, author=author))

    # Older pulls of data may not include comments at all.
    comment_block = (raw.get("fields") or {}).get("comment") or {}
    for comment in comment_block.get("comments") or []:
        created = parse_dt(comment.get("created"), tz)
        if created is None:
            continue
        events.append(
            ChangeEvent(
                time=created,
                field=FieldKind.COMMENT,
                value=_comment_text(comment.get("body")),
                value_id=parse_id(comment.get("id")),
                author=_author_name(comment),
                artificial=False,
                field_name="comment",
            )
        )
    return events


def map_status(raw: dict[str, Any]) -> Status:
    category = raw.get("statusCategory") or {}
    # NextGen projects scope statuses to a single project; nil means global.
    project_id = ((raw.get("scope") or {}).get("project") or {}).get("id")
    return Status(
        name=raw.get("name"),
        id=parse_id(raw.get("id")),
        category_name=category.get("name"),
        category_id=parse_id(category.get("id")),
        project_id=project_id,
    )


def map_taxonomy(raw_statuses: Iterable[dict[str, Any]], project_id=None) -> StatusTaxonomy:
    taxonomy = StatusTaxonomy(project_id=project_id)
    for raw in raw_statuses:
        taxonomy.register(map_status(raw))
    return taxonomy


def extract_parent_key(fields: dict[str, Any], parent_link_fields: Sequence[str] = ()) -> str | None:
    """Find the parent key; Atlassian stores it in several places depending on flavour."""
    parent = (fields.get("parent") or {}).get("key")
    if parent is None:
        parent = (fields.get("epic") or {}).get("key")
    if parent is None:
        for field_name in parent_link_fields:
            value = fields.get(field_name)
            if isinstance(value, dict):
                value = value.get("key")
            if value:
                return value
    return parent


def map_snapshot(
    raw: dict[str, Any],
    tz: tzinfo = pytz.UTC,
    parent_link_fields: Sequence[str] = (),
) -> IssueSnapshot:
    fields = raw.get("fields") or {}
    raw_status = fields.get("status")
    status = map_status(raw_status) if raw_status else None
    priority = fields.get("priority") or {}
    match = _BASE_URL.match(raw.get("self") or "")
    return IssueSnapshot(
        summary=fields.get("summary"),
        issue_type=(fields.get("issuetype") or {}).get("name"),
        status=status,
        priority_name=priority.get("name"),
        priority_id=parse_id(priority.get("id")),
        resolution=(fields.get("resolution") or {}).get("name"),
        assignee=(fields.get("assignee") or {}).get("displayName"),
        creator=(fields.get("creator") or {}).get("displayName"),
        updated=parse_dt(fields.get("updated"), tz),
        url=f"{match.group(1)}/browse/{raw.get('key')}" if match else None,
        parent_key=extract_parent_key(fields, parent_link_fields),
        labels=tuple(fields.get("labels") or ()),
        components=tuple(c.get("name") for c in fields.get("components") or () if c.get("name")),
        fix_versions=tuple(v.get("name") for v in fields.get("fixVersions") or () if v.get("name")),
        subtask_keys=tuple(s.get("key") for s in fields.get("subtasks") or () if s.get("key")),
    )


def map_issue_history(
    raw: dict[str, Any],
    taxonomy: StatusTaxonomy | None = None,
    *,
    tz: tzinfo = pytz.UTC,
    parent_link_fields: Sequence[str] = (),
) -> IssueHistory:
    key = raw.get("key")
    events = map_change_events(raw, tz)
    created = parse_dt((raw.get("fields") or {}).get("created"), tz)
    if created is None:
        if not events:
            raise ValueError(f"Issue {key} has neither a created time nor any changes")
        created = min(event.time for event in events)
        logger.warning("%s: no created time, using earliest change %s", key, created)
    return IssueHistory(
        key,
        created,
        events,
        snapshot=map_snapshot(raw, tz, parent_link_fields),
        taxonomy=taxonomy,
    )
