"""Helpers for turning feedparser entries into signal fields."""

from __future__ import annotations

import calendar
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import feedparser
import httpx

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


def strip_html(value: object) -> str:
    return _TAG_RE.sub("", str(value or "")).strip()


def collapse_whitespace(value: object) -> str:
    return _SPACE_RE.sub(" ", str(value or "")).strip()


def parse_feed(response: httpx.Response) -> list[Any]:
    """Parse an RSS/Atom body, raising ``ValueError`` when it is not a feed."""

    parsed = feedparser.parse(response.text)
    if parsed.bozo and not parsed.entries:
        raise ValueError(f"not a feed: {parsed.get('bozo_exception')}")
    return list(parsed.entries)


def entry_datetime(entry: Any, *, now: datetime) -> datetime:
    for key in ("published_parsed", "updated_parsed"):
        value = entry.get(key)
        if value:
            return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    return now


def parse_timestamp(value: object, *, now: datetime) -> datetime:
    """Parse ISO-8601 strings or epoch numbers; anything else becomes ``now``."""

    if isinstance(value, bool):
        return now
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = parsedate_to_datetime(value.strip())  # RFC 822 dates
            except (TypeError, ValueError):
                return now
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    return now


def entry_link(entry: Any, *, preferred_type: Optional[str] = None) -> str:
    links = entry.get("links") or []
    if preferred_type:
        for link in links:
            if link.get("type") == preferred_type and link.get("href"):
                return str(link["href"])
    link = entry.get("link")
    if link:
        return str(link)
    for item in links:
        if item.get("href"):
            return str(item["href"])
    return str(entry.get("id") or "")
