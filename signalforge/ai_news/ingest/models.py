"""Signal data structures shared across fetchers, scoring and storage."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional
from urllib.parse import urldefrag


class SignalSource(str, Enum):
    ARXIV = "arxiv"
    HN = "hn"
    BLOG = "blog"


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def canonical_url(url: str) -> str:
    """Return ``url`` with its fragment removed; anything unparseable is kept as-is."""

    text = (url or "").strip()
    try:
        return urldefrag(text).url
    except ValueError:
        return text


def signal_id(source: SignalSource | str, url: str, title: str) -> str:
    """Stable identity of a signal: a hash of ``source|canonical url|title``."""

    source_value = source.value if isinstance(source, SignalSource) else str(source)
    key = f"{source_value}|{canonical_url(url)}|{(title or '').strip()}"
    return hashlib.sha1(key.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class RawSignal:
    """One discovered item, immutable once a fetcher has produced it."""

    source: SignalSource
    title: str
    url: str
    published_at: datetime
    author: Optional[str] = None
    summary: Optional[str] = None
    tags: frozenset[str] = field(default_factory=frozenset)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    id: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "source", SignalSource(self.source))
        object.__setattr__(self, "title", (self.title or "").strip())
        object.__setattr__(self, "url", (self.url or "").strip())
        object.__setattr__(self, "published_at", _ensure_utc(self.published_at))
        object.__setattr__(self, "tags", frozenset(tag for tag in self.tags if tag))
        object.__setattr__(self, "metadata", dict(self.metadata or {}))
        if not self.id:
            object.__setattr__(self, "id", signal_id(self.source, self.url, self.title))

    @property
    def canonical_url(self) -> str:
        return canonical_url(self.url)

    @property
    def engagement_points(self) -> Optional[float]:
        points = self.metadata.get("points")
        if isinstance(points, bool) or not isinstance(points, (int, float)):
            return None
        return float(points)

    def with_score(self, score: float) -> "ScoredSignal":
        return ScoredSignal(
            source=self.source,
            title=self.title,
            url=self.url,
            published_at=self.published_at,
            author=self.author,
            summary=self.summary,
            tags=self.tags,
            metadata=self.metadata,
            id=self.id,
            score=score,
        )

    def to_row(self) -> dict[str, object]:
        """Serialize the signal into a SQLite-friendly mapping."""

        return {
            "signal_id": self.id,
            "source": self.source.value,
            "title": self.title,
            "url": self.canonical_url,
            "author": self.author,
            "summary": self.summary,
            "tags_json": json.dumps(sorted(self.tags)),
            "metadata_json": json.dumps(dict(self.metadata), default=str),
            "published_at": self.published_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class ScoredSignal(RawSignal):
    score: float = 0.0

    def to_row(self) -> dict[str, object]:
        row = RawSignal.to_row(self)
        row["score"] = float(self.score)
        return row


def tags_from_json(raw: Optional[str]) -> frozenset[str]:
    if not raw:
        return frozenset()
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return frozenset()
    if not isinstance(payload, list):
        return frozenset()
    return frozenset(str(item) for item in payload if item)


def metadata_from_json(raw: Optional[str]) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return payload if isinstance(payload, dict) else {}



class SignalStatus(str, Enum):
    NEW = "new"
    PUBLISHED = "published"
    SKIPPED = "skipped"
