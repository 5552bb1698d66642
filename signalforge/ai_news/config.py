"""Configuration models and helpers for the AI news pipeline."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_BLOG_FEEDS: List[str] = [
    "https://openai.com/blog/rss",
    "https://blog.google/technology/ai/rss/",
    "https://ai.facebook.com/blog/rss/",
    "https://stability.ai/blog/rss.xml",
    "https://www.anthropic.com/index.xml",
    "https://mistral.ai/news/index.xml",
]

DEFAULT_TOPIC_CATEGORIES: List[str] = [
    "models",
    "research",
    "industry",
    "regulation",
    "ethics",
    "applications",
]

ENV_PREFIX = "AI_NEWS_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class SourceConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    arxiv: bool = True
    hn: bool = True
    blogs: bool = True
    blog_feeds: List[str] = Field(default_factory=lambda: list(DEFAULT_BLOG_FEEDS))
    limit_per_source: int = Field(default=30, ge=1, le=200)

    @field_validator("blog_feeds")
    @classmethod
    def strip_feeds(cls, value: List[str]) -> List[str]:
        return [feed.strip() for feed in value if feed and feed.strip()]


class QuietHours(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    start: int = Field(default=1, ge=0, le=23)
    end: int = Field(default=6, ge=0, le=23)

    def contains(self, hour: int) -> bool:
        """Return True when ``hour`` falls inside the window.

        A window with ``start > end`` wraps past midnight; ``start == end``
        is an empty window."""

        if self.start <= self.end:
            return self.start <= hour < self.end
        return hour >= self.start or hour < self.end


class ScheduleConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    enabled: bool = False
    interval_hours: int = Field(default=8, ge=1)
    max_runs_per_day: int = Field(default=3, ge=0)
    run_on_weekends: bool = True
    quiet_hours: QuietHours = QuietHours()
    timezone: str = "UTC"
    tick_minutes: int = Field(default=30, ge=1)
    run_mode: Literal["ingest", "generate"] = "ingest"
    publish_mode: Literal["digest", "per_item"] = "digest"


class PublisherConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    delay_seconds: float = Field(default=2.0, ge=0.0)
    digest_category: str = "technology"


class GeneratorConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    enabled: bool = True
    max_articles_per_run: int = Field(default=5, ge=1)
    max_entries_per_article: int = Field(default=3, ge=1)
    categories: List[str] = Field(default_factory=lambda: list(DEFAULT_TOPIC_CATEGORIES))
    model: str = "gemini-1.5-flash"


class AINewsConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    sources: SourceConfig = SourceConfig()
    schedule: ScheduleConfig = ScheduleConfig()
    publisher: PublisherConfig = PublisherConfig()
    generator: GeneratorConfig = GeneratorConfig()
    max_items_per_run: int = Field(default=15, ge=1, le=200)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str],
        *,
        base: Optional["AINewsConfig"] = None,
    ) -> "AINewsConfig":
        """Overlay ``AI_NEWS_*`` environment options on ``base`` (or defaults)."""

        payload = (base or cls()).model_dump()
        overrides = _env_overrides(environ)
        for path, value in overrides.items():
            target: dict[str, Any] = payload
            *parents, leaf = path
            for key in parents:
                target = target[key]
            target[leaf] = value
        return cls.model_validate(payload)


_ENV_FIELDS: dict[str, tuple[tuple[str, ...], str]] = {
    "LIMIT_PER_SOURCE": (("sources", "limit_per_source"), "int"),
    "MAX_ITEMS": (("max_items_per_run",), "int"),
    "INTERVAL_HOURS": (("schedule", "interval_hours"), "int"),
    "MAX_RUNS_PER_DAY": (("schedule", "max_runs_per_day"), "int"),
    "RUN_ON_WEEKENDS": (("schedule", "run_on_weekends"), "bool"),
    "QUIET_HOURS_START": (("schedule", "quiet_hours", "start"), "int"),
    "QUIET_HOURS_END": (("schedule", "quiet_hours", "end"), "int"),
    "TIMEZONE": (("schedule", "timezone"), "str"),
    "SCHEDULE_ENABLED": (("schedule", "enabled"), "bool"),
}


def _env_overrides(environ: Mapping[str, str]) -> dict[tuple[str, ...], Any]:
    overrides: dict[tuple[str, ...], Any] = {}
    for suffix, (path, kind) in _ENV_FIELDS.items():
        raw = environ.get(f"{ENV_PREFIX}{suffix}")
        if raw is None:
            continue
        text = raw.strip()
        if kind == "bool":
            lowered = text.lower()
            if lowered in _TRUE_VALUES:
                overrides[path] = True
            elif lowered in _FALSE_VALUES:
                overrides[path] = False
            else:
                # left for pydantic to reject
                overrides[path] = text
        else:
            overrides[path] = text
    return overrides
