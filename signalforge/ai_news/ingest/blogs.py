"""Company blog RSS/Atom fetcher."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, List
from urllib.parse import quote

import httpx

from ..config import SourceConfig
from ..errors import FetchError
from .feeds import entry_datetime, entry_link, parse_feed, parse_timestamp, strip_html
from .models import RawSignal, SignalSource
from .relay import ALLORIGINS, DIRECT, JINA, Relay, RelayChain

RSS2JSON_URL = "https://api.rss2json.com/v1/api.json?rss_url="

log = logging.getLogger("signalforge.ingest.blogs")


class _JsonItem(dict):
    """rss2json item exposed through the same ``get`` lookups as feed entries."""


def parse_rss2json(response: httpx.Response) -> List[Any]:
    payload = response.json()
    if not isinstance(payload, dict) or payload.get("status") != "ok":
        raise ValueError("rss2json did not return status ok")
    items = payload.get("items")
    if not isinstance(items, list):
        raise ValueError("rss2json payload has no items")
    return [_JsonItem(item) for item in items if isinstance(item, dict)]


RSS2JSON = Relay(
    "rss2json",
    lambda url: f"{RSS2JSON_URL}{quote(url, safe='')}",
    parser=parse_rss2json,
)

BLOG_RELAYS = (DIRECT, ALLORIGINS, RSS2JSON, JINA)


class BlogFetcher:
    """Announcements from the configured company feeds."""

    name = "blogs"
    source = SignalSource.BLOG

    def __init__(self, chain: RelayChain[List[Any]] | None = None) -> None:
        self._chain = chain or RelayChain("blogs", BLOG_RELAYS)

    def enabled(self, config: SourceConfig) -> bool:
        return bool(config.blogs) and bool(config.blog_feeds)

    async def fetch(
        self,
        client: httpx.AsyncClient,
        config: SourceConfig,
        *,
        now: datetime,
    ) -> List[RawSignal]:
        if not config.blog_feeds:
            return []
        per_feed = await asyncio.gather(
            *(
                self._fetch_feed(client, feed, limit=config.limit_per_source, now=now)
                for feed in config.blog_feeds
            ),
            return_exceptions=True,
        )
        collected: List[RawSignal] = []
        for feed, result in zip(config.blog_feeds, per_feed):
            if isinstance(result, BaseException):
                log.warning("feed %s failed: %s", feed, result)
                continue
            collected.extend(result)
        return collected

    async def _fetch_feed(
        self,
        client: httpx.AsyncClient,
        feed_url: str,
        *,
        limit: int,
        now: datetime,
    ) -> List[RawSignal]:
        try:
            entries = await self._chain.fetch(client, feed_url, parse_feed)
        except FetchError as exc:
            log.warning("feed %s returned no results: %s", feed_url, exc)
            return []
        signals: List[RawSignal] = []
        for entry in entries:
            signal = self._normalize_entry(entry, feed_url=feed_url, now=now)
            if signal is not None:
                signals.append(signal)
            if len(signals) >= limit:
                break
        return signals

    def _normalize_entry(
        self, entry: Any, *, feed_url: str, now: datetime
    ) -> RawSignal | None:
        title = strip_html(entry.get("title"))
        if isinstance(entry, _JsonItem):
            link = str(entry.get("link") or "").strip()
            published = parse_timestamp(
                entry.get("pubDate") or entry.get("published"), now=now
            )
            author = entry.get("author") or None
        else:
            link = entry_link(entry)
            published = entry_datetime(entry, now=now)
            author = entry.get("author") or None
        if not title or not link:
            return None
        summary = strip_html(entry.get("summary") or entry.get("description"))
        return RawSignal(
            source=SignalSource.BLOG,
            title=title,
            url=link,
            author=str(author) if author else None,
            summary=summary or None,
            tags=frozenset({"announcement"}),
            published_at=published,
            metadata={"feed": feed_url},
        )
