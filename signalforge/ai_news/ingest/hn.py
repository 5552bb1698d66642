"""Hacker News (Algolia search) fetcher."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List
from urllib.parse import urlencode

import httpx

from ..config import SourceConfig
from ..errors import FetchError
from .feeds import parse_timestamp, strip_html
from .models import RawSignal, SignalSource
from .relay import RelayChain

API_URL = "https://hn.algolia.com/api/v1/search_by_date"
SEARCH_QUERY = 'AI OR "large language model" OR LLM OR "deep learning" OR "machine learning"'

log = logging.getLogger("signalforge.ingest.hn")


def build_query_url(limit: int) -> str:
    params = {"query": SEARCH_QUERY, "tags": "story", "hitsPerPage": int(limit)}
    return f"{API_URL}?{urlencode(params)}"


def parse_hits(response: httpx.Response) -> List[Dict[str, Any]]:
    data = response.json()
    if not isinstance(data, dict):
        raise ValueError("unexpected Algolia payload")
    hits = data.get("hits")
    if not isinstance(hits, list):
        raise ValueError("Algolia payload has no hits")
    return [hit for hit in hits if isinstance(hit, dict)]


class HackerNewsFetcher:
    """Recent AI-related stories, newest first."""

    name = "hn"
    source = SignalSource.HN

    def __init__(self, chain: RelayChain[List[Dict[str, Any]]] | None = None) -> None:
        self._chain = chain or RelayChain("hn")

    def enabled(self, config: SourceConfig) -> bool:
        return bool(config.hn)

    async def fetch(
        self,
        client: httpx.AsyncClient,
        config: SourceConfig,
        *,
        now: datetime,
    ) -> List[RawSignal]:
        url = build_query_url(config.limit_per_source)
        try:
            hits = await self._chain.fetch(client, url, parse_hits)
        except FetchError as exc:
            log.warning("Hacker News returned no results after all fallbacks: %s", exc)
            return []
        signals = [
            signal
            for signal in (self._normalize_hit(hit, now=now) for hit in hits)
            if signal is not None
        ]
        return signals[: config.limit_per_source]

    def _normalize_hit(self, hit: Dict[str, Any], *, now: datetime) -> RawSignal | None:
        title = str(hit.get("title") or hit.get("story_title") or "").strip()
        link = str(hit.get("url") or hit.get("story_url") or "").strip()
        if not title or not link:
            return None
        highlight = (
            (hit.get("_highlightResult") or {}).get("title") or {}
        ).get("value")
        points = hit.get("points")
        return RawSignal(
            source=SignalSource.HN,
            title=title,
            url=link,
            author=hit.get("author") or None,
            summary=strip_html(highlight) or None,
            tags=frozenset({"news", "discussion"}),
            published_at=parse_timestamp(hit.get("created_at"), now=now),
            metadata={
                "points": points if isinstance(points, int) else 0,
                "object_id": hit.get("objectID"),
            },
        )
