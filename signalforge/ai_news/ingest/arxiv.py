"""arXiv preprint fetcher."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List
from urllib.parse import urlencode

import httpx

from ..config import SourceConfig
from ..errors import FetchError
from .feeds import collapse_whitespace, entry_datetime, entry_link, parse_feed
from .models import RawSignal, SignalSource
from .relay import RelayChain

API_URL = "https://export.arxiv.org/api/query"
SEARCH_QUERY = "cat:cs.AI OR cat:cs.CL OR cat:cs.LG OR cat:stat.ML"

log = logging.getLogger("signalforge.ingest.arxiv")


def build_query_url(limit: int) -> str:
    params = {
        "search_query": SEARCH_QUERY,
        "sortBy": "submittedDate",
        "sortOrder": "descending",
        "max_results": int(limit),
    }
    return f"{API_URL}?{urlencode(params)}"


class ArxivFetcher:
    """Most recent submissions across the AI/ML arXiv categories."""

    name = "arxiv"
    source = SignalSource.ARXIV

    def __init__(self, chain: RelayChain[List[Any]] | None = None) -> None:
        self._chain = chain or RelayChain("arxiv")

    def enabled(self, config: SourceConfig) -> bool:
        return bool(config.arxiv)

    async def fetch(
        self,
        client: httpx.AsyncClient,
        config: SourceConfig,
        *,
        now: datetime,
    ) -> List[RawSignal]:
        url = build_query_url(config.limit_per_source)
        try:
            entries = await self._chain.fetch(client, url, parse_feed)
        except FetchError as exc:
            log.warning("arXiv returned no results after all fallbacks: %s", exc)
            return []
        if not entries:
            log.warning("arXiv parsed 0 entries")
        signals = [
            signal
            for signal in (self._normalize_entry(entry, now=now) for entry in entries)
            if signal is not None
        ]
        return signals[: config.limit_per_source]

    def _normalize_entry(self, entry: Any, *, now: datetime) -> RawSignal | None:
        title = collapse_whitespace(entry.get("title"))
        link = entry_link(entry, preferred_type="text/html")
        if not title or not link:
            return None
        authors = [
            str(author.get("name")).strip()
            for author in entry.get("authors") or []
            if author.get("name")
        ]
        categories = [
            str(tag.get("term")) for tag in entry.get("tags") or [] if tag.get("term")
        ]
        return RawSignal(
            source=SignalSource.ARXIV,
            title=title,
            url=link,
            author=", ".join(authors) or None,
            summary=str(entry.get("summary") or "").strip() or None,
            tags=frozenset({"research"}),
            published_at=entry_datetime(entry, now=now),
            metadata={"arxiv_id": entry.get("id"), "categories": categories},
        )
