"""Coordinator that fans out to the enabled source fetchers."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, Protocol

import httpx

from ..config import SourceConfig
from .arxiv import ArxivFetcher
from .blogs import BlogFetcher
from .hn import HackerNewsFetcher
from .models import RawSignal, SignalSource

if TYPE_CHECKING:
    from ..store import SignalDatabase

log = logging.getLogger("signalforge.ingest")


class SignalFetcher(Protocol):
    """Contract implemented by source fetchers.

    ``fetch`` must not raise: a source that cannot be reached contributes
    an empty list."""

    name: str
    source: SignalSource

    def enabled(self, config: SourceConfig) -> bool: ...

    async def fetch(
        self,
        client: httpx.AsyncClient,
        config: SourceConfig,
        *,
        now: datetime,
    ) -> List[RawSignal]: ...


def _default_client_factory() -> httpx.AsyncClient:
    headers = {"User-Agent": "SignalForge/0.1"}
    return httpx.AsyncClient(timeout=httpx.Timeout(20.0), headers=headers)


def default_fetchers() -> List[SignalFetcher]:
    return [ArxivFetcher(), HackerNewsFetcher(), BlogFetcher()]


class Aggregator:
    """Runs enabled fetchers concurrently and flattens their results."""

    def __init__(
        self,
        database: Optional[SignalDatabase] = None,
        *,
        fetchers: Optional[Iterable[SignalFetcher]] = None,
        http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._database = database
        self._client_factory = http_client_factory or _default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._fetchers: Dict[str, SignalFetcher] = {}
        for fetcher in default_fetchers() if fetchers is None else fetchers:
            self.register_fetcher(fetcher)

    def register_fetcher(self, fetcher: SignalFetcher) -> None:
        self._fetchers[fetcher.name] = fetcher

    async def aggregate(self, config: SourceConfig) -> List[RawSignal]:
        enabled = [f for f in self._fetchers.values() if f.enabled(config)]
        if not enabled:
            return []
        now = self._clock()
        async with self._client_factory() as client:
            results = await asyncio.gather(
                *(fetcher.fetch(client, config, now=now) for fetcher in enabled),
                return_exceptions=True,
            )
        signals: List[RawSignal] = []
        for fetcher, result in zip(enabled, results):
            if isinstance(result, BaseException):
                # fetchers are not supposed to raise; keep the rest of the batch
                log.warning("fetcher %s raised: %s", fetcher.name, result)
                if self._database is not None:
                    self._database.record_error(
                        module=f"ingest.{fetcher.name}",
                        message=str(result),
                    )
                continue
            log.info("fetched %d signals from %s", len(result), fetcher.name)
            signals.extend(result)
        return signals
