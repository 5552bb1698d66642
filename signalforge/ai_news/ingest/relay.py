"""Fetch transport shared by the source fetchers.

A request is tried directly first and then through public read-only
relays. Every relay returns the same payload shape, so parsing is shared
and only the transport varies. The relays are third-party services with no
availability guarantee; a chain can be reduced to ``DIRECT`` alone."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Sequence, TypeVar
from urllib.parse import quote

import httpx

from ..errors import FetchError

T = TypeVar("T")

log = logging.getLogger("signalforge.ingest.relay")

ALLORIGINS_URL = "https://api.allorigins.win/raw?url="
JINA_READER_URL = "https://r.jina.ai/"


@dataclass(frozen=True)
class Relay:
    name: str
    build_url: Callable[[str], str]
    parser: Optional[Callable[[httpx.Response], object]] = None


DIRECT = Relay("direct", lambda url: url)
ALLORIGINS = Relay("allorigins", lambda url: f"{ALLORIGINS_URL}{quote(url, safe='')}")
JINA = Relay("jina", lambda url: f"{JINA_READER_URL}{url}")

DEFAULT_RELAYS: Sequence[Relay] = (DIRECT, ALLORIGINS, JINA)


class RelayChain(Generic[T]):
    """Try each relay in order until one yields a parsed payload."""

    def __init__(self, label: str, relays: Sequence[Relay] = DEFAULT_RELAYS) -> None:
        if not relays:
            raise ValueError("a relay chain needs at least one relay")
        self.label = label
        self.relays = tuple(relays)

    async def fetch(
        self,
        client: httpx.AsyncClient,
        url: str,
        parse: Callable[[httpx.Response], T],
    ) -> T:
        failures: list[str] = []
        for relay in self.relays:
            target = relay.build_url(url)
            try:
                response = await client.get(target, follow_redirects=True)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                log.warning("%s: %s fetch failed: %s", self.label, relay.name, exc)
                failures.append(f"{relay.name}: {exc}")
                continue
            if not response.is_success:
                log.warning(
                    "%s: %s fetch not OK: %s", self.label, relay.name, response.status_code
                )
                failures.append(f"{relay.name}: HTTP {response.status_code}")
                continue
            parser = relay.parser or parse
            try:
                result = parser(response)
            except (ValueError, TypeError, KeyError) as exc:
                log.warning("%s: %s payload unparseable: %s", self.label, relay.name, exc)
                failures.append(f"{relay.name}: {exc}")
                continue
            log.debug("%s: fetched via %s", self.label, relay.name)
            return result  # type: ignore[return-value]
        raise FetchError(f"{self.label}: all relays failed ({'; '.join(failures)})")


__all__ = [
    "ALLORIGINS",
    "DEFAULT_RELAYS",
    "DIRECT",
    "JINA",
    "Relay",
    "RelayChain",
]
