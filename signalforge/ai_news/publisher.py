"""Turn selected signals, generated topics or manual plans into content records."""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Iterator, List, Literal, Optional, Sequence

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import PublisherConfig
from .content import (
    ContentRef,
    ContentStore,
    EntryFields,
    Identity,
    IdentityProvider,
    MediaDescriptor,
    TitleFields,
)
from .errors import IdentityError, RunInProgressError
from .ingest.models import RawSignal, SignalSource
from .media import video_info
from .topics import ManualPlan, Topic, map_topic_category

PublishMode = Literal["digest", "per_item"]

DIGEST_DESCRIPTION = "Daily curated updates from AI research, releases, and community."

SIGNAL_CATEGORIES = {
    SignalSource.ARXIV: "science",
    SignalSource.HN: "business",
    SignalSource.BLOG: "business",
}

log = logging.getLogger("signalforge.publisher")


@dataclass
class PublishResult:
    """Outcome of one publishing pass."""

    articles_created: int = 0
    entries_created: int = 0
    mapping: Dict[str, Dict[str, str]] = field(default_factory=dict)
    processed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    details: List[Dict[str, object]] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success(self) -> bool:
        return bool(self.processed)

    def to_dict(self) -> Dict[str, object]:
        return {
            "success": self.success,
            "articles_created": self.articles_created,
            "entries_created": self.entries_created,
            "mapping": {key: dict(value) for key, value in self.mapping.items()},
            "processed": list(self.processed),
            "errors": list(self.errors),
            "details": list(self.details),
            "timestamp": self.timestamp.isoformat(),
        }


def signal_category(signal: RawSignal) -> str:
    return SIGNAL_CATEGORIES.get(signal.source, "technology")


class Publisher:
    """Writes content records one at a time under the automated identity.

    Writes are sequential with ``delay_seconds`` between them to keep the
    backend's write rate flat. A failing item is recorded in
    ``PublishResult.errors`` and the rest of the batch continues."""

    def __init__(
        self,
        content_store: ContentStore,
        identity_provider: IdentityProvider,
        *,
        config: Optional[PublisherConfig] = None,
        timezone_name: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._content = content_store
        self._identity = identity_provider
        self._config = config or PublisherConfig()
        self._timezone_name = timezone_name
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep or asyncio.sleep
        self._writes = 0

    def configure(self, config: PublisherConfig, *, timezone_name: Optional[str] = None) -> None:
        self._config = config
        if timezone_name is not None:
            self._timezone_name = timezone_name

    # Signals ----------------------------------------------------------

    async def publish(
        self,
        signals: Sequence[RawSignal],
        mode: PublishMode = "digest",
    ) -> PublishResult:
        result = PublishResult(timestamp=self._clock())
        if not signals:
            return result
        try:
            identity = self._acquire_identity()
        except Exception as exc:
            log.error("publishing aborted, identity unavailable: %s", exc)
            result.errors.append(f"Identity unavailable: {exc}")
            return result
        self._writes = 0
        if mode == "digest":
            await self._publish_digest(signals, identity, result)
        elif mode == "per_item":
            await self._publish_per_item(signals, identity, result)
        else:
            raise ValueError(f"Unsupported publish mode: {mode}")
        log.info(
            "published %d titles and %d entries (%s), %d errors",
            result.articles_created,
            result.entries_created,
            mode,
            len(result.errors),
        )
        return result

    async def _publish_digest(
        self, signals: Sequence[RawSignal], identity: Identity, result: PublishResult
    ) -> None:
        local_date = self._clock().astimezone(self._tz()).strftime("%Y-%m-%d")
        try:
            title = await self._create_title(
                TitleFields(
                    title=f"AI Daily: {local_date}",
                    description=DIGEST_DESCRIPTION,
                    category=self._config.digest_category,
                    created_by=identity.id,
                )
            )
        except Exception as exc:
            log.error("digest title could not be created: %s", exc)
            result.errors.append(f"Digest title failed: {exc}")
            return
        result.articles_created += 1
        for signal in signals:
            try:
                entry = await self._create_entry(
                    self._signal_entry(signal, title.id, identity, digest=True)
                )
            except Exception as exc:
                log.error("entry for %r failed: %s", signal.title, exc)
                result.errors.append(f'Signal "{signal.title}": {exc}')
                continue
            result.entries_created += 1
            result.processed.append(signal.id)
            result.mapping[signal.id] = {"article_id": title.id, "entry_id": entry.id}

    async def _publish_per_item(
        self, signals: Sequence[RawSignal], identity: Identity, result: PublishResult
    ) -> None:
        for signal in signals:
            try:
                title = await self._create_title(
                    TitleFields(
                        title=signal.title,
                        description=signal.summary or None,
                        category=signal_category(signal),
                        created_by=identity.id,
                    )
                )
            except Exception as exc:
                log.error("title for %r failed: %s", signal.title, exc)
                result.errors.append(f'Signal "{signal.title}": {exc}')
                continue
            result.articles_created += 1
            try:
                entry = await self._create_entry(
                    self._signal_entry(signal, title.id, identity, digest=False)
                )
            except Exception as exc:
                log.error("entry for %r failed: %s", signal.title, exc)
                result.errors.append(f'Signal "{signal.title}" entry: {exc}')
                continue
            result.entries_created += 1
            result.processed.append(signal.id)
            result.mapping[signal.id] = {"article_id": title.id, "entry_id": entry.id}

    def _signal_entry(
        self, signal: RawSignal, title_id: str, identity: Identity, *, digest: bool
    ) -> EntryFields:
        published = signal.published_at.astimezone(self._tz()).strftime("%Y-%m-%d %H:%M %Z")
        source = signal.source.value.upper()
        summary = (signal.summary or "").strip()
        video = video_info(signal.url)
        if video is not None:
            lines = [f"Source: {source} | {published}", summary, signal.url]
            return EntryFields(
                title_id=title_id,
                user_id=identity.id,
                content="\n".join(line for line in lines if line),
                type="video",
                media=MediaDescriptor(
                    type="video", url=video.embed_url, thumbnail=video.thumbnail_url
                ),
            )
        if digest:
            lines = [
                f"Source: {source} | Published: {published}",
                summary,
                f"Link: {signal.url}",
            ]
            body = "\n\n".join(line for line in lines if line)
            content = f"{signal.title}\n\n{body}"
        else:
            content = "\n\n".join(part for part in (summary, f"Link: {signal.url}") if part)
        return EntryFields(title_id=title_id, user_id=identity.id, content=content, type="text")

    # Generated topics -------------------------------------------------

    async def publish_topics(
        self,
        topics: Sequence[Topic],
        *,
        supplementary: Optional[Callable[[Topic], Awaitable[List[str]]]] = None,
        supplementary_count: Optional[Callable[[Topic], int]] = None,
        identity: Optional[Identity] = None,
    ) -> PublishResult:
        """Publish one title per topic with its main entry plus supplementary entries.

        Supplementary entries come from a secondary call; a failure there
        is recorded and does not undo the topic's title or main entry."""

        result = PublishResult(timestamp=self._clock())
        if identity is None:
            try:
                identity = self._acquire_identity()
            except Exception as exc:
                log.error("topic publishing aborted, identity unavailable: %s", exc)
                result.errors.append(f"Identity unavailable: {exc}")
                return result
        self._writes = 0
        for topic in topics:
            try:
                title = await self._create_title(
                    TitleFields(
                        title=topic.title,
                        description=topic.description or None,
                        category=map_topic_category(topic.category),
                        created_by=identity.id,
                    )
                )
                result.articles_created += 1
                main = await self._create_entry(
                    EntryFields(title_id=title.id, user_id=identity.id, content=topic.content)
                )
                result.entries_created += 1
            except Exception as exc:
                log.error("topic %r failed: %s", topic.title, exc)
                result.errors.append(f'Topic "{topic.title}": {exc}')
                continue
            result.processed.append(topic.title)
            result.mapping[topic.title] = {"article_id": title.id, "entry_id": main.id}
            count = supplementary_count(topic) if supplementary_count else 0
            if supplementary is None or count <= 0:
                continue
            try:
                extra = await supplementary(topic)
                for text in [item for item in extra if item and item.strip()][:count]:
                    await self._create_entry(
                        EntryFields(title_id=title.id, user_id=identity.id, content=text.strip())
                    )
                    result.entries_created += 1
            except Exception as exc:
                log.warning("supplementary entries for %r failed: %s", topic.title, exc)
                result.errors.append(f"Additional entries failed for {topic.title}: {exc}")
        return result

    # Manual plans -----------------------------------------------------

    async def publish_plan(self, plan: ManualPlan) -> PublishResult:
        result = PublishResult(timestamp=self._clock())
        try:
            identity = self._acquire_identity()
        except Exception as exc:
            result.errors.append(f"Identity unavailable: {exc}")
            return result
        self._writes = 0
        for item in plan.titles:
            try:
                title = await self._create_title(
                    TitleFields(
                        title=item.title,
                        description=(item.description or "").strip() or None,
                        category=item.category or "general",
                        created_by=identity.id,
                    )
                )
            except Exception as exc:
                log.error("plan title %r failed: %s", item.title, exc)
                result.errors.append(f'Title "{item.title}": {exc}')
                continue
            result.articles_created += 1
            created = 0
            for entry in item.entries:
                try:
                    await self._create_entry(
                        EntryFields(
                            title_id=title.id,
                            user_id=identity.id,
                            content=entry.content,
                            type=entry.type if entry.type in ("text", "image", "video") else "text",
                        )
                    )
                except Exception as exc:
                    result.errors.append(f'Entry for "{item.title}": {exc}')
                    continue
                created += 1
            result.entries_created += created
            result.processed.append(item.title)
            result.details.append({"article_id": title.id, "title": item.title, "entry_count": created})
        return result

    # Helpers ----------------------------------------------------------

    def _acquire_identity(self) -> Identity:
        identity = self._identity.initialize_automated_identity()
        if identity is None:
            raise IdentityError("automated identity was not provisioned")
        try:
            self._identity.sign_in_as(identity)
        except Exception as exc:
            # writes may still be accepted by a permissive backend
            log.warning("sign-in as %s failed: %s", identity.id, exc)
        return identity

    async def _throttle(self) -> None:
        if self._writes and self._config.delay_seconds > 0:
            await self._sleep(self._config.delay_seconds)
        self._writes += 1

    async def _create_title(self, fields: TitleFields) -> ContentRef:
        await self._throttle()
        return self._content.create_title(fields)

    async def _create_entry(self, fields: EntryFields) -> ContentRef:
        await self._throttle()
        return self._content.create_entry(fields)

    def _tz(self) -> ZoneInfo:
        try:
            return ZoneInfo(self._timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            return ZoneInfo("UTC")


class PublishGuard:
    """In-memory busy flag: at most one publishing run in flight.

    A second caller is rejected rather than queued."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise RunInProgressError("a publishing run is already in progress")
        try:
            yield
        finally:
            self._lock.release()
