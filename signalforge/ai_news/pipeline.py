"""Ingestion pipeline: aggregate → normalize → filter seen → score → save → publish.

Each stage is run through ``_stage`` which records a ``StageResult``; a
failing stage ends the run with a recorded error instead of an exception.
``prepare`` and ``commit`` can be called separately so a human can review
the snapshotted candidates before anything is published."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    TypeVar,
)

from .config import AINewsConfig, SourceConfig
from .ingest.manager import Aggregator
from .ingest.models import RawSignal, ScoredSignal
from .processing import normalize_signals, score_signals, select_top
from .publisher import PublishGuard, PublishMode, Publisher, PublishResult
from .store import SignalStore

T = TypeVar("T")

log = logging.getLogger("signalforge.pipeline")


class SeenLookup(Protocol):
    """Anything that can answer whether a canonical URL was ingested before."""

    def exists_by_url(self, url: str) -> bool: ...


def filter_unseen(signals: Iterable[RawSignal], store: SeenLookup) -> List[RawSignal]:
    """Drop signals whose canonical URL is already in the store.

    A lookup error keeps the signal: a duplicate post is preferable to a
    silently lost one."""

    unseen: List[RawSignal] = []
    for signal in signals:
        try:
            seen = store.exists_by_url(signal.canonical_url)
        except Exception as exc:
            log.warning("seen lookup failed for %s, keeping it: %s", signal.url, exc)
            seen = False
        if not seen:
            unseen.append(signal)
    return unseen


@dataclass
class StageResult:
    name: str
    ok: bool
    count: int = 0
    error: Optional[str] = None


@dataclass
class PipelineRun:
    """Tagged record of one prepare/commit pass."""

    started_at: datetime
    stages: List[StageResult] = field(default_factory=list)
    selected: List[ScoredSignal] = field(default_factory=list)
    saved: int = 0
    publish: Optional[PublishResult] = None
    marked: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(not stage.ok for stage in self.stages)

    @property
    def success(self) -> bool:
        if self.failed:
            return False
        if self.publish is None:
            return True
        return self.publish.success

    def as_run_result(self) -> Dict[str, Any]:
        publish = self.publish
        return {
            "success": self.success,
            "articles_created": publish.articles_created if publish else 0,
            "entries_created": publish.entries_created if publish else 0,
            "processed": list(publish.processed) if publish else [s.id for s in self.selected],
            "errors": list(self.errors) + (list(publish.errors) if publish else []),
            "timestamp": self.started_at.isoformat(),
            "stages": [stage.__dict__.copy() for stage in self.stages],
        }


class IngestPipeline:
    def __init__(
        self,
        aggregator: Aggregator,
        store: SignalStore,
        publisher: Publisher,
        *,
        guard: Optional[PublishGuard] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._aggregator = aggregator
        self._store = store
        self._publisher = publisher
        self._guard = guard or PublishGuard()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def guard(self) -> PublishGuard:
        return self._guard

    async def prepare(
        self,
        config: AINewsConfig,
        *,
        sources: Optional[SourceConfig] = None,
        max_items: Optional[int] = None,
    ) -> PipelineRun:
        """Aggregate, dedupe, filter, score and snapshot the top candidates."""

        run = PipelineRun(started_at=self._clock())
        await self._prepare_into(run, config, sources=sources, max_items=max_items)
        return run

    async def commit(
        self,
        mode: PublishMode = "digest",
        *,
        signal_ids: Optional[Sequence[str]] = None,
        limit: int = 50,
    ) -> PipelineRun:
        """Publish pending signals (or the given ids) and mark them published.

        Raises ``RunInProgressError`` when another run holds the busy flag."""

        run = PipelineRun(started_at=self._clock())
        with self._guard.hold():
            candidates = await self._stage(
                run,
                "load",
                lambda: self._load_candidates(signal_ids, limit),
                count=len,
            )
            if candidates is None:
                return run
            run.selected = list(candidates)
            await self._publish_into(run, run.selected, mode)
        return run

    async def run(
        self,
        config: AINewsConfig,
        mode: PublishMode = "digest",
        *,
        sources: Optional[SourceConfig] = None,
        max_items: Optional[int] = None,
    ) -> PipelineRun:
        """Prepare and publish in one pass while holding the busy flag."""

        run = PipelineRun(started_at=self._clock())
        with self._guard.hold():
            if not await self._prepare_into(run, config, sources=sources, max_items=max_items):
                return run
            if not run.selected:
                log.info("nothing new to publish")
                return run
            await self._publish_into(run, run.selected, mode)
        return run

    # Stages -----------------------------------------------------------

    async def _prepare_into(
        self,
        run: PipelineRun,
        config: AINewsConfig,
        *,
        sources: Optional[SourceConfig],
        max_items: Optional[int],
    ) -> bool:
        source_config = sources or config.sources
        limit = max_items if max_items is not None else config.max_items_per_run

        raw = await self._stage(
            run, "aggregate", lambda: self._aggregator.aggregate(source_config), count=len
        )
        if raw is None:
            return False
        clean = await self._stage(run, "normalize", _sync(normalize_signals, raw), count=len)
        if clean is None:
            return False
        unseen = await self._stage(
            run, "filter_unseen", _sync(filter_unseen, clean, self._store), count=len
        )
        if unseen is None:
            return False
        now = self._clock()
        scored = await self._stage(
            run, "score", _sync(lambda: score_signals(unseen, now=now)), count=len
        )
        if scored is None:
            return False
        selected = await self._stage(run, "select", _sync(select_top, scored, limit), count=len)
        if selected is None:
            return False
        run.selected = list(selected)
        saved = await self._stage(
            run, "save", _sync(self._store.save, run.selected), count=lambda n: n
        )
        if saved is None:
            return False
        run.saved = saved
        log.info(
            "prepared %d candidates (%d fetched, %d unique, %d unseen)",
            len(run.selected),
            len(raw),
            len(clean),
            len(unseen),
        )
        return True

    async def _publish_into(
        self, run: PipelineRun, signals: Sequence[ScoredSignal], mode: PublishMode
    ) -> None:
        if not signals:
            return
        result = await self._stage(
            run,
            "publish",
            lambda: self._publisher.publish(signals, mode),
            count=lambda r: len(r.processed),
        )
        if result is None:
            return
        run.publish = result
        if result.processed:
            marked = await self._stage(
                run,
                "mark_published",
                _sync(self._store.mark_published, result.processed, result.mapping),
                count=lambda n: n,
            )
            run.marked = marked or 0

    async def _load_candidates(
        self, signal_ids: Optional[Sequence[str]], limit: int
    ) -> List[ScoredSignal]:
        if signal_ids:
            requested = list(signal_ids)
            found = self._store.get_by_ids(requested)
            if len(found) < len(requested):
                log.info(
                    "skipping %d requested signals that are unknown or already published",
                    len(requested) - len(found),
                )
            return found
        return self._store.list_pending(limit)

    async def _stage(
        self,
        run: PipelineRun,
        name: str,
        action: Callable[[], Awaitable[T]],
        *,
        count: Callable[[T], int],
    ) -> Optional[T]:
        try:
            value = await action()
        except Exception as exc:
            log.error("pipeline stage %s failed: %s", name, exc)
            run.stages.append(StageResult(name=name, ok=False, error=str(exc)))
            run.errors.append(f"{name}: {exc}")
            return None
        run.stages.append(StageResult(name=name, ok=True, count=count(value)))
        return value


def _sync(func: Callable[..., T], *args: Any) -> Callable[[], Awaitable[T]]:
    async def runner() -> T:
        return func(*args)

    return runner
