"""Tests for the prepare/commit ingestion pipeline."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from signalforge.ai_news.config import AINewsConfig, PublisherConfig
from signalforge.ai_news.content import LocalIdentityProvider, SQLiteContentStore
from signalforge.ai_news.errors import RunInProgressError
from signalforge.ai_news.ingest import Aggregator, RawSignal, SignalSource
from signalforge.ai_news.ingest.models import SignalStatus
from signalforge.ai_news.pipeline import IngestPipeline, filter_unseen
from signalforge.ai_news.publisher import PublishGuard, Publisher
from signalforge.ai_news.store import SignalDatabase, SignalStore

NOW = datetime(2024, 4, 2, 12, tzinfo=timezone.utc)


def _signal(title: str, *, age_hours: float = 1, source=SignalSource.BLOG) -> RawSignal:
    return RawSignal(
        source=source,
        title=title,
        url=f"https://example.com/{title.lower()}",
        published_at=NOW - timedelta(hours=age_hours),
    )


class StaticFetcher:
    name = "static"
    source = SignalSource.BLOG

    def __init__(self, signals) -> None:
        self.signals = list(signals)

    def enabled(self, config) -> bool:
        return True

    async def fetch(self, client, config, *, now):
        return list(self.signals)


class BrokenAggregator:
    async def aggregate(self, config):
        raise RuntimeError("network gone")


class FlakyLookup:
    def __init__(self, seen: set[str], broken: set[str]) -> None:
        self.seen = seen
        self.broken = broken

    def exists_by_url(self, url: str) -> bool:
        if url in self.broken:
            raise RuntimeError("query failed")
        return url in self.seen


def _offline_client() -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected request {request.url}")

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _pipeline(tmp_path, signals, *, aggregator=None):
    database = SignalDatabase(tmp_path / "signals.db").initialize()
    store = SignalStore(database)
    content = SQLiteContentStore(database)
    publisher = Publisher(
        content,
        LocalIdentityProvider(database),
        config=PublisherConfig(delay_seconds=0),
        clock=lambda: NOW,
    )
    aggregator = aggregator or Aggregator(
        database,
        fetchers=[StaticFetcher(signals)],
        http_client_factory=_offline_client,
        clock=lambda: NOW,
    )
    pipeline = IngestPipeline(aggregator, store, publisher, guard=PublishGuard(), clock=lambda: NOW)
    return pipeline, store, content


def test_filter_unseen_excludes_known_urls_with_any_status(tmp_path) -> None:
    store = SignalStore(SignalDatabase(tmp_path / "signals.db").initialize())
    published, fresh = _signal("Published"), _signal("Fresh")
    store.save([published.with_score(1.0)])
    store.mark_published([published.id], {})

    assert filter_unseen([published, fresh], store) == [fresh]


def test_filter_unseen_fails_open() -> None:
    seen, broken, fresh = _signal("Seen"), _signal("Broken"), _signal("Fresh")
    lookup = FlakyLookup(seen={seen.url}, broken={broken.url})

    assert filter_unseen([seen, broken, fresh], lookup) == [broken, fresh]


def test_prepare_snapshots_top_candidates_without_publishing(tmp_path) -> None:
    signals = [_signal(f"Item{index}", age_hours=index + 1) for index in range(5)]
    signals.append(_signal("Item0"))  # batch duplicate
    pipeline, store, content = _pipeline(tmp_path, signals)
    config = AINewsConfig(max_items_per_run=3)

    run = asyncio.run(pipeline.prepare(config))

    assert run.success
    assert [signal.title for signal in run.selected] == ["Item0", "Item1", "Item2"]
    assert run.saved == 3
    assert [stage.name for stage in run.stages] == [
        "aggregate",
        "normalize",
        "filter_unseen",
        "score",
        "select",
        "save",
    ]
    assert [stage.count for stage in run.stages][:2] == [6, 5]
    assert len(store.list_pending()) == 3
    assert content.list_titles() == []

    again = asyncio.run(pipeline.prepare(config))
    assert [signal.title for signal in again.selected] == ["Item3", "Item4"]


def test_commit_publishes_pending_and_marks_them(tmp_path) -> None:
    pipeline, store, content = _pipeline(tmp_path, [_signal("Alpha"), _signal("Beta")])
    asyncio.run(pipeline.prepare(AINewsConfig()))

    run = asyncio.run(pipeline.commit("per_item"))

    assert run.success
    assert run.marked == 2
    assert store.list_pending() == []
    records = store.list_records(SignalStatus.PUBLISHED)
    assert {record.published_article_id for record in records} == {
        str(title["id"]) for title in content.list_titles()
    }
    result = run.as_run_result()
    assert result["articles_created"] == 2
    assert result["entries_created"] == 2


def test_commit_can_target_specific_ids(tmp_path) -> None:
    alpha, beta = _signal("Alpha"), _signal("Beta")
    pipeline, store, _ = _pipeline(tmp_path, [alpha, beta])
    asyncio.run(pipeline.prepare(AINewsConfig()))

    run = asyncio.run(pipeline.commit("digest", signal_ids=[beta.id]))

    assert run.publish.processed == [beta.id]
    assert [signal.id for signal in store.list_pending()] == [alpha.id]


def test_commit_by_id_does_not_republish(tmp_path) -> None:
    alpha = _signal("Alpha")
    pipeline, _, content = _pipeline(tmp_path, [alpha])
    asyncio.run(pipeline.prepare(AINewsConfig()))
    asyncio.run(pipeline.commit("per_item", signal_ids=[alpha.id]))

    again = asyncio.run(pipeline.commit("per_item", signal_ids=[alpha.id]))

    assert again.selected == []
    assert again.publish is None
    assert len(content.list_titles()) == 1


def test_run_prepares_and_publishes_in_one_pass(tmp_path) -> None:
    pipeline, store, content = _pipeline(tmp_path, [_signal("Alpha"), _signal("Beta")])

    run = asyncio.run(pipeline.run(AINewsConfig(), "digest"))

    assert run.success
    assert run.publish.articles_created == 1
    assert run.publish.entries_created == 2
    assert store.list_pending() == []
    assert len(content.list_titles()) == 1


def test_run_with_nothing_new_skips_publishing(tmp_path) -> None:
    pipeline, _, content = _pipeline(tmp_path, [])

    run = asyncio.run(pipeline.run(AINewsConfig(), "digest"))

    assert run.success
    assert run.publish is None
    assert content.list_titles() == []


def test_stage_failure_is_recorded_not_raised(tmp_path) -> None:
    pipeline, _, _ = _pipeline(tmp_path, [], aggregator=BrokenAggregator())

    run = asyncio.run(pipeline.run(AINewsConfig(), "digest"))

    assert not run.success
    assert run.stages[-1].name == "aggregate"
    assert run.stages[-1].ok is False
    assert run.errors == ["aggregate: network gone"]
    assert run.as_run_result()["success"] is False


def test_overlapping_runs_are_rejected(tmp_path) -> None:
    pipeline, _, _ = _pipeline(tmp_path, [_signal("Alpha")])

    with pipeline.guard.hold():
        with pytest.raises(RunInProgressError):
            asyncio.run(pipeline.run(AINewsConfig(), "digest"))
        with pytest.raises(RunInProgressError):
            asyncio.run(pipeline.commit("digest"))
