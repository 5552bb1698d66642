"""Tests for the signal store and the settings repository."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from signalforge.ai_news.ingest.models import RawSignal, SignalSource, SignalStatus
from signalforge.ai_news.store import SignalDatabase, SignalStore

NOW = datetime(2024, 5, 1, 9, tzinfo=timezone.utc)


def _scored(title: str, score: float, *, url: str = ""):
    return RawSignal(
        source=SignalSource.HN,
        title=title,
        url=url or f"https://news.example/{title.lower()}",
        published_at=NOW - timedelta(hours=1),
        summary=f"About {title}",
        tags=frozenset({"news"}),
        metadata={"points": 10},
    ).with_score(score)


class UnwritableSignal:
    def __init__(self, signal) -> None:
        self.id = signal.id

    def to_row(self):
        raise ValueError("metadata is not serialisable")


def _store(tmp_path) -> SignalStore:
    return SignalStore(SignalDatabase(tmp_path / "signals.db").initialize())


def test_save_then_list_pending_round_trips_fields(tmp_path) -> None:
    store = _store(tmp_path)
    signals = [_scored("Alpha", 2.0), _scored("Beta", 3.0)]

    assert store.save(signals, created_at=NOW) == 2

    pending = store.list_pending()
    assert [signal.title for signal in pending] == ["Beta", "Alpha"]
    beta = pending[0]
    assert beta.id == signals[1].id
    assert beta.summary == "About Beta"
    assert beta.tags == frozenset({"news"})
    assert beta.metadata == {"points": 10}
    assert beta.published_at == NOW - timedelta(hours=1)



def test_one_failing_write_does_not_abort_the_batch(tmp_path) -> None:
    store = _store(tmp_path)
    broken = UnwritableSignal(_scored("Broken", 5.0))
    batch = [_scored("Alpha", 1.0), broken, _scored("Gamma", 2.0)]

    assert store.save(batch, created_at=NOW) == 2

    assert [signal.title for signal in store.list_pending()] == ["Gamma", "Alpha"]
    errors = store.database.list_errors()
    assert len(errors) == 1
    assert errors[0]["module"] == "store.save"
    assert errors[0]["message"] == "metadata is not serialisable"
    assert broken.id in errors[0]["details_json"]


def test_exists_by_url_uses_canonical_form(tmp_path) -> None:
    store = _store(tmp_path)
    store.save([_scored("Alpha", 1.0, url="https://news.example/a#top")])

    assert store.exists_by_url("https://news.example/a")
    assert store.exists_by_url("https://news.example/a#comments")
    assert not store.exists_by_url("https://news.example/b")


def test_mark_published_records_references(tmp_path) -> None:
    store = _store(tmp_path)
    alpha, beta = _scored("Alpha", 1.0), _scored("Beta", 2.0)
    store.save([alpha, beta])

    updated = store.mark_published(
        [alpha.id],
        {alpha.id: {"article_id": "10", "entry_id": "11"}},
        published_on=NOW,
    )

    assert updated == 1
    assert [signal.id for signal in store.list_pending()] == [beta.id]
    published = store.list_records(SignalStatus.PUBLISHED)
    assert len(published) == 1
    assert published[0].published_article_id == "10"
    assert published[0].published_entry_id == "11"
    # published signals still count as seen
    assert store.exists_by_url(alpha.url)


def test_mark_published_ignores_unknown_ids(tmp_path) -> None:
    store = _store(tmp_path)

    assert store.mark_published(["missing"], {}) == 0


def test_get_by_ids_preserves_requested_order(tmp_path) -> None:
    store = _store(tmp_path)
    alpha, beta = _scored("Alpha", 1.0), _scored("Beta", 2.0)
    store.save([alpha, beta])

    found = store.get_by_ids([alpha.id, "missing", beta.id])

    assert [signal.title for signal in found] == ["Alpha", "Beta"]


def test_get_by_ids_skips_published_signals(tmp_path) -> None:
    store = _store(tmp_path)
    alpha, beta = _scored("Alpha", 1.0), _scored("Beta", 2.0)
    store.save([alpha, beta])
    store.mark_published([alpha.id], {alpha.id: {"article_id": "t1", "entry_id": "e1"}})

    assert [signal.id for signal in store.get_by_ids([alpha.id, beta.id])] == [beta.id]


def test_health_snapshot_counts_rows(tmp_path) -> None:
    store = _store(tmp_path)
    store.save([_scored("Alpha", 1.0)])
    store.database.record_error(module="test", message="oops")

    snapshot = store.database.health_snapshot()

    assert snapshot["counts"]["signals"] == 1
    assert snapshot["signals_by_status"] == {"new": 1}
    assert snapshot["last_error"]["message"] == "oops"
