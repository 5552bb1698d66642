"""Batch normalization, scoring and selection of signals."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional

from .ingest.models import RawSignal, ScoredSignal, SignalSource

SOURCE_WEIGHTS: Mapping[SignalSource, float] = {
    SignalSource.ARXIV: 1.2,
    SignalSource.BLOG: 1.1,
    SignalSource.HN: 1.0,
}
DEFAULT_SOURCE_WEIGHT = 1.0
ENGAGEMENT_CEILING = 300.0


def dedup_key(signal: RawSignal) -> str:
    return f"{signal.source.value}|{signal.canonical_url}|{signal.title.strip().lower()}"


def normalize_signals(signals: Iterable[RawSignal]) -> List[RawSignal]:
    """Drop batch duplicates; the first signal seen for a key wins."""

    seen: Dict[str, RawSignal] = {}
    for signal in signals:
        seen.setdefault(dedup_key(signal), signal)
    return list(seen.values())


def freshness(signal: RawSignal, now: datetime) -> float:
    age_hours = (now - signal.published_at).total_seconds() / 3600.0
    return 1.0 / max(1.0, age_hours)


def engagement(signal: RawSignal) -> float:
    points = signal.engagement_points
    if points is None:
        return 0.0
    return min(1.0, max(0.0, points) / ENGAGEMENT_CEILING)


def score_signal(
    signal: RawSignal,
    *,
    now: datetime,
    weights: Optional[Mapping[SignalSource, float]] = None,
) -> ScoredSignal:
    table = SOURCE_WEIGHTS if weights is None else weights
    base = table.get(signal.source, DEFAULT_SOURCE_WEIGHT)
    return signal.with_score(base + freshness(signal, now) + engagement(signal))


def score_signals(
    signals: Iterable[RawSignal],
    *,
    now: Optional[datetime] = None,
    weights: Optional[Mapping[SignalSource, float]] = None,
) -> List[ScoredSignal]:
    moment = now or datetime.now(timezone.utc)
    return [score_signal(signal, now=moment, weights=weights) for signal in signals]


def select_top(signals: Iterable[ScoredSignal], limit: int) -> List[ScoredSignal]:
    ranked = sorted(signals, key=lambda item: item.score, reverse=True)
    return ranked[: max(0, int(limit))]
