"""Source fetchers and the aggregator that fans out to them."""

from .arxiv import ArxivFetcher
from .blogs import BlogFetcher
from .hn import HackerNewsFetcher
from .manager import Aggregator, SignalFetcher
from .models import RawSignal, ScoredSignal, SignalSource

__all__ = [
    "Aggregator",
    "ArxivFetcher",
    "BlogFetcher",
    "HackerNewsFetcher",
    "RawSignal",
    "ScoredSignal",
    "SignalFetcher",
    "SignalSource",
]
