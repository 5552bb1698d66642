"""AI news signal pipeline: fetch, score, store, publish and schedule."""

from .backend import SignalForgeBackend
from .config import AINewsConfig
from .errors import AINewsError, RunInProgressError
from .pipeline import IngestPipeline, filter_unseen
from .publisher import Publisher, PublishResult
from .scheduler import ContentScheduler

__all__ = [
    "AINewsConfig",
    "AINewsError",
    "ContentScheduler",
    "IngestPipeline",
    "Publisher",
    "PublishResult",
    "RunInProgressError",
    "SignalForgeBackend",
    "filter_unseen",
]
