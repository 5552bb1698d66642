"""Exception types raised across the AI news pipeline."""

from __future__ import annotations


class AINewsError(Exception):
    """Base class for pipeline errors."""


class FetchError(AINewsError):
    """Every relay for a source request failed."""


class RunInProgressError(AINewsError):
    """A publish run is already in flight."""


class GenerationDisabledError(AINewsError):
    """Topic generation is switched off in the configuration."""


class IdentityError(AINewsError):
    """The automated-content identity could not be provisioned or used."""


class LLMError(AINewsError):
    """The language-model call failed or returned an unusable payload."""


__all__ = [
    "AINewsError",
    "FetchError",
    "GenerationDisabledError",
    "IdentityError",
    "LLMError",
    "RunInProgressError",
]
