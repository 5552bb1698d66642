"""LLM-driven topic generation and publishing."""

from __future__ import annotations

import json
import logging
import random
import re
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from .config import GeneratorConfig
from .errors import GenerationDisabledError, LLMError
from .publisher import PublishGuard, Publisher, PublishResult
from .store import SignalDatabase
from .topics import FALLBACK_TOPICS, Topic

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

TOPICS_PROMPT = """\
You are an AI research assistant finding the most newsworthy AI developments of the past week.

Identify 5-7 significant, trending AI topics that would be interesting to discuss on a platform
focused on AI and technology. Cover model releases, company announcements, research papers,
regulation and policy, industry applications, and safety or ethics.

For each topic provide a compelling title, a 2-3 sentence description, a category (one of:
{categories}), 3-4 paragraphs of discussion content and 3-5 keywords.

Respond with JSON only:
{{"topics": [{{"title": "...", "description": "...", "category": "...", "content": "...",
"keywords": ["..."], "trending": true}}]}}
"""

ENTRIES_PROMPT = """\
You are contributing to a discussion about: "{title}"

Topic description: {description}
Category: {category}

Write 2-3 additional discussion entries, each offering a different perspective in 2-4 sentences.
Do not repeat this existing entry: {existing}

Respond with a JSON array of strings only.
"""

_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

log = logging.getLogger("signalforge.generator")


class GeminiClient:
    """Minimal ``generateContent`` client."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = "gemini-1.5-flash",
        http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self._client_factory = http_client_factory or (
            lambda: httpx.AsyncClient(timeout=httpx.Timeout(60.0))
        )

    async def complete(self, prompt: str) -> str:
        if not self.api_key:
            raise LLMError("Gemini API key not configured")
        url = f"{GEMINI_BASE_URL}/{self.model}:generateContent"
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.7,
                "topK": 40,
                "topP": 0.95,
                "maxOutputTokens": 2048,
            },
        }
        try:
            async with self._client_factory() as client:
                response = await client.post(
                    url, json=payload, headers={"x-goog-api-key": self.api_key}
                )
        except httpx.HTTPError as exc:
            raise LLMError(f"Gemini request failed: {exc}") from exc
        if response.status_code >= 400:
            raise LLMError(f"Gemini request failed: {response.status_code} {_error_message(response)}")
        try:
            data = response.json()
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise LLMError("Invalid response from Gemini") from exc

    async def trending_topics(self, categories: Sequence[str]) -> List[Topic]:
        text = await self.complete(TOPICS_PROMPT.format(categories=", ".join(categories)))
        return parse_topics(text)

    async def additional_entries(self, topic: Topic) -> List[str]:
        prompt = ENTRIES_PROMPT.format(
            title=topic.title,
            description=topic.description,
            category=topic.category,
            existing=topic.content[:100],
        )
        return parse_entries(await self.complete(prompt))


def parse_topics(text: str) -> List[Topic]:
    match = _OBJECT_RE.search(text or "")
    if not match:
        raise LLMError("No JSON object found in response")
    try:
        payload = json.loads(match.group(0))
    except ValueError as exc:
        raise LLMError("Failed to parse topics JSON") from exc
    raw_topics = payload.get("topics") if isinstance(payload, dict) else None
    if not isinstance(raw_topics, list):
        raise LLMError("Response has no topics list")
    topics: List[Topic] = []
    for item in raw_topics:
        try:
            topics.append(Topic.model_validate(item))
        except ValidationError as exc:
            log.warning("skipping malformed topic: %s", exc.errors()[0].get("msg"))
    if not topics:
        raise LLMError("Response contained no usable topics")
    return topics


def parse_entries(text: str) -> List[str]:
    match = _ARRAY_RE.search(text or "")
    if not match:
        raise LLMError("No JSON array found in response")
    try:
        payload = json.loads(match.group(0))
    except ValueError as exc:
        raise LLMError("Failed to parse entries JSON") from exc
    if not isinstance(payload, list):
        raise LLMError("Entries payload is not a list")
    return [str(item).strip() for item in payload if isinstance(item, str) and item.strip()]


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return response.reason_phrase


class ContentGenerator:
    """Generates trending topics and publishes them under the bot identity."""

    def __init__(
        self,
        client: GeminiClient,
        publisher: Publisher,
        *,
        guard: Optional[PublishGuard] = None,
        database: Optional[SignalDatabase] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._client = client
        self._publisher = publisher
        self._guard = guard or PublishGuard()
        self._database = database
        self._rng = rng or random.Random()

    async def generate_and_publish(self, config: GeneratorConfig) -> PublishResult:
        """Run one generation pass.

        Raises ``RunInProgressError`` when another run is active and
        ``GenerationDisabledError`` when generation is switched off."""

        with self._guard.hold():
            if not config.enabled:
                raise GenerationDisabledError("content generation is disabled")
            self._client.model = config.model
            errors: List[str] = []
            try:
                topics = await self._client.trending_topics(config.categories)
            except LLMError as exc:
                log.warning("topic generation failed, using fallback topics: %s", exc)
                errors.append(f"Topic generation failed: {exc}")
                self._record("generator.topics", str(exc))
                topics = list(FALLBACK_TOPICS)
            selected = topics[: config.max_articles_per_run]
            max_extra = config.max_entries_per_article - 1

            def extra_count(_topic: Topic) -> int:
                if max_extra <= 0:
                    return 0
                return min(max_extra, self._rng.randint(1, 3))

            result = await self._publisher.publish_topics(
                selected,
                supplementary=self._client.additional_entries,
                supplementary_count=extra_count,
            )
            result.errors[:0] = errors
            result.details.append({"topics": [topic.title for topic in selected]})
            for message in result.errors[len(errors):]:
                self._record("generator.publish", message)
            log.info(
                "generation run created %d articles and %d entries",
                result.articles_created,
                result.entries_created,
            )
            return result

    def _record(self, module: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        if self._database is None:
            return
        self._database.record_error(module=module, message=message, details=details)
