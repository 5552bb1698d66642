"""Tests for LLM topic generation."""

from __future__ import annotations

import asyncio
import json
import random
from datetime import datetime, timezone

import httpx
import pytest

from signalforge.ai_news.config import GeneratorConfig, PublisherConfig
from signalforge.ai_news.content import LocalIdentityProvider, SQLiteContentStore
from signalforge.ai_news.errors import GenerationDisabledError, LLMError, RunInProgressError
from signalforge.ai_news.generator import (
    ContentGenerator,
    GeminiClient,
    parse_entries,
    parse_topics,
)
from signalforge.ai_news.publisher import PublishGuard, Publisher
from signalforge.ai_news.store import SignalDatabase
from signalforge.ai_news.topics import FALLBACK_TOPICS

TOPICS_TEXT = """Here you go:
```json
{"topics": [
  {"title": "Open weights surge", "description": "More labs release weights.",
   "category": "industry", "content": "Several labs released open weights this week.",
   "keywords": ["open"], "trending": true},
  {"title": "Benchmarks saturate", "category": "research",
   "content": "Leaderboards are topping out."},
  {"title": "", "content": "no title"}
]}
```"""

ENTRIES_TEXT = '["A second view.", "A third view.", "A fourth view."]'


def _gemini_response(text: str) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def _client(handler, *, api_key: str | None = "test-key") -> GeminiClient:
    return GeminiClient(
        api_key,
        http_client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def _generator(tmp_path, client: GeminiClient, *, guard=None):
    database = SignalDatabase(tmp_path / "signals.db").initialize()
    content = SQLiteContentStore(database)
    publisher = Publisher(
        content,
        LocalIdentityProvider(database),
        config=PublisherConfig(delay_seconds=0),
        clock=lambda: datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    generator = ContentGenerator(
        client, publisher, guard=guard, database=database, rng=random.Random(7)
    )
    return generator, content, database


def test_parse_topics_extracts_json_and_skips_invalid_items() -> None:
    topics = parse_topics(TOPICS_TEXT)

    assert [topic.title for topic in topics] == ["Open weights surge", "Benchmarks saturate"]
    assert topics[1].description == ""


def test_parse_helpers_reject_unusable_payloads() -> None:
    with pytest.raises(LLMError):
        parse_topics("sorry, I cannot help")
    with pytest.raises(LLMError):
        parse_topics('{"items": []}')
    with pytest.raises(LLMError):
        parse_entries("no array here")
    assert parse_entries('["one", 2, " ", "two"]') == ["one", "two"]


def test_client_sends_key_header_and_model_path() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return _gemini_response("hello")

    client = _client(handler)
    client.model = "gemini-test"

    assert asyncio.run(client.complete("hi")) == "hello"
    request = requests[0]
    assert request.headers["x-goog-api-key"] == "test-key"
    assert request.url.path.endswith("/models/gemini-test:generateContent")
    body = json.loads(request.content)
    assert body["contents"][0]["parts"][0]["text"] == "hi"


def test_client_errors_are_llm_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": {"message": "model not found"}})

    with pytest.raises(LLMError, match="model not found"):
        asyncio.run(_client(handler).complete("hi"))
    with pytest.raises(LLMError, match="not configured"):
        asyncio.run(_client(handler, api_key=None).complete("hi"))


def test_generate_publishes_topics_with_supplementary_entries(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        prompt = json.loads(request.content)["contents"][0]["parts"][0]["text"]
        if "contributing to a discussion" in prompt:
            return _gemini_response(ENTRIES_TEXT)
        return _gemini_response(TOPICS_TEXT)

    generator, content, _ = _generator(tmp_path, _client(handler))
    config = GeneratorConfig(max_articles_per_run=1, max_entries_per_article=2)

    result = asyncio.run(generator.generate_and_publish(config))

    assert result.success
    assert result.errors == []
    assert result.articles_created == 1
    # main entry plus at most max_entries_per_article - 1 supplementary entries
    assert result.entries_created == 2
    titles = content.list_titles()
    assert [(title["title"], title["category"]) for title in titles] == [
        ("Open weights surge", "business")
    ]


def test_generate_falls_back_when_the_llm_fails(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": {"message": "overloaded"}})

    generator, content, database = _generator(tmp_path, _client(handler))
    config = GeneratorConfig(max_entries_per_article=1)

    result = asyncio.run(generator.generate_and_publish(config))

    assert result.success
    assert result.articles_created == len(FALLBACK_TOPICS)
    assert result.entries_created == len(FALLBACK_TOPICS)
    assert result.errors[0].startswith("Topic generation failed")
    assert [title["title"] for title in content.list_titles()] == [
        topic.title for topic in FALLBACK_TOPICS
    ]
    assert database.list_errors()[-1]["module"] == "generator.topics"


def test_generate_respects_disabled_flag_and_busy_guard(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - not called
        raise AssertionError

    guard = PublishGuard()
    generator, _, _ = _generator(tmp_path, _client(handler), guard=guard)

    with pytest.raises(GenerationDisabledError):
        asyncio.run(generator.generate_and_publish(GeneratorConfig(enabled=False)))
    assert not guard.busy

    with guard.hold():
        with pytest.raises(RunInProgressError):
            asyncio.run(generator.generate_and_publish(GeneratorConfig()))
