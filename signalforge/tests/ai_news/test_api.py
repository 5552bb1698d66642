from datetime import datetime, timedelta, timezone

import httpx
from fastapi.testclient import TestClient

from signalforge.ai_news.api import create_app
from signalforge.ai_news.backend import SignalForgeBackend
from signalforge.ai_news.ingest.models import RawSignal, SignalSource

NOW = datetime(2024, 2, 7, 12, tzinfo=timezone.utc)


class StaticFetcher:
    name = "static"
    source = SignalSource.BLOG

    def enabled(self, config) -> bool:
        return True

    async def fetch(self, client, config, *, now):
        return [
            RawSignal(
                source=SignalSource.BLOG,
                title=f"Post {index}",
                url=f"https://lab.example/post-{index}",
                published_at=NOW - timedelta(hours=index),
                summary="Details",
            )
            for index in range(1, 4)
        ]


def _offline_client() -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _backend(tmp_path, **environ) -> SignalForgeBackend:
    backend = SignalForgeBackend(
        tmp_path,
        environ=environ,
        fetchers=[StaticFetcher()],
        http_client_factory=_offline_client,
        clock=lambda: NOW,
    )
    backend.patch_config({"publisher": {"delay_seconds": 0}})
    return backend


def test_health_endpoint_reports_defaults(tmp_path):
    backend = _backend(tmp_path)
    app = create_app(backend=backend)
    with TestClient(app) as client:
        response = client.get("/health")
        payload = response.json()

    assert response.status_code == 200
    assert payload["status"] == "ok"
    assert payload["busy"] is False
    assert payload["config"]["max_items_per_run"] == 15
    assert payload["scheduler"]["is_active"] is False
    assert payload["storage"]["counts"]["signals"] == 0


def test_environment_options_seed_defaults(tmp_path):
    backend = _backend(tmp_path, AI_NEWS_MAX_ITEMS="2", AI_NEWS_INTERVAL_HOURS="4")
    app = create_app(backend=backend)
    with TestClient(app) as client:
        defaults = client.get("/settings/defaults").json()
        current = client.get("/settings").json()

    assert defaults["max_items_per_run"] == 2
    assert current["schedule"]["interval_hours"] == 4


def test_settings_can_be_updated(tmp_path):
    backend = _backend(tmp_path)
    app = create_app(backend=backend)
    with TestClient(app) as client:
        current = client.get("/settings").json()
        current["sources"]["blog_feeds"] = ["https://lab.example/rss"]
        update = client.put("/settings", json=current)
        assert update.status_code == 200

        refreshed = client.get("/settings").json()

    assert refreshed["sources"]["blog_feeds"] == ["https://lab.example/rss"]


def test_settings_patch_validates_and_merges(tmp_path):
    backend = _backend(tmp_path)
    app = create_app(backend=backend)
    with TestClient(app) as client:
        ok = client.patch("/settings", json={"schedule": {"quiet_hours": {"start": 23}}})
        bad = client.patch("/settings", json={"schedule": {"interval_hours": 0}})
        schema = client.get("/settings/schema").json()

    assert ok.status_code == 200
    assert ok.json()["schedule"]["quiet_hours"] == {"start": 23, "end": 6}
    assert bad.status_code == 422
    assert backend.load_config().schedule.interval_hours == 8
    assert "properties" in schema


def test_prepare_then_publish_flow(tmp_path):
    backend = _backend(tmp_path)
    app = create_app(backend=backend)
    with TestClient(app) as client:
        prepared = client.post("/run/prepare", json={"max_items": 2}).json()
        pending = client.get("/signals/pending").json()
        published = client.post("/run/publish", json={"mode": "per_item"}).json()
        after = client.get("/signals/pending").json()

    assert prepared["success"] is True
    assert [item["title"] for item in prepared["selected"]] == ["Post 1", "Post 2"]
    assert pending["count"] == 2
    assert published["articles_created"] == 2
    assert published["marked"] == 2
    assert after["count"] == 0


def test_ingest_endpoint_runs_the_whole_pipeline(tmp_path):
    backend = _backend(tmp_path)
    app = create_app(backend=backend)
    with TestClient(app) as client:
        response = client.post("/run/ingest")

    payload = response.json()
    assert response.status_code == 200
    assert payload["articles_created"] == 1
    assert payload["entries_created"] == 3
    assert len(backend.content.list_titles()) == 1


def test_busy_runs_are_rejected_with_conflict(tmp_path):
    backend = _backend(tmp_path)
    app = create_app(backend=backend)
    with TestClient(app) as client:
        with backend.guard.hold():
            response = client.post("/run/ingest")
            trigger = client.post("/scheduler/trigger")

    assert response.status_code == 409
    assert trigger.status_code == 409


def test_generate_endpoint_uses_fallback_topics_without_api_key(tmp_path):
    backend = _backend(tmp_path)
    app = create_app(backend=backend)
    with TestClient(app) as client:
        payload = client.post("/run/generate").json()
        client.patch("/settings", json={"generator": {"enabled": False}})
        disabled = client.post("/run/generate")

    assert payload["success"] is True
    assert payload["articles_created"] == 3
    assert "Gemini API key not configured" in payload["errors"][0]
    assert disabled.status_code == 400


def test_scheduler_trigger_updates_status(tmp_path):
    backend = _backend(tmp_path)
    app = create_app(backend=backend)
    with TestClient(app) as client:
        result = client.post("/scheduler/trigger").json()
        status = client.get("/scheduler").json()

    assert result["success"] is True
    assert status["total_runs"] == 1
    assert status["last_run_result"]["entries_created"] == 3


def test_scheduler_start_and_stop_endpoints(tmp_path):
    backend = _backend(tmp_path)
    app = create_app(backend=backend)
    with TestClient(app) as client:
        refused = client.post("/scheduler/start").json()
        client.patch(
            "/settings", json={"schedule": {"enabled": True, "max_runs_per_day": 0}}
        )
        running = client.get("/scheduler").json()
        stopped = client.post("/scheduler/stop").json()

    assert refused["started"] is False
    assert running["is_active"] is True
    assert stopped["is_active"] is False


def test_environment_options_apply_on_every_start(tmp_path) -> None:
    first = _backend(tmp_path, AI_NEWS_INTERVAL_HOURS="4")
    first.patch_config({"schedule": {"max_runs_per_day": 5}})
    assert first.load_config().schedule.interval_hours == 4

    second = _backend(tmp_path, AI_NEWS_INTERVAL_HOURS="12")
    config = second.load_config()

    assert config.schedule.interval_hours == 12
    assert config.schedule.max_runs_per_day == 5
