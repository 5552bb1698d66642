"""FastAPI application for the SignalForge operator surface."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, List, Literal, Optional

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from .backend import SignalForgeBackend
from .config import AINewsConfig
from .errors import GenerationDisabledError, RunInProgressError
from .ingest.models import RawSignal
from .pipeline import PipelineRun
from .topics import ManualPlan


class PrepareRequest(BaseModel):
    max_items: Optional[int] = Field(default=None, ge=1, le=200)


class PublishRequest(BaseModel):
    mode: Optional[Literal["digest", "per_item"]] = None
    signal_ids: Optional[List[str]] = Field(
        default=None, description="Publish these signals instead of the pending queue"
    )


class IngestRequest(BaseModel):
    mode: Optional[Literal["digest", "per_item"]] = None
    max_items: Optional[int] = Field(default=None, ge=1, le=200)


def signal_payload(signal: RawSignal) -> dict[str, Any]:
    return {
        "id": signal.id,
        "source": signal.source.value,
        "title": signal.title,
        "url": signal.url,
        "published_at": signal.published_at.isoformat(),
        "author": signal.author,
        "summary": signal.summary,
        "tags": sorted(signal.tags),
        "metadata": dict(signal.metadata),
        "score": getattr(signal, "score", None),
    }


def run_payload(run: PipelineRun) -> dict[str, Any]:
    payload = run.as_run_result()
    payload["selected"] = [signal_payload(signal) for signal in run.selected]
    payload["saved"] = run.saved
    payload["marked"] = run.marked
    return payload


def create_app(
    *,
    backend: Optional[SignalForgeBackend] = None,
    data_dir: Optional[str | Path] = None,
) -> FastAPI:
    """Create a configured FastAPI application."""

    if backend is None:
        target = Path(data_dir) if data_dir else Path.cwd() / "signalforge_data"
        backend = SignalForgeBackend(target)

    @asynccontextmanager
    async def lifespan(_: FastAPI):  # pragma: no cover - FastAPI lifecycle wrapper
        backend.scheduler.start()
        try:
            yield
        finally:
            backend.scheduler.stop()

    app = FastAPI(title="SignalForge", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(RunInProgressError)
    async def run_in_progress(_: Request, exc: RunInProgressError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.get("/health")
    async def get_health() -> dict:
        health = backend.health()
        health["config"] = backend.load_config().model_dump()
        return health

    @app.get("/settings", response_model=AINewsConfig)
    async def get_settings() -> AINewsConfig:
        return backend.load_config()

    @app.put("/settings", response_model=AINewsConfig)
    async def put_settings(config: AINewsConfig) -> AINewsConfig:
        return backend.update_config(config)

    @app.patch("/settings", response_model=AINewsConfig)
    async def patch_settings(payload: dict[str, Any] = Body(...)) -> AINewsConfig:
        try:
            return backend.patch_config(payload)
        except ValidationError as exc:
            raise HTTPException(
                status_code=422, detail=jsonable_encoder(exc.errors())
            ) from exc

    @app.get("/settings/defaults", response_model=AINewsConfig)
    async def get_default_settings() -> AINewsConfig:
        return backend.default_config()

    @app.get("/settings/schema")
    async def get_settings_schema() -> dict[str, Any]:
        return backend.config_schema()

    @app.post("/run/prepare")
    async def run_prepare(request: Optional[PrepareRequest] = None) -> dict:
        request = request or PrepareRequest()
        return run_payload(await backend.prepare(max_items=request.max_items))

    @app.post("/run/publish")
    async def run_publish(request: Optional[PublishRequest] = None) -> dict:
        request = request or PublishRequest()
        run = await backend.publish(request.mode, signal_ids=request.signal_ids)
        return run_payload(run)

    @app.post("/run/ingest")
    async def run_ingest(request: Optional[IngestRequest] = None) -> dict:
        request = request or IngestRequest()
        return run_payload(await backend.ingest(request.mode, max_items=request.max_items))

    @app.post("/run/generate")
    async def run_generate() -> dict:
        try:
            result = await backend.generate()
        except GenerationDisabledError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return result.to_dict()

    @app.post("/run/plan")
    async def run_plan(plan: ManualPlan) -> dict:
        return (await backend.publish_plan(plan)).to_dict()

    @app.get("/signals/pending")
    async def list_pending(limit: int = Query(50, ge=1, le=500)) -> dict[str, Any]:
        signals = backend.pending(limit)
        return {"count": len(signals), "signals": [signal_payload(s) for s in signals]}

    @app.get("/scheduler")
    async def get_scheduler() -> dict[str, Any]:
        return backend.scheduler.describe()

    @app.post("/scheduler/start")
    async def start_scheduler() -> dict[str, Any]:
        started = backend.scheduler.start()
        status = backend.scheduler.describe()
        status["started"] = started
        return status

    @app.post("/scheduler/stop")
    async def stop_scheduler() -> dict[str, Any]:
        backend.scheduler.stop()
        return backend.scheduler.describe()

    @app.post("/scheduler/trigger")
    async def trigger_scheduler() -> dict[str, Any]:
        return await backend.scheduler.trigger_manual_run()

    return app
