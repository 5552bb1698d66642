"""Core backend wiring for the AI news pipeline."""

from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import httpx

from .config import AINewsConfig
from .content import LocalIdentityProvider, SQLiteContentStore
from .generator import ContentGenerator, GeminiClient
from .ingest.manager import Aggregator, SignalFetcher
from .ingest.models import ScoredSignal
from .pipeline import IngestPipeline, PipelineRun
from .publisher import PublishGuard, PublishMode, Publisher, PublishResult
from .scheduler import ContentScheduler
from .store import SettingsRepository, SignalDatabase, SignalStore
from .topics import ManualPlan


class SignalForgeBackend:
    """Coordinates database, configuration, pipeline and scheduler state.

    Every collaborator is built here once and shared; nothing in the
    package keeps module-level service instances."""

    def __init__(
        self,
        data_dir: os.PathLike[str] | str,
        *,
        environ: Optional[Mapping[str, str]] = None,
        database_filename: str = "signalforge.db",
        fetchers: Optional[Iterable[SignalFetcher]] = None,
        http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
        llm_client: Optional[GeminiClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
        interval_scale: float = 1.0,
    ) -> None:
        env = os.environ if environ is None else environ
        base = Path(data_dir)
        base.mkdir(parents=True, exist_ok=True)
        self._db_path = base / database_filename
        self.database = SignalDatabase(self._db_path)
        self.database.initialize()
        self.settings = SettingsRepository(
            self.database, defaults=AINewsConfig.from_env(env)
        )
        config = self.settings.save(AINewsConfig.from_env(env, base=self.settings.load()))

        self.store = SignalStore(self.database)
        self.aggregator = Aggregator(
            self.database,
            fetchers=fetchers,
            http_client_factory=http_client_factory,
            clock=clock,
        )
        self.content = SQLiteContentStore(self.database)
        self.identity = LocalIdentityProvider(self.database)
        self.guard = PublishGuard()
        self.publisher = Publisher(
            self.content,
            self.identity,
            config=config.publisher,
            timezone_name=config.schedule.timezone,
            clock=clock,
        )
        self.pipeline = IngestPipeline(
            self.aggregator, self.store, self.publisher, guard=self.guard, clock=clock
        )
        self.llm = llm_client or GeminiClient(
            env.get("GEMINI_API_KEY"),
            model=env.get("GEMINI_MODEL") or config.generator.model,
        )
        self.generator = ContentGenerator(
            self.llm, self.publisher, guard=self.guard, database=self.database
        )
        self.scheduler = ContentScheduler(
            self.settings,
            self.run_scheduled,
            guard=self.guard,
            clock=clock,
            interval_scale=interval_scale,
        )

    @property
    def data_dir(self) -> Path:
        return self._db_path.parent

    # Configuration ----------------------------------------------------

    def load_config(self) -> AINewsConfig:
        return self.settings.load()

    def update_config(self, config: AINewsConfig) -> AINewsConfig:
        stored = self.settings.save(config)
        self._apply_config(stored)
        return stored

    def patch_config(self, patch: Mapping[str, Any]) -> AINewsConfig:
        stored = self.settings.apply_patch(patch)
        self._apply_config(stored)
        return stored

    def default_config(self) -> AINewsConfig:
        return self.settings.default_config()

    def config_schema(self) -> dict[str, object]:
        return self.settings.config_schema()

    def _apply_config(self, config: AINewsConfig) -> None:
        self.publisher.configure(config.publisher, timezone_name=config.schedule.timezone)
        self.scheduler.update_config(config)

    # Runs -------------------------------------------------------------

    async def prepare(self, *, max_items: Optional[int] = None) -> PipelineRun:
        return await self.pipeline.prepare(self.load_config(), max_items=max_items)

    async def publish(
        self,
        mode: Optional[PublishMode] = None,
        *,
        signal_ids: Optional[Sequence[str]] = None,
    ) -> PipelineRun:
        config = self.load_config()
        return await self.pipeline.commit(
            mode or config.schedule.publish_mode, signal_ids=signal_ids
        )

    async def ingest(
        self, mode: Optional[PublishMode] = None, *, max_items: Optional[int] = None
    ) -> PipelineRun:
        config = self.load_config()
        return await self.pipeline.run(
            config, mode or config.schedule.publish_mode, max_items=max_items
        )

    async def generate(self) -> PublishResult:
        return await self.generator.generate_and_publish(self.load_config().generator)

    async def publish_plan(self, plan: ManualPlan) -> PublishResult:
        with self.guard.hold():
            return await self.publisher.publish_plan(plan)

    async def run_scheduled(self, config: AINewsConfig) -> Dict[str, Any]:
        """Job executed by the scheduler for both ticks and manual triggers."""

        if config.schedule.run_mode == "generate":
            result = await self.generator.generate_and_publish(config.generator)
            return result.to_dict()
        run = await self.pipeline.run(config, config.schedule.publish_mode)
        return run.as_run_result()

    def pending(self, limit: int = 50) -> List[ScoredSignal]:
        return self.store.list_pending(limit)

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "busy": self.guard.busy,
            "scheduler": self.scheduler.describe(),
            "storage": self.database.health_snapshot(),
        }

    def create_app(self):  # pragma: no cover - thin wrapper
        from .api import create_app

        return create_app(backend=self)
