"""Automated publishing scheduler built on APScheduler."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Event, Lock, Thread
from typing import Any, Awaitable, Callable, Dict, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobEvent
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import AINewsConfig, ScheduleConfig
from .errors import RunInProgressError
from .publisher import PublishGuard
from .store import SettingsRepository

STATUS_KEY = "ai_news.scheduler_status"
TICK_JOB = "tick"
WEEKDAY_START_HOUR = 9
DRAIN_TIMEOUT_SECONDS = 300.0

RunJob = Callable[[AINewsConfig], Awaitable[Dict[str, Any]]]

log = logging.getLogger("signalforge.scheduler")


def _iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _parse_iso(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


@dataclass
class ScheduleStatus:
    is_active: bool = False
    next_run_time: Optional[datetime] = None
    last_run_time: Optional[datetime] = None
    last_run_result: Optional[Dict[str, Any]] = None
    runs_today: int = 0
    total_runs: int = 0

    def to_storage(self) -> Dict[str, Any]:
        return {
            "last_run_time": _iso(self.last_run_time),
            "runs_today": self.runs_today,
            "total_runs": self.total_runs,
            "last_run_result": self.last_run_result,
        }

    @classmethod
    def from_storage(cls, data: Any) -> "ScheduleStatus":
        if not isinstance(data, dict):
            return cls()
        result = data.get("last_run_result")
        return cls(
            last_run_time=_parse_iso(data.get("last_run_time")),
            runs_today=_as_count(data.get("runs_today")),
            total_runs=_as_count(data.get("total_runs")),
            last_run_result=result if isinstance(result, dict) else None,
        )

    def snapshot(self) -> Dict[str, Any]:
        return {
            "is_active": self.is_active,
            "next_run_time": _iso(self.next_run_time),
            "last_run_time": _iso(self.last_run_time),
            "last_run_result": self.last_run_result,
            "runs_today": self.runs_today,
            "total_runs": self.total_runs,
        }


def _as_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return 0
    return value


def is_in_quiet_hours(schedule: ScheduleConfig, hour: int) -> bool:
    return schedule.quiet_hours.contains(hour)


def compute_next_run_time(
    schedule: ScheduleConfig,
    last_run_time: Optional[datetime],
    now: datetime,
) -> Optional[datetime]:
    """Project the next eligible run, skipping quiet hours and weekends.

    Weekend skipping lands on 09:00 of the next weekday."""

    if not schedule.enabled:
        return None
    tz = _resolve_timezone(schedule.timezone)
    if last_run_time is not None:
        candidate = last_run_time + timedelta(hours=schedule.interval_hours)
    else:
        candidate = now + timedelta(hours=1)
    local = candidate.astimezone(tz)
    for _ in range(24):
        if not schedule.quiet_hours.contains(local.hour):
            break
        local += timedelta(hours=1)
    if not schedule.run_on_weekends:
        while local.weekday() >= 5:
            local = (local + timedelta(days=1)).replace(
                hour=WEEKDAY_START_HOUR, minute=0, second=0, microsecond=0
            )
    return local.astimezone(timezone.utc)


class ContentScheduler:
    """Periodic tick that runs the publishing job when the gate allows it.

    The tick period (``tick_minutes``) is independent of ``interval_hours``;
    every tick asks ``should_run_now`` and only then runs the job. A tick
    never raises. Status is persisted after every state change and loaded
    once at construction.

    ``stop`` lets a run already in flight finish before the loop thread
    goes away; reconfiguring an active scheduler only re-arms the tick.

    ``_lock`` serialises start/stop/reconfigure and may wait on the loop
    thread; ``_status_lock`` only guards ``ScheduleStatus`` and is never
    held across a wait."""

    def __init__(
        self,
        settings_repo: SettingsRepository,
        run_job: RunJob,
        *,
        guard: Optional[PublishGuard] = None,
        clock: Optional[Callable[[], datetime]] = None,
        interval_scale: float = 1.0,
    ) -> None:
        self._settings_repo = settings_repo
        self._run_job = run_job
        self._guard = guard or PublishGuard()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._interval_scale = interval_scale
        self._lock = Lock()
        self._status_lock = Lock()
        self._stop_event = Event()
        self._ready = Event()
        self._idle = Event()
        self._idle.set()
        self._thread: Optional[Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._tick_next: Optional[datetime] = None
        self._config: Optional[AINewsConfig] = None
        self._status = ScheduleStatus.from_storage(
            settings_repo.database.get_setting(STATUS_KEY)
        )
        self._reset_daily_counter(self._clock(), self._current_config().schedule)

    # Public API -------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._status.is_active

    @property
    def status(self) -> ScheduleStatus:
        with self._status_lock:
            return ScheduleStatus(**self._status.__dict__)

    @property
    def config(self) -> AINewsConfig:
        return self._current_config()

    def start(self) -> bool:
        """Arm the tick. Returns False when scheduling is disabled.

        The first tick fires immediately, later ones every ``tick_minutes``."""

        with self._lock:
            if self._status.is_active:
                return True
            config = self._current_config()
            if not config.schedule.enabled:
                log.info("scheduler is disabled in config")
                return False
            self._stop_event.clear()
            self._start_loop_locked()
            self._schedule_tick_locked(config)
            with self._status_lock:
                self._status.is_active = True
                self._status.next_run_time = compute_next_run_time(
                    config.schedule, self._status.last_run_time, self._clock()
                )
                self._save()
        log.info("scheduler started")
        return True

    def stop(self, *, timeout: float = DRAIN_TIMEOUT_SECONDS) -> None:
        """Remove the tick and wait up to ``timeout`` seconds for a run in
        flight to finish before the loop thread is shut down."""

        thread: Optional[Thread] = None
        with self._lock:
            if not self._status.is_active:
                return
            self._stop_event.set()
            self._cancel_jobs_locked()
            if not self._idle.wait(timeout):
                log.warning("run still in progress after %.0fs, stopping anyway", timeout)
            loop = self._loop
            if loop and loop.is_running():
                loop.call_soon_threadsafe(loop.stop)
            thread = self._thread
            self._thread = None
            self._loop = None
            self._scheduler = None
            with self._status_lock:
                self._status.is_active = False
                self._status.next_run_time = None
                self._save()
        if thread:
            thread.join(timeout=2.0)
        log.info("scheduler stopped")

    def update_config(self, config: Optional[AINewsConfig] = None) -> AINewsConfig:
        """Adopt a new configuration, restarting the tick when needed."""

        cfg = config or self._settings_repo.load()
        self._config = cfg
        with self._lock:
            active = self._status.is_active
            if active and cfg.schedule.enabled:
                self._schedule_tick_locked(cfg)
        if active and not cfg.schedule.enabled:
            self.stop()
        elif not active and cfg.schedule.enabled:
            self.start()
        with self._status_lock:
            self._status.next_run_time = (
                compute_next_run_time(cfg.schedule, self._status.last_run_time, self._clock())
                if self._status.is_active
                else None
            )
            self._save()
        return cfg

    def should_run_now(
        self, now: Optional[datetime] = None, config: Optional[AINewsConfig] = None
    ) -> bool:
        schedule = (config or self._current_config()).schedule
        current = now or self._clock()
        local = current.astimezone(_resolve_timezone(schedule.timezone))
        with self._status_lock:
            self._reset_daily_counter(current, schedule)
            runs_today = self._status.runs_today
            last_run = self._status.last_run_time
        if runs_today >= schedule.max_runs_per_day:
            return False
        if not schedule.run_on_weekends and local.weekday() >= 5:
            return False
        if schedule.quiet_hours.contains(local.hour):
            return False
        if last_run is not None:
            hours_since = (current - last_run).total_seconds() / 3600.0
            if hours_since < schedule.interval_hours:
                return False
        return True

    def is_in_quiet_hours(self, hour: int) -> bool:
        return is_in_quiet_hours(self._current_config().schedule, hour)

    async def check_and_run(self, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """Run the job once if the gate allows it; returns the run result."""

        config = self._current_config()
        if not config.schedule.enabled:
            return None
        if self._guard.busy:
            log.info("tick skipped, a run is already in progress")
            return None
        if not self.should_run_now(now, config):
            return None
        log.info("automated run triggered by scheduler")
        try:
            result = await self._run_job(config)
        except RunInProgressError:
            log.info("tick skipped, a run is already in progress")
            return None
        except Exception as exc:
            log.error("scheduled run failed: %s", exc)
            self._record_error(str(exc))
            failed_at = self._clock()
            result = {
                "success": False,
                "articles_created": 0,
                "entries_created": 0,
                "errors": [f"Scheduler error: {exc}"],
                "timestamp": _iso(failed_at),
            }
            self._record_run(config.schedule, failed_at, result, counted=False)
            return result
        self._record_run(config.schedule, self._clock(), result, counted=True)
        return result

    async def trigger_manual_run(self) -> Dict[str, Any]:
        """Run the job now, bypassing the gate but updating the counters.

        Raises ``RunInProgressError`` if a run is already active; other
        job errors propagate to the caller."""

        if self._guard.busy:
            raise RunInProgressError("a publishing run is already in progress")
        config = self._current_config()
        log.info("manual run triggered")
        result = await self._run_job(config)
        self._record_run(config.schedule, self._clock(), result, counted=True)
        return result

    def describe(self) -> Dict[str, Any]:
        config = self._current_config()
        with self._status_lock:
            snapshot = self._status.snapshot()
            snapshot["next_tick"] = _iso(self._tick_next)
        snapshot["busy"] = self._guard.busy
        snapshot["config"] = config.schedule.model_dump()
        return snapshot

    # Internal helpers -------------------------------------------------

    def _current_config(self) -> AINewsConfig:
        if self._config is None:
            self._config = self._settings_repo.load()
        return self._config

    def _record_run(
        self,
        schedule: ScheduleConfig,
        finished: datetime,
        result: Dict[str, Any],
        *,
        counted: bool,
    ) -> None:
        with self._status_lock:
            self._reset_daily_counter(finished, schedule)
            self._status.last_run_time = finished
            self._status.last_run_result = result
            if counted:
                self._status.total_runs += 1
                self._status.runs_today += 1
            if self._status.is_active:
                self._status.next_run_time = compute_next_run_time(schedule, finished, finished)
            self._save()

    def _reset_daily_counter(self, now: datetime, schedule: ScheduleConfig) -> None:
        last = self._status.last_run_time
        if last is None:
            self._status.runs_today = 0
            return
        tz = _resolve_timezone(schedule.timezone)
        if last.astimezone(tz).date() != now.astimezone(tz).date():
            self._status.runs_today = 0

    def _save(self) -> None:
        try:
            self._settings_repo.database.put_setting(STATUS_KEY, self._status.to_storage())
        except sqlite3.Error as exc:
            log.warning("failed to persist scheduler status: %s", exc)

    def _record_error(self, message: str) -> None:
        try:
            self._settings_repo.database.record_error(module="scheduler", message=message)
        except Exception as exc:
            log.warning("failed to record scheduler error: %s", exc)

    async def _tick(self) -> None:
        self._idle.clear()
        try:
            if self._stop_event.is_set():
                return
            await self.check_and_run()
        except Exception as exc:
            log.error("scheduler tick failed: %s", exc)
            self._record_error(str(exc))
        finally:
            self._idle.set()

    def _start_loop_locked(self) -> None:
        if self._loop and self._loop.is_running():
            return
        loop = asyncio.new_event_loop()
        self._loop = loop
        self._ready.clear()

        def _runner() -> None:
            asyncio.set_event_loop(loop)
            scheduler = AsyncIOScheduler(event_loop=loop, timezone=timezone.utc)
            scheduler.add_listener(self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
            self._scheduler = scheduler
            scheduler.start()
            self._ready.set()
            try:
                loop.run_forever()
            finally:
                scheduler.shutdown(wait=False)
                self._ready.clear()
                loop.close()

        thread = Thread(target=_runner, name="SignalForgeScheduler", daemon=True)
        self._thread = thread
        thread.start()
        self._ready.wait()

    def _schedule_tick_locked(self, config: AINewsConfig) -> None:
        if not self._loop or not self._scheduler:
            return
        seconds = float(config.schedule.tick_minutes) * 60.0 * self._interval_scale
        if seconds <= 0:
            return
        trigger = IntervalTrigger(seconds=seconds, timezone=timezone.utc)
        done = Event()

        def _schedule() -> None:
            if not self._scheduler:
                done.set()
                return
            try:
                self._scheduler.remove_job(TICK_JOB)
            except JobLookupError:
                pass
            job = self._scheduler.add_job(
                self._tick,
                trigger=trigger,
                id=TICK_JOB,
                next_run_time=datetime.now(timezone.utc),
                coalesce=True,
                max_instances=1,
            )
            self._tick_next = job.next_run_time
            done.set()

        self._loop.call_soon_threadsafe(_schedule)
        done.wait()

    def _cancel_jobs_locked(self) -> None:
        self._tick_next = None
        if not self._loop or not self._scheduler:
            return

        done = Event()

        def _cancel() -> None:
            if self._scheduler:
                self._scheduler.remove_all_jobs()
            done.set()

        if self._loop.is_running():
            self._loop.call_soon_threadsafe(_cancel)
            done.wait()
        else:
            _cancel()

    def _on_job_event(self, event: JobEvent) -> None:
        if event.job_id != TICK_JOB:
            return
        scheduler = self._scheduler
        job = scheduler.get_job(TICK_JOB) if scheduler else None
        self._tick_next = job.next_run_time if job else None
