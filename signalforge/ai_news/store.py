"""Persistence helpers for the AI news pipeline."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .config import AINewsConfig
from .ingest.models import (
    ScoredSignal,
    SignalSource,
    SignalStatus,
    canonical_url,
    metadata_from_json,
    tags_from_json,
)

log = logging.getLogger("signalforge.store")

CREATE_STATEMENTS: Iterable[str] = (
    """
    CREATE TABLE IF NOT EXISTS signals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        signal_id TEXT NOT NULL,
        source TEXT NOT NULL,
        title TEXT NOT NULL,
        url TEXT NOT NULL,
        author TEXT,
        summary TEXT,
        tags_json TEXT,
        metadata_json TEXT,
        published_at TEXT NOT NULL,
        score REAL NOT NULL DEFAULT 0,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        published_on TEXT,
        published_article_id TEXT,
        published_entry_id TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_signals_url
    ON signals(url)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_signals_signal_id
    ON signals(signal_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value_json TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS errors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        ts TEXT NOT NULL,
        module TEXT NOT NULL,
        message TEXT NOT NULL,
        details_json TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS identities (
        id TEXT PRIMARY KEY,
        display_name TEXT NOT NULL,
        role TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS titles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT,
        category TEXT NOT NULL,
        created_by TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        content TEXT NOT NULL,
        type TEXT NOT NULL,
        media_json TEXT,
        created_at TEXT NOT NULL
    )
    """,
)


@dataclass
class SignalDatabase:
    """Lightweight SQLite wrapper used by the backend."""

    path: Path

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self) -> "SignalDatabase":
        with self.connect() as conn:
            for statement in CREATE_STATEMENTS:
                conn.execute(statement)
            conn.commit()
        return self

    def get_setting(self, key: str, default: Optional[Any] = None) -> Any:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT value_json FROM settings WHERE key = ?", (key,)
            ).fetchone()
            if not row:
                return default
            return json.loads(row["value_json"])

    def put_setting(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        now = datetime.now(timezone.utc).isoformat()
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO settings(key, value_json, updated_at)
                VALUES(?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value_json=excluded.value_json,
                    updated_at=excluded.updated_at
                """,
                (key, payload, now),
            )
            conn.commit()

    def list_settings(self) -> Dict[str, Any]:
        with self.connect() as conn:
            cursor = conn.execute("SELECT key, value_json FROM settings")
            return {row["key"]: json.loads(row["value_json"]) for row in cursor.fetchall()}

    def health_snapshot(self) -> Dict[str, Any]:
        with self.connect() as conn:
            counts = {}
            for table in ("signals", "titles", "entries", "errors"):
                counts[table] = conn.execute(
                    f"SELECT COUNT(*) FROM {table}"
                ).fetchone()[0]
            status_rows = conn.execute(
                "SELECT status, COUNT(*) AS total FROM signals GROUP BY status"
            ).fetchall()
            error_row = conn.execute(
                "SELECT module, message, ts FROM errors ORDER BY id DESC LIMIT 1"
            ).fetchone()
        return {
            "counts": counts,
            "signals_by_status": {row["status"]: row["total"] for row in status_rows},
            "last_error": dict(error_row) if error_row else None,
        }

    def record_error(
        self,
        module: str,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        payload = json.dumps(details, default=str) if details is not None else None
        now = datetime.now(timezone.utc).isoformat()
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO errors(ts, module, message, details_json)
                VALUES(?, ?, ?, ?)
                """,
                (now, module, message, payload),
            )
            conn.commit()

    def list_errors(self, *, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        sql = "SELECT id, ts, module, message, details_json FROM errors ORDER BY id DESC"
        params: List[Any] = []
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self.connect() as conn:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]


@dataclass
class StoredSignal:
    """A persisted signal record with its lifecycle state."""

    row_id: int
    signal: ScoredSignal
    status: SignalStatus
    created_at: datetime
    published_article_id: Optional[str] = None
    published_entry_id: Optional[str] = None


class SignalStore:
    """Durable ledger of ingested signals.

    Signals are snapshotted with ``status=new`` after scoring, flipped to
    ``published`` by the publisher, and never deleted."""

    def __init__(self, database: SignalDatabase) -> None:
        self.database = database

    def save(
        self,
        signals: Iterable[ScoredSignal],
        status: SignalStatus | str = SignalStatus.NEW,
        *,
        created_at: Optional[datetime] = None,
    ) -> int:
        state = SignalStatus(status)
        created = _ensure_iso(created_at or datetime.now(timezone.utc))
        saved = 0
        failures: List[tuple[str, str]] = []
        with self.database.connect() as conn:
            for signal in signals:
                try:
                    row = signal.to_row()
                    conn.execute(
                        """
                        INSERT INTO signals(
                            signal_id, source, title, url, author, summary,
                            tags_json, metadata_json, published_at, score,
                            status, created_at
                        )
                        VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            row["signal_id"],
                            row["source"],
                            row["title"],
                            row["url"],
                            row["author"],
                            row["summary"],
                            row["tags_json"],
                            row["metadata_json"],
                            row["published_at"],
                            row.get("score", 0.0),
                            state.value,
                            created,
                        ),
                    )
                except (sqlite3.Error, TypeError, ValueError) as exc:
                    log.warning("could not save signal %s: %s", signal.id, exc)
                    failures.append((signal.id, str(exc)))
                    continue
                saved += 1
            conn.commit()
        self._record_failures("store.save", failures)
        return saved

    def exists_by_url(self, url: str) -> bool:
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT id FROM signals WHERE url = ? LIMIT 1",
                (canonical_url(url),),
            ).fetchone()
            return bool(row)

    def list_pending(self, limit: Optional[int] = 50) -> List[ScoredSignal]:
        return [record.signal for record in self.list_records(SignalStatus.NEW, limit=limit)]

    def list_records(
        self,
        status: Optional[SignalStatus | str] = None,
        *,
        limit: Optional[int] = None,
    ) -> List[StoredSignal]:
        sql = ["SELECT * FROM signals"]
        params: List[Any] = []
        if status is not None:
            sql.append("WHERE status = ?")
            params.append(SignalStatus(status).value)
        sql.append("ORDER BY created_at DESC, score DESC, id ASC")
        if limit is not None:
            sql.append("LIMIT ?")
            params.append(int(limit))
        with self.database.connect() as conn:
            rows = conn.execute("\n".join(sql), params).fetchall()
        return [_row_to_record(row) for row in rows]

    def get_by_ids(self, signal_ids: Sequence[str]) -> List[ScoredSignal]:
        """Return the newest unpublished record per id, in the order of
        ``signal_ids``. Ids that are unknown or already published are skipped."""

        found: Dict[str, ScoredSignal] = {}
        with self.database.connect() as conn:
            for signal_id in signal_ids:
                row = conn.execute(
                    "SELECT * FROM signals WHERE signal_id = ? AND status = ?"
                    " ORDER BY id DESC LIMIT 1",
                    (signal_id, SignalStatus.NEW.value),
                ).fetchone()
                if row is not None:
                    found[signal_id] = _row_to_record(row).signal
        return [found[item] for item in signal_ids if item in found]

    def mark_published(
        self,
        signal_ids: Sequence[str],
        mapping: Mapping[str, Mapping[str, str]],
        *,
        published_on: Optional[datetime] = None,
    ) -> int:
        stamp = _ensure_iso(published_on or datetime.now(timezone.utc))
        updated = 0
        failures: List[tuple[str, str]] = []
        with self.database.connect() as conn:
            for signal_id in signal_ids:
                refs = mapping.get(signal_id) or {}
                try:
                    cursor = conn.execute(
                        """
                        UPDATE signals SET
                            status = ?,
                            published_on = ?,
                            published_article_id = ?,
                            published_entry_id = ?
                        WHERE signal_id = ?
                        """,
                        (
                            SignalStatus.PUBLISHED.value,
                            stamp,
                            refs.get("article_id"),
                            refs.get("entry_id"),
                            signal_id,
                        ),
                    )
                except sqlite3.Error as exc:
                    log.warning("could not mark %s published: %s", signal_id, exc)
                    failures.append((signal_id, str(exc)))
                    continue
                updated += cursor.rowcount
            conn.commit()
        self._record_failures("store.mark_published", failures)
        return updated

    def _record_failures(self, module: str, failures: Sequence[tuple[str, str]]) -> None:
        # written after the batch commits so the error log never waits on its lock
        for signal_id, message in failures:
            self.database.record_error(
                module=module, message=message, details={"signal_id": signal_id}
            )


class SettingsRepository:
    """Adapter to map settings records onto pydantic config models."""

    SETTINGS_KEY = "ai_news.config"

    def __init__(
        self,
        database: SignalDatabase,
        *,
        defaults: Optional[AINewsConfig] = None,
    ) -> None:
        self.database = database
        self.database.initialize()
        self._defaults = defaults

    def load(self) -> AINewsConfig:
        raw = self.database.get_setting(self.SETTINGS_KEY)
        if raw is None:
            config = self.default_config()
            self.save(config)
            return config
        return AINewsConfig.model_validate(raw)

    def save(self, config: AINewsConfig) -> AINewsConfig:
        payload = config.model_dump()
        self.database.put_setting(self.SETTINGS_KEY, payload)
        return config

    def default_config(self) -> AINewsConfig:
        if self._defaults is not None:
            return self._defaults.model_copy(deep=True)
        return AINewsConfig()

    def config_schema(self) -> Dict[str, Any]:
        return AINewsConfig.model_json_schema()

    def apply_patch(self, patch: Mapping[str, Any]) -> AINewsConfig:
        current = self.load().model_dump()
        merged = self._merge_dict(current, patch)
        config = AINewsConfig.model_validate(merged)
        self.save(config)
        return config

    def export_raw(self) -> Dict[str, Any]:
        return self.database.list_settings()

    def _merge_dict(self, base: Dict[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = dict(base)
        for key, value in patch.items():
            if (
                isinstance(value, Mapping)
                and key in result
                and isinstance(result[key], dict)
            ):
                result[key] = self._merge_dict(result[key], value)
            else:
                result[key] = value
        return result


def _ensure_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _row_to_record(row: sqlite3.Row) -> StoredSignal:
    signal = ScoredSignal(
        source=SignalSource(row["source"]),
        title=row["title"],
        url=row["url"],
        author=row["author"],
        summary=row["summary"],
        tags=tags_from_json(row["tags_json"]),
        metadata=metadata_from_json(row["metadata_json"]),
        published_at=_parse_iso(row["published_at"]),
        id=row["signal_id"],
        score=float(row["score"] or 0.0),
    )
    return StoredSignal(
        row_id=row["id"],
        signal=signal,
        status=SignalStatus(row["status"]),
        created_at=_parse_iso(row["created_at"]),
        published_article_id=row["published_article_id"],
        published_entry_id=row["published_entry_id"],
    )
