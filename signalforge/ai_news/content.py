"""Content-store and identity collaborators used by the publisher.

The publisher only depends on the two protocols below. The SQLite-backed
implementations keep a standalone deployment self-contained; a hosted
content store plugs in by implementing the same methods."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Protocol

from .errors import IdentityError
from .store import SignalDatabase

log = logging.getLogger("signalforge.content")

EntryType = Literal["text", "image", "video"]


@dataclass(frozen=True)
class Identity:
    id: str
    display_name: str
    role: str = "bot"


@dataclass(frozen=True)
class MediaDescriptor:
    type: Literal["image", "video"]
    url: str
    thumbnail: Optional[str] = None


@dataclass(frozen=True)
class TitleFields:
    title: str
    category: str
    created_by: str
    description: Optional[str] = None


@dataclass(frozen=True)
class EntryFields:
    title_id: str
    user_id: str
    content: str
    type: EntryType = "text"
    media: Optional[MediaDescriptor] = None


@dataclass(frozen=True)
class ContentRef:
    id: str


class ContentStore(Protocol):
    def create_title(self, fields: TitleFields) -> ContentRef: ...

    def create_entry(self, fields: EntryFields) -> ContentRef: ...


class IdentityProvider(Protocol):
    def initialize_automated_identity(self) -> Identity: ...

    def sign_in_as(self, identity: Identity) -> None: ...


class SQLiteContentStore:
    """Titles and entries kept in the pipeline's own database."""

    def __init__(self, database: SignalDatabase) -> None:
        self._database = database

    def create_title(self, fields: TitleFields) -> ContentRef:
        title = fields.title.strip()
        if not title:
            raise ValueError("title must not be empty")
        with self._database.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO titles(title, description, category, created_by, created_at)
                VALUES(?, ?, ?, ?, ?)
                """,
                (
                    title,
                    fields.description,
                    fields.category,
                    fields.created_by,
                    _now_iso(),
                ),
            )
            conn.commit()
            return ContentRef(id=str(cursor.lastrowid))

    def create_entry(self, fields: EntryFields) -> ContentRef:
        if not fields.content.strip():
            raise ValueError("entry content must not be empty")
        media_json = json.dumps(asdict(fields.media)) if fields.media else None
        with self._database.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO entries(title_id, user_id, content, type, media_json, created_at)
                VALUES(?, ?, ?, ?, ?, ?)
                """,
                (
                    fields.title_id,
                    fields.user_id,
                    fields.content,
                    fields.type,
                    media_json,
                    _now_iso(),
                ),
            )
            conn.commit()
            return ContentRef(id=str(cursor.lastrowid))

    def list_titles(self) -> List[Dict[str, Any]]:
        with self._database.connect() as conn:
            rows = conn.execute("SELECT * FROM titles ORDER BY id").fetchall()
        return [dict(row) for row in rows]

    def list_entries(self, title_id: Optional[str] = None) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM entries"
        params: List[Any] = []
        if title_id is not None:
            sql += " WHERE title_id = ?"
            params.append(str(title_id))
        sql += " ORDER BY id"
        with self._database.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        entries = []
        for row in rows:
            item = dict(row)
            raw_media = item.pop("media_json", None)
            item["media"] = json.loads(raw_media) if raw_media else None
            entries.append(item)
        return entries


class LocalIdentityProvider:
    """Provisions a single automated-content identity, once."""

    ROLE = "bot"

    def __init__(
        self,
        database: SignalDatabase,
        *,
        display_name: str = "AI Content Bot",
    ) -> None:
        self._database = database
        self._display_name = display_name
        self._cached: Optional[Identity] = None
        self.current: Optional[Identity] = None

    def initialize_automated_identity(self) -> Identity:
        if self._cached is not None:
            return self._cached
        with self._database.connect() as conn:
            row = conn.execute(
                "SELECT id, display_name, role FROM identities WHERE role = ? ORDER BY created_at LIMIT 1",
                (self.ROLE,),
            ).fetchone()
            if row is None:
                identity = Identity(id=uuid.uuid4().hex, display_name=self._display_name, role=self.ROLE)
                conn.execute(
                    "INSERT INTO identities(id, display_name, role, created_at) VALUES(?, ?, ?, ?)",
                    (identity.id, identity.display_name, identity.role, _now_iso()),
                )
                conn.commit()
                log.info("provisioned automated identity %s", identity.id)
            else:
                identity = Identity(id=row["id"], display_name=row["display_name"], role=row["role"])
        self._cached = identity
        return identity

    def sign_in_as(self, identity: Identity) -> None:
        with self._database.connect() as conn:
            row = conn.execute(
                "SELECT id FROM identities WHERE id = ?", (identity.id,)
            ).fetchone()
        if row is None:
            raise IdentityError(f"unknown identity {identity.id}")
        self.current = identity


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
