"""
History Repository - SQLite persistence for the history store

Two tables:
- history_items: one row per ClipboardItem (result regions and tags as JSON)
- history_images: capture bytes, content-addressed by image_ref

Image rows are shared between items with the same capture and removed when
no item references them any more.
"""
import json
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import bindparam, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from smartshot.common.config import Settings, get_settings
from smartshot.history.store import ClipboardItem
from smartshot.ocr.base import BackendKind, OcrResult, Rect, TextRegion
from smartshot.ocr.errors import ErrorKind, OcrFailure

logger = structlog.get_logger()

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS history_images (
        image_ref TEXT PRIMARY KEY,
        data BLOB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS history_items (
        id TEXT PRIMARY KEY,
        image_ref TEXT NOT NULL REFERENCES history_images (image_ref),
        content_hash TEXT NOT NULL,
        text TEXT NOT NULL,
        confidence REAL NOT NULL,
        backend TEXT NOT NULL,
        elapsed_seconds REAL NOT NULL DEFAULT 0,
        attempts INTEGER NOT NULL DEFAULT 1,
        fallback_used INTEGER NOT NULL DEFAULT 0,
        regions TEXT NOT NULL DEFAULT '[]',
        warnings TEXT NOT NULL DEFAULT '[]',
        error_kind TEXT,
        error_message TEXT,
        tags TEXT NOT NULL DEFAULT '[]',
        pinned INTEGER NOT NULL DEFAULT 0,
        note TEXT,
        title TEXT NOT NULL DEFAULT '',
        copy_count INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        last_accessed_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_history_items_content_hash ON history_items (content_hash)",
    "CREATE INDEX IF NOT EXISTS ix_history_items_created_at ON history_items (created_at)",
]


def _regions_to_json(regions: List[TextRegion]) -> str:
    return json.dumps([
        {
            "text": r.text,
            "confidence": r.confidence,
            "bbox": [r.bbox.x, r.bbox.y, r.bbox.width, r.bbox.height] if r.bbox else None,
            "language": r.language,
        }
        for r in regions
    ])


def _regions_from_json(raw: str) -> List[TextRegion]:
    regions = []
    for entry in json.loads(raw or "[]"):
        bbox = entry.get("bbox")
        regions.append(TextRegion(
            text=entry["text"],
            confidence=entry["confidence"],
            bbox=Rect(*bbox) if bbox else None,
            language=entry.get("language"),
        ))
    return regions


class HistoryRepository:
    """
    Synchronous SQLAlchemy repository for history items.

    Called by HistoryStore while it holds its writer lock.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> "HistoryRepository":
        """Repository on a SQLAlchemy URL; "sqlite://" is an in-memory database"""
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(database_url, connect_args={"check_same_thread": False})
        repository = cls(engine)
        repository.create_schema()
        return repository

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> Optional["HistoryRepository"]:
        """Repository at HISTORY_DB_PATH, or None when persistence is disabled"""
        settings = settings or get_settings()
        if not settings.history_db_path:
            return None
        return cls.from_url(f"sqlite:///{settings.history_db_path}")

    def create_schema(self) -> None:
        with self.engine.begin() as conn:
            for statement in _SCHEMA:
                conn.execute(text(statement))
        logger.debug("history_schema_ready", url=str(self.engine.url))

    def save(self, item: ClipboardItem, image_bytes: bytes) -> None:
        """Insert or replace an item (and its image, if not stored yet)"""
        result = item.result
        with self.engine.begin() as conn:
            conn.execute(
                text("""
                    INSERT OR IGNORE INTO history_images (image_ref, data)
                    VALUES (:image_ref, :data)
                """),
                {"image_ref": item.image_ref, "data": image_bytes},
            )
            conn.execute(
                text("""
                    INSERT OR REPLACE INTO history_items (
                        id, image_ref, content_hash,
                        text, confidence, backend, elapsed_seconds, attempts, fallback_used,
                        regions, warnings, error_kind, error_message,
                        tags, pinned, note, title, copy_count,
                        created_at, last_accessed_at
                    ) VALUES (
                        :id, :image_ref, :content_hash,
                        :text, :confidence, :backend, :elapsed_seconds, :attempts, :fallback_used,
                        :regions, :warnings, :error_kind, :error_message,
                        :tags, :pinned, :note, :title, :copy_count,
                        :created_at, :last_accessed_at
                    )
                """),
                {
                    "id": item.id,
                    "image_ref": item.image_ref,
                    "content_hash": item.content_hash,
                    "text": result.text,
                    "confidence": result.confidence,
                    "backend": result.backend.value,
                    "elapsed_seconds": result.elapsed_seconds,
                    "attempts": result.attempts,
                    "fallback_used": int(result.fallback_used),
                    "regions": _regions_to_json(result.regions),
                    "warnings": json.dumps(result.warnings),
                    "error_kind": result.error.kind.value if result.error else None,
                    "error_message": result.error.message if result.error else None,
                    "tags": json.dumps(sorted(item.tags)),
                    "pinned": int(item.pinned),
                    "note": item.note,
                    "title": item.title,
                    "copy_count": item.copy_count,
                    "created_at": item.created_at.isoformat(),
                    "last_accessed_at": item.last_accessed_at.isoformat(),
                },
            )

    def delete(self, item_id: str) -> None:
        self.delete_many([item_id])

    def delete_many(self, item_ids: Iterable[str]) -> int:
        ids = list(item_ids)
        if not ids:
            return 0
        with self.engine.begin() as conn:
            deleted = conn.execute(
                text("DELETE FROM history_items WHERE id IN :ids").bindparams(
                    bindparam("ids", expanding=True)),
                {"ids": ids},
            ).rowcount
            self._drop_orphan_images(conn)
        logger.debug("history_rows_deleted", count=deleted)
        return deleted

    def clear(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(text("DELETE FROM history_items"))
            conn.execute(text("DELETE FROM history_images"))

    def load_all(self) -> List[Tuple[ClipboardItem, bytes]]:
        """Every stored item with its image bytes, oldest first"""
        with self.engine.connect() as conn:
            rows = conn.execute(text("""
                SELECT i.*, img.data AS image_data
                FROM history_items i
                JOIN history_images img ON img.image_ref = i.image_ref
                ORDER BY i.created_at, i.rowid
            """)).fetchall()

        loaded = []
        for row in rows:
            m = row._mapping
            error = None
            if m["error_kind"]:
                error = OcrFailure(kind=ErrorKind(m["error_kind"]), message=m["error_message"] or "")
            result = OcrResult(
                regions=_regions_from_json(m["regions"]),
                text=m["text"],
                confidence=m["confidence"],
                backend=BackendKind(m["backend"]),
                elapsed_seconds=m["elapsed_seconds"],
                error=error,
                attempts=m["attempts"],
                fallback_used=bool(m["fallback_used"]),
                warnings=json.loads(m["warnings"] or "[]"),
            )
            item = ClipboardItem(
                id=m["id"],
                image_ref=m["image_ref"],
                result=result,
                content_hash=m["content_hash"],
                tags=frozenset(json.loads(m["tags"] or "[]")),
                pinned=bool(m["pinned"]),
                note=m["note"],
                created_at=datetime.fromisoformat(m["created_at"]),
                last_accessed_at=datetime.fromisoformat(m["last_accessed_at"]),
                copy_count=m["copy_count"],
                title=m["title"],
            )
            loaded.append((item, bytes(m["image_data"])))

        logger.debug("history_rows_loaded", count=len(loaded))
        return loaded

    @staticmethod
    def _drop_orphan_images(conn) -> None:
        conn.execute(text("""
            DELETE FROM history_images
            WHERE image_ref NOT IN (SELECT image_ref FROM history_items)
        """))
