"""Shared SQLite plumbing for the document repository and the chunk store.

Both adapters live in one database file so ``chunks.document_id`` can
reference ``documents.id`` with ``ON DELETE CASCADE``.  Every connection
enables foreign keys and a busy timeout; WAL journaling is switched on
once at schema creation and persists in the file.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

logger = structlog.get_logger(logger_name=__name__)

_BUSY_TIMEOUT_MS = 5000

_SCHEMA_SQL = [
    """\
CREATE TABLE IF NOT EXISTS documents (
    id                  TEXT    PRIMARY KEY,
    organization_id     TEXT    NOT NULL,
    collection_id       TEXT    NOT NULL,
    title               TEXT    NOT NULL,
    filename            TEXT    NOT NULL,
    storage_locator     TEXT    NOT NULL,
    file_size           INTEGER NOT NULL,
    mime_type           TEXT    NOT NULL,
    document_type       TEXT    NOT NULL DEFAULT 'other',
    language            TEXT    NOT NULL DEFAULT 'en',
    tags                TEXT    NOT NULL DEFAULT '[]',
    processing_status   TEXT    NOT NULL DEFAULT 'uploaded',
    extracted_metadata  TEXT    NOT NULL DEFAULT '{}',
    content_hash        TEXT,
    ocr_confidence      REAL,
    extracted_text      TEXT,
    cancelled_at        TEXT,
    cancel_acknowledged_at TEXT,
    created_at          TEXT    NOT NULL,
    updated_at          TEXT    NOT NULL,
    processed_at        TEXT
);
""",
    """\
CREATE TABLE IF NOT EXISTS processing_log (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id  TEXT    NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    stage        TEXT    NOT NULL,
    status       TEXT    NOT NULL,
    message      TEXT,
    error        TEXT,
    duration_ms  INTEGER,
    timestamp    TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS chunks (
    id                TEXT    PRIMARY KEY,
    document_id       TEXT    NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    chunk_index       INTEGER NOT NULL,
    chunk_text        TEXT    NOT NULL,
    chunk_type        TEXT    NOT NULL DEFAULT 'content',
    token_count       INTEGER NOT NULL DEFAULT 0,
    confidence_score  REAL,
    embedding         BLOB,
    embedding_model   TEXT    NOT NULL DEFAULT '',
    content_hash      TEXT    NOT NULL UNIQUE,
    metadata          TEXT    NOT NULL DEFAULT '{}',
    created_at        TEXT    NOT NULL,
    updated_at        TEXT    NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS idx_documents_scope ON documents(organization_id, collection_id);",
    "CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(processing_status);",
    "CREATE INDEX IF NOT EXISTS idx_log_document ON processing_log(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id, chunk_index);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_type ON chunks(chunk_type);",
]

# Columns added after the first schema version: (table, column, definition).
_ADDED_COLUMNS = [
    ("documents", "cancel_acknowledged_at", "TEXT"),
]


def utcnow_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()  # noqa: UP017


def to_iso(value: datetime | None) -> str | None:
    """Serialise *value* as an ISO-8601 UTC string; naive datetimes are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)  # noqa: UP017
    return value.astimezone(timezone.utc).isoformat()  # noqa: UP017


def from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def dumps(value: Any) -> str:
    return json.dumps(value, default=str)


@asynccontextmanager
async def connect(db_path: Path) -> AsyncIterator[aiosqlite.Connection]:
    """Open a connection with foreign keys, busy timeout and ``Row`` factory."""
    async with aiosqlite.connect(str(db_path)) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys = ON;")
        await db.execute(f"PRAGMA busy_timeout = {_BUSY_TIMEOUT_MS};")
        yield db


async def initialize_schema(db_path: Path) -> None:
    """Create all tables and indices if they don't exist (idempotent)."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with connect(db_path) as db:
        await db.execute("PRAGMA journal_mode = WAL;")
        for statement in _SCHEMA_SQL:
            await db.execute(statement)
        for table, column, definition in _ADDED_COLUMNS:
            cursor = await db.execute(f"PRAGMA table_info({table});")
            existing = {row["name"] for row in await cursor.fetchall()}
            if column not in existing:
                await db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition};")
                logger.info("sqlite_column_added", table=table, column=column)
        await db.commit()
    logger.info("sqlite_schema_initialized", path=str(db_path))
