"""SQLite storage adapters.

Both adapters share one database file:
    1. SQLiteDocumentRepository : documents + append-only processing_log.
    2. SQLiteChunkStore         : chunks with float32 embeddings and the
       UNIQUE content fingerprint that makes upserts idempotent.
"""

from ragcore.providers.storage.sqlite_chunk_store import SQLiteChunkStore
from ragcore.providers.storage.sqlite_document_repository import SQLiteDocumentRepository

__all__ = ["SQLiteChunkStore", "SQLiteDocumentRepository"]
