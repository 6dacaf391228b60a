"""SQLite-backed chunk store with numpy cosine similarity search.

Chunks live in the ``chunks`` table with a UNIQUE ``content_hash`` column;
embeddings are stored as little-endian float32 blobs.  Similarity search
pre-filters candidates in SQL (joined to ``documents`` for scope, category
and date filters), then scores them in one vectorised numpy pass.

Scoring::

    similarity    = max(0, cos(query, chunk))                  # in [0, 1]
    recency_bonus = recency_bonus_cap * 0.5 ** (age_days / half_life)
    order         = (-(similarity + recency_bonus), chunk_index, document_id, id)

The threshold is applied to ``similarity`` alone, so raising it can only
remove matches.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import numpy as np
import structlog

from ragcore.interfaces.chunk_store import IChunkStore
from ragcore.models.chunk import ChunkType, DocumentChunk
from ragcore.models.document import DocumentType
from ragcore.models.retrieval import (
    ScoredChunk,
    SearchFilters,
    StoreSearchResult,
    validate_limit,
    validate_threshold,
)
from ragcore.providers.storage._sqlite import (
    connect,
    dumps,
    from_iso,
    initialize_schema,
    to_iso,
    utcnow_iso,
)
from ragcore.utils.errors import StorageError, ValidationError

logger = structlog.get_logger(logger_name=__name__)

_INSERT_SQL = """\
INSERT INTO chunks (
    id, document_id, chunk_index, chunk_text, chunk_type, token_count,
    confidence_score, embedding, embedding_model, content_hash, metadata,
    created_at, updated_at
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(content_hash) DO NOTHING;
"""

_TOUCH_SQL = "UPDATE chunks SET updated_at = ? WHERE content_hash = ?;"

_REPOSITION_SQL = """\
UPDATE chunks
SET chunk_index = ?, chunk_type = ?, token_count = ?, metadata = ?, updated_at = ?
WHERE content_hash = ? AND document_id = ?;
"""

_CHUNK_COLUMNS = (
    "c.id, c.document_id, c.chunk_index, c.chunk_text, c.chunk_type, c.token_count, "
    "c.confidence_score, c.embedding, c.embedding_model, c.content_hash, c.metadata, "
    "c.created_at, c.updated_at"
)

_SECONDS_PER_DAY = 86_400.0


def _placeholders(values: list[Any]) -> str:
    return ", ".join("?" for _ in values)


class SQLiteChunkStore(IChunkStore):
    """Chunk persistence and similarity query over SQLite.

    Parameters
    ----------
    db_path:
        Database file shared with the document repository.
    dimension:
        The deployment's fixed embedding dimension.
    recency_bonus_cap:
        Largest bonus ``boost_recent`` can add (for a chunk created now).
    recency_half_life_days:
        Age at which the recency bonus has halved.
    """

    def __init__(
        self,
        db_path: str | Path,
        dimension: int,
        recency_bonus_cap: float = 0.02,
        recency_half_life_days: float = 30.0,
    ) -> None:
        self._db_path = Path(db_path)
        self._dimension = dimension
        self._recency_bonus_cap = recency_bonus_cap
        self._half_life_days = recency_half_life_days

    async def initialize(self) -> None:
        await initialize_schema(self._db_path)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_chunk(self, chunk: DocumentChunk) -> bool:
        self._check_dimension(chunk.embedding, parameter="embedding")
        blob = np.asarray(chunk.embedding, dtype="<f4").tobytes()
        now = utcnow_iso()
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(
                    _INSERT_SQL,
                    (
                        chunk.id,
                        chunk.document_id,
                        chunk.chunk_index,
                        chunk.chunk_text,
                        chunk.chunk_type.value,
                        chunk.token_count,
                        chunk.confidence_score,
                        blob,
                        chunk.embedding_model,
                        chunk.content_hash,
                        dumps(chunk.metadata),
                        to_iso(chunk.created_at),
                        now,
                    ),
                )
                created = cursor.rowcount == 1
                if not created:
                    await db.execute(_TOUCH_SQL, (now, chunk.content_hash))
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Chunk upsert failed: {exc}",
                document_id=chunk.document_id,
                stage="indexing",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.debug(
            "chunk_upserted",
            document_id=chunk.document_id,
            chunk_index=chunk.chunk_index,
            created=created,
        )
        return created

    async def touch(self, fingerprints: list[str]) -> int:
        if not fingerprints:
            return 0
        now = utcnow_iso()
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(
                    f"UPDATE chunks SET updated_at = ? "
                    f"WHERE content_hash IN ({_placeholders(fingerprints)})",
                    (now, *fingerprints),
                )
                await db.commit()
                return cursor.rowcount
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Chunk touch failed: {exc}", provider_name=self.get_provider_name()
            ) from exc

    async def reposition(self, document_id: str, chunks: list[DocumentChunk]) -> int:
        if not chunks:
            return 0
        now = utcnow_iso()
        moved = 0
        try:
            async with connect(self._db_path) as db:
                for chunk in chunks:
                    cursor = await db.execute(
                        _REPOSITION_SQL,
                        (
                            chunk.chunk_index,
                            chunk.chunk_type.value,
                            chunk.token_count,
                            dumps(chunk.metadata),
                            now,
                            chunk.content_hash,
                            document_id,
                        ),
                    )
                    moved += cursor.rowcount
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Chunk reposition failed: {exc}",
                document_id=document_id,
                stage="indexing",
                provider_name=self.get_provider_name(),
            ) from exc
        if moved:
            logger.info("chunks_repositioned", document_id=document_id, moved=moved)
        return moved

    async def delete_stale(self, document_id: str, keep_fingerprints: set[str]) -> int:
        keep = sorted(keep_fingerprints)
        sql = "DELETE FROM chunks WHERE document_id = ?"
        if keep:
            sql += f" AND content_hash NOT IN ({_placeholders(keep)})"
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(sql, (document_id, *keep))
                await db.commit()
                deleted = cursor.rowcount
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Stale chunk cleanup failed: {exc}",
                document_id=document_id,
                stage="indexing",
                provider_name=self.get_provider_name(),
            ) from exc
        if deleted:
            logger.info("stale_chunks_deleted", document_id=document_id, deleted=deleted)
        return deleted

    async def delete_by_document(self, document_id: str) -> int:
        return await self.delete_stale(document_id, set())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def existing_fingerprints(self, fingerprints: list[str]) -> set[str]:
        if not fingerprints:
            return set()
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(
                    f"SELECT content_hash FROM chunks "
                    f"WHERE content_hash IN ({_placeholders(fingerprints)})",
                    tuple(fingerprints),
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Fingerprint lookup failed: {exc}", provider_name=self.get_provider_name()
            ) from exc
        return {row["content_hash"] for row in rows}

    async def get_chunks(self, document_id: str) -> list[DocumentChunk]:
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(
                    f"SELECT {_CHUNK_COLUMNS} FROM chunks c "
                    "WHERE c.document_id = ? ORDER BY c.chunk_index, c.id",
                    (document_id,),
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Chunk fetch failed: {exc}", provider_name=self.get_provider_name()
            ) from exc
        return [self._row_to_chunk(row) for row in rows]

    async def count(self, document_id: str | None = None) -> int:
        sql = "SELECT COUNT(*) AS n FROM chunks"
        params: tuple[Any, ...] = ()
        if document_id is not None:
            sql += " WHERE document_id = ?"
            params = (document_id,)
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(sql, params)
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Chunk count failed: {exc}", provider_name=self.get_provider_name()
            ) from exc
        return int(row["n"]) if row else 0

    async def count_by_type(self) -> dict[str, int]:
        """Return stored chunk counts keyed by chunk type."""
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(
                    "SELECT chunk_type, COUNT(*) AS n FROM chunks GROUP BY chunk_type"
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Chunk statistics failed: {exc}", provider_name=self.get_provider_name()
            ) from exc
        return {row["chunk_type"]: int(row["n"]) for row in rows}

    # ------------------------------------------------------------------
    # Similarity search
    # ------------------------------------------------------------------

    async def similarity_search(
        self,
        query_embedding: list[float],
        filters: SearchFilters | None = None,
        threshold: float = 0.7,
        limit: int = 10,
        boost_recent: bool = False,
    ) -> StoreSearchResult:
        validate_limit(limit)
        validate_threshold(threshold)
        self._check_dimension(query_embedding, parameter="query_embedding")
        filters = filters or SearchFilters()

        where, params = self._build_where(filters)
        sql = (
            f"SELECT {_CHUNK_COLUMNS}, d.document_type AS document_type, "
            f"d.created_at AS document_created_at "
            f"FROM chunks c JOIN documents d ON d.id = c.document_id "
            f"WHERE {' AND '.join(where)}"
        )
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(sql, tuple(params))
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Similarity search failed: {exc}", provider_name=self.get_provider_name()
            ) from exc

        candidates = [r for r in rows if len(r["embedding"]) == self._dimension * 4]
        if len(candidates) != len(rows):
            logger.warning(
                "chunks_with_foreign_dimension_skipped",
                skipped=len(rows) - len(candidates),
                dimension=self._dimension,
            )
        if not candidates:
            return StoreSearchResult(matches=[], candidate_count=0, above_threshold_count=0)

        similarities = self._cosine_similarities(query_embedding, candidates)
        now = datetime.now(tz=timezone.utc)  # noqa: UP017

        scored: list[tuple[tuple[float, int, str, str], ScoredChunk]] = []
        for row, similarity in zip(candidates, similarities):
            if similarity < threshold:
                continue
            chunk = self._row_to_chunk(row)
            bonus = self._recency_bonus(chunk.created_at, now) if boost_recent else 0.0
            match = ScoredChunk(
                chunk=chunk,
                similarity=similarity,
                recency_bonus=bonus,
                document_type=DocumentType(row["document_type"]),
                document_created_at=from_iso(row["document_created_at"]),
            )
            key = (-(similarity + bonus), chunk.chunk_index, chunk.document_id, chunk.id)
            scored.append((key, match))

        scored.sort(key=lambda pair: pair[0])
        matches = [match for _, match in scored[:limit]]

        logger.debug(
            "similarity_search_complete",
            candidates=len(candidates),
            above_threshold=len(scored),
            returned=len(matches),
            threshold=threshold,
        )
        return StoreSearchResult(
            matches=matches,
            candidate_count=len(candidates),
            above_threshold_count=len(scored),
        )

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "sqlite"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_dimension(self, vector: list[float], parameter: str) -> None:
        if len(vector) != self._dimension:
            raise ValidationError(
                f"{parameter} has dimension {len(vector)}, expected {self._dimension}",
                parameter=parameter,
                provider_name=self.get_provider_name(),
            )

    @staticmethod
    def _build_where(filters: SearchFilters) -> tuple[list[str], list[Any]]:
        """Translate *filters* into conjunctive SQL clauses over ``c`` / ``d``."""
        where = ["c.embedding IS NOT NULL"]
        params: list[Any] = []

        if filters.organization_id:
            where.append("d.organization_id = ?")
            params.append(filters.organization_id)
        if filters.collection_ids:
            where.append(f"d.collection_id IN ({_placeholders(filters.collection_ids)})")
            params.extend(filters.collection_ids)
        if filters.document_ids:
            where.append(f"c.document_id IN ({_placeholders(filters.document_ids)})")
            params.extend(filters.document_ids)
        if filters.content_types:
            where.append(f"c.chunk_type IN ({_placeholders(filters.content_types)})")
            params.extend(ChunkType(t).value for t in filters.content_types)
        if filters.categories:
            where.append(f"d.document_type IN ({_placeholders(filters.categories)})")
            params.extend(DocumentType(c).value for c in filters.categories)
        if filters.tags:
            where.append(
                "EXISTS (SELECT 1 FROM json_each(c.metadata, '$.tags') AS t "
                f"WHERE t.value IN ({_placeholders(filters.tags)}))"
            )
            params.extend(filters.tags)
        if filters.date_range is not None:
            if filters.date_range.start is not None:
                where.append("d.created_at >= ?")
                params.append(to_iso(filters.date_range.start))
            if filters.date_range.end is not None:
                where.append("d.created_at <= ?")
                params.append(to_iso(filters.date_range.end))
        return where, params

    @staticmethod
    def _cosine_similarities(query: list[float], rows: list[aiosqlite.Row]) -> list[float]:
        """Return ``max(0, cos)`` of *query* against every row's embedding."""
        matrix = np.vstack([np.frombuffer(r["embedding"], dtype="<f4") for r in rows]).astype(
            np.float64
        )
        q = np.asarray(query, dtype=np.float64)
        q_norm = np.linalg.norm(q)
        row_norms = np.linalg.norm(matrix, axis=1)
        denom = row_norms * q_norm
        with np.errstate(divide="ignore", invalid="ignore"):
            cos = np.where(denom > 0, (matrix @ q) / denom, 0.0)
        return np.clip(cos, 0.0, 1.0).tolist()

    def _recency_bonus(self, created_at: datetime, now: datetime) -> float:
        if self._recency_bonus_cap <= 0:
            return 0.0
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)  # noqa: UP017
        age_days = max(0.0, (now - created_at).total_seconds() / _SECONDS_PER_DAY)
        if self._half_life_days <= 0:
            return 0.0
        return self._recency_bonus_cap * 0.5 ** (age_days / self._half_life_days)

    @staticmethod
    def _row_to_chunk(row: aiosqlite.Row) -> DocumentChunk:
        blob = row["embedding"]
        embedding = np.frombuffer(blob, dtype="<f4").tolist() if blob else []
        return DocumentChunk(
            id=row["id"],
            document_id=row["document_id"],
            chunk_index=row["chunk_index"],
            chunk_text=row["chunk_text"],
            chunk_type=ChunkType(row["chunk_type"]),
            token_count=row["token_count"],
            confidence_score=row["confidence_score"],
            embedding=embedding,
            embedding_model=row["embedding_model"],
            content_hash=row["content_hash"],
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
        )

