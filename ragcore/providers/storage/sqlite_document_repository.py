"""SQLite-backed document repository.

Stores documents in the ``documents`` table and their audit trail in the
append-only ``processing_log`` table.  Uses ``aiosqlite`` with one short
connection per operation.

The processing claim is a database-level compare-and-swap: the status read,
the conditional ``UPDATE`` and the ``ocr/started`` log append all run
inside one ``BEGIN IMMEDIATE`` transaction, which takes SQLite's write lock
up front.  Two concurrent callers (threads, tasks or processes) can never
both observe a claimable status.
"""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any
from uuid import uuid4

import aiosqlite
import structlog

from ragcore.interfaces.document_repository import IDocumentRepository
from ragcore.models.document import (
    Document,
    DocumentPage,
    DocumentType,
    LogStatus,
    NewDocument,
    ProcessingLogEntry,
    ProcessingStage,
    ProcessingStatus,
)
from ragcore.providers.storage._sqlite import (
    connect,
    dumps,
    from_iso,
    initialize_schema,
    to_iso,
    utcnow_iso,
)
from ragcore.utils.errors import (
    AlreadyCompletedError,
    AlreadyProcessingError,
    NotFoundError,
    StorageError,
    ValidationError,
)

logger = structlog.get_logger(logger_name=__name__)

_DOCUMENT_COLUMNS = (
    "id, organization_id, collection_id, title, filename, storage_locator, file_size, "
    "mime_type, document_type, language, tags, processing_status, extracted_metadata, "
    "content_hash, ocr_confidence, extracted_text, cancelled_at, cancel_acknowledged_at, "
    "created_at, updated_at, processed_at"
)

_INSERT_DOCUMENT_SQL = f"""\
INSERT INTO documents ({_DOCUMENT_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_INSERT_LOG_SQL = """\
INSERT INTO processing_log (document_id, stage, status, message, error, duration_ms, timestamp)
VALUES (?, ?, ?, ?, ?, ?, ?);
"""

_MAX_PAGE_SIZE = 100


def _log_params(document_id: str, entry: ProcessingLogEntry) -> tuple[Any, ...]:
    return (
        document_id,
        entry.stage.value,
        entry.status.value,
        entry.message,
        entry.error,
        entry.duration_ms,
        to_iso(entry.timestamp),
    )


class SQLiteDocumentRepository(IDocumentRepository):
    """Document persistence over SQLite."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        await initialize_schema(self._db_path)

    def get_provider_name(self) -> str:
        return "sqlite"

    def _storage_error(self, action: str, exc: Exception, document_id: str | None = None):
        return StorageError(
            f"Document {action} failed: {exc}",
            document_id=document_id,
            provider_name=self.get_provider_name(),
        )

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create(self, new_document: NewDocument) -> Document:
        now = utcnow_iso()
        document_id = str(uuid4())
        upload_entry = ProcessingLogEntry(
            stage=ProcessingStage.UPLOAD,
            status=LogStatus.COMPLETED,
            message="Document uploaded",
        )
        try:
            async with connect(self._db_path) as db:
                await db.execute(
                    _INSERT_DOCUMENT_SQL,
                    (
                        document_id,
                        new_document.organization_id,
                        new_document.collection_id,
                        new_document.title,
                        new_document.filename,
                        new_document.storage_locator,
                        new_document.file_size,
                        new_document.mime_type,
                        new_document.document_type.value,
                        new_document.language,
                        dumps(new_document.tags),
                        ProcessingStatus.UPLOADED.value,
                        dumps(new_document.extracted_metadata),
                        new_document.content_hash,
                        None,
                        None,
                        None,
                        None,
                        now,
                        now,
                        None,
                    ),
                )
                await db.execute(_INSERT_LOG_SQL, _log_params(document_id, upload_entry))
                await db.commit()
        except aiosqlite.Error as exc:
            raise self._storage_error("create", exc) from exc

        logger.info(
            "document_created",
            document_id=document_id,
            title=new_document.title,
            mime_type=new_document.mime_type,
        )
        return await self.get(document_id)

    async def get(self, document_id: str) -> Document:
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(
                    f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", (document_id,)
                )
                row = await cursor.fetchone()
                if row is None:
                    raise NotFoundError(f"Document {document_id} not found")
                cursor = await db.execute(
                    "SELECT stage, status, message, error, duration_ms, timestamp "
                    "FROM processing_log WHERE document_id = ? ORDER BY id",
                    (document_id,),
                )
                log_rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise self._storage_error("fetch", exc, document_id) from exc
        return self._row_to_document(row, log_rows)

    async def list_documents(
        self,
        organization_id: str | None = None,
        collection_id: str | None = None,
        document_type: DocumentType | None = None,
        status: ProcessingStatus | None = None,
        language: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> DocumentPage:
        if page < 1:
            raise ValidationError("page must be at least 1", parameter="page")
        if not 1 <= page_size <= _MAX_PAGE_SIZE:
            raise ValidationError(
                f"page_size must be between 1 and {_MAX_PAGE_SIZE}", parameter="page_size"
            )

        where: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("organization_id", organization_id),
            ("collection_id", collection_id),
            ("document_type", DocumentType(document_type).value if document_type else None),
            ("processing_status", ProcessingStatus(status).value if status else None),
            ("language", language),
        ):
            if value is not None:
                where.append(f"{column} = ?")
                params.append(value)
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""

        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(
                    f"SELECT COUNT(*) AS n FROM documents {where_sql}", tuple(params)
                )
                total = int((await cursor.fetchone())["n"])
                cursor = await db.execute(
                    f"SELECT id FROM documents {where_sql} "
                    "ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
                    (*params, page_size, (page - 1) * page_size),
                )
                ids = [r["id"] for r in await cursor.fetchall()]
        except aiosqlite.Error as exc:
            raise self._storage_error("listing", exc) from exc

        documents = [await self.get(doc_id) for doc_id in ids]
        return DocumentPage(
            documents=documents,
            current_page=page,
            total_pages=math.ceil(total / page_size) if total else 0,
            total_items=total,
            items_per_page=page_size,
        )

    async def update(
        self,
        document_id: str,
        *,
        title: str | None = None,
        document_type: DocumentType | None = None,
        language: str | None = None,
        tags: list[str] | None = None,
    ) -> Document:
        assignments: list[str] = []
        params: list[Any] = []
        if title is not None:
            title = title.strip()
            if not title or len(title) > 255:
                raise ValidationError(
                    "Document title must be 1-255 non-blank characters", parameter="title"
                )
            assignments.append("title = ?")
            params.append(title)
        if document_type is not None:
            assignments.append("document_type = ?")
            params.append(DocumentType(document_type).value)
        if language is not None:
            assignments.append("language = ?")
            params.append(language)
        if tags is not None:
            assignments.append("tags = ?")
            params.append(dumps(tags))

        if assignments:
            assignments.append("updated_at = ?")
            params.append(utcnow_iso())
            try:
                async with connect(self._db_path) as db:
                    cursor = await db.execute(
                        f"UPDATE documents SET {', '.join(assignments)} WHERE id = ?",
                        (*params, document_id),
                    )
                    await db.commit()
                    updated = cursor.rowcount
            except aiosqlite.Error as exc:
                raise self._storage_error("update", exc, document_id) from exc
            if updated == 0:
                raise NotFoundError(f"Document {document_id} not found")
            logger.info("document_updated", document_id=document_id, fields=len(assignments) - 1)

        return await self.get(document_id)

    async def delete(self, document_id: str) -> None:
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute("DELETE FROM documents WHERE id = ?", (document_id,))
                await db.commit()
                deleted = cursor.rowcount
        except aiosqlite.Error as exc:
            raise self._storage_error("delete", exc, document_id) from exc
        if deleted == 0:
            raise NotFoundError(f"Document {document_id} not found")
        logger.info("document_deleted", document_id=document_id)

    async def get_text(self, document_id: str) -> str | None:
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(
                    "SELECT extracted_text FROM documents WHERE id = ?", (document_id,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise self._storage_error("text fetch", exc, document_id) from exc
        if row is None:
            raise NotFoundError(f"Document {document_id} not found")
        return row["extracted_text"]

    async def status_counts(self) -> dict[str, int]:
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(
                    "SELECT processing_status, COUNT(*) AS n FROM documents "
                    "GROUP BY processing_status"
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise self._storage_error("statistics", exc) from exc
        counts = {status.value: 0 for status in ProcessingStatus}
        counts.update({row["processing_status"]: int(row["n"]) for row in rows})
        return counts

    # ------------------------------------------------------------------
    # Processing state
    # ------------------------------------------------------------------

    async def claim_for_processing(self, document_id: str, force: bool = False) -> Document:
        started = ProcessingLogEntry.started(ProcessingStage.OCR, message="Processing started")
        now = utcnow_iso()
        try:
            async with connect(self._db_path) as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    cursor = await db.execute(
                        "SELECT processing_status, cancel_acknowledged_at FROM documents "
                        "WHERE id = ?",
                        (document_id,),
                    )
                    row = await cursor.fetchone()
                    if row is None:
                        raise NotFoundError(f"Document {document_id} not found")

                    current = ProcessingStatus(row["processing_status"])
                    # A processing document is only free once its run has stopped and
                    # recorded the cancellation; a bare request leaves the run in flight.
                    released = row["cancel_acknowledged_at"] is not None
                    if current is ProcessingStatus.PROCESSING and not released:
                        raise AlreadyProcessingError(
                            "Document is already being processed", document_id=document_id
                        )
                    if current is ProcessingStatus.COMPLETED and not force:
                        raise AlreadyCompletedError(
                            "Document has already been processed; pass force to reprocess",
                            document_id=document_id,
                        )

                    cursor = await db.execute(
                        "UPDATE documents SET processing_status = ?, cancelled_at = NULL, "
                        "cancel_acknowledged_at = NULL, updated_at = ? "
                        "WHERE id = ? AND processing_status = ?",
                        (ProcessingStatus.PROCESSING.value, now, document_id, current.value),
                    )
                    if cursor.rowcount != 1:
                        raise AlreadyProcessingError(
                            "Document was claimed concurrently", document_id=document_id
                        )
                    await db.execute(_INSERT_LOG_SQL, _log_params(document_id, started))
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
        except aiosqlite.Error as exc:
            raise self._storage_error("claim", exc, document_id) from exc

        logger.info(
            "document_claimed",
            document_id=document_id,
            previous_status=current.value,
            force=force,
        )
        return await self.get(document_id)

    async def append_log(self, document_id: str, entry: ProcessingLogEntry) -> None:
        try:
            async with connect(self._db_path) as db:
                await db.execute(_INSERT_LOG_SQL, _log_params(document_id, entry))
                await db.execute(
                    "UPDATE documents SET updated_at = ? WHERE id = ?",
                    (utcnow_iso(), document_id),
                )
                await db.commit()
        except aiosqlite.IntegrityError as exc:
            raise NotFoundError(f"Document {document_id} not found") from exc
        except aiosqlite.Error as exc:
            raise self._storage_error("log append", exc, document_id) from exc

    async def merge_metadata(self, document_id: str, patch: dict[str, Any]) -> None:
        """Merge *patch* into ``extracted_metadata`` (RFC 7396: a ``None`` value removes the key)."""
        await self._update_one(
            document_id,
            "extracted_metadata = json_patch(extracted_metadata, ?), updated_at = ?",
            (dumps(patch), utcnow_iso()),
            action="metadata merge",
        )

    async def set_extracted_text(
        self,
        document_id: str,
        text: str,
        confidence: float | None,
        content_hash: str | None = None,
    ) -> None:
        await self._update_one(
            document_id,
            "extracted_text = ?, ocr_confidence = ?, "
            "content_hash = COALESCE(?, content_hash), updated_at = ?",
            (text, confidence, content_hash, utcnow_iso()),
            action="text update",
        )

    async def mark_completed(self, document_id: str) -> Document:
        now = utcnow_iso()
        await self._transition(
            document_id,
            ProcessingStatus.COMPLETED,
            "processed_at = ?, cancelled_at = NULL, cancel_acknowledged_at = NULL, ",
            (now,),
        )
        return await self.get(document_id)

    async def mark_failed(self, document_id: str) -> Document:
        await self._transition(document_id, ProcessingStatus.FAILED, "", ())
        return await self.get(document_id)

    async def mark_cancelled(self, document_id: str) -> bool:
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(
                    "UPDATE documents SET cancelled_at = ?, updated_at = ? "
                    "WHERE id = ? AND processing_status = ? AND cancel_acknowledged_at IS NULL",
                    (utcnow_iso(), utcnow_iso(), document_id, ProcessingStatus.PROCESSING.value),
                )
                await db.commit()
                updated = cursor.rowcount
        except aiosqlite.Error as exc:
            raise self._storage_error("cancellation", exc, document_id) from exc
        if updated == 0:
            # Distinguish "not processing" from "does not exist".
            await self.get(document_id)
            return False
        logger.info("document_cancellation_requested", document_id=document_id)
        return True

    async def is_cancelled(self, document_id: str) -> bool:
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(
                    "SELECT cancelled_at FROM documents WHERE id = ?", (document_id,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise self._storage_error("cancellation check", exc, document_id) from exc
        if row is None:
            raise NotFoundError(f"Document {document_id} not found")
        return row["cancelled_at"] is not None

    async def acknowledge_cancellation(self, document_id: str, entry: ProcessingLogEntry) -> None:
        """Append the run's ``cancelled`` entry and release the document for reclaiming.

        Both writes share one transaction, so a claim never sees a released
        document whose log is missing the cancellation.
        """
        now = utcnow_iso()
        try:
            async with connect(self._db_path) as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    cursor = await db.execute(
                        "UPDATE documents SET cancel_acknowledged_at = ?, updated_at = ? "
                        "WHERE id = ? AND processing_status = ? AND cancelled_at IS NOT NULL "
                        "AND cancel_acknowledged_at IS NULL",
                        (now, now, document_id, ProcessingStatus.PROCESSING.value),
                    )
                    if cursor.rowcount != 1:
                        raise StorageError(
                            "No pending cancellation to acknowledge",
                            document_id=document_id,
                            provider_name=self.get_provider_name(),
                        )
                    await db.execute(_INSERT_LOG_SQL, _log_params(document_id, entry))
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
        except aiosqlite.Error as exc:
            raise self._storage_error("cancellation acknowledgement", exc, document_id) from exc
        logger.info(
            "document_cancellation_acknowledged", document_id=document_id, stage=entry.stage.value
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _update_one(
        self, document_id: str, assignments: str, params: tuple[Any, ...], action: str
    ) -> None:
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(
                    f"UPDATE documents SET {assignments} WHERE id = ?", (*params, document_id)
                )
                await db.commit()
                updated = cursor.rowcount
        except aiosqlite.Error as exc:
            raise self._storage_error(action, exc, document_id) from exc
        if updated == 0:
            raise NotFoundError(f"Document {document_id} not found")

    async def _transition(
        self,
        document_id: str,
        target: ProcessingStatus,
        extra_assignments: str,
        extra_params: tuple[Any, ...],
    ) -> None:
        """Move ``processing`` -> *target*; any other current status is a conflict."""
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute(
                    f"UPDATE documents SET processing_status = ?, {extra_assignments}"
                    "updated_at = ? WHERE id = ? AND processing_status = ?",
                    (
                        target.value,
                        *extra_params,
                        utcnow_iso(),
                        document_id,
                        ProcessingStatus.PROCESSING.value,
                    ),
                )
                await db.commit()
                updated = cursor.rowcount
        except aiosqlite.Error as exc:
            raise self._storage_error("status transition", exc, document_id) from exc
        if updated == 0:
            document = await self.get(document_id)
            raise StorageError(
                f"Cannot move document from {document.processing_status.value} "
                f"to {target.value}",
                document_id=document_id,
                provider_name=self.get_provider_name(),
            )
        logger.info("document_status_changed", document_id=document_id, status=target.value)

    @staticmethod
    def _row_to_document(row: aiosqlite.Row, log_rows: list[aiosqlite.Row]) -> Document:
        log = [
            ProcessingLogEntry(
                timestamp=from_iso(r["timestamp"]),
                stage=ProcessingStage(r["stage"]),
                status=LogStatus(r["status"]),
                message=r["message"],
                error=r["error"],
                duration_ms=r["duration_ms"],
            )
            for r in log_rows
        ]
        return Document(
            id=row["id"],
            organization_id=row["organization_id"],
            collection_id=row["collection_id"],
            title=row["title"],
            filename=row["filename"],
            storage_locator=row["storage_locator"],
            file_size=row["file_size"],
            mime_type=row["mime_type"],
            document_type=DocumentType(row["document_type"]),
            language=row["language"],
            tags=json.loads(row["tags"] or "[]"),
            processing_status=ProcessingStatus(row["processing_status"]),
            processing_log=log,
            extracted_metadata=json.loads(row["extracted_metadata"] or "{}"),
            content_hash=row["content_hash"],
            ocr_confidence=row["ocr_confidence"],
            extracted_text=row["extracted_text"],
            cancelled_at=from_iso(row["cancelled_at"]),
            cancel_acknowledged_at=from_iso(row["cancel_acknowledged_at"]),
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
            processed_at=from_iso(row["processed_at"]),
        )
