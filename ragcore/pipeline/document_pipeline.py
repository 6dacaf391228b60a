"""Document processing state machine: upload -> processing -> completed|failed.

Drives one document through five sequential stages::

    claim  ->  ocr  ->  chunking  ->  (dedup)  ->  embedding  ->  indexing

ARCHITECTURE NOTE:
    The only process-independent guard against two concurrent runs of the
    same document is the repository's ``claim_for_processing``, an atomic
    compare-and-swap on the stored status.  Nothing in this class keeps an
    in-memory "currently processing" map, so the guard holds across
    workers and across instances sharing the database.

    Failure policy differs per stage:
        - ocr:        fatal.  Document -> failed, error re-raised, no chunk
                      storage is touched.
        - embedding:  degraded.  Failures are recorded in
                      ``extracted_metadata`` (``vector_processed=false``) and
                      the run still completes; the text stays available.
        - indexing:   fatal.  The upsert loop stops at the first
                      StorageError, rows already written are kept (dedup
                      makes a retry idempotent), document -> failed.

    Cancellation is cooperative.  ``request_cancellation`` only stamps the
    document; the running pipeline notices at the next stage boundary and
    acknowledges it, appending a ``cancelled`` log entry in the same write.
    The status stays ``processing``.  Only an acknowledged document can be
    reclaimed by a later ``start_processing``, so a request alone never lets
    a second run start beside the first.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import structlog
from structlog.contextvars import bound_contextvars

from ragcore.models.chunk import CHUNK_LEVELS, CHUNK_SECTIONS, DocumentChunk, TextChunk
from ragcore.models.document import (
    Document,
    LogStatus,
    ProcessingLogEntry,
    ProcessingOutcome,
    ProcessingStage,
    ProcessingStatus,
    ProcessingStatusReport,
)
from ragcore.pipeline.retry_policy import RetryPolicy
from ragcore.utils.concurrency import throttled_gather
from ragcore.utils.errors import (
    EmbeddingDegradedError,
    EmbeddingError,
    ExtractionFailedError,
    NotFoundError,
    PipelineStageError,
    StorageError,
)
from ragcore.utils.logging import get_logger

if TYPE_CHECKING:
    from ragcore.interfaces.chunk_store import IChunkStore
    from ragcore.interfaces.document_repository import IDocumentRepository
    from ragcore.interfaces.embedding_provider import IEmbeddingProvider
    from ragcore.models.extraction import ExtractionResult
    from ragcore.services.chunker import TextChunker
    from ragcore.services.deduplicator import ContentDeduplicator
    from ragcore.services.extraction_service import ExtractionService


class _Cancelled(Exception):
    """Internal signal: cancellation was observed before *stage*."""

    def __init__(self, stage: ProcessingStage) -> None:
        super().__init__(stage.value)
        self.stage = stage


class DocumentPipeline:
    """Idempotent, at-most-once-in-flight document processing.

    All collaborators are injected; the pipeline never creates them.
    """

    def __init__(
        self,
        repository: IDocumentRepository,
        extraction_service: ExtractionService,
        chunker: TextChunker,
        deduplicator: ContentDeduplicator,
        embedding_provider: IEmbeddingProvider,
        chunk_store: IChunkStore,
        retry_policy: RetryPolicy | None = None,
        embedding_concurrency: int = 4,
    ) -> None:
        self._repository = repository
        self._extraction_service = extraction_service
        self._chunker = chunker
        self._deduplicator = deduplicator
        self._embedding_provider = embedding_provider
        self._chunk_store = chunk_store
        self._retry_policy = retry_policy or RetryPolicy()
        self._embedding_concurrency = max(1, embedding_concurrency)
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start_processing(self, document_id: str, force: bool = False) -> ProcessingOutcome:
        """Claim *document_id* and run it to a terminal state.

        Parameters
        ----------
        document_id:
            The document to process.
        force:
            Reprocess a ``completed`` document.  Chunks from the previous
            pass that the new text no longer produces are deleted once the
            new pass has stored its own.

        Returns
        -------
        ProcessingOutcome
            Final status and chunk counts.  ``cancelled=True`` means the run
            stopped at a stage boundary and the document is still
            ``processing``.

        Raises
        ------
        NotFoundError
            The document does not exist.
        AlreadyProcessingError / AlreadyCompletedError
            The claim was refused; the processing log is untouched.
        ExtractionFailedError
            Text extraction failed (``UnsupportedMediaTypeError`` for an
            unhandled MIME type); the document is now ``failed``.
        StorageError
            Persisting chunks failed; the document is now ``failed``.
        """
        with bound_contextvars(document_id=document_id):
            started = time.perf_counter()
            document = await self._repository.claim_for_processing(document_id, force=force)
            attempt = sum(
                1
                for entry in document.processing_log
                if entry.stage is ProcessingStage.OCR and entry.status is LogStatus.STARTED
            )
            self._logger.info("processing_started", attempt=attempt, force=force)
            try:
                outcome = await self._run(document)
            except _Cancelled as cancelled:
                await self._repository.acknowledge_cancellation(
                    document_id, ProcessingLogEntry.cancelled(cancelled.stage)
                )
                self._logger.info("processing_cancelled", stage=cancelled.stage.value)
                outcome = ProcessingOutcome(
                    document_id=document_id,
                    status=ProcessingStatus.PROCESSING,
                    cancelled=True,
                )
            except StorageError as exc:
                await self._fail(document_id, exc.stage or ProcessingStage.INDEXING.value, exc)
                raise

            elapsed_ms = int((time.perf_counter() - started) * 1000)
            self._logger.info(
                "processing_finished",
                status=outcome.status.value,
                chunk_count=outcome.chunk_count,
                chunks_created=outcome.chunks_created,
                vector_processed=outcome.vector_processed,
                elapsed_ms=elapsed_ms,
            )
            return outcome.model_copy(update={"elapsed_ms": elapsed_ms})

    async def request_cancellation(self, document_id: str) -> bool:
        """Ask an in-flight run of *document_id* to stop at its next stage boundary.

        Returns ``False`` when the document is not currently processing.
        """
        return await self._repository.mark_cancelled(document_id)

    async def get_status(self, document_id: str) -> ProcessingStatusReport:
        """Summarise processing progress for *document_id*."""
        document = await self._repository.get(document_id)
        chunks_created = await self._chunk_store.count(document_id)

        started_at = None
        for entry in reversed(document.processing_log):
            if entry.stage is ProcessingStage.OCR and entry.status is LogStatus.STARTED:
                started_at = entry.timestamp
                break

        return ProcessingStatusReport(
            document_id=document.id,
            title=document.title,
            processing_status=document.processing_status,
            progress_percentage=document.progress_percentage,
            error_message=document.last_error(),
            chunks_created=chunks_created,
            processing_started_at=started_at,
            processing_completed_at=document.processed_at,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run(self, document: Document) -> ProcessingOutcome:
        # Storage errors are attributed to the stage the run was in.
        stage = ProcessingStage.OCR
        try:
            extraction = await self._extract(document)

            stage = ProcessingStage.CHUNKING
            await self._check_cancelled(document.id, ProcessingStage.CHUNKING)
            text_chunks = await self._chunk(document, extraction.text)

            # Dedup decides what gets embedded, so it belongs to the embedding stage.
            stage = ProcessingStage.EMBEDDING
            unique = self._deduplicator.collapse(text_chunks, lambda chunk: chunk.text)
            new, known = await self._deduplicator.partition(unique, self._chunk_store)
            if known:
                await self._chunk_store.touch([fp for _, fp in known])
            self._logger.info(
                "dedup_complete",
                chunk_count=len(text_chunks),
                in_run_duplicates=len(text_chunks) - len(unique),
                already_stored=len(known),
                to_embed=len(new),
            )

            await self._check_cancelled(document.id, ProcessingStage.EMBEDDING)
            embedded, degraded = await self._embed(document, new)

            stage = ProcessingStage.INDEXING
            await self._check_cancelled(document.id, ProcessingStage.INDEXING)
            created, upsert_hits = await self._index(document, embedded, extraction)
            # Rows kept from an earlier pass take this pass's positions.
            await self._chunk_store.reposition(
                document.id,
                [_stored_chunk(document, chunk, fp, extraction) for chunk, fp in known],
            )
            await self._chunk_store.delete_stale(document.id, {fp for _, fp in unique})

            outcome = ProcessingOutcome(
                document_id=document.id,
                status=ProcessingStatus.COMPLETED,
                chunk_count=len(text_chunks),
                chunks_created=created,
                chunks_deduplicated=(len(text_chunks) - len(unique)) + len(known) + upsert_hits,
                total_tokens=sum(chunk.token_count for chunk in text_chunks),
                vector_processed=degraded is None,
                vector_error=degraded.message if degraded else None,
                extracted_text_length=len(extraction.text),
            )
            await self._repository.merge_metadata(
                document.id,
                {
                    "chunk_count": outcome.chunk_count,
                    "chunks_created": outcome.chunks_created,
                    "chunks_deduplicated": outcome.chunks_deduplicated,
                    "total_tokens": outcome.total_tokens,
                    "vector_processed": outcome.vector_processed,
                    "vector_error": outcome.vector_error,
                    "vector_failed_chunks": degraded.failed_chunks if degraded else None,
                },
            )
            await self._repository.mark_completed(document.id)
        except StorageError as exc:
            raise exc.with_context(document.id, stage.value)
        return outcome

    async def _extract(self, document: Document) -> ExtractionResult:
        started_entry = _last_started(document, ProcessingStage.OCR)
        try:
            result = await self._retry_policy.call(
                self._extraction_service.extract,
                document.storage_locator,
                document.mime_type,
            )
        except ExtractionFailedError as exc:
            await self._fail(document.id, ProcessingStage.OCR.value, exc)
            raise exc.with_context(document.id, ProcessingStage.OCR.value)
        except (OSError, ValueError) as exc:
            error = ExtractionFailedError(
                f"Text extraction failed: {exc}",
                document_id=document.id,
            )
            await self._fail(document.id, ProcessingStage.OCR.value, error)
            raise error from exc

        await self._repository.set_extracted_text(document.id, result.text, result.confidence)
        await self._repository.merge_metadata(
            document.id,
            {
                "ocr_confidence": result.confidence,
                "extraction_provider": result.provider,
                "extracted_text_length": len(result.text),
                "extraction": result.metadata,
            },
        )
        await self._repository.append_log(
            document.id,
            ProcessingLogEntry.completed(
                ProcessingStage.OCR,
                started_entry,
                message=f"Extracted {len(result.text)} characters via {result.provider}",
            ),
        )
        self._logger.info(
            "ocr_complete",
            provider=result.provider,
            chars=len(result.text),
            confidence=round(result.confidence, 4),
        )
        return result

    async def _chunk(self, document: Document, text: str) -> list[TextChunk]:
        started_entry = ProcessingLogEntry.started(ProcessingStage.CHUNKING)
        await self._repository.append_log(document.id, started_entry)

        chunks = self._chunker.split(text)

        await self._repository.append_log(
            document.id,
            ProcessingLogEntry.completed(
                ProcessingStage.CHUNKING,
                started_entry,
                message=f"Created {len(chunks)} chunks",
            ),
        )
        self._logger.info(
            "chunking_complete",
            chunk_count=len(chunks),
            chunk_types=sorted({chunk.chunk_type.value for chunk in chunks}),
        )
        return chunks

    async def _embed(
        self, document: Document, new: list[tuple[TextChunk, str]]
    ) -> tuple[list[tuple[TextChunk, str, list[float]]], EmbeddingDegradedError | None]:
        """Embed *new* chunks concurrently; failures degrade instead of raising."""
        started_entry = ProcessingLogEntry.started(ProcessingStage.EMBEDDING)
        await self._repository.append_log(document.id, started_entry)

        results = await throttled_gather(
            [self._retry_policy.call(self._embed_one, chunk.text) for chunk, _ in new],
            limit=self._embedding_concurrency,
        )

        embedded: list[tuple[TextChunk, str, list[float]]] = []
        errors: list[BaseException] = []
        for (chunk, fp), result in zip(new, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                errors.append(result)
                continue
            embedded.append((chunk, fp, result))

        if not errors:
            await self._repository.append_log(
                document.id,
                ProcessingLogEntry.completed(
                    ProcessingStage.EMBEDDING,
                    started_entry,
                    message=f"Embedded {len(embedded)} chunks",
                ),
            )
            return embedded, None

        degraded = EmbeddingDegradedError(
            f"{len(errors)} of {len(new)} chunks could not be embedded: {errors[0]}",
            failed_chunks=len(errors),
            document_id=document.id,
            provider_name=self._embedding_provider.get_provider_name(),
        )
        await self._repository.append_log(
            document.id,
            ProcessingLogEntry.failed(
                ProcessingStage.EMBEDDING,
                error=str(errors[0]),
                message=degraded.message,
            ),
        )
        self._logger.warning(
            "embedding_degraded",
            failed_chunks=len(errors),
            embedded_chunks=len(embedded),
            error=str(errors[0]),
        )
        return embedded, degraded

    async def _embed_one(self, text: str) -> list[float]:
        vector = await self._embedding_provider.embed_single(text)
        dimension = self._chunk_store.get_dimension()
        if len(vector) != dimension:
            raise EmbeddingError(
                f"Embedding has dimension {len(vector)}, expected {dimension}",
                transient=False,
                provider_name=self._embedding_provider.get_provider_name(),
            )
        return vector

    async def _index(
        self,
        document: Document,
        embedded: list[tuple[TextChunk, str, list[float]]],
        extraction: ExtractionResult,
    ) -> tuple[int, int]:
        """Upsert embedded chunks in index order; returns ``(created, dedup_hits)``."""
        started_entry = ProcessingLogEntry.started(ProcessingStage.INDEXING)
        await self._repository.append_log(document.id, started_entry)

        created = 0
        hits = 0
        model = self._embedding_provider.get_provider_name()
        for chunk, fp, vector in sorted(embedded, key=lambda item: item[0].index):
            stored = _stored_chunk(document, chunk, fp, extraction, vector, model)
            # StorageError propagates to start_processing, which fails the run.
            if await self._chunk_store.upsert_chunk(stored):
                created += 1
            else:
                hits += 1

        await self._repository.append_log(
            document.id,
            ProcessingLogEntry.completed(
                ProcessingStage.INDEXING,
                started_entry,
                message=f"Stored {created} new chunks, {hits} already present",
            ),
        )
        self._logger.info("indexing_complete", chunks_created=created, dedup_hits=hits)
        return created, hits

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _check_cancelled(self, document_id: str, next_stage: ProcessingStage) -> None:
        if await self._repository.is_cancelled(document_id):
            raise _Cancelled(next_stage)

    async def _fail(self, document_id: str, stage: str, exc: PipelineStageError) -> None:
        """Move the document to ``failed`` and record the failing stage.

        The log entry is only written once the ``processing -> failed``
        transition succeeded; a document that has left ``processing`` (or
        has been deleted) is no longer this run's to annotate.
        """
        self._logger.error("processing_failed", stage=stage, error=str(exc))
        try:
            await self._repository.mark_failed(document_id)
        except (StorageError, NotFoundError) as state_exc:
            # The original failure is what the caller needs to see.
            self._logger.error("failure_not_recorded", stage=stage, error=str(state_exc))
            return
        try:
            await self._repository.append_log(
                document_id,
                ProcessingLogEntry.failed(ProcessingStage(stage), error=exc.message),
            )
        except StorageError as storage_exc:
            self._logger.error("failure_not_recorded", stage=stage, error=str(storage_exc))


def _last_started(document: Document, stage: ProcessingStage) -> ProcessingLogEntry | None:
    for entry in reversed(document.processing_log):
        if entry.stage is stage and entry.status is LogStatus.STARTED:
            return entry
    return None


def _stored_chunk(
    document: Document,
    chunk: TextChunk,
    fingerprint: str,
    extraction: ExtractionResult,
    vector: list[float] | None = None,
    model: str = "",
) -> DocumentChunk:
    return DocumentChunk(
        document_id=document.id,
        chunk_index=chunk.index,
        chunk_text=chunk.text,
        chunk_type=chunk.chunk_type,
        token_count=chunk.token_count,
        confidence_score=extraction.confidence,
        embedding=vector or [],
        embedding_model=model,
        content_hash=fingerprint,
        metadata=_chunk_metadata(document, chunk),
    )


def _chunk_metadata(document: Document, chunk: TextChunk) -> dict[str, Any]:
    return {
        "section": CHUNK_SECTIONS[chunk.chunk_type],
        "chunk_level": CHUNK_LEVELS[chunk.chunk_type].value,
        "language": document.language,
        "source": document.filename,
        "overlap_length": chunk.overlap_length,
        "char_count": len(chunk.text),
        "tags": list(document.tags),
    }
