"""Unit tests for SQLiteDocumentRepository: CRUD, processing claims and the audit log."""

from __future__ import annotations

import asyncio

import aiosqlite
import pytest

from ragcore.models.document import (
    DocumentType,
    LogStatus,
    ProcessingLogEntry,
    ProcessingStage,
    ProcessingStatus,
)
from ragcore.providers.storage._sqlite import _SCHEMA_SQL
from ragcore.providers.storage.sqlite_document_repository import SQLiteDocumentRepository
from ragcore.utils.errors import (
    AlreadyCompletedError,
    AlreadyProcessingError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from tests.fakes import make_new_document

# ─── Create / read ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_starts_uploaded_with_upload_entry(repository) -> None:
    document = await repository.create(make_new_document(tags=["a", "b"]))

    assert document.processing_status is ProcessingStatus.UPLOADED
    assert document.tags == ["a", "b"]
    assert document.document_type is DocumentType.TECHNICAL
    assert len(document.processing_log) == 1
    entry = document.processing_log[0]
    assert (entry.stage, entry.status) == (ProcessingStage.UPLOAD, LogStatus.COMPLETED)
    assert document.progress_percentage == 20
    assert document.processed_at is None
    assert document.extracted_text is None


@pytest.mark.asyncio
async def test_get_missing_raises(repository) -> None:
    with pytest.raises(NotFoundError):
        await repository.get("does-not-exist")


@pytest.mark.asyncio
async def test_get_text(repository) -> None:
    document = await repository.create(make_new_document())
    assert await repository.get_text(document.id) is None

    await repository.set_extracted_text(document.id, "Body", 0.8, content_hash="abc")

    assert await repository.get_text(document.id) == "Body"
    stored = await repository.get(document.id)
    assert stored.ocr_confidence == pytest.approx(0.8)
    assert stored.content_hash == "abc"

    # A later call without a hash keeps the stored one.
    await repository.set_extracted_text(document.id, "Body 2", 0.9)
    assert (await repository.get(document.id)).content_hash == "abc"


# ─── Listing ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_paginates_newest_first(repository) -> None:
    created = [await repository.create(make_new_document(title=f"Doc {i}")) for i in range(3)]

    first = await repository.list_documents(page=1, page_size=2)
    second = await repository.list_documents(page=2, page_size=2)

    assert first.total_items == 3
    assert first.total_pages == 2
    assert [d.id for d in first.documents] == [created[2].id, created[1].id]
    assert [d.id for d in second.documents] == [created[0].id]


@pytest.mark.asyncio
async def test_list_filters(repository) -> None:
    await repository.create(make_new_document(collection_id="a"))
    await repository.create(
        make_new_document(collection_id="b", document_type=DocumentType.SAFETY)
    )

    assert (await repository.list_documents(collection_id="a")).total_items == 1
    safety = await repository.list_documents(document_type=DocumentType.SAFETY)
    assert [d.collection_id for d in safety.documents] == ["b"]
    assert (await repository.list_documents(status=ProcessingStatus.FAILED)).total_items == 0


@pytest.mark.asyncio
async def test_list_empty(repository) -> None:
    page = await repository.list_documents()
    assert page.documents == []
    assert page.total_pages == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("page", "page_size", "parameter"),
    [(0, 20, "page"), (1, 0, "page_size"), (1, 101, "page_size")],
)
async def test_list_validates_paging(repository, page, page_size, parameter) -> None:
    with pytest.raises(ValidationError) as excinfo:
        await repository.list_documents(page=page, page_size=page_size)
    assert excinfo.value.parameter == parameter


# ─── Update / delete ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_update_fields(repository) -> None:
    document = await repository.create(make_new_document())

    updated = await repository.update(
        document.id, title="  Renamed  ", document_type=DocumentType.REGULATORY, tags=["x"]
    )

    assert updated.title == "Renamed"
    assert updated.document_type is DocumentType.REGULATORY
    assert updated.tags == ["x"]
    assert updated.updated_at >= document.updated_at


@pytest.mark.asyncio
@pytest.mark.parametrize("title", ["", "   ", "x" * 256])
async def test_update_rejects_bad_title(repository, title: str) -> None:
    document = await repository.create(make_new_document())
    with pytest.raises(ValidationError):
        await repository.update(document.id, title=title)


@pytest.mark.asyncio
async def test_update_and_delete_missing(repository) -> None:
    with pytest.raises(NotFoundError):
        await repository.update("missing", tags=["x"])
    with pytest.raises(NotFoundError):
        await repository.delete("missing")


@pytest.mark.asyncio
async def test_delete(repository) -> None:
    document = await repository.create(make_new_document())
    await repository.delete(document.id)
    with pytest.raises(NotFoundError):
        await repository.get(document.id)


@pytest.mark.asyncio
async def test_status_counts(repository) -> None:
    document = await repository.create(make_new_document())
    await repository.create(make_new_document())
    await repository.claim_for_processing(document.id)

    counts = await repository.status_counts()
    assert counts == {"uploaded": 1, "processing": 1, "completed": 0, "failed": 0}


# ─── Processing claim ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_claim_moves_to_processing_and_logs(repository) -> None:
    document = await repository.create(make_new_document())

    claimed = await repository.claim_for_processing(document.id)

    assert claimed.processing_status is ProcessingStatus.PROCESSING
    last = claimed.processing_log[-1]
    assert (last.stage, last.status) == (ProcessingStage.OCR, LogStatus.STARTED)


@pytest.mark.asyncio
async def test_claim_while_processing_is_refused_without_logging(repository) -> None:
    document = await repository.create(make_new_document())
    claimed = await repository.claim_for_processing(document.id)

    with pytest.raises(AlreadyProcessingError) as excinfo:
        await repository.claim_for_processing(document.id)

    assert excinfo.value.document_id == document.id
    after = await repository.get(document.id)
    assert after.processing_log == claimed.processing_log


@pytest.mark.asyncio
async def test_claim_completed_requires_force(repository) -> None:
    document = await repository.create(make_new_document())
    await repository.claim_for_processing(document.id)
    await repository.mark_completed(document.id)
    log_length = len((await repository.get(document.id)).processing_log)

    with pytest.raises(AlreadyCompletedError):
        await repository.claim_for_processing(document.id)
    assert len((await repository.get(document.id)).processing_log) == log_length

    reclaimed = await repository.claim_for_processing(document.id, force=True)
    assert reclaimed.processing_status is ProcessingStatus.PROCESSING


@pytest.mark.asyncio
async def test_claim_failed_document_is_allowed(repository) -> None:
    document = await repository.create(make_new_document())
    await repository.claim_for_processing(document.id)
    await repository.mark_failed(document.id)

    reclaimed = await repository.claim_for_processing(document.id)
    assert reclaimed.processing_status is ProcessingStatus.PROCESSING


@pytest.mark.asyncio
async def test_claim_missing_document(repository) -> None:
    with pytest.raises(NotFoundError):
        await repository.claim_for_processing("missing")


@pytest.mark.asyncio
async def test_concurrent_claims_admit_exactly_one(repository) -> None:
    document = await repository.create(make_new_document())

    results = await asyncio.gather(
        *(repository.claim_for_processing(document.id) for _ in range(4)),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, BaseException)]
    losers = [r for r in results if isinstance(r, BaseException)]
    assert len(winners) == 1
    assert all(isinstance(r, AlreadyProcessingError) for r in losers)
    started = [
        e
        for e in (await repository.get(document.id)).processing_log
        if e.status is LogStatus.STARTED
    ]
    assert len(started) == 1


# ─── Cancellation ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cancellation_only_while_processing(repository) -> None:
    document = await repository.create(make_new_document())
    assert await repository.mark_cancelled(document.id) is False
    assert await repository.is_cancelled(document.id) is False

    await repository.claim_for_processing(document.id)
    assert await repository.mark_cancelled(document.id) is True
    assert await repository.is_cancelled(document.id) is True


@pytest.mark.asyncio
async def test_cancelled_document_can_be_reclaimed_once_acknowledged(repository) -> None:
    document = await repository.create(make_new_document())
    await repository.claim_for_processing(document.id)
    await repository.mark_cancelled(document.id)
    await repository.acknowledge_cancellation(
        document.id, ProcessingLogEntry.cancelled(ProcessingStage.CHUNKING)
    )

    reclaimed = await repository.claim_for_processing(document.id)

    assert reclaimed.cancelled_at is None
    assert reclaimed.cancel_acknowledged_at is None
    assert await repository.is_cancelled(document.id) is False
    statuses = [entry.status for entry in reclaimed.processing_log]
    assert statuses.count(LogStatus.CANCELLED) == 1


@pytest.mark.asyncio
async def test_cancel_request_alone_does_not_release_document(repository) -> None:
    document = await repository.create(make_new_document())
    await repository.claim_for_processing(document.id)
    assert await repository.mark_cancelled(document.id) is True

    with pytest.raises(AlreadyProcessingError):
        await repository.claim_for_processing(document.id)
    with pytest.raises(AlreadyProcessingError):
        await repository.claim_for_processing(document.id, force=True)


@pytest.mark.asyncio
async def test_acknowledge_requires_pending_cancellation(repository) -> None:
    document = await repository.create(make_new_document())
    await repository.claim_for_processing(document.id)
    entry = ProcessingLogEntry.cancelled(ProcessingStage.OCR)

    with pytest.raises(StorageError):
        await repository.acknowledge_cancellation(document.id, entry)

    await repository.mark_cancelled(document.id)
    await repository.acknowledge_cancellation(document.id, entry)
    with pytest.raises(StorageError):
        await repository.acknowledge_cancellation(document.id, entry)


@pytest.mark.asyncio
async def test_cancel_after_acknowledgement_has_no_run(repository) -> None:
    document = await repository.create(make_new_document())
    await repository.claim_for_processing(document.id)
    await repository.mark_cancelled(document.id)
    await repository.acknowledge_cancellation(
        document.id, ProcessingLogEntry.cancelled(ProcessingStage.OCR)
    )

    assert await repository.mark_cancelled(document.id) is False


@pytest.mark.asyncio
async def test_cancel_missing_document(repository) -> None:
    with pytest.raises(NotFoundError):
        await repository.mark_cancelled("missing")
    with pytest.raises(NotFoundError):
        await repository.is_cancelled("missing")


# ─── Transitions, log and metadata ────────────────────────────────────


@pytest.mark.asyncio
async def test_terminal_transitions_require_processing(repository) -> None:
    document = await repository.create(make_new_document())

    with pytest.raises(StorageError, match="uploaded to completed"):
        await repository.mark_completed(document.id)
    with pytest.raises(StorageError):
        await repository.mark_failed(document.id)


@pytest.mark.asyncio
async def test_mark_completed_sets_processed_at(repository) -> None:
    document = await repository.create(make_new_document())
    await repository.claim_for_processing(document.id)

    completed = await repository.mark_completed(document.id)

    assert completed.processing_status is ProcessingStatus.COMPLETED
    assert completed.processed_at is not None


@pytest.mark.asyncio
async def test_append_log_preserves_order(repository) -> None:
    document = await repository.create(make_new_document())
    await repository.append_log(document.id, ProcessingLogEntry.started(ProcessingStage.CHUNKING))
    await repository.append_log(
        document.id, ProcessingLogEntry.failed(ProcessingStage.CHUNKING, error="boom")
    )

    stored = await repository.get(document.id)

    assert [e.status for e in stored.processing_log] == [
        LogStatus.COMPLETED,
        LogStatus.STARTED,
        LogStatus.FAILED,
    ]
    assert stored.last_error() == "boom"


@pytest.mark.asyncio
async def test_append_log_to_missing_document(repository) -> None:
    with pytest.raises(NotFoundError):
        await repository.append_log("missing", ProcessingLogEntry.started(ProcessingStage.OCR))


@pytest.mark.asyncio
async def test_merge_metadata_patches(repository) -> None:
    document = await repository.create(make_new_document())

    await repository.merge_metadata(document.id, {"a": 1, "b": {"x": 1}, "c": 3})
    await repository.merge_metadata(document.id, {"b": {"y": 2}, "c": None})

    stored = await repository.get(document.id)
    assert stored.extracted_metadata == {"a": 1, "b": {"x": 1, "y": 2}}


@pytest.mark.asyncio
async def test_merge_metadata_missing_document(repository) -> None:
    with pytest.raises(NotFoundError):
        await repository.merge_metadata("missing", {"a": 1})


# ─── Schema upgrade ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_initialize_adds_missing_columns_to_existing_database(db_path) -> None:
    old_documents_table = _SCHEMA_SQL[0].replace("    cancel_acknowledged_at TEXT,\n", "")
    async with aiosqlite.connect(str(db_path)) as db:
        await db.execute(old_documents_table)
        await db.commit()

    repo = SQLiteDocumentRepository(db_path)
    await repo.initialize()
    await repo.initialize()

    document = await repo.create(make_new_document())
    await repo.claim_for_processing(document.id)
    await repo.mark_cancelled(document.id)
    await repo.acknowledge_cancellation(
        document.id, ProcessingLogEntry.cancelled(ProcessingStage.OCR)
    )
    assert (await repo.get(document.id)).cancel_acknowledged_at is not None
