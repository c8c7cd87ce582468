"""End-to-end tests of upload, ingestion, deletion and reconciliation on in-process backends."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from services.bootstrap import build_services
from services.doc_ingestion.ReconciliationService import ReconciliationService
from services.doc_processing.TextExtractor import MIME_PDF, MIME_TXT
from shared.models.document import DocumentRecord, ProcessingStatus, utc_now
from shared.models.errors import (
    DocumentNotFoundError,
    EmbeddingFailedError,
    ExtractionFailedError,
    FileTooLargeError,
    StoreUnavailableError,
    UnsupportedFormatError,
)
from shared.models.graph import RelationType
from shared.models.task import TaskStatus
from tests.fakes import entity_responder

USER = "user-1"
KNOWN_ENTITIES = {"Jane Doe": "PERSON", "Acme Corp": "ORGANIZATION", "Berlin": "LOCATION"}
SENTENCE = "Jane Doe met the Acme Corp board in Berlin today"


def _document_text(sentences: int = 120) -> bytes:
    # 10 words per sentence
    return " ".join([SENTENCE] * sentences).encode("utf-8")


async def _upload_and_wait(app_services, data: bytes, filename: str = "report.txt", mime_type: str = MIME_TXT):
    record, task_id = await app_services.document_service.do_upload(USER, filename, data, mime_type)
    info = await app_services.task_queue.wait(task_id, timeout=10)
    return record, info


##########################################
################ PIPELINE ################
##########################################

@pytest.mark.asyncio
async def test_upload_is_processed_into_all_stores(app_services, clients, chat_backend):
    chat_backend.responder = entity_responder(KNOWN_ENTITIES)
    statuses = []
    update_status = clients["meta"].do_update_status

    async def spy(doc_id, user_id, status, error_message=None):
        statuses.append(status)
        return await update_status(doc_id, user_id, status, error_message=error_message)

    clients["meta"].do_update_status = spy

    record, info = await _upload_and_wait(app_services, _document_text())

    assert record.processing_status == ProcessingStatus.PENDING
    assert statuses == [ProcessingStatus.PROCESSING, ProcessingStatus.COMPLETED]
    assert info.status == TaskStatus.SUCCEEDED
    assert info.result.chunks_created == 3
    assert info.result.entities_extracted == 3
    # three pairs per chunk
    assert info.result.relationships_found == 9

    assert await clients["rag"].do_count_document_points(record.doc_id, USER) == 3
    assert await clients["graph"].do_count_chunks(record.doc_id, USER) == 3
    graph_chunk_ids = {c["chunkId"] for c in await clients["graph"].do_get_document_chunks(record.doc_id, USER)}
    hits = await clients["rag"].do_search_chunks([1.0] * 16, USER, limit=10)
    assert {hit.id for hit in hits} == graph_chunk_ids
    assert sorted(hit.payload["chunkId"] for hit in hits) == [f"{record.doc_id}_chunk_{i}" for i in range(3)]

    stored = await clients["meta"].do_get(record.doc_id, USER)
    assert stored.processing_status == ProcessingStatus.COMPLETED
    assert stored.metadata.word_count == 1200


@pytest.mark.asyncio
async def test_reprocessing_replaces_previous_output(app_services, clients, chat_backend):
    chat_backend.responder = entity_responder(KNOWN_ENTITIES)
    record, _ = await _upload_and_wait(app_services, _document_text())

    result = await app_services.pipeline.do_process(record.doc_id, USER)

    assert result.success
    assert await clients["rag"].do_count_document_points(record.doc_id, USER) == 3
    assert await clients["graph"].do_count_chunks(record.doc_id, USER) == 3
    assert len(await clients["graph"].do_get_entities(USER)) == 3


@pytest.mark.asyncio
async def test_second_document_is_resolved_against_the_first(app_services, clients, chat_backend):
    chat_backend.responder = entity_responder({"IBM": "ORGANIZATION"})
    first, _ = await _upload_and_wait(app_services, b"IBM announced a new research lab with several hundred engineers.")
    chat_backend.responder = entity_responder({"IBM Corp": "ORGANIZATION"})
    second, info = await _upload_and_wait(app_services, b"Shares of IBM Corp rose after the announcement of the new research lab.")

    assert info.result.relationships_found == 1
    graph = await clients["graph"].do_get_graph(USER)
    same_as = [e for e in graph.edges if e.type == RelationType.SAME_AS]
    assert len(same_as) == 1
    assert same_as[0].start_node_id.startswith(second.doc_id)
    assert same_as[0].end_node_id.startswith(first.doc_id)


@pytest.mark.asyncio
async def test_entity_failures_do_not_fail_the_document(app_services, clients, chat_backend):
    chat_backend.status_code = 500

    record, info = await _upload_and_wait(app_services, _document_text())

    assert info.status == TaskStatus.SUCCEEDED
    assert info.result.entities_extracted == 0
    assert (await clients["meta"].do_get(record.doc_id, USER)).processing_status == ProcessingStatus.COMPLETED


@pytest.mark.asyncio
async def test_embedding_failure_is_retried_then_marked_failed(app_services, clients, embed_backend):
    embed_backend.status_code = 500

    record, info = await _upload_and_wait(app_services, _document_text(5))

    assert info.status == TaskStatus.DEAD
    assert info.attempts == 2
    stored = await clients["meta"].do_get(record.doc_id, USER)
    assert stored.processing_status == ProcessingStatus.FAILED
    assert stored.error_message == EmbeddingFailedError.user_message
    assert info.last_error == EmbeddingFailedError.user_message
    assert "embed.test" not in stored.error_message
    assert await clients["rag"].do_count_document_points(record.doc_id, USER) == 0


@pytest.mark.asyncio
async def test_corrupt_file_fails_without_retry(app_services, clients):
    record, info = await _upload_and_wait(app_services, b"%PDF-broken", filename="scan.pdf", mime_type=MIME_PDF)

    assert info.status == TaskStatus.DEAD
    assert info.attempts == 1
    stored = await clients["meta"].do_get(record.doc_id, USER)
    assert stored.processing_status == ProcessingStatus.FAILED
    assert stored.error_message == ExtractionFailedError.user_message
    assert info.last_error == ExtractionFailedError.user_message


@pytest.mark.asyncio
async def test_blank_document_fails(app_services, clients):
    record, info = await _upload_and_wait(app_services, b"   \n\n  ")

    assert info.status == TaskStatus.DEAD
    stored = await clients["meta"].do_get(record.doc_id, USER)
    assert stored.error_message == "No text chunks generated from document."


@pytest.mark.asyncio
async def test_processing_unknown_document(app_services):
    result = await app_services.pipeline.do_process("missing", USER)

    assert not result.success
    assert not result.retryable


##########################################
############ DOCUMENT SERVICE ############
##########################################

@pytest.mark.asyncio
async def test_upload_validation(app_services):
    service = app_services.document_service

    with pytest.raises(UnsupportedFormatError) as unsupported:
        await service.do_upload(USER, "photo.png", b"png", "image/png")
    with pytest.raises(FileTooLargeError) as too_large:
        service.validate_upload("big.txt", MIME_TXT, 10 * 1024 * 1024 + 1)

    assert unsupported.value.user_message == "Unsupported file type. Please upload PDF, DOCX, DOC, or TXT files."
    assert too_large.value.user_message == "File size exceeds 10MB limit"
    assert (await service.do_list(USER)).total_items == 0


@pytest.mark.asyncio
async def test_list_update_and_download(app_services):
    service = app_services.document_service
    for i in range(3):
        await _upload_and_wait(app_services, _document_text(1), filename=f"note-{i}.txt")

    page = await service.do_list(USER, page=1, limit=2)
    record = page.documents[0]
    renamed = await service.do_update(record.doc_id, USER, filename="renamed.txt", metadata={"title": "Notes"})
    download = await service.do_get_download(record.doc_id, USER)

    assert (page.total_items, page.total_pages, page.has_next, page.has_prev) == (3, 2, True, False)
    assert renamed.filename == "renamed.txt"
    assert renamed.metadata.title == "Notes"
    assert download["filename"] == record.original_name
    assert download["downloadUrl"].startswith("file://")
    with pytest.raises(ValueError):
        await service.do_update(record.doc_id, USER)
    with pytest.raises(DocumentNotFoundError):
        await service.do_get(record.doc_id, "user-2")


@pytest.mark.asyncio
async def test_delete_removes_document_everywhere(app_services, clients, chat_backend):
    chat_backend.responder = entity_responder(KNOWN_ENTITIES)
    record, _ = await _upload_and_wait(app_services, _document_text())

    report = await app_services.document_service.do_delete(record.doc_id, USER)

    assert report.is_complete
    assert sorted(report.deleted) == ["blob", "graph", "metadata", "vectors"]
    assert await clients["meta"].do_get(record.doc_id, USER) is None
    assert await clients["rag"].do_count_document_points(record.doc_id, USER) == 0
    assert (await clients["graph"].do_get_graph(USER)).nodes == []
    with pytest.raises(FileNotFoundError):
        await clients["blob"].do_get(record.blob_key)


@pytest.mark.asyncio
async def test_delete_reports_unavailable_and_failed_stores(app_services, clients):
    record, _ = await _upload_and_wait(app_services, _document_text(1))
    clients["rag"].do_delete_by_document = AsyncMock(side_effect=StoreUnavailableError("vector store down"))
    clients["blob"].do_delete = AsyncMock(side_effect=PermissionError("read-only"))

    report = await app_services.document_service.do_delete(record.doc_id, USER)

    assert report.skipped == ["vectors"]
    assert report.failed == ["blob"]
    assert sorted(report.deleted) == ["graph", "metadata"]
    assert len(report.warnings) == 2
    assert await clients["meta"].do_get(record.doc_id, USER) is None


##########################################
############# RECONCILIATION #############
##########################################

async def _stuck_document(clients, doc_id: str) -> DocumentRecord:
    blob_key = f"{USER}/{doc_id}/stuck.txt"
    await clients["blob"].do_put(blob_key, _document_text(2), MIME_TXT)
    record = DocumentRecord(
        doc_id=doc_id,
        user_id=USER,
        filename="stuck.txt",
        original_name="stuck.txt",
        blob_key=blob_key,
        file_size=100,
        mime_type=MIME_TXT,
        processing_status=ProcessingStatus.PROCESSING,
        updated_at=utc_now() - timedelta(hours=2),
    )
    return await clients["meta"].do_create(record)


@pytest.mark.asyncio
async def test_reconcile_requeues_stale_documents(app_services, clients):
    await _stuck_document(clients, "doc-stuck")

    report = await app_services.reconciliation_service.do_reconcile(requeue=True)
    info = await app_services.task_queue.wait(report.requeued["doc-stuck"], timeout=10)

    assert report.stale_documents == ["doc-stuck"]
    assert info.status == TaskStatus.SUCCEEDED
    assert (await clients["meta"].do_get("doc-stuck", USER)).processing_status == ProcessingStatus.COMPLETED


@pytest.mark.asyncio
async def test_reconcile_leaves_documents_with_a_live_task_alone(helper_config, clients):
    await _stuck_document(clients, "doc-stuck")
    services = build_services(helper_config, clients)
    # queue not started yet, the first run is still waiting
    task_id = services.document_service.submit_processing("doc-stuck", USER)

    report = await services.reconciliation_service.do_reconcile(requeue=True)

    assert report.stale_documents == ["doc-stuck"]
    assert report.requeued == {}
    assert report.already_queued == {"doc-stuck": task_id}
    assert [t.task_id for t in services.task_queue.list_tasks()] == [task_id]

    services.task_queue.start()
    try:
        info = await services.task_queue.wait(task_id, timeout=10)
        assert info.status == TaskStatus.SUCCEEDED
        assert services.task_queue.active_task("doc-stuck") is None
        assert (await services.reconciliation_service.do_reconcile(requeue=True)).stale_documents == []
    finally:
        await services.task_queue.stop()


@pytest.mark.asyncio
async def test_reconcile_report_only_and_inline(helper_config, app_services, clients):
    await _stuck_document(clients, "doc-stuck")

    report_only = await app_services.reconciliation_service.do_reconcile(requeue=False)
    inline_service = ReconciliationService(
        helper_config, meta_client=clients["meta"], rag_client=clients["rag"], graph_client=clients["graph"],
        pipeline=app_services.pipeline,
    )
    inline = await inline_service.do_reconcile(requeue=True)

    assert report_only.stale_documents == ["doc-stuck"]
    assert report_only.requeued == {}
    assert inline.requeued == {"doc-stuck": "inline"}
    assert (await clients["meta"].do_get("doc-stuck", USER)).processing_status == ProcessingStatus.COMPLETED


@pytest.mark.asyncio
async def test_audit_detects_missing_vectors(app_services, clients):
    record, _ = await _upload_and_wait(app_services, _document_text())
    service = app_services.reconciliation_service

    consistent = await service.do_audit_document(record.doc_id, USER)
    hits = await clients["rag"].do_search_chunks([1.0] * 16, USER, limit=1)
    await clients["rag"].do_delete_points_by_filter({"userId": USER, "chunkId": hits[0].payload["chunkId"]})
    report = await service.do_reconcile(requeue=False, audit_user_id=USER)

    assert consistent.is_consistent
    assert (consistent.vector_points, consistent.graph_chunks) == (3, 3)
    assert report.inconsistent_documents == [record.doc_id]
    with pytest.raises(DocumentNotFoundError):
        await service.do_audit_document("missing", USER)
