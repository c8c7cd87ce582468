"""Operator side of the non-transactional ingestion.

Vectors, graph nodes and metadata are written by separate calls. When a run dies half way
the document keeps its pending/processing status and the stores may disagree. This
service finds such documents, can queue them again and compares the stores per document.
"""

from datetime import timedelta

from shared.clients.graph.GraphClientInterface import GraphClientInterface
from shared.clients.meta.MetaClientInterface import MetaClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import (
    DocumentAudit,
    DocumentRecord,
    ProcessingStatus,
    ReconciliationReport,
    utc_now,
)
from shared.models.errors import DocumentNotFoundError
from services.doc_ingestion.IngestionPipeline import IngestionPipeline
from services.tasks.TaskQueue import TaskQueue

STALE_STATUSES = [ProcessingStatus.PENDING, ProcessingStatus.PROCESSING]


class ReconciliationService:
    """Finds stuck documents and audits cross-store consistency.

    With a task queue, requeued documents are submitted as tasks. Without one (CLI use)
    they are processed inline, one after the other.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        meta_client: MetaClientInterface,
        rag_client: RAGClientInterface,
        graph_client: GraphClientInterface,
        pipeline: IngestionPipeline,
        task_queue: TaskQueue | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._settings = helper_config.get_pipeline_settings()
        self._meta_client = meta_client
        self._rag_client = rag_client
        self._graph_client = graph_client
        self._pipeline = pipeline
        self._task_queue = task_queue

    async def find_stale_documents(self) -> list[DocumentRecord]:
        """Documents of all users stuck in pending/processing for longer than STALE_PROCESSING_MINUTES."""
        cutoff = utc_now() - timedelta(minutes=self._settings.stale_processing_minutes)
        stale = await self._meta_client.do_find_by_status(STALE_STATUSES, updated_before=cutoff)
        for record in stale:
            self.logging.warning(
                "Document %s of user %s is stuck in '%s' since %s.",
                record.doc_id, record.user_id, record.processing_status.value, record.updated_at.isoformat(),
            )
        return stale

    async def do_audit_document(self, doc_id: str, user_id: str) -> DocumentAudit:
        """Compare the vector point count of a document with its graph chunk count.

        Raises:
            DocumentNotFoundError: If the document does not exist for the user.
        """
        record = await self._meta_client.do_get(doc_id, user_id)
        if record is None:
            raise DocumentNotFoundError(f"Document {doc_id} not found for user {user_id}.")
        audit = DocumentAudit(
            doc_id=doc_id,
            processing_status=record.processing_status,
            vector_points=await self._rag_client.do_count_document_points(doc_id, user_id),
            graph_chunks=await self._graph_client.do_count_chunks(doc_id, user_id),
        )
        if not audit.is_consistent:
            self.logging.warning(
                "Document %s is inconsistent: %d vector points, %d graph chunks.",
                doc_id, audit.vector_points, audit.graph_chunks,
            )
        return audit

    async def do_reconcile(self, requeue: bool = True, audit_user_id: str | None = None) -> ReconciliationReport:
        """Report stale documents and optionally process them again.

        Args:
            requeue (bool): Submit every stale document for a new ingestion run.
            audit_user_id (str | None): Also audit all completed documents of this user.

        Returns:
            ReconciliationReport: Stale doc ids, task ids of requeued runs ("inline" when
                processed without a queue), live tasks of stale documents that were left
                alone and inconsistent documents found by the audit.
        """
        report = ReconciliationReport()
        for record in await self.find_stale_documents():
            report.stale_documents.append(record.doc_id)
            if not requeue:
                continue
            if self._task_queue is not None:
                live_task = self._task_queue.active_task(record.doc_id)
                if live_task is not None:
                    # still waiting in the queue or running, a second run would race it
                    self.logging.info("Document %s already has task %s, not requeued.", record.doc_id, live_task)
                    report.already_queued[record.doc_id] = live_task
                    continue
                report.requeued[record.doc_id] = self._submit(record)
            else:
                await self._pipeline.do_process(record.doc_id, record.user_id)
                report.requeued[record.doc_id] = "inline"

        if audit_user_id:
            documents, _ = await self._meta_client.do_list_by_user(audit_user_id, page=1, limit=10_000)
            for record in documents:
                if record.processing_status != ProcessingStatus.COMPLETED:
                    continue
                audit = await self.do_audit_document(record.doc_id, audit_user_id)
                if not audit.is_consistent:
                    report.inconsistent_documents.append(record.doc_id)

        self.logging.info(
            "Reconciliation: %d stale, %d requeued, %d inconsistent.",
            len(report.stale_documents), len(report.requeued), len(report.inconsistent_documents),
        )
        return report

    def _submit(self, record: DocumentRecord) -> str:
        doc_id, user_id = record.doc_id, record.user_id

        async def job():
            return await self._pipeline.do_process(doc_id, user_id, raise_on_failure=True)

        return self._task_queue.submit(f"reconcile:{doc_id}", job, key=doc_id)
