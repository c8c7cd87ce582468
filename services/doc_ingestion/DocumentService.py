"""Document lifecycle: upload, listing, editing, download and multi-store deletion."""

import asyncio
import math
import uuid

from shared.clients.blob.BlobClientInterface import BlobClientInterface
from shared.clients.graph.GraphClientInterface import GraphClientInterface
from shared.clients.meta.MetaClientInterface import MetaClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import DeletionReport, DocumentPage, DocumentRecord
from shared.models.errors import (
    DocumentNotFoundError,
    FileTooLargeError,
    StoreUnavailableError,
    UnsupportedFormatError,
)
from services.doc_ingestion.IngestionPipeline import IngestionPipeline
from services.doc_processing.TextExtractor import TextExtractor
from services.tasks.TaskQueue import TaskQueue

MAX_PAGE_SIZE = 100


class DocumentService:
    """Entry point of the document API.

    Uploads are stored in the blob store, registered as pending in the metadata store and
    handed to the task queue for ingestion. Deletion fans out to all four stores in
    parallel and reports per store instead of failing as a whole.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        meta_client: MetaClientInterface,
        blob_client: BlobClientInterface,
        rag_client: RAGClientInterface,
        graph_client: GraphClientInterface,
        pipeline: IngestionPipeline,
        task_queue: TaskQueue,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._settings = helper_config.get_pipeline_settings()
        self._meta_client = meta_client
        self._blob_client = blob_client
        self._rag_client = rag_client
        self._graph_client = graph_client
        self._pipeline = pipeline
        self._task_queue = task_queue

    ##########################################
    ################# UPLOAD #################
    ##########################################

    def validate_upload(self, filename: str, mime_type: str, size: int) -> None:
        """Check type and size of an upload before anything is stored.

        Raises:
            UnsupportedFormatError: If the MIME type is not PDF, DOCX, DOC or TXT.
            FileTooLargeError: If the file exceeds MAX_FILE_SIZE_MB.
        """
        if not TextExtractor.is_supported(mime_type):
            raise UnsupportedFormatError(
                f"Unsupported file type {mime_type!r} for {filename}.",
                user_message="Unsupported file type. Please upload PDF, DOCX, DOC, or TXT files.",
            )
        max_mb = self._settings.max_file_size_mb
        if size > max_mb * 1024 * 1024:
            raise FileTooLargeError(
                f"{filename} has {size} bytes, limit is {max_mb}MB.",
                user_message=f"File size exceeds {max_mb:g}MB limit",
            )

    async def do_upload(self, user_id: str, filename: str, data: bytes, mime_type: str) -> tuple[DocumentRecord, str]:
        """Store an uploaded file and queue its ingestion.

        Args:
            user_id (str): Owner of the new document.
            filename (str): Name of the uploaded file.
            data (bytes): File content.
            mime_type (str): MIME type sent by the client.

        Returns:
            tuple[DocumentRecord, str]: The pending document record and the ingestion task id.
        """
        self.validate_upload(filename, mime_type, len(data))

        doc_id = str(uuid.uuid4())
        blob_key = self._blob_client.build_key(user_id, doc_id, filename)
        await self._blob_client.do_put(blob_key, data, mime_type)

        record = await self._meta_client.do_create(DocumentRecord(
            doc_id=doc_id,
            user_id=user_id,
            filename=filename,
            original_name=filename,
            blob_key=blob_key,
            file_size=len(data),
            mime_type=mime_type,
        ))
        task_id = self.submit_processing(doc_id, user_id)
        self.logging.info("Uploaded %s as document %s for user %s (task %s).", filename, doc_id, user_id, task_id)
        return record, task_id

    def submit_processing(self, doc_id: str, user_id: str) -> str:
        """Queue an ingestion run for a document, returns the task id."""
        async def job():
            return await self._pipeline.do_process(doc_id, user_id, raise_on_failure=True)

        return self._task_queue.submit(f"ingest:{doc_id}", job, key=doc_id)

    ##########################################
    ################## READ ##################
    ##########################################

    async def do_list(self, user_id: str, page: int = 1, limit: int = 10) -> DocumentPage:
        """One page of the user's documents, newest upload first."""
        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        documents, total = await self._meta_client.do_list_by_user(user_id, page=page, limit=limit)
        total_pages = math.ceil(total / limit)
        return DocumentPage(
            documents=documents,
            current_page=page,
            total_pages=total_pages,
            total_items=total,
            has_next=page < total_pages,
            has_prev=page > 1,
        )

    async def do_get(self, doc_id: str, user_id: str) -> DocumentRecord:
        record = await self._meta_client.do_get(doc_id, user_id)
        if record is None:
            raise DocumentNotFoundError(f"Document {doc_id} not found for user {user_id}.")
        return record

    async def do_get_download(self, doc_id: str, user_id: str) -> dict:
        """Presigned download link plus the facts a client needs to save the file."""
        record = await self.do_get(doc_id, user_id)
        url = await self._blob_client.do_presigned_url(record.blob_key)
        return {
            "downloadUrl": url,
            "filename": record.original_name,
            "fileSize": record.file_size,
            "contentType": record.mime_type,
        }

    ##########################################
    ################# UPDATE #################
    ##########################################

    async def do_update(self, doc_id: str, user_id: str, filename: str | None = None, metadata: dict | None = None) -> DocumentRecord:
        """Change the display name and/or metadata of a document.

        Raises:
            ValueError: If neither filename nor metadata is given.
            DocumentNotFoundError: If the document does not exist for the user.
        """
        if filename is None and metadata is None:
            raise ValueError("No valid updates provided")
        if filename is not None and not filename.strip():
            raise ValueError("filename must not be empty")

        record = await self._meta_client.do_update_fields(doc_id, user_id, filename=filename, metadata=metadata)
        if record is None:
            raise DocumentNotFoundError(f"Document {doc_id} not found for user {user_id}.")
        return record

    ##########################################
    ################# DELETE #################
    ##########################################

    async def do_delete(self, doc_id: str, user_id: str) -> DeletionReport:
        """Delete a document from all stores in parallel.

        An unreachable store is reported under skipped, any other failure under failed,
        the remaining stores are still cleaned up.

        Raises:
            DocumentNotFoundError: If the document does not exist for the user.
        """
        record = await self.do_get(doc_id, user_id)

        operations = {
            "vectors": self._rag_client.do_delete_by_document(doc_id, user_id),
            "metadata": self._meta_client.do_delete(doc_id, user_id),
            "blob": self._blob_client.do_delete(record.blob_key),
            "graph": self._graph_client.do_delete_document_subgraph(doc_id, user_id),
        }
        results = await asyncio.gather(*operations.values(), return_exceptions=True)

        report = DeletionReport(doc_id=doc_id)
        for store, result in zip(operations, results):
            if isinstance(result, StoreUnavailableError):
                report.skipped.append(store)
                report.warnings.append(f"{store} deletion was skipped, the store is unavailable")
                self.logging.warning("Deleting document %s: %s store unavailable, skipped: %s", doc_id, store, result)
            elif isinstance(result, Exception):
                report.failed.append(store)
                report.warnings.append(f"{store} deletion failed")
                self.logging.error("Deleting document %s from %s failed: %s", doc_id, store, result)
            else:
                report.deleted.append(store)

        self.logging.info(
            "Deleted document %s: deleted=%s skipped=%s failed=%s", doc_id, report.deleted, report.skipped, report.failed,
        )
        return report
