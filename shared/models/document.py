"""Pydantic models for uploaded documents and their processing lifecycle.

Hierarchy:
  DocumentRecord    : metadata store record, one per upload.
  DocumentMetadata  : optional descriptive fields filled by text extraction.
  ExtractedText     : output of text extraction.
  ProcessingResult  : outcome of one ingestion pipeline run.
  DeletionReport    : outcome of the multi-store delete fan-out.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import Field

from shared.models.base import CamelModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DocumentMetadata(CamelModel):
    title: str | None = None
    author: str | None = None
    subject: str | None = None
    page_count: int | None = None
    word_count: int | None = None


class DocumentRecord(CamelModel):
    """A stored document as kept in the metadata store.

    Attributes:
        doc_id:            Opaque unique id, assigned on upload.
        user_id:           Owner. Every read and write is scoped by it.
        filename:          Display name, editable via PATCH.
        original_name:     Name of the uploaded file, never changed.
        blob_key:          Blob store key ({user_id}/{doc_id}/{filename}).
        file_size:         Size in bytes.
        mime_type:         MIME type given at upload.
        processing_status: pending → processing → completed | failed.
        error_message:     Last failure, cleared on completion.
    """

    doc_id: str
    user_id: str
    filename: str
    original_name: str
    blob_key: str
    file_size: int
    mime_type: str
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    error_message: str | None = None
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    uploaded_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class DocumentPage(CamelModel):
    """One page of a user's documents, newest upload first."""

    documents: list[DocumentRecord]
    current_page: int
    total_pages: int
    total_items: int
    has_next: bool
    has_prev: bool


class ExtractedText(CamelModel):
    text: str
    metadata: DocumentMetadata


class ProcessingResult(CamelModel):
    doc_id: str
    success: bool
    chunks_created: int = 0
    entities_extracted: int = 0
    relationships_found: int = 0
    error: str | None = None
    retryable: bool = False


class DeletionReport(CamelModel):
    """Per-store outcome of a document deletion.

    A store listed in skipped was unreachable; the rest of the deletion went on.
    """

    doc_id: str
    deleted: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.skipped and not self.failed


class TextChunk(CamelModel):
    """A positioned slice of normalised document text.

    Attributes:
        id:              chunk_{index}, unique within one document.
        start_position:  Character offset of the first character.
        end_position:    Character offset after the last character.
    """

    id: str
    text: str
    start_position: int
    end_position: int
    chunk_index: int


class DocumentAudit(CamelModel):
    """Cross-store consistency of one document."""

    doc_id: str
    processing_status: ProcessingStatus
    vector_points: int
    graph_chunks: int

    @property
    def is_consistent(self) -> bool:
        return self.vector_points == self.graph_chunks


class ReconciliationReport(CamelModel):
    stale_documents: list[str] = Field(default_factory=list)
    requeued: dict[str, str] = Field(default_factory=dict)
    already_queued: dict[str, str] = Field(default_factory=dict)
    inconsistent_documents: list[str] = Field(default_factory=list)
