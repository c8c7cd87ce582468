from pydantic import Field

from shared.models.base import CamelModel
from shared.models.document import DocumentAudit, DocumentRecord, ReconciliationReport
from shared.models.graph import DocumentSimilarity, GraphData, TopicModelingResult
from shared.models.search import RelatedEntity, SearchResult
from shared.models.task import TaskInfo


class UploadResponse(CamelModel):
    success: bool = True
    doc_id: str
    filename: str
    task_id: str
    message: str = "File uploaded successfully. Processing will begin shortly."


class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_items: int
    has_next: bool
    has_prev: bool


class DocumentListResponse(CamelModel):
    success: bool = True
    documents: list[DocumentRecord]
    pagination: Pagination


class DocumentResponse(CamelModel):
    success: bool = True
    document: DocumentRecord
    message: str | None = None


class DeleteResponse(CamelModel):
    success: bool = True
    message: str
    deleted: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class DownloadResponse(CamelModel):
    success: bool = True
    download_url: str
    filename: str
    file_size: int
    content_type: str


class SearchResponse(CamelModel):
    success: bool = True
    query: str
    results: list[SearchResult]
    total: int


class ChatResponse(CamelModel):
    success: bool = True
    answer: str
    sources: list[SearchResult]
    confidence: float
    related_entities: list[RelatedEntity]


class GraphResponse(CamelModel):
    success: bool = True
    data: GraphData


class SimilarityResponse(CamelModel):
    success: bool = True
    message: str
    pairs: list[DocumentSimilarity]


class TopicResponse(CamelModel):
    success: bool = True
    message: str
    result: TopicModelingResult


class ClusterResponse(CamelModel):
    success: bool = True
    message: str
    edges_created: int


class TaskResponse(CamelModel):
    success: bool = True
    task: TaskInfo


class TaskListResponse(CamelModel):
    success: bool = True
    tasks: list[TaskInfo]
    total: int


class ReconcileResponse(CamelModel):
    success: bool = True
    report: ReconciliationReport


class AuditResponse(CamelModel):
    success: bool = True
    audit: DocumentAudit
    consistent: bool


class HealthResponse(CamelModel):
    status: str
    version: str
    backends: dict[str, bool]
