from pydantic import Field, field_validator

from shared.models.base import CamelModel


class SearchRequest(CamelModel):
    query: str = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1, le=100)
    min_score: float | None = Field(default=None, ge=0.0, le=1.0)
    doc_ids: list[str] | None = None

    @field_validator("query")
    @classmethod
    def _strip_query(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be blank")
        return value


class ChatRequest(CamelModel):
    query: str = Field(min_length=1)
    max_results: int | None = Field(default=None, ge=1, le=50)
    doc_ids: list[str] | None = None

    @field_validator("query")
    @classmethod
    def _strip_query(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be blank")
        return value


class DocumentUpdateRequest(CamelModel):
    """Only filename and metadata can be changed, anything else is ignored."""

    filename: str | None = None
    metadata: dict | None = None


class ReconcileRequest(CamelModel):
    requeue: bool = True
    audit: bool = False


class TopicRequest(CamelModel):
    max_topics: int | None = Field(default=None, ge=1, le=50)
