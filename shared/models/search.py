"""Pydantic models for semantic search and grounded answers."""

from datetime import datetime

from pydantic import Field

from shared.models.base import CamelModel


class SearchResult(CamelModel):
    """A single chunk hit joined with its document metadata."""

    chunk_id: str
    doc_id: str
    chunk_index: int
    text: str
    score: float
    filename: str
    uploaded_at: datetime | None = None


class RelatedEntity(CamelModel):
    entity_id: str
    name: str
    category: str
    confidence: float


class ChatAnswer(CamelModel):
    answer: str
    sources: list[SearchResult] = Field(default_factory=list)
    confidence: float = 0.0
    related_entities: list[RelatedEntity] = Field(default_factory=list)
