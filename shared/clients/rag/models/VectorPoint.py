"""VectorPoint model: a chunk vector and the payload stored alongside it in a RAG backend."""

from pydantic import BaseModel

from shared.models.base import CamelModel


class ChunkPayload(CamelModel):
    """Payload stored alongside each chunk vector.

    Serialised with camelCase keys (docId, userId, chunkIndex, text, startPosition,
    endPosition, filename, createdAt) so points stay readable by other tools
    working on the same collection.

    The user_id field is mandatory and enforced on every upsert and search: it must
    never be empty.

    Attributes:
        doc_id:          Document the chunk belongs to.
        user_id:         MANDATORY owner id, used for access isolation.
        chunk_id:        Chunker id of the chunk ({doc_id}_chunk_{index}).
        chunk_index:     Zero-based position of this chunk within the document.
        text:            Raw text of this chunk.
        start_position:  Character offset of the chunk start in the normalised text.
        end_position:    Character offset of the chunk end (exclusive).
        filename:        Display name of the document at indexing time.
        created_at:      ISO-8601 timestamp of indexing.
    """

    doc_id: str
    user_id: str
    chunk_id: str
    chunk_index: int
    text: str
    start_position: int
    end_position: int
    filename: str = ""
    created_at: str | None = None


class VectorPoint(BaseModel):
    """One point as sent to the RAG backend."""

    id: str
    vector: list[float]
    payload: ChunkPayload

    def to_backend(self) -> dict:
        return {"id": self.id, "vector": self.vector, "payload": self.payload.model_dump(by_alias=True)}


class SearchHit(BaseModel):
    """One nearest-neighbour match."""

    id: str
    score: float
    payload: dict
