"""Pydantic models for the knowledge graph and the LLM-driven extractors that feed it."""

from enum import Enum

from pydantic import Field

from shared.models.base import CamelModel


class EntityCategory(str, Enum):
    PERSON = "PERSON"
    ORGANIZATION = "ORGANIZATION"
    LOCATION = "LOCATION"
    DATE = "DATE"
    MONEY = "MONEY"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, raw: object) -> "EntityCategory":
        """Map any raw value onto a category, unknown values become OTHER."""
        if isinstance(raw, str):
            try:
                return cls(raw.strip().upper())
            except ValueError:
                return cls.OTHER
        return cls.OTHER


class NodeType(str, Enum):
    DOCUMENT = "Document"
    CHUNK = "Chunk"
    ENTITY = "Entity"
    TOPIC = "Topic"


class RelationType(str, Enum):
    CONTAINS = "CONTAINS"
    MENTIONS = "MENTIONS"
    COOCCURS_WITH = "COOCCURS_WITH"
    SIMILAR_TO = "SIMILAR_TO"
    SAME_AS = "SAME_AS"
    DOCUMENT_SIMILAR_TO = "DOCUMENT_SIMILAR_TO"
    CATEGORIZES = "CATEGORIZES"


# undirected relationships are stored once, with the lexically smaller id as start node
SYMMETRIC_RELATIONS: frozenset[RelationType] = frozenset({
    RelationType.COOCCURS_WITH,
    RelationType.SIMILAR_TO,
    RelationType.DOCUMENT_SIMILAR_TO,
})


##########################################
############ GRAPH READ MODEL ############
##########################################

class GraphNode(CamelModel):
    id: str
    type: NodeType
    label: str
    properties: dict = Field(default_factory=dict)


class GraphEdge(CamelModel):
    id: str
    type: RelationType
    start_node_id: str
    end_node_id: str
    properties: dict = Field(default_factory=dict)


class GraphData(CamelModel):
    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)


##########################################
############ EXTRACTION MODEL ############
##########################################

class ExtractedEntity(CamelModel):
    """An entity as returned by the extractor for one chunk.

    Attributes:
        id:         Graph id once persisted, a per-call id before that.
        position:   Character offset of the first occurrence in the chunk, -1 if not locatable.
    """

    id: str
    name: str
    category: EntityCategory = EntityCategory.OTHER
    confidence: float = 0.5
    context: str | None = None
    position: int = -1


class EntityRelationship(CamelModel):
    source_entity_id: str
    target_entity_id: str
    relation_type: str = "RELATED_TO"
    confidence: float = 0.5
    context: str | None = None


class EntityExtractionResult(CamelModel):
    entities: list[ExtractedEntity] = Field(default_factory=list)
    relationships: list[EntityRelationship] = Field(default_factory=list)


class StoredEntity(CamelModel):
    """An entity as read back from the graph, with the document it was extracted from."""

    entity_id: str
    name: str
    category: EntityCategory
    confidence: float
    doc_id: str | None = None


class ExtractedTopic(CamelModel):
    id: str
    name: str
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    confidence: float = 0.5


class TopicAssignment(CamelModel):
    doc_id: str
    topic_id: str
    relevance: float


class TopicModelingResult(CamelModel):
    topics: list[ExtractedTopic] = Field(default_factory=list)
    document_topics: list[TopicAssignment] = Field(default_factory=list)


class DocumentSimilarity(CamelModel):
    doc_id_a: str
    doc_id_b: str
    similarity: float
