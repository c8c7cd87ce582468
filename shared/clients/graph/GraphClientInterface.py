from abc import abstractmethod
from datetime import datetime, timezone

from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import DocIntelError, StoreUnavailableError
from shared.models.graph import (
    ExtractedEntity,
    ExtractedTopic,
    GraphData,
    RelationType,
    StoredEntity,
    SYMMETRIC_RELATIONS,
)


class GraphClientInterface(ClientInterface):
    """Property graph of Document, Chunk, Entity and Topic nodes, scoped per user.

    Every node carries a userId and every edge joins two nodes of the same user.
    All writes use merge semantics so concurrent pipelines of one user can create
    the same edge without failing.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "graph"

    def _get_error_class(self) -> type[DocIntelError]:
        return StoreUnavailableError

    ################ OTHER ##################
    @staticmethod
    def ordered_pair(a: str, b: str) -> tuple[str, str]:
        """Start/end ids of an undirected edge: the lexically smaller id starts."""
        return (a, b) if a <= b else (b, a)

    @staticmethod
    def edge_key(rel_type: RelationType | str, start: str, end: str) -> tuple[str, str, str]:
        """Dedup key of an edge, direction-free for symmetric relationships."""
        rel_type = RelationType(rel_type)
        if rel_type in SYMMETRIC_RELATIONS and start > end:
            start, end = end, start
        return rel_type.value, start, end

    @staticmethod
    def now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    ##########################################
    ################ WRITES ##################
    ##########################################

    @abstractmethod
    async def do_upsert_document(self, doc_id: str, user_id: str, filename: str) -> None:
        """Create or update the Document node."""
        pass

    @abstractmethod
    async def do_upsert_chunk(self, chunk_id: str, doc_id: str, user_id: str, text: str, chunk_index: int) -> None:
        """Create or update a Chunk node and link it from its Document via CONTAINS.

        Raises:
            ValueError: If the parent Document node does not exist.
        """
        pass

    @abstractmethod
    async def do_upsert_entity(self, entity: ExtractedEntity, chunk_id: str, doc_id: str, user_id: str) -> None:
        """Merge an Entity node by (entity.id, user_id) and link it from its Chunk via MENTIONS.

        Repeat mentions update name/category/confidence and increase the mention count.
        """
        pass

    @abstractmethod
    async def do_create_similarity_edge(self, entity_a: str, entity_b: str, user_id: str, score: float, method: str) -> None:
        """Merge a symmetric SIMILAR_TO edge between two entities."""
        pass

    @abstractmethod
    async def do_create_cooccurrence_edge(self, entity_a: str, entity_b: str, user_id: str, confidence: float) -> None:
        """Merge a symmetric COOCCURS_WITH edge, incrementing its count and keeping the highest confidence."""
        pass

    @abstractmethod
    async def do_create_same_as_edge(self, duplicate_id: str, primary_id: str, user_id: str, confidence: float) -> None:
        """Merge a directed SAME_AS edge duplicate → primary."""
        pass

    @abstractmethod
    async def do_create_document_similarity_edge(self, doc_a: str, doc_b: str, user_id: str, similarity: float) -> None:
        """Merge a symmetric DOCUMENT_SIMILAR_TO edge between two documents."""
        pass

    @abstractmethod
    async def do_upsert_topic(self, topic: ExtractedTopic, user_id: str) -> None:
        """Create or update a Topic node."""
        pass

    @abstractmethod
    async def do_create_topic_edge(self, topic_id: str, doc_id: str, user_id: str, relevance: float) -> None:
        """Merge a CATEGORIZES edge Topic → Document carrying the relevance."""
        pass

    @abstractmethod
    async def do_delete_document_subgraph(self, doc_id: str, user_id: str) -> None:
        """Detach-delete the Document node, then orphaned Chunks, then orphaned Entities of the user."""
        pass

    ##########################################
    ################# READS ##################
    ##########################################

    @abstractmethod
    async def do_get_graph(self, user_id: str, doc_ids: list[str] | None = None) -> GraphData:
        """All nodes and edges of the user, optionally restricted to some documents.

        Each node appears once and each edge appears once, also for undirected relationships.
        """
        pass

    @abstractmethod
    async def do_get_entities(self, user_id: str, category: str | None = None, exclude_doc_id: str | None = None) -> list[StoredEntity]:
        """Entities of the user, optionally of one category and not extracted from exclude_doc_id."""
        pass

    @abstractmethod
    async def do_get_entities_for_chunks(self, chunk_ids: list[str], user_id: str) -> list[StoredEntity]:
        """Distinct entities mentioned by the given chunks."""
        pass

    @abstractmethod
    async def do_get_documents(self, user_id: str) -> list[dict]:
        """Document nodes of the user as dicts with docId and filename."""
        pass

    @abstractmethod
    async def do_get_document_chunks(self, doc_id: str, user_id: str) -> list[dict]:
        """Chunks of one document as dicts with chunkId, text and chunkIndex, in chunk order."""
        pass

    @abstractmethod
    async def do_count_chunks(self, doc_id: str, user_id: str) -> int:
        """Number of chunks linked from the document."""
        pass
