"""Document level similarity from mean chunk embeddings."""

import itertools

import numpy as np

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.graph.GraphClientInterface import GraphClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import DocIntelError
from shared.models.graph import DocumentSimilarity


def cosine_similarity(vector_a: np.ndarray, vector_b: np.ndarray) -> float:
    """Cosine similarity, 0 when either vector has no magnitude."""
    norm_a = float(np.linalg.norm(vector_a))
    norm_b = float(np.linalg.norm(vector_b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.clip(np.dot(vector_a, vector_b) / (norm_a * norm_b), -1.0, 1.0))


class DocumentSimilarityAnalyzer:
    """Links a user's documents with DOCUMENT_SIMILAR_TO edges.

    A document embedding is the dimension-wise mean of its chunk embeddings. By default the
    chunk texts are re-embedded; with DOC_SIMILARITY_REUSE_VECTORS the vectors already
    stored in the vector store are read back instead. Either way every unordered pair of
    documents is compared once and pairs above DOC_SIMILARITY_THRESHOLD are linked.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
        graph_client: GraphClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._settings = helper_config.get_pipeline_settings()
        self._embed_client = embed_client
        self._rag_client = rag_client
        self._graph_client = graph_client

    ##########################################
    ############### EMBEDDINGS ###############
    ##########################################

    async def _get_chunk_vectors(self, doc_id: str, user_id: str) -> list[list[float]]:
        if self._settings.doc_similarity_reuse_vectors:
            return await self._rag_client.do_fetch_document_vectors(doc_id, user_id)

        chunks = await self._graph_client.do_get_document_chunks(doc_id, user_id)
        texts = [chunk["text"] for chunk in chunks if chunk.get("text")]
        if not texts:
            return []
        return await self._embed_client.do_embed_batch(texts)

    async def get_document_embedding(self, doc_id: str, user_id: str) -> np.ndarray | None:
        """Mean chunk embedding of a document, None if it has no chunks or embedding fails."""
        try:
            vectors = await self._get_chunk_vectors(doc_id, user_id)
        except DocIntelError as e:
            self.logging.error("Could not build the embedding of document %s: %s", doc_id, e)
            return None
        if not vectors:
            return None
        return np.mean(np.asarray(vectors, dtype=float), axis=0)

    ##########################################
    ################ ANALYSIS ################
    ##########################################

    async def analyze(self, user_id: str) -> list[DocumentSimilarity]:
        """Compute and store pairwise document similarities for a user.

        No-op for users with fewer than two documents. Documents whose embedding cannot be
        built are skipped, the rest are still compared.

        Returns:
            list[DocumentSimilarity]: The pairs that were linked.
        """
        documents = await self._graph_client.do_get_documents(user_id)
        if len(documents) < 2:
            self.logging.info("Document similarity for user %s skipped: fewer than two documents.", user_id)
            return []

        embeddings: dict[str, np.ndarray] = {}
        for doc in documents:
            embedding = await self.get_document_embedding(doc["docId"], user_id)
            if embedding is not None:
                embeddings[doc["docId"]] = embedding

        linked: list[DocumentSimilarity] = []
        processed: set[tuple[str, str]] = set()
        for doc_a, doc_b in itertools.combinations(embeddings, 2):
            pair = GraphClientInterface.ordered_pair(doc_a, doc_b)
            if pair in processed:
                continue
            processed.add(pair)

            if embeddings[doc_a].shape != embeddings[doc_b].shape:
                self.logging.warning("Documents %s and %s have embeddings of different size, skipped.", doc_a, doc_b)
                continue

            similarity = cosine_similarity(embeddings[doc_a], embeddings[doc_b])
            if similarity <= self._settings.doc_similarity_threshold:
                continue
            try:
                await self._graph_client.do_create_document_similarity_edge(pair[0], pair[1], user_id, similarity)
                linked.append(DocumentSimilarity(doc_id_a=pair[0], doc_id_b=pair[1], similarity=similarity))
            except DocIntelError as e:
                self.logging.error("Could not link documents %s and %s: %s", pair[0], pair[1], e)

        self.logging.info(
            "Document similarity for user %s: %d documents compared, %d similar pairs.",
            user_id, len(embeddings), len(linked),
        )
        return linked
