"""Semantic search and grounded answers over a user's documents."""

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.graph.GraphClientInterface import GraphClientInterface
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.meta.MetaClientInterface import MetaClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import DocIntelError
from shared.models.search import ChatAnswer, RelatedEntity, SearchResult

DEFAULT_SEARCH_RESULTS = 20
DEFAULT_CHAT_RESULTS = 10
MAX_RELATED_ENTITIES = 20
UNKNOWN_DOCUMENT = "Unknown Document"

NO_RESULTS_ANSWER = (
    "I couldn't find any relevant information in your documents to answer this question. "
    "Try asking about topics covered in your uploaded documents."
)
EMPTY_ANSWER = "I was unable to generate an answer."

ANSWER_SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions based on provided document context. "
    "Always cite your sources and be truthful about the limitations of your knowledge."
)

ANSWER_PROMPT = """
You are an intelligent document assistant. Answer the user's question based on the provided context from their documents.

Context from documents:
{context}

User Question: {query}

Instructions:
- Answer the question based ONLY on the provided context
- If the context doesn't contain enough information to answer the question, say so clearly
- Cite specific sources when making claims (e.g., "According to [Source 1]...")
- Be concise but thorough
- If you're uncertain about something, express that uncertainty
- Don't make assumptions beyond what's stated in the context

Answer:"""


def answer_confidence(results: list[SearchResult], answer: str) -> float:
    """Average source score weighted 0.8, plus 0.2 for answers longer than 50 characters, capped at 1."""
    if not results:
        return 0.0
    avg_score = sum(r.score for r in results) / len(results)
    return min(1.0, avg_score * 0.8 + (0.2 if len(answer) > 50 else 0.0))


def build_context(results: list[SearchResult]) -> str:
    return "\n\n".join(f"[Source {i + 1} - {r.filename}]:\n{r.text}" for i, r in enumerate(results))


class RetrievalEngine:
    """Embeds queries, searches the vector store and joins hits with document metadata.

    answer() additionally hands the best chunks to the LLM and attaches the entities the
    source chunks mention.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
        meta_client: MetaClientInterface,
        llm_client: LLMClientInterface,
        graph_client: GraphClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._settings = helper_config.get_pipeline_settings()
        self._embed_client = embed_client
        self._rag_client = rag_client
        self._meta_client = meta_client
        self._llm_client = llm_client
        self._graph_client = graph_client

    ##########################################
    ################# SEARCH #################
    ##########################################

    async def search(
        self,
        query: str,
        user_id: str,
        max_results: int | None = None,
        min_score: float | None = None,
        doc_ids: list[str] | None = None,
    ) -> list[SearchResult]:
        """Ranked chunk matches for a query.

        Args:
            query (str): Natural-language query.
            user_id (str): Only this user's chunks are searched.
            max_results (int | None): Maximum number of hits, 20 when None.
            min_score (float | None): Minimum cosine similarity, SEARCH_MIN_SCORE when None.
            doc_ids (list[str] | None): Restrict the search to these documents.

        Returns:
            list[SearchResult]: Hits by descending score, with filename and upload date.

        Raises:
            EmbeddingFailedError: If the query cannot be embedded.
            BackendUnavailableError: If the vector store cannot be reached.
        """
        max_results = max_results or DEFAULT_SEARCH_RESULTS
        min_score = self._settings.search_min_score if min_score is None else min_score

        vector = await self._embed_client.do_embed(query)
        hits = await self._rag_client.do_search_chunks(
            vector=vector, user_id=user_id, limit=max_results, score_threshold=min_score, doc_ids=doc_ids,
        )
        if not hits:
            return []

        doc_id_set = {hit.payload.get("docId") for hit in hits if hit.payload.get("docId")}
        records = await self._meta_client.do_get_many(sorted(doc_id_set), user_id)

        results = []
        for hit in hits:
            payload = hit.payload
            record = records.get(payload.get("docId", ""))
            results.append(SearchResult(
                chunk_id=hit.id,
                doc_id=payload.get("docId", ""),
                chunk_index=int(payload.get("chunkIndex", 0)),
                text=payload.get("text", ""),
                score=hit.score,
                filename=record.filename if record else (payload.get("filename") or UNKNOWN_DOCUMENT),
                uploaded_at=record.uploaded_at if record else None,
            ))
        self.logging.debug("Search for user %s returned %d results.", user_id, len(results))
        return results

    ##########################################
    ################# ANSWER #################
    ##########################################

    async def answer(
        self,
        query: str,
        user_id: str,
        max_results: int | None = None,
        doc_ids: list[str] | None = None,
        min_score: float | None = None,
    ) -> ChatAnswer:
        """Answer a question from the user's documents, citing the chunks used.

        Zero search hits is not an error: the fixed "couldn't find" answer is returned with
        no sources and confidence 0.

        Raises:
            LLMRequestFailedError: If the answer cannot be generated.
        """
        results = await self.search(
            query, user_id, max_results=max_results or DEFAULT_CHAT_RESULTS, min_score=min_score, doc_ids=doc_ids,
        )
        if not results:
            return ChatAnswer(answer=NO_RESULTS_ANSWER, sources=[], confidence=0.0, related_entities=[])

        answer = await self._llm_client.do_complete(
            system_prompt=ANSWER_SYSTEM_PROMPT,
            user_prompt=ANSWER_PROMPT.format(context=build_context(results), query=query),
            temperature=self._settings.answer_temperature,
            max_tokens=self._settings.answer_max_tokens,
        )
        answer = answer.strip() or EMPTY_ANSWER

        return ChatAnswer(
            answer=answer,
            sources=results,
            confidence=answer_confidence(results, answer),
            related_entities=await self._get_related_entities(results, user_id),
        )

    async def _get_related_entities(self, results: list[SearchResult], user_id: str) -> list[RelatedEntity]:
        try:
            entities = await self._graph_client.do_get_entities_for_chunks([r.chunk_id for r in results], user_id)
        except DocIntelError as e:
            self.logging.warning("Related entities unavailable: %s", e)
            return []
        return [
            RelatedEntity(entity_id=e.entity_id, name=e.name, category=e.category.value, confidence=e.confidence)
            for e in entities[:MAX_RELATED_ENTITIES]
        ]
