from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import get_user_id, verify_api_key
from server.models.requests import ChatRequest, SearchRequest
from server.models.responses import ChatResponse, SearchResponse

router = APIRouter(tags=["query"])


@router.post("/search")
async def search_documents(
    request: Request,
    body: SearchRequest,
    user_id: str = Depends(get_user_id),
    _: None = Depends(verify_api_key),
) -> SearchResponse:
    """Execute a semantic search over the user's documents.

    Args:
        request (Request): FastAPI request (provides app.state.retrieval_engine).
        body (SearchRequest): JSON body with query, limit, minScore and docIds.
        user_id (str): Acting user from the X-User-Id header.
        _ (None): Auth dependency result (unused).

    Returns:
        SearchResponse: Matching chunks with document metadata.
    """
    retrieval_engine = request.app.state.retrieval_engine
    results = await retrieval_engine.search(
        body.query, user_id, max_results=body.limit, min_score=body.min_score, doc_ids=body.doc_ids,
    )
    return SearchResponse(query=body.query, results=results, total=len(results))


@router.post("/chat")
async def chat(
    request: Request,
    body: ChatRequest,
    user_id: str = Depends(get_user_id),
    _: None = Depends(verify_api_key),
) -> ChatResponse:
    """Answer a question from the user's documents with cited sources."""
    retrieval_engine = request.app.state.retrieval_engine
    answer = await retrieval_engine.answer(body.query, user_id, max_results=body.max_results, doc_ids=body.doc_ids)
    return ChatResponse(
        answer=answer.answer,
        sources=answer.sources,
        confidence=answer.confidence,
        related_entities=answer.related_entities,
    )
