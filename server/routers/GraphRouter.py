from fastapi import APIRouter, Depends, Query, Request

from server.dependencies.auth import get_user_id, verify_api_key
from server.models.requests import TopicRequest
from server.models.responses import ClusterResponse, GraphResponse, SimilarityResponse, TopicResponse
from services.retrieval.graph_filter import filter_graph

router = APIRouter(prefix="/graph", tags=["graph"])


def _split_csv(value: str | None) -> list[str] | None:
    if not value:
        return None
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or None


@router.get("")
async def get_graph(
    request: Request,
    doc_ids: str | None = Query(default=None, alias="docIds"),
    entity_types: str | None = Query(default=None, alias="entityTypes"),
    max_nodes: int | None = Query(default=None, alias="maxNodes", ge=1),
    user_id: str = Depends(get_user_id),
    _: None = Depends(verify_api_key),
) -> GraphResponse:
    """Knowledge graph of the user for visualisation.

    Args:
        request (Request): FastAPI request (provides app.state.graph_client).
        doc_ids (str | None): Comma separated document ids to restrict the graph to.
        entity_types (str | None): Comma separated entity categories to keep.
        max_nodes (int | None): Upper bound of returned nodes.
        user_id (str): Acting user from the X-User-Id header.
        _ (None): Auth dependency result (unused).

    Returns:
        GraphResponse: Nodes and edges, each exactly once.
    """
    graph = await request.app.state.graph_client.do_get_graph(user_id, doc_ids=_split_csv(doc_ids))
    return GraphResponse(data=filter_graph(graph, entity_types=_split_csv(entity_types), max_nodes=max_nodes))


@router.post("/similarity")
async def analyze_similarity(
    request: Request,
    user_id: str = Depends(get_user_id),
    _: None = Depends(verify_api_key),
) -> SimilarityResponse:
    """Link similar documents of the user with DOCUMENT_SIMILAR_TO edges."""
    pairs = await request.app.state.similarity_analyzer.analyze(user_id)
    return SimilarityResponse(message="Document similarity analysis completed successfully", pairs=pairs)


@router.post("/topics")
async def model_topics(
    request: Request,
    body: TopicRequest | None = None,
    user_id: str = Depends(get_user_id),
    _: None = Depends(verify_api_key),
) -> TopicResponse:
    """Extract topics across the user's documents and link documents to them."""
    max_topics = body.max_topics if body else None
    result = await request.app.state.topic_modeler.do_process(user_id, max_topics=max_topics)
    return TopicResponse(message="Topic modeling completed successfully", result=result)


@router.post("/cluster")
async def cluster_entities(
    request: Request,
    user_id: str = Depends(get_user_id),
    _: None = Depends(verify_api_key),
) -> ClusterResponse:
    """Add weak SIMILAR_TO edges between related entities of the user."""
    created = await request.app.state.entity_resolver.do_cluster_entities(user_id)
    return ClusterResponse(message="Entity clustering completed successfully", edges_created=created)
