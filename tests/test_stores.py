"""Tests for the in-memory vector and graph stores, the SQL metadata store and local blobs."""

from datetime import timedelta

import pytest

from shared.clients.blob.local.BlobClientLocal import BlobClientLocal
from shared.clients.graph.memory.GraphClientMemory import GraphClientMemory
from shared.clients.meta.sql.MetaClientSql import MetaClientSql
from shared.clients.rag.memory.RAGClientMemory import RAGClientMemory
from shared.clients.rag.models.VectorPoint import ChunkPayload, VectorPoint
from shared.models.document import DocumentMetadata, DocumentRecord, ProcessingStatus, utc_now
from shared.models.graph import ExtractedEntity, EntityCategory, NodeType, RelationType

USER = "user-1"


def _point(point_id: str, doc_id: str, user_id: str, vector: list[float], index: int = 0) -> VectorPoint:
    return VectorPoint(
        id=point_id,
        vector=vector,
        payload=ChunkPayload(
            doc_id=doc_id, user_id=user_id, chunk_id=f"{doc_id}_chunk_{index}", chunk_index=index,
            text=f"text {point_id}", start_position=0, end_position=10,
        ),
    )


def _record(doc_id: str, user_id: str = USER, **kwargs) -> DocumentRecord:
    return DocumentRecord(
        doc_id=doc_id, user_id=user_id, filename=f"{doc_id}.txt", original_name=f"{doc_id}.txt",
        blob_key=f"{user_id}/{doc_id}/{doc_id}.txt", file_size=10, mime_type="text/plain", **kwargs,
    )


##########################################
############### VECTOR STORE #############
##########################################

@pytest.fixture
async def rag(helper_config):
    client = RAGClientMemory(helper_config=helper_config)
    await client.boot()
    await client.do_initialize(vector_size=2)
    await client.do_upsert_points([
        _point("p1", "doc-a", USER, [1.0, 0.0], 0),
        _point("p2", "doc-a", USER, [0.8, 0.6], 1),
        _point("p3", "doc-b", USER, [0.0, 1.0], 0),
        _point("p4", "doc-x", "user-2", [1.0, 0.0], 0),
    ])
    return client


@pytest.mark.asyncio
async def test_search_is_scoped_to_user(rag):
    hits = await rag.do_search_chunks([1.0, 0.0], USER, limit=10)

    assert [h.id for h in hits] == ["p1", "p2", "p3"]
    assert all(h.payload["userId"] == USER for h in hits)
    assert [h.score for h in hits] == sorted((h.score for h in hits), reverse=True)


@pytest.mark.asyncio
async def test_search_threshold_and_document_filter(rag):
    hits = await rag.do_search_chunks([1.0, 0.0], USER, limit=10, score_threshold=0.5)
    assert [h.id for h in hits] == ["p1", "p2"]

    hits = await rag.do_search_chunks([1.0, 0.0], USER, limit=10, doc_ids=["doc-b"])
    assert [h.id for h in hits] == ["p3"]


@pytest.mark.asyncio
async def test_search_requires_user(rag):
    with pytest.raises(ValueError):
        await rag.do_search_chunks([1.0, 0.0], " ", limit=10)


@pytest.mark.asyncio
async def test_delete_count_and_fetch_vectors(rag):
    assert await rag.do_count_document_points("doc-a", USER) == 2
    assert await rag.do_fetch_document_vectors("doc-a", USER) == [[1.0, 0.0], [0.8, 0.6]]

    await rag.do_delete_by_document("doc-a", USER)

    assert await rag.do_count_document_points("doc-a", USER) == 0
    assert await rag.do_count_document_points("doc-x", "user-2") == 1


@pytest.mark.asyncio
async def test_wrong_vector_size_is_rejected(rag):
    with pytest.raises(ValueError):
        await rag.do_upsert_points([_point("p9", "doc-a", USER, [1.0, 0.0, 0.0])])


##########################################
################ GRAPH STORE #############
##########################################

async def _populated_graph(helper_config) -> GraphClientMemory:
    graph = GraphClientMemory(helper_config=helper_config)
    shared_entity = ExtractedEntity(id="e-acme", name="Acme", category=EntityCategory.ORGANIZATION, confidence=0.9)
    for doc_id in ("doc-a", "doc-b"):
        await graph.do_upsert_document(doc_id, USER, f"{doc_id}.txt")
        for i in range(2):
            await graph.do_upsert_chunk(f"{doc_id}-c{i}", doc_id, USER, f"chunk {i}", i)
            await graph.do_upsert_entity(shared_entity, chunk_id=f"{doc_id}-c{i}", doc_id=doc_id, user_id=USER)
    only_a = ExtractedEntity(id="e-jane", name="Jane", category=EntityCategory.PERSON, confidence=0.7)
    await graph.do_upsert_entity(only_a, chunk_id="doc-a-c0", doc_id="doc-a", user_id=USER)
    await graph.do_create_cooccurrence_edge("e-jane", "e-acme", USER, 0.8)
    await graph.do_create_cooccurrence_edge("e-acme", "e-jane", USER, 0.6)
    return graph


@pytest.mark.asyncio
async def test_graph_nodes_and_edges_are_unique(helper_config):
    graph = await _populated_graph(helper_config)

    data = await graph.do_get_graph(USER)

    node_ids = [n.id for n in data.nodes]
    edge_ids = [e.id for e in data.edges]
    assert len(node_ids) == len(set(node_ids))
    assert len(edge_ids) == len(set(edge_ids))
    cooccurs = [e for e in data.edges if e.type == RelationType.COOCCURS_WITH]
    assert len(cooccurs) == 1
    assert cooccurs[0].properties["count"] == 2
    assert cooccurs[0].properties["confidence"] == 0.8
    acme = next(n for n in data.nodes if n.id == "e-acme")
    assert acme.properties["mentions"] == 4


@pytest.mark.asyncio
async def test_graph_filtered_by_document(helper_config):
    graph = await _populated_graph(helper_config)

    data = await graph.do_get_graph(USER, doc_ids=["doc-b"])

    assert {n.id for n in data.nodes if n.type == NodeType.DOCUMENT} == {"doc-b"}
    assert {n.id for n in data.nodes if n.type == NodeType.ENTITY} == {"e-acme"}


@pytest.mark.asyncio
async def test_delete_subgraph_keeps_shared_entities(helper_config):
    graph = await _populated_graph(helper_config)

    await graph.do_delete_document_subgraph("doc-a", USER)

    assert await graph.do_count_chunks("doc-a", USER) == 0
    assert await graph.do_count_chunks("doc-b", USER) == 2
    entity_ids = {e.entity_id for e in await graph.do_get_entities(USER)}
    # Jane was only mentioned by doc-a and is gone, Acme is still mentioned by doc-b
    assert entity_ids == {"e-acme"}


@pytest.mark.asyncio
async def test_chunk_requires_document(helper_config):
    graph = GraphClientMemory(helper_config=helper_config)

    with pytest.raises(ValueError):
        await graph.do_upsert_chunk("c0", "missing-doc", USER, "text", 0)


@pytest.mark.asyncio
async def test_entities_for_chunks_by_confidence(helper_config):
    graph = await _populated_graph(helper_config)

    entities = await graph.do_get_entities_for_chunks(["doc-a-c0"], USER)

    assert [e.entity_id for e in entities] == ["e-acme", "e-jane"]
    assert await graph.do_get_entities_for_chunks(["doc-a-c0"], "user-2") == []


##########################################
############### METADATA STORE ###########
##########################################

@pytest.fixture
async def meta(helper_config):
    client = MetaClientSql(helper_config=helper_config)
    await client.boot()
    await client.do_initialize()
    yield client
    await client.close()


@pytest.mark.asyncio
async def test_records_are_scoped_by_user(meta):
    await meta.do_create(_record("doc-a"))

    assert (await meta.do_get("doc-a", USER)).filename == "doc-a.txt"
    assert await meta.do_get("doc-a", "user-2") is None
    assert await meta.do_delete("doc-a", "user-2") is False


@pytest.mark.asyncio
async def test_list_is_newest_first_and_paged(meta):
    now = utc_now()
    for i in range(5):
        await meta.do_create(_record(f"doc-{i}", uploaded_at=now + timedelta(minutes=i)))
    await meta.do_create(_record("other", user_id="user-2"))

    page, total = await meta.do_list_by_user(USER, page=1, limit=2)
    last_page, _ = await meta.do_list_by_user(USER, page=3, limit=2)

    assert total == 5
    assert [r.doc_id for r in page] == ["doc-4", "doc-3"]
    assert [r.doc_id for r in last_page] == ["doc-0"]


@pytest.mark.asyncio
async def test_status_updates_clear_error(meta):
    await meta.do_create(_record("doc-a"))

    await meta.do_update_status("doc-a", USER, ProcessingStatus.FAILED, error_message="boom")
    failed = await meta.do_get("doc-a", USER)
    await meta.do_update_status("doc-a", USER, ProcessingStatus.COMPLETED, error_message="ignored")
    completed = await meta.do_get("doc-a", USER)

    assert (failed.processing_status, failed.error_message) == (ProcessingStatus.FAILED, "boom")
    assert (completed.processing_status, completed.error_message) == (ProcessingStatus.COMPLETED, None)


@pytest.mark.asyncio
async def test_update_fields_merges_metadata(meta):
    await meta.do_create(_record("doc-a"))
    await meta.do_update_metadata("doc-a", USER, DocumentMetadata(title="Report", page_count=3))

    record = await meta.do_update_fields("doc-a", USER, filename="renamed.txt", metadata={"author": "Jane"})

    assert record.filename == "renamed.txt"
    assert record.original_name == "doc-a.txt"
    assert (record.metadata.title, record.metadata.author, record.metadata.page_count) == ("Report", "Jane", 3)
    assert await meta.do_update_fields("missing", USER, filename="x") is None


@pytest.mark.asyncio
async def test_find_by_status_respects_cutoff(meta):
    await meta.do_create(_record("doc-a", processing_status=ProcessingStatus.PROCESSING))
    await meta.do_create(_record("doc-b", processing_status=ProcessingStatus.COMPLETED))

    stale = await meta.do_find_by_status([ProcessingStatus.PENDING, ProcessingStatus.PROCESSING], updated_before=utc_now() + timedelta(minutes=1))
    fresh = await meta.do_find_by_status([ProcessingStatus.PROCESSING], updated_before=utc_now() - timedelta(minutes=30))

    assert [r.doc_id for r in stale] == ["doc-a"]
    assert fresh == []


##########################################
################ BLOB STORE ##############
##########################################

@pytest.mark.asyncio
async def test_local_blob_round_trip(helper_config):
    blob = BlobClientLocal(helper_config=helper_config)
    await blob.boot()
    key = blob.build_key(USER, "doc-a", "../report.txt")

    await blob.do_put(key, b"content", "text/plain")

    assert key == "user-1/doc-a/.._report.txt"
    assert await blob.do_get(key) == b"content"
    assert (await blob.do_presigned_url(key)).startswith("file://")
    await blob.do_delete(key)
    with pytest.raises(FileNotFoundError):
        await blob.do_get(key)


@pytest.mark.asyncio
async def test_local_blob_rejects_escaping_keys(helper_config):
    blob = BlobClientLocal(helper_config=helper_config)
    await blob.boot()

    with pytest.raises(ValueError):
        await blob.do_put("../../etc/passwd", b"x", "text/plain")
