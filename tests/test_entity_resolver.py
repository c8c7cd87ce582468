"""Tests for entity similarity, co-occurrence, cross-document resolution and clustering."""

import pytest

from services.knowledge.EntityResolver import EntityResolver, entity_similarity
from shared.clients.graph.memory.GraphClientMemory import GraphClientMemory
from shared.models.graph import EntityCategory, ExtractedEntity, RelationType, StoredEntity

USER = "user-1"


##########################################
############### SIMILARITY ###############
##########################################

def test_exact_match_ignores_case():
    assert entity_similarity("Acme Corp", "ORGANIZATION", "acme corp", "ORGANIZATION") == 1.0


def test_different_categories_never_match():
    assert entity_similarity("Paris", "LOCATION", "Paris", "PERSON") == 0.0


def test_organization_containment_is_a_duplicate():
    assert entity_similarity("IBM Corp", EntityCategory.ORGANIZATION, "IBM", EntityCategory.ORGANIZATION) > 0.8


def test_person_token_subset():
    assert entity_similarity("Jane Doe", "PERSON", "Dr. Jane Doe", "PERSON") == 0.9


def test_jaccard_fallback():
    assert entity_similarity("New York City", "LOCATION", "York Minster", "LOCATION") == pytest.approx(1 / 4)


def test_similarity_is_symmetric_and_bounded():
    pairs = [("Jane Doe", "John Doe"), ("Acme", "Acme Holdings"), ("", "Berlin"), ("Bank of X", "X Bank")]
    for category in EntityCategory:
        for a, b in pairs:
            score = entity_similarity(a, category, b, category)
            assert 0.0 <= score <= 1.0
            assert score == entity_similarity(b, category, a, category)


##########################################
############### GRAPH PASSES #############
##########################################

async def _graph_with_entities(helper_config, doc_id: str, entities: list[ExtractedEntity]) -> GraphClientMemory:
    graph = GraphClientMemory(helper_config=helper_config)
    await _add_document(graph, doc_id, entities)
    return graph


async def _add_document(graph: GraphClientMemory, doc_id: str, entities: list[ExtractedEntity]) -> None:
    await graph.do_upsert_document(doc_id, USER, f"{doc_id}.txt")
    await graph.do_upsert_chunk(f"{doc_id}-c0", doc_id, USER, "text", 0)
    for entity in entities:
        await graph.do_upsert_entity(entity, chunk_id=f"{doc_id}-c0", doc_id=doc_id, user_id=USER)


def _entity(entity_id: str, name: str, category: EntityCategory, confidence: float = 0.8) -> ExtractedEntity:
    return ExtractedEntity(id=entity_id, name=name, category=category, confidence=confidence)


def test_cooccurrence_confidence(helper_config):
    resolver = EntityResolver(helper_config, graph_client=GraphClientMemory(helper_config=helper_config))

    assert resolver.cooccurrence_confidence(0.6, 0.9, 0) == pytest.approx(0.9)
    assert resolver.cooccurrence_confidence(0.6, 0.9, 100) == pytest.approx(0.7)
    assert resolver.cooccurrence_confidence(0.9, 0.95, 1) == 1.0


@pytest.mark.asyncio
async def test_cooccurrence_links_located_pairs_once(helper_config):
    entities = [
        _entity("e-jane", "Jane Doe", EntityCategory.PERSON),
        _entity("e-acme", "Acme Corp", EntityCategory.ORGANIZATION),
        _entity("e-ghost", "Nowhere Ltd", EntityCategory.ORGANIZATION),
    ]
    graph = await _graph_with_entities(helper_config, "doc-a", entities)
    resolver = EntityResolver(helper_config, graph_client=graph)

    created = await resolver.do_process_cooccurrence("Jane Doe works at Acme Corp.", entities, USER)
    await resolver.do_process_cooccurrence("Jane Doe works at Acme Corp.", entities, USER)

    assert created == 1
    edges = [e for e in (await graph.do_get_graph(USER)).edges if e.type == RelationType.COOCCURS_WITH]
    assert len(edges) == 1
    assert (edges[0].start_node_id, edges[0].end_node_id) == ("e-acme", "e-jane")
    assert edges[0].properties["count"] == 2


@pytest.mark.asyncio
async def test_cross_document_resolution(helper_config):
    graph = await _graph_with_entities(helper_config, "doc-old", [
        _entity("old-ibm", "IBM", EntityCategory.ORGANIZATION),
        _entity("old-paris", "Paris", EntityCategory.LOCATION),
        _entity("old-bank", "First National Bank", EntityCategory.ORGANIZATION),
    ])
    new_entities = [
        _entity("new-ibm", "IBM Corp", EntityCategory.ORGANIZATION),
        _entity("new-paris", "Paris", EntityCategory.PERSON),
        _entity("new-bank", "National Bank Group", EntityCategory.ORGANIZATION),
    ]
    await _add_document(graph, "doc-new", new_entities)
    resolver = EntityResolver(helper_config, graph_client=graph)

    same_as, similar = await resolver.do_resolve_cross_document("doc-new", USER, new_entities)

    edges = (await graph.do_get_graph(USER)).edges
    same_as_edges = [(e.start_node_id, e.end_node_id) for e in edges if e.type == RelationType.SAME_AS]
    similar_edges = [e for e in edges if e.type == RelationType.SIMILAR_TO]
    assert same_as == 1
    assert same_as_edges == [("new-ibm", "old-ibm")]
    # a PERSON and a LOCATION of the same name are never linked
    assert all("new-paris" not in (e.start_node_id, e.end_node_id) for e in edges if e.type != RelationType.MENTIONS)
    # "First National Bank" vs "National Bank Group": jaccard 2/4, below the SIMILAR_TO threshold
    assert similar == 0
    assert similar_edges == []


def test_cluster_signals():
    def stored(name: str, category: EntityCategory) -> StoredEntity:
        return StoredEntity(entity_id=name, name=name, category=category, confidence=0.8)

    assert EntityResolver.cluster_signal(stored("CEO Jane Doe", EntityCategory.PERSON), stored("CEO John Roe", EntityCategory.PERSON)) == (0.5, "professional_terms")
    assert EntityResolver.cluster_signal(stored("Acme Bank", EntityCategory.ORGANIZATION), stored("Zeta Bank", EntityCategory.ORGANIZATION)) == (0.5, "industry_terms")
    assert EntityResolver.cluster_signal(stored("New York", EntityCategory.LOCATION), stored("New York City", EntityCategory.LOCATION)) == (0.55, "location_containment")
    assert EntityResolver.cluster_signal(stored("Berlin", EntityCategory.LOCATION), stored("Berlin", EntityCategory.LOCATION)) is None
    assert EntityResolver.cluster_signal(stored("Acme Bank", EntityCategory.ORGANIZATION), stored("Acme Bank", EntityCategory.PERSON)) is None


@pytest.mark.asyncio
async def test_cluster_entities_adds_similar_to_edges(helper_config):
    graph = await _graph_with_entities(helper_config, "doc-a", [
        _entity("e1", "Acme Bank", EntityCategory.ORGANIZATION),
        _entity("e2", "Zeta Bank", EntityCategory.ORGANIZATION),
        _entity("e3", "New York", EntityCategory.LOCATION),
        _entity("e4", "New York City", EntityCategory.LOCATION),
        _entity("e5", "1 May 2024", EntityCategory.DATE),
    ])
    resolver = EntityResolver(helper_config, graph_client=graph)

    created = await resolver.do_cluster_entities(USER)

    similar = {(e.start_node_id, e.end_node_id): e.properties for e in (await graph.do_get_graph(USER)).edges if e.type == RelationType.SIMILAR_TO}
    assert created == 2
    assert similar[("e1", "e2")]["method"] == "industry_terms"
    assert similar[("e3", "e4")]["score"] == 0.55
