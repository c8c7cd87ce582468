"""Tests for the Neo4j graph client with a scripted async driver."""

import pytest
from neo4j.exceptions import ServiceUnavailable

from shared.clients.graph.neo4j.GraphClientNeo4j import CONSTRAINTS, GraphClientNeo4j
from shared.models.errors import StoreUnavailableError
from shared.models.graph import EntityCategory, NodeType, RelationType


class FakeResult:
    def __init__(self, rows: list[dict]) -> None:
        self._rows = rows

    async def data(self) -> list[dict]:
        return self._rows


class FakeSession:
    def __init__(self, driver: "FakeDriver") -> None:
        self._driver = driver

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    async def run(self, query, params: dict) -> FakeResult:
        self._driver.statements.append((" ".join(query.text.split()), params))
        answer = self._driver.answers.pop(0) if self._driver.answers else []
        if isinstance(answer, Exception):
            raise answer
        return FakeResult(answer)


class FakeDriver:
    """Answers each statement with the next queued rows (or raises a queued exception)."""

    def __init__(self, answers: list | None = None) -> None:
        self.answers = list(answers or [])
        self.statements: list[tuple[str, dict]] = []
        self.databases: list[str] = []

    def session(self, database: str) -> FakeSession:
        self.databases.append(database)
        return FakeSession(self)

    async def close(self) -> None:
        return None


@pytest.fixture
def neo4j_env(monkeypatch):
    monkeypatch.setenv("GRAPH_NEO4J_URI", "bolt://neo4j.test:7687")
    monkeypatch.setenv("GRAPH_NEO4J_PASSWORD", "secret")
    monkeypatch.setenv("GRAPH_NEO4J_DATABASE", "docintel")
    monkeypatch.setenv("GRAPH_NEO4J_MAX_RETRIES", "2")
    monkeypatch.setenv("GRAPH_NEO4J_RETRY_BASE_SECONDS", "0")


def _client(helper_config, driver: FakeDriver) -> GraphClientNeo4j:
    client = GraphClientNeo4j(helper_config=helper_config)
    client._driver = driver
    return client


@pytest.mark.asyncio
async def test_initialize_runs_every_constraint(helper_config, neo4j_env):
    driver = FakeDriver()

    await _client(helper_config, driver).do_initialize()

    assert [s for s, _ in driver.statements] == CONSTRAINTS
    assert set(driver.databases) == {"docintel"}


@pytest.mark.asyncio
async def test_transient_errors_are_retried(helper_config, neo4j_env):
    driver = FakeDriver([ServiceUnavailable("down"), ServiceUnavailable("down"), [{"docId": "doc-a", "filename": "a.txt"}]])

    documents = await _client(helper_config, driver).do_get_documents("user-1")

    assert documents == [{"docId": "doc-a", "filename": "a.txt"}]
    assert len(driver.statements) == 3


@pytest.mark.asyncio
async def test_unavailable_after_all_retries(helper_config, neo4j_env):
    driver = FakeDriver([ServiceUnavailable("down")] * 3)

    with pytest.raises(StoreUnavailableError):
        await _client(helper_config, driver).do_get_documents("user-1")


@pytest.mark.asyncio
async def test_chunk_without_document_is_rejected(helper_config, neo4j_env):
    driver = FakeDriver([[]])

    with pytest.raises(ValueError, match="doc-a"):
        await _client(helper_config, driver).do_upsert_chunk("doc-a_chunk_0", "doc-a", "user-1", "text", 0)


@pytest.mark.asyncio
async def test_symmetric_edges_use_ordered_endpoints(helper_config, neo4j_env):
    driver = FakeDriver()
    client = _client(helper_config, driver)

    await client.do_create_cooccurrence_edge("zeta", "alpha", "user-1", 0.7)
    await client.do_create_similarity_edge("zeta", "alpha", "user-1", 0.65, "levenshtein")

    assert all((params["start"], params["end"]) == ("alpha", "zeta") for _, params in driver.statements)


@pytest.mark.asyncio
async def test_delete_removes_document_then_orphans(helper_config, neo4j_env):
    driver = FakeDriver()

    await _client(helper_config, driver).do_delete_document_subgraph("doc-a", "user-1")

    statements = [s for s, _ in driver.statements]
    assert statements[0].startswith("MATCH (d:Document")
    assert "NOT ()-[:CONTAINS]->(c)" in statements[1]
    assert "NOT ()-[:MENTIONS]->(e)" in statements[2]
    assert all(params["userId"] == "user-1" for _, params in driver.statements)


@pytest.mark.asyncio
async def test_graph_is_assembled_from_rows(helper_config, neo4j_env):
    driver = FakeDriver([
        [{"d": {"docId": "doc-a", "filename": "a.txt"}}],
        [{"docId": "doc-a", "c": {"chunkId": "doc-a_chunk_0", "chunkIndex": 0}}],
        [
            {"chunkId": "doc-a_chunk_0", "e": {"entityId": "person_jane_doe", "name": "Jane Doe"}, "context": "Jane Doe met"},
            {"chunkId": "doc-a_chunk_0", "e": {"entityId": "organization_acme", "name": "Acme"}, "context": None},
        ],
        [{"type": "COOCCURS_WITH", "start": "organization_acme", "end": "person_jane_doe", "props": {"count": 1}}],
        [],
        [{"t": {"topicId": "topic_meetings", "name": "Meetings"}, "docId": "doc-a", "props": {"relevance": 0.8}}],
    ])

    graph = await _client(helper_config, driver).do_get_graph("user-1")

    assert {node.type for node in graph.nodes} == {NodeType.DOCUMENT, NodeType.CHUNK, NodeType.ENTITY, NodeType.TOPIC}
    assert {edge.type for edge in graph.edges} == {
        RelationType.CONTAINS, RelationType.MENTIONS, RelationType.COOCCURS_WITH, RelationType.CATEGORIZES,
    }
    mention = next(e for e in graph.edges if e.end_node_id == "person_jane_doe" and e.type == RelationType.MENTIONS)
    assert mention.properties == {"context": "Jane Doe met"}
    assert driver.statements[0][1]["docIds"] is None


@pytest.mark.asyncio
async def test_entities_are_parsed(helper_config, neo4j_env):
    driver = FakeDriver([[{"entityId": "person_jane_doe", "name": "Jane Doe", "category": "PERSON", "confidence": 0.9, "docId": "doc-a"}]])

    entities = await _client(helper_config, driver).do_get_entities("user-1", exclude_doc_id="doc-b")

    assert entities[0].category == EntityCategory.PERSON
    assert entities[0].confidence == 0.9
    assert driver.statements[0][1]["excludeDocId"] == "doc-b"


@pytest.mark.asyncio
async def test_healthcheck_without_driver(helper_config, neo4j_env):
    assert await GraphClientNeo4j(helper_config=helper_config).do_healthcheck() is False
