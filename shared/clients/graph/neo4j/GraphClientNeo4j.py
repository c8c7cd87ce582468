import asyncio
import random

from neo4j import AsyncDriver, AsyncGraphDatabase, Query
from neo4j.exceptions import ServiceUnavailable, SessionExpired, TransientError

from shared.clients.graph.GraphClientInterface import GraphClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.errors import StoreUnavailableError
from shared.models.graph import (
    EntityCategory,
    ExtractedEntity,
    ExtractedTopic,
    GraphData,
    GraphEdge,
    GraphNode,
    NodeType,
    RelationType,
    StoredEntity,
)

CONSTRAINTS = [
    "CREATE CONSTRAINT document_id IF NOT EXISTS FOR (d:Document) REQUIRE (d.docId, d.userId) IS UNIQUE",
    "CREATE CONSTRAINT chunk_id IF NOT EXISTS FOR (c:Chunk) REQUIRE (c.chunkId, c.userId) IS UNIQUE",
    "CREATE CONSTRAINT entity_id IF NOT EXISTS FOR (e:Entity) REQUIRE (e.entityId, e.userId) IS UNIQUE",
    "CREATE CONSTRAINT topic_id IF NOT EXISTS FOR (t:Topic) REQUIRE (t.topicId, t.userId) IS UNIQUE",
    "CREATE INDEX entity_category IF NOT EXISTS FOR (e:Entity) ON (e.userId, e.category)",
]

_RETRYABLE = (ServiceUnavailable, SessionExpired, TransientError)


class GraphClientNeo4j(GraphClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._uri = self.get_config_val("URI", default=None, val_type="string")
        self._username = self.get_config_val("USERNAME", default="neo4j", val_type="string")
        self._password = self.get_config_val("PASSWORD", default=None, val_type="string")
        self._database = self.get_config_val("DATABASE", default="neo4j", val_type="string")
        self._max_retries = int(self.get_config_val("MAX_RETRIES", default=3, val_type="number"))
        self._retry_base_seconds = float(self.get_config_val("RETRY_BASE_SECONDS", default=1.0, val_type="number"))
        self._driver: AsyncDriver | None = None

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Neo4j"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="URI", val_type="string", default=None),
            EnvConfig(env_key="USERNAME", val_type="string", default="neo4j"),
            EnvConfig(env_key="PASSWORD", val_type="string", default=None),
            EnvConfig(env_key="DATABASE", val_type="string", default="neo4j"),
            EnvConfig(env_key="MAX_RETRIES", val_type="number", default=3),
            EnvConfig(env_key="RETRY_BASE_SECONDS", val_type="number", default=1.0),
        ]

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport=None) -> None:
        self._driver = AsyncGraphDatabase.driver(
            self._uri,
            auth=(self._username, self._password),
            connection_timeout=self.timeout,
        )

    async def close(self) -> None:
        if self._driver:
            await self._driver.close()
            self._driver = None

    async def do_healthcheck(self) -> bool:
        if self._driver is None:
            return False
        try:
            await self._driver.verify_connectivity()
        except Exception as e:
            self.logging.warning("Neo4j healthcheck failed: %s", e)
            return False
        return True

    async def do_initialize(self) -> None:
        """Create uniqueness constraints and indexes. Idempotent."""
        for statement in CONSTRAINTS:
            await self._run(statement)
        self.logging.info("Neo4j constraints ensured.")

    async def _run(self, cypher: str, params: dict | None = None) -> list[dict]:
        """Execute a Cypher statement and return the records as dicts.

        Transient failures are retried with jittered exponential back-off.

        Raises:
            RuntimeError: If the driver is not initialised.
            StoreUnavailableError: If the database stays unreachable after all retries.
        """
        if self._driver is None:
            raise RuntimeError("Neo4j driver not initialised. Call boot() before making requests.")
        params = params or {}
        for attempt in range(self._max_retries + 1):
            try:
                async with self._driver.session(database=self._database) as session:
                    result = await session.run(Query(cypher, timeout=self.timeout), params)
                    return await result.data()
            except _RETRYABLE as e:
                if attempt >= self._max_retries:
                    self.logging.error("Neo4j unavailable after %d attempts: %s", attempt + 1, e)
                    raise StoreUnavailableError(f"Neo4j unavailable: {e}") from e
                sleep_for = self._retry_base_seconds * (2 ** attempt)
                sleep_for *= 0.5 + (random.random() * 0.5)
                self.logging.warning("Neo4j transient error (%s), retrying in %.1fs...", e, sleep_for)
                await asyncio.sleep(sleep_for)
        return []

    ##########################################
    ################ WRITES ##################
    ##########################################

    async def do_upsert_document(self, doc_id: str, user_id: str, filename: str) -> None:
        await self._run(
            """
            MERGE (d:Document {docId: $docId, userId: $userId})
            ON CREATE SET d.createdAt = $now
            SET d.filename = $filename
            """,
            {"docId": doc_id, "userId": user_id, "filename": filename, "now": self.now_iso()},
        )

    async def do_upsert_chunk(self, chunk_id: str, doc_id: str, user_id: str, text: str, chunk_index: int) -> None:
        rows = await self._run(
            """
            MATCH (d:Document {docId: $docId, userId: $userId})
            MERGE (c:Chunk {chunkId: $chunkId, userId: $userId})
            ON CREATE SET c.createdAt = $now
            SET c.text = $text, c.chunkIndex = $chunkIndex, c.docId = $docId
            MERGE (d)-[:CONTAINS]->(c)
            RETURN c.chunkId AS chunkId
            """,
            {"docId": doc_id, "userId": user_id, "chunkId": chunk_id, "text": text, "chunkIndex": chunk_index, "now": self.now_iso()},
        )
        if not rows:
            raise ValueError(f"Document node {doc_id} does not exist for user {user_id}.")

    async def do_upsert_entity(self, entity: ExtractedEntity, chunk_id: str, doc_id: str, user_id: str) -> None:
        await self._run(
            """
            MATCH (c:Chunk {chunkId: $chunkId, userId: $userId})
            MERGE (e:Entity {entityId: $entityId, userId: $userId})
            ON CREATE SET e.mentions = 0, e.docId = $docId, e.createdAt = $now
            SET e.name = $name, e.category = $category, e.confidence = $confidence,
                e.mentions = e.mentions + 1, e.updatedAt = $now
            MERGE (c)-[m:MENTIONS]->(e)
            SET m.context = $context
            """,
            {
                "chunkId": chunk_id,
                "userId": user_id,
                "entityId": entity.id,
                "docId": doc_id,
                "name": entity.name,
                "category": entity.category.value,
                "confidence": entity.confidence,
                "context": entity.context,
                "now": self.now_iso(),
            },
        )

    async def do_create_similarity_edge(self, entity_a: str, entity_b: str, user_id: str, score: float, method: str) -> None:
        start, end = self.ordered_pair(entity_a, entity_b)
        await self._run(
            """
            MATCH (a:Entity {entityId: $start, userId: $userId})
            MATCH (b:Entity {entityId: $end, userId: $userId})
            MERGE (a)-[r:SIMILAR_TO]->(b)
            SET r.score = CASE WHEN r.score IS NULL OR r.score < $score THEN $score ELSE r.score END,
                r.method = coalesce(r.method, $method), r.updatedAt = $now
            """,
            {"start": start, "end": end, "userId": user_id, "score": score, "method": method, "now": self.now_iso()},
        )

    async def do_create_cooccurrence_edge(self, entity_a: str, entity_b: str, user_id: str, confidence: float) -> None:
        start, end = self.ordered_pair(entity_a, entity_b)
        await self._run(
            """
            MATCH (a:Entity {entityId: $start, userId: $userId})
            MATCH (b:Entity {entityId: $end, userId: $userId})
            MERGE (a)-[r:COOCCURS_WITH]->(b)
            ON CREATE SET r.count = 0, r.confidence = $confidence
            SET r.count = r.count + 1,
                r.confidence = CASE WHEN r.confidence < $confidence THEN $confidence ELSE r.confidence END
            """,
            {"start": start, "end": end, "userId": user_id, "confidence": confidence},
        )

    async def do_create_same_as_edge(self, duplicate_id: str, primary_id: str, user_id: str, confidence: float) -> None:
        await self._run(
            """
            MATCH (dup:Entity {entityId: $duplicateId, userId: $userId})
            MATCH (primary:Entity {entityId: $primaryId, userId: $userId})
            MERGE (dup)-[r:SAME_AS]->(primary)
            SET r.confidence = $confidence, r.updatedAt = $now
            """,
            {"duplicateId": duplicate_id, "primaryId": primary_id, "userId": user_id, "confidence": confidence, "now": self.now_iso()},
        )

    async def do_create_document_similarity_edge(self, doc_a: str, doc_b: str, user_id: str, similarity: float) -> None:
        start, end = self.ordered_pair(doc_a, doc_b)
        await self._run(
            """
            MATCH (a:Document {docId: $start, userId: $userId})
            MATCH (b:Document {docId: $end, userId: $userId})
            MERGE (a)-[r:DOCUMENT_SIMILAR_TO]->(b)
            SET r.similarity = $similarity, r.updatedAt = $now
            """,
            {"start": start, "end": end, "userId": user_id, "similarity": similarity, "now": self.now_iso()},
        )

    async def do_upsert_topic(self, topic: ExtractedTopic, user_id: str) -> None:
        await self._run(
            """
            MERGE (t:Topic {topicId: $topicId, userId: $userId})
            ON CREATE SET t.createdAt = $now
            SET t.name = $name, t.description = $description, t.keywords = $keywords, t.confidence = $confidence
            """,
            {
                "topicId": topic.id,
                "userId": user_id,
                "name": topic.name,
                "description": topic.description,
                "keywords": topic.keywords,
                "confidence": topic.confidence,
                "now": self.now_iso(),
            },
        )

    async def do_create_topic_edge(self, topic_id: str, doc_id: str, user_id: str, relevance: float) -> None:
        await self._run(
            """
            MATCH (t:Topic {topicId: $topicId, userId: $userId})
            MATCH (d:Document {docId: $docId, userId: $userId})
            MERGE (t)-[r:CATEGORIZES]->(d)
            SET r.relevance = $relevance
            """,
            {"topicId": topic_id, "docId": doc_id, "userId": user_id, "relevance": relevance},
        )

    async def do_delete_document_subgraph(self, doc_id: str, user_id: str) -> None:
        # document first, the orphan sweeps then only catch nodes no other document still references
        await self._run(
            "MATCH (d:Document {docId: $docId, userId: $userId}) DETACH DELETE d",
            {"docId": doc_id, "userId": user_id},
        )
        await self._run(
            "MATCH (c:Chunk {userId: $userId}) WHERE NOT ()-[:CONTAINS]->(c) DETACH DELETE c",
            {"userId": user_id},
        )
        await self._run(
            "MATCH (e:Entity {userId: $userId}) WHERE NOT ()-[:MENTIONS]->(e) DETACH DELETE e",
            {"userId": user_id},
        )

    ##########################################
    ################# READS ##################
    ##########################################

    async def do_get_graph(self, user_id: str, doc_ids: list[str] | None = None) -> GraphData:
        params = {"userId": user_id, "docIds": doc_ids or None}
        doc_filter = "($docIds IS NULL OR d.docId IN $docIds)"

        nodes: dict[str, GraphNode] = {}
        edges: dict[tuple[str, str, str], GraphEdge] = {}

        def add_edge(rel_type: RelationType, start: str, end: str, properties: dict | None = None) -> None:
            key = self.edge_key(rel_type, start, end)
            if key not in edges:
                edges[key] = GraphEdge(
                    id=":".join(key), type=rel_type, start_node_id=key[1], end_node_id=key[2], properties=properties or {},
                )

        for row in await self._run(f"MATCH (d:Document {{userId: $userId}}) WHERE {doc_filter} RETURN d", params):
            doc = row["d"]
            nodes[doc["docId"]] = GraphNode(id=doc["docId"], type=NodeType.DOCUMENT, label=doc.get("filename", ""), properties=doc)

        for row in await self._run(
            f"""
            MATCH (d:Document {{userId: $userId}})-[:CONTAINS]->(c:Chunk {{userId: $userId}})
            WHERE {doc_filter}
            RETURN d.docId AS docId, c
            """,
            params,
        ):
            chunk = row["c"]
            nodes[chunk["chunkId"]] = GraphNode(
                id=chunk["chunkId"], type=NodeType.CHUNK, label=f"Chunk {chunk.get('chunkIndex', 0)}", properties=chunk,
            )
            add_edge(RelationType.CONTAINS, row["docId"], chunk["chunkId"])

        for row in await self._run(
            f"""
            MATCH (d:Document {{userId: $userId}})-[:CONTAINS]->(c:Chunk {{userId: $userId}})-[m:MENTIONS]->(e:Entity {{userId: $userId}})
            WHERE {doc_filter}
            RETURN c.chunkId AS chunkId, e, m.context AS context
            """,
            params,
        ):
            entity = row["e"]
            nodes[entity["entityId"]] = GraphNode(
                id=entity["entityId"], type=NodeType.ENTITY, label=entity.get("name", ""), properties=entity,
            )
            add_edge(RelationType.MENTIONS, row["chunkId"], entity["entityId"], {"context": row["context"]} if row["context"] else {})

        entity_ids = [node_id for node_id, node in nodes.items() if node.type == NodeType.ENTITY]
        if entity_ids:
            for row in await self._run(
                """
                MATCH (a:Entity {userId: $userId})-[r:COOCCURS_WITH|SIMILAR_TO|SAME_AS]->(b:Entity {userId: $userId})
                WHERE a.entityId IN $entityIds AND b.entityId IN $entityIds
                RETURN type(r) AS type, a.entityId AS start, b.entityId AS end, properties(r) AS props
                """,
                {"userId": user_id, "entityIds": entity_ids},
            ):
                add_edge(RelationType(row["type"]), row["start"], row["end"], row["props"])

        document_ids = [node_id for node_id, node in nodes.items() if node.type == NodeType.DOCUMENT]
        if document_ids:
            for row in await self._run(
                """
                MATCH (a:Document {userId: $userId})-[r:DOCUMENT_SIMILAR_TO]->(b:Document {userId: $userId})
                WHERE a.docId IN $documentIds AND b.docId IN $documentIds
                RETURN a.docId AS start, b.docId AS end, properties(r) AS props
                """,
                {"userId": user_id, "documentIds": document_ids},
            ):
                add_edge(RelationType.DOCUMENT_SIMILAR_TO, row["start"], row["end"], row["props"])

            for row in await self._run(
                """
                MATCH (t:Topic {userId: $userId})-[r:CATEGORIZES]->(d:Document {userId: $userId})
                WHERE d.docId IN $documentIds
                RETURN t, d.docId AS docId, properties(r) AS props
                """,
                {"userId": user_id, "documentIds": document_ids},
            ):
                topic = row["t"]
                nodes[topic["topicId"]] = GraphNode(id=topic["topicId"], type=NodeType.TOPIC, label=topic.get("name", ""), properties=topic)
                add_edge(RelationType.CATEGORIZES, topic["topicId"], row["docId"], row["props"])

        return GraphData(nodes=list(nodes.values()), edges=list(edges.values()))

    @staticmethod
    def _to_stored_entity(row: dict) -> StoredEntity:
        return StoredEntity(
            entity_id=row["entityId"],
            name=row.get("name") or "",
            category=EntityCategory.parse(row.get("category")),
            confidence=float(row.get("confidence") or 0.0),
            doc_id=row.get("docId"),
        )

    async def do_get_entities(self, user_id: str, category: str | None = None, exclude_doc_id: str | None = None) -> list[StoredEntity]:
        rows = await self._run(
            """
            MATCH (e:Entity {userId: $userId})
            WHERE ($category IS NULL OR e.category = $category)
              AND ($excludeDocId IS NULL OR e.docId IS NULL OR e.docId <> $excludeDocId)
            RETURN e.entityId AS entityId, e.name AS name, e.category AS category,
                   e.confidence AS confidence, e.docId AS docId
            ORDER BY e.entityId
            """,
            {"userId": user_id, "category": category, "excludeDocId": exclude_doc_id},
        )
        return [self._to_stored_entity(row) for row in rows]

    async def do_get_entities_for_chunks(self, chunk_ids: list[str], user_id: str) -> list[StoredEntity]:
        if not chunk_ids:
            return []
        rows = await self._run(
            """
            MATCH (c:Chunk {userId: $userId})-[:MENTIONS]->(e:Entity {userId: $userId})
            WHERE c.chunkId IN $chunkIds
            RETURN DISTINCT e.entityId AS entityId, e.name AS name, e.category AS category,
                   e.confidence AS confidence, e.docId AS docId
            ORDER BY confidence DESC
            """,
            {"userId": user_id, "chunkIds": chunk_ids},
        )
        return [self._to_stored_entity(row) for row in rows]

    async def do_get_documents(self, user_id: str) -> list[dict]:
        return await self._run(
            """
            MATCH (d:Document {userId: $userId})
            RETURN d.docId AS docId, d.filename AS filename
            ORDER BY d.docId
            """,
            {"userId": user_id},
        )

    async def do_get_document_chunks(self, doc_id: str, user_id: str) -> list[dict]:
        return await self._run(
            """
            MATCH (:Document {docId: $docId, userId: $userId})-[:CONTAINS]->(c:Chunk {userId: $userId})
            RETURN c.chunkId AS chunkId, c.text AS text, c.chunkIndex AS chunkIndex
            ORDER BY c.chunkIndex
            """,
            {"docId": doc_id, "userId": user_id},
        )

    async def do_count_chunks(self, doc_id: str, user_id: str) -> int:
        rows = await self._run(
            """
            MATCH (:Document {docId: $docId, userId: $userId})-[:CONTAINS]->(c:Chunk {userId: $userId})
            RETURN count(c) AS total
            """,
            {"docId": doc_id, "userId": user_id},
        )
        return int(rows[0]["total"]) if rows else 0
