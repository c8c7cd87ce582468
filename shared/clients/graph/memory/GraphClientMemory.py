from shared.clients.graph.GraphClientInterface import GraphClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
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

NodeKey = tuple[str, str, str]        # (label, id, user_id)
EdgeKey = tuple[str, str, str, str]   # (type, start id, end id, user_id)


class GraphClientMemory(GraphClientInterface):
    """In-process property graph with the same merge semantics as the Neo4j engine.

    Used for local development and tests. Nothing survives a restart.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._nodes: dict[NodeKey, dict] = {}
        self._edges: dict[EdgeKey, dict] = {}

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Memory"

    def _get_required_config(self) -> list[EnvConfig]:
        return []

    def _node(self, label: NodeType, node_id: str, user_id: str) -> dict | None:
        return self._nodes.get((label.value, node_id, user_id))

    def _nodes_of(self, label: NodeType, user_id: str) -> list[dict]:
        return [props for (lbl, _, uid), props in self._nodes.items() if lbl == label.value and uid == user_id]

    def _edges_of(self, rel_type: RelationType, user_id: str) -> list[tuple[str, str, dict]]:
        return [(start, end, props) for (typ, start, end, uid), props in self._edges.items() if typ == rel_type.value and uid == user_id]

    def _merge_edge(self, rel_type: RelationType, start: str, end: str, user_id: str) -> dict:
        return self._edges.setdefault((rel_type.value, start, end, user_id), {})

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport=None) -> None:
        return None

    async def close(self) -> None:
        return None

    async def do_healthcheck(self) -> bool:
        return True

    ##########################################
    ################ WRITES ##################
    ##########################################

    async def do_upsert_document(self, doc_id: str, user_id: str, filename: str) -> None:
        node = self._nodes.setdefault(
            (NodeType.DOCUMENT.value, doc_id, user_id),
            {"docId": doc_id, "userId": user_id, "createdAt": self.now_iso()},
        )
        node["filename"] = filename

    async def do_upsert_chunk(self, chunk_id: str, doc_id: str, user_id: str, text: str, chunk_index: int) -> None:
        if self._node(NodeType.DOCUMENT, doc_id, user_id) is None:
            raise ValueError(f"Document node {doc_id} does not exist for user {user_id}.")
        node = self._nodes.setdefault(
            (NodeType.CHUNK.value, chunk_id, user_id),
            {"chunkId": chunk_id, "userId": user_id, "createdAt": self.now_iso()},
        )
        node.update({"text": text, "chunkIndex": chunk_index, "docId": doc_id})
        self._merge_edge(RelationType.CONTAINS, doc_id, chunk_id, user_id)

    async def do_upsert_entity(self, entity: ExtractedEntity, chunk_id: str, doc_id: str, user_id: str) -> None:
        if self._node(NodeType.CHUNK, chunk_id, user_id) is None:
            return
        node = self._nodes.setdefault(
            (NodeType.ENTITY.value, entity.id, user_id),
            {"entityId": entity.id, "userId": user_id, "mentions": 0, "docId": doc_id, "createdAt": self.now_iso()},
        )
        node.update({
            "name": entity.name,
            "category": entity.category.value,
            "confidence": entity.confidence,
            "mentions": node["mentions"] + 1,
            "updatedAt": self.now_iso(),
        })
        self._merge_edge(RelationType.MENTIONS, chunk_id, entity.id, user_id)["context"] = entity.context

    def _both_exist(self, label: NodeType, a: str, b: str, user_id: str) -> bool:
        return self._node(label, a, user_id) is not None and self._node(label, b, user_id) is not None

    async def do_create_similarity_edge(self, entity_a: str, entity_b: str, user_id: str, score: float, method: str) -> None:
        if not self._both_exist(NodeType.ENTITY, entity_a, entity_b, user_id):
            return
        start, end = self.ordered_pair(entity_a, entity_b)
        props = self._merge_edge(RelationType.SIMILAR_TO, start, end, user_id)
        props["score"] = max(score, props.get("score", score))
        props.setdefault("method", method)
        props["updatedAt"] = self.now_iso()

    async def do_create_cooccurrence_edge(self, entity_a: str, entity_b: str, user_id: str, confidence: float) -> None:
        if not self._both_exist(NodeType.ENTITY, entity_a, entity_b, user_id):
            return
        start, end = self.ordered_pair(entity_a, entity_b)
        props = self._merge_edge(RelationType.COOCCURS_WITH, start, end, user_id)
        props["count"] = props.get("count", 0) + 1
        props["confidence"] = max(confidence, props.get("confidence", confidence))

    async def do_create_same_as_edge(self, duplicate_id: str, primary_id: str, user_id: str, confidence: float) -> None:
        if not self._both_exist(NodeType.ENTITY, duplicate_id, primary_id, user_id):
            return
        props = self._merge_edge(RelationType.SAME_AS, duplicate_id, primary_id, user_id)
        props.update({"confidence": confidence, "updatedAt": self.now_iso()})

    async def do_create_document_similarity_edge(self, doc_a: str, doc_b: str, user_id: str, similarity: float) -> None:
        if not self._both_exist(NodeType.DOCUMENT, doc_a, doc_b, user_id):
            return
        start, end = self.ordered_pair(doc_a, doc_b)
        props = self._merge_edge(RelationType.DOCUMENT_SIMILAR_TO, start, end, user_id)
        props.update({"similarity": similarity, "updatedAt": self.now_iso()})

    async def do_upsert_topic(self, topic: ExtractedTopic, user_id: str) -> None:
        node = self._nodes.setdefault(
            (NodeType.TOPIC.value, topic.id, user_id),
            {"topicId": topic.id, "userId": user_id, "createdAt": self.now_iso()},
        )
        node.update({
            "name": topic.name,
            "description": topic.description,
            "keywords": list(topic.keywords),
            "confidence": topic.confidence,
        })

    async def do_create_topic_edge(self, topic_id: str, doc_id: str, user_id: str, relevance: float) -> None:
        if self._node(NodeType.TOPIC, topic_id, user_id) is None or self._node(NodeType.DOCUMENT, doc_id, user_id) is None:
            return
        self._merge_edge(RelationType.CATEGORIZES, topic_id, doc_id, user_id)["relevance"] = relevance

    def _detach_delete(self, label: NodeType, node_id: str, user_id: str) -> None:
        self._nodes.pop((label.value, node_id, user_id), None)
        for key in [k for k in self._edges if k[3] == user_id and node_id in (k[1], k[2])]:
            del self._edges[key]

    async def do_delete_document_subgraph(self, doc_id: str, user_id: str) -> None:
        self._detach_delete(NodeType.DOCUMENT, doc_id, user_id)

        contained = {end for _, end, _ in self._edges_of(RelationType.CONTAINS, user_id)}
        for chunk in self._nodes_of(NodeType.CHUNK, user_id):
            if chunk["chunkId"] not in contained:
                self._detach_delete(NodeType.CHUNK, chunk["chunkId"], user_id)

        mentioned = {end for _, end, _ in self._edges_of(RelationType.MENTIONS, user_id)}
        for entity in self._nodes_of(NodeType.ENTITY, user_id):
            if entity["entityId"] not in mentioned:
                self._detach_delete(NodeType.ENTITY, entity["entityId"], user_id)

    ##########################################
    ################# READS ##################
    ##########################################

    async def do_get_graph(self, user_id: str, doc_ids: list[str] | None = None) -> GraphData:
        nodes: dict[str, GraphNode] = {}
        edges: dict[tuple[str, str, str], GraphEdge] = {}

        def add_edge(rel_type: RelationType, start: str, end: str, properties: dict) -> None:
            key = self.edge_key(rel_type, start, end)
            edges.setdefault(key, GraphEdge(
                id=":".join(key), type=rel_type, start_node_id=key[1], end_node_id=key[2], properties=dict(properties),
            ))

        for doc in self._nodes_of(NodeType.DOCUMENT, user_id):
            if doc_ids and doc["docId"] not in doc_ids:
                continue
            nodes[doc["docId"]] = GraphNode(id=doc["docId"], type=NodeType.DOCUMENT, label=doc.get("filename", ""), properties=dict(doc))

        for start, end, props in self._edges_of(RelationType.CONTAINS, user_id):
            chunk = self._node(NodeType.CHUNK, end, user_id)
            if start in nodes and chunk is not None:
                nodes[end] = GraphNode(id=end, type=NodeType.CHUNK, label=f"Chunk {chunk.get('chunkIndex', 0)}", properties=dict(chunk))
                add_edge(RelationType.CONTAINS, start, end, props)

        for start, end, props in self._edges_of(RelationType.MENTIONS, user_id):
            entity = self._node(NodeType.ENTITY, end, user_id)
            if start in nodes and entity is not None:
                nodes[end] = GraphNode(id=end, type=NodeType.ENTITY, label=entity.get("name", ""), properties=dict(entity))
                add_edge(RelationType.MENTIONS, start, end, {k: v for k, v in props.items() if v})

        for rel_type in (RelationType.COOCCURS_WITH, RelationType.SIMILAR_TO, RelationType.SAME_AS, RelationType.DOCUMENT_SIMILAR_TO):
            for start, end, props in self._edges_of(rel_type, user_id):
                if start in nodes and end in nodes:
                    add_edge(rel_type, start, end, props)

        for start, end, props in self._edges_of(RelationType.CATEGORIZES, user_id):
            topic = self._node(NodeType.TOPIC, start, user_id)
            if end in nodes and topic is not None:
                nodes[start] = GraphNode(id=start, type=NodeType.TOPIC, label=topic.get("name", ""), properties=dict(topic))
                add_edge(RelationType.CATEGORIZES, start, end, props)

        return GraphData(nodes=list(nodes.values()), edges=list(edges.values()))

    @staticmethod
    def _to_stored_entity(node: dict) -> StoredEntity:
        return StoredEntity(
            entity_id=node["entityId"],
            name=node.get("name") or "",
            category=EntityCategory.parse(node.get("category")),
            confidence=float(node.get("confidence") or 0.0),
            doc_id=node.get("docId"),
        )

    async def do_get_entities(self, user_id: str, category: str | None = None, exclude_doc_id: str | None = None) -> list[StoredEntity]:
        result = []
        for node in sorted(self._nodes_of(NodeType.ENTITY, user_id), key=lambda n: n["entityId"]):
            if category is not None and node.get("category") != category:
                continue
            if exclude_doc_id is not None and node.get("docId") == exclude_doc_id:
                continue
            result.append(self._to_stored_entity(node))
        return result

    async def do_get_entities_for_chunks(self, chunk_ids: list[str], user_id: str) -> list[StoredEntity]:
        wanted = set(chunk_ids)
        entity_ids: list[str] = []
        for start, end, _ in self._edges_of(RelationType.MENTIONS, user_id):
            if start in wanted and end not in entity_ids:
                entity_ids.append(end)
        entities = [self._to_stored_entity(self._node(NodeType.ENTITY, eid, user_id)) for eid in entity_ids if self._node(NodeType.ENTITY, eid, user_id)]
        return sorted(entities, key=lambda e: e.confidence, reverse=True)

    async def do_get_documents(self, user_id: str) -> list[dict]:
        docs = [{"docId": d["docId"], "filename": d.get("filename")} for d in self._nodes_of(NodeType.DOCUMENT, user_id)]
        return sorted(docs, key=lambda d: d["docId"])

    async def do_get_document_chunks(self, doc_id: str, user_id: str) -> list[dict]:
        chunks = []
        for start, end, _ in self._edges_of(RelationType.CONTAINS, user_id):
            chunk = self._node(NodeType.CHUNK, end, user_id)
            if start == doc_id and chunk is not None:
                chunks.append({"chunkId": end, "text": chunk.get("text", ""), "chunkIndex": chunk.get("chunkIndex", 0)})
        return sorted(chunks, key=lambda c: c["chunkIndex"])

    async def do_count_chunks(self, doc_id: str, user_id: str) -> int:
        return len(await self.do_get_document_chunks(doc_id, user_id))
