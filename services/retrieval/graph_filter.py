"""Trimming of graph data for visualisation."""

from shared.models.graph import GraphData, GraphNode, NodeType

# node types kept first when a node limit applies
NODE_PRIORITY = (NodeType.DOCUMENT, NodeType.ENTITY, NodeType.CHUNK, NodeType.TOPIC)


def _prune_edges(graph: GraphData, nodes: list[GraphNode]) -> GraphData:
    node_ids = {node.id for node in nodes}
    edges = [e for e in graph.edges if e.start_node_id in node_ids and e.end_node_id in node_ids]
    return GraphData(nodes=nodes, edges=edges)


def filter_graph(graph: GraphData, entity_types: list[str] | None = None, max_nodes: int | None = None) -> GraphData:
    """Restrict a graph to some entity categories and/or a maximum node count.

    Args:
        graph (GraphData): Full graph of a user.
        entity_types (list[str] | None): Keep only Entity nodes of these categories,
            nodes of other types are always kept.
        max_nodes (int | None): Upper bound of nodes, filled by type in NODE_PRIORITY order.

    Returns:
        GraphData: The remaining nodes and the edges whose both ends remain.
    """
    if entity_types:
        wanted = {t.strip().upper() for t in entity_types if t.strip()}
        nodes = [
            node for node in graph.nodes
            if node.type != NodeType.ENTITY or str(node.properties.get("category", "")).upper() in wanted
        ]
        graph = _prune_edges(graph, nodes)

    if max_nodes is not None and max_nodes >= 0 and len(graph.nodes) > max_nodes:
        prioritized = [node for node_type in NODE_PRIORITY for node in graph.nodes if node.type == node_type]
        graph = _prune_edges(graph, prioritized[:max_nodes])

    return graph
