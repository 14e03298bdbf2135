"""Single-hop highlight path around a selected node."""

from .types import PathResult, RelationshipEdge, RelationshipIndex


def _edge_sort_key(edge: RelationshipEdge) -> tuple[str, str, str]:
    return (edge.neighbor_id, edge.relationship, edge.link_id)


def calculate_path(node_id: str, index: RelationshipIndex) -> PathResult | None:
    """Return the trigger node, its one-hop neighbors and the links used.

    Both directions of the index are followed; this is a highlight, not a
    shortest-path search. Returns None when the node has no relationships,
    in which case callers clear any existing highlight.
    """
    if not index.has_edges(node_id):
        return None

    edges = sorted(
        index.forward_edges(node_id) | index.reverse_edges(node_id),
        key=_edge_sort_key,
    )

    nodes: list[str] = [node_id]
    links: list[str] = []
    seen_nodes = {node_id}
    seen_links: set[str] = set()

    for edge in edges:
        if edge.neighbor_id not in seen_nodes:
            seen_nodes.add(edge.neighbor_id)
            nodes.append(edge.neighbor_id)
        if edge.link_id not in seen_links:
            seen_links.add(edge.link_id)
            links.append(edge.link_id)

    return PathResult(trigger=node_id, nodes=tuple(nodes), links=tuple(links))
