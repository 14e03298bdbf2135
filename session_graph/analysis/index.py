"""Forward/reverse relationship index derived from the graph model."""

import logging

from ..graph.model import GraphModel
from ..graph.schema import LinkDirection
from .types import RelationshipEdge, RelationshipIndex

log = logging.getLogger(__name__)


def build_relationship_index(graph: GraphModel) -> RelationshipIndex:
    """Build the adjacency index in a single pass over nodes and links.

    Links whose endpoints are not in the graph are dropped; upstream event
    ordering can legitimately reference nodes that do not exist yet.
    """
    node_kinds = {node.id: node.kind.value for node in graph.nodes}

    forward: dict[str, set[RelationshipEdge]] = {}
    reverse: dict[str, set[RelationshipEdge]] = {}

    dropped = 0
    for link in graph.links:
        if link.source not in node_kinds or link.target not in node_kinds:
            dropped += 1
            continue
        if link.source == link.target:
            continue

        def add(into: dict, origin: str, neighbor: str) -> None:
            into.setdefault(origin, set()).add(
                RelationshipEdge(
                    neighbor_id=neighbor,
                    neighbor_kind=node_kinds[neighbor],
                    relationship=link.relationship,
                    confidence=link.confidence,
                    link_id=link.id,
                )
            )

        if link.direction in (LinkDirection.OUTGOING, LinkDirection.BIDIRECTIONAL):
            add(forward, link.source, link.target)
            add(reverse, link.target, link.source)
        if link.direction in (LinkDirection.INCOMING, LinkDirection.BIDIRECTIONAL):
            add(forward, link.target, link.source)
            add(reverse, link.source, link.target)

    if dropped:
        log.debug(f"Relationship index skipped {dropped} dangling links")

    return RelationshipIndex(
        forward={k: frozenset(v) for k, v in forward.items()},
        reverse={k: frozenset(v) for k, v in reverse.items()},
        node_kinds=node_kinds,
    )
