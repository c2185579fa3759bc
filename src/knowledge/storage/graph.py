"""Text matching over a graph namespace, shared by the graph backends.

A node matches when the query shares alphanumeric tokens (case-insensitive)
with any of its string property values; its score is the fraction of
distinct query tokens it contains. Each match then spreads half its score
one hop: to the nodes it is connected to and to its siblings (nodes with a
common parent, e.g. other chunks of the same document). A node keeps the
best score it receives.
"""

from collections import defaultdict
from collections.abc import Iterable, Mapping
from typing import Any

from knowledge.core.reranking import term_overlap, tokenize
from knowledge.storage.base import GraphHit

NEIGHBOR_DECAY = 0.5


def node_tokens(properties: Mapping[str, Any]) -> list[str]:
    tokens: list[str] = []
    for value in properties.values():
        if isinstance(value, str):
            tokens.extend(tokenize(value, case_sensitive=False))
    return tokens


def match_nodes(
    nodes: Mapping[str, Mapping[str, Any]],
    edges: Iterable[tuple[str, str]],
    text: str,
    limit: int,
) -> list[GraphHit]:
    """Score the nodes of one namespace against text.

    Args:
        nodes: Node id -> properties, for the namespace being queried
        edges: (from_id, to_id) pairs; endpoints outside nodes are allowed
        text: Query text
        limit: Maximum number of hits

    Returns:
        Hits sorted by score descending, then id ascending
    """
    query_tokens = tokenize(text, case_sensitive=False)
    if limit <= 0 or not query_tokens:
        return []

    scores: dict[str, float] = {}
    for node_id, properties in nodes.items():
        overlap = term_overlap(query_tokens, node_tokens(properties))
        if overlap > 0:
            scores[node_id] = overlap

    parents: dict[str, set[str]] = defaultdict(set)
    children: dict[str, set[str]] = defaultdict(set)
    for from_id, to_id in edges:
        children[from_id].add(to_id)
        parents[to_id].add(from_id)

    expanded = dict(scores)
    for node_id, score in scores.items():
        neighbors = set(children[node_id]) | parents[node_id]
        for parent in parents[node_id]:
            neighbors |= children[parent]
        neighbors.discard(node_id)

        spread = score * NEIGHBOR_DECAY
        for neighbor in neighbors:
            if neighbor in nodes and spread > expanded.get(neighbor, 0.0):
                expanded[neighbor] = spread

    ranked = sorted(expanded.items(), key=lambda item: (-item[1], item[0]))[:limit]

    hits = []
    for node_id, score in ranked:
        properties = dict(nodes[node_id])
        content = properties.get("content")
        hits.append(
            GraphHit(
                id=node_id,
                score=score,
                content=content if isinstance(content, str) else "",
                properties=properties,
            )
        )
    return hits
