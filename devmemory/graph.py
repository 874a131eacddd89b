"""In-process context graph.

Holds the entries added through the context manager as nodes and their
declared relationships as directed, typed, weighted edges. The graph is a
cache of what was written through this process: it is never rebuilt from the
backend and can go stale if other writers touch the same store.
"""

from dataclasses import dataclass
from typing import Any

from devmemory.log_config import get_logger
from devmemory.models import ContextEntry, RelationshipRef

log = get_logger("graph")


@dataclass(frozen=True)
class Edge:
    """Directed relationship source -[type]-> target."""

    source: str
    target: str
    type: str
    strength: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "type": self.type,
            "strength": self.strength,
        }


class ContextGraph:
    """Node map plus edge list.

    Edges are appended, never merged: adding the same relationship twice
    yields two edges. Edges may point at targets that are not nodes; such
    dangling edges are kept but skipped by get_related.
    """

    def __init__(self):
        self.nodes: dict[str, ContextEntry] = {}
        self.edges: list[Edge] = []

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def has_node(self, entry_id: str) -> bool:
        return entry_id in self.nodes

    def get_node(self, entry_id: str) -> ContextEntry | None:
        return self.nodes.get(entry_id)

    def upsert_node(self, entry: ContextEntry) -> None:
        """Insert a node or replace it in place."""
        self.nodes[entry.id] = entry

    def remove_node(self, entry_id: str) -> int:
        """Remove a node and every edge that mentions it.

        Returns:
            Number of edges removed
        """
        self.nodes.pop(entry_id, None)
        before = len(self.edges)
        self.edges = [e for e in self.edges if e.source != entry_id and e.target != entry_id]
        removed = before - len(self.edges)
        log.trace(f"Removed node {entry_id} and {removed} edges")
        return removed

    def add_edge(self, source: str, target: str, type: str, strength: float = 1.0) -> Edge:
        edge = Edge(source=source, target=target, type=type, strength=strength)
        self.edges.append(edge)
        return edge

    def add_relationships(self, source: str, refs: list[RelationshipRef]) -> None:
        """Append one edge per relationship."""
        for ref in refs:
            self.add_edge(source, ref.target_id, ref.type, ref.strength)

    def replace_edges(self, source: str, refs: list[RelationshipRef]) -> None:
        """Replace the whole outgoing edge list of source."""
        self.edges = [e for e in self.edges if e.source != source]
        self.add_relationships(source, refs)

    def outgoing(self, source: str) -> list[Edge]:
        return [e for e in self.edges if e.source == source]

    def get_related(self, entry_id: str, relationship_type: str | None = None) -> list[dict[str, str]]:
        """Outgoing neighbours of entry_id whose target is a known node.

        Returns:
            List of {"id": target, "relationship": type}, in edge insertion order
        """
        return [
            {"id": e.target, "relationship": e.type}
            for e in self.outgoing(entry_id)
            if e.target in self.nodes
            and (relationship_type is None or e.type == relationship_type)
        ]

    def stats(self) -> dict[str, int]:
        dangling = sum(1 for e in self.edges if e.target not in self.nodes)
        return {
            "nodes": len(self.nodes),
            "edges": len(self.edges),
            "dangling_edges": dangling,
        }

    def clear(self) -> None:
        self.nodes.clear()
        self.edges.clear()
