"""Tests for the in-process context graph."""

from devmemory.graph import ContextGraph
from devmemory.models import RelationshipRef


class TestNodes:
    """Test node bookkeeping."""

    def test_upsert_replaces_in_place(self, make_entry):
        """Upserting an existing id replaces the node."""
        graph = ContextGraph()
        graph.upsert_node(make_entry("a", "first"))
        graph.upsert_node(make_entry("a", "second"))

        assert len(graph) == 1
        assert graph.get_node("a").content == "second"

    def test_remove_node_drops_edges_both_directions(self, make_entry):
        """Removing a node removes edges where it is source or target."""
        graph = ContextGraph()
        for entry_id in ("a", "b", "c"):
            graph.upsert_node(make_entry(entry_id))
        graph.add_edge("a", "b", "references")
        graph.add_edge("c", "a", "depends_on")
        graph.add_edge("b", "c", "relates")

        removed = graph.remove_node("a")

        assert removed == 2
        assert "a" not in graph
        assert [(e.source, e.target) for e in graph.edges] == [("b", "c")]


class TestEdges:
    """Test edge semantics."""

    def test_edges_are_appended_not_merged(self):
        """Repeated edges are appended, not merged."""
        graph = ContextGraph()
        graph.add_edge("a", "b", "references", 0.5)
        graph.add_edge("a", "b", "references", 0.9)

        assert len(graph.edges) == 2

    def test_replace_edges_only_touches_source(self):
        """replace_edges rewrites only the source's outgoing edges."""
        graph = ContextGraph()
        graph.add_edge("a", "b", "references")
        graph.add_edge("c", "b", "references")

        graph.replace_edges("a", [RelationshipRef("c", "depends_on", 0.3)])

        assert [(e.source, e.target, e.type) for e in graph.edges] == [
            ("c", "b", "references"),
            ("a", "c", "depends_on"),
        ]


class TestGetRelated:
    """Test in-process related lookups."""

    def test_excludes_dangling_targets(self, make_entry):
        """Edges to ids that are not nodes are kept but not returned."""
        graph = ContextGraph()
        graph.upsert_node(make_entry("a"))
        graph.upsert_node(make_entry("b"))
        graph.add_edge("a", "b", "references", 0.8)
        graph.add_edge("a", "ghost", "references")

        assert graph.get_related("a") == [{"id": "b", "relationship": "references"}]
        assert graph.stats() == {"nodes": 2, "edges": 2, "dangling_edges": 1}

    def test_filters_by_relationship_type(self, make_entry):
        """get_related can be narrowed to one relationship type."""
        graph = ContextGraph()
        for entry_id in ("a", "b", "c"):
            graph.upsert_node(make_entry(entry_id))
        graph.add_edge("a", "b", "references")
        graph.add_edge("a", "c", "depends_on")

        assert graph.get_related("a", "depends_on") == [{"id": "c", "relationship": "depends_on"}]
        assert graph.get_related("b") == []
