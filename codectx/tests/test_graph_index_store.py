import pytest
import asyncio
import sys
from pathlib import Path

# Add package root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from codectx.config import settings
from codectx.exceptions import PointStoreError
from codectx.graph.graph_index_store import GraphIndexStore, EDGE_VECTOR_SIZE
from codectx.query.memory_point_store import MemoryPointStore
from codectx.types import CodeNodeType, EdgeType


def build_chain(graph_store, make_node, make_edge):
    """file -> class -> method -> helper, plus an import of the file."""
    file_node = make_node(CodeNodeType.FILE, "src/app.py", start_line=0, end_line=40)
    class_node = make_node(CodeNodeType.CLASS, "Greeter", start_line=3, end_line=20)
    method_node = make_node(CodeNodeType.METHOD, "greet", start_line=5, end_line=8)
    helper_node = make_node(CodeNodeType.FUNCTION, "helper", start_line=25, end_line=30)
    import_node = make_node(CodeNodeType.IMPORT, "os", start_line=1, end_line=1)

    nodes = [file_node, class_node, method_node, helper_node, import_node]
    edges = [
        make_edge(file_node.id, class_node.id, EdgeType.CONTAINS),
        make_edge(class_node.id, method_node.id, EdgeType.CONTAINS),
        make_edge(method_node.id, helper_node.id, EdgeType.CALLS),
        make_edge(file_node.id, import_node.id, EdgeType.IMPORTS),
    ]
    asyncio.run(graph_store.add_nodes(nodes))
    asyncio.run(graph_store.add_edges(edges))
    return {node.name: node for node in nodes}


class TestGraphIndexStore:
    """Test graph storage over the in-process point store."""

    def test_collection_names_are_workspace_scoped(self, point_store):
        """Test that collection names derive from the workspace path."""
        first = GraphIndexStore("/workspace/a", point_store, 8)
        second = GraphIndexStore("/workspace/b", point_store, 8)

        assert first.nodes_collection_name.startswith("graph_nodes_")
        assert first.edges_collection_name.startswith("graph_edges_")
        assert first.nodes_collection_name != second.nodes_collection_name
        assert first.nodes_collection_name == GraphIndexStore("/workspace/a", point_store, 8).nodes_collection_name

    def test_initialize_is_idempotent(self, graph_store, point_store):
        """Test that a second initialize call leaves collections and indexes intact."""
        asyncio.run(graph_store.initialize())

        indexes = point_store.data[graph_store.nodes_collection_name]["indexes"]
        assert set(indexes) == {"type", "name", "file_path", "start_line", "end_line"}
        assert point_store.data[graph_store.edges_collection_name]["vector_size"] == EDGE_VECTOR_SIZE

    def test_node_round_trip_with_default_embedding(self, graph_store, make_node):
        """Test storing a node without an embedding and reading it back."""
        node = make_node(CodeNodeType.FUNCTION, "main", start_line=2, end_line=6, content="def main(): ...")

        asyncio.run(graph_store.add_node(node))
        stored = asyncio.run(graph_store.get_node(node.id))

        assert stored is not None
        assert (stored.type, stored.name, stored.file_path) == (node.type, node.name, node.file_path)
        assert (stored.start_line, stored.end_line, stored.content) == (2, 6, "def main(): ...")
        assert stored.embedding == [0.0] * 8

    def test_get_node_missing_returns_none(self, graph_store):
        """Test that an unknown id yields None."""
        assert asyncio.run(graph_store.get_node("does-not-exist")) is None

    def test_reads_degrade_when_collection_is_missing(self, point_store):
        """Test that reads return empty results before initialization."""
        store = GraphIndexStore("/workspace/never-initialized", point_store, 8)

        assert asyncio.run(store.get_node("x")) is None
        assert asyncio.run(store.get_edges("x")) == []
        assert asyncio.run(store.search_similar_nodes([0.0] * 8)) == []
        assert asyncio.run(store.find_nodes_at_location("a.py", 1)) == []

    def test_writes_propagate_errors(self, point_store, make_node):
        """Test that write failures reach the caller."""
        store = GraphIndexStore("/workspace/never-initialized", point_store, 8)

        with pytest.raises(PointStoreError):
            asyncio.run(store.add_node(make_node(CodeNodeType.FUNCTION, "main")))

    def test_get_edges_both_directions_and_type_filter(self, graph_store, make_node, make_edge):
        """Test edge listing for source and target ends with an optional type."""
        nodes = build_chain(graph_store, make_node, make_edge)
        method_id = nodes["greet"].id

        edges = asyncio.run(graph_store.get_edges(method_id))
        calls = asyncio.run(graph_store.get_edges(method_id, EdgeType.CALLS))

        assert {edge.type for edge in edges} == {EdgeType.CONTAINS, EdgeType.CALLS}
        assert len(calls) == 1
        assert calls[0].target == nodes["helper"].id

    def test_connected_nodes_depth_zero_is_empty(self, graph_store, make_node, make_edge):
        """Test that depth zero finds nothing."""
        nodes = build_chain(graph_store, make_node, make_edge)

        assert asyncio.run(graph_store.get_connected_nodes(nodes["Greeter"].id, None, 0)) == []

    def test_connected_nodes_by_depth(self, graph_store, make_node, make_edge):
        """Test neighborhood growth per hop and edge type filtering."""
        nodes = build_chain(graph_store, make_node, make_edge)
        class_id = nodes["Greeter"].id

        depth_one = {n.name for n in asyncio.run(graph_store.get_connected_nodes(class_id, None, 1))}
        depth_two = {n.name for n in asyncio.run(graph_store.get_connected_nodes(class_id, None, 2))}
        contains_only = {
            n.name for n in asyncio.run(graph_store.get_connected_nodes(class_id, EdgeType.CONTAINS, 3))
        }

        assert depth_one == {"src/app.py", "greet"}
        assert depth_two == {"src/app.py", "greet", "helper", "os"}
        assert contains_only == {"src/app.py", "greet"}
        assert "Greeter" not in depth_two

    def test_connected_nodes_handles_cycles(self, graph_store, make_node, make_edge):
        """Test that cyclic edges visit each node once."""
        a = make_node(CodeNodeType.FUNCTION, "a", start_line=1)
        b = make_node(CodeNodeType.FUNCTION, "b", start_line=2)
        asyncio.run(graph_store.add_nodes([a, b]))
        asyncio.run(graph_store.add_edges([
            make_edge(a.id, b.id, EdgeType.CALLS),
            make_edge(b.id, a.id, EdgeType.CALLS),
        ]))

        connected = asyncio.run(graph_store.get_connected_nodes(a.id, None, 5))

        assert [n.id for n in connected] == [b.id]

    def test_subgraph_contains_root_once_and_unique_edges(self, graph_store, make_node, make_edge):
        """Test subgraph root placement and edge deduplication."""
        nodes = build_chain(graph_store, make_node, make_edge)
        class_id = nodes["Greeter"].id

        subgraph = asyncio.run(graph_store.get_subgraph(class_id, 1))

        node_ids = [n.id for n in subgraph.nodes]
        edge_ids = [e.id for e in subgraph.edges]
        assert node_ids[0] == class_id
        assert node_ids.count(class_id) == 1
        assert len(edge_ids) == len(set(edge_ids))
        # Only edges with both ends inside {file, class, method}
        assert {e.type for e in subgraph.edges} == {EdgeType.CONTAINS}
        assert len(subgraph.edges) == 2

    def test_search_similar_nodes_with_type_filter(self, graph_store, make_node):
        """Test similarity search restricted to one node type."""
        function = make_node(CodeNodeType.FUNCTION, "parse", embedding=[1.0] + [0.0] * 7)
        klass = make_node(CodeNodeType.CLASS, "Parser", embedding=[1.0] + [0.0] * 7)
        asyncio.run(graph_store.add_nodes([function, klass]))

        results = asyncio.run(graph_store.search_similar_nodes([1.0] + [0.0] * 7, 10, CodeNodeType.CLASS))

        assert [n.name for n in results] == ["Parser"]
        assert results[0].embedding == [1.0] + [0.0] * 7

    def test_find_nodes_at_location(self, graph_store, make_node, make_edge):
        """Test lookup of nodes spanning a line."""
        build_chain(graph_store, make_node, make_edge)

        names = {n.name for n in asyncio.run(graph_store.find_nodes_at_location("src/app.py", 6))}

        assert names == {"src/app.py", "Greeter", "greet"}
        assert asyncio.run(graph_store.find_nodes_at_location("src/other.py", 6)) == []

    def test_delete_by_file(self, graph_store, make_node, make_edge):
        """Test removing every node and edge of a file."""
        nodes = build_chain(graph_store, make_node, make_edge)
        other = make_node(CodeNodeType.FUNCTION, "caller", file_path="src/other.py")
        asyncio.run(graph_store.add_node(other))
        asyncio.run(graph_store.add_edge(make_edge(other.id, nodes["helper"].id, EdgeType.CALLS)))

        deleted = asyncio.run(graph_store.delete_by_file("src/app.py"))

        assert deleted == 5
        assert asyncio.run(graph_store.get_node(nodes["Greeter"].id)) is None
        assert asyncio.run(graph_store.get_node(other.id)) is not None
        assert asyncio.run(graph_store.get_edges(other.id)) == []
        assert asyncio.run(graph_store.delete_by_file("src/app.py")) == 0

    def test_clear(self, graph_store, make_node, make_edge):
        """Test dropping and recreating both collections."""
        nodes = build_chain(graph_store, make_node, make_edge)

        asyncio.run(graph_store.clear())

        assert asyncio.run(graph_store.get_node(nodes["Greeter"].id)) is None
        assert asyncio.run(graph_store.get_edges(nodes["Greeter"].id)) == []
        # Collections are recreated and usable
        asyncio.run(graph_store.add_node(nodes["Greeter"]))
        assert asyncio.run(graph_store.get_node(nodes["Greeter"].id)) is not None

    def test_delete_by_file_keeps_reproduced_nodes(self, graph_store, make_node, make_edge):
        """Test that kept nodes retain the edges other files point at them."""
        nodes = build_chain(graph_store, make_node, make_edge)
        other = make_node(CodeNodeType.FUNCTION, "caller", file_path="src/other.py")
        into_greet = make_edge(other.id, nodes["greet"].id, EdgeType.CALLS)
        into_helper = make_edge(other.id, nodes["helper"].id, EdgeType.CALLS)
        asyncio.run(graph_store.add_node(other))
        asyncio.run(graph_store.add_edges([into_greet, into_helper]))

        keep = [node.id for name, node in nodes.items() if name != "helper"]
        deleted = asyncio.run(graph_store.delete_by_file("src/app.py", keep_node_ids=keep))

        assert deleted == 1
        assert asyncio.run(graph_store.get_node(nodes["helper"].id)) is None
        assert asyncio.run(graph_store.get_node(nodes["Greeter"].id)) is not None
        assert [e.id for e in asyncio.run(graph_store.get_edges(other.id))] == [into_greet.id]
        # Edges leaving the file are removed for the caller to rewrite
        assert asyncio.run(graph_store.get_edges(nodes["Greeter"].id)) == []


class TestEdgeListingLimits:
    """Test edge listing when one level outgrows a single listing."""

    def build_tree(self, graph_store, make_node, make_edge):
        root = make_node(CodeNodeType.FILE, "src/app.py", start_line=0)
        classes = [make_node(CodeNodeType.CLASS, f"Class{i}", start_line=i + 1) for i in range(2)]
        methods = [make_node(CodeNodeType.METHOD, f"method{i}", start_line=i + 10) for i in range(4)]
        edges = [make_edge(root.id, klass.id, EdgeType.CONTAINS) for klass in classes]
        for i, method in enumerate(methods):
            edges.append(make_edge(classes[i // 2].id, method.id, EdgeType.CONTAINS))

        asyncio.run(graph_store.add_nodes([root] + classes + methods))
        asyncio.run(graph_store.add_edges(edges))
        return root, classes, methods

    def test_connected_nodes_beyond_query_limit(self, graph_store, make_node, make_edge, monkeypatch):
        """Test that every neighbor is found when a level exceeds the query limit."""
        monkeypatch.setattr(settings, "edge_scroll_limit", 3)
        monkeypatch.setattr(settings, "max_query_limit", 4)
        root, classes, methods = self.build_tree(graph_store, make_node, make_edge)

        connected = asyncio.run(graph_store.get_connected_nodes(root.id, None, 2))

        assert {n.id for n in connected} == {n.id for n in classes + methods}

    def test_edges_shared_between_groups_listed_once(self, graph_store, make_node, make_edge, monkeypatch):
        """Test that an edge joining two listing groups is returned once."""
        monkeypatch.setattr(settings, "edge_scroll_limit", 3)
        monkeypatch.setattr(settings, "max_query_limit", 4)
        root, classes, methods = self.build_tree(graph_store, make_node, make_edge)

        edges = asyncio.run(graph_store.get_edges_for_nodes([root.id] + [c.id for c in classes]))

        edge_ids = [e.id for e in edges]
        assert len(edge_ids) == len(set(edge_ids)) == 6
