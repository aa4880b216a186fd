import pytest
import uuid
import sys
from pathlib import Path

# Add package root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from codectx.types import (
    CodeGraphNode,
    CodeGraphEdge,
    CodeNodeType,
    EdgeType,
    SearchContext,
    ContextAwareSearchResult,
    generate_node_id,
    generate_edge_id,
)


class TestIdGeneration:
    """Test deterministic id generation."""

    def test_node_id_is_deterministic(self):
        """Test stable node ids."""
        first = generate_node_id("src/app.py", "function", "main", 12)
        second = generate_node_id("src/app.py", "function", "main", 12)

        assert first == second
        assert uuid.UUID(first).version == 5

    def test_node_id_depends_on_every_component(self):
        """Test that each id component changes the node id."""
        base = generate_node_id("src/app.py", "function", "main", 12)

        assert base != generate_node_id("src/other.py", "function", "main", 12)
        assert base != generate_node_id("src/app.py", "method", "main", 12)
        assert base != generate_node_id("src/app.py", "function", "run", 12)
        assert base != generate_node_id("src/app.py", "function", "main", 13)

    def test_edge_id_is_deterministic(self):
        """Test stable edge ids."""
        assert generate_edge_id("a", "b", EdgeType.CALLS) == generate_edge_id("a", "b", EdgeType.CALLS)

    def test_edge_id_is_direction_sensitive(self):
        """Test that swapping ends changes the edge id."""
        assert generate_edge_id("a", "b", EdgeType.CALLS) != generate_edge_id("b", "a", EdgeType.CALLS)

    def test_edge_id_depends_on_type(self):
        """Test that the edge type changes the edge id."""
        assert generate_edge_id("a", "b", EdgeType.CALLS) != generate_edge_id("a", "b", EdgeType.CONTAINS)


class TestPayloadConversion:
    """Test conversion between graph types and stored payloads."""

    def test_node_payload_round_trip(self):
        """Test node payload conversion."""
        node = CodeGraphNode(
            id="n1",
            type=CodeNodeType.METHOD,
            name="greet",
            file_path="src/app.py",
            start_line=3,
            end_line=5,
            content="def greet(self): ...",
            metadata={"isAsync": False},
        )

        payload = node.to_payload()
        restored = CodeGraphNode.from_payload("n1", payload, [0.5, 0.5])

        assert payload["type"] == "method"
        assert restored.type == CodeNodeType.METHOD
        assert restored.name == "greet"
        assert restored.start_line == 3
        assert restored.end_line == 5
        assert restored.metadata == {"isAsync": False}
        assert restored.embedding == [0.5, 0.5]

    def test_edge_payload_round_trip(self):
        """Test edge payload conversion."""
        edge = CodeGraphEdge(id="e1", source="a", target="Base", type=EdgeType.EXTENDS,
                             metadata={"unresolved": True})

        restored = CodeGraphEdge.from_payload("e1", edge.to_payload())

        assert restored.type == EdgeType.EXTENDS
        assert restored.weight == 1.0
        assert restored.unresolved
        assert restored.other_end("a") == "Base"
        assert restored.other_end("Base") == "a"

    def test_search_result_to_dict(self):
        """Test search result serialization."""
        node = CodeGraphNode(id="n1", type=CodeNodeType.FUNCTION, name="main", file_path="a.py",
                             start_line=1, end_line=2, content="def main(): pass")
        result = ContextAwareSearchResult(node=node, score=0.9, context=SearchContext())

        data = result.to_dict()

        assert data["node"]["name"] == "main"
        assert data["score"] == 0.9
        assert data["context"]["call_chain"] is None
        assert data["context"]["related_nodes"] == []
