import pytest
import asyncio
import hashlib
from typing import List, Dict, Optional
from pathlib import Path
import sys

# Add package root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from codectx.embedding.embedding_service import EmbeddingResponse
from codectx.graph.graph_index_store import GraphIndexStore
from codectx.processor.relationship_extractor import RelationshipExtractor
from codectx.processor.source_parser import SourceParser
from codectx.query.memory_point_store import MemoryPointStore
from codectx.types import (
    CodeGraphNode,
    CodeGraphEdge,
    CodeNodeType,
    EdgeType,
    generate_node_id,
    generate_edge_id,
)


TEST_WORKSPACE = "/workspace/project"
TEST_DIMENSION = 8


class FakeEmbedder:
    """Deterministic embedder; vectors derive from a hash of the text."""

    def __init__(self, dimension: int = TEST_DIMENSION, fixed: Optional[Dict[str, List[float]]] = None):
        self.dimension = dimension
        self.fixed = fixed or {}
        self.calls: List[List[str]] = []

    def vector_for(self, text: str) -> List[float]:
        if text in self.fixed:
            return list(self.fixed[text])
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [(digest[i] - 128) / 128.0 for i in range(self.dimension)]

    async def create_embeddings(self, texts: List[str]) -> EmbeddingResponse:
        self.calls.append(list(texts))
        return EmbeddingResponse(embeddings=[self.vector_for(text) for text in texts])

    def get_dimension(self) -> int:
        return self.dimension


class FailingEmbedder:
    """Embedder that always fails."""

    async def create_embeddings(self, texts: List[str]) -> EmbeddingResponse:
        raise RuntimeError("embedding backend unavailable")


@pytest.fixture
def point_store() -> MemoryPointStore:
    """In-process point store."""
    return MemoryPointStore()


@pytest.fixture
def graph_store(point_store: MemoryPointStore) -> GraphIndexStore:
    """Initialized graph store over the in-process point store."""
    store = GraphIndexStore(TEST_WORKSPACE, point_store, TEST_DIMENSION)
    asyncio.run(store.initialize())
    return store


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def failing_embedder() -> FailingEmbedder:
    return FailingEmbedder()


@pytest.fixture(scope="session")
def source_parser() -> SourceParser:
    """tree-sitter parser shared across tests."""
    return SourceParser()


@pytest.fixture
def extractor() -> RelationshipExtractor:
    return RelationshipExtractor(TEST_WORKSPACE)


@pytest.fixture
def parse_and_extract(source_parser: SourceParser, extractor: RelationshipExtractor):
    """Parse source text and run the extractor on it."""
    def _extract(code: str, file_path: str, language: str):
        if not source_parser.supports(language):
            pytest.skip(f"{language} grammar not available")
        tree = source_parser.parse(code, language)
        return extractor.extract_from_ast(tree, f"{TEST_WORKSPACE}/{file_path}", code, language)
    return _extract


@pytest.fixture
def make_node():
    """Factory for graph nodes with deterministic ids."""
    def _make(node_type: CodeNodeType, name: str, file_path: str = "src/app.py",
              start_line: int = 1, end_line: int = 10, content: str = "",
              embedding: Optional[List[float]] = None) -> CodeGraphNode:
        return CodeGraphNode(
            id=generate_node_id(file_path, node_type.value, name, start_line),
            type=node_type,
            name=name,
            file_path=file_path,
            start_line=start_line,
            end_line=end_line,
            content=content or f"{node_type.value} {name}",
            embedding=embedding,
        )
    return _make


@pytest.fixture
def make_edge():
    """Factory for graph edges with deterministic ids."""
    def _make(source: str, target: str, edge_type: EdgeType, weight: float = 1.0,
              metadata: Optional[Dict] = None) -> CodeGraphEdge:
        return CodeGraphEdge(
            id=generate_edge_id(source, target, edge_type),
            source=source,
            target=target,
            type=edge_type,
            weight=weight,
            metadata=metadata or {},
        )
    return _make
