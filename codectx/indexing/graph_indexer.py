from typing import List, Iterable, Optional, Tuple
from dataclasses import dataclass
from pathlib import Path
import os

from ..config import settings
from ..exceptions import ExtractionError
from ..graph.graph_index_store import GraphIndexStore
from ..graph.reference_linker import ReferenceLinker
from ..processor.relationship_extractor import RelationshipExtractor
from ..processor.source_parser import SourceParser, detect_language
from ..types import CodeGraphNode, CodeGraphEdge
from ..utils.logger import app_logger


@dataclass
class IndexingStats:
    """Outcome of one indexing run."""
    files_indexed: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    nodes: int = 0
    edges: int = 0
    references_resolved: int = 0
    references_dropped: int = 0


def embedding_text(node: CodeGraphNode) -> str:
    """Text sent to the embedder for a node."""
    return f"{node.type.value} {node.name}\n{node.content}"


class GraphIndexer:
    """Builds the code graph for a set of files.

    Each run parses and extracts every file, links raw-name references across
    the batch and the nodes already stored for other files, embeds node text,
    then upserts nodes before edges.
    """

    def __init__(self, graph_index: GraphIndexStore, embedder,
                 parser: Optional[SourceParser] = None,
                 extractor: Optional[RelationshipExtractor] = None):
        self.logger = app_logger.bind(component="graph_indexer")
        self.graph_index = graph_index
        self.embedder = embedder
        self.parser = parser or SourceParser()
        self.extractor = extractor or RelationshipExtractor(graph_index.workspace_path)

    def _resolve(self, file_path: str) -> str:
        if os.path.isabs(file_path):
            return file_path
        return os.path.join(self.graph_index.workspace_path, file_path)

    async def index_files(self, file_paths: Iterable[str]) -> IndexingStats:
        """Index a batch of files."""
        stats = IndexingStats()
        nodes, edges = self._extract_files(file_paths, stats)
        await self._link_and_store(nodes, edges, stats)
        return stats

    async def reindex_file(self, file_path: str) -> IndexingStats:
        """Replace the graph data of one file.

        Nodes the file still produces keep their ids, so edges from other
        files into them survive the pass.
        """
        stats = IndexingStats()
        relative_path = self.extractor.relative_path(self._resolve(file_path))
        nodes, edges = self._extract_files([file_path], stats)

        await self.graph_index.delete_by_file(relative_path, keep_node_ids=[node.id for node in nodes])
        await self._link_and_store(nodes, edges, stats)
        return stats

    def _extract_files(self, file_paths: Iterable[str],
                       stats: IndexingStats) -> Tuple[List[CodeGraphNode], List[CodeGraphEdge]]:
        nodes: List[CodeGraphNode] = []
        edges: List[CodeGraphEdge] = []

        for file_path in file_paths:
            language = detect_language(file_path)
            if not self.parser.supports(language):
                self.logger.debug(f"Skipping unsupported file: {file_path}")
                stats.files_skipped += 1
                continue

            try:
                content = Path(self._resolve(file_path)).read_text(encoding="utf-8", errors="replace")
                tree = self.parser.parse(content, language)
                result = self.extractor.extract_from_ast(tree, self._resolve(file_path), content, language)
            except (OSError, ExtractionError) as e:
                self.logger.error(f"Failed to extract {file_path}: {e}")
                stats.files_failed += 1
                continue

            nodes.extend(result.nodes)
            edges.extend(result.edges)
            stats.files_indexed += 1

        return nodes, edges

    async def _stored_targets(self, nodes: List[CodeGraphNode],
                              edges: List[CodeGraphEdge]) -> List[CodeGraphNode]:
        """Stored nodes of other files that unresolved edges may name."""
        names = set()
        for edge in edges:
            if edge.unresolved:
                names.add(edge.target)
                names.add(edge.target.rsplit(".", 1)[-1])
        if not names:
            return []

        batch_files = {node.file_path for node in nodes}
        stored = await self.graph_index.find_nodes_by_name(sorted(names))
        return [node for node in stored if node.file_path not in batch_files]

    async def _link_and_store(self, nodes: List[CodeGraphNode], edges: List[CodeGraphEdge],
                              stats: IndexingStats):
        linker = ReferenceLinker(nodes)
        linker.add_nodes(await self._stored_targets(nodes, edges))
        edges = linker.link(edges)
        stats.references_resolved = linker.resolved_count
        stats.references_dropped = linker.dropped_count

        await self._embed(nodes)
        await self.graph_index.add_nodes(nodes)
        await self.graph_index.add_edges(edges)

        stats.nodes = len(nodes)
        stats.edges = len(edges)
        self.logger.info(
            f"Indexed {stats.files_indexed} files ({stats.files_skipped} skipped, "
            f"{stats.files_failed} failed): {stats.nodes} nodes, {stats.edges} edges"
        )

    async def _embed(self, nodes: List[CodeGraphNode]):
        batch_size = settings.embedding_batch_size
        for start in range(0, len(nodes), batch_size):
            batch = nodes[start:start + batch_size]
            response = await self.embedder.create_embeddings([embedding_text(node) for node in batch])
            for node, embedding in zip(batch, response.embeddings):
                node.embedding = embedding
