from typing import List, Dict, Optional, Sequence
import numpy as np

from ..config import settings
from ..graph.graph_index_store import GraphIndexStore
from ..types import (
    CodeGraphNode,
    CodeNodeType,
    EdgeType,
    SearchContext,
    ContextAwareSearchResult,
)
from ..utils.logger import app_logger


NODE_TYPE_PRIORITY: Dict[CodeNodeType, int] = {
    CodeNodeType.CLASS: 10,
    CodeNodeType.INTERFACE: 9,
    CodeNodeType.FUNCTION: 8,
    CodeNodeType.METHOD: 7,
    CodeNodeType.TYPE_ALIAS: 6,
    CodeNodeType.ENUM: 5,
    CodeNodeType.CONSTANT: 4,
    CodeNodeType.VARIABLE: 3,
    CodeNodeType.MODULE: 2,
    CodeNodeType.NAMESPACE: 2,
    CodeNodeType.IMPORT: 1,
    CodeNodeType.EXPORT: 1,
    CodeNodeType.FILE: 0,
}

DEPENDENCY_EDGE_TYPES = {EdgeType.IMPORTS, EdgeType.DEPENDS_ON, EdgeType.USES}

CALLABLE_TYPES = {CodeNodeType.FUNCTION, CodeNodeType.METHOD}


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity mapped from [-1, 1] onto [0, 1].

    Returns 0 for vectors of different length and for empty or zero vectors.
    """
    if a is None or b is None or len(a) != len(b) or len(a) == 0:
        return 0.0

    a_np = np.asarray(a, dtype=float)
    b_np = np.asarray(b, dtype=float)
    denominator = np.linalg.norm(a_np) * np.linalg.norm(b_np)
    if denominator == 0:
        return 0.0

    return float((np.dot(a_np, b_np) / denominator + 1) / 2)


class ContextAwareSearchService:
    """Semantic search over the code graph, enriched with graph context.

    Hits from the vector index are scored locally against the query vector
    and decorated with their neighborhood: connected nodes, touching edges,
    transitive callers for functions and methods, and reachable dependencies.
    """

    def __init__(self, graph_index: GraphIndexStore, embedder):
        self.logger = app_logger.bind(component="context_aware_search")
        self.graph_index = graph_index
        self.embedder = embedder

    async def search_with_context(
        self,
        query: str,
        include_related: bool = True,
        max_depth: Optional[int] = None,
        node_types: Optional[List[CodeNodeType]] = None,
        edge_types: Optional[List[EdgeType]] = None,
        limit: Optional[int] = None,
    ) -> List[ContextAwareSearchResult]:
        """Search with context awareness.

        Only the first entry of ``node_types`` and of ``edge_types`` is used
        as a filter.
        """
        max_depth = settings.search_default_max_depth if max_depth is None else max_depth
        limit = settings.search_default_limit if limit is None else limit
        if limit <= 0:
            return []

        try:
            response = await self.embedder.create_embeddings([query])
            query_embedding = response.embeddings[0]
        except Exception as e:
            self.logger.error(f"Failed to embed query: {e}")
            return []

        node_type = node_types[0] if node_types else None
        edge_type = edge_types[0] if edge_types else None

        candidates = await self.graph_index.search_similar_nodes(query_embedding, limit * 2, node_type)

        scored = []
        seen = set()
        for node in candidates:
            if node.id in seen:
                continue
            seen.add(node.id)
            scored.append((cosine_similarity(query_embedding, node.embedding or []), node))

        scored.sort(key=lambda item: item[0], reverse=True)

        results = []
        for score, node in scored[:limit]:
            context = SearchContext()
            if include_related:
                context = await self._build_context(
                    node,
                    edge_type,
                    max_depth,
                    related_limit=settings.related_nodes_limit,
                    relationships_limit=settings.relationships_limit,
                )
            results.append(ContextAwareSearchResult(node=node, score=score, context=context))

        self.logger.info(f"Search for '{query}' returned {len(results)} results")
        return results

    async def get_context_for_location(self, file_path: str, line: int) -> Optional[ContextAwareSearchResult]:
        """Context for the most specific node covering a file position."""
        candidates = await self.graph_index.find_nodes_at_location(file_path, line)
        if not candidates:
            return None

        # Smallest span wins; first seen wins ties
        node = candidates[0]
        for current in candidates[1:]:
            if current.end_line - current.start_line < node.end_line - node.start_line:
                node = current

        context = await self._build_context(node, None, settings.location_context_depth)
        return ContextAwareSearchResult(node=node, score=1.0, context=context)

    async def find_related_code(self, node_id: str,
                                relationship_types: Optional[List[EdgeType]] = None) -> List[CodeGraphNode]:
        """Nodes within a few hops of ``node_id``, ranked by node type priority."""
        allowed = set(relationship_types) if relationship_types else None
        visited = {node_id}
        frontier = [node_id]
        related: List[CodeGraphNode] = []

        for _ in range(settings.related_code_depth):
            frontier_set = set(frontier)
            candidate_ids = []
            for edge in await self.graph_index.get_edges_for_nodes(frontier):
                if allowed is not None and edge.type not in allowed:
                    continue
                for current, other in ((edge.source, edge.target), (edge.target, edge.source)):
                    if current in frontier_set and other not in visited:
                        visited.add(other)
                        candidate_ids.append(other)

            if not candidate_ids:
                break
            found = await self.graph_index.get_nodes(candidate_ids)
            related.extend(found)
            frontier = [node.id for node in found]

        return self.rank_related_nodes(related)

    @staticmethod
    def rank_related_nodes(nodes: List[CodeGraphNode]) -> List[CodeGraphNode]:
        """Stable sort by node type priority, highest first."""
        return sorted(nodes, key=lambda node: NODE_TYPE_PRIORITY.get(node.type, 0), reverse=True)

    async def _build_context(self, node: CodeGraphNode, edge_type: Optional[EdgeType], max_depth: int,
                             related_limit: Optional[int] = None,
                             relationships_limit: Optional[int] = None) -> SearchContext:
        related_nodes = await self.graph_index.get_connected_nodes(node.id, edge_type, max_depth)
        relationships = await self.graph_index.get_edges(node.id, edge_type)

        call_chain = None
        if node.type in CALLABLE_TYPES:
            call_chain = await self.build_call_chain(node.id, max_depth)

        dependencies = await self.build_dependency_tree(node.id, max_depth)

        if related_limit is not None:
            related_nodes = related_nodes[:related_limit]
        if relationships_limit is not None:
            relationships = relationships[:relationships_limit]

        return SearchContext(
            related_nodes=related_nodes,
            relationships=relationships,
            call_chain=call_chain,
            dependencies=dependencies,
        )

    async def build_call_chain(self, node_id: str, max_depth: int) -> List[CodeGraphNode]:
        """Transitive callers of a node, starting with the node itself.

        Walks CALLS edges backwards one level at a time, up to ``max_depth``
        hops and at most ``traversal_node_cap`` nodes.
        """
        chain: List[CodeGraphNode] = []
        visited = {node_id}
        frontier = [node_id]
        depth = 0

        while frontier and depth <= max_depth:
            found = await self.graph_index.get_nodes(frontier)
            chain.extend(found)
            if len(chain) >= settings.traversal_node_cap:
                self.logger.warning(f"Call chain for {node_id} truncated at {settings.traversal_node_cap} nodes")
                return chain[:settings.traversal_node_cap]

            found_ids = {node.id for node in found}
            next_frontier = []
            if found_ids and depth < max_depth:
                for edge in await self.graph_index.get_edges_for_nodes(found_ids, EdgeType.CALLS):
                    if edge.target in found_ids and edge.source not in visited:
                        visited.add(edge.source)
                        next_frontier.append(edge.source)

            frontier = next_frontier
            depth += 1

        return chain

    async def build_dependency_tree(self, node_id: str, max_depth: int) -> List[CodeGraphNode]:
        """Nodes reachable through IMPORTS, DEPENDS_ON and USES edges."""
        dependencies: List[CodeGraphNode] = []
        visited = {node_id}
        frontier = [node_id]
        depth = 0

        while frontier and depth <= max_depth:
            frontier_set = set(frontier)
            candidate_ids = []
            for edge in await self.graph_index.get_edges_for_nodes(frontier):
                if edge.type not in DEPENDENCY_EDGE_TYPES:
                    continue
                for current, other in ((edge.source, edge.target), (edge.target, edge.source)):
                    if current in frontier_set and other not in visited:
                        visited.add(other)
                        candidate_ids.append(other)

            found = await self.graph_index.get_nodes(candidate_ids)
            dependencies.extend(found)
            if len(dependencies) >= settings.traversal_node_cap:
                self.logger.warning(
                    f"Dependency walk for {node_id} truncated at {settings.traversal_node_cap} nodes"
                )
                return dependencies[:settings.traversal_node_cap]

            frontier = [node.id for node in found]
            depth += 1

        return dependencies
