from typing import List, Dict, Optional, Iterable
import hashlib

from ..config import settings
from ..exceptions import ResourceExistsError, ResourceNotFoundError
from ..query.point_store import Point, FieldCondition, PointFilter, PointStore
from ..types import (
    CodeGraphNode,
    CodeGraphEdge,
    CodeNodeType,
    EdgeType,
    Subgraph,
)
from ..utils.logger import app_logger


# Edges carry a placeholder vector; only the first component (weight) is set
EDGE_VECTOR_SIZE = 4

NODE_PAYLOAD_SCHEMA = {
    "type": "keyword",
    "name": "keyword",
    "file_path": "keyword",
    "start_line": "integer",
    "end_line": "integer",
    "content": "text",
    "metadata": "json",
}

EDGE_PAYLOAD_SCHEMA = {
    "source": "keyword",
    "target": "keyword",
    "type": "keyword",
    "weight": "float",
    "metadata": "json",
}

NODE_INDEX_FIELDS = ["type", "name", "file_path", "start_line", "end_line"]
EDGE_INDEX_FIELDS = ["source", "target", "type", "weight"]


class GraphIndexStore:
    """Code graph storage over a vector-capable point store.

    Nodes and edges of one workspace live in two collections whose names are
    derived from a hash of the workspace root. Writes propagate store errors;
    reads degrade to ``None`` or an empty list.
    """

    def __init__(self, workspace_path: str, point_store: PointStore, vector_size: int):
        self.logger = app_logger.bind(component="graph_index_store")
        self.workspace_path = workspace_path
        self.point_store = point_store
        self.vector_size = vector_size

        workspace_hash = hashlib.sha256(workspace_path.encode("utf-8")).hexdigest()[:16]
        self.nodes_collection_name = f"{settings.nodes_collection_prefix}_{workspace_hash}"
        self.edges_collection_name = f"{settings.edges_collection_prefix}_{workspace_hash}"

    async def initialize(self):
        """Create both collections and their payload indexes if missing."""
        try:
            await self.point_store.create_collection(
                self.nodes_collection_name,
                vector_size=self.vector_size,
                payload_schema=NODE_PAYLOAD_SCHEMA,
                distance="cosine",
                on_disk=settings.vectors_on_disk,
                hnsw={"m": settings.hnsw_m, "ef_construct": settings.hnsw_ef_construct},
            )
        except ResourceExistsError:
            self.logger.debug(f"Collection {self.nodes_collection_name} already exists")

        try:
            await self.point_store.create_collection(
                self.edges_collection_name,
                vector_size=EDGE_VECTOR_SIZE,
                payload_schema=EDGE_PAYLOAD_SCHEMA,
                distance="cosine",
                on_disk=settings.vectors_on_disk,
            )
        except ResourceExistsError:
            self.logger.debug(f"Collection {self.edges_collection_name} already exists")

        await self._create_indexes(self.nodes_collection_name, NODE_INDEX_FIELDS, NODE_PAYLOAD_SCHEMA)
        await self._create_indexes(self.edges_collection_name, EDGE_INDEX_FIELDS, EDGE_PAYLOAD_SCHEMA)
        self.logger.info(
            f"Graph index ready: {self.nodes_collection_name}, {self.edges_collection_name}"
        )

    async def _create_indexes(self, collection: str, fields: List[str], schema: Dict[str, str]):
        for field_name in fields:
            try:
                await self.point_store.create_payload_index(collection, field_name, schema[field_name])
            except ResourceExistsError:
                pass

    def _node_point(self, node: CodeGraphNode) -> Point:
        return Point(
            id=node.id,
            vector=node.embedding if node.embedding is not None else [0.0] * self.vector_size,
            payload=node.to_payload(),
        )

    def _edge_point(self, edge: CodeGraphEdge) -> Point:
        return Point(
            id=edge.id,
            vector=[float(edge.weight)] + [0.0] * (EDGE_VECTOR_SIZE - 1),
            payload=edge.to_payload(),
        )

    async def add_node(self, node: CodeGraphNode):
        """Upsert a single node."""
        await self.add_nodes([node])

    async def add_nodes(self, nodes: List[CodeGraphNode]):
        """Upsert a batch of nodes."""
        if not nodes:
            return
        try:
            await self.point_store.upsert(self.nodes_collection_name, [self._node_point(n) for n in nodes])
        except Exception as e:
            self.logger.error(f"Failed to upsert {len(nodes)} nodes: {e}")
            raise

    async def add_edge(self, edge: CodeGraphEdge):
        """Upsert a single edge."""
        await self.add_edges([edge])

    async def add_edges(self, edges: List[CodeGraphEdge]):
        """Upsert a batch of edges."""
        if not edges:
            return
        try:
            await self.point_store.upsert(self.edges_collection_name, [self._edge_point(e) for e in edges])
        except Exception as e:
            self.logger.error(f"Failed to upsert {len(edges)} edges: {e}")
            raise

    async def get_node(self, node_id: str) -> Optional[CodeGraphNode]:
        """Get a node by id, or None if it cannot be retrieved."""
        nodes = await self.get_nodes([node_id])
        return nodes[0] if nodes else None

    async def get_nodes(self, node_ids: Iterable[str]) -> List[CodeGraphNode]:
        """Get several nodes in one round trip, in request order."""
        node_ids = list(dict.fromkeys(node_ids))
        if not node_ids:
            return []
        try:
            points = await self.point_store.retrieve(self.nodes_collection_name, node_ids)
            return [CodeGraphNode.from_payload(p.id, p.payload, p.vector) for p in points]
        except Exception as e:
            self.logger.warning(f"Failed to retrieve nodes: {e}")
            return []

    async def get_edges(self, node_id: str, edge_type: Optional[EdgeType] = None) -> List[CodeGraphEdge]:
        """Get all edges where the node is source or target."""
        return await self.get_edges_for_nodes([node_id], edge_type)

    async def get_edges_for_nodes(self, node_ids: Iterable[str],
                                  edge_type: Optional[EdgeType] = None) -> List[CodeGraphEdge]:
        """Get all edges touching any of the given nodes.

        Ids are listed in groups small enough that every node keeps its full
        ``edge_scroll_limit`` within one ``max_query_limit`` listing. An edge
        joining two groups is returned once.
        """
        node_ids = list(dict.fromkeys(node_ids))
        if not node_ids:
            return []

        group_size = max(1, settings.max_query_limit // settings.edge_scroll_limit)
        edges: Dict[str, CodeGraphEdge] = {}
        try:
            for start in range(0, len(node_ids), group_size):
                group = node_ids[start:start + group_size]
                point_filter = PointFilter(should=[
                    FieldCondition(key="source", any_of=group),
                    FieldCondition(key="target", any_of=group),
                ])
                if edge_type is not None:
                    point_filter.must.append(FieldCondition(key="type", value=edge_type.value))

                limit = min(settings.edge_scroll_limit * len(group), settings.max_query_limit)
                for p in await self.point_store.scroll(self.edges_collection_name, point_filter, limit=limit):
                    edges.setdefault(p.id, CodeGraphEdge.from_payload(p.id, p.payload))
        except Exception as e:
            self.logger.warning(f"Failed to list edges for {len(node_ids)} nodes: {e}")
            return []

        return list(edges.values())

    async def get_connected_nodes(self, node_id: str, edge_type: Optional[EdgeType] = None,
                                  depth: int = 1) -> List[CodeGraphNode]:
        """Breadth-first neighborhood of a node, excluding the node itself.

        Each level costs one edge listing and one multi-id retrieval.
        """
        visited = {node_id}
        frontier = [node_id]
        connected: List[CodeGraphNode] = []

        for _ in range(max(depth, 0)):
            frontier_set = set(frontier)
            next_frontier = []
            for edge in await self.get_edges_for_nodes(frontier, edge_type):
                for current, other in ((edge.source, edge.target), (edge.target, edge.source)):
                    if current in frontier_set and other not in visited:
                        visited.add(other)
                        next_frontier.append(other)

            if not next_frontier:
                break
            connected.extend(await self.get_nodes(next_frontier))
            frontier = next_frontier

        self.logger.debug(f"Found {len(connected)} nodes within {depth} hops of {node_id}")
        return connected

    async def search_similar_nodes(self, embedding: List[float], limit: int = 10,
                                   node_type: Optional[CodeNodeType] = None) -> List[CodeGraphNode]:
        """Nearest-neighbor search over nodes, optionally of one type."""
        point_filter = None
        if node_type is not None:
            point_filter = PointFilter(must=[FieldCondition(key="type", value=node_type.value)])

        try:
            points = await self.point_store.query(
                self.nodes_collection_name, embedding, point_filter=point_filter, limit=limit
            )
            return [CodeGraphNode.from_payload(p.id, p.payload, p.vector) for p in points]
        except Exception as e:
            self.logger.warning(f"Similarity search failed: {e}")
            return []

    async def find_nodes_at_location(self, file_path: str, line: int) -> List[CodeGraphNode]:
        """Nodes of a file whose line span contains ``line``."""
        point_filter = PointFilter(must=[
            FieldCondition(key="file_path", value=file_path),
            FieldCondition(key="start_line", lte=line),
            FieldCondition(key="end_line", gte=line),
        ])
        try:
            points = await self.point_store.scroll(
                self.nodes_collection_name, point_filter, limit=settings.max_query_limit
            )
            return [CodeGraphNode.from_payload(p.id, p.payload, p.vector) for p in points]
        except Exception as e:
            self.logger.warning(f"Location lookup failed for {file_path}:{line}: {e}")
            return []

    async def find_nodes_by_name(self, names: Iterable[str]) -> List[CodeGraphNode]:
        """Stored nodes whose name is one of ``names``."""
        names = list(dict.fromkeys(names))
        if not names:
            return []

        point_filter = PointFilter(must=[FieldCondition(key="name", any_of=names)])
        try:
            points = await self.point_store.scroll(
                self.nodes_collection_name, point_filter, limit=settings.max_query_limit
            )
            return [CodeGraphNode.from_payload(p.id, p.payload, p.vector) for p in points]
        except Exception as e:
            self.logger.warning(f"Name lookup failed for {len(names)} names: {e}")
            return []

    async def get_subgraph(self, node_id: str, depth: int) -> Subgraph:
        """Induced subgraph over a node and its neighborhood."""
        nodes = await self.get_connected_nodes(node_id, None, depth)
        node_ids = {node_id} | {node.id for node in nodes}

        unique_edges: Dict[str, CodeGraphEdge] = {}
        for edge in await self.get_edges_for_nodes([node_id] + [node.id for node in nodes]):
            if edge.source in node_ids and edge.target in node_ids:
                unique_edges.setdefault(edge.id, edge)

        root = await self.get_node(node_id)
        if root is not None:
            nodes.insert(0, root)

        return Subgraph(nodes=nodes, edges=list(unique_edges.values()))

    async def delete_by_file(self, file_path: str, keep_node_ids: Optional[Iterable[str]] = None) -> int:
        """Delete the graph data of a file.

        Every edge leaving one of the file's nodes is removed. Nodes listed in
        ``keep_node_ids`` survive along with the edges other files point at
        them; every other node of the file goes together with its inbound
        edges. Without ``keep_node_ids`` the file is removed entirely.
        Returns the number of deleted nodes.
        """
        keep = set(keep_node_ids or ())
        point_filter = PointFilter(must=[FieldCondition(key="file_path", value=file_path)])
        try:
            points = await self.point_store.scroll(
                self.nodes_collection_name, point_filter, limit=settings.max_query_limit
            )
            file_node_ids = {p.id for p in points}
            if not file_node_ids:
                return 0

            stale_node_ids = [node_id for node_id in file_node_ids if node_id not in keep]
            stale_edge_ids = [
                edge.id for edge in await self.get_edges_for_nodes(file_node_ids)
                if edge.source in file_node_ids or edge.target not in keep
            ]
            await self.point_store.delete(self.edges_collection_name, stale_edge_ids)
            await self.point_store.delete(self.nodes_collection_name, stale_node_ids)
        except Exception as e:
            self.logger.error(f"Failed to delete graph data for {file_path}: {e}")
            raise

        self.logger.info(
            f"Deleted {len(stale_node_ids)} nodes and {len(stale_edge_ids)} edges for {file_path}"
        )
        return len(stale_node_ids)

    async def clear(self):
        """Drop and recreate both collections."""
        for name in (self.nodes_collection_name, self.edges_collection_name):
            try:
                await self.point_store.delete_collection(name)
            except ResourceNotFoundError:
                pass

        await self.initialize()
