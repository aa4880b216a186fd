from typing import List, Dict, Any, Optional
import copy
import numpy as np

from .point_store import Point, ScoredPoint, PointFilter, PointStore, PAYLOAD_KINDS
from ..exceptions import PointStoreError, ResourceExistsError, ResourceNotFoundError
from ..utils.logger import app_logger


class MemoryPointStore(PointStore):
    """In-process point store.

    Keeps collections in dictionaries and scores queries with numpy. Used for
    local development and by the test-suite; semantics follow the Milvus
    backend (overwrite on upsert, strict collection lifecycle errors).
    """

    def __init__(self):
        self.logger = app_logger.bind(component="memory_point_store")
        self.data: Dict[str, Dict[str, Any]] = {}

    def _collection(self, name: str) -> Dict[str, Any]:
        if name not in self.data:
            raise ResourceNotFoundError(f"Collection {name} does not exist")
        return self.data[name]

    async def create_collection(
        self,
        name: str,
        vector_size: int,
        payload_schema: Dict[str, str],
        distance: str = "cosine",
        on_disk: bool = False,
        hnsw: Optional[Dict[str, int]] = None,
    ) -> None:
        if name in self.data:
            raise ResourceExistsError(f"Collection {name} already exists")
        if distance != "cosine":
            raise PointStoreError(f"Unsupported distance metric: {distance}")

        self.data[name] = {
            "vector_size": vector_size,
            "payload_schema": dict(payload_schema),
            "indexes": {},
            "points": {},
        }
        self.logger.info(f"Created collection: {name}")

    async def create_payload_index(self, collection: str, field_name: str, schema_kind: str) -> None:
        data = self._collection(collection)
        if schema_kind not in PAYLOAD_KINDS:
            raise PointStoreError(f"Unsupported payload index kind: {schema_kind}")
        if field_name in data["indexes"]:
            raise ResourceExistsError(f"Index on {collection}.{field_name} already exists")
        data["indexes"][field_name] = schema_kind

    async def upsert(self, collection: str, points: List[Point]) -> None:
        data = self._collection(collection)
        for point in points:
            if point.vector is None or len(point.vector) != data["vector_size"]:
                raise PointStoreError(
                    f"Vector dimension mismatch for point {point.id} in {collection}: "
                    f"expected {data['vector_size']}"
                )
        for point in points:
            data["points"][point.id] = Point(
                id=point.id,
                vector=list(point.vector),
                payload=copy.deepcopy(point.payload),
            )

    async def retrieve(self, collection: str, ids: List[str]) -> List[Point]:
        points = self._collection(collection)["points"]
        return [copy.deepcopy(points[point_id]) for point_id in ids if point_id in points]

    async def scroll(self, collection: str, point_filter: Optional[PointFilter] = None,
                     limit: int = 1000) -> List[Point]:
        results = []
        for point in self._collection(collection)["points"].values():
            if point_filter is None or point_filter.matches(point.payload):
                results.append(copy.deepcopy(point))
                if len(results) >= limit:
                    break
        return results

    async def query(self, collection: str, vector: List[float],
                    point_filter: Optional[PointFilter] = None, limit: int = 10) -> List[ScoredPoint]:
        data = self._collection(collection)
        if len(vector) != data["vector_size"]:
            raise PointStoreError(f"Query vector dimension mismatch for {collection}")

        candidates = [
            point for point in data["points"].values()
            if point_filter is None or point_filter.matches(point.payload)
        ]
        if not candidates:
            return []

        query_np = np.array(vector, dtype=float)
        doc_np = np.array([point.vector for point in candidates], dtype=float)
        norms = np.linalg.norm(doc_np, axis=1) * np.linalg.norm(query_np)
        with np.errstate(divide="ignore", invalid="ignore"):
            similarities = np.where(norms > 0, doc_np @ query_np / norms, 0.0)

        top_indices = np.argsort(-similarities, kind="stable")[:limit]
        return [
            ScoredPoint(
                id=candidates[idx].id,
                vector=list(candidates[idx].vector),
                payload=copy.deepcopy(candidates[idx].payload),
                score=float(similarities[idx]),
            )
            for idx in top_indices
        ]

    async def delete(self, collection: str, ids: List[str]) -> None:
        points = self._collection(collection)["points"]
        for point_id in ids:
            points.pop(point_id, None)

    async def delete_collection(self, name: str) -> None:
        if name not in self.data:
            raise ResourceNotFoundError(f"Collection {name} does not exist")
        del self.data[name]
        self.logger.info(f"Dropped collection: {name}")

    def get_stats(self) -> Dict[str, Any]:
        """Get point counts per collection."""
        return {name: len(data["points"]) for name, data in self.data.items()}
