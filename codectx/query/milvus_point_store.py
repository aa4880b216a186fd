from typing import List, Dict, Any, Optional
import asyncio
import json
from pymilvus import (
    connections,
    utility,
    FieldSchema,
    CollectionSchema,
    DataType,
    Collection,
)
from pymilvus.exceptions import MilvusException

from .point_store import Point, ScoredPoint, FieldCondition, PointFilter, PointStore
from ..config import settings
from ..exceptions import PointStoreError, ResourceExistsError, ResourceNotFoundError
from ..utils.logger import app_logger


ID_FIELD = "id"
VECTOR_FIELD = "vector"

METRIC_TYPES = {"cosine": "COSINE"}

SCALAR_INDEX_TYPES = {
    "keyword": "INVERTED",
    "text": "INVERTED",
    "integer": "STL_SORT",
    "float": "STL_SORT",
}


def _literal(value: Any) -> str:
    """Render a Python value as a Milvus expression literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    return json.dumps(str(value))


def render_condition(condition: FieldCondition) -> str:
    """Render one payload predicate as a Milvus boolean expression."""
    if condition.any_of is not None:
        values = ", ".join(_literal(value) for value in condition.any_of)
        return f"{condition.key} in [{values}]"
    if condition.gte is not None or condition.lte is not None:
        parts = []
        if condition.gte is not None:
            parts.append(f"{condition.key} >= {_literal(condition.gte)}")
        if condition.lte is not None:
            parts.append(f"{condition.key} <= {_literal(condition.lte)}")
        return " and ".join(parts)
    return f"{condition.key} == {_literal(condition.value)}"


def render_filter(point_filter: Optional[PointFilter]) -> str:
    """Render a PointFilter as a Milvus boolean expression ("" for no filter)."""
    if point_filter is None:
        return ""
    clauses = [f"({render_condition(condition)})" for condition in point_filter.must]
    if point_filter.should:
        should = " or ".join(f"({render_condition(condition)})" for condition in point_filter.should)
        clauses.append(f"({should})")
    return " and ".join(clauses)


def build_field_schema(field_name: str, kind: str) -> FieldSchema:
    """Map a payload kind to a Milvus scalar field."""
    if kind == "keyword":
        return FieldSchema(name=field_name, dtype=DataType.VARCHAR, max_length=4096)
    if kind == "text":
        return FieldSchema(name=field_name, dtype=DataType.VARCHAR, max_length=65535)
    if kind == "integer":
        return FieldSchema(name=field_name, dtype=DataType.INT64)
    if kind == "float":
        return FieldSchema(name=field_name, dtype=DataType.DOUBLE)
    if kind == "json":
        return FieldSchema(name=field_name, dtype=DataType.JSON)
    raise PointStoreError(f"Unsupported payload kind for {field_name}: {kind}")


class MilvusPointStore(PointStore):
    """Point store backed by Milvus collections."""

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None,
                 token: Optional[str] = None, alias: str = "codectx"):
        self.logger = app_logger.bind(component="milvus_point_store")
        self.host = host or settings.milvus_host
        self.port = port or settings.milvus_port
        self.token = token if token is not None else settings.milvus_token
        self.alias = alias
        self.collections: Dict[str, Collection] = {}
        self.loaded: set = set()

        self._connect()

    def _connect(self):
        """Connect to Milvus server."""
        try:
            kwargs = {"host": self.host, "port": self.port}
            if self.token:
                kwargs["token"] = self.token
            connections.connect(self.alias, **kwargs)
            self.logger.info(f"Connected to Milvus at {self.host}:{self.port}")
        except Exception as e:
            self.logger.error(f"Failed to connect to Milvus: {e}")
            raise PointStoreError(f"Failed to connect to Milvus at {self.host}:{self.port}", e) from e

    async def _run(self, func, *args, **kwargs):
        """Run a blocking pymilvus call in the default executor."""
        try:
            return await asyncio.get_event_loop().run_in_executor(
                None, lambda: func(*args, **kwargs)
            )
        except PointStoreError:
            raise
        except MilvusException as e:
            raise PointStoreError(f"Milvus operation failed: {e}", e) from e

    def _get_collection(self, name: str) -> Collection:
        if name not in self.collections:
            if not utility.has_collection(name, using=self.alias):
                raise ResourceNotFoundError(f"Collection {name} does not exist")
            self.collections[name] = Collection(name, using=self.alias)
        return self.collections[name]

    def _payload_fields(self, name: str) -> List[str]:
        collection = self._get_collection(name)
        return [f.name for f in collection.schema.fields if f.name not in (ID_FIELD, VECTOR_FIELD)]

    def _ensure_loaded(self, name: str) -> Collection:
        collection = self._get_collection(name)
        if name not in self.loaded:
            collection.load()
            self.loaded.add(name)
        return collection

    def _row_to_point(self, row: Dict[str, Any], payload_fields: List[str]) -> Point:
        vector = row.get(VECTOR_FIELD)
        return Point(
            id=row[ID_FIELD],
            vector=[float(v) for v in vector] if vector is not None else None,
            payload={name: row[name] for name in payload_fields if name in row},
        )

    def _create_collection(self, name, vector_size, payload_schema, distance, on_disk, hnsw):
        if utility.has_collection(name, using=self.alias):
            raise ResourceExistsError(f"Collection {name} already exists")
        if distance not in METRIC_TYPES:
            raise PointStoreError(f"Unsupported distance metric: {distance}")

        fields = [
            FieldSchema(name=ID_FIELD, dtype=DataType.VARCHAR, max_length=64, is_primary=True),
            FieldSchema(name=VECTOR_FIELD, dtype=DataType.FLOAT_VECTOR, dim=vector_size),
        ]
        fields.extend(build_field_schema(field_name, kind) for field_name, kind in payload_schema.items())

        schema = CollectionSchema(fields=fields)
        collection = Collection(name, schema, using=self.alias, consistency_level="Strong")

        if hnsw:
            index_params = {
                "index_type": "HNSW",
                "metric_type": METRIC_TYPES[distance],
                "params": {"M": hnsw.get("m", 16), "efConstruction": hnsw.get("ef_construct", 200)},
            }
        else:
            index_params = {"index_type": "AUTOINDEX", "metric_type": METRIC_TYPES[distance]}
        collection.create_index(VECTOR_FIELD, index_params, index_name=VECTOR_FIELD)

        if on_disk:
            collection.set_properties({"mmap.enabled": True})

        self.collections[name] = collection
        self.logger.info(f"Created collection: {name}")

    async def create_collection(
        self,
        name: str,
        vector_size: int,
        payload_schema: Dict[str, str],
        distance: str = "cosine",
        on_disk: bool = False,
        hnsw: Optional[Dict[str, int]] = None,
    ) -> None:
        await self._run(self._create_collection, name, vector_size, payload_schema, distance, on_disk, hnsw)

    def _create_payload_index(self, collection_name, field_name, schema_kind):
        collection = self._get_collection(collection_name)
        if schema_kind == "json":
            raise PointStoreError(f"JSON payload field {field_name} cannot be indexed")
        if collection.has_index(index_name=field_name):
            raise ResourceExistsError(f"Index on {collection_name}.{field_name} already exists")

        # Index changes require the collection to be released
        if collection_name in self.loaded:
            collection.release()
            self.loaded.discard(collection_name)
        collection.create_index(
            field_name,
            {"index_type": SCALAR_INDEX_TYPES[schema_kind]},
            index_name=field_name,
        )

    async def create_payload_index(self, collection: str, field_name: str, schema_kind: str) -> None:
        await self._run(self._create_payload_index, collection, field_name, schema_kind)

    def _upsert(self, collection_name, points):
        collection = self._get_collection(collection_name)
        rows = [{ID_FIELD: point.id, VECTOR_FIELD: point.vector, **point.payload} for point in points]
        collection.upsert(rows)
        self.logger.debug(f"Upserted {len(rows)} points into {collection_name}")

    async def upsert(self, collection: str, points: List[Point]) -> None:
        if not points:
            return
        await self._run(self._upsert, collection, points)

    def _retrieve(self, collection_name, ids):
        collection = self._ensure_loaded(collection_name)
        payload_fields = self._payload_fields(collection_name)
        rows = collection.query(
            expr=render_condition(FieldCondition(key=ID_FIELD, any_of=list(ids))),
            output_fields=[ID_FIELD, VECTOR_FIELD] + payload_fields,
        )
        by_id = {row[ID_FIELD]: self._row_to_point(row, payload_fields) for row in rows}
        return [by_id[point_id] for point_id in ids if point_id in by_id]

    async def retrieve(self, collection: str, ids: List[str]) -> List[Point]:
        if not ids:
            return []
        return await self._run(self._retrieve, collection, ids)

    def _scroll(self, collection_name, point_filter, limit):
        collection = self._ensure_loaded(collection_name)
        payload_fields = self._payload_fields(collection_name)
        rows = collection.query(
            expr=render_filter(point_filter),
            output_fields=[ID_FIELD] + payload_fields,
            limit=limit,
        )
        return [self._row_to_point(row, payload_fields) for row in rows]

    async def scroll(self, collection: str, point_filter: Optional[PointFilter] = None,
                     limit: int = 1000) -> List[Point]:
        return await self._run(self._scroll, collection, point_filter, limit)

    def _query(self, collection_name, vector, point_filter, limit):
        collection = self._ensure_loaded(collection_name)
        payload_fields = self._payload_fields(collection_name)
        expr = render_filter(point_filter)
        results = collection.search(
            data=[vector],
            anns_field=VECTOR_FIELD,
            param={"metric_type": "COSINE", "params": {"ef": max(64, limit)}},
            limit=limit,
            expr=expr or None,
            output_fields=[VECTOR_FIELD] + payload_fields,
        )

        scored = []
        for hits in results:
            for hit in hits:
                vector_value = hit.entity.get(VECTOR_FIELD)
                scored.append(ScoredPoint(
                    id=hit.id,
                    vector=[float(v) for v in vector_value] if vector_value is not None else None,
                    payload={name: hit.entity.get(name) for name in payload_fields},
                    score=float(hit.distance),
                ))
        return scored

    async def query(self, collection: str, vector: List[float],
                    point_filter: Optional[PointFilter] = None, limit: int = 10) -> List[ScoredPoint]:
        return await self._run(self._query, collection, vector, point_filter, limit)

    def _delete(self, collection_name, ids):
        collection = self._get_collection(collection_name)
        collection.delete(render_condition(FieldCondition(key=ID_FIELD, any_of=list(ids))))
        self.logger.debug(f"Deleted {len(ids)} points from {collection_name}")

    async def delete(self, collection: str, ids: List[str]) -> None:
        if not ids:
            return
        await self._run(self._delete, collection, ids)

    def _delete_collection(self, name):
        if not utility.has_collection(name, using=self.alias):
            raise ResourceNotFoundError(f"Collection {name} does not exist")
        utility.drop_collection(name, using=self.alias)
        self.collections.pop(name, None)
        self.loaded.discard(name)
        self.logger.info(f"Dropped collection: {name}")

    async def delete_collection(self, name: str) -> None:
        await self._run(self._delete_collection, name)

    async def close(self) -> None:
        """Close connection to Milvus."""
        try:
            connections.disconnect(self.alias)
            self.logger.info("Disconnected from Milvus")
        except Exception as e:
            self.logger.error(f"Failed to disconnect from Milvus: {e}")
