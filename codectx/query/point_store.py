from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field


# Payload field kinds understood by every backend
PAYLOAD_KINDS = ("keyword", "integer", "float", "text", "json")


@dataclass
class Point:
    """A stored point: id, vector and payload."""
    id: str
    vector: Optional[List[float]]
    payload: Dict[str, Any]


@dataclass
class ScoredPoint(Point):
    """A point returned by a nearest-neighbor query."""
    score: float = 0.0


@dataclass
class FieldCondition:
    """A single payload predicate.

    Exactly one form is used: ``value`` (equality), ``any_of`` (membership)
    or a ``gte``/``lte`` numeric range.
    """
    key: str
    value: Any = None
    any_of: Optional[List[Any]] = None
    gte: Optional[float] = None
    lte: Optional[float] = None

    def matches(self, payload: Dict[str, Any]) -> bool:
        if self.key not in payload:
            return False
        actual = payload[self.key]
        if self.any_of is not None:
            return actual in self.any_of
        if self.gte is not None or self.lte is not None:
            if self.gte is not None and actual < self.gte:
                return False
            if self.lte is not None and actual > self.lte:
                return False
            return True
        return actual == self.value


@dataclass
class PointFilter:
    """All ``must`` conditions and, when present, at least one ``should`` condition."""
    must: List[FieldCondition] = field(default_factory=list)
    should: List[FieldCondition] = field(default_factory=list)

    def matches(self, payload: Dict[str, Any]) -> bool:
        if not all(condition.matches(payload) for condition in self.must):
            return False
        if self.should and not any(condition.matches(payload) for condition in self.should):
            return False
        return True


class PointStore(ABC):
    """Vector-capable point store with payload filtering."""

    @abstractmethod
    async def create_collection(
        self,
        name: str,
        vector_size: int,
        payload_schema: Dict[str, str],
        distance: str = "cosine",
        on_disk: bool = False,
        hnsw: Optional[Dict[str, int]] = None,
    ) -> None:
        """Create a collection. Raises ResourceExistsError if it exists."""

    @abstractmethod
    async def create_payload_index(self, collection: str, field_name: str, schema_kind: str) -> None:
        """Index a payload field. Raises ResourceExistsError if already indexed."""

    @abstractmethod
    async def upsert(self, collection: str, points: List[Point]) -> None:
        """Insert or overwrite points by id."""

    @abstractmethod
    async def retrieve(self, collection: str, ids: List[str]) -> List[Point]:
        """Fetch points by id with their vectors. Missing ids are omitted."""

    @abstractmethod
    async def scroll(self, collection: str, point_filter: Optional[PointFilter] = None,
                     limit: int = 1000) -> List[Point]:
        """List points matching a filter, unordered."""

    @abstractmethod
    async def query(self, collection: str, vector: List[float],
                    point_filter: Optional[PointFilter] = None, limit: int = 10) -> List[ScoredPoint]:
        """Nearest-neighbor query."""

    @abstractmethod
    async def delete(self, collection: str, ids: List[str]) -> None:
        """Delete points by id."""

    @abstractmethod
    async def delete_collection(self, name: str) -> None:
        """Drop a collection. Raises ResourceNotFoundError if absent."""

    async def close(self) -> None:
        """Release backend resources."""
