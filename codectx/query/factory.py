from .point_store import PointStore
from .memory_point_store import MemoryPointStore
from ..config import settings


def create_point_store(backend: str = None) -> PointStore:
    """Create the configured point store backend."""
    backend = backend or settings.point_store_backend
    if backend == "memory":
        return MemoryPointStore()
    if backend == "milvus":
        from .milvus_point_store import MilvusPointStore
        return MilvusPointStore()
    raise ValueError(f"Unsupported point store backend: {backend}")
