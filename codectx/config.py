from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Point Store Configuration
    point_store_backend: str = Field(default="milvus")
    milvus_host: str = Field(default="localhost")
    milvus_port: int = Field(default=19530)
    milvus_token: Optional[str] = Field(default=None)

    # Graph Collections
    nodes_collection_prefix: str = Field(default="graph_nodes")
    edges_collection_prefix: str = Field(default="graph_edges")
    vectors_on_disk: bool = Field(default=True)
    hnsw_m: int = Field(default=64)
    hnsw_ef_construct: int = Field(default=512)

    # Embedding Service Configuration
    embedding_provider: str = Field(default="openai")
    openai_api_key: Optional[str] = Field(default=None)
    openai_model: str = Field(default="text-embedding-3-small")
    openai_base_url: Optional[str] = Field(default=None)

    ollama_host: str = Field(default="http://localhost:11434")
    ollama_model: str = Field(default="nomic-embed-text")

    embedding_dimension: int = Field(default=1536)
    embedding_batch_size: int = Field(default=64)

    # Extraction Configuration
    node_content_max_chars: int = Field(default=500)

    # Traversal Configuration
    edge_scroll_limit: int = Field(default=1000)
    max_query_limit: int = Field(default=16384)
    traversal_node_cap: int = Field(default=1000)
    related_code_depth: int = Field(default=3)

    # Search Configuration
    search_default_limit: int = Field(default=10)
    search_default_max_depth: int = Field(default=2)
    related_nodes_limit: int = Field(default=10)
    relationships_limit: int = Field(default=20)
    location_context_depth: int = Field(default=3)

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_file: str = Field(default="logs/codectx.log")

    @property
    def log_dir(self) -> Optional[Path]:
        """Get log directory path."""
        if not self.log_file:
            return None
        return Path(self.log_file).parent

    def ensure_directories(self):
        """Ensure necessary directories exist."""
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)


settings = Settings()
settings.ensure_directories()
