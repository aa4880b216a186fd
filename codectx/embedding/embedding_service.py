from typing import List, Optional
from dataclasses import dataclass, field
import asyncio
from openai import OpenAI
import requests

from ..config import settings
from ..exceptions import EmbeddingError
from ..utils.logger import app_logger


OPENAI_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

OLLAMA_DIMENSIONS = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
}


@dataclass
class EmbeddingResponse:
    """Embeddings for a batch of texts, one vector per input, in order."""
    embeddings: List[List[float]] = field(default_factory=list)


class OllamaEmbeddingProvider:
    """Ollama embedding provider."""

    def __init__(self, host: str = "http://localhost:11434", model: str = "nomic-embed-text"):
        self.host = host.rstrip("/")
        self.model = model
        self.logger = app_logger.bind(component="ollama_embedding")
        self.dimension = OLLAMA_DIMENSIONS.get(model, settings.embedding_dimension)
        self.session = requests.Session()

    async def embed_text(self, text: str) -> List[float]:
        """Generate embedding for a single text using Ollama."""
        try:
            response = await asyncio.get_event_loop().run_in_executor(
                None,
                lambda: self.session.post(
                    f"{self.host}/api/embeddings",
                    json={
                        "model": self.model,
                        "prompt": text
                    }
                )
            )
            response.raise_for_status()
            return response.json()["embedding"]
        except Exception as e:
            self.logger.error(f"Error generating Ollama embedding: {e}")
            raise

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts using Ollama."""
        embeddings = []
        for text in texts:
            embeddings.append(await self.embed_text(text))
        return embeddings

    def get_dimension(self) -> int:
        return self.dimension


class OpenAIEmbeddingProvider:
    """OpenAI embedding provider."""

    def __init__(self, api_key: str, model: str = "text-embedding-3-small", base_url: Optional[str] = None):
        self.client = OpenAI(api_key=api_key, base_url=base_url)
        self.model = model
        self.logger = app_logger.bind(component="openai_embedding")
        self.dimension = OPENAI_DIMENSIONS.get(model, settings.embedding_dimension)

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts."""
        try:
            response = await asyncio.get_event_loop().run_in_executor(
                None,
                lambda: self.client.embeddings.create(
                    model=self.model,
                    input=texts
                )
            )
            ordered = sorted(response.data, key=lambda item: item.index)
            return [item.embedding for item in ordered]
        except Exception as e:
            self.logger.error(f"Error generating OpenAI embeddings: {e}")
            raise

    def get_dimension(self) -> int:
        return self.dimension


class EmbeddingService:
    """Embedder used by indexing and search.

    Splits input into provider-sized batches and checks that one vector comes
    back per text.
    """

    def __init__(self, provider=None, batch_size: Optional[int] = None):
        self.logger = app_logger.bind(component="embedding_service")
        self.provider = provider or self._initialize_provider()
        self.batch_size = batch_size or settings.embedding_batch_size
        self.dimension = self.provider.get_dimension()

    def _initialize_provider(self):
        """Initialize the embedding provider based on configuration."""
        if settings.embedding_provider == "ollama":
            return OllamaEmbeddingProvider(
                host=settings.ollama_host,
                model=settings.ollama_model
            )
        elif settings.embedding_provider == "openai":
            if not settings.openai_api_key:
                raise ValueError("OpenAI API key is required for OpenAI embeddings")
            return OpenAIEmbeddingProvider(
                api_key=settings.openai_api_key,
                model=settings.openai_model,
                base_url=settings.openai_base_url,
            )
        else:
            raise ValueError(f"Unsupported embedding provider: {settings.embedding_provider}")

    async def create_embeddings(self, texts: List[str]) -> EmbeddingResponse:
        """Generate embeddings for texts, one vector per text, in order."""
        embeddings: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            try:
                vectors = await self.provider.embed_texts(batch)
            except Exception as e:
                raise EmbeddingError(f"Embedding provider failed on batch at offset {start}", e) from e

            if len(vectors) != len(batch):
                raise EmbeddingError(
                    f"Embedding provider returned {len(vectors)} vectors for {len(batch)} texts"
                )
            embeddings.extend(vectors)

        self.logger.debug(f"Generated {len(embeddings)} embeddings")
        return EmbeddingResponse(embeddings=embeddings)

    async def embed_query(self, query: str) -> List[float]:
        """Generate embedding for a search query."""
        response = await self.create_embeddings([query])
        return response.embeddings[0]

    def get_dimension(self) -> int:
        """Get the dimension of embeddings."""
        return self.dimension
