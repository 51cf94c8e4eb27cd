"""Embedding generation and token estimation."""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from numbers import Real
from typing import Any, List, Optional, Sequence

import ollama

from knowledge_rag.cache.memory_cache import CacheCategory, CacheService
from knowledge_rag.rag.models import EmbeddingVector
from knowledge_rag.utils.config import Settings, get_settings
from knowledge_rag.utils.errors import EmbeddingProviderError
from knowledge_rag.utils.logger import get_logger

logger = get_logger()

TOKENS_PER_WORD = 1.3
DENSE = "dense"


@dataclass
class EmbeddingResponse:
    """Raw provider output."""
    vectors: List[Any]
    model: str
    vector_kind: str = DENSE


class EmbeddingProvider(ABC):
    """Text to vector backend."""

    @abstractmethod
    async def embed(
        self,
        text: str,
        *,
        model: str,
        input_type: str,
        truncate: bool,
    ) -> EmbeddingResponse:
        """
        Embed a single text.

        Args:
            text: Text to embed
            model: Embedding model name
            input_type: "passage" for stored knowledge, "query" for questions
            truncate: Whether the provider may truncate over-long input

        Returns:
            EmbeddingResponse with one vector per input
        """
        pass


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Embedding provider backed by an Ollama server."""

    def __init__(self, client: Optional[ollama.AsyncClient] = None, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.client = client or ollama.AsyncClient(
            host=settings.ollama_base_url,
            timeout=settings.request_timeout_seconds,
        )

    async def embed(
        self,
        text: str,
        *,
        model: str,
        input_type: str,
        truncate: bool,
    ) -> EmbeddingResponse:
        # Ollama models take no input type hint; it only matters for e5-style models.
        response = await self.client.embed(model=model, input=text, truncate=truncate)
        return EmbeddingResponse(
            vectors=list(response.get("embeddings") or []),
            model=response.get("model") or model,
            vector_kind=DENSE,
        )


class EmbeddingService:
    """Turns text into fixed-length vectors and estimates token counts."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: CacheService,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the embedding service.

        Args:
            provider: Embedding backend
            cache: Shared cache instance
            settings: Settings instance (default: global settings)
        """
        self.settings = settings or get_settings()
        self.provider = provider
        self.cache = cache
        self.model = self.settings.ollama_embedding_model
        self.dimension = self.settings.embedding_dimension

    async def generate_embedding(self, text: str) -> EmbeddingVector:
        """
        Generate an embedding for text, cached on the exact input.

        Args:
            text: Text to embed

        Returns:
            Immutable dense vector

        Raises:
            EmbeddingProviderError: Provider failed or returned an unusable vector
        """
        return await self.cache.get_or_compute(
            CacheCategory.EMBEDDING,
            text,
            None,
            lambda: self._embed(text),
        )

    async def count_tokens(self, text: str) -> int:
        """Estimate tokens as 1.3 per whitespace separated word."""
        return await self.cache.get_or_compute(
            CacheCategory.TOKENS,
            text,
            None,
            lambda: self._count(text),
        )

    @staticmethod
    def estimate_tokens(text: str) -> int:
        return math.ceil(len(text.split()) * TOKENS_PER_WORD)

    async def _count(self, text: str) -> int:
        return self.estimate_tokens(text)

    async def _embed(self, text: str) -> EmbeddingVector:
        logger.debug(f"Generating embedding for text (length: {len(text)})")

        try:
            response = await self.provider.embed(
                text,
                model=self.model,
                input_type=self.settings.embedding_input_type,
                truncate=self.settings.embedding_truncate,
            )
        except Exception as e:
            logger.error(f"Embedding provider call failed (text length: {len(text)}): {e}")
            raise EmbeddingProviderError(f"Failed to generate embedding: {e}") from e

        vector = self._validate(response)

        logger.debug(
            f"Generated embedding (size: {len(vector)}, model: {response.model})"
        )
        return vector

    def _validate(self, response: EmbeddingResponse) -> EmbeddingVector:
        if response.vector_kind != DENSE:
            raise EmbeddingProviderError(
                f"Expected dense embedding but got {response.vector_kind}"
            )
        if not response.vectors:
            raise EmbeddingProviderError("No embedding returned from provider")

        values = response.vectors[0]
        if not isinstance(values, Sequence) or isinstance(values, (str, bytes)):
            raise EmbeddingProviderError(
                f"Unrecognized embedding shape: {type(values).__name__}"
            )
        if len(values) == 0:
            raise EmbeddingProviderError("Empty embedding received from provider")
        if not all(isinstance(v, Real) and not isinstance(v, bool) for v in values):
            raise EmbeddingProviderError("Embedding contains non-numeric values")
        if self.dimension and len(values) != self.dimension:
            raise EmbeddingProviderError(
                f"Embedding dimension {len(values)} does not match expected {self.dimension}"
            )

        return tuple(float(v) for v in values)
