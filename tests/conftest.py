"""
Shared test fixtures.

Providers are replaced by deterministic fakes: embeddings are bag-of-words
count vectors, so cosine similarity between texts is easy to reason about.
Vector store tests run against an in-process Qdrant (":memory:").
"""

import re
from typing import Dict, List, Optional, Set

import pytest

from knowledge_rag.cache.memory_cache import CacheService
from knowledge_rag.rag.generation import GenerationOptions, GenerationProvider
from knowledge_rag.utils.config import Settings
from knowledge_rag.vectorstore.base import IndexFilter, IndexMatch, IndexRecord, VectorIndex
from knowledge_rag.vectorstore.embeddings import DENSE, EmbeddingProvider, EmbeddingResponse

DIMENSION = 64


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BagOfWordsEmbeddingProvider(EmbeddingProvider):
    """Counts words into dimensions assigned on first sight."""

    def __init__(self, dimension: int = DIMENSION):
        self.dimension = dimension
        self.vocabulary: Dict[str, int] = {}
        self.calls: List[str] = []
        self.fail_on: Set[str] = set()
        self.response: Optional[EmbeddingResponse] = None

    async def embed(self, text, *, model, input_type, truncate):
        self.calls.append(text)

        if text in self.fail_on:
            raise ConnectionError("embedding backend unavailable")
        if self.response is not None:
            return self.response

        vector = [0.0] * self.dimension
        for word in re.findall(r"\w+", text.lower()):
            index = self.vocabulary.setdefault(word, len(self.vocabulary))
            vector[index] += 1.0

        return EmbeddingResponse(vectors=[vector], model=model, vector_kind=DENSE)


class FakeGenerationProvider(GenerationProvider):
    """Records prompts and returns canned output."""

    def __init__(self, response: str = "Generated answer", chunks: Optional[List[str]] = None):
        self.model = "fake-model"
        self.response = response
        self.chunks = chunks or ["Hello", ", ", "world"]
        self.error: Optional[Exception] = None
        self.calls: List[tuple] = []
        self.stream_closed = False
        self.chunks_sent = 0

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        self.calls.append((prompt, options))
        if self.error is not None:
            raise self.error
        return self.response

    async def stream(self, prompt: str, options: GenerationOptions):
        self.calls.append((prompt, options))
        try:
            for chunk in self.chunks:
                if self.error is not None:
                    raise self.error
                self.chunks_sent += 1
                yield chunk
        finally:
            self.stream_closed = True


class RecordingIndex(VectorIndex):
    """In-memory index that records writes and can be told to fail."""

    def __init__(self):
        self.upserts: List[List[IndexRecord]] = []
        self.deleted: List[str] = []
        self.fail_upsert_at: Optional[int] = None
        self.fail_query = False
        self.matches: List[IndexMatch] = []
        self.queries: List[dict] = []

    async def query(self, vector, top_k, include_metadata=True, filter: Optional[IndexFilter] = None):
        self.queries.append({"top_k": top_k, "filter": filter})
        if self.fail_query:
            raise ConnectionError("vector store unavailable")
        return list(self.matches)

    async def upsert(self, records):
        if self.fail_upsert_at is not None and len(self.upserts) == self.fail_upsert_at:
            raise ConnectionError("vector store rejected upsert")
        self.upserts.append(list(records))

    async def delete_one(self, id):
        self.deleted.append(id)


@pytest.fixture
def settings():
    """Settings isolated from the environment, sized for the fake embedder."""
    return Settings(
        _env_file=None,
        embedding_dimension=DIMENSION,
        ingest_batch_delay_seconds=0,
        qdrant_location=":memory:",
        qdrant_collection_name="test_knowledge",
        debug_mode=True,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(settings, clock):
    return CacheService(clock=clock, settings=settings)


@pytest.fixture
def embedding_provider():
    return BagOfWordsEmbeddingProvider()


@pytest.fixture
def generator():
    return FakeGenerationProvider()


@pytest.fixture
def recording_index():
    return RecordingIndex()
