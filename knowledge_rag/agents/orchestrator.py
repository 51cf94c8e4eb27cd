"""RAG orchestrator: retrieval, context assembly and answer generation."""

import asyncio
import json
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Union

from knowledge_rag.cache.memory_cache import CacheCategory, CacheService
from knowledge_rag.rag.generation import (
    GenerationOptions,
    GenerationProvider,
    OllamaGenerationProvider,
)
from knowledge_rag.rag.knowledge_base import BatchIngestionResult, KnowledgeBase
from knowledge_rag.rag.models import (
    Citation,
    KnowledgeChunk,
    RAGResponse,
    SearchFilters,
    SearchResult,
)
from knowledge_rag.utils.config import Settings, get_settings
from knowledge_rag.utils.errors import GenerationError
from knowledge_rag.utils.logger import get_logger, request_scope
from knowledge_rag.vectorstore.embeddings import EmbeddingService, OllamaEmbeddingProvider
from knowledge_rag.vectorstore.qdrant_client import QdrantVectorStore

logger = get_logger()

NO_KNOWLEDGE_NOTICE = (
    "No matching knowledge was found in the knowledge base for this question. "
    "Tell the user so and do not present any sources."
)


@dataclass
class PreparedPrompt:
    """Everything the generator needs for one question."""
    prompt: str
    context: str
    options: GenerationOptions
    citations: List[Citation]


def build_prompt(message: str, context: str) -> str:
    """
    Build the user prompt sent to the generator.

    Args:
        message: User question
        context: Assembled knowledge context (may be empty)

    Returns:
        Prompt text
    """
    sections = []
    if context:
        sections.append(f"Context from knowledge base:\n{context}")
    sections.append(f"User question: {message}")
    sections.append("Please provide a helpful and accurate response based on the context above.")
    return "\n\n".join(sections)


class RAGOrchestrator:
    """Answers questions with context retrieved from the knowledge base."""

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        generator: GenerationProvider,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            knowledge_base: Knowledge base for retrieval and ingestion
            generator: Text generation backend
            settings: Settings instance (default: global settings)
        """
        self.settings = settings or get_settings()
        self.knowledge_base = knowledge_base
        self.embeddings: EmbeddingService = knowledge_base.embeddings
        self.cache: CacheService = knowledge_base.cache
        self.generator = generator

        self.top_k = self.settings.rag_top_k_results
        self.context_token_budget = self.settings.rag_context_token_budget
        self.preview_chars = self.settings.rag_citation_preview_chars

        logger.info("Initialized RAGOrchestrator")

    async def chat_with_rag(
        self,
        message: str,
        user_id: Optional[str] = None,
        system_prompt: Optional[str] = None,
        tenant_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        include_citations: bool = True,
    ) -> Union[RAGResponse, str]:
        """
        Answer a question using the caller's knowledge base.

        Args:
            message: User question
            user_id: Optional owner scope
            system_prompt: Instructions for the generator (default from settings)
            tenant_id: Optional tenant scope
            agent_id: Optional agent scope
            include_citations: Return a RAGResponse instead of plain text

        Returns:
            RAGResponse with citations, or the response text

        Raises:
            GenerationError: Any step of the pipeline failed
        """
        with request_scope(user_id, tenant_id, agent_id):
            logger.info(
                f"RAG chat request (message length: {len(message)}, "
                f"user: {user_id}, tenant: {tenant_id}, agent: {agent_id})"
            )

            try:
                prepared = await self._prepare(message, user_id, system_prompt, tenant_id, agent_id)

                cache_key = json.dumps([message, prepared.context, prepared.options.system_prompt])
                response = await self.cache.get_or_compute(
                    CacheCategory.AI_RESPONSE,
                    cache_key,
                    None,
                    lambda: self.generator.generate(prepared.prompt, prepared.options),
                )

            except Exception as e:
                logger.error(f"RAG chat failed: {type(e).__name__}: {e}")
                raise GenerationError("Failed to generate response") from e

            logger.info(
                f"RAG chat completed (response length: {len(response)}, citations: {len(prepared.citations)})"
            )

        if not include_citations:
            return response
        return RAGResponse(response=response, citations=prepared.citations)

    async def chat_with_rag_stream(
        self,
        message: str,
        user_id: Optional[str] = None,
        system_prompt: Optional[str] = None,
        tenant_id: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """
        Stream an answer chunk by chunk.

        Responses are never cached. Closing the iterator early closes the
        provider stream.

        Yields:
            Response text chunks

        Raises:
            GenerationError: Any step of the pipeline failed
        """
        # Scope covers preparation only; the context must not be held across yields
        with request_scope(user_id, tenant_id, agent_id):
            logger.info(
                f"RAG stream request (message length: {len(message)}, "
                f"user: {user_id}, tenant: {tenant_id}, agent: {agent_id})"
            )

            try:
                prepared = await self._prepare(message, user_id, system_prompt, tenant_id, agent_id)
            except Exception as e:
                logger.error(f"RAG stream preparation failed: {type(e).__name__}: {e}")
                raise GenerationError("Failed to generate response") from e

        chunk_count = 0
        try:
            async with aclosing(self.generator.stream(prepared.prompt, prepared.options)) as chunks:
                async for chunk in chunks:
                    chunk_count += 1
                    yield chunk
        except Exception as e:
            logger.error(f"RAG stream failed after {chunk_count} chunks: {type(e).__name__}: {e}")
            raise GenerationError("Failed to generate response") from e

        logger.info(f"RAG stream completed ({chunk_count} chunks)")

    async def _prepare(
        self,
        message: str,
        user_id: Optional[str],
        system_prompt: Optional[str],
        tenant_id: Optional[str],
        agent_id: Optional[str],
    ) -> PreparedPrompt:
        system_prompt = system_prompt or self.settings.default_system_prompt

        query_vector, query_tokens = await asyncio.gather(
            self.embeddings.generate_embedding(message),
            self.embeddings.count_tokens(message),
        )

        filters = SearchFilters(user_id=user_id, tenant_id=tenant_id, agent_id=agent_id)
        results = await self.knowledge_base.search_with_fallback(query_vector, filters, self.top_k)

        context, sources = await self.knowledge_base.assemble_context(
            results, self.context_token_budget - query_tokens
        )

        if context:
            citations = [Citation.from_result(result, self.preview_chars) for result in sources]
        else:
            system_prompt = f"{system_prompt}\n\n{NO_KNOWLEDGE_NOTICE}"
            citations = []

        logger.debug(
            f"Prepared prompt (query tokens: {query_tokens}, results: {len(results)}, "
            f"context length: {len(context)}, citations: {len(citations)})"
        )

        return PreparedPrompt(
            prompt=build_prompt(message, context),
            context=context,
            options=GenerationOptions.from_settings(system_prompt, self.settings),
            citations=citations,
        )

    # ------------------------------------------------------------------
    # Knowledge base delegates
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        user_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        top_k: int = 5,
        agent_id: Optional[str] = None,
    ) -> List[SearchResult]:
        return await self.knowledge_base.search(query, user_id, tenant_id, top_k, agent_id)

    async def store_knowledge(self, id: str, content: str, metadata: Optional[Mapping[str, Any]] = None) -> None:
        await self.knowledge_base.store_knowledge(id, content, metadata)

    async def batch_store_knowledge(self, entries: Sequence[KnowledgeChunk]) -> BatchIngestionResult:
        return await self.knowledge_base.batch_store_knowledge(entries)

    async def delete_knowledge(self, id: str) -> bool:
        return await self.knowledge_base.delete_knowledge(id)

    # ------------------------------------------------------------------
    # Cache and health
    # ------------------------------------------------------------------

    def get_cache_stats(self) -> Dict[str, int]:
        return self.cache.stats().to_dict()

    def clear_cache(self, pattern: Optional[str] = None) -> int:
        """
        Clear cached values.

        Args:
            pattern: Key prefix such as "search:"; None clears everything

        Returns:
            Number of keys removed
        """
        if pattern is None:
            return self.cache.clear_all()
        return self.cache.clear_by_category_prefix(pattern)

    async def health_check(self) -> Dict[str, Any]:
        """
        Report cache and vector store health.

        Returns:
            Dictionary with component status and an overall "healthy" flag
        """
        cache_healthy = self.cache.is_healthy()

        try:
            collection = await self.knowledge_base.index.get_collection_info()
        except Exception as e:
            logger.error(f"Vector store health check failed: {e}")
            collection = None

        status = {
            "healthy": cache_healthy and collection is not None,
            "cache": {"healthy": cache_healthy, **self.get_cache_stats()},
            "vector_store": collection,
            "generation_model": getattr(self.generator, "model", None),
        }

        logger.info(f"Health check: {'healthy' if status['healthy'] else 'unhealthy'}")
        return status


async def create_orchestrator(
    settings: Optional[Settings] = None,
    vector_store: Optional[QdrantVectorStore] = None,
) -> RAGOrchestrator:
    """
    Build a fully wired orchestrator with Ollama and Qdrant backends.

    Args:
        settings: Settings instance (default: global settings)
        vector_store: Pre-built vector store (default: connect from settings)

    Returns:
        RAGOrchestrator

    Raises:
        RuntimeError: The vector store is unreachable
    """
    settings = settings or get_settings()

    if vector_store is None:
        vector_store = QdrantVectorStore(settings=settings)
        if not await vector_store.connect():
            raise RuntimeError("Failed to connect to Qdrant")

    if not await vector_store.ensure_collection(settings.embedding_dimension):
        raise RuntimeError(f"Failed to prepare collection '{vector_store.collection_name}'")

    cache = CacheService(settings=settings)
    embeddings = EmbeddingService(OllamaEmbeddingProvider(settings=settings), cache, settings)
    knowledge_base = KnowledgeBase(vector_store, embeddings, cache, settings)

    return RAGOrchestrator(knowledge_base, OllamaGenerationProvider(settings=settings), settings)
