"""Unit tests for the RAG orchestrator."""

import pytest
from loguru import logger

from knowledge_rag.agents.orchestrator import NO_KNOWLEDGE_NOTICE, RAGOrchestrator, build_prompt, create_orchestrator
from knowledge_rag.rag.knowledge_base import KnowledgeBase
from knowledge_rag.rag.models import KnowledgeChunk, RAGResponse
from knowledge_rag.utils.errors import GenerationError
from knowledge_rag.utils.logger import NO_SCOPE
from knowledge_rag.vectorstore.embeddings import EmbeddingService
from knowledge_rag.vectorstore.qdrant_client import QdrantVectorStore

PARIS = "Paris is the capital of France"
BERLIN = "Berlin is the capital of Germany"


class TestRAGOrchestrator:
    """Test cases for RAGOrchestrator."""

    @pytest.fixture(autouse=True)
    def _setup(self, settings, cache, embedding_provider, generator):
        self.settings = settings
        self.cache = cache
        self.provider = embedding_provider
        self.generator = generator

    async def _orchestrator(self) -> RAGOrchestrator:
        store = QdrantVectorStore(settings=self.settings)
        assert await store.connect()
        assert await store.ensure_collection()

        embeddings = EmbeddingService(self.provider, self.cache, self.settings)
        knowledge_base = KnowledgeBase(store, embeddings, self.cache, self.settings)
        return RAGOrchestrator(knowledge_base, self.generator, self.settings)

    @pytest.mark.asyncio
    async def test_chat_with_citations(self):
        orchestrator = await self._orchestrator()
        await orchestrator.store_knowledge("a", PARIS, {"title": "Capitals", "fileName": "geo.pdf", "page": 2})
        await orchestrator.store_knowledge("b", BERLIN)

        response = await orchestrator.chat_with_rag("capital of France")

        assert isinstance(response, RAGResponse)
        assert response.response == "Generated answer"
        assert len(response.citations) == 1

        citation = response.citations[0]
        assert citation.id == "a"
        assert citation.title == "Capitals"
        assert citation.file_name == "geo.pdf"
        assert citation.page == 2
        assert citation.content_preview == PARIS
        assert citation.score > 0.6

    @pytest.mark.asyncio
    async def test_prompt_contains_context(self):
        orchestrator = await self._orchestrator()
        await orchestrator.store_knowledge("a", PARIS)

        await orchestrator.chat_with_rag("capital of France", system_prompt="Be brief.")

        prompt, options = self.generator.calls[0]
        assert prompt == build_prompt("capital of France", PARIS)
        assert prompt.startswith(f"Context from knowledge base:\n{PARIS}")
        assert "User question: capital of France" in prompt
        assert options.system_prompt == "Be brief."
        assert options.temperature == 0.7

    @pytest.mark.asyncio
    async def test_empty_knowledge_base(self):
        """No context: the generator is told so and no citations are returned."""
        orchestrator = await self._orchestrator()

        response = await orchestrator.chat_with_rag("capital of France", system_prompt="Be brief.")

        assert response.citations == []
        prompt, options = self.generator.calls[0]
        assert "Context from knowledge base" not in prompt
        assert options.system_prompt == f"Be brief.\n\n{NO_KNOWLEDGE_NOTICE}"

    @pytest.mark.asyncio
    async def test_context_over_budget_gives_no_citations(self):
        """A retrieved chunk that does not fit the budget is never cited."""
        self.settings.rag_context_token_budget = 5
        orchestrator = await self._orchestrator()
        await orchestrator.store_knowledge("a", "capital of France " + "A" * 50)

        response = await orchestrator.chat_with_rag("capital of France")

        assert response.citations == []
        prompt, options = self.generator.calls[0]
        assert "Context from knowledge base" not in prompt
        assert NO_KNOWLEDGE_NOTICE in options.system_prompt

    @pytest.mark.asyncio
    async def test_citation_preview_is_truncated(self):
        orchestrator = await self._orchestrator()
        content = "capital of France " + " ".join(["word"] * 100)
        await orchestrator.store_knowledge("long", content)

        response = await orchestrator.chat_with_rag("word")

        [citation] = response.citations
        assert citation.content_preview == content[:200] + "..."

    @pytest.mark.asyncio
    async def test_without_citations_returns_text(self):
        orchestrator = await self._orchestrator()
        await orchestrator.store_knowledge("a", PARIS)

        response = await orchestrator.chat_with_rag("capital of France", include_citations=False)

        assert response == "Generated answer"

    @pytest.mark.asyncio
    async def test_generation_is_cached(self):
        orchestrator = await self._orchestrator()
        await orchestrator.store_knowledge("a", PARIS)

        first = await orchestrator.chat_with_rag("capital of France")
        second = await orchestrator.chat_with_rag("capital of France")

        assert first.response == second.response
        assert len(self.generator.calls) == 1

    @pytest.mark.asyncio
    async def test_generation_failure_is_wrapped(self):
        orchestrator = await self._orchestrator()
        self.generator.error = TimeoutError("model overloaded")

        with pytest.raises(GenerationError) as exc_info:
            await orchestrator.chat_with_rag("capital of France")

        assert str(exc_info.value) == "Failed to generate response"
        assert isinstance(exc_info.value.__cause__, TimeoutError)

        # Failed generations are not cached
        self.generator.error = None
        response = await orchestrator.chat_with_rag("capital of France")
        assert response.response == "Generated answer"

    @pytest.mark.asyncio
    async def test_embedding_failure_aborts_request(self):
        orchestrator = await self._orchestrator()
        self.provider.fail_on = {"capital of France"}

        with pytest.raises(GenerationError):
            await orchestrator.chat_with_rag("capital of France")

        assert self.generator.calls == []

    @pytest.mark.asyncio
    async def test_stream(self):
        orchestrator = await self._orchestrator()
        await orchestrator.store_knowledge("a", PARIS)

        chunks = [chunk async for chunk in orchestrator.chat_with_rag_stream("capital of France")]

        assert "".join(chunks) == "Hello, world"
        assert self.generator.stream_closed is True
        prompt, _ = self.generator.calls[0]
        assert PARIS in prompt

    @pytest.mark.asyncio
    async def test_stream_is_not_cached(self):
        orchestrator = await self._orchestrator()

        for _ in range(2):
            [chunk async for chunk in orchestrator.chat_with_rag_stream("capital of France")]

        assert len(self.generator.calls) == 2

    @pytest.mark.asyncio
    async def test_abandoned_stream_closes_provider(self):
        orchestrator = await self._orchestrator()

        stream = orchestrator.chat_with_rag_stream("capital of France")
        first = await stream.__anext__()
        await stream.aclose()

        assert first == "Hello"
        assert self.generator.chunks_sent == 1
        assert self.generator.stream_closed is True

    @pytest.mark.asyncio
    async def test_stream_failure_is_wrapped(self):
        orchestrator = await self._orchestrator()
        self.generator.error = ConnectionError("stream dropped")

        with pytest.raises(GenerationError):
            [chunk async for chunk in orchestrator.chat_with_rag_stream("capital of France")]

    async def _store_scoped_knowledge(self, orchestrator):
        await orchestrator.store_knowledge(
            "other-agent", "Paris capital of France", {"tenantId": "t1", "agentId": "agent-2"}
        )
        await orchestrator.store_knowledge("unassigned", "capital of France", {"tenantId": "t1"})
        await orchestrator.store_knowledge("other-tenant", "the capital of France", {"tenantId": "t2"})

    @pytest.mark.asyncio
    async def test_chat_scoped_by_tenant_and_agent(self):
        """No agent-1 knowledge: falls back to tenant t1 knowledge with no agent."""
        orchestrator = await self._orchestrator()
        await self._store_scoped_knowledge(orchestrator)

        response = await orchestrator.chat_with_rag("capital of France", tenant_id="t1", agent_id="agent-1")

        assert [c.id for c in response.citations] == ["unassigned"]
        prompt, _ = self.generator.calls[0]
        assert prompt == build_prompt("capital of France", "capital of France")

    @pytest.mark.asyncio
    async def test_chat_scoped_to_agent_with_knowledge(self):
        orchestrator = await self._orchestrator()
        await self._store_scoped_knowledge(orchestrator)

        response = await orchestrator.chat_with_rag("capital of France", tenant_id="t1", agent_id="agent-2")

        assert [c.id for c in response.citations] == ["other-agent"]

    @pytest.mark.asyncio
    async def test_stream_scoped_by_tenant_and_agent(self):
        orchestrator = await self._orchestrator()
        await self._store_scoped_knowledge(orchestrator)

        chunks = [
            chunk async for chunk in orchestrator.chat_with_rag_stream(
                "capital of France", tenant_id="t1", agent_id="agent-1"
            )
        ]

        assert "".join(chunks) == "Hello, world"
        prompt, _ = self.generator.calls[0]
        assert prompt == build_prompt("capital of France", "capital of France")

    @pytest.mark.asyncio
    async def test_request_logs_carry_scope(self):
        orchestrator = await self._orchestrator()
        await self._store_scoped_knowledge(orchestrator)

        records = []
        handler_id = logger.add(lambda message: records.append(message.record), level="INFO")
        try:
            await orchestrator.chat_with_rag("capital of France", tenant_id="t1", agent_id="agent-1")
        finally:
            logger.remove(handler_id)

        request = next(r for r in records if r["message"].startswith("RAG chat request"))
        assert "tenant: t1" in request["message"]
        assert request["extra"]["scope"] == "tenant=t1 agent=agent-1"

        completed = next(r for r in records if r["message"].startswith("RAG chat completed"))
        assert completed["extra"]["scope"] == "tenant=t1 agent=agent-1"

    @pytest.mark.asyncio
    async def test_stream_scope_is_released_before_chunks(self):
        orchestrator = await self._orchestrator()

        records = []
        handler_id = logger.add(lambda message: records.append(message.record), level="INFO")
        try:
            stream = orchestrator.chat_with_rag_stream("capital of France", tenant_id="t2")
            [chunk async for chunk in stream]
        finally:
            logger.remove(handler_id)

        request = next(r for r in records if r["message"].startswith("RAG stream request"))
        assert "tenant: t2" in request["message"]
        assert request["extra"]["scope"] == "tenant=t2"

        completed = next(r for r in records if r["message"].startswith("RAG stream completed"))
        assert completed["extra"]["scope"] == NO_SCOPE

    @pytest.mark.asyncio
    async def test_search_delegates(self):
        orchestrator = await self._orchestrator()
        await orchestrator.store_knowledge("a", PARIS, {"userId": "u1"})

        results = await orchestrator.search("capital of France", user_id="u1")

        assert [r.id for r in results] == ["a"]

    @pytest.mark.asyncio
    async def test_batch_store_and_delete(self):
        orchestrator = await self._orchestrator()
        summary = await orchestrator.batch_store_knowledge([
            KnowledgeChunk(id="a", content=PARIS),
            KnowledgeChunk(id="b", content=BERLIN),
        ])

        assert summary.entries == 2
        assert await orchestrator.delete_knowledge("b") is True

        info = await orchestrator.knowledge_base.index.get_collection_info()
        assert info["points_count"] == 1

    @pytest.mark.asyncio
    async def test_cache_stats_and_clear(self):
        orchestrator = await self._orchestrator()
        await orchestrator.store_knowledge("a", PARIS)
        await orchestrator.chat_with_rag("capital of France")

        stats = orchestrator.get_cache_stats()
        assert stats["key_count"] > 0

        assert orchestrator.clear_cache("ai_response:") == 1
        assert orchestrator.clear_cache() == stats["key_count"] - 1
        assert orchestrator.get_cache_stats()["key_count"] == 0

    @pytest.mark.asyncio
    async def test_health_check(self):
        orchestrator = await self._orchestrator()

        status = await orchestrator.health_check()

        assert status["healthy"] is True
        assert status["cache"]["healthy"] is True
        assert status["vector_store"]["name"] == "test_knowledge"
        assert status["generation_model"] == "fake-model"

    @pytest.mark.asyncio
    async def test_create_orchestrator_with_store(self):
        store = QdrantVectorStore(settings=self.settings)
        assert await store.connect()

        orchestrator = await create_orchestrator(self.settings, store)

        assert orchestrator.knowledge_base.index is store
        assert await store.get_collection_info() is not None
