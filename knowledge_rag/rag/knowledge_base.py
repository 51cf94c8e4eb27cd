"""Knowledge base access: similarity search, context assembly and ingestion."""

import asyncio
import json
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from knowledge_rag.cache.memory_cache import CacheCategory, CacheService
from knowledge_rag.rag.models import (
    EmbeddingVector,
    KnowledgeChunk,
    SearchFilters,
    SearchResult,
    filter_metadata,
)
from knowledge_rag.utils.config import Settings, get_settings
from knowledge_rag.utils.errors import BatchIngestionError, SearchError
from knowledge_rag.utils.logger import get_logger
from knowledge_rag.vectorstore.base import CREATED_AT_FIELD, IndexFilter, IndexRecord, VectorIndex
from knowledge_rag.vectorstore.embeddings import EmbeddingService

logger = get_logger()

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class BatchIngestionResult:
    """Summary of a batch ingestion run."""
    entries: int
    embedding_groups: int
    upsert_groups: int
    duration_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class KnowledgeBase:
    """Similarity search, token-budgeted context assembly and knowledge ingestion."""

    def __init__(
        self,
        index: VectorIndex,
        embeddings: EmbeddingService,
        cache: CacheService,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the knowledge base.

        Args:
            index: Vector index holding the knowledge vectors
            embeddings: Embedding service (shares the cache)
            cache: Shared cache instance
            settings: Settings instance (default: global settings)
        """
        self.settings = settings or get_settings()
        self.index = index
        self.embeddings = embeddings
        self.cache = cache

        self.similarity_threshold = self.settings.rag_similarity_threshold
        self.max_age_days = self.settings.rag_max_age_days
        self.max_candidates = self.settings.rag_max_candidates
        self.embedding_batch_size = self.settings.ingest_embedding_batch_size
        self.batch_delay_seconds = self.settings.ingest_batch_delay_seconds
        self.upsert_batch_size = self.settings.ingest_upsert_batch_size

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        user_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        top_k: int = 5,
        agent_id: Optional[str] = None,
    ) -> List[SearchResult]:
        """
        Search the knowledge base with a text query.

        Args:
            query: Query text
            user_id: Optional owner filter
            tenant_id: Optional tenant filter
            top_k: Number of results to return
            agent_id: Optional agent scope (falls back to unscoped knowledge)

        Returns:
            Matching results, or an empty list on any failure
        """
        try:
            vector = await self.embeddings.generate_embedding(query)
        except Exception as e:
            logger.error(f"Knowledge search failed while embedding query (length: {len(query)}): {e}")
            return []

        filters = SearchFilters(user_id=user_id, tenant_id=tenant_id, agent_id=agent_id)
        return await self.search_with_fallback(vector, filters, top_k)

    async def search_with_vector(
        self,
        vector: EmbeddingVector,
        filters: Optional[SearchFilters] = None,
        top_k: int = 5,
    ) -> List[SearchResult]:
        """
        Search with a pre-computed vector, cached on vector, filters and top_k.

        Provider failures are logged and degrade to an empty list, which is
        not cached.

        Args:
            vector: Query embedding
            filters: Exact-match scope
            top_k: Number of results to return

        Returns:
            Up to top_k results above the relevance floor, best first
        """
        filters = filters or SearchFilters()
        # Unset filters serialize as null, distinct from any real id
        key = json.dumps([
            [float(v) for v in vector],
            filters.user_id,
            filters.tenant_id,
            filters.agent_id,
            top_k,
        ])

        try:
            return await self.cache.get_or_compute(
                CacheCategory.SEARCH,
                key,
                None,
                lambda: self._query(vector, filters, top_k),
            )
        except SearchError as e:
            logger.error(f"Knowledge search failed: {e}")
            return []

    async def search_with_fallback(
        self,
        vector: EmbeddingVector,
        filters: SearchFilters,
        top_k: int = 5,
    ) -> List[SearchResult]:
        """
        Agent-scoped search that recovers knowledge not yet indexed by agent.

        When an agent-scoped search finds nothing, the query is repeated
        without the agent filter and only results belonging to that agent or
        to no agent are kept.

        Args:
            vector: Query embedding
            filters: Exact-match scope
            top_k: Number of results to return

        Returns:
            Search results
        """
        results = await self.search_with_vector(vector, filters, top_k)
        if results or not filters.agent_id:
            return results

        logger.info(f"No agent-scoped knowledge for agent {filters.agent_id}, retrying without agent filter")

        unscoped = await self.search_with_vector(vector, filters.without_agent(), top_k)
        recovered = [
            result for result in unscoped
            if result.agent_id is None or result.agent_id == filters.agent_id
        ]

        logger.info(f"Fallback search recovered {len(recovered)} of {len(unscoped)} results")
        return recovered

    async def _query(
        self,
        vector: EmbeddingVector,
        filters: SearchFilters,
        top_k: int,
    ) -> List[SearchResult]:
        index_filter = None
        if filters.is_scoped:
            index_filter = IndexFilter(
                equals=filters.as_equals(),
                created_after=time.time() - self.max_age_days * SECONDS_PER_DAY,
            )

        try:
            matches = await self.index.query(
                vector,
                top_k=min(top_k * 2, self.max_candidates),
                include_metadata=True,
                filter=index_filter,
            )
        except Exception as e:
            raise SearchError(f"Vector store query failed: {e}") from e

        relevant = sorted(
            (m for m in matches if m.score and m.score > self.similarity_threshold),
            key=lambda m: m.score,
            reverse=True,
        )[:top_k]

        results = [SearchResult(id=m.id, score=m.score, metadata=dict(m.metadata)) for m in relevant]

        logger.info(
            f"Knowledge search completed: {len(results)} results "
            f"(candidates: {len(matches)}, top score: {results[0].score if results else 0:.3f})"
        )
        return results

    # ------------------------------------------------------------------
    # Context assembly
    # ------------------------------------------------------------------

    async def build_context(self, results: Sequence[SearchResult], max_tokens: int = 30000) -> str:
        """
        Assemble retrieved content into a context string within a token budget.

        Results are taken in descending score order; assembly stops before
        the first result that would exceed the budget.

        Args:
            results: Search results carrying "content" metadata
            max_tokens: Token budget

        Returns:
            Contents separated by blank lines, or "" when nothing fits
        """
        context, _ = await self.assemble_context(results, max_tokens)
        return context

    async def assemble_context(
        self,
        results: Sequence[SearchResult],
        max_tokens: int = 30000,
    ) -> Tuple[str, List[SearchResult]]:
        """
        Assemble the context and report which results contributed to it.

        The context string and the ids that produced it are cached together on
        the (id, score) list and the budget, so the reported sources always
        match the context, including on a cache hit.

        Returns:
            Tuple of (context, contributing results in context order)
        """
        if not results or max_tokens <= 0:
            return "", []

        key = json.dumps([[r.id, r.score] for r in results] + [max_tokens])
        context, selected_ids = await self.cache.get_or_compute(
            CacheCategory.CONTEXT,
            key,
            None,
            lambda: self._walk(results, max_tokens),
        )

        by_id = {result.id: result for result in results}
        return context, [by_id[id] for id in selected_ids]

    async def _walk(
        self,
        results: Sequence[SearchResult],
        max_tokens: int,
    ) -> Tuple[str, Tuple[str, ...]]:
        ordered = sorted(results, key=lambda r: r.score, reverse=True)
        selected = await self._select_within_budget(ordered, max_tokens)
        context = "\n\n".join(result.content for result in selected).strip()
        return context, tuple(result.id for result in selected)

    async def context_sources(
        self,
        results: Sequence[SearchResult],
        max_tokens: int = 30000,
    ) -> List[SearchResult]:
        """Return the results that make it into the context for this budget."""
        _, selected = await self.assemble_context(results, max_tokens)
        return selected

    async def _select_within_budget(
        self,
        ordered: Iterable[SearchResult],
        max_tokens: int,
    ) -> List[SearchResult]:
        selected: List[SearchResult] = []
        token_count = 0

        for result in ordered:
            tokens = await self.embeddings.count_tokens(result.content)
            if token_count + tokens > max_tokens:
                logger.warning(
                    f"Context size limit reached (current tokens: {token_count}, max tokens: {max_tokens})"
                )
                break
            selected.append(result)
            token_count += tokens

        return selected

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def store_knowledge(
        self,
        id: str,
        content: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """
        Embed and store a single knowledge entry.

        Args:
            id: Stable caller supplied identifier
            content: Text content to store
            metadata: Optional metadata; unsupported values are dropped

        Raises:
            EmbeddingProviderError: Embedding failed
            Exception: Vector store errors are logged and re-raised
        """
        metadata = metadata or {}
        logger.debug(f"Storing knowledge {id} (content length: {len(content)}, metadata keys: {list(metadata)})")

        try:
            vector = await self.embeddings.generate_embedding(content)
            await self.index.upsert([self._record(id, content, vector, metadata)])

            logger.info(f"Knowledge stored successfully: {id} (content length: {len(content)})")

        except Exception as e:
            logger.error(f"Failed to store knowledge {id} in vector DB: {e}")
            raise

    async def batch_store_knowledge(
        self,
        entries: Sequence[KnowledgeChunk],
    ) -> BatchIngestionResult:
        """
        Store many knowledge entries while respecting provider throughput.

        Embeddings are generated in small concurrent groups with a pause
        between groups; vectors are then upserted in larger groups in input
        order. The first failing group aborts the run; groups already
        upserted stay stored.

        Args:
            entries: Knowledge chunks to store

        Returns:
            BatchIngestionResult summary

        Raises:
            BatchIngestionError: A group failed
        """
        start_time = time.monotonic()
        total = len(entries)
        logger.info(f"Starting batch knowledge storage ({total} entries)")

        records: List[IndexRecord] = []
        embedding_groups = 0
        step = self.embedding_batch_size

        for start in range(0, total, step):
            group = entries[start:start + step]
            embedding_groups += 1
            logger.debug(
                f"Processing embedding batch {embedding_groups}/{-(-total // step)} ({len(group)} entries)"
            )

            try:
                vectors = await asyncio.gather(
                    *(self.embeddings.generate_embedding(entry.content) for entry in group)
                )
            except Exception as e:
                logger.error(f"Embedding batch {embedding_groups} failed: {e}")
                raise BatchIngestionError(
                    f"Embedding batch {embedding_groups} failed: {e}", stored=0, total=total
                ) from e

            records.extend(
                self._record(entry.id, entry.content, vector, entry.metadata)
                for entry, vector in zip(group, vectors)
            )

            if start + step < total:
                await asyncio.sleep(self.batch_delay_seconds)

        upsert_groups = 0
        stored = 0
        for start in range(0, len(records), self.upsert_batch_size):
            group = records[start:start + self.upsert_batch_size]
            try:
                await self.index.upsert(group)
            except Exception as e:
                logger.error(
                    f"Batch upsert {upsert_groups} failed ({len(group)} records, {stored} already stored): {e}"
                )
                raise BatchIngestionError(
                    f"Batch upsert {upsert_groups} failed: {e}", stored=stored, total=total
                ) from e
            upsert_groups += 1
            stored += len(group)

        result = BatchIngestionResult(
            entries=total,
            embedding_groups=embedding_groups,
            upsert_groups=upsert_groups,
            duration_seconds=time.monotonic() - start_time,
        )
        logger.info(
            f"Batch knowledge stored successfully: {total} entries, "
            f"{upsert_groups} upsert batches in {result.duration_seconds:.2f}s"
        )
        return result

    async def delete_knowledge(self, id: str) -> bool:
        """
        Delete a knowledge entry from the vector store.

        Best-effort: failures are logged and reported, never raised, so the
        caller's primary record deletion is not blocked.

        Returns:
            True if the delete succeeded
        """
        try:
            await self.index.delete_one(id)
            logger.info(f"Knowledge deleted from vector DB: {id}")
            return True
        except Exception as e:
            logger.warning(f"Failed to delete knowledge {id} from vector DB (non-critical): {e}")
            return False

    @staticmethod
    def _record(
        id: str,
        content: str,
        vector: EmbeddingVector,
        metadata: Optional[Mapping[str, Any]],
    ) -> IndexRecord:
        now = datetime.now(timezone.utc)
        clean = filter_metadata({
            "content": content,
            **(metadata or {}),
            "createdAt": now.isoformat(),
            CREATED_AT_FIELD: now.timestamp(),
        })
        return IndexRecord(id=id, values=vector, metadata=clean)
