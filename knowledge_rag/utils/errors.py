"""Error taxonomy for the knowledge base RAG core."""


class KnowledgeRAGError(Exception):
    """Base class for all errors raised by this package."""


class EmbeddingProviderError(KnowledgeRAGError):
    """The embedding provider failed or returned an unusable vector."""


class SearchError(KnowledgeRAGError):
    """The vector store query failed.

    Callers of the knowledge base never see this error: it is logged and the
    search degrades to an empty result list.
    """


class GenerationError(KnowledgeRAGError):
    """Answer generation failed at any stage of the pipeline."""


class BatchIngestionError(KnowledgeRAGError):
    """A group of a batch ingestion failed; remaining groups were skipped."""

    def __init__(self, message: str, stored: int = 0, total: int = 0):
        super().__init__(message)
        self.stored = stored
        self.total = total
