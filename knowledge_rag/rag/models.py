"""Data shapes shared by the knowledge base and the RAG orchestrator."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

# Values the vector store accepts in point metadata.
MetadataValue = Union[str, int, float, bool, List[str]]
Metadata = Dict[str, MetadataValue]

EmbeddingVector = Tuple[float, ...]


def is_metadata_value(value: Any) -> bool:
    """Check whether a value is storable as vector metadata."""
    if isinstance(value, (str, bool, int, float)):
        return True
    if isinstance(value, (list, tuple)):
        return all(isinstance(item, str) for item in value)
    return False


def filter_metadata(metadata: Optional[Mapping[str, Any]]) -> Metadata:
    """
    Drop metadata fields the vector store cannot hold.

    None values and anything that is not a string, number, boolean or list of
    strings are removed. Tuples of strings are stored as lists.

    Args:
        metadata: Caller supplied metadata

    Returns:
        New dictionary with only storable values
    """
    filtered: Metadata = {}
    for key, value in (metadata or {}).items():
        if value is None or not is_metadata_value(value):
            continue
        filtered[key] = list(value) if isinstance(value, tuple) else value
    return filtered


@dataclass(frozen=True)
class KnowledgeChunk:
    """A piece of knowledge to index; id and content are owned by the caller."""
    id: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchResult:
    """A vector store match."""
    id: str
    score: float
    metadata: Dict[str, Any]

    @property
    def content(self) -> str:
        return str(self.metadata.get("content", ""))

    @property
    def agent_id(self) -> Optional[str]:
        return self.metadata.get("agentId") or None


@dataclass(frozen=True)
class SearchFilters:
    """Exact-match scoping for a similarity search."""
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    agent_id: Optional[str] = None

    @property
    def is_scoped(self) -> bool:
        return bool(self.user_id or self.tenant_id or self.agent_id)

    def without_agent(self) -> "SearchFilters":
        return SearchFilters(user_id=self.user_id, tenant_id=self.tenant_id)

    def as_equals(self) -> Dict[str, str]:
        """Metadata field -> required value."""
        equals = {}
        if self.user_id:
            equals["userId"] = self.user_id
        if self.tenant_id:
            equals["tenantId"] = self.tenant_id
        if self.agent_id:
            equals["agentId"] = self.agent_id
        return equals


@dataclass
class Citation:
    """Provenance of one chunk that was part of the generation context."""
    id: str
    score: float
    content_preview: str
    title: Optional[str] = None
    file_name: Optional[str] = None
    page: Optional[int] = None
    line: Optional[int] = None
    chunk_index: Optional[int] = None

    @classmethod
    def from_result(cls, result: SearchResult, preview_chars: int = 200) -> "Citation":
        metadata = result.metadata
        content = result.content
        preview = content if len(content) <= preview_chars else content[:preview_chars] + "..."
        return cls(
            id=result.id,
            score=result.score,
            content_preview=preview,
            title=metadata.get("title"),
            file_name=metadata.get("fileName"),
            page=_as_int(metadata.get("page")),
            line=_as_int(metadata.get("line")),
            chunk_index=_as_int(metadata.get("chunkIndex")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RAGResponse:
    """Generated answer with the citations backing it."""
    response: str
    citations: List[Citation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "citations": [citation.to_dict() for citation in self.citations],
        }


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
