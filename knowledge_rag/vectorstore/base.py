"""Base vector index interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

# Numeric payload field (epoch seconds) that recency filters apply to.
CREATED_AT_FIELD = "created_at_ts"


@dataclass
class IndexRecord:
    """A vector with its metadata, keyed by the caller's knowledge id."""
    id: str
    values: Sequence[float]
    metadata: Dict[str, Any]


@dataclass
class IndexMatch:
    """A raw similarity match returned by the index."""
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexFilter:
    """
    Metadata constraints for a query.

    Attributes:
        equals: Field -> value that must match exactly
        created_after: Epoch seconds; older records are excluded
    """
    equals: Dict[str, str] = field(default_factory=dict)
    created_after: Optional[float] = None


class VectorIndex(ABC):
    """Abstract nearest-neighbour index."""

    @abstractmethod
    async def query(
        self,
        vector: Sequence[float],
        top_k: int,
        include_metadata: bool = True,
        filter: Optional[IndexFilter] = None,
    ) -> List[IndexMatch]:
        """
        Find the closest stored vectors.

        Args:
            vector: Query vector
            top_k: Maximum number of matches
            include_metadata: Whether to return stored metadata
            filter: Optional metadata constraints

        Returns:
            List[IndexMatch]: Matches ordered by descending score
        """
        pass

    @abstractmethod
    async def upsert(self, records: List[IndexRecord]) -> None:
        """
        Insert or replace records by id.

        Args:
            records: Records to write
        """
        pass

    @abstractmethod
    async def delete_one(self, id: str) -> None:
        """
        Delete a record by id.

        Args:
            id: Knowledge id
        """
        pass

    async def get_collection_info(self) -> Optional[Dict[str, Any]]:
        """Backend statistics for health reporting, or None if unavailable."""
        return None
