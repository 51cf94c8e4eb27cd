"""Qdrant vector database client implementation."""

import uuid
from typing import Any, Dict, List, Optional, Sequence

from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models
from qdrant_client.models import Distance, FieldCondition, Filter, PointStruct, VectorParams

from knowledge_rag.utils.config import Settings, get_settings
from knowledge_rag.utils.logger import get_logger
from knowledge_rag.vectorstore.base import (
    CREATED_AT_FIELD,
    IndexFilter,
    IndexMatch,
    IndexRecord,
    VectorIndex,
)

logger = get_logger()

# Payload key holding the caller's id; Qdrant point ids must be UUIDs.
KNOWLEDGE_ID_FIELD = "knowledge_id"
_POINT_NAMESPACE = uuid.UUID("6f1c2a4e-8d3b-5e7f-9a0c-1b2d3e4f5a6b")


def point_id_for(knowledge_id: str) -> str:
    """Map a caller supplied id to a stable Qdrant point id."""
    return str(uuid.uuid5(_POINT_NAMESPACE, knowledge_id))


class QdrantVectorStore(VectorIndex):
    """Qdrant-backed vector index for the knowledge base."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        location: Optional[str] = None,
        collection_name: Optional[str] = None,
    ):
        """
        Initialize Qdrant configuration.

        Args:
            settings: Settings instance (default: global settings)
            location: ":memory:" or a URL; overrides host/port from settings
            collection_name: Collection to use (default from settings)
        """
        self.settings = settings or get_settings()
        self.location = location or self.settings.qdrant_location
        self.collection_name = collection_name or self.settings.qdrant_collection_name
        self.client: Optional[AsyncQdrantClient] = None
        self._vector_size: Optional[int] = None

    async def connect(self) -> bool:
        """
        Connect to Qdrant database.

        Returns:
            bool: True if connection successful, False otherwise
        """
        try:
            if self.location:
                logger.info(f"Connecting to Qdrant at {self.location}")
                self.client = AsyncQdrantClient(location=self.location)
            else:
                logger.info(f"Connecting to Qdrant at {self.settings.qdrant_host}:{self.settings.qdrant_port}")
                self.client = AsyncQdrantClient(
                    host=self.settings.qdrant_host,
                    port=self.settings.qdrant_port,
                    timeout=self.settings.request_timeout_seconds,
                )

            collections = await self.client.get_collections()
            logger.info(f"Successfully connected to Qdrant. Found {len(collections.collections)} collections.")

            return True

        except Exception as e:
            logger.error(f"Failed to connect to Qdrant: {e}")
            self.client = None
            return False

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
            self.client = None

    async def ensure_collection(self, vector_size: Optional[int] = None) -> bool:
        """
        Create the collection if it doesn't exist.

        Args:
            vector_size: Embedding dimension (default from settings)

        Returns:
            bool: True if collection created or exists, False otherwise
        """
        vector_size = vector_size or self.settings.embedding_dimension

        try:
            client = self._require_client()

            if await client.collection_exists(self.collection_name):
                logger.info(f"Collection '{self.collection_name}' already exists")
                self._vector_size = vector_size
                return True

            logger.info(f"Creating collection '{self.collection_name}' with vector size {vector_size}")

            await client.create_collection(
                collection_name=self.collection_name,
                vectors_config=VectorParams(size=vector_size, distance=Distance.COSINE),
            )
            self._vector_size = vector_size

            logger.info(f"Successfully created collection '{self.collection_name}'")
            return True

        except Exception as e:
            logger.error(f"Failed to create collection: {e}")
            return False

    async def query(
        self,
        vector: Sequence[float],
        top_k: int,
        include_metadata: bool = True,
        filter: Optional[IndexFilter] = None,
    ) -> List[IndexMatch]:
        client = self._require_client()

        response = await client.query_points(
            collection_name=self.collection_name,
            query=list(vector),
            limit=top_k,
            with_payload=include_metadata,
            query_filter=self._build_filter(filter),
        )

        matches = []
        for point in response.points:
            payload: Dict[str, Any] = dict(point.payload or {})
            knowledge_id = payload.pop(KNOWLEDGE_ID_FIELD, None) or str(point.id)
            matches.append(IndexMatch(id=knowledge_id, score=float(point.score), metadata=payload))

        return matches

    async def upsert(self, records: List[IndexRecord]) -> None:
        client = self._require_client()

        points = [
            PointStruct(
                id=point_id_for(record.id),
                vector=list(record.values),
                payload={**record.metadata, KNOWLEDGE_ID_FIELD: record.id},
            )
            for record in records
        ]

        await client.upsert(collection_name=self.collection_name, points=points)
        logger.debug(f"Upserted {len(points)} points into '{self.collection_name}'")

    async def delete_one(self, id: str) -> None:
        client = self._require_client()

        await client.delete(
            collection_name=self.collection_name,
            points_selector=models.PointIdsList(points=[point_id_for(id)]),
        )

    async def get_collection_info(self) -> Optional[Dict[str, Any]]:
        """
        Get information about the collection.

        Returns:
            Dictionary with collection statistics or None if failed
        """
        try:
            client = self._require_client()
            info = await client.get_collection(collection_name=self.collection_name)

            return {
                "name": self.collection_name,
                "points_count": info.points_count,
                "vector_size": info.config.params.vectors.size,
                "status": str(info.status),
            }

        except Exception as e:
            logger.error(f"Failed to get collection info: {e}")
            return None

    async def delete_collection(self) -> bool:
        """
        Delete the collection.

        Returns:
            bool: True if successful
        """
        try:
            client = self._require_client()

            logger.warning(f"Deleting collection '{self.collection_name}'")
            await client.delete_collection(collection_name=self.collection_name)
            logger.info(f"Successfully deleted collection '{self.collection_name}'")

            return True

        except Exception as e:
            logger.error(f"Failed to delete collection: {e}")
            return False

    def _require_client(self) -> AsyncQdrantClient:
        if self.client is None:
            raise RuntimeError("Qdrant client not connected")
        return self.client

    @staticmethod
    def _build_filter(index_filter: Optional[IndexFilter]) -> Optional[Filter]:
        if index_filter is None:
            return None

        conditions = [
            FieldCondition(key=key, match=models.MatchValue(value=value))
            for key, value in index_filter.equals.items()
        ]
        if index_filter.created_after is not None:
            conditions.append(
                FieldCondition(key=CREATED_AT_FIELD, range=models.Range(gte=index_filter.created_after))
            )

        return Filter(must=conditions) if conditions else None
