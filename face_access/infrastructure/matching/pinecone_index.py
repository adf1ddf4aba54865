"""Pinecone implementation of the embedding index."""
import asyncio
from typing import Any, Callable, Optional

import numpy as np
from pinecone import Pinecone

from face_access.core.config import settings
from face_access.core.exceptions import DatastoreUnavailableError
from face_access.core.logging import get_logger
from face_access.domain.entities.embedding import as_embedding
from face_access.domain.interfaces.matching.embedding_index import EmbeddingIndex
from face_access.domain.value_objects.resolution import IdentityPool, MatchCandidate

logger = get_logger(__name__)


class PineconeEmbeddingIndex(EmbeddingIndex):
    """Pinecone implementation of the embedding index.

    Each pool lives in its own namespace of a cosine-metric index, so the
    Pinecone score is cosine similarity and distance is `1 - score`. Every
    call runs in a worker thread bounded by DATASTORE_TIMEOUT_SECONDS; a call
    that overruns is reported as unavailable.
    """

    def __init__(
        self,
        index: Optional[Any] = None,
        dimension: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        """Initialize Pinecone client and index.

        Args:
            index: Pre-built index handle (a client is created from settings when omitted)
            dimension: Embedding length (defaults to settings.EMBEDDING_DIMENSION)
            timeout_seconds: Per-call bound (defaults to settings.DATASTORE_TIMEOUT_SECONDS)

        Raises:
            DatastoreUnavailableError: If the client cannot be created
        """
        self._dimension = dimension or settings.EMBEDDING_DIMENSION
        self._timeout = timeout_seconds or settings.DATASTORE_TIMEOUT_SECONDS
        self.index_name = settings.PINECONE_INDEX_NAME
        if index is not None:
            self.index = index
            return

        try:
            pc = Pinecone(api_key=settings.PINECONE_API_KEY)
            self.index = pc.Index(self.index_name)
            logger.info(
                "Pinecone embedding index initialized",
                index=self.index_name
            )
        except Exception as e:
            logger.error(
                "Failed to initialize Pinecone",
                error=str(e),
                exc_info=True
            )
            raise DatastoreUnavailableError(f"Failed to initialize Pinecone: {str(e)}")

    async def find_closest(
        self,
        pool: IdentityPool,
        embedding: np.ndarray,
        distance_threshold: float,
        max_results: int = 1,
    ) -> Optional[MatchCandidate]:
        """Find the closest identity in a pool within a distance threshold."""
        query = as_embedding(embedding, self._dimension)
        try:
            results = await self._call(
                self.index.query,
                vector=query.tolist(),
                top_k=max(max_results, 1),
                namespace=pool.value,
                include_metadata=False,
            )
        except Exception as e:
            logger.error(
                "Embedding search failed",
                error=str(e),
                pool=pool.value,
                exc_info=True
            )
            raise DatastoreUnavailableError(f"Embedding search failed: {str(e)}")

        matches = sorted(results.matches, key=lambda match: match.score, reverse=True)
        if not matches:
            return None

        best = matches[0]
        distance = max(1.0 - float(best.score), 0.0)
        logger.debug(
            "Embedding search completed",
            pool=pool.value,
            identity_id=best.id,
            distance=distance,
            threshold=distance_threshold
        )
        if distance > distance_threshold:
            return None
        return MatchCandidate(identity_id=best.id, distance=distance)

    async def upsert(self, pool: IdentityPool, identity_id: str, embedding: np.ndarray) -> None:
        """Store an identity embedding in the pool namespace."""
        vector = as_embedding(embedding, self._dimension)
        try:
            await self._call(
                self.index.upsert,
                vectors=[(identity_id, vector.tolist(), {"pool": pool.value})],
                namespace=pool.value,
            )
            logger.debug("Stored identity embedding", pool=pool.value, identity_id=identity_id)
        except Exception as e:
            logger.error(
                "Failed to store identity embedding",
                error=str(e),
                pool=pool.value,
                identity_id=identity_id,
                exc_info=True
            )
            raise DatastoreUnavailableError(f"Failed to store identity embedding: {str(e)}")

    async def remove(self, pool: IdentityPool, identity_id: str) -> None:
        """Delete an identity embedding from the pool namespace."""
        try:
            await self._call(
                self.index.delete,
                ids=[identity_id],
                namespace=pool.value,
            )
            logger.debug("Deleted identity embedding", pool=pool.value, identity_id=identity_id)
        except Exception as e:
            logger.error(
                "Failed to delete identity embedding",
                error=str(e),
                pool=pool.value,
                identity_id=identity_id,
                exc_info=True
            )
            raise DatastoreUnavailableError(f"Failed to delete identity embedding: {str(e)}")

    async def _call(self, method: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(method, **kwargs), self._timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Pinecone call exceeded {self._timeout}s")
