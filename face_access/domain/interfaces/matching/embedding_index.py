"""Embedding index interface for identity matching."""
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from ...value_objects.resolution import IdentityPool, MatchCandidate


class EmbeddingIndex(ABC):
    """Interface for nearest-neighbor search over identity embeddings."""

    @abstractmethod
    async def find_closest(
        self,
        pool: IdentityPool,
        embedding: np.ndarray,
        distance_threshold: float,
        max_results: int = 1,
    ) -> Optional[MatchCandidate]:
        """
        Find the closest identity in a pool within a distance threshold.

        This is a pure query: implementations must not mutate anything.

        Args:
            pool: Pool to search (registered or observed)
            embedding: Validated query embedding
            distance_threshold: Maximum accepted cosine distance (inclusive)
            max_results: Number of neighbors to ask the backend for

        Returns:
            The nearest candidate, or None if the pool is empty or nothing is
            within the threshold

        Raises:
            DatastoreUnavailableError: If the query fails
        """
        pass

    @abstractmethod
    async def upsert(
        self,
        pool: IdentityPool,
        identity_id: str,
        embedding: np.ndarray,
    ) -> None:
        """
        Make an identity embedding searchable.

        Args:
            pool: Pool the identity belongs to
            identity_id: Registered or observed user identifier
            embedding: Embedding vector

        Raises:
            DatastoreUnavailableError: If the write fails
        """
        pass

    @abstractmethod
    async def remove(
        self,
        pool: IdentityPool,
        identity_id: str,
    ) -> None:
        """
        Exclude an identity from future searches.

        Args:
            pool: Pool the identity belongs to
            identity_id: Registered or observed user identifier

        Raises:
            DatastoreUnavailableError: If the write fails
        """
        pass
