"""Embedding index backed by the embeddings stored in the relational rows."""
from typing import List, Optional, Tuple

import numpy as np

from face_access.core.config import settings
from face_access.core.logging import get_logger
from face_access.domain.entities.embedding import as_embedding, cosine_distances
from face_access.domain.interfaces.matching.embedding_index import EmbeddingIndex
from face_access.domain.value_objects.resolution import IdentityPool, MatchCandidate
from face_access.infrastructure.database.unit_of_work import UnitOfWorkFactory

logger = get_logger(__name__)


class SqlEmbeddingIndex(EmbeddingIndex):
    """Exact nearest-neighbor search over the `faces` and `observed_users` tables.

    The rows themselves are the index, so `upsert` and `remove` have nothing
    to do: an observed identity is searchable as soon as its row commits and
    stops being searchable once `is_registered` is set.

    On PostgreSQL the search is a pgvector `<=>` query answered from the HNSW
    indexes. Other backends (SQLite for local runs and tests) load the pool
    and scan it with numpy.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory, dimension: Optional[int] = None) -> None:
        """Initialize the index.

        Args:
            uow_factory: Opens read transactions
            dimension: Embedding length (defaults to settings.EMBEDDING_DIMENSION)
        """
        self._uow_factory = uow_factory
        self._dimension = dimension or settings.EMBEDDING_DIMENSION

    async def find_closest(
        self,
        pool: IdentityPool,
        embedding: np.ndarray,
        distance_threshold: float,
        max_results: int = 1,
    ) -> Optional[MatchCandidate]:
        """Find the closest identity in a pool within a distance threshold."""
        query = as_embedding(embedding, self._dimension)

        async with self._uow_factory() as uow:
            repository = (
                uow.registered_users if pool == IdentityPool.REGISTERED else uow.observed_users
            )
            if uow.dialect_name == "postgresql":
                matches = await repository.nearest(
                    [float(value) for value in query],
                    distance_threshold,
                    limit=max(max_results, 1),
                )
                return self._first_match(pool, matches, distance_threshold)
            rows = await repository.list_embeddings()

        ids, matrix = self._to_matrix(pool, rows)
        if not ids:
            logger.debug("Embedding pool is empty", pool=pool.value)
            return None

        distances = cosine_distances(query, matrix)
        nearest = np.argsort(distances, kind="stable")[:max(max_results, 1)]
        best = int(nearest[0])
        best_distance = float(max(distances[best], 0.0))

        logger.debug(
            "Closest embedding found",
            pool=pool.value,
            identity_id=ids[best],
            distance=best_distance,
            threshold=distance_threshold
        )
        if best_distance > distance_threshold:
            return None
        return MatchCandidate(identity_id=ids[best], distance=best_distance)

    async def upsert(self, pool: IdentityPool, identity_id: str, embedding: np.ndarray) -> None:
        return None

    async def remove(self, pool: IdentityPool, identity_id: str) -> None:
        return None

    def _to_matrix(
        self,
        pool: IdentityPool,
        rows: List[Tuple[str, List[float]]],
    ) -> Tuple[List[str], np.ndarray]:
        ids: List[str] = []
        vectors: List[List[float]] = []
        for identity_id, stored in rows:
            if stored is None or len(stored) != self._dimension:
                logger.warning(
                    "Skipping stored embedding with unexpected length",
                    pool=pool.value,
                    identity_id=identity_id,
                    length=None if stored is None else len(stored)
                )
                continue
            ids.append(identity_id)
            vectors.append(stored)
        if not vectors:
            return [], np.empty((0, self._dimension), dtype=np.float64)
        return ids, np.asarray(vectors, dtype=np.float64)

    def _first_match(
        self,
        pool: IdentityPool,
        matches: List[Tuple[str, float]],
        distance_threshold: float,
    ) -> Optional[MatchCandidate]:
        if not matches:
            logger.debug("No embedding within threshold", pool=pool.value, threshold=distance_threshold)
            return None
        identity_id, distance = matches[0]
        logger.debug(
            "Closest embedding found",
            pool=pool.value,
            identity_id=identity_id,
            distance=distance,
            threshold=distance_threshold
        )
        return MatchCandidate(identity_id=identity_id, distance=max(distance, 0.0))
