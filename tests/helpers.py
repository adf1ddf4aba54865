"""Test helpers shared across test modules."""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Dict, List

import numpy as np
from sqlalchemy import func, select

from face_access.domain.entities.embedding import EmbeddingLike, cosine_distances
from face_access.infrastructure.database.models import ObservedUser
from face_access.infrastructure.database.unit_of_work import UnitOfWorkFactory

DIMENSION = 128
REGISTERED_THRESHOLD = 0.15
OBSERVED_THRESHOLD = 0.08
START = datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_embedding(seed: int) -> np.ndarray:
    """Random embedding; two different seeds are nowhere near any threshold."""
    return np.random.default_rng(seed).normal(size=DIMENSION)


def at_distance(base: np.ndarray, distance: float, seed: int = 0) -> np.ndarray:
    """Embedding whose cosine distance to `base` is `distance` (up to rounding)."""
    unit = base / np.linalg.norm(base)
    noise = np.random.default_rng(seed + 1000).normal(size=DIMENSION)
    orthogonal = noise - noise.dot(unit) * unit
    orthogonal /= np.linalg.norm(orthogonal)
    cos_theta = 1.0 - distance
    sin_theta = np.sqrt(max(0.0, 1.0 - cos_theta ** 2))
    return cos_theta * unit + sin_theta * orthogonal


async def count_observed(uow_factory: UnitOfWorkFactory) -> int:
    async with uow_factory() as uow:
        result = await uow.session.execute(select(func.count()).select_from(ObservedUser))
        return result.scalar_one()


def cosine_distance(a: EmbeddingLike, b: EmbeddingLike) -> float:
    """Cosine distance between two single embeddings."""
    query = np.asarray(a, dtype=np.float64)
    candidate = np.asarray(b, dtype=np.float64).reshape(1, -1)
    return float(cosine_distances(query, candidate)[0])


class FakePineconeHandle:
    """In-memory cosine-metric index handle with the query/upsert/delete calls we use.

    Set `fail_next_upsert` or `fail_next_delete` to make the next such call
    raise, the way a dropped connection would.
    """

    def __init__(self) -> None:
        self.namespaces: Dict[str, Dict[str, List[float]]] = {}
        self.fail_next_upsert = False
        self.fail_next_delete = False

    def ids(self, namespace: str) -> List[str]:
        return sorted(self.namespaces.get(namespace, {}))

    def query(self, vector, top_k, namespace, include_metadata=False):
        stored = self.namespaces.get(namespace, {})
        if not stored:
            return SimpleNamespace(matches=[])
        ids = list(stored)
        distances = cosine_distances(
            np.asarray(vector, dtype=np.float64),
            np.asarray([stored[identity_id] for identity_id in ids], dtype=np.float64),
        )
        order = np.argsort(distances, kind="stable")[:top_k]
        return SimpleNamespace(matches=[
            SimpleNamespace(id=ids[i], score=1.0 - float(distances[i])) for i in order
        ])

    def upsert(self, vectors, namespace):
        if self.fail_next_upsert:
            self.fail_next_upsert = False
            raise ConnectionError("connection reset during upsert")
        for identity_id, values, _metadata in vectors:
            self.namespaces.setdefault(namespace, {})[identity_id] = list(values)

    def delete(self, ids, namespace):
        if self.fail_next_delete:
            self.fail_next_delete = False
            raise ConnectionError("connection reset during delete")
        for identity_id in ids:
            self.namespaces.get(namespace, {}).pop(identity_id, None)
