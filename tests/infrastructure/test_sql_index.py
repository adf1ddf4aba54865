"""Tests for the database-backed embedding index."""
import numpy as np
import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateIndex

from face_access.core.exceptions import ShapeMismatchError
from face_access.domain.value_objects.resolution import IdentityPool
from face_access.infrastructure.database.models import ObservedUser, RegisteredFace
from face_access.infrastructure.database.repositories import cosine_distance_to

from helpers import OBSERVED_THRESHOLD, REGISTERED_THRESHOLD, START, at_distance, make_embedding


class TestSqlEmbeddingIndex:
    """Test suite for exact nearest-neighbor search."""

    async def test_returns_nearest_registered_candidate(self, index, seed_registered):
        """Should pick the closest of several registered faces."""
        base = make_embedding(1)
        near_id = await seed_registered(at_distance(base, 0.02), full_name="Near")
        await seed_registered(at_distance(base, 0.10, seed=1), full_name="Farther")
        await seed_registered(make_embedding(2), full_name="Stranger")

        candidate = await index.find_closest(IdentityPool.REGISTERED, base, REGISTERED_THRESHOLD)

        assert candidate.identity_id == near_id
        assert candidate.distance == pytest.approx(0.02, abs=1e-6)

    async def test_threshold_is_inclusive_upper_bound(self, index, seed_registered):
        base = make_embedding(3)
        await seed_registered(at_distance(base, 0.12))

        assert await index.find_closest(IdentityPool.REGISTERED, base, 0.13) is not None
        assert await index.find_closest(IdentityPool.REGISTERED, base, 0.11) is None

    async def test_empty_pool_returns_none(self, index):
        """Should return None when nothing is stored."""
        assert await index.find_closest(IdentityPool.REGISTERED, make_embedding(4), 2.0) is None
        assert await index.find_closest(IdentityPool.OBSERVED, make_embedding(4), 2.0) is None

    async def test_query_with_wrong_length_is_rejected(self, index):
        with pytest.raises(ShapeMismatchError):
            await index.find_closest(IdentityPool.REGISTERED, np.ones(12), REGISTERED_THRESHOLD)

    async def test_stored_embedding_with_wrong_length_is_skipped(self, index, seed_registered):
        """Should ignore malformed stored rows instead of failing the search."""
        base = make_embedding(5)
        await seed_registered(np.ones(12), full_name="Malformed")
        good_id = await seed_registered(at_distance(base, 0.01), full_name="Good")

        candidate = await index.find_closest(IdentityPool.REGISTERED, base, REGISTERED_THRESHOLD)

        assert candidate.identity_id == good_id

    async def test_registered_observed_rows_are_excluded(self, index, store):
        """Should stop matching an observed identity once it is registered."""
        embedding = make_embedding(6)
        observed = await store.create(embedding, seen_at=START)

        found = await index.find_closest(IdentityPool.OBSERVED, embedding, OBSERVED_THRESHOLD)
        assert found.identity_id == observed.id

        await store.mark_registered(observed.id)
        assert await index.find_closest(IdentityPool.OBSERVED, embedding, OBSERVED_THRESHOLD) is None

    async def test_pools_are_separate(self, index, store):
        """Should never return an observed identity from the registered pool."""
        embedding = make_embedding(7)
        await store.create(embedding, seen_at=START)

        assert await index.find_closest(IdentityPool.REGISTERED, embedding, REGISTERED_THRESHOLD) is None


class TestPostgresVectorSearch:
    """The PostgreSQL path pushes the threshold query into pgvector."""

    def test_distance_uses_cosine_operator(self):
        distance = cosine_distance_to(ObservedUser.embedding, [0.1, 0.2, 0.3])
        stmt = select(ObservedUser.id).where(distance <= 0.08).order_by(distance).limit(1)

        sql = str(stmt.compile(dialect=postgresql.dialect()))

        assert "observed_users.embedding <=>" in sql
        assert "ORDER BY observed_users.embedding <=>" in sql
        assert "LIMIT" in sql

    @pytest.mark.parametrize("table", [RegisteredFace.__table__, ObservedUser.__table__])
    def test_embedding_columns_have_hnsw_cosine_index(self, table):
        """Should declare an HNSW index with cosine ops on each embedding table."""
        hnsw = [index for index in table.indexes if index.name.endswith("_embedding_hnsw")]

        assert len(hnsw) == 1
        ddl = str(CreateIndex(hnsw[0]).compile(dialect=postgresql.dialect()))
        assert "USING hnsw" in ddl
        assert "vector_cosine_ops" in ddl
