"""Tests for the HTTP surface, against a container on a throwaway SQLite database."""
from typing import Optional

import httpx
import numpy as np
import pytest

from face_access.core.container import ServiceContainer
from face_access.core.exceptions import DatastoreUnavailableError
from face_access.domain.interfaces.matching.embedding_index import EmbeddingIndex
from face_access.domain.value_objects.resolution import IdentityPool, MatchCandidate
from face_access.infrastructure.dependencies import get_container
from face_access.main import app
from face_access.services.identity_resolver import IdentityResolver

from helpers import make_embedding

VALIDATE = "/api/v1/access/validate"
QUERY = "/api/v1/observed-users/query"
ACTIONS = "/api/v1/observed-users/actions"
SWEEP = "/api/v1/observed-users/sweep"


class UnreachableIndex(EmbeddingIndex):
    """Embedding index whose backend is down."""

    async def find_closest(
        self,
        pool: IdentityPool,
        embedding: np.ndarray,
        distance_threshold: float,
        max_results: int = 1,
    ) -> Optional[MatchCandidate]:
        raise DatastoreUnavailableError("connection refused")

    async def upsert(self, pool: IdentityPool, identity_id: str, embedding: np.ndarray) -> None:
        raise DatastoreUnavailableError("connection refused")

    async def remove(self, pool: IdentityPool, identity_id: str) -> None:
        raise DatastoreUnavailableError("connection refused")


@pytest.fixture
async def test_container(database_url):
    test_container = ServiceContainer()
    await test_container.initialize(database_url=database_url, create_tables=True)
    yield test_container
    await test_container.cleanup()


@pytest.fixture
async def client(test_container):
    async def override_container() -> ServiceContainer:
        return test_container

    app.dependency_overrides[get_container] = override_container
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def enroll(client: httpx.AsyncClient, seed: int) -> str:
    response = await client.post(VALIDATE, json={
        "faceEmbedding": make_embedding(seed).tolist(),
        "zoneId": "zone-lobby",
        "cameraId": "cam-1",
    })
    assert response.status_code == 200
    return response.json()["observedUser"]["id"]


class TestAccessValidationEndpoint:
    """Test suite for POST /access/validate."""

    async def test_unknown_face_is_enrolled(self, client):
        """Should enroll an unseen face and grant temporary access."""
        response = await client.post(VALIDATE, json={
            "faceEmbedding": make_embedding(1).tolist(),
            "zoneId": "zone-lobby",
            "cameraId": "cam-1",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["type"] == "new_observed_user_registered"
        assert body["hasAccess"] is True
        assert body["similarity"] == 1.0
        assert "matchedUser" not in body
        observed = body["observedUser"]
        assert observed["created"] is True
        assert observed["status_name"] == "active_temporal"
        assert observed["access_count"] == 1

    async def test_second_sighting_updates_same_identity(self, client):
        observed_id = await enroll(client, seed=2)

        response = await client.post(VALIDATE, json={"faceEmbedding": make_embedding(2).tolist()})

        body = response.json()
        assert body["type"] == "observed_user_updated"
        assert body["observedUser"]["id"] == observed_id
        assert body["observedUser"]["access_count"] == 2

    @pytest.mark.parametrize("payload", [
        {"faceEmbedding": [0.1, 0.2, 0.3]},
        {"faceEmbedding": []},
        {"zoneId": "zone-lobby"},
    ])
    async def test_invalid_embedding_is_bad_request(self, client, payload):
        """Should answer 400 with an empty body for a missing or malformed embedding."""
        response = await client.post(VALIDATE, json=payload)

        assert response.status_code == 400
        assert response.json() == {}

    async def test_datastore_outage_is_service_unavailable(self, client, test_container):
        """Should answer 503 and enroll nobody when the index is down."""
        test_container.identity_resolver = IdentityResolver(
            index=UnreachableIndex(),
            uow_factory=test_container.uow_factory,
            store=test_container.observed_store,
            decision_logger=test_container.decision_logger,
        )

        response = await client.post(VALIDATE, json={"faceEmbedding": make_embedding(3).tolist()})

        assert response.status_code == 503
        assert response.json() == {}


class TestObservedUsersEndpoints:
    """Test suite for the observed identity administration endpoints."""

    async def test_query_lists_users_with_aggregates(self, client):
        """Should return the page and every aggregate count under camelCase keys."""
        first = await enroll(client, seed=10)
        second = await enroll(client, seed=11)

        response = await client.post(QUERY, json={"page": 1, "pageSize": 10, "sortField": "tempAccesses"})

        assert response.status_code == 200
        body = response.json()
        assert {user["id"] for user in body["users"]} == {first, second}
        assert body["totalCount"] == 2
        assert body["absoluteTotalCount"] == 2
        assert body["activeTemporalCount"] == 2
        assert body["pendingReviewCount"] == 0
        assert body["highRiskCount"] == 0
        assert body["expiredCount"] == 0
        user = body["users"][0]
        assert user["status"]["name"] == "active_temporal"
        assert user["accessedZones"] == [{"id": "zone-lobby", "name": "zone-lobby"}]

    async def test_query_rejects_oversized_page(self, client):
        response = await client.post(QUERY, json={"pageSize": 1000})

        assert response.status_code == 422

    async def test_block_then_register_then_refuse(self, client):
        """Should block, register, and then refuse further actions with 409."""
        observed_id = await enroll(client, seed=20)

        blocked = await client.post(ACTIONS, json={"observedUserId": observed_id, "actionType": "block"})
        assert blocked.status_code == 200
        assert blocked.json()["status"] == "blocked"
        assert blocked.json()["isRegistered"] is False

        registered = await client.post(ACTIONS, json={"observedUserId": observed_id, "actionType": "register"})
        assert registered.status_code == 200
        assert registered.json()["isRegistered"] is True

        refused = await client.post(ACTIONS, json={"observedUserId": observed_id, "actionType": "extend"})
        assert refused.status_code == 409

    async def test_action_on_unknown_identity_is_not_found(self, client):
        response = await client.post(ACTIONS, json={
            "observedUserId": "5f0c8e9e-0000-4000-8000-000000000000",
            "actionType": "block",
        })

        assert response.status_code == 404

    async def test_unknown_action_type_is_rejected(self, client):
        response = await client.post(ACTIONS, json={"observedUserId": "anything", "actionType": "delete"})

        assert response.status_code == 422

    async def test_manual_sweep_reports_count(self, client):
        await enroll(client, seed=30)

        response = await client.post(SWEEP)

        assert response.status_code == 200
        assert response.json() == {"expiredCount": 0}

    async def test_logs_of_observed_identity(self, client):
        """Should list the decisions recorded for an observed identity."""
        observed_id = await enroll(client, seed=40)

        response = await client.get(f"/api/v1/observed-users/{observed_id}/logs", params={"pageSize": 10})

        assert response.status_code == 200
        entries = response.json()
        assert len(entries) == 1
        assert entries[0]["matchStatus"] == "new_observed_user_registered"
        assert entries[0]["decision"] == "granted"
        assert entries[0]["requestedZoneId"] == "zone-lobby"
        assert entries[0]["cameraId"] == "cam-1"

    async def test_logs_of_unknown_identity_is_not_found(self, client):
        response = await client.get("/api/v1/observed-users/5f0c8e9e-0000-4000-8000-000000000000/logs")

        assert response.status_code == 404


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
