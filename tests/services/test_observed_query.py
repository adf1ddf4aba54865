"""Tests for the observed identity listing."""
from datetime import timedelta

import pytest
from pydantic import ValidationError

from face_access.domain.entities.identity import IdentityStatus
from face_access.domain.value_objects.observed import (
    ObservedFilter,
    ObservedSortField,
    ObservedUserQuery,
    SortDirection,
)
from face_access.infrastructure.database.models import Zone

from helpers import START, make_embedding


@pytest.fixture
async def populated(store, uow_factory):
    """Six observed identities covering every dashboard bucket.

    - fresh: active temporal, seen once
    - busy: active temporal, seen four times after lapsing, three denials in a row
    - review: in review by admin
    - suspect: potential match with a registered user
    - risky: alert triggered, blocked
    - expired: expired
    Plus one registered identity that must never show up.
    """
    async with uow_factory() as uow:
        uow.session.add(Zone(id="zone-lobby", name="Lobby"))

    rows = {}
    for offset, name in enumerate(["fresh", "busy", "review", "suspect", "risky", "expired", "promoted"]):
        rows[name] = await store.create(
            make_embedding(100 + offset),
            seen_at=START + timedelta(hours=offset),
            zone_id="zone-lobby" if name != "fresh" else "zone-dock",
        )

    for _ in range(3):
        await store.touch(rows["busy"].id, seen_at=START + timedelta(days=30))
    await store.set_status(rows["review"].id, IdentityStatus.IN_REVIEW_ADMIN)
    await store.set_status(rows["risky"].id, IdentityStatus.BLOCKED)
    await store.set_status(rows["expired"].id, IdentityStatus.EXPIRED)
    await store.mark_registered(rows["promoted"].id)
    async with uow_factory() as uow:
        await uow.observed_users.update_fields(rows["suspect"].id, potential_match_user_id="user-42")
        await uow.observed_users.update_fields(rows["risky"].id, alert_triggered=True)
    return rows


class TestObservedUserQueryService:
    """Test suite for listing, filtering and aggregates."""

    async def test_aggregates_ignore_filter(self, query_service, populated):
        """Should compute aggregates over the whole unregistered pool for every filter."""
        for filter_type in [None, *ObservedFilter]:
            page = await query_service.list_observed(ObservedUserQuery(filter_type=filter_type))
            aggregates = page.aggregates
            assert aggregates.absolute_total_count == 6
            assert aggregates.pending_review_count == 2
            assert aggregates.high_risk_count == 2
            assert aggregates.active_temporal_count == 3
            assert aggregates.expired_count == 1

    @pytest.mark.parametrize(
        "filter_type,expected",
        [
            (ObservedFilter.PENDING_REVIEW, {"review", "suspect"}),
            (ObservedFilter.HIGH_RISK, {"busy", "risky"}),
            (ObservedFilter.ACTIVE_TEMPORAL, {"fresh", "busy", "suspect"}),
            (ObservedFilter.EXPIRED, {"expired"}),
        ],
    )
    async def test_filters(self, query_service, populated, filter_type, expected):
        """Should return exactly the rows of the requested bucket."""
        page = await query_service.list_observed(ObservedUserQuery(filter_type=filter_type))

        ids = {user.id for user in page.users}
        assert ids == {populated[name].id for name in expected}
        assert page.total_count == len(expected)

    async def test_pagination_uses_filtered_total(self, query_service, populated):
        """Should page through the rows with a stable total."""
        first = await query_service.list_observed(ObservedUserQuery(page=1, page_size=4))
        second = await query_service.list_observed(ObservedUserQuery(page=2, page_size=4))

        assert first.total_count == second.total_count == 6
        assert len(first.users) == 4
        assert len(second.users) == 2
        assert not {user.id for user in first.users} & {user.id for user in second.users}

    async def test_sort_by_temp_accesses(self, query_service, populated):
        page = await query_service.list_observed(ObservedUserQuery(
            sort_field=ObservedSortField.TEMP_ACCESSES,
            sort_direction=SortDirection.DESC,
        ))

        assert page.users[0].id == populated["busy"].id
        assert page.users[0].access_count == 4

    async def test_sort_by_first_seen_ascending(self, query_service, populated):
        page = await query_service.list_observed(ObservedUserQuery(
            sort_field=ObservedSortField.FIRST_SEEN,
            sort_direction=SortDirection.ASC,
        ))

        assert [user.id for user in page.users] == [
            populated[name].id for name in ["fresh", "busy", "review", "suspect", "risky", "expired"]
        ]

    async def test_search_matches_status_and_zone(self, query_service, populated):
        """Should match the search term against status names and zone ids."""
        by_status = await query_service.list_observed(ObservedUserQuery(search_term="BLOCK"))
        by_zone = await query_service.list_observed(ObservedUserQuery(search_term="zone-dock"))
        by_id = await query_service.list_observed(
            ObservedUserQuery(search_term=populated["review"].id[:8])
        )

        assert [user.id for user in by_status.users] == [populated["risky"].id]
        assert [user.id for user in by_zone.users] == [populated["fresh"].id]
        assert populated["review"].id in {user.id for user in by_id.users}

    async def test_projection_resolves_names(self, query_service, populated):
        """Should resolve status and zone names, falling back to the zone id."""
        page = await query_service.list_observed(ObservedUserQuery(filter_type=ObservedFilter.EXPIRED))
        summary = page.users[0]

        assert summary.status.name == "expired"
        assert [(zone.id, zone.name) for zone in summary.accessed_zones] == [("zone-lobby", "Lobby")]

        fresh = await query_service.list_observed(ObservedUserQuery(search_term="zone-dock"))
        assert [(zone.id, zone.name) for zone in fresh.users[0].accessed_zones] == [("zone-dock", "zone-dock")]

    async def test_access_logs_of_observed_identity(self, resolver, query_service):
        """Should list recorded decisions newest first."""
        embedding = make_embedding(200)
        created = await resolver.resolve(embedding, zone_id="zone-lobby")
        await resolver.resolve(embedding, zone_id="zone-lobby")

        entries = await query_service.list_access_logs(created.observed.id)

        assert len(entries) == 2
        assert {entry.match_status for entry in entries} == {
            "new_observed_user_registered",
            "observed_user_updated",
        }

    def test_page_size_is_bounded(self):
        with pytest.raises(ValidationError):
            ObservedUserQuery(page_size=101)
        with pytest.raises(ValidationError):
            ObservedUserQuery(page=0)
