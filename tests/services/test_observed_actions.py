"""Tests for operator actions on observed identities."""
from datetime import timedelta

import pytest

from face_access.core.exceptions import InvalidTransitionError, ObservedIdentityNotFoundError
from face_access.domain.entities.identity import IdentityStatus
from face_access.domain.value_objects.observed import ObservedAction, ObservedUserQuery
from face_access.domain.value_objects.resolution import ObservedMatch

from helpers import START, make_embedding


class TestObservedActionHandler:
    """Test suite for block, extend and register."""

    async def test_block_sets_blocked_status(self, store, action_handler):
        """Should block an identity and be idempotent."""
        observed = await store.create(make_embedding(1), seen_at=START)

        first = await action_handler.apply_action(observed.id, ObservedAction.BLOCK)
        second = await action_handler.apply_action(observed.id, "block")

        assert first.status == IdentityStatus.BLOCKED
        assert second.status == IdentityStatus.BLOCKED
        assert "blocked" in first.message

    async def test_block_then_extend_reactivates(self, store, action_handler, clock):
        """Should end active temporal with a new future expiry."""
        observed = await store.create(make_embedding(2), seen_at=START)
        await action_handler.apply_action(observed.id, ObservedAction.BLOCK)
        clock.advance(days=2)

        result = await action_handler.apply_action(observed.id, ObservedAction.EXTEND)

        assert result.status == IdentityStatus.ACTIVE_TEMPORAL
        assert result.expires_at == clock() + timedelta(days=7)
        assert result.expires_at > observed.expires_at
        assert (await store.get(observed.id)).status == IdentityStatus.ACTIVE_TEMPORAL

    async def test_extend_expired_identity(self, store, sweeper, action_handler, clock):
        """Should bring a swept identity back to active temporal."""
        observed = await store.create(make_embedding(3), seen_at=START)
        clock.advance(days=8)
        await sweeper.sweep()

        result = await action_handler.apply_action(observed.id, ObservedAction.EXTEND)

        assert result.status == IdentityStatus.ACTIVE_TEMPORAL
        assert result.expires_at == clock() + timedelta(days=7)

    async def test_extend_from_unsupported_status_is_refused(self, store, action_handler):
        """Should refuse to extend a status outside the extendable set."""
        observed = await store.create(make_embedding(4), seen_at=START)
        await store.set_status(observed.id, IdentityStatus.NEW_OBSERVED)

        with pytest.raises(InvalidTransitionError):
            await action_handler.apply_action(observed.id, ObservedAction.EXTEND)

        unchanged = await store.get(observed.id)
        assert unchanged.status == IdentityStatus.NEW_OBSERVED
        assert unchanged.expires_at == observed.expires_at

    async def test_register_hides_identity_from_matching_and_listing(
        self, store, resolver, action_handler, query_service
    ):
        """Should keep the row but drop it from the observed pool and listings."""
        embedding = make_embedding(5)
        created = await resolver.resolve(embedding)

        result = await action_handler.apply_action(created.observed.id, ObservedAction.REGISTER)
        assert result.is_registered
        assert (await store.get(created.observed.id)).is_registered

        page = await query_service.list_observed(ObservedUserQuery())
        assert page.total_count == 0
        assert page.aggregates.absolute_total_count == 0

        outcome = await resolver.resolve(embedding)
        assert isinstance(outcome, ObservedMatch)
        assert outcome.created
        assert outcome.observed.id != created.observed.id

    async def test_actions_on_registered_identity_are_refused(self, store, action_handler):
        """Should refuse every action once an identity is registered, without mutating it."""
        observed = await store.create(make_embedding(6), seen_at=START)
        await action_handler.apply_action(observed.id, ObservedAction.REGISTER)

        for action in ObservedAction:
            with pytest.raises(InvalidTransitionError):
                await action_handler.apply_action(observed.id, action)

        unchanged = await store.get(observed.id)
        assert unchanged.status == IdentityStatus.ACTIVE_TEMPORAL
        assert unchanged.expires_at == observed.expires_at

    async def test_unknown_identity_is_not_found(self, action_handler):
        """Should raise NotFound for an id that does not exist."""
        for action in ObservedAction:
            with pytest.raises(ObservedIdentityNotFoundError):
                await action_handler.apply_action("5f0c8e9e-0000-4000-8000-000000000000", action)
