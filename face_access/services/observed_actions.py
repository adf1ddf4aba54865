"""Operator actions on observed identities."""
from face_access.core.exceptions import InvalidTransitionError
from face_access.core.logging import get_logger
from face_access.core.utils.time import Clock, utc_now
from face_access.domain.entities.identity import IdentityStatus, ObservedUserRecord
from face_access.domain.value_objects.observed import ActionResult, ObservedAction
from face_access.services.observed_store import ObservedIdentityStore

logger = get_logger(__name__)

# Statuses an identity may be extended from
EXTENDABLE_STATUSES = frozenset({
    IdentityStatus.ACTIVE_TEMPORAL.value,
    IdentityStatus.EXPIRED.value,
    IdentityStatus.BLOCKED.value,
    IdentityStatus.IN_REVIEW_ADMIN.value,
})


class ObservedActionHandler:
    """Applies block, extend and register to an observed identity.

    Every action validates and mutates inside one transaction: an unknown id
    or a refused transition leaves the row untouched.

    Transition rules:
        - block: any unregistered identity; blocking a blocked one is a no-op
        - extend: from active_temporal, expired, blocked or in_review_admin;
          sets a fresh expiry and active_temporal status
        - register: flags the identity as registered; the row is kept
        - nothing is allowed once an identity is registered
    """

    def __init__(
        self,
        store: ObservedIdentityStore,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock

    async def apply_action(self, observed_user_id: str, action: ObservedAction) -> ActionResult:
        """Apply an action to an observed identity.

        Args:
            observed_user_id: Observed user identifier
            action: Action to apply

        Returns:
            ActionResult: Message and resulting state

        Raises:
            ObservedIdentityNotFoundError: If the id does not exist
            InvalidTransitionError: If the action is not allowed for the current state
            DatastoreUnavailableError: If the datastore fails
        """
        action = ObservedAction(action)
        if action == ObservedAction.BLOCK:
            record = await self._store.set_status(
                observed_user_id,
                IdentityStatus.BLOCKED,
                check=self._require_unregistered(action),
            )
            message = f"Observed user {observed_user_id} blocked."
        elif action == ObservedAction.EXTEND:
            expires_at = self._clock() + self._store.ttl
            record = await self._store.extend_expiry(
                observed_user_id,
                expires_at,
                check=self._require_extendable,
            )
            message = f"Access for observed user {observed_user_id} extended until {expires_at.isoformat()}."
        else:
            record = await self._store.mark_registered(
                observed_user_id,
                check=self._require_unregistered(action),
            )
            message = f"Observed user {observed_user_id} marked as registered."

        logger.info(
            "Observed user action applied",
            observed_user_id=observed_user_id,
            action=action.value,
            status=record.status,
            expires_at=record.expires_at.isoformat()
        )
        return ActionResult(
            observed_user_id=record.id,
            action=action,
            message=message,
            status=record.status,
            expires_at=record.expires_at,
            is_registered=record.is_registered,
        )

    @staticmethod
    def _require_unregistered(action: ObservedAction):
        def check(record: ObservedUserRecord) -> None:
            if record.is_registered:
                raise InvalidTransitionError(
                    f"Cannot {action.value} observed user {record.id}: already registered",
                    details={"observed_user_id": record.id, "action": action.value}
                )
        return check

    @classmethod
    def _require_extendable(cls, record: ObservedUserRecord) -> None:
        cls._require_unregistered(ObservedAction.EXTEND)(record)
        if record.status not in EXTENDABLE_STATUSES:
            raise InvalidTransitionError(
                f"Cannot extend observed user {record.id} from status {record.status}",
                details={"observed_user_id": record.id, "status": record.status}
            )
