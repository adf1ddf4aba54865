"""Audit trail of access decisions."""
import asyncio
from typing import Any, Dict, List, Optional

from face_access.core.config import settings
from face_access.core.logging import get_logger
from face_access.domain.value_objects.resolution import (
    ObservedMatch,
    RegisteredMatch,
    ResolutionError,
    ResolutionOutcome,
)
from face_access.infrastructure.database.unit_of_work import UnitOfWorkFactory

logger = get_logger(__name__)


class AccessDecisionLogger:
    """Appends one `logs` row per resolution outcome.

    Recording is best effort: a failed insert is logged and counted but never
    raised, so losing an audit row cannot change the decision already made.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory, timeout: Optional[float] = None) -> None:
        """Initialize the logger.

        Args:
            uow_factory: Opens transactional units of work
            timeout: Seconds allowed for one insert (defaults to settings.DATASTORE_TIMEOUT_SECONDS)
        """
        self._uow_factory = uow_factory
        self._timeout = timeout if timeout is not None else settings.DATASTORE_TIMEOUT_SECONDS
        self.failure_count = 0

    async def record(
        self,
        outcome: ResolutionOutcome,
        vector_attempted: Optional[List[float]] = None,
    ) -> bool:
        """Persist an outcome.

        Args:
            outcome: Resolution outcome to record
            vector_attempted: Embedding that was resolved, when it was valid

        Returns:
            bool: True if the row was written
        """
        fields = self._to_fields(outcome, vector_attempted)
        try:
            await asyncio.wait_for(self._insert(fields), timeout=self._timeout)
            return True
        except Exception as e:
            self.failure_count += 1
            logger.error(
                "Failed to record access decision",
                error=str(e),
                match_status=fields["match_status"],
                decision=fields["decision"],
                failure_count=self.failure_count,
                exc_info=True
            )
            return False

    async def _insert(self, fields: Dict[str, Any]) -> None:
        async with self._uow_factory() as uow:
            await uow.access_logs.add(**fields)

    @staticmethod
    def _to_fields(
        outcome: ResolutionOutcome,
        vector_attempted: Optional[List[float]],
    ) -> Dict[str, Any]:
        user_id = None
        observed_user_id = None
        if isinstance(outcome, RegisteredMatch):
            user_id = outcome.profile.id
        elif isinstance(outcome, ObservedMatch):
            observed_user_id = outcome.observed.id
        elif isinstance(outcome, ResolutionError):
            user_id = outcome.subject_id

        return {
            "user_id": user_id,
            "observed_user_id": observed_user_id,
            "camera_id": outcome.camera_id,
            "requested_zone_id": outcome.requested_zone_id,
            "result": outcome.has_access,
            "user_type": outcome.subject_type.value,
            "vector_attempted": vector_attempted,
            "match_status": outcome.match_status.value,
            "decision": outcome.decision.value,
            "reason": outcome.reason[:1024],
            "confidence_score": outcome.confidence_score,
        }
