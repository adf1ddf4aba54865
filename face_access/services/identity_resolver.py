"""Identity resolution: registered pool, then observed pool, then enrollment."""
import asyncio
from datetime import datetime
from typing import AbstractSet, Awaitable, Optional, TypeVar

import numpy as np

from face_access.core.config import settings
from face_access.core.exceptions import (
    AccessControlError,
    DatastoreUnavailableError,
    ObservedIdentityNotFoundError,
    UnclassifiedError,
    ValidationError,
)
from face_access.core.logging import get_logger
from face_access.core.utils.time import Clock, utc_now
from face_access.domain.entities.embedding import EmbeddingLike, as_embedding, similarity_from_distance
from face_access.domain.entities.identity import (
    CatalogItem,
    IdentityStatus,
    ObservedUserRecord,
    RegisteredProfile,
)
from face_access.domain.interfaces.matching.embedding_index import EmbeddingIndex
from face_access.domain.value_objects.resolution import (
    AccessDecision,
    IdentityPool,
    MatchCandidate,
    MatchStatus,
    NoMatch,
    ObservedMatch,
    RegisteredMatch,
    ResolutionError,
    ResolutionOutcome,
    SubjectType,
)
from face_access.infrastructure.database.models import RegisteredUser
from face_access.infrastructure.database.unit_of_work import UnitOfWorkFactory
from face_access.services.decision_logger import AccessDecisionLogger
from face_access.services.observed_store import ObservedIdentityStore

logger = get_logger(__name__)

T = TypeVar("T")


class IdentityResolver:
    """Decides who a face embedding belongs to and whether they may enter.

    The cascade is strict: the registered pool is searched first, the
    observed pool only on a registered miss, and a new observed identity is
    created only when both miss. Any datastore failure or timeout aborts the
    cascade with an error outcome; it is never treated as a miss, since a
    miss leads to enrollment and therefore to a grant.

    Reads are bounded by `timeout` here. Writes are not cancelled from
    Python; they are bounded by the datastore itself (statement timeout on
    PostgreSQL, per-call timeout on Pinecone), so a write that fails rolls
    back and a write that commits is reported.

    Every outcome, including errors, is handed to the decision logger.

    Example:
        ```python
        resolver = IdentityResolver(index, uow_factory, store, decision_logger)
        outcome = await resolver.resolve(embedding, zone_id="zone-1", camera_id="cam-1")
        if outcome.has_access:
            ...
        ```
    """

    def __init__(
        self,
        index: EmbeddingIndex,
        uow_factory: UnitOfWorkFactory,
        store: ObservedIdentityStore,
        decision_logger: AccessDecisionLogger,
        registered_threshold: Optional[float] = None,
        observed_threshold: Optional[float] = None,
        auto_enroll: Optional[bool] = None,
        timeout: Optional[float] = None,
        dimension: Optional[int] = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the resolver.

        Tunables left as None are read from settings.

        Args:
            index: Embedding index for both pools
            uow_factory: Opens read transactions for registered profiles
            store: Observed identity store
            decision_logger: Audit trail receiving every outcome
            registered_threshold: Max cosine distance for a registered match
            observed_threshold: Max cosine distance for an observed match
            auto_enroll: Create an observed identity when nothing matches
            timeout: Seconds allowed for each index search and profile load
            dimension: Expected embedding length
            clock: Source of the current UTC time
        """
        self._index = index
        self._uow_factory = uow_factory
        self._store = store
        self._decision_logger = decision_logger
        self._registered_threshold = (
            registered_threshold if registered_threshold is not None
            else settings.REGISTERED_MATCH_THRESHOLD
        )
        self._observed_threshold = (
            observed_threshold if observed_threshold is not None
            else settings.OBSERVED_MATCH_THRESHOLD
        )
        self._auto_enroll = auto_enroll if auto_enroll is not None else settings.AUTO_ENROLL_OBSERVED
        self._timeout = timeout if timeout is not None else settings.DATASTORE_TIMEOUT_SECONDS
        self._dimension = dimension or settings.EMBEDDING_DIMENSION
        self._clock = clock

    async def resolve(
        self,
        embedding: EmbeddingLike,
        zone_id: Optional[str] = None,
        camera_id: Optional[str] = None,
    ) -> ResolutionOutcome:
        """Resolve an embedding to an identity and an access decision.

        Args:
            embedding: Face embedding of the subject
            zone_id: Zone the subject asks to enter
            camera_id: Camera that captured the subject

        Returns:
            ResolutionOutcome: RegisteredMatch, ObservedMatch, NoMatch or ResolutionError
        """
        try:
            vector = as_embedding(embedding, self._dimension)
        except ValidationError as e:
            logger.warning("Rejected malformed embedding", error=str(e), **e.details)
            outcome = ResolutionError(
                decision=AccessDecision.ERROR,
                match_status=MatchStatus.INVALID_INPUT,
                reason=str(e),
                subject_type=SubjectType.UNKNOWN,
                requested_zone_id=zone_id,
                camera_id=camera_id,
                error_type=type(e).__name__,
            )
            await self._decision_logger.record(outcome)
            return outcome

        now = self._clock()
        try:
            outcome = await self._cascade(vector, now, zone_id, camera_id)
        except AccessControlError as e:
            outcome = self._error_outcome(e, zone_id, camera_id)
        except Exception as e:
            logger.error("Unexpected error during identity resolution", error=str(e), exc_info=True)
            outcome = self._error_outcome(UnclassifiedError(str(e)), zone_id, camera_id)

        logger.info(
            "Identity resolved",
            kind=outcome.kind,
            match_status=outcome.match_status.value,
            decision=outcome.decision.value,
            zone_id=zone_id,
            camera_id=camera_id
        )
        await self._decision_logger.record(outcome, vector_attempted=vector.tolist())
        return outcome

    async def _cascade(
        self,
        vector: np.ndarray,
        now: datetime,
        zone_id: Optional[str],
        camera_id: Optional[str],
    ) -> ResolutionOutcome:
        registered = await self._bounded(
            self._index.find_closest(IdentityPool.REGISTERED, vector, self._registered_threshold)
        )
        if registered is not None:
            return await self._registered_outcome(registered, zone_id, camera_id)

        stale = set()
        observed = await self._find_observed(vector)
        if observed is not None:
            outcome = await self._observed_outcome(observed, now, zone_id, camera_id)
            if outcome is not None:
                return outcome
            stale.add(observed.identity_id)

        if not self._auto_enroll:
            return NoMatch(
                decision=AccessDecision.DENIED,
                match_status=MatchStatus.NO_MATCH_FOUND,
                reason="No registered or observed identity matched",
                subject_type=SubjectType.UNKNOWN,
                requested_zone_id=zone_id,
                camera_id=camera_id,
            )

        existing, created = await self._store.create_unless_matched(
            vector,
            seen_at=now,
            find_existing=lambda: self._find_observed(vector, skip=stale),
            zone_id=zone_id,
        )
        if existing is not None:
            outcome = await self._observed_outcome(existing, now, zone_id, camera_id)
            if outcome is None:
                raise DatastoreUnavailableError(
                    f"Observed identity {existing.identity_id} vanished while resolving"
                )
            return outcome

        return ObservedMatch(
            decision=AccessDecision.GRANTED,
            match_status=MatchStatus.NEW_OBSERVED_USER_REGISTERED,
            reason=f"New observed user registered for zone: {zone_id or 'unspecified'}",
            subject_type=SubjectType.NEW_OBSERVED,
            confidence_score=1.0,
            requested_zone_id=zone_id,
            camera_id=camera_id,
            observed=created,
            distance=0.0,
            created=True,
        )

    async def _find_observed(
        self,
        vector: np.ndarray,
        skip: AbstractSet[str] = frozenset(),
    ) -> Optional[MatchCandidate]:
        candidate = await self._bounded(
            self._index.find_closest(IdentityPool.OBSERVED, vector, self._observed_threshold)
        )
        if candidate is not None and candidate.identity_id in skip:
            return None
        return candidate

    async def _bounded(self, read: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(read, timeout=self._timeout)
        except asyncio.TimeoutError:
            raise DatastoreUnavailableError(f"Datastore read timed out after {self._timeout}s")

    async def _registered_outcome(
        self,
        candidate: MatchCandidate,
        zone_id: Optional[str],
        camera_id: Optional[str],
    ) -> ResolutionOutcome:
        profile = await self._bounded(self._load_profile(candidate.identity_id))

        if profile is None:
            logger.error(
                "Matched registered user has no profile",
                user_id=candidate.identity_id,
                distance=candidate.distance
            )
            return ResolutionError(
                decision=AccessDecision.ERROR,
                match_status=MatchStatus.REGISTERED_USER_DETAILS_MISSING,
                reason=f"Registered user {candidate.identity_id} matched but profile could not be loaded",
                subject_type=SubjectType.REGISTERED,
                confidence_score=similarity_from_distance(candidate.distance),
                requested_zone_id=zone_id,
                camera_id=camera_id,
                error_type=UnclassifiedError.__name__,
                subject_id=candidate.identity_id,
            )

        granted = profile.may_enter(zone_id)
        if granted:
            match_status = MatchStatus.REGISTERED_USER_MATCHED
            reason = f"Registered user matched, access granted for zone: {zone_id}"
        else:
            match_status = MatchStatus.REGISTERED_USER_ACCESS_DENIED
            zone_authorized = any(zone.id == zone_id for zone in profile.access_zones)
            reason = (
                f"Registered user matched, but access denied for zone: {zone_id or 'unspecified'} "
                f"(Status: {profile.status_name}, Has Zone Access: {zone_authorized})"
            )

        return RegisteredMatch(
            decision=AccessDecision.GRANTED if granted else AccessDecision.DENIED,
            match_status=match_status,
            reason=reason,
            subject_type=SubjectType.REGISTERED,
            confidence_score=similarity_from_distance(candidate.distance),
            requested_zone_id=zone_id,
            camera_id=camera_id,
            profile=profile,
            distance=candidate.distance,
        )

    async def _load_profile(self, user_id: str) -> Optional[RegisteredProfile]:
        async with self._uow_factory() as uow:
            user = await uow.registered_users.get_profile(user_id)
            return self._to_profile(user) if user is not None else None

    async def _observed_outcome(
        self,
        candidate: MatchCandidate,
        now: datetime,
        zone_id: Optional[str],
        camera_id: Optional[str],
    ) -> Optional[ObservedMatch]:
        """Touch the matched identity and decide from the row the touch wrote.

        Returns None when the index pointed at an identity that is registered
        or gone; its vector is dropped so it stops matching.
        """
        try:
            touched = await self._store.touch(candidate.identity_id, seen_at=now, zone_id=zone_id)
        except ObservedIdentityNotFoundError:
            touched = None
        if touched is None:
            logger.warning(
                "Observed match has no unregistered identity",
                observed_user_id=candidate.identity_id,
                distance=candidate.distance
            )
            await self._store.drop_from_index(candidate.identity_id)
            return None

        granted = touched.has_temporary_access(now)
        match_status, reason = self._classify_observed(touched, now, zone_id)
        if not granted:
            reason = f"{reason} Consecutive denied attempts: {touched.consecutive_denied_accesses}."

        return ObservedMatch(
            decision=AccessDecision.GRANTED if granted else AccessDecision.DENIED,
            match_status=match_status,
            reason=reason,
            subject_type=SubjectType.OBSERVED,
            confidence_score=similarity_from_distance(candidate.distance),
            requested_zone_id=zone_id,
            camera_id=camera_id,
            observed=touched,
            distance=candidate.distance,
        )

    @staticmethod
    def _classify_observed(record: ObservedUserRecord, now: datetime, zone_id: Optional[str]):
        # Status is never moved to expired here; only the sweeper does that
        if record.has_temporary_access(now):
            return (
                MatchStatus.OBSERVED_USER_UPDATED,
                f"Observed user updated for zone: {zone_id or 'unspecified'}",
            )
        if record.status == IdentityStatus.BLOCKED:
            return MatchStatus.OBSERVED_USER_ACCESS_DENIED_BLOCKED, "Access denied: user is blocked."
        if record.status == IdentityStatus.EXPIRED or record.expires_at <= now:
            return (
                MatchStatus.OBSERVED_USER_ACCESS_DENIED_EXPIRED,
                "Access denied: access expired or status is expired.",
            )
        if record.status == IdentityStatus.IN_REVIEW_ADMIN:
            return (
                MatchStatus.OBSERVED_USER_ACCESS_DENIED_OTHER_STATUS,
                "Access denied: user is in review by admin.",
            )
        return (
            MatchStatus.OBSERVED_USER_ACCESS_DENIED_OTHER_STATUS,
            f"Access denied: invalid status for access: {record.status}.",
        )

    @staticmethod
    def _error_outcome(
        error: AccessControlError,
        zone_id: Optional[str],
        camera_id: Optional[str],
    ) -> ResolutionError:
        logger.error(
            "Identity resolution aborted",
            error=str(error),
            error_type=type(error).__name__,
            **error.details
        )
        return ResolutionError(
            decision=AccessDecision.ERROR,
            match_status=MatchStatus.UNKNOWN,
            reason=str(error),
            subject_type=SubjectType.UNKNOWN,
            requested_zone_id=zone_id,
            camera_id=camera_id,
            error_type=type(error).__name__,
        )

    @staticmethod
    def _to_profile(user: RegisteredUser) -> RegisteredProfile:
        return RegisteredProfile(
            id=user.id,
            full_name=user.full_name,
            role=CatalogItem(id=user.role.id, name=user.role.name) if user.role else None,
            status=CatalogItem(id=user.status.id, name=user.status.name) if user.status else None,
            access_zones=[CatalogItem(id=zone.id, name=zone.name) for zone in user.zones],
        )
