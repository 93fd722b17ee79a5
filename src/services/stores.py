"""In-memory scheme and profile stores with change notifications.

These are the engine's reference adapters for the scheme store and
profile store contracts.  The scheme store enforces that ``version``
strictly increases on every mutation and publishes a
:class:`~src.models.events.SchemeChangeEvent` for each accepted write.
"""

from __future__ import annotations

from datetime import UTC, datetime

import structlog

from src.models.enums import ChangeType
from src.models.events import ProfileChangeEvent, SchemeChangeEvent
from src.models.scheme import SchemeDocument
from src.models.user_profile import UserProfile
from src.services.matching.interfaces import SchemeFilter
from src.services.notifications import EventFeed, Subscription

logger = structlog.get_logger(__name__)


class StaleVersionError(ValueError):
    """A write did not carry a strictly higher version than the stored one."""


# ---------------------------------------------------------------------------
# Schemes
# ---------------------------------------------------------------------------


class InMemorySchemeStore:
    __slots__ = ("_feed", "_schemes")

    def __init__(self, schemes: list[SchemeDocument] | None = None) -> None:
        self._schemes: dict[str, SchemeDocument] = {}
        self._feed: EventFeed[SchemeChangeEvent] = EventFeed("scheme_changes")
        for scheme in schemes or []:
            self._schemes[scheme.scheme_id] = scheme

    # -- Reads -----------------------------------------------------------------

    async def get_active_schemes(self, filters: SchemeFilter | None = None) -> list[SchemeDocument]:
        schemes = [s for s in self._schemes.values() if s.is_active]
        if filters is not None:
            if filters.category is not None:
                schemes = [s for s in schemes if s.category == filters.category]
            if filters.scheme_ids is not None:
                schemes = [s for s in schemes if s.scheme_id in filters.scheme_ids]
        return sorted(schemes, key=lambda s: s.scheme_id)

    async def get_scheme(self, scheme_id: str) -> SchemeDocument | None:
        return self._schemes.get(scheme_id)

    async def all_schemes(self) -> list[SchemeDocument]:
        return sorted(self._schemes.values(), key=lambda s: s.scheme_id)

    def subscribe(self) -> Subscription[SchemeChangeEvent]:
        return self._feed.subscribe()

    def __len__(self) -> int:
        return len(self._schemes)

    # -- Writes ----------------------------------------------------------------

    async def upsert(self, scheme: SchemeDocument) -> SchemeChangeEvent:
        """Store *scheme* and publish the resulting change event.

        Raises
        ------
        StaleVersionError
            If a stored version exists and *scheme* does not exceed it.
        """
        previous = self._schemes.get(scheme.scheme_id)
        if previous is not None and scheme.version <= previous.version:
            raise StaleVersionError(
                f"scheme {scheme.scheme_id!r} version {scheme.version} "
                f"does not exceed stored version {previous.version}"
            )

        if previous is None:
            change = ChangeType.CREATED
        elif previous.is_active and not scheme.is_active:
            change = ChangeType.DEACTIVATED
        else:
            change = ChangeType.UPDATED

        self._schemes[scheme.scheme_id] = scheme
        event = SchemeChangeEvent(
            change_type=change,
            scheme_id=scheme.scheme_id,
            version=scheme.version,
            previous=previous,
            current=scheme,
        )
        self._feed.publish(event)
        logger.info(
            "scheme_store.changed",
            scheme_id=scheme.scheme_id,
            change=change.value,
            version=scheme.version,
        )
        return event

    async def update(self, scheme_id: str, **changes: object) -> SchemeChangeEvent:
        """Apply *changes* to the stored scheme as a new version."""
        current = self._require(scheme_id)
        return await self.upsert(current.revised(**changes))

    async def deactivate(self, scheme_id: str) -> SchemeChangeEvent:
        current = self._require(scheme_id)
        return await self.upsert(
            current.revised(is_active=False, deactivated_at=datetime.now(UTC))
        )

    async def reactivate(self, scheme_id: str) -> SchemeChangeEvent:
        current = self._require(scheme_id)
        return await self.upsert(current.revised(is_active=True, deactivated_at=None))

    def _require(self, scheme_id: str) -> SchemeDocument:
        scheme = self._schemes.get(scheme_id)
        if scheme is None:
            raise KeyError(scheme_id)
        return scheme

    def close(self) -> None:
        self._feed.close()


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class InMemoryProfileStore:
    __slots__ = ("_feed", "_profiles")

    def __init__(self, profiles: list[UserProfile] | None = None) -> None:
        self._profiles: dict[str, UserProfile] = {p.profile_id: p for p in profiles or []}
        self._feed: EventFeed[ProfileChangeEvent] = EventFeed("profile_changes")

    async def get_profile(self, profile_id: str) -> UserProfile | None:
        return self._profiles.get(profile_id)

    async def profile_ids(self) -> list[str]:
        return sorted(self._profiles)

    def subscribe(self) -> Subscription[ProfileChangeEvent]:
        return self._feed.subscribe()

    def __len__(self) -> int:
        return len(self._profiles)

    async def upsert(self, profile: UserProfile) -> ProfileChangeEvent:
        """Store *profile*, bumping its version past any stored one."""
        previous = self._profiles.get(profile.profile_id)
        if previous is not None:
            profile = profile.model_copy(
                update={
                    "version": max(profile.version, previous.version + 1),
                    "updated_at": datetime.now(UTC),
                }
            )
        self._profiles[profile.profile_id] = profile
        event = ProfileChangeEvent(
            change_type=ChangeType.CREATED if previous is None else ChangeType.UPDATED,
            profile_id=profile.profile_id,
            version=profile.version,
            current=profile,
        )
        self._feed.publish(event)
        return event

    async def delete(self, profile_id: str) -> ProfileChangeEvent | None:
        previous = self._profiles.pop(profile_id, None)
        if previous is None:
            return None
        event = ProfileChangeEvent(
            change_type=ChangeType.DELETED,
            profile_id=profile_id,
            version=previous.version + 1,
        )
        self._feed.publish(event)
        return event

    def close(self) -> None:
        self._feed.close()
