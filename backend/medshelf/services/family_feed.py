"""Live family snapshots.

``FamilyChangeFeed`` fans committed family changes out to listeners keyed by
family id. ``FamilyLiveView`` is one consumer's view of its current family: it
turns the feed into a stream of normalized snapshots and publishes ``None``
once the family is gone or the consumer is no longer a member.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from functools import lru_cache
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from medshelf.models.family import Family
from medshelf.schemas.family import FamilyMemberSnapshot, FamilySnapshot
from medshelf.services.family_service import FamilyService
from medshelf.utils.timezone import as_utc, utc_now

logger = logging.getLogger(__name__)

FamilyListener = Callable[[Optional[FamilySnapshot]], None]

_CLOSED = object()


def build_family_snapshot(family: Family) -> FamilySnapshot:
    """Normalize a stored family: aware UTC timestamps, defaults for gaps."""
    now = utc_now()
    return FamilySnapshot(
        id=family.id,
        name=family.name,
        description=family.description,
        created_by=family.created_by,
        family_code=family.family_code,
        password_protected=family.password_hash is not None,
        members=[
            FamilyMemberSnapshot(
                user_id=m.user_id,
                email=m.email,
                display_name=m.display_name,
                photo_url=m.photo_url,
                role=m.role,
                joined_at=as_utc(m.joined_at, now),
            )
            for m in (family.members or [])
        ],
        created_at=as_utc(family.created_at, now),
        updated_at=as_utc(family.updated_at, now),
    )


class FamilySubscription:
    def __init__(self, feed: "FamilyChangeFeed", family_id: UUID, listener: FamilyListener):
        self._feed = feed
        self.family_id = family_id
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._feed._remove(self)
            self.active = False


class FamilyChangeFeed:
    """Registry of listeners per family."""

    def __init__(self):
        self._subscriptions: dict[UUID, list[FamilySubscription]] = {}

    def subscribe(self, family_id: UUID, listener: FamilyListener) -> FamilySubscription:
        subscription = FamilySubscription(self, family_id, listener)
        self._subscriptions.setdefault(family_id, []).append(subscription)
        return subscription

    def publish(self, family_id: UUID, snapshot: Optional[FamilySnapshot]) -> None:
        """Deliver a snapshot (or ``None`` for a deleted family) to every listener."""
        dead = []
        for subscription in list(self._subscriptions.get(family_id, [])):
            try:
                subscription.listener(snapshot)
            except Exception:
                logger.warning(f"Dropping failing listener for family {family_id}", exc_info=True)
                dead.append(subscription)
        for subscription in dead:
            subscription.unsubscribe()

    def subscriber_count(self, family_id: Optional[UUID] = None) -> int:
        if family_id is not None:
            return len(self._subscriptions.get(family_id, []))
        return sum(len(v) for v in self._subscriptions.values())

    def _remove(self, subscription: FamilySubscription) -> None:
        subscriptions = self._subscriptions.get(subscription.family_id, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if not subscriptions:
            self._subscriptions.pop(subscription.family_id, None)


class FamilyLiveView:
    """One consumer's live view of its family."""

    def __init__(self, feed: FamilyChangeFeed, user_id: UUID):
        self.feed = feed
        self.user_id = user_id
        self.current: Optional[FamilySnapshot] = None
        self._subscription: Optional[FamilySubscription] = None
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def attached(self) -> bool:
        return self._subscription is not None

    def attach(self, family_id: Optional[UUID], initial: Optional[FamilySnapshot] = None) -> None:
        """Follow ``family_id``, replacing any earlier subscription.

        ``initial``, when known, is emitted right away. Without a family the view
        emits ``None``.
        """
        self.detach()
        if family_id is None:
            self._emit(None)
            return
        self._subscription = self.feed.subscribe(family_id, self._on_change)
        if initial is not None:
            self._on_change(initial)

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def close(self) -> None:
        self.detach()
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def next(self) -> Optional[FamilySnapshot]:
        """Wait for the next snapshot. Raises StopAsyncIteration once closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item

    async def __aiter__(self) -> AsyncIterator[Optional[FamilySnapshot]]:
        while True:
            try:
                yield await self.next()
            except StopAsyncIteration:
                return

    def _on_change(self, snapshot: Optional[FamilySnapshot]) -> None:
        if snapshot is None or not snapshot.has_member(self.user_id):
            # Family deleted, or we were removed / left
            self.detach()
            self._emit(None)
            return
        self._emit(snapshot)

    def _emit(self, snapshot: Optional[FamilySnapshot]) -> None:
        if self._closed:
            return
        self.current = snapshot
        self._queue.put_nowait(snapshot)


@lru_cache
def get_family_feed() -> FamilyChangeFeed:
    return FamilyChangeFeed()


async def publish_family(db: AsyncSession, feed: FamilyChangeFeed, family_id: UUID) -> None:
    """Reload a family after commit and push the fresh snapshot to its listeners."""
    family = await FamilyService(db).get_by_id(family_id)
    feed.publish(family_id, build_family_snapshot(family) if family is not None else None)
