import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from medshelf.models.activity import ACTIVITY_CATEGORIES, ActivityLog, ActivityType
from medshelf.models.family import Family, FamilyMember
from medshelf.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class ActivityEntry:
    """A single audit record waiting to be written."""

    type: ActivityType
    user_id: UUID
    user_name: str
    family_id: UUID
    description: str
    metadata: Optional[dict[str, Any]] = None


class ActivityLogger:
    """Best-effort audit trail.

    Writes happen after the triggering operation has committed, in their own
    commit. A failed write is logged and dropped, so it can never undo or fail
    the operation that produced it. The rollback after a failure expires every
    instance in the session, so callers copy what they still need beforehand.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(self, entry: ActivityEntry) -> Optional[ActivityLog]:
        record = ActivityLog(
            type=entry.type.value,
            user_id=entry.user_id,
            user_name=entry.user_name,
            family_id=entry.family_id,
            description=entry.description,
        )
        # Only store metadata when there is something in it
        if entry.metadata:
            record.metadata_ = entry.metadata

        try:
            self.db.add(record)
            await self.db.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to log activity {entry.type.value} for family {entry.family_id}: {e}")
            await self.db.rollback()
            return None
        return record

    async def log_family_created(self, user: User, family: Family) -> Optional[ActivityLog]:
        return await self.log(
            ActivityEntry(
                type=ActivityType.family_created,
                user_id=user.id,
                user_name=user.display_name,
                family_id=family.id,
                description=f'Created family group "{family.name}"',
                metadata={"familyName": family.name},
            )
        )

    async def log_member_added(self, user: User, family: Family) -> Optional[ActivityLog]:
        return await self.log(
            ActivityEntry(
                type=ActivityType.member_added,
                user_id=user.id,
                user_name=user.display_name,
                family_id=family.id,
                description=f"{user.display_name} joined the family",
                metadata={"newMemberName": user.display_name},
            )
        )

    async def log_member_removed(
        self, user: User, family_id: UUID, removed: FamilyMember
    ) -> Optional[ActivityLog]:
        return await self.log(
            ActivityEntry(
                type=ActivityType.member_removed,
                user_id=user.id,
                user_name=user.display_name,
                family_id=family_id,
                description=f"Removed {removed.display_name} from the family",
                metadata={
                    "removedMemberName": removed.display_name,
                    "removedUserId": str(removed.user_id),
                },
            )
        )

    async def log_member_left(self, user: User, family_id: UUID) -> Optional[ActivityLog]:
        return await self.log(
            ActivityEntry(
                type=ActivityType.member_left,
                user_id=user.id,
                user_name=user.display_name,
                family_id=family_id,
                description=f"{user.display_name} left the family",
            )
        )

    async def log_family_code_regenerated(self, user: User, family_id: UUID) -> Optional[ActivityLog]:
        return await self.log(
            ActivityEntry(
                type=ActivityType.family_code_regenerated,
                user_id=user.id,
                user_name=user.display_name,
                family_id=family_id,
                description="Regenerated the family code",
            )
        )

    async def log_password_changed(
        self, user: User, family_id: UUID, password_protected: bool
    ) -> Optional[ActivityLog]:
        return await self.log(
            ActivityEntry(
                type=ActivityType.password_changed,
                user_id=user.id,
                user_name=user.display_name,
                family_id=family_id,
                description=(
                    "Updated the family password"
                    if password_protected
                    else "Removed the family password"
                ),
                metadata={"passwordProtected": password_protected},
            )
        )

    async def list_for_family(
        self,
        family_id: UUID,
        category: Optional[str] = None,
        search: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[ActivityLog]:
        """Newest-first activity for a family, optionally filtered."""
        query = select(ActivityLog).where(ActivityLog.family_id == family_id)

        if category:
            types = [t for t, c in ACTIVITY_CATEGORIES.items() if c == category]
            query = query.where(ActivityLog.type.in_(types))

        if search:
            term = search.strip().lower()
            query = query.where(
                or_(
                    func.lower(ActivityLog.description).contains(term, autoescape=True),
                    func.lower(ActivityLog.user_name).contains(term, autoescape=True),
                    func.lower(ActivityLog.type).contains(term, autoescape=True),
                )
            )

        if since is not None:
            query = query.where(ActivityLog.created_at >= since)

        query = query.order_by(ActivityLog.created_at.desc(), ActivityLog.id).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())
