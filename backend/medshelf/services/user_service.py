from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medshelf.models.user import User
from medshelf.schemas.user import UserSyncRequest


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.external_id == external_id))
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def sync_identity(self, sync_data: UserSyncRequest) -> tuple[User, bool]:
        """
        Sync a user from the auth provider.
        Creates user if not exists, updates if exists.
        Returns (user, is_new_user).

        If external_id doesn't match but email does, the external_id is
        updated so users survive a change of auth provider.

        Profile changes are not copied into existing family member entries;
        those keep the values from when the user joined.
        """
        user = await self.get_by_external_id(sync_data.external_id)

        if user is None:
            existing_by_email = await self.get_by_email(sync_data.email)
            if existing_by_email is not None:
                existing_by_email.external_id = sync_data.external_id
                existing_by_email.display_name = sync_data.display_name
                if sync_data.photo_url:
                    existing_by_email.photo_url = sync_data.photo_url
                existing_by_email.last_login_at = datetime.now(timezone.utc)
                await self.db.flush()
                return existing_by_email, False

            user = User(
                external_id=sync_data.external_id,
                email=sync_data.email,
                display_name=sync_data.display_name,
                photo_url=sync_data.photo_url,
                last_login_at=datetime.now(timezone.utc),
            )
            self.db.add(user)
            await self.db.flush()
            return user, True

        if user.email != sync_data.email:
            existing_by_email = await self.get_by_email(sync_data.email)
            if existing_by_email is not None and existing_by_email.id != user.id:
                raise UserEmailConflictError(
                    f"Cannot update email to {sync_data.email}: already in use by another account."
                )

        user.email = sync_data.email
        user.display_name = sync_data.display_name
        if sync_data.photo_url:
            user.photo_url = sync_data.photo_url
        user.last_login_at = datetime.now(timezone.utc)
        await self.db.flush()
        return user, False


class UserEmailConflictError(Exception):
    pass
