import logging
import secrets
import string
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from medshelf.config import get_settings
from medshelf.models.family import FAMILY_CODE_LENGTH, Family, FamilyMember, MemberRole
from medshelf.models.user import User
from medshelf.services.exceptions import (
    AlreadyInFamilyError,
    AlreadyMemberError,
    CannotRemoveFounderError,
    CodeSpaceExhaustedError,
    FamilyIntegrityError,
    FamilyNotFoundError,
    FamilyValidationError,
    ForbiddenError,
    FounderCannotLeaveError,
    InvalidPasswordError,
    MemberNotFoundError,
    NotAuthenticatedError,
    PartialCreateFailureError,
    PasswordRequiredError,
    PasswordTooLongError,
    PasswordTooShortError,
)
from medshelf.utils.security import hash_password, verify_password
from medshelf.utils.timezone import utc_now

logger = logging.getLogger(__name__)

FAMILY_CODE_ALPHABET = string.ascii_uppercase + string.digits

# bcrypt ignores everything past this many bytes
PASSWORD_MAX_BYTES = 72


def generate_family_code(length: int = FAMILY_CODE_LENGTH) -> str:
    """Random candidate code. Uniqueness is checked by the caller."""
    return "".join(secrets.choice(FAMILY_CODE_ALPHABET) for _ in range(length))


def normalize_family_code(code: str) -> str:
    return code.strip().upper()


def is_valid_family_code(code: str, length: int = FAMILY_CODE_LENGTH) -> bool:
    return len(code) == length and all(c in FAMILY_CODE_ALPHABET for c in code)


def is_admin(family: Family, user_id: UUID) -> bool:
    member = family.get_member(user_id)
    return member is not None and member.is_admin


class FamilyService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def get_by_id(self, family_id: UUID) -> Optional[Family]:
        # Always reload from the database so permission checks never run
        # against a stale copy held in the session.
        result = await self.db.execute(
            select(Family)
            .where(Family.id == family_id)
            .options(selectinload(Family.members))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_family_code(self, family_code: str) -> Optional[Family]:
        result = await self.db.execute(
            select(Family)
            .where(Family.family_code == normalize_family_code(family_code))
            .options(selectinload(Family.members))
            .execution_options(populate_existing=True)
        )
        families = list(result.scalars().all())
        if len(families) > 1:
            logger.error(f"Family code {family_code!r} is shared by {len(families)} families")
            raise FamilyIntegrityError("Family code matches more than one family.")
        return families[0] if families else None

    async def get_user_family(self, user: User) -> Optional[Family]:
        """Get the family a user belongs to with its members."""
        if user.family_id is None:
            return None
        return await self.get_by_id(user.family_id)

    async def create_family(
        self,
        user: Optional[User],
        name: str,
        description: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Family:
        """Create a new family with the user as founder and sole admin."""
        user = self._require_user(user)

        name = (name or "").strip()
        if not name:
            raise FamilyValidationError("Family name is required.")
        if user.family_id is not None:
            raise AlreadyInFamilyError()

        password_hash = None
        if password:
            self._check_password_length(password)
            password_hash = hash_password(password)

        family_code = await self._generate_unique_code()
        now = utc_now()

        family = Family(
            name=name,
            description=(description or "").strip() or None,
            created_by=user.id,
            family_code=family_code,
            password_hash=password_hash,
            created_at=now,
            updated_at=now,
        )
        family.members.append(
            FamilyMember(
                user_id=user.id,
                email=user.email,
                display_name=user.display_name,
                photo_url=user.photo_url,
                role=MemberRole.admin.value,
                joined_at=now,
            )
        )
        self.db.add(family)
        await self.db.flush()

        try:
            linked = await self._link_user(user, family.id)
        except SQLAlchemyError as e:
            raise PartialCreateFailureError(family.id) from e
        if not linked:
            raise PartialCreateFailureError(family.id)

        logger.info(f"Created family {family.id} ({family.name}) for user {user.id}")
        return family

    async def join_family_with_code(
        self, user: Optional[User], family_code: str, password: Optional[str] = None
    ) -> Family:
        """Join a family by its shareable code, checking the password if one is set."""
        user = self._require_user(user)

        code = normalize_family_code(family_code or "")
        if not is_valid_family_code(code):
            raise FamilyValidationError(
                f"Family code must be {FAMILY_CODE_LENGTH} letters or digits."
            )

        family = await self.get_by_family_code(code)
        if family is None:
            raise FamilyNotFoundError("Invalid family code")

        if family.get_member(user.id) is not None:
            raise AlreadyMemberError()
        if user.family_id is not None:
            raise AlreadyInFamilyError()

        if family.password_hash:
            if not password:
                raise PasswordRequiredError()
            if not verify_password(password, family.password_hash):
                raise InvalidPasswordError()

        now = utc_now()
        family.members.append(
            FamilyMember(
                family_id=family.id,
                user_id=user.id,
                email=user.email,
                display_name=user.display_name,
                photo_url=user.photo_url,
                role=MemberRole.member.value,
                joined_at=now,
            )
        )
        family.updated_at = now
        await self.db.flush()
        if not await self._link_user(user, family.id):
            raise FamilyIntegrityError(
                f"Joined family {family.id} but could not link it to your account."
            )

        logger.info(f"User {user.id} joined family {family.id}")
        return family

    async def remove_member(self, user: Optional[User], target_user_id: UUID) -> FamilyMember:
        """Remove a member from the caller's family. Admin only."""
        family = await self._require_admin_family(user)

        if target_user_id == family.created_by:
            raise CannotRemoveFounderError()

        member = family.get_member(target_user_id)
        if member is None:
            raise MemberNotFoundError()

        family.members.remove(member)
        family.updated_at = utc_now()
        await self.db.flush()
        await self._unlink_user(target_user_id, family.id)

        logger.info(f"User {target_user_id} removed from family {family.id} by {user.id}")
        return member

    async def leave_family(self, user: Optional[User]) -> Family:
        user = self._require_user(user)

        family = await self.get_user_family(user)
        if family is None:
            raise FamilyNotFoundError("You are not in a family")
        if user.id == family.created_by:
            raise FounderCannotLeaveError()

        member = family.get_member(user.id)
        if member is not None:
            family.members.remove(member)
        family.updated_at = utc_now()
        await self.db.flush()
        await self._unlink_user(user.id, family.id)

        logger.info(f"User {user.id} left family {family.id}")
        return family

    async def regenerate_family_code(self, user: Optional[User]) -> str:
        """Replace the family code. The old code stops working immediately."""
        family = await self._require_admin_family(user)

        new_code = await self._generate_unique_code()
        family.family_code = new_code
        family.updated_at = utc_now()
        await self.db.flush()

        logger.info(f"Family code regenerated for family {family.id}")
        return new_code

    async def change_family_password(
        self, user: Optional[User], new_password: Optional[str] = None
    ) -> Family:
        """Set the join password, or clear it when none is given."""
        family = await self._require_admin_family(user)

        if new_password:
            self._check_password_length(new_password)
            family.password_hash = hash_password(new_password)
        else:
            family.password_hash = None
        family.updated_at = utc_now()
        await self.db.flush()

        logger.info(
            f"Family {family.id} password {'set' if family.password_hash else 'cleared'}"
        )
        return family

    def _require_user(self, user: Optional[User]) -> User:
        if user is None:
            raise NotAuthenticatedError()
        return user

    async def _require_admin_family(self, user: Optional[User]) -> Family:
        user = self._require_user(user)
        family = await self.get_user_family(user)
        if family is None:
            raise FamilyNotFoundError("You are not in a family")
        if not is_admin(family, user.id):
            raise ForbiddenError()
        return family

    def _check_password_length(self, password: str) -> None:
        if len(password) < self.settings.family_password_min_length:
            raise PasswordTooShortError(self.settings.family_password_min_length)
        if len(password.encode()) > PASSWORD_MAX_BYTES:
            raise PasswordTooLongError(PASSWORD_MAX_BYTES)

    async def _code_in_use(self, family_code: str) -> bool:
        result = await self.db.execute(
            select(Family.id).where(Family.family_code == family_code).limit(1)
        )
        return result.first() is not None

    async def _generate_unique_code(self) -> str:
        attempts = self.settings.family_code_max_attempts
        for _ in range(attempts):
            code = generate_family_code()
            if not await self._code_in_use(code):
                return code
            logger.info(f"Family code collision on {code}, retrying")
        raise CodeSpaceExhaustedError(attempts)

    async def _link_user(self, user: User, family_id: UUID) -> bool:
        """Point the user at ``family_id``. False if the user row is gone."""
        user.family_id = family_id
        try:
            await self.db.flush()
        except StaleDataError:
            return False
        return True

    async def _unlink_user(self, user_id: UUID, family_id: UUID) -> None:
        user = await self.db.get(User, user_id)
        # Only clear the link if it still points at this family
        if user is not None and user.family_id == family_id:
            user.family_id = None
            await self.db.flush()
