import pytest
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import OperationalError

from medshelf.models.family import Family, FamilyMember, MemberRole
from medshelf.models.user import User
from medshelf.services.exceptions import (
    AlreadyInFamilyError,
    AlreadyMemberError,
    CannotRemoveFounderError,
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
from medshelf.services.family_service import FamilyService, is_admin
from medshelf.utils.security import verify_password


async def create_family(db_session, user, name="Home", password=None):
    family = await FamilyService(db_session).create_family(user, name, password=password)
    await db_session.commit()
    return family


async def join_family(db_session, user, code, password=None):
    family = await FamilyService(db_session).join_family_with_code(user, code, password)
    await db_session.commit()
    return family


class TestCreateFamily:
    """Tests for family creation."""

    @pytest.mark.asyncio
    async def test_founder_is_sole_admin(self, db_session, test_user):
        family = await create_family(db_session, test_user, name="  Home  ")

        assert family.name == "Home"
        assert family.created_by == test_user.id
        assert len(family.members) == 1
        founder = family.members[0]
        assert founder.user_id == test_user.id
        assert founder.role == MemberRole.admin.value
        assert founder.display_name == "Founder"
        assert test_user.family_id == family.id
        assert family.password_hash is None

    @pytest.mark.asyncio
    async def test_password_is_hashed(self, db_session, test_user):
        family = await create_family(db_session, test_user, password="secret1")

        assert family.password_hash is not None
        assert family.password_hash != "secret1"
        assert verify_password("secret1", family.password_hash)
        assert family.is_password_protected

    @pytest.mark.asyncio
    async def test_codes_are_unique(self, db_session, make_user):
        users = [await make_user(f"User {i}") for i in range(5)]
        codes = [(await create_family(db_session, u, name=f"F{i}")).family_code for i, u in enumerate(users)]
        assert len(set(codes)) == len(codes)

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, db_session, test_user):
        with pytest.raises(FamilyValidationError):
            await FamilyService(db_session).create_family(test_user, "   ")

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, db_session, test_user):
        with pytest.raises(PasswordTooShortError) as exc_info:
            await FamilyService(db_session).create_family(test_user, "Home", password="abc")
        assert exc_info.value.min_length == 6
        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_password_limit_counts_bytes(self, db_session, test_user):
        # 40 characters, 80 bytes in UTF-8
        with pytest.raises(PasswordTooLongError) as exc_info:
            await FamilyService(db_session).create_family(test_user, "Home", password="é" * 40)
        assert exc_info.value.code == "password_too_long"
        assert exc_info.value.status_code == 422

        family = await create_family(db_session, test_user, password="a" * 72)
        assert verify_password("a" * 72, family.password_hash)

    @pytest.mark.asyncio
    async def test_requires_user(self, db_session):
        with pytest.raises(NotAuthenticatedError):
            await FamilyService(db_session).create_family(None, "Home")

    @pytest.mark.asyncio
    async def test_already_in_family(self, db_session, test_user):
        await create_family(db_session, test_user)
        with pytest.raises(AlreadyInFamilyError):
            await FamilyService(db_session).create_family(test_user, "Second")

    @pytest.mark.asyncio
    async def test_link_failure_is_partial_create(self, db_session, test_user, monkeypatch):
        async def fail_link(self, user, family_id):
            return False

        monkeypatch.setattr(FamilyService, "_link_user", fail_link)

        with pytest.raises(PartialCreateFailureError) as exc_info:
            await FamilyService(db_session).create_family(test_user, "Home")
        assert exc_info.value.family_id is not None
        assert exc_info.value.status_code == 500

        # The request scope rolls back, leaving no orphan family behind
        await db_session.rollback()
        count = await db_session.scalar(select(func.count()).select_from(Family))
        assert count == 0

    @pytest.mark.asyncio
    async def test_link_database_error_is_partial_create(self, db_session, test_user, monkeypatch):
        async def broken_link(self, user, family_id):
            raise OperationalError("UPDATE users", {}, Exception("connection lost"))

        monkeypatch.setattr(FamilyService, "_link_user", broken_link)

        with pytest.raises(PartialCreateFailureError):
            await FamilyService(db_session).create_family(test_user, "Home")

    @pytest.mark.asyncio
    async def test_missing_user_row_is_partial_create(self, db_session, test_user):
        # Row deleted underneath the loaded User
        await db_session.execute(delete(User.__table__).where(User.__table__.c.id == test_user.id))

        with pytest.raises(PartialCreateFailureError):
            await FamilyService(db_session).create_family(test_user, "Home")

        await db_session.rollback()
        count = await db_session.scalar(select(func.count()).select_from(Family))
        assert count == 0


class TestJoinFamily:
    """Tests for joining by code."""

    @pytest.mark.asyncio
    async def test_join_round_trip(self, db_session, test_user, second_user):
        family = await create_family(db_session, test_user)

        joined = await join_family(db_session, second_user, family.family_code.lower())

        assert joined.id == family.id
        assert second_user.family_id == family.id
        reloaded = await FamilyService(db_session).get_by_id(family.id)
        member = reloaded.get_member(second_user.id)
        assert member is not None
        assert member.role == MemberRole.member.value
        assert member.email == second_user.email
        assert not is_admin(reloaded, second_user.id)
        assert is_admin(reloaded, test_user.id)

    @pytest.mark.asyncio
    async def test_malformed_code(self, db_session, second_user):
        with pytest.raises(FamilyValidationError):
            await FamilyService(db_session).join_family_with_code(second_user, "ABC")

    @pytest.mark.asyncio
    async def test_unknown_code(self, db_session, second_user):
        with pytest.raises(FamilyNotFoundError) as exc_info:
            await FamilyService(db_session).join_family_with_code(second_user, "ZZZZZZ")
        assert exc_info.value.detail == "Invalid family code"

    @pytest.mark.asyncio
    async def test_already_member(self, db_session, test_user):
        family = await create_family(db_session, test_user)
        with pytest.raises(AlreadyMemberError):
            await FamilyService(db_session).join_family_with_code(test_user, family.family_code)

    @pytest.mark.asyncio
    async def test_in_other_family(self, db_session, test_user, second_user):
        family = await create_family(db_session, test_user)
        await create_family(db_session, second_user, name="Other")

        with pytest.raises(AlreadyInFamilyError):
            await FamilyService(db_session).join_family_with_code(second_user, family.family_code)

    @pytest.mark.asyncio
    async def test_password_required(self, db_session, test_user, second_user):
        family = await create_family(db_session, test_user, password="secret1")

        service = FamilyService(db_session)
        with pytest.raises(PasswordRequiredError):
            await service.join_family_with_code(second_user, family.family_code)
        with pytest.raises(InvalidPasswordError):
            await service.join_family_with_code(second_user, family.family_code, "wrong-pass")

        await join_family(db_session, second_user, family.family_code, "secret1")
        assert second_user.family_id == family.id

    @pytest.mark.asyncio
    async def test_link_failure_is_integrity_error(
        self, db_session, test_user, second_user, monkeypatch
    ):
        family = await create_family(db_session, test_user)

        async def fail_link(self, user, family_id):
            return False

        monkeypatch.setattr(FamilyService, "_link_user", fail_link)

        with pytest.raises(FamilyIntegrityError):
            await FamilyService(db_session).join_family_with_code(second_user, family.family_code)

    @pytest.mark.asyncio
    async def test_password_ignored_for_open_family(self, db_session, test_user, second_user):
        family = await create_family(db_session, test_user)
        await join_family(db_session, second_user, family.family_code, "anything")
        assert second_user.family_id == family.id


class TestRemoveMember:
    """Tests for admin removal of members."""

    @pytest.mark.asyncio
    async def test_remove_clears_both_sides(self, db_session, test_user, second_user):
        family = await create_family(db_session, test_user)
        await join_family(db_session, second_user, family.family_code)

        removed = await FamilyService(db_session).remove_member(test_user, second_user.id)
        await db_session.commit()

        assert removed.user_id == second_user.id
        assert second_user.family_id is None
        reloaded = await FamilyService(db_session).get_by_id(family.id)
        assert reloaded.get_member(second_user.id) is None
        assert [m.user_id for m in reloaded.members] == [test_user.id]

    @pytest.mark.asyncio
    async def test_non_admin_forbidden(self, db_session, test_user, second_user, third_user):
        family = await create_family(db_session, test_user)
        await join_family(db_session, second_user, family.family_code)
        await join_family(db_session, third_user, family.family_code)

        with pytest.raises(ForbiddenError):
            await FamilyService(db_session).remove_member(second_user, third_user.id)

    @pytest.mark.asyncio
    async def test_founder_cannot_be_removed(self, db_session, test_user, second_user):
        family = await create_family(db_session, test_user)
        await join_family(db_session, second_user, family.family_code)

        # Even by a promoted admin
        await db_session.execute(
            update(FamilyMember)
            .where(FamilyMember.user_id == second_user.id)
            .values(role=MemberRole.admin.value)
        )
        await db_session.commit()

        with pytest.raises(CannotRemoveFounderError):
            await FamilyService(db_session).remove_member(second_user, test_user.id)
        with pytest.raises(CannotRemoveFounderError):
            await FamilyService(db_session).remove_member(test_user, test_user.id)

    @pytest.mark.asyncio
    async def test_unknown_member(self, db_session, test_user, second_user):
        await create_family(db_session, test_user)
        with pytest.raises(MemberNotFoundError):
            await FamilyService(db_session).remove_member(test_user, second_user.id)

    @pytest.mark.asyncio
    async def test_without_family(self, db_session, test_user, second_user):
        with pytest.raises(FamilyNotFoundError):
            await FamilyService(db_session).remove_member(test_user, second_user.id)

    @pytest.mark.asyncio
    async def test_admin_check_uses_stored_role(self, db_session, test_user, second_user):
        """A role change made elsewhere is seen on the next call."""
        family = await create_family(db_session, test_user)
        await join_family(db_session, second_user, family.family_code)

        service = FamilyService(db_session)
        with pytest.raises(ForbiddenError):
            await service.regenerate_family_code(second_user)

        await db_session.execute(
            update(FamilyMember)
            .where(FamilyMember.user_id == second_user.id)
            .values(role=MemberRole.admin.value)
        )
        await db_session.commit()

        new_code = await service.regenerate_family_code(second_user)
        await db_session.commit()
        assert new_code != family.family_code


class TestLeaveFamily:
    @pytest.mark.asyncio
    async def test_member_leaves(self, db_session, test_user, second_user):
        family = await create_family(db_session, test_user)
        await join_family(db_session, second_user, family.family_code)

        left = await FamilyService(db_session).leave_family(second_user)
        await db_session.commit()

        assert left.id == family.id
        assert second_user.family_id is None
        reloaded = await FamilyService(db_session).get_by_id(family.id)
        assert reloaded.get_member(second_user.id) is None

    @pytest.mark.asyncio
    async def test_founder_cannot_leave(self, db_session, test_user):
        await create_family(db_session, test_user)
        with pytest.raises(FounderCannotLeaveError):
            await FamilyService(db_session).leave_family(test_user)

    @pytest.mark.asyncio
    async def test_not_in_family(self, db_session, second_user):
        with pytest.raises(FamilyNotFoundError):
            await FamilyService(db_session).leave_family(second_user)

    @pytest.mark.asyncio
    async def test_can_join_again_after_leaving(self, db_session, test_user, second_user):
        family = await create_family(db_session, test_user)
        await join_family(db_session, second_user, family.family_code)
        await FamilyService(db_session).leave_family(second_user)
        await db_session.commit()

        await join_family(db_session, second_user, family.family_code)
        reloaded = await FamilyService(db_session).get_by_id(family.id)
        assert reloaded.get_member(second_user.id) is not None


class TestCodeAndPassword:
    @pytest.mark.asyncio
    async def test_old_code_stops_working(self, db_session, test_user, second_user):
        family = await create_family(db_session, test_user)
        old_code = family.family_code

        new_code = await FamilyService(db_session).regenerate_family_code(test_user)
        await db_session.commit()

        assert new_code != old_code
        with pytest.raises(FamilyNotFoundError):
            await FamilyService(db_session).join_family_with_code(second_user, old_code)
        await join_family(db_session, second_user, new_code)
        assert second_user.family_id == family.id

    @pytest.mark.asyncio
    async def test_regenerate_requires_admin(self, db_session, test_user, second_user):
        family = await create_family(db_session, test_user)
        await join_family(db_session, second_user, family.family_code)
        with pytest.raises(ForbiddenError):
            await FamilyService(db_session).regenerate_family_code(second_user)

    @pytest.mark.asyncio
    async def test_set_and_clear_password(self, db_session, test_user):
        await create_family(db_session, test_user)
        service = FamilyService(db_session)

        family = await service.change_family_password(test_user, "newsecret")
        await db_session.commit()
        assert verify_password("newsecret", family.password_hash)

        family = await service.change_family_password(test_user, None)
        await db_session.commit()
        assert family.password_hash is None

        family = await service.change_family_password(test_user, "")
        assert family.password_hash is None

    @pytest.mark.asyncio
    async def test_change_password_too_short(self, db_session, test_user):
        await create_family(db_session, test_user)
        with pytest.raises(PasswordTooShortError):
            await FamilyService(db_session).change_family_password(test_user, "abc")

    @pytest.mark.asyncio
    async def test_change_password_requires_admin(self, db_session, test_user, second_user):
        family = await create_family(db_session, test_user)
        await join_family(db_session, second_user, family.family_code)
        with pytest.raises(ForbiddenError):
            await FamilyService(db_session).change_family_password(second_user, "newsecret")


class TestSessionLifecycle:
    """A whole family lifecycle through one session, without reloading users."""

    @pytest.mark.asyncio
    async def test_admin_operations_after_create(
        self, db_session, test_user, second_user, third_user
    ):
        service = FamilyService(db_session)

        family = await service.create_family(test_user, "Home")
        await db_session.commit()
        assert test_user.family_id == family.id
        with pytest.raises(AlreadyInFamilyError):
            await service.create_family(test_user, "Again")

        new_code = await service.regenerate_family_code(test_user)
        await db_session.commit()

        await service.change_family_password(test_user, "secret1")
        await db_session.commit()

        await service.join_family_with_code(second_user, new_code, "secret1")
        await db_session.commit()
        await service.join_family_with_code(third_user, new_code, "secret1")
        await db_session.commit()
        assert second_user.family_id == family.id
        assert third_user.family_id == family.id

        await service.remove_member(test_user, second_user.id)
        await db_session.commit()
        assert second_user.family_id is None

        await service.leave_family(third_user)
        await db_session.commit()
        assert third_user.family_id is None

        reloaded = await service.get_by_id(family.id)
        assert [m.user_id for m in reloaded.members] == [test_user.id]
        assert reloaded.family_code == new_code
        assert reloaded.is_password_protected
