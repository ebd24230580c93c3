import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from medshelf.database import get_db
from medshelf.models.user import User
from medshelf.schemas.family import (
    ChangePasswordRequest,
    FamilyCodeResponse,
    FamilyCreate,
    FamilyCreateResponse,
    FamilySnapshot,
    JoinFamilyRequest,
    JoinFamilyResponse,
    MessageResponse,
)
from medshelf.services.activity_service import ActivityLogger
from medshelf.services.exceptions import FamilyNotFoundError
from medshelf.services.family_feed import (
    FamilyChangeFeed,
    build_family_snapshot,
    get_family_feed,
    publish_family,
)
from medshelf.services.family_service import FamilyService
from medshelf.utils.auth import get_current_user

router = APIRouter(prefix="/families", tags=["Families"])
logger = logging.getLogger(__name__)


async def commit_or_conflict(db: AsyncSession) -> None:
    """Commit, turning a lost race on a unique constraint into a 409."""
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning("Family update lost a race with a concurrent request")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="The family was changed by another request. Please try again.",
        ) from None


async def notify_family(db: AsyncSession, feed: FamilyChangeFeed, family_id: UUID) -> None:
    try:
        await publish_family(db, feed, family_id)
    except SQLAlchemyError as e:
        logger.warning(f"Could not publish update for family {family_id}: {e}")


@router.get("/me", response_model=FamilySnapshot)
async def get_my_family(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> FamilySnapshot:
    family = await FamilyService(db).get_user_family(current_user)
    if family is None:
        raise FamilyNotFoundError("You are not in a family")
    return build_family_snapshot(family)


@router.post("", response_model=FamilyCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_family(
    family_data: FamilyCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    feed: Annotated[FamilyChangeFeed, Depends(get_family_feed)],
) -> FamilyCreateResponse:
    family = await FamilyService(db).create_family(
        current_user,
        family_data.name,
        description=family_data.description,
        password=family_data.password,
    )
    await commit_or_conflict(db)
    response = FamilyCreateResponse(
        id=family.id,
        name=family.name,
        family_code=family.family_code,
        role="admin",
    )

    await ActivityLogger(db).log_family_created(current_user, family)
    await notify_family(db, feed, response.id)

    return response


@router.post("/join", response_model=JoinFamilyResponse)
async def join_family(
    request: JoinFamilyRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    feed: Annotated[FamilyChangeFeed, Depends(get_family_feed)],
) -> JoinFamilyResponse:
    family = await FamilyService(db).join_family_with_code(
        current_user, request.family_code, request.password
    )
    await commit_or_conflict(db)
    response = JoinFamilyResponse(
        family_id=family.id,
        family_name=family.name,
        role="member",
    )

    await ActivityLogger(db).log_member_added(current_user, family)
    await notify_family(db, feed, response.family_id)

    return response


@router.post("/me/leave", response_model=MessageResponse)
async def leave_family(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    feed: Annotated[FamilyChangeFeed, Depends(get_family_feed)],
) -> MessageResponse:
    family = await FamilyService(db).leave_family(current_user)
    await commit_or_conflict(db)
    family_id = family.id

    await ActivityLogger(db).log_member_left(current_user, family_id)
    await notify_family(db, feed, family_id)

    return MessageResponse(message="Left family successfully")


@router.delete("/me/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    member_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    feed: Annotated[FamilyChangeFeed, Depends(get_family_feed)],
) -> None:
    family_id = current_user.family_id
    removed = await FamilyService(db).remove_member(current_user, member_id)
    await commit_or_conflict(db)

    await ActivityLogger(db).log_member_removed(current_user, family_id, removed)
    await notify_family(db, feed, family_id)


@router.post("/me/regenerate-code", response_model=FamilyCodeResponse)
async def regenerate_family_code(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    feed: Annotated[FamilyChangeFeed, Depends(get_family_feed)],
) -> FamilyCodeResponse:
    new_code = await FamilyService(db).regenerate_family_code(current_user)
    await commit_or_conflict(db)
    family_id = current_user.family_id

    await ActivityLogger(db).log_family_code_regenerated(current_user, family_id)
    await notify_family(db, feed, family_id)

    return FamilyCodeResponse(family_code=new_code)


@router.put("/me/password", response_model=FamilySnapshot)
async def change_family_password(
    request: ChangePasswordRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    feed: Annotated[FamilyChangeFeed, Depends(get_family_feed)],
) -> FamilySnapshot:
    family = await FamilyService(db).change_family_password(current_user, request.new_password)
    await commit_or_conflict(db)
    snapshot = build_family_snapshot(family)

    await ActivityLogger(db).log_password_changed(
        current_user, snapshot.id, snapshot.password_protected
    )
    await notify_family(db, feed, snapshot.id)

    return snapshot
