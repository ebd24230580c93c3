from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from medshelf.database import get_db
from medshelf.models.user import User
from medshelf.schemas.user import UserResponse, UserUpdate
from medshelf.utils.auth import get_current_user

router = APIRouter(prefix="/users/me", tags=["Users"])


@router.get("", response_model=UserResponse)
async def get_profile(
    current_user: Annotated[User, Depends(get_current_user)],
) -> UserResponse:
    return UserResponse.model_validate(current_user)


@router.patch("", response_model=UserResponse)
async def update_profile(
    data: UserUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> UserResponse:
    # Family member entries keep the name/photo from when the user joined
    update_data = data.model_dump(exclude_unset=True)

    for field, value in update_data.items():
        setattr(current_user, field, value)

    await db.flush()
    await db.commit()

    return UserResponse.model_validate(current_user)
