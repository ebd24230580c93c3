from datetime import datetime
from typing import Annotated, Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from medshelf.config import get_settings
from medshelf.database import get_db
from medshelf.models.user import User
from medshelf.schemas.activity import ActivityLogListResponse, ActivityLogResponse
from medshelf.services.activity_service import ActivityLogger
from medshelf.services.exceptions import FamilyNotFoundError
from medshelf.utils.auth import get_current_user
from medshelf.utils.timezone import as_utc

router = APIRouter(prefix="/activity", tags=["Activity"])
settings = get_settings()

ActivityCategory = Literal["medicine", "auth", "family", "settings", "shopping"]


@router.get("", response_model=ActivityLogListResponse)
async def list_activity(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    category: Optional[ActivityCategory] = None,
    search: Optional[str] = Query(None, max_length=100),
    since: Optional[datetime] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
) -> ActivityLogListResponse:
    if current_user.family_id is None:
        raise FamilyNotFoundError("You are not in a family")

    logs = await ActivityLogger(db).list_for_family(
        current_user.family_id,
        category=category,
        search=search,
        since=as_utc(since) if since is not None else None,
        limit=limit or settings.activity_log_limit,
    )

    return ActivityLogListResponse(
        items=[ActivityLogResponse.from_record(log) for log in logs],
        total=len(logs),
    )
