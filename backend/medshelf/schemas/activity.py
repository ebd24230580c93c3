from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel

from medshelf.models.activity import ActivityLog
from medshelf.utils.timezone import as_utc


class ActivityLogResponse(BaseModel):
    id: UUID
    type: str
    category: str
    user_id: UUID
    user_name: str
    family_id: UUID
    description: str
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime

    @classmethod
    def from_record(cls, log: ActivityLog) -> "ActivityLogResponse":
        return cls(
            id=log.id,
            type=log.type,
            category=log.category,
            user_id=log.user_id,
            user_name=log.user_name,
            family_id=log.family_id,
            description=log.description,
            metadata=log.metadata_,
            created_at=as_utc(log.created_at),
        )


class ActivityLogListResponse(BaseModel):
    items: list[ActivityLogResponse]
    total: int
