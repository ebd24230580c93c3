import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Index, String, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from medshelf.database import Base
from medshelf.utils.timezone import utc_now


class ActivityType(str, enum.Enum):
    medicine_added = "medicine_added"
    medicine_updated = "medicine_updated"
    medicine_deleted = "medicine_deleted"
    medicine_out_of_stock = "medicine_out_of_stock"
    medicine_back_in_stock = "medicine_back_in_stock"
    user_signin = "user_signin"
    user_signup = "user_signup"
    family_created = "family_created"
    member_added = "member_added"
    member_removed = "member_removed"
    member_left = "member_left"
    family_code_regenerated = "family_code_regenerated"
    settings_updated = "settings_updated"
    password_changed = "password_changed"
    shopping_item_added = "shopping_item_added"
    shopping_item_removed = "shopping_item_removed"


ACTIVITY_CATEGORIES: dict[str, str] = {
    ActivityType.medicine_added.value: "medicine",
    ActivityType.medicine_updated.value: "medicine",
    ActivityType.medicine_deleted.value: "medicine",
    ActivityType.medicine_out_of_stock.value: "medicine",
    ActivityType.medicine_back_in_stock.value: "medicine",
    ActivityType.user_signin.value: "auth",
    ActivityType.user_signup.value: "auth",
    ActivityType.family_created.value: "family",
    ActivityType.member_added.value: "family",
    ActivityType.member_removed.value: "family",
    ActivityType.member_left.value: "family",
    ActivityType.family_code_regenerated.value: "settings",
    ActivityType.settings_updated.value: "settings",
    ActivityType.password_changed.value: "settings",
    ActivityType.shopping_item_added.value: "shopping",
    ActivityType.shopping_item_removed.value: "shopping",
}


class ActivityLog(Base):
    """Append-only audit record. Written best-effort after each mutation."""

    __tablename__ = "activity_logs"
    __table_args__ = (Index("idx_activity_logs_family_created", "family_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    user_name: Mapped[str] = mapped_column(String(100), nullable=False)
    family_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    # "metadata" is reserved on declarative classes
    metadata_: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSON().with_variant(JSONB(), "postgresql")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )

    @property
    def category(self) -> str:
        return ACTIVITY_CATEGORIES.get(self.type, "other")
