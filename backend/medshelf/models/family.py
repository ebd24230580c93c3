import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medshelf.database import Base
from medshelf.utils.timezone import utc_now


FAMILY_CODE_LENGTH = 6


class MemberRole(str, enum.Enum):
    admin = "admin"
    member = "member"


class Family(Base):
    __tablename__ = "families"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    created_by: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", use_alter=True), nullable=False
    )
    family_code: Mapped[str] = mapped_column(
        String(FAMILY_CODE_LENGTH), unique=True, nullable=False
    )
    # NULL means anyone holding the code may join
    password_hash: Mapped[Optional[str]] = mapped_column(String(100))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )

    # Relationships
    members: Mapped[list["FamilyMember"]] = relationship(
        "FamilyMember",
        back_populates="family",
        cascade="all, delete-orphan",
        order_by="FamilyMember.joined_at",
        lazy="selectin",
    )

    def get_member(self, user_id: uuid.UUID) -> Optional["FamilyMember"]:
        for member in self.members:
            if member.user_id == user_id:
                return member
        return None

    @property
    def is_password_protected(self) -> bool:
        return self.password_hash is not None


class FamilyMember(Base):
    """Membership entry. Profile fields are a copy taken at join time."""

    __tablename__ = "family_members"
    __table_args__ = (UniqueConstraint("family_id", "user_id", name="uq_family_members_user"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    family_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    photo_url: Mapped[Optional[str]] = mapped_column(String(500))
    role: Mapped[str] = mapped_column(String(20), default=MemberRole.member.value)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )

    # Relationships
    family: Mapped["Family"] = relationship("Family", back_populates="members")

    @property
    def is_admin(self) -> bool:
        return self.role == MemberRole.admin.value
