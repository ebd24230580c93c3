from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class FamilyMemberSnapshot(BaseModel):
    user_id: UUID
    email: str
    display_name: str
    photo_url: Optional[str] = None
    role: str
    joined_at: datetime


class FamilySnapshot(BaseModel):
    """Normalized view of a family, as published to live subscribers."""

    id: UUID
    name: str
    description: Optional[str] = None
    created_by: UUID
    family_code: str
    password_protected: bool = False
    members: list[FamilyMemberSnapshot] = []
    created_at: datetime
    updated_at: datetime

    def has_member(self, user_id: UUID) -> bool:
        return any(m.user_id == user_id for m in self.members)


class FamilyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    password: Optional[str] = Field(None, max_length=72)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Family name is required")
        return v


class FamilyCreateResponse(BaseModel):
    id: UUID
    name: str
    family_code: str
    role: str = "admin"


class JoinFamilyRequest(BaseModel):
    family_code: str = Field(..., min_length=1, max_length=20)
    password: Optional[str] = Field(None, max_length=72)


class JoinFamilyResponse(BaseModel):
    family_id: UUID
    family_name: str
    role: str = "member"


class FamilyCodeResponse(BaseModel):
    family_code: str


class ChangePasswordRequest(BaseModel):
    # Omitted or empty clears the password
    new_password: Optional[str] = Field(None, max_length=72)


class MessageResponse(BaseModel):
    message: str
