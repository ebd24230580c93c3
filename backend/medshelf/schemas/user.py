from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    external_id: str
    email: EmailStr
    display_name: str
    photo_url: str | None = None
    family_id: UUID | None = None
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class UserUpdate(BaseModel):
    display_name: str | None = Field(None, min_length=1, max_length=100)
    photo_url: str | None = Field(None, max_length=500)


class UserSyncRequest(BaseModel):
    external_id: str = Field(..., min_length=1, max_length=255, description="Subject ID from the auth provider")
    # Use str instead of EmailStr to allow system-generated emails for forward auth
    # (e.g., "username@example.com" when no real email is provided by the proxy)
    email: str = Field(..., min_length=3, max_length=255)
    display_name: str = Field(..., min_length=1, max_length=100)
    photo_url: str | None = None


class UserSyncResponse(BaseModel):
    id: UUID
    email: str
    display_name: str
    family_id: UUID | None = None
    is_new_user: bool
    access_token: str = Field(..., description="JWT token for API authentication")


class AuthStatusResponse(BaseModel):
    configured: bool
    mode: str
    error: str | None = None
