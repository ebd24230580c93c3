from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from medshelf.config import get_settings
from medshelf.database import get_db
from medshelf.models.user import User
from medshelf.schemas.auth import TokenPayload
from medshelf.schemas.user import UserSyncRequest
from medshelf.services.user_service import UserService

settings = get_settings()

# HTTP Bearer token scheme
bearer_scheme = HTTPBearer(auto_error=False)

# Forward auth header names (TinyAuth, Authelia, Authentik, etc.)
REMOTE_USER_HEADER = "Remote-User"
REMOTE_EMAIL_HEADER = "Remote-Email"
REMOTE_NAME_HEADER = "Remote-Name"


def decode_token(token: str) -> TokenPayload:
    """Decode and validate a JWT issued by /auth/sync."""
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=["HS256"],
            options={"verify_exp": True},
        )
        return TokenPayload(**payload)
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_user_from_token(token: str, db: AsyncSession) -> Optional[User]:
    """Resolve a bearer token to an active user, or None."""
    try:
        token_data = decode_token(token)
    except HTTPException:
        return None
    user = await UserService(db).get_by_external_id(token_data.sub)
    if user is None or not user.is_active:
        return None
    return user


async def get_current_user(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Get current authenticated user.

    Supports two authentication methods:
    1. Forward auth headers (TinyAuth, Authelia, etc.) - Remote-User header
    2. JWT Bearer token

    Forward auth headers take precedence when AUTH_TRUST_HEADER is enabled.
    """
    user_service = UserService(db)
    user = None

    if settings.auth_trust_header:
        remote_user = request.headers.get(REMOTE_USER_HEADER)
        remote_email = request.headers.get(REMOTE_EMAIL_HEADER)
        remote_name = request.headers.get(REMOTE_NAME_HEADER)

        if remote_user:
            user = await user_service.get_by_external_id(remote_user)

            if not user and remote_email:
                user = await user_service.get_by_email(remote_email)

            # Creates new users and refreshes existing ones from the headers
            sync_data = UserSyncRequest(
                external_id=remote_user,
                email=remote_email or (user.email if user else f"{remote_user}@example.com"),
                display_name=remote_name or (user.display_name if user else remote_user),
            )
            user, _ = await user_service.sync_identity(sync_data)
            await db.commit()

    if not user and credentials:
        token_data = decode_token(credentials.credentials)
        user = await user_service.get_by_external_id(token_data.sub)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    return user


# Type aliases for dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
