from pydantic import BaseModel


class TokenPayload(BaseModel):
    sub: str  # Subject (external_id from the auth provider)
    exp: int  # Expiration timestamp
    iat: int | None = None  # Issued at timestamp (optional for forward auth tokens)
