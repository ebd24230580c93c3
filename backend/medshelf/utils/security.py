"""Password hashing for family join passwords."""

import bcrypt

from medshelf.config import get_settings


def hash_password(password: str, rounds: int | None = None) -> str:
    if rounds is None:
        rounds = get_settings().family_password_rounds
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # Malformed stored hash
        return False
