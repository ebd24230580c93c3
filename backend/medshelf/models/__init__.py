"""Database models."""

from medshelf.models.activity import ActivityLog, ActivityType
from medshelf.models.family import Family, FamilyMember, MemberRole
from medshelf.models.user import User

__all__ = [
    "ActivityLog",
    "ActivityType",
    "Family",
    "FamilyMember",
    "MemberRole",
    "User",
]
