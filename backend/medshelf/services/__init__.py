"""Service layer for business logic."""

from medshelf.services.activity_service import ActivityEntry, ActivityLogger
from medshelf.services.family_feed import FamilyChangeFeed, FamilyLiveView, get_family_feed
from medshelf.services.family_service import FamilyService
from medshelf.services.user_service import UserService

__all__ = [
    "ActivityEntry",
    "ActivityLogger",
    "FamilyChangeFeed",
    "FamilyLiveView",
    "get_family_feed",
    "FamilyService",
    "UserService",
]
