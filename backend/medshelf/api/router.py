from fastapi import APIRouter

from medshelf.api.activity import router as activity_router
from medshelf.api.auth import router as auth_router
from medshelf.api.families import router as families_router
from medshelf.api.health import router as health_router
from medshelf.api.users import router as users_router

api_router = APIRouter()

# Include sub-routers
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router)
api_router.include_router(users_router)
api_router.include_router(families_router)
api_router.include_router(activity_router)
