from fastapi import APIRouter

from fluxdigest.api.ai import router as ai_router
from fluxdigest.api.auth import router as auth_router
from fluxdigest.api.digest import router as digest_router
from fluxdigest.api.preferences import router as preferences_router

api_router = APIRouter(prefix="/api")

api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_router.include_router(preferences_router, prefix="/preferences", tags=["preferences"])
api_router.include_router(digest_router, prefix="/digest", tags=["digest"])
api_router.include_router(ai_router, prefix="/ai", tags=["ai"])
