from fastapi import APIRouter

from access_core.api.v1.routers import (
    api_tokens,
    auth,
    automation,
    health,
    integrations,
    sessions,
    tfa,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(auth.router)
api_router.include_router(sessions.router)
api_router.include_router(tfa.router)
api_router.include_router(api_tokens.router)
api_router.include_router(integrations.router)
api_router.include_router(automation.router)

__all__ = ["api_router"]
