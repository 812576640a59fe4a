"""Primary API router definition."""

from fastapi import APIRouter

from . import badges, events, leaderboards, profiles, scores

api_router = APIRouter()

api_router.include_router(events.router)
api_router.include_router(scores.router)
api_router.include_router(leaderboards.router)
api_router.include_router(badges.router)
api_router.include_router(profiles.router)


@api_router.get("/health", tags=["health"])
async def healthcheck() -> dict[str, str]:
    """Basic liveness check endpoint."""
    return {"status": "ok"}
