"""FastAPI application entrypoint for the LayersRank engine."""

import logging

from fastapi import FastAPI

from .api.v1.router import api_router
from .core.config import get_settings
from .core.database import Base, engine
from .jobs import register_scheduler
from .services.leaderboard_service import LeaderboardCache

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Instantiate and configure the FastAPI application."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="LayersRank API", version="0.1.0")
    app.state.leaderboard_cache = LeaderboardCache()
    app.include_router(api_router, prefix="/api/v1")
    register_scheduler(app)

    if settings.auto_create_schema:

        @app.on_event("startup")
        def create_schema() -> None:
            Base.metadata.create_all(bind=engine)
            logger.info("database schema ensured")

    return app


app = create_app()
