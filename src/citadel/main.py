"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from citadel.auth.router import router as auth_router
from citadel.config import get_settings
from citadel.cron.router import router as cron_router
from citadel.database import close_db, init_db
from citadel.discord.router import router as discord_router
from citadel.group_pow.router import router as group_pow_router
from citadel.health.router import router as health_router
from citadel.leaderboard.router import router as leaderboard_router
from citadel.middleware import setup_middleware
from citadel.payments.router import router as payments_router
from citadel.pow.router import router as pow_router
from citadel.push.router import router as push_router
from citadel.redis_client import close_redis, init_redis
from citadel.users.router import router as users_router


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Citadel POW API",
        description="Discord-gated Proof of Work tracking with Lightning donations",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(pow_router)
    app.include_router(group_pow_router)
    app.include_router(payments_router)
    app.include_router(push_router)
    app.include_router(discord_router)
    app.include_router(leaderboard_router)
    app.include_router(cron_router)

    return app


app = create_app()
