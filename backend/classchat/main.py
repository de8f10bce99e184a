"""
ClassChat Live Session Coordinator
FastAPI Application Entry Point

On startup:
1. Seeds the admin user if not exists
2. Starts the sweeper that freezes live quizzes past their maximum duration
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from classchat.config import settings
from classchat.database import engine, AsyncSessionLocal
from classchat.models.user import User, UserRole, AccountStatus
from classchat.realtime import ConnectionRegistry, LiveQuizEngine, RoomBroadcastHub
from classchat.services.auth_service import hash_password
from classchat.api.auth import router as auth_router
from classchat.api.rooms import router as rooms_router
from classchat.api.quizzes import router as quizzes_router
from classchat.api.realtime import router as realtime_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("classchat")


def build_hub() -> RoomBroadcastHub:
    max_duration = None
    if settings.LIVE_QUIZ_MAX_DURATION_SECONDS > 0:
        max_duration = timedelta(seconds=settings.LIVE_QUIZ_MAX_DURATION_SECONDS)
    return RoomBroadcastHub(ConnectionRegistry(), LiveQuizEngine(max_duration=max_duration))


async def seed_database():
    """Create the admin member if it does not exist yet."""
    async with AsyncSessionLocal() as session:
        try:
            result = await session.execute(
                select(User).where(User.username == settings.ADMIN_USERNAME)
            )
            admin = result.scalar_one_or_none()

            if not admin:
                logger.info("Seeding database with admin member...")
                session.add(User(
                    username=settings.ADMIN_USERNAME,
                    email=settings.ADMIN_EMAIL,
                    password_hash=hash_password(settings.ADMIN_PASSWORD),
                    first_name="System",
                    last_name="Administrator",
                    role=UserRole.ADMIN,
                    account_status=AccountStatus.ACTIVE,
                ))
                await session.commit()
                logger.info(f"Admin user created: {settings.ADMIN_USERNAME}")
            else:
                logger.info("Database already seeded (admin user exists)")

        except Exception as e:
            logger.error(f"Database seeding failed: {e}")
            await session.rollback()
            raise


async def sweep_live_quizzes(hub: RoomBroadcastHub, interval: float):
    """Freeze live quizzes that outlived the configured maximum duration."""
    while True:
        await asyncio.sleep(interval)
        try:
            expired = await hub.expire_sessions()
        except Exception:
            logger.exception("Live quiz sweep failed")
            continue
        if expired:
            logger.info(f"Timed out live quizzes in rooms: {', '.join(expired)}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: seed data, run the live quiz sweeper."""
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info("Skipping create_all; ensure Alembic migrations are applied (alembic upgrade head)")

    await seed_database()

    sweeper = None
    if app.state.hub.engine.max_duration is not None:
        sweeper = asyncio.create_task(
            sweep_live_quizzes(app.state.hub, settings.LIVE_QUIZ_SWEEP_INTERVAL_SECONDS)
        )

    logger.info(f"{settings.APP_NAME} is ready!")

    yield

    # Shutdown
    logger.info("Shutting down...")
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
    await engine.dispose()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Live session coordinator: room chat hints, live quiz tallies and attempt grading",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)
app.state.hub = build_hub()

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=jsonable_encoder({"detail": exc.errors()}),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Database error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Register API routes
app.include_router(auth_router)
app.include_router(rooms_router)
app.include_router(quizzes_router)
app.include_router(realtime_router)


@app.get("/", tags=["Health"])
async def root():
    """Health check endpoint."""
    return {
        "status": "online",
        "app": settings.APP_NAME,
        "version": "1.0.0",
    }


@app.get("/api/v1/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "live_rooms": len(app.state.hub.engine.rooms()),
        "connections": len(app.state.hub.registry),
        "app": settings.APP_NAME,
        "version": "1.0.0",
    }
