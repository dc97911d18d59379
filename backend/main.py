"""FastAPI application entry point and configuration."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from backend.api.session_router import router as session_router
from backend.api.stats_router import router as stats_router
from backend.config import settings
from backend.database import async_session, engine, init_db
from backend.errors import (
    CardNotFound,
    DeckNotFound,
    FlashcardError,
    GoalValueInvalid,
    InvalidQuality,
    InvalidResponseTime,
    InvalidSessionState,
    InvalidTimeRange,
    SessionNotFound,
    StatsCalculationFailed,
)
from backend.srs.session import SessionManager

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[FlashcardError], int] = {
    SessionNotFound: 404,
    DeckNotFound: 404,
    CardNotFound: 404,
    InvalidSessionState: 409,
    InvalidQuality: 422,
    InvalidResponseTime: 422,
    InvalidTimeRange: 422,
    GoalValueInvalid: 422,
    StatsCalculationFailed: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialize database on startup and cleanup on shutdown."""
    await init_db()
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Spaced repetition flashcards with SM-2 scheduling",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.session_manager = SessionManager()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(session_router)
app.include_router(stats_router)


@app.exception_handler(FlashcardError)
async def flashcard_error_handler(request: Request, exc: FlashcardError) -> JSONResponse:
    """Map domain errors to HTTP statuses by their type."""
    status = next((s for cls, s in ERROR_STATUS.items() if isinstance(exc, cls)), 400)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status, content=exc.to_dict())


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Check database connectivity and return status."""
    async with async_session() as session:
        await session.execute(text("SELECT 1"))
    return {"status": "ok"}
