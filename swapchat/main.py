"""
FastAPI application entry point.

WHAT: HTTP front of the chat and negotiation engine
WHY: Expose per-user chat sessions, proposals and live streams
HOW: Create FastAPI app, register middleware, routers, handlers; the
     lifespan owns the data service and every session's background tasks
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .core.config import settings
from .core.chat_session import chat_sessions
from .transport.factory import get_data_service
from .utils.logger import setup_logging, get_logger
from .middleware.error_handler import register_exception_handlers
from .api.v1.router import api_router

setup_logging()
logger = get_logger(__name__)


async def _release_service(service) -> None:
    """Close whatever the data service holds open (HTTP client, DB engine)."""
    close = getattr(service, "aclose", None)
    if close is not None:
        await close()
    engine = getattr(service, "engine", None)
    if engine is not None:
        engine.dispose()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup resolves the configured data service and reports whether it
    answers; an unreachable service is logged, not fatal, since sends and
    polls surface their own errors. Shutdown stops every chat session
    before the transport underneath it goes away.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.DATA_SERVICE_MODE} mode)")
    service = get_data_service()
    status = await service.ping()
    if status.available:
        logger.info(f"Data service reachable ({status.mode})")
    else:
        logger.warning(f"Data service unreachable at startup: {status.error}")

    yield

    logger.info("Shutting down application")
    await chat_sessions.close_all()
    await _release_service(service)
    logger.info("Application shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)
app.include_router(api_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "mode": settings.DATA_SERVICE_MODE,
        "status": "running",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "swapchat.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
