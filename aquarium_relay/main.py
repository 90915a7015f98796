"""
Main FastAPI application entry point
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core import settings
from .api import get_dispatcher, router
from .services import RelayDispatcher, relay_dispatcher

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_session_sweeper(dispatcher: RelayDispatcher, interval: float) -> None:
    """Periodically evict upload sessions whose uploader went quiet"""
    while True:
        await asyncio.sleep(interval)
        evicted = await dispatcher.sweep_sessions()
        if evicted:
            logger.info(f"🧹 Evicted {evicted} idle upload session(s)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown"""
    # Startup
    logger.info("🎃 Haunted Aquarium Relay starting")
    sweeper = asyncio.create_task(run_session_sweeper(relay_dispatcher, settings.SESSION_SWEEP_INTERVAL))

    logger.info(f"📺 Display socket: ws://{settings.SERVER_HOST}:{settings.SERVER_PORT}/ws")
    if settings.SERVER_HOST == "0.0.0.0":
        logger.info("🌐 Network access available - use your IP address to connect from other devices")
    else:
        logger.info("🏠 Local access only - set SERVER_HOST=0.0.0.0 to allow network access")

    yield

    # Shutdown
    logger.info("🛑 Shutting down relay...")
    sweeper.cancel()
    await asyncio.gather(sweeper, return_exceptions=True)


# Create FastAPI app
app = FastAPI(
    title=settings.APP_TITLE,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.APP_TITLE,
        "version": settings.APP_VERSION,
        "status": "running",
        "websocket": "/ws",
        "clients": "/clients",
        "health": "/health"
    }


@app.get("/health")
async def health(dispatcher: Annotated[RelayDispatcher, Depends(get_dispatcher)]):
    """Health check endpoint"""
    counts = dispatcher.registry.counts()
    return {
        "status": "healthy",
        "displays": counts.displays,
        "controllers": counts.controllers
    }


def main():
    import uvicorn
    uvicorn.run(
        app,
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    main()
