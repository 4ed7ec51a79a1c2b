"""Main application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager

# Configure logging FIRST, before any other imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)

# Reduce noise from third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)
logging.getLogger("redis").setLevel(logging.WARNING)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from app.api import router
from app.config import get_settings
from app.engine_config import load_engine_config
from app.services import EngineService
from app.storage import cache, signal_cache

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    logger.info("Starting market signal engine...")

    cache_initialized = False
    engine: EngineService | None = None

    try:
        config = load_engine_config(settings.engine_config_path)

        # Initialize Redis cache with timeout
        if settings.redis_enabled:
            try:
                await asyncio.wait_for(cache.init_cache(settings.redis_url), timeout=10)
                cache_initialized = True
                if cache.is_cache_available():
                    logger.info("Redis cache initialized")
                else:
                    logger.warning("Redis cache unavailable - signals will not be persisted")
            except asyncio.TimeoutError:
                logger.warning("Redis cache initialization timed out - signals will not be persisted")

        engine = EngineService(settings=settings, config=config)
        if cache.is_cache_available():
            engine.dispatcher.on_signal(signal_cache.cache_signal)
        await engine.start()

    except Exception as e:
        logger.error(f"Startup failed: {e}")
        if engine is not None:
            await engine.stop()
        if cache_initialized:
            try:
                await cache.close_cache()
            except Exception as cleanup_err:
                logger.warning(f"Error closing cache: {cleanup_err}")
        raise

    app.state.engine = engine

    yield

    # Shutdown
    logger.info("Shutting down...")
    app.state.engine = None
    await engine.stop()

    if cache_initialized:
        await cache.close_cache()

    logger.info("Shutdown complete")


# Create FastAPI app with orjson for faster JSON serialization
app = FastAPI(
    title="Market Signal Engine",
    description="Tick-driven technical analysis and signal generation",
    version="0.1.0",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include REST routes
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Market Signal Engine",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    engine = getattr(app.state, "engine", None)
    return {
        "status": "healthy" if engine is not None else "starting",
        "cache": cache.is_cache_available(),
    }


def main():
    """Run the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
