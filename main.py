"""Main application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from src.api.dependencies import get_price_engine
from src.api.error_handlers import validation_exception_handler
from src.api.routes import router
from src.database.db import init_db
from src.services.scheduler_service import SchedulerService
from src.utils.config import config
from src.utils.logger import StructuredLogger

logger = StructuredLogger("App")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    # Startup
    try:
        config.validate()
    except ValueError as e:
        logger.critical("Configuration error", context={"reason": str(e)})
        raise
    init_db()

    scheduler = None
    if config.scheduler.enabled:
        scheduler = SchedulerService(get_price_engine(), timezone=config.scheduler.timezone)
        scheduler.schedule_aggregation(config.scheduler.aggregation_time)
        scheduler.schedule_live_poll(config.live.poll_interval_seconds)
        scheduler.start()
    yield
    # Shutdown
    if scheduler:
        scheduler.stop()


# Create FastAPI app
app = FastAPI(
    title="Market Price Engine",
    description="Daily price snapshots and live prices for collectible items",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RequestValidationError, validation_exception_handler)

# Include API routes
app.include_router(router, prefix="/api", tags=["prices"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
