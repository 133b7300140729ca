"""FastAPI application entry point for the RideMetrics API."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ridemetrics.config import get_settings
from ridemetrics.database import SessionLocal, create_tables
from ridemetrics.log_config import setup_logging
from ridemetrics.routers import activities, athletes, training_load
from ridemetrics.services.training_load_service import TrainingLoadManager

settings = get_settings()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    setup_logging(settings.LOG_FORMAT, settings.LOG_LEVEL)
    # Startup: Create database tables and the training load processors
    create_tables()
    app.state.training_load_manager = TrainingLoadManager(SessionLocal, settings=settings)
    logger.info("RideMetrics API started")
    yield
    # Shutdown: Stop processors, queued but unreleased activities are dropped
    await app.state.training_load_manager.shutdown()


app = FastAPI(
    title="RideMetrics API",
    description="Backend API for activity stream metrics - peak power, NP/xPower, TSS and ATL/CTL training load",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS
cors_origins = [
    settings.FRONTEND_URL,
    "http://localhost:5173",
    "http://localhost:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(athletes.router, prefix="/api/athletes", tags=["Athletes"])
app.include_router(activities.router, prefix="/api/activities", tags=["Activities"])
app.include_router(training_load.router, prefix="/api/athletes", tags=["Training Load"])


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - API information."""
    return {
        "name": "RideMetrics API",
        "version": "1.0.0",
        "status": "running",
    }


@app.get("/health", tags=["Health"])
@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
