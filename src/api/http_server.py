"""FastAPI HTTP server setup."""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from database import db_manager
from exceptions import TaskNotFound, TaskValidationError
from scheduler import SchedulerManager

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler_manager = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    global scheduler_manager

    # Startup
    logger.info("Starting CronKeeper server...")

    # Initialize database
    db_manager.initialize()

    # Initialize scheduler
    scheduler_manager = SchedulerManager(db_manager)
    scheduler_manager.initialize()

    logger.info("CronKeeper server started successfully")

    yield

    # Shutdown
    logger.info("Shutting down CronKeeper server...")

    if scheduler_manager:
        scheduler_manager.shutdown()
        await scheduler_manager.drain()

    db_manager.close()

    logger.info("CronKeeper server shut down")


# Create FastAPI app
app = FastAPI(
    title="CronKeeper",
    description="Cron-style task scheduling and execution service",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TaskNotFound)
async def task_not_found_handler(request: Request, exc: TaskNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(TaskValidationError)
async def task_validation_handler(request: Request, exc: TaskValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "error": type(exc).__name__}
    )


# Import and include routers
from .endpoints import router

app.include_router(router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "CronKeeper",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    scheduler_status = scheduler_manager.get_scheduler_status() if scheduler_manager else {"running": False}

    return {
        "status": "healthy",
        "scheduler": scheduler_status
    }
