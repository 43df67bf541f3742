"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bookrank.api.routes import router as ranking_router
from bookrank.api.task_routes import router as task_router
from bookrank.core.config import settings
from bookrank.infrastructure.database.connection import init_db

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting bookrank application")
    await init_db()
    logger.info("Database initialized")
    yield
    logger.info("Shutting down bookrank application")


app = FastAPI(
    title="bookrank",
    description="Popularity ranking, taxonomy recommendations and reader compatibility",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ranking_router)
app.include_router(task_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
