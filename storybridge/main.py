"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from storybridge.api import hooks, logs, repos, servers, tasks, users
from storybridge.config import settings
from storybridge.models.base import SessionLocal, init_db
from storybridge.scheduler import scheduler
from storybridge.services.relevance import notifier

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting story bridge")
    init_db()
    notifier.attach(SessionLocal)
    scheduler.start()
    yield
    logger.info("Stopping story bridge")
    scheduler.stop()


app = FastAPI(
    title="Story Bridge",
    description="Mirror stories to GitLab issues and import repository activity",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(servers.router)
app.include_router(repos.router)
app.include_router(users.router)
app.include_router(tasks.router)
app.include_router(hooks.router)
app.include_router(logs.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "Story Bridge"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storybridge.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
