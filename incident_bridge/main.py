"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from incident_bridge.api import field_mappings, project_mappings, sync, user_mappings
from incident_bridge.config import settings
from incident_bridge.models.base import init_db
from incident_bridge.scheduler import scheduler
from incident_bridge.security import BasicAuthMiddleware

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting Incident Bridge")
    init_db()
    scheduler.start()
    yield
    logger.info("Stopping Incident Bridge")
    scheduler.stop()


app = FastAPI(
    title="Incident Bridge",
    description="Synchronize Spira incidents with Redmine issues",
    version="1.0.0",
    lifespan=lifespan,
)

if settings.auth_enabled:
    if not settings.auth_username or not settings.auth_password:
        raise RuntimeError("AUTH_ENABLED=true requires AUTH_USERNAME and AUTH_PASSWORD to be set")
    app.add_middleware(
        BasicAuthMiddleware,
        username=settings.auth_username,
        password=settings.auth_password,
        open_paths={"/health"},
    )

app.include_router(project_mappings.router)
app.include_router(user_mappings.router)
app.include_router(field_mappings.router)
app.include_router(sync.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "Incident Bridge"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "incident_bridge.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
