"""
TariffOS — FastAPI application entrypoint.

Start the server:
    uvicorn main:app --reload --port 8000

API Overview:
    POST   /api/jobs                            — Create a classification job
    GET    /api/jobs                            — List jobs
    GET    /api/jobs/{job_id}                   — Get a specific job
    POST   /api/jobs/{job_id}/answers           — Answer a pending question
    POST   /api/jobs/{job_id}/cancel            — Cancel a job
    POST   /api/classifications/run             — Run or resume a job's conversation
    GET    /api/classifications/{job_id}/state  — Full conversation checkpoint
    GET    /api/health                          — Health check
    WS     /ws/jobs/{job_id}                    — Live round events
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.job_routes import job_router
from api.routes import router
from api.websocket import ws_router
from config import config
from database import close_db, init_db

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown logic."""
    logger.info("TariffOS API starting up...")
    config.validate()
    await init_db()
    logger.info("Database initialized.")
    yield
    await close_db()
    logger.info("TariffOS API shutting down...")


app = FastAPI(
    title="TariffOS API",
    description=(
        "Backend for the TariffOS customs classification pipeline. "
        "Runs a confidence-driven multi-agent conversation per job and "
        "streams round events via WebSockets."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow all origins in development; tighten in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount REST routes under /api prefix
app.include_router(router, prefix="/api")
app.include_router(job_router, prefix="/api")

# Mount WebSocket routes (no prefix, path is /ws/jobs/{job_id})
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
