"""FastAPI application entry point for the PRISM API."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from prism.app.config import get_settings
from prism.app.routes.ws import WebSocketPublisher, manager
from prism.infra.database import async_session, init_db
from prism.services.notification_dispatcher import (
    NotificationDispatcher,
    get_dispatcher,
    set_dispatcher,
)
from prism.services.response_state_machine import sweep_no_response

logger = logging.getLogger(__name__)


async def no_response_sweep_loop(interval_minutes: int):
    """Close out expired open responses on a fixed interval."""
    while True:
        try:
            async with async_session() as db:
                closed = await sweep_no_response(db, get_dispatcher())
                if closed:
                    logger.info("No-response sweep: closed %d statuses", closed)
        except Exception as e:
            logger.error("No-response sweep error: %s", e)
        await asyncio.sleep(interval_minutes * 60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database and real-time transport."""
    await init_db()
    set_dispatcher(NotificationDispatcher(WebSocketPublisher(manager)))

    settings = get_settings()
    sweep_task = None
    if settings.no_response_sweep_enabled:
        sweep_task = asyncio.create_task(
            no_response_sweep_loop(settings.no_response_sweep_interval_minutes)
        )
    yield
    if sweep_task is not None:
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="PRISM API",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS middleware: allow all origins in debug mode for LAN/IP access
_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from prism.app.routes.auth import router as auth_router
from prism.app.routes.opportunities import router as opportunities_router
from prism.app.routes.statuses import router as statuses_router
from prism.app.routes.restore import router as restore_router
from prism.app.routes.chat import router as chat_router
from prism.app.routes.tasks import router as tasks_router
from prism.app.routes.ws import router as ws_router

app.include_router(auth_router)
app.include_router(opportunities_router)
app.include_router(statuses_router)
app.include_router(restore_router)
app.include_router(chat_router)
app.include_router(tasks_router)
app.include_router(ws_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "prism"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "prism.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
