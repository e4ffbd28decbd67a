"""
O3D3xx Node API — FastAPI application entry point.

Run with:
    uvicorn app.main:app --host 0.0.0.0 --port 8000
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import admin as admin_router
from app.api.routes import frames as frames_router
from app.api.routes import status as status_router
from app.api.routes import websocket as websocket_router
from app.config import settings
from app.core.node import NodeContext
from app.events import BroadcastPublisher, broadcast_task, stop_broadcast_task

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build and start the node on startup; stop it on shutdown."""
    publisher = BroadcastPublisher(asyncio.get_running_loop())
    node = NodeContext.create(settings.node_config(), publisher)
    app.state.node = node
    node.start()

    broadcast_task_handle = asyncio.create_task(broadcast_task(), name="broadcast_task")
    logger.info("Background workers started")
    try:
        yield
    finally:
        app.state.node = None
        await asyncio.to_thread(node.shutdown)
        broadcast_task_handle.cancel()
        try:
            await broadcast_task_handle
        except asyncio.CancelledError:
            pass
        await stop_broadcast_task()
        logger.info("Background workers stopped")


app = FastAPI(
    title="O3D3xx Node API",
    description="Frame streaming and configuration service for O3D3xx depth sensors.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(status_router.router, tags=["health"])
app.include_router(admin_router.router, tags=["device"])
app.include_router(frames_router.router, tags=["frames"])
app.include_router(websocket_router.router, tags=["websocket"])
