"""
GET /status — node health and acquisition counters.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.deps import get_node
from app.core.node import NodeContext
from app.events import get_connected_clients_count

router = APIRouter()
logger = logging.getLogger(__name__)


class StatusResponse(BaseModel):
    status: str
    device: dict
    acquisition: dict
    clients: int


@router.get("/status", response_model=StatusResponse)
def get_status(node: NodeContext = Depends(get_node)) -> StatusResponse:
    """
    Returns the overall node status.

    - **status**: ``"ok"`` while the frame poller thread is alive,
      ``"degraded"`` otherwise.
    - **device**: address and control port of the sensor.
    - **acquisition**: frames published, timeouts, errors and the time of the
      last published frame.
    - **clients**: number of connected WebSocket clients.
    """
    poller = node.poller
    stats = poller.stats

    return StatusResponse(
        status="ok" if poller.is_running else "degraded",
        device={
            "ip": node.config.ip,
            "xmlrpc_port": node.config.xmlrpc_port,
            "driver": node.config.driver,
        },
        acquisition={
            "running": poller.is_running,
            "frames": stats.frames,
            "timeouts": stats.timeouts,
            "errors": stats.errors,
            "last_frame_at": (
                stats.last_frame_at.isoformat() if stats.last_frame_at else None
            ),
        },
        clients=get_connected_clients_count(),
    )
