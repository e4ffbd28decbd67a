"""
GET /api/frames/latest — most recent summary published on each topic.

Topics are ``cloud``, ``depth``, ``amplitude`` and ``confidence``.  A topic is
missing until the first frame has been published.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.deps import get_node
from app.core.node import NodeContext
from app.events import get_latest_frames

logger = logging.getLogger(__name__)

router = APIRouter()


class LatestFramesResponse(BaseModel):
    frame_id: str
    frames: dict[str, dict[str, Any]]


@router.get("/api/frames/latest", response_model=LatestFramesResponse)
def latest_frames(node: NodeContext = Depends(get_node)) -> LatestFramesResponse:
    return LatestFramesResponse(
        frame_id=node.config.frame_id,
        frames=get_latest_frames(),
    )
