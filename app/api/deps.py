"""
Shared FastAPI dependencies.
"""

import logging

from fastapi import HTTPException, Request

from app.core.node import NodeContext

logger = logging.getLogger(__name__)


def get_node(request: Request) -> NodeContext:
    """
    FastAPI dependency returning the running node context.

    The context is attached to ``app.state`` by the lifespan handler.
    Raises **503** while the node is not running (startup failed or the
    application is shutting down).
    """
    node = getattr(request.app.state, "node", None)
    if node is None:
        logger.warning("Request received while node is not running")
        raise HTTPException(
            status_code=503,
            detail={"status": "unavailable", "message": "Node is not running"},
        )
    return node
