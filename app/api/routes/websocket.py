"""
WebSocket endpoint for real-time frame summaries.

WebSocket /ws
-------------
On connection the server sends:
    {"type": "welcome", "frame_id": "o3d3xx_link"}

Every published topic is then broadcast as:
    {"type": "frame", "data": {...}}
Where data contains: topic, frame_id, sequence, stamp and either the image
shape / encoding / value range or the number of valid cloud points.

Usage
-----
    import websockets

    async with websockets.connect("ws://localhost:8000/ws") as ws:
        welcome = json.loads(await ws.recv())

        while True:
            message = json.loads(await ws.recv())
            if message["type"] == "frame":
                print(message["data"]["topic"], message["data"]["sequence"])
"""

import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.config import settings
from app.events import add_client, remove_client

logger = logging.getLogger(__name__)
router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    Register the client with the broadcast bus and keep the socket open until
    the client disconnects.  Incoming messages are ignored.
    """
    await websocket.accept()

    conn: Any | None = None
    peer = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"

    try:
        conn = await add_client(websocket, peer)
        node = getattr(websocket.app.state, "node", None)
        frame_id = node.config.frame_id if node is not None else settings.frame_id
        await websocket.send_json({"type": "welcome", "frame_id": frame_id})

        while True:
            await websocket.receive_text()

    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    except Exception as exc:
        logger.error("WebSocket error: %s", exc)
    finally:
        if conn is not None:
            await remove_client(conn)
