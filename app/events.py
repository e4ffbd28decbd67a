"""
Frame event bus for WebSocket broadcasting.

The frame poller runs on its own thread; ``BroadcastPublisher`` hands each
published topic over to the event loop with ``call_soon_threadsafe``.  On the
loop the summary is recorded as the latest for its topic and queued for the
broadcast task, which fans it out to all connected WebSocket clients.

Only compact summaries travel over the bus (shape, encoding, value range,
valid point count).  Pixel and point serialization is left to dedicated
consumers.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import numpy as np

from app.device.types import Frame

logger = logging.getLogger(__name__)

_MAX_QUEUE_SIZE: int = 1000
_MAX_BATCH: int = 100

_frame_queue: asyncio.Queue | None = None
_connected_clients: set["WebSocketConnection"] = set()
_clients_lock: asyncio.Lock | None = None
_latest: dict[str, dict[str, Any]] = {}


@dataclass(frozen=True)
class WebSocketConnection:
    """Represents a connected WebSocket client."""

    websocket: Any
    peer: str
    connected_at: datetime


def get_frame_queue() -> asyncio.Queue:
    """Return the global frame queue, creating it if necessary."""
    global _frame_queue
    if _frame_queue is None:
        _frame_queue = asyncio.Queue(maxsize=_MAX_QUEUE_SIZE)
    return _frame_queue


def get_clients_lock() -> asyncio.Lock:
    """Return the global clients lock, creating it if necessary."""
    global _clients_lock
    if _clients_lock is None:
        _clients_lock = asyncio.Lock()
    return _clients_lock


async def add_client(websocket: Any, peer: str) -> WebSocketConnection:
    """Add a connected client and return its connection record."""
    conn = WebSocketConnection(
        websocket=websocket,
        peer=peer,
        connected_at=datetime.now(),
    )
    async with get_clients_lock():
        _connected_clients.add(conn)
    logger.info("Client connected: %s (total: %d)", peer, len(_connected_clients))
    return conn


async def remove_client(conn: WebSocketConnection) -> None:
    """Remove a disconnected client."""
    async with get_clients_lock():
        if conn in _connected_clients:
            _connected_clients.remove(conn)
            logger.info(
                "Client disconnected: %s (remaining: %d)",
                conn.peer,
                len(_connected_clients),
            )


def get_connected_clients_count() -> int:
    """Return the number of connected clients."""
    return len(_connected_clients)


def get_latest_frames() -> dict[str, dict[str, Any]]:
    """Return the most recent summary published on each topic."""
    return dict(_latest)


# ── Summaries ─────────────────────────────────────────────────────────────────


def image_summary(
    topic: str, image: np.ndarray, encoding: str, frame_id: str, frame: Frame
) -> dict[str, Any]:
    return {
        "topic": topic,
        "frame_id": frame_id,
        "sequence": frame.sequence,
        "stamp": frame.timestamp.isoformat(),
        "encoding": encoding,
        "height": int(image.shape[0]),
        "width": int(image.shape[1]),
        "min": int(image.min()),
        "max": int(image.max()),
    }


def cloud_summary(cloud: np.ndarray, frame_id: str, frame: Frame) -> dict[str, Any]:
    return {
        "topic": "cloud",
        "frame_id": frame_id,
        "sequence": frame.sequence,
        "stamp": frame.timestamp.isoformat(),
        "height": int(cloud.shape[0]),
        "width": int(cloud.shape[1]),
        "valid_points": int(np.count_nonzero(cloud[..., 2] > 0)),
    }


def record_summary(summary: dict[str, Any]) -> bool:
    """
    Store ``summary`` as the latest for its topic and queue it for broadcast.

    Must run on the event loop.  Returns False if the summary was not queued
    (no clients, or the queue is full).
    """
    _latest[summary["topic"]] = summary
    if not _connected_clients:
        return False
    try:
        get_frame_queue().put_nowait(summary)
        return True
    except asyncio.QueueFull:
        logger.warning("Frame queue full, dropping %s summary", summary["topic"])
        return False


class BroadcastPublisher:
    """FramePublisher that feeds the WebSocket bus from the poller thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def _post(self, summary: dict[str, Any]) -> None:
        if self._loop.is_closed():
            logger.warning("Event loop closed, dropping %s summary", summary["topic"])
            return
        self._loop.call_soon_threadsafe(record_summary, summary)

    def publish_cloud(self, cloud: np.ndarray, frame_id: str, frame: Frame) -> None:
        self._post(cloud_summary(cloud, frame_id, frame))

    def publish_depth(self, image: np.ndarray, frame_id: str, frame: Frame) -> None:
        self._post(image_summary("depth", image, "mono16", frame_id, frame))

    def publish_amplitude(self, image: np.ndarray, frame_id: str, frame: Frame) -> None:
        self._post(image_summary("amplitude", image, "mono16", frame_id, frame))

    def publish_confidence(self, image: np.ndarray, frame_id: str, frame: Frame) -> None:
        self._post(image_summary("confidence", image, "mono8", frame_id, frame))


# ── Broadcasting ──────────────────────────────────────────────────────────────


async def broadcast_message(message: dict[str, Any]) -> None:
    """Broadcast a single frame summary to all connected clients."""
    if not _connected_clients:
        return

    payload = {"type": "frame", "data": message}
    disconnected: list[WebSocketConnection] = []

    async with get_clients_lock():
        clients = list(_connected_clients)

    for conn in clients:
        try:
            await conn.websocket.send_json(payload)
        except Exception as exc:
            logger.warning("Failed to send to %s: %s - removing client", conn.peer, exc)
            disconnected.append(conn)

    if disconnected:
        async with get_clients_lock():
            for conn in disconnected:
                _connected_clients.discard(conn)


async def broadcast_task() -> None:
    """
    Long-running task: collect summaries from the queue, then broadcast.
    """
    logger.info("Broadcast task starting")
    queue = get_frame_queue()

    while True:
        try:
            batch: list[dict[str, Any]] = []
            try:
                first = await asyncio.wait_for(queue.get(), timeout=5.0)
                batch.append(first)
            except asyncio.TimeoutError:
                continue

            while len(batch) < _MAX_BATCH and not queue.empty():
                batch.append(queue.get_nowait())

            logger.debug("Broadcasting %d summary(ies)", len(batch))
            for msg in batch:
                await broadcast_message(msg)

        except asyncio.CancelledError:
            logger.info("Broadcast task cancelled")
            break

        except Exception as exc:
            logger.error("Broadcast task error: %s", exc, exc_info=True)


async def stop_broadcast_task() -> None:
    """Cleanup on shutdown."""
    global _frame_queue, _clients_lock
    _connected_clients.clear()
    _latest.clear()
    _frame_queue = None
    _clients_lock = None
