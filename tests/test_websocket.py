"""
Tests for WebSocket endpoint /ws.
"""

from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from app.main import app


def test_websocket_welcome_and_registration():
    """Connecting registers the client and sends a welcome message."""
    client = TestClient(app)
    record = MagicMock()

    with (
        patch("app.api.routes.websocket.add_client", new_callable=AsyncMock) as mock_add,
        patch("app.api.routes.websocket.remove_client", new_callable=AsyncMock) as mock_remove,
    ):
        mock_add.return_value = record
        with client.websocket_connect("/ws") as websocket:
            response = websocket.receive_json()
            assert response == {"type": "welcome", "frame_id": "o3d3xx_link"}

    mock_add.assert_awaited_once()
    mock_remove.assert_awaited_once_with(record)


def test_websocket_welcome_uses_running_node_frame_id():
    """The welcome message carries the frame id the node publishes under."""
    client = TestClient(app)
    node = MagicMock()
    node.config.frame_id = "cell3_depth"

    with (
        patch.object(app.state, "node", node, create=True),
        patch("app.api.routes.websocket.add_client", new_callable=AsyncMock),
        patch("app.api.routes.websocket.remove_client", new_callable=AsyncMock),
    ):
        with client.websocket_connect("/ws") as websocket:
            response = websocket.receive_json()

    assert response == {"type": "welcome", "frame_id": "cell3_depth"}
