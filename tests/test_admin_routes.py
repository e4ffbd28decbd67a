"""
Tests for GET /api/version, POST /api/dump, POST /api/config, POST /api/rm.
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_node
from app.config import NodeConfig
from app.core.result import DumpReply, StatusReply
from app.main import app

client = TestClient(app)

# ── Fixtures ──────────────────────────────────────────────────────────────────


def _fake_node() -> MagicMock:
    """Node whose admin calls run inline instead of on the worker thread."""
    node = MagicMock()
    node.config = NodeConfig(
        ip="192.168.0.69",
        xmlrpc_port=80,
        password="",
        timeout_millis=500,
        frame_id="o3d3xx_link",
    )

    async def _run_admin(fn, *args):
        return fn(*args)

    node.run_admin = _run_admin
    return node


@pytest.fixture
def node():
    fake = _fake_node()
    app.dependency_overrides[get_node] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_node, None)


# ── Node availability ─────────────────────────────────────────────────────────


def test_dump_without_running_node_returns_503():
    """Without the lifespan-managed node the routes answer 503."""
    response = client.post("/api/dump")
    assert response.status_code == 503
    assert response.json()["detail"]["status"] == "unavailable"


# ── GetVersion ────────────────────────────────────────────────────────────────


def test_get_version(node):
    node.admin.get_version.return_value = "o3d3xx: 0.1.0"

    response = client.get("/api/version")

    assert response.status_code == 200
    assert response.json() == {"version": "o3d3xx: 0.1.0"}


# ── Dump ──────────────────────────────────────────────────────────────────────


def test_dump_success(node):
    node.admin.dump.return_value = DumpReply(0, '{"o3d3xx": {}}')

    response = client.post("/api/dump")

    assert response.status_code == 200
    assert response.json() == {"status": 0, "config": '{"o3d3xx": {}}'}
    node.admin.dump.assert_called_once_with()


def test_dump_device_error_is_still_http_200(node):
    node.admin.dump.return_value = DumpReply(101003, "")

    response = client.post("/api/dump")

    assert response.status_code == 200
    assert response.json() == {"status": 101003, "config": ""}


# ── Config ────────────────────────────────────────────────────────────────────


def test_config_passes_document(node):
    node.admin.configure.return_value = StatusReply(0, "OK")
    doc = '{"o3d3xx": {"Device": {"Name": "cell-3"}}}'

    response = client.post("/api/config", json={"json": doc})

    assert response.status_code == 200
    assert response.json() == {"status": 0, "msg": "OK"}
    node.admin.configure.assert_called_once_with(doc)


def test_config_failure_reported_in_body(node):
    node.admin.configure.return_value = StatusReply(-1, "Expecting value")

    response = client.post("/api/config", json={"json": "not json"})

    assert response.status_code == 200
    assert response.json() == {"status": -1, "msg": "Expecting value"}


def test_config_missing_field_returns_422(node):
    response = client.post("/api/config", json={})
    assert response.status_code == 422
    node.admin.configure.assert_not_called()


# ── Rm ────────────────────────────────────────────────────────────────────────


def test_rm_passes_index(node):
    node.admin.remove_application.return_value = StatusReply(0, "OK")

    response = client.post("/api/rm", json={"index": 3})

    assert response.status_code == 200
    assert response.json() == {"status": 0, "msg": "OK"}
    node.admin.remove_application.assert_called_once_with(3)


def test_rm_active_application(node):
    node.admin.remove_application.return_value = StatusReply(
        -1, "Cannot delete active application!"
    )

    response = client.post("/api/rm", json={"index": 1})

    assert response.json() == {"status": -1, "msg": "Cannot delete active application!"}


def test_rm_non_integer_index_returns_422(node):
    response = client.post("/api/rm", json={"index": "two"})
    assert response.status_code == 422
