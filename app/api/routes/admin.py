"""
GET  /api/version — device client library version.
POST /api/dump    — dump the full device configuration as JSON.
POST /api/config  — apply a full or partial JSON configuration.
POST /api/rm      — remove an application from the device.

Responses
---------
The administrative endpoints always answer **200**; the outcome is carried in
the body's ``status`` field:

- ``0``: success
- ``-1``: generic failure (malformed document, active application, …)
- other: error code reported by the device

Concurrency
-----------
Dump, Config and Rm run one at a time on the node's admin worker.  Each holds
the connection slot lock for its whole duration (frame acquisition pauses)
and rebuilds the stream connection before returning, whether it succeeded or
not.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from app.api.deps import get_node
from app.core.node import NodeContext

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Pydantic models ───────────────────────────────────────────────────────────


class VersionResponse(BaseModel):
    version: str


class DumpResponse(BaseModel):
    status: int
    config: str


class ConfigRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document: str = Field(alias="json")


class RmRequest(BaseModel):
    index: int


class StatusMessageResponse(BaseModel):
    status: int
    msg: str


# ── Routes ────────────────────────────────────────────────────────────────────


@router.get("/api/version", response_model=VersionResponse)
def get_version(node: NodeContext = Depends(get_node)) -> VersionResponse:
    """Return the version string of the device client library."""
    return VersionResponse(version=node.admin.get_version())


@router.post("/api/dump", response_model=DumpResponse)
async def dump(node: NodeContext = Depends(get_node)) -> DumpResponse:
    """
    Dump the current device configuration.

    The returned document can be edited and sent back through
    ``POST /api/config``.
    """
    logger.info("POST /api/dump")
    reply = await node.run_admin(node.admin.dump)
    return DumpResponse(status=reply.status, config=reply.config)


@router.post("/api/config", response_model=StatusMessageResponse)
async def configure(
    payload: ConfigRequest,
    node: NodeContext = Depends(get_node),
) -> StatusMessageResponse:
    """
    Reconfigure the device from a JSON document shaped like ``/api/dump``.

    Only the parameters present are changed, each fully qualified from the
    top-level root of the tree.
    """
    logger.info("POST /api/config (%d bytes)", len(payload.document))
    reply = await node.run_admin(node.admin.configure, payload.document)
    return StatusMessageResponse(status=reply.status, msg=reply.msg)


@router.post("/api/rm", response_model=StatusMessageResponse)
async def remove_application(
    payload: RmRequest,
    node: NodeContext = Depends(get_node),
) -> StatusMessageResponse:
    """
    Remove the application at ``index``.  The active application cannot be
    removed; an index of zero or below is accepted and ignored.
    """
    logger.info("POST /api/rm index=%d", payload.index)
    reply = await node.run_admin(node.admin.remove_application, payload.index)
    return StatusMessageResponse(status=reply.status, msg=reply.msg)
