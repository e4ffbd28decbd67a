"""
Node context: everything the running node owns, built once at startup.

Holds the device handle, the connection slot, the frame poller and the
administrative service, plus the single-worker executor that runs
administrative calls one at a time.  Routes reach it through
``app.api.deps.get_node`` instead of module globals.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from app.config import NodeConfig
from app.core.admin import AdminService
from app.core.slot import SharedConnectionSlot
from app.device.connection import connect_to_device
from app.device.types import DeviceHandle
from app.workers.frame_poller import FrameAcquisitionLoop, FramePublisher

logger = logging.getLogger(__name__)

T = TypeVar("T")

# How long shutdown waits for a poller cycle blocked in wait_for_frame
_STOP_GRACE_SECONDS: float = 5.0


@dataclass
class NodeContext:
    config: NodeConfig
    device: DeviceHandle
    slot: SharedConnectionSlot
    admin: AdminService
    poller: FrameAcquisitionLoop
    admin_executor: ThreadPoolExecutor = field(
        default_factory=lambda: ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="admin"
        )
    )

    @classmethod
    def create(cls, config: NodeConfig, publisher: FramePublisher) -> "NodeContext":
        device, open_stream = connect_to_device(config)
        slot = SharedConnectionSlot(open_stream(device))
        return cls(
            config=config,
            device=device,
            slot=slot,
            admin=AdminService(device, slot, open_stream),
            poller=FrameAcquisitionLoop(
                slot, publisher, config.timeout_millis, config.frame_id
            ),
        )

    def start(self) -> None:
        self.poller.start()
        logger.info("Node started for device %s", self.config.ip)

    def shutdown(self) -> None:
        """Stop the poller and wait for in-flight administrative calls."""
        grace = _STOP_GRACE_SECONDS + self.config.timeout_millis / 1000.0
        self.poller.stop(timeout=grace)
        self.admin_executor.shutdown(wait=True)
        with self.slot.exclusive() as access:
            access.connection.close()
        logger.info("Node stopped")

    async def run_admin(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking administrative call on the admin worker."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.admin_executor, fn, *args)
