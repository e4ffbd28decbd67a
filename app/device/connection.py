"""
Device drivers and the factory that opens them.

A driver knows how to connect to a device and how to bind a fresh frame
stream to it.  The node keeps the stream factory and calls it every time an
administrative operation invalidates the current stream.

Usage
-----
    from app.device.connection import connect_to_device

    device, open_stream = connect_to_device(config)
    stream = open_stream(device)
"""

import logging
from typing import Any, Callable

from app.config import NodeConfig
from app.device.twin import SimulatedCamera, SimulatedFrameGrabber
from app.device.types import DeviceHandle, StreamConnection

logger = logging.getLogger(__name__)

StreamFactory = Callable[[Any], StreamConnection]

DRIVERS: tuple[str, ...] = ("twin",)


def connect_to_device(config: NodeConfig) -> tuple[DeviceHandle, StreamFactory]:
    """Create the device handle for ``config.driver`` and its stream factory."""
    driver = config.driver.lower()

    if driver == "twin":
        logger.info(
            "Using simulated O3D3xx at %s:%d (%.1f fps)",
            config.ip,
            config.xmlrpc_port,
            config.twin_frame_rate,
        )
        camera = SimulatedCamera(
            config.ip,
            config.xmlrpc_port,
            config.password,
            frame_rate=config.twin_frame_rate,
        )
        return camera, SimulatedFrameGrabber

    raise ValueError(
        f"Unknown device driver: {config.driver} (valid: {', '.join(DRIVERS)})"
    )
