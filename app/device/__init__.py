# O3D3xx device client
from app.device.connection import connect_to_device
from app.device.errors import DeviceError
from app.device.twin import SimulatedCamera, SimulatedFrameGrabber
from app.device.types import DeviceHandle, Frame, OperatingMode, StreamConnection

LIBRARY_NAME = "o3d3xx"
VERSION = (0, 1, 0)

__all__ = [
    "LIBRARY_NAME",
    "VERSION",
    "connect_to_device",
    "DeviceError",
    "DeviceHandle",
    "Frame",
    "OperatingMode",
    "SimulatedCamera",
    "SimulatedFrameGrabber",
    "StreamConnection",
]
