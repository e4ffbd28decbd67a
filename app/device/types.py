"""
Device-facing types shared by the core and the drivers.

``DeviceHandle`` and ``StreamConnection`` are structural protocols: anything
with the right methods can be driven by the node, which keeps the core free of
any particular client library.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

import numpy as np


class OperatingMode(Enum):
    RUN = 0
    EDIT = 1


@dataclass(frozen=True)
class Frame:
    """One acquisition cycle.  Arrays are read-only."""

    sequence: int
    timestamp: datetime
    depth: np.ndarray  # uint16, millimetres
    amplitude: np.ndarray  # uint16
    confidence: np.ndarray  # uint8, bit 0 set means invalid pixel
    cloud: np.ndarray  # float32 (H, W, 3), metres

    def __post_init__(self) -> None:
        for arr in (self.depth, self.amplitude, self.confidence, self.cloud):
            arr.flags.writeable = False

    @property
    def height(self) -> int:
        return int(self.depth.shape[0])

    @property
    def width(self) -> int:
        return int(self.depth.shape[1])


class StreamConnection(Protocol):
    def wait_for_frame(self, timeout_millis: int) -> Frame | None:
        """Block up to ``timeout_millis``; ``None`` means no frame arrived."""
        ...

    def close(self) -> None: ...


class DeviceHandle(Protocol):
    ip: str
    xmlrpc_port: int

    @property
    def operating_mode(self) -> OperatingMode: ...

    @property
    def session_active(self) -> bool: ...

    def request_session(self) -> None: ...

    def cancel_session(self) -> None: ...

    def set_operating_mode(self, mode: OperatingMode) -> None: ...

    def get_device_config(self) -> dict[str, Any]: ...

    def delete_application(self, index: int) -> None: ...

    def to_json(self) -> str: ...

    def from_json(self, config: dict[str, Any]) -> None: ...
