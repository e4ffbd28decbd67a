"""
Simulated O3D3xx camera, an in-memory stand-in for the real sensor.

``SimulatedCamera`` keeps a configuration tree shaped like the JSON the real
client library produces::

    {"o3d3xx": {"Device": {...}, "Net": {...}, "Apps": [{...}, ...]}}

All parameter values are strings, as on the device.  Partial updates passed to
``from_json()`` are merged key by key; applications are matched by ``Index``
and an entry without ``Index`` creates a new application.  Updates are
validated on a copy and applied in one step, so a rejected document leaves
the configuration untouched.

``SimulatedFrameGrabber`` produces synthetic depth / amplitude / confidence
images and a point cloud at the camera's frame rate.  A grabber whose camera
configuration has changed since it was created is stale and never yields
another frame; neither does one attached to a camera in EDIT mode.

Neither class is thread-safe on its own: the node only touches them while
holding the connection slot lock.
"""

import copy
import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any

import numpy as np

from app.device.errors import (
    INVALID_APPLICATION,
    NO_ACTIVE_SESSION,
    NOT_IN_EDIT_MODE,
    SESSION_ALREADY_ACTIVE,
    XMLRPC_FAILURE,
    XMLRPC_INVALID_PARAM,
    XMLRPC_OBJ_NOT_FOUND,
    DeviceError,
)
from app.device.types import Frame, OperatingMode

logger = logging.getLogger(__name__)

DEFAULT_WIDTH: int = 176
DEFAULT_HEIGHT: int = 132
MAX_APPLICATIONS: int = 32

# Focal length (pixels) used to back-project the synthetic depth image.
_FOCAL_PX: float = 140.0

_DEVICE_KEYS = frozenset(
    [
        "ActiveApplication",
        "Name",
        "Description",
        "ArticleNumber",
        "IPAddressConfig",
        "PasswordActivated",
        "SessionTimeout",
    ]
)
_NET_KEYS = frozenset(
    [
        "UseDHCP",
        "StaticIPv4Address",
        "StaticIPv4Gateway",
        "StaticIPv4SubNetMask",
        "NetworkSpeed",
    ]
)
_APP_KEYS = frozenset(["Index", "Name", "Description", "TriggerMode", "Imager"])
_IMAGER_KEYS = frozenset(
    [
        "Type",
        "ExposureTime",
        "ExposureTimeRatio",
        "FrameRate",
        "MinimumAmplitude",
        "SpatialFilterType",
        "TemporalFilterType",
        "Channel",
    ]
)


# ── Configuration tree helpers ────────────────────────────────────────────────


def _default_app(index: int) -> dict[str, Any]:
    return {
        "Index": str(index),
        "Name": "",
        "Description": "",
        "TriggerMode": "1",
        "Imager": {
            "Type": "under5m_moderate",
            "ExposureTime": "1000",
            "ExposureTimeRatio": "40",
            "FrameRate": "5",
            "MinimumAmplitude": "42",
            "SpatialFilterType": "0",
            "TemporalFilterType": "0",
            "Channel": "0",
        },
    }


def _default_config(ip: str) -> dict[str, Any]:
    return {
        "o3d3xx": {
            "Device": {
                "ActiveApplication": "1",
                "Name": "New sensor",
                "Description": "",
                "ArticleNumber": "O3D303",
                "IPAddressConfig": "0",
                "PasswordActivated": "false",
                "SessionTimeout": "30",
            },
            "Net": {
                "UseDHCP": "false",
                "StaticIPv4Address": ip,
                "StaticIPv4Gateway": "192.168.0.201",
                "StaticIPv4SubNetMask": "255.255.255.0",
                "NetworkSpeed": "0",
            },
            "Apps": [_default_app(1)],
        }
    }


def _scalar(value: Any, path: str) -> str:
    """Coerce a JSON scalar to the device's string representation."""
    if isinstance(value, (dict, list)) or value is None:
        raise DeviceError(XMLRPC_INVALID_PARAM, f"Invalid value for {path}")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_index(value: Any, path: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise DeviceError(
            XMLRPC_INVALID_PARAM, f"{path} must be an integer, got {value!r}"
        ) from exc


def _find_app(apps: list[dict[str, Any]], index: int) -> dict[str, Any] | None:
    for app in apps:
        if int(app["Index"]) == index:
            return app
    return None


def _merge_section(
    target: dict[str, Any], updates: Any, allowed: frozenset[str], path: str
) -> None:
    if not isinstance(updates, dict):
        raise DeviceError(XMLRPC_INVALID_PARAM, f"{path} must be an object")
    for key, value in updates.items():
        if key not in allowed:
            raise DeviceError(XMLRPC_OBJ_NOT_FOUND, f"Unknown parameter: {path}.{key}")
        target[key] = _scalar(value, f"{path}.{key}")


def _merge_apps(apps: list[dict[str, Any]], updates: Any) -> None:
    if not isinstance(updates, list):
        raise DeviceError(XMLRPC_INVALID_PARAM, "Apps must be an array")

    for entry in updates:
        if not isinstance(entry, dict):
            raise DeviceError(XMLRPC_INVALID_PARAM, "Apps entries must be objects")

        if "Index" in entry:
            index = _parse_index(entry["Index"], "Apps[].Index")
            app = _find_app(apps, index)
            if app is None:
                raise DeviceError(
                    INVALID_APPLICATION, f"No application at index {index}"
                )
        else:
            if len(apps) >= MAX_APPLICATIONS:
                raise DeviceError(
                    XMLRPC_FAILURE,
                    f"Maximum number of applications ({MAX_APPLICATIONS}) reached",
                )
            index = max((int(a["Index"]) for a in apps), default=0) + 1
            app = _default_app(index)
            apps.append(app)

        path = f"Apps[{index}]"
        for key, value in entry.items():
            if key == "Index":
                continue
            if key == "Imager":
                _merge_section(app["Imager"], value, _IMAGER_KEYS, f"{path}.Imager")
            elif key in _APP_KEYS:
                app[key] = _scalar(value, f"{path}.{key}")
            else:
                raise DeviceError(
                    XMLRPC_OBJ_NOT_FOUND, f"Unknown parameter: {path}.{key}"
                )


# ── Synthetic frames ──────────────────────────────────────────────────────────


def synthesize_frame(
    sequence: int, width: int, height: int, rng: np.random.Generator
) -> Frame:
    """Render a tilted, rippling plane 1.5–2.2 m away with sensor-like noise."""
    rows, cols = np.mgrid[0:height, 0:width].astype(np.float32)
    phase = sequence * 0.1

    z = 1.5 + 0.5 * (rows / height) + 0.2 * np.sin(2 * np.pi * cols / width + phase)
    z = z + rng.normal(0.0, 0.005, size=z.shape)

    amplitude = np.clip(2000.0 / z**2 + rng.normal(0.0, 20.0, size=z.shape), 0, 65535)
    invalid = rng.random(size=z.shape) < 0.01

    confidence = np.zeros(z.shape, dtype=np.uint8)
    confidence[invalid] |= 1

    z = np.where(invalid, 0.0, z)
    x = (cols - width / 2.0) * z / _FOCAL_PX
    y = (rows - height / 2.0) * z / _FOCAL_PX

    return Frame(
        sequence=sequence,
        timestamp=datetime.now(timezone.utc),
        depth=(z * 1000.0).astype(np.uint16),
        amplitude=amplitude.astype(np.uint16),
        confidence=confidence,
        cloud=np.stack([x, y, z], axis=-1).astype(np.float32),
    )


# ── Device ────────────────────────────────────────────────────────────────────


class SimulatedCamera:
    """In-memory O3D3xx with sessions, operating modes and applications."""

    def __init__(
        self,
        ip: str = "192.168.0.69",
        xmlrpc_port: int = 80,
        password: str = "",
        *,
        width: int = DEFAULT_WIDTH,
        height: int = DEFAULT_HEIGHT,
        frame_rate: float = 10.0,
        seed: int | None = None,
    ) -> None:
        if frame_rate <= 0:
            raise ValueError(f"frame_rate must be positive, got {frame_rate}")
        self.ip = ip
        self.xmlrpc_port = xmlrpc_port
        self.password = password
        self.width = width
        self.height = height
        self.frame_rate = frame_rate

        self._config = _default_config(ip)
        self._mode = OperatingMode.RUN
        self._session_id: str | None = None
        self._revision = 0
        self._sequence = 0
        self._rng = np.random.default_rng(seed)

    @property
    def operating_mode(self) -> OperatingMode:
        return self._mode

    @property
    def session_active(self) -> bool:
        return self._session_id is not None

    @property
    def revision(self) -> int:
        """Incremented on every configuration change."""
        return self._revision

    # ── Sessions ──────────────────────────────────────────────────────────────

    def request_session(self) -> None:
        if self._session_id is not None:
            raise DeviceError(SESSION_ALREADY_ACTIVE, "Session already active")
        self._session_id = uuid.uuid4().hex
        logger.debug("Session %s opened on %s", self._session_id, self.ip)

    def cancel_session(self) -> None:
        if self._session_id is None:
            return
        logger.debug("Session %s closed on %s", self._session_id, self.ip)
        self._session_id = None
        self._mode = OperatingMode.RUN

    def set_operating_mode(self, mode: OperatingMode) -> None:
        if self._session_id is None:
            raise DeviceError(NO_ACTIVE_SESSION, "No active session")
        self._mode = mode

    # ── Configuration ─────────────────────────────────────────────────────────

    def get_device_config(self) -> dict[str, Any]:
        return dict(self._config["o3d3xx"]["Device"])

    def delete_application(self, index: int) -> None:
        if self._session_id is None or self._mode is not OperatingMode.EDIT:
            raise DeviceError(NOT_IN_EDIT_MODE, "Device is not in EDIT mode")

        tree = self._config["o3d3xx"]
        app = _find_app(tree["Apps"], index)
        if app is None:
            raise DeviceError(INVALID_APPLICATION, f"No application at index {index}")
        if int(tree["Device"]["ActiveApplication"]) == index:
            raise DeviceError(INVALID_APPLICATION, f"Application {index} is active")

        tree["Apps"].remove(app)
        self._revision += 1
        logger.info("Deleted application %d", index)

    def to_json(self) -> str:
        return json.dumps(self._config, indent=2)

    def from_json(self, config: dict[str, Any]) -> None:
        """Merge a full or partial configuration tree into the device."""
        if not isinstance(config, dict):
            raise ValueError("Configuration must be a JSON object")
        root = config.get("o3d3xx")
        if not isinstance(root, dict):
            raise ValueError("Configuration must have an 'o3d3xx' root object")

        for section in root:
            if section not in ("Device", "Net", "Apps"):
                raise DeviceError(XMLRPC_OBJ_NOT_FOUND, f"Unknown section: {section}")

        updated = copy.deepcopy(self._config)
        tree = updated["o3d3xx"]
        if "Device" in root:
            _merge_section(tree["Device"], root["Device"], _DEVICE_KEYS, "Device")
        if "Net" in root:
            _merge_section(tree["Net"], root["Net"], _NET_KEYS, "Net")
        if "Apps" in root:
            _merge_apps(tree["Apps"], root["Apps"])

        active = _parse_index(
            tree["Device"]["ActiveApplication"], "Device.ActiveApplication"
        )
        if _find_app(tree["Apps"], active) is None:
            raise DeviceError(INVALID_APPLICATION, f"No application at index {active}")

        self.request_session()
        try:
            self.set_operating_mode(OperatingMode.EDIT)
            self._config = updated
            self._revision += 1
        finally:
            self.cancel_session()
        logger.info("Configuration applied (revision %d)", self._revision)

    # ── Acquisition ───────────────────────────────────────────────────────────

    def capture(self) -> Frame:
        self._sequence += 1
        return synthesize_frame(self._sequence, self.width, self.height, self._rng)


class SimulatedFrameGrabber:
    """Frame stream bound to one configuration revision of a SimulatedCamera."""

    def __init__(self, camera: SimulatedCamera) -> None:
        self._camera = camera
        self._revision = camera.revision
        self._interval = 1.0 / camera.frame_rate
        self._next_frame_at = time.monotonic()
        self._closed = False

    @property
    def camera(self) -> SimulatedCamera:
        return self._camera

    @property
    def stale(self) -> bool:
        return self._camera.revision != self._revision

    @property
    def closed(self) -> bool:
        return self._closed

    def wait_for_frame(self, timeout_millis: int) -> Frame | None:
        if self._closed:
            raise RuntimeError("Frame grabber is closed")

        timeout = max(timeout_millis, 0) / 1000.0
        now = time.monotonic()

        if self.stale or self._camera.operating_mode is not OperatingMode.RUN:
            time.sleep(timeout)
            return None

        wait = self._next_frame_at - now
        if wait > timeout:
            time.sleep(timeout)
            return None
        if wait > 0:
            time.sleep(wait)

        self._next_frame_at = max(self._next_frame_at, now) + self._interval
        return self._camera.capture()

    def close(self) -> None:
        self._closed = True
