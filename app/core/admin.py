"""
Administrative operations: GetVersion, Dump, Configure, RemoveApplication.

Design
------
- Every mutating operation holds the connection slot lock for its whole
  duration, device round-trips included.  The acquisition loop is therefore
  parked until the operation finishes.
- Whatever the outcome, the stream connection is replaced before the lock is
  released.  A configuration change (or a half-finished one) invalidates the
  old stream, and rebuilding on every path means a failed call never leaves
  the loop reading from a stale connection.
- If the rebuild itself fails, the old connection stays in the slot and the
  failure is logged.  A failed operation still reports its own error; a
  successful one reports the rebuild error.
- RemoveApplication cancels its session before the rebuild, so the new stream
  is bound to a device back in RUN mode.
- Exceptions are folded into ``status`` / ``msg`` replies by
  ``app.core.result.attempt``; nothing propagates to the transport.

The methods are blocking and meant to run on the node's single admin worker
thread, which also serializes administrative calls with respect to each other.
"""

import json
import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TypeVar

from app.core.result import (
    STATUS_GENERIC_FAILURE,
    STATUS_OK,
    BusinessRuleViolation,
    DeviceFailure,
    DumpReply,
    Ok,
    StatusReply,
    attempt,
    status_reply,
)
from app.core.slot import SharedConnectionSlot, SlotAccess
from app.device import LIBRARY_NAME, VERSION
from app.device.types import DeviceHandle, OperatingMode, StreamConnection

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACTIVE_APPLICATION_MSG = "Cannot delete active application!"


@contextmanager
def edit_session(device: DeviceHandle) -> Iterator[DeviceHandle]:
    """
    Open a session in EDIT mode; always cancel it on the way out.

    If the body has already failed, a failing cancel is logged and the body's
    error is the one that propagates.  Otherwise the cancel error propagates.
    """
    failed = False
    try:
        device.request_session()
        device.set_operating_mode(OperatingMode.EDIT)
        yield device
    except BaseException:
        failed = True
        raise
    finally:
        try:
            device.cancel_session()
        except Exception as exc:
            if not failed:
                raise
            logger.error("Failed to cancel edit session: %s", exc)


class AdminService:
    def __init__(
        self,
        device: DeviceHandle,
        slot: SharedConnectionSlot,
        open_stream: Callable[[DeviceHandle], StreamConnection],
    ) -> None:
        self._device = device
        self._slot = slot
        self._open_stream = open_stream

    def _exclusive_then_rebuild(self, fn: Callable[..., T], *args: Any) -> T:
        with self._slot.exclusive() as access:
            try:
                result = fn(*args)
            except Exception as exc:
                try:
                    self._rebuild(access)
                except Exception as rebuild_exc:
                    # the operation's own error is the one reported
                    logger.error(
                        "Stream connection rebuild failed after %s(%s): %s "
                        "(keeping generation %d)",
                        type(exc).__name__,
                        exc,
                        rebuild_exc,
                        access.generation,
                    )
                raise

            try:
                self._rebuild(access)
            except Exception as rebuild_exc:
                logger.error(
                    "Stream connection rebuild failed after successful operation: %s "
                    "(keeping generation %d)",
                    rebuild_exc,
                    access.generation,
                )
                raise
            return result

    def _rebuild(self, access: SlotAccess) -> None:
        access.replace(self._open_stream(self._device))
        logger.info("Stream connection rebuilt (generation %d)", access.generation)

    # ── GetVersion ────────────────────────────────────────────────────────────

    def get_version(self) -> str:
        major, minor, patch = VERSION
        return f"{LIBRARY_NAME}: {major}.{minor}.{patch}"

    # ── Dump ──────────────────────────────────────────────────────────────────

    def dump(self) -> DumpReply:
        """Return the full device configuration as a JSON document."""
        result = attempt(self._exclusive_then_rebuild, self._device.to_json)
        if isinstance(result, Ok):
            return DumpReply(STATUS_OK, result.value)
        if isinstance(result, DeviceFailure):
            return DumpReply(result.code, "")
        return DumpReply(STATUS_GENERIC_FAILURE, "")

    # ── Configure ─────────────────────────────────────────────────────────────

    def configure(self, document: str) -> StatusReply:
        """
        Apply a full or partial JSON configuration.

        Only the parameters present in ``document`` are changed; each must be
        fully qualified from the root of the tree ``Dump`` produces.
        """
        result = attempt(self._exclusive_then_rebuild, self._apply_config, document)
        return status_reply(result)

    def _apply_config(self, document: str) -> None:
        config = json.loads(document)
        if not isinstance(config, dict):
            raise ValueError("Configuration document must be a JSON object")
        self._device.from_json(config)

    # ── RemoveApplication ─────────────────────────────────────────────────────

    def remove_application(self, index: int) -> StatusReply:
        """
        Delete the application at ``index``.

        An index of zero or below is accepted as a no-op.  The active
        application is never deleted.
        """
        result = attempt(self._exclusive_then_rebuild, self._remove_application, index)
        return status_reply(result)

    def _remove_application(self, index: int) -> None:
        if index <= 0:
            logger.info("Ignoring remove request for application index %d", index)
            return

        with edit_session(self._device) as device:
            active = int(device.get_device_config()["ActiveApplication"])
            if index == active:
                raise BusinessRuleViolation(ACTIVE_APPLICATION_MSG)
            device.delete_application(index)
            logger.info("Removed application %d", index)
