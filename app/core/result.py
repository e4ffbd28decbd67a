"""
Outcome types for administrative operations.

Device and library calls signal failure by raising.  ``attempt()`` runs such a
call and folds the outcome into one of three values:

- ``Ok(value)``: the call returned normally
- ``DeviceFailure(code, message)``: the device raised ``DeviceError``
- ``GenericFailure(message)``: anything else (bad input, transport, …)

Handlers turn these into the ``status`` / ``msg`` pairs returned to callers,
so no administrative failure propagates past the operation boundary.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from app.device.errors import DeviceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATUS_OK: int = 0
STATUS_GENERIC_FAILURE: int = -1
MSG_OK: str = "OK"


class BusinessRuleViolation(Exception):
    """The request is well-formed but not allowed (caller error)."""


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class DeviceFailure:
    code: int
    message: str


@dataclass(frozen=True)
class GenericFailure:
    message: str
    status: int = STATUS_GENERIC_FAILURE


Result = Ok | DeviceFailure | GenericFailure


@dataclass(frozen=True)
class StatusReply:
    status: int
    msg: str


@dataclass(frozen=True)
class DumpReply:
    status: int
    config: str


def attempt(fn: Callable[..., T], *args: Any) -> Result:
    """Call ``fn(*args)`` and capture its outcome as a ``Result``."""
    try:
        return Ok(fn(*args))
    except DeviceError as exc:
        logger.warning("Device error %d: %s", exc.code, exc.message)
        return DeviceFailure(exc.code, exc.message)
    except Exception as exc:
        message = str(exc) or type(exc).__name__
        logger.error("Operation failed: %s", message)
        return GenericFailure(message)


def status_reply(result: Result) -> StatusReply:
    if isinstance(result, Ok):
        return StatusReply(STATUS_OK, MSG_OK)
    if isinstance(result, DeviceFailure):
        return StatusReply(result.code, result.message)
    return StatusReply(result.status, result.message)
