"""
Shared connection slot, the one lock in the node.

The current StreamConnection lives in a ``SharedConnectionSlot``.  Every read
of the connection and every replacement happens while holding the slot's
lock, so the acquisition loop can never pull a frame through a connection that
an administrative operation is tearing down.

Usage
-----
    with slot.exclusive() as access:
        frame = access.connection.wait_for_frame(500)

    with slot.exclusive() as access:
        ...  # mutate the device
        access.replace(open_stream(device))

The access object is only valid inside its ``with`` block; using it after the
block exits raises ``RuntimeError``.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from app.device.types import StreamConnection

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SlotAccess:
    """Handle to the slot contents, valid while the lock is held."""

    def __init__(self, slot: "SharedConnectionSlot") -> None:
        self._slot = slot
        self._active = True

    def _check(self) -> None:
        if not self._active:
            raise RuntimeError("Connection slot accessed outside exclusive()")

    @property
    def connection(self) -> StreamConnection:
        self._check()
        return self._slot._connection

    @property
    def generation(self) -> int:
        self._check()
        return self._slot._generation

    def replace(self, connection: StreamConnection) -> None:
        """Install ``connection`` and close the one it supersedes."""
        self._check()
        old = self._slot._connection
        self._slot._connection = connection
        self._slot._generation += 1
        logger.debug("Stream connection replaced (generation %d)", self._slot._generation)
        old.close()


class SharedConnectionSlot:
    def __init__(self, connection: StreamConnection) -> None:
        self._lock = threading.Lock()
        self._connection = connection
        self._generation = 0

    @contextmanager
    def exclusive(self) -> Iterator[SlotAccess]:
        with self._lock:
            access = SlotAccess(self)
            try:
                yield access
            finally:
                access._active = False

    def with_exclusive_access(self, fn: Callable[[StreamConnection], T]) -> T:
        with self.exclusive() as access:
            return fn(access.connection)
