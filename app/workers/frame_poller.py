"""
Frame poller — background thread that pulls frames from the sensor and hands
them to downstream publication.

Design
------
- Each cycle takes the connection slot lock, waits up to ``timeout_millis``
  for one frame, and releases the lock.  Publication happens after the lock
  is released so slow consumers never hold up an administrative operation.
- If an administrative operation holds the lock, the poller waits until it is
  done; the operation swaps in a fresh stream connection before releasing, so
  the next cycle reads from the new one.
- A timeout is logged as a warning and the next cycle starts immediately: no
  backoff, no retry cap.  A sensor that stays silent shows up as a steady
  stream of warnings rather than a stopped node.
- Any other failure (acquisition or publication) is logged and retried with
  exponential back-off (0.1 s → 0.2 s … 5 s), reset on the next good frame.
- The shutdown event is checked once per cycle.  A cycle already blocked in
  ``wait_for_frame`` finishes first.
- The poller never replaces the stream connection itself.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from app.core.slot import SharedConnectionSlot
from app.device.types import Frame

logger = logging.getLogger(__name__)

# Back-off config for unexpected acquisition / publication failures
_BACKOFF_BASE: float = 0.1
_BACKOFF_MAX: float = 5.0


class FramePublisher(Protocol):
    """Downstream consumer of acquired frames."""

    def publish_cloud(self, cloud: Any, frame_id: str, frame: Frame) -> None: ...

    def publish_depth(self, image: Any, frame_id: str, frame: Frame) -> None: ...

    def publish_amplitude(self, image: Any, frame_id: str, frame: Frame) -> None: ...

    def publish_confidence(self, image: Any, frame_id: str, frame: Frame) -> None: ...


@dataclass
class AcquisitionStats:
    frames: int = 0
    timeouts: int = 0
    errors: int = 0
    last_frame_at: datetime | None = None


def publish_frame(publisher: FramePublisher, frame: Frame, frame_id: str) -> None:
    publisher.publish_cloud(frame.cloud, frame_id, frame)
    publisher.publish_depth(frame.depth, frame_id, frame)
    publisher.publish_amplitude(frame.amplitude, frame_id, frame)
    publisher.publish_confidence(frame.confidence, frame_id, frame)


class FrameAcquisitionLoop:
    def __init__(
        self,
        slot: SharedConnectionSlot,
        publisher: FramePublisher,
        timeout_millis: int,
        frame_id: str,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._slot = slot
        self._publisher = publisher
        self._timeout_millis = timeout_millis
        self._frame_id = frame_id
        self._stop = stop_event or threading.Event()
        self._thread: threading.Thread | None = None
        self._backoff = _BACKOFF_BASE
        self.stats = AcquisitionStats()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def poll_once(self) -> bool:
        """
        Run one acquisition cycle.  Returns True if a frame was published.

        Exceptions propagate to the caller; ``run()`` handles them.
        """
        with self._slot.exclusive() as access:
            frame = access.connection.wait_for_frame(self._timeout_millis)

        if frame is None:
            self.stats.timeouts += 1
            logger.warning("Timeout waiting for camera!")
            return False

        publish_frame(self._publisher, frame, self._frame_id)
        self.stats.frames += 1
        self.stats.last_frame_at = datetime.now(timezone.utc)
        return True

    def run(self) -> None:
        """Poll until the stop event is set."""
        logger.info(
            "Frame poller starting (timeout=%dms, frame_id=%s)",
            self._timeout_millis,
            self._frame_id,
        )

        while not self._stop.is_set():
            try:
                if self.poll_once():
                    self._backoff = _BACKOFF_BASE  # reset on successful cycle

            except Exception as exc:
                self.stats.errors += 1
                logger.error(
                    "Acquisition cycle failed: %s - retrying in %.1fs",
                    exc,
                    self._backoff,
                )
                self._stop.wait(self._backoff)
                self._backoff = min(self._backoff * 2, _BACKOFF_MAX)

        logger.info("Frame poller stopped")

    def start(self) -> threading.Thread:
        if self.is_running:
            raise RuntimeError("Frame poller already running")
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="frame_poller", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Frame poller did not stop within %.1fs", timeout or 0.0)
