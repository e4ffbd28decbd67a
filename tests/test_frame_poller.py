"""
Tests for the frame acquisition loop (app.workers.frame_poller).
"""

import logging
import threading
import time
from unittest.mock import MagicMock

import numpy as np

from app.core.admin import AdminService
from app.core.slot import SharedConnectionSlot
from app.device.twin import synthesize_frame
from app.workers.frame_poller import FrameAcquisitionLoop

_FRAME_ID = "test_link"


def _frame(sequence: int = 1):
    return synthesize_frame(sequence, 8, 6, np.random.default_rng(0))


def _loop(conn, publisher=None, timeout_millis: int = 5) -> FrameAcquisitionLoop:
    return FrameAcquisitionLoop(
        SharedConnectionSlot(conn),
        publisher if publisher is not None else MagicMock(),
        timeout_millis,
        _FRAME_ID,
    )


# ── Single cycle ──────────────────────────────────────────────────────────────


def test_poll_once_publishes_every_topic():
    frame = _frame()
    conn = MagicMock()
    conn.wait_for_frame.return_value = frame
    publisher = MagicMock()
    poller = _loop(conn, publisher, timeout_millis=250)

    assert poller.poll_once() is True

    conn.wait_for_frame.assert_called_once_with(250)
    publisher.publish_cloud.assert_called_once_with(frame.cloud, _FRAME_ID, frame)
    publisher.publish_depth.assert_called_once_with(frame.depth, _FRAME_ID, frame)
    publisher.publish_amplitude.assert_called_once_with(
        frame.amplitude, _FRAME_ID, frame
    )
    publisher.publish_confidence.assert_called_once_with(
        frame.confidence, _FRAME_ID, frame
    )
    assert poller.stats.frames == 1
    assert poller.stats.last_frame_at is not None


def test_publication_happens_after_lock_release():
    conn = MagicMock()
    conn.wait_for_frame.return_value = _frame()
    slot = SharedConnectionSlot(conn)
    held: list[bool] = []
    publisher = MagicMock()
    publisher.publish_depth.side_effect = lambda *a: held.append(slot._lock.locked())
    poller = FrameAcquisitionLoop(slot, publisher, 5, _FRAME_ID)

    poller.poll_once()

    assert held == [False]


def test_timeout_logs_warning_and_publishes_nothing(caplog):
    conn = MagicMock()
    conn.wait_for_frame.return_value = None
    publisher = MagicMock()
    poller = _loop(conn, publisher)

    with caplog.at_level(logging.WARNING, logger="app.workers.frame_poller"):
        for _ in range(100):
            assert poller.poll_once() is False

    warnings = [r for r in caplog.records if r.getMessage() == "Timeout waiting for camera!"]
    assert len(warnings) == 100
    assert poller.stats.timeouts == 100
    publisher.publish_cloud.assert_not_called()
    publisher.publish_depth.assert_not_called()
    publisher.publish_amplitude.assert_not_called()
    publisher.publish_confidence.assert_not_called()
    assert publisher.mock_calls == []


# ── Threaded loop ─────────────────────────────────────────────────────────────


def test_loop_survives_continuous_timeouts(caplog):
    """A sensor that never answers keeps the poller alive and warning."""
    reached = threading.Event()
    count = {"n": 0}

    def _wait(timeout_millis):
        count["n"] += 1
        if count["n"] >= 100:
            reached.set()
        return None

    conn = MagicMock()
    conn.wait_for_frame.side_effect = _wait
    poller = _loop(conn, timeout_millis=1)

    with caplog.at_level(logging.WARNING, logger="app.workers.frame_poller"):
        poller.start()
        try:
            assert reached.wait(timeout=5)
            assert poller.is_running
        finally:
            poller.stop(timeout=2)

    assert not poller.is_running
    assert poller.stats.timeouts >= 100
    warnings = [r for r in caplog.records if r.getMessage() == "Timeout waiting for camera!"]
    assert len(warnings) >= 100


def test_loop_retries_after_unexpected_error():
    recovered = threading.Event()
    count = {"n": 0}

    def _wait(timeout_millis):
        count["n"] += 1
        if count["n"] == 1:
            raise RuntimeError("socket closed")
        recovered.set()
        return None

    conn = MagicMock()
    conn.wait_for_frame.side_effect = _wait
    poller = _loop(conn)

    poller.start()
    try:
        assert recovered.wait(timeout=5)
        assert poller.is_running
    finally:
        poller.stop(timeout=2)

    assert poller.stats.errors == 1


def test_stop_ends_thread():
    conn = MagicMock()
    conn.wait_for_frame.return_value = None
    poller = _loop(conn, timeout_millis=1)

    thread = poller.start()
    poller.stop(timeout=2)

    assert not thread.is_alive()
    assert not poller.is_running


# ── Interleaving with administrative operations ───────────────────────────────


class _InstrumentedStream:
    """Stream that records which slot generation served each frame."""

    def __init__(self, generation: int, slot_ref: dict, violations: list) -> None:
        self.generation = generation
        self.closed = False
        self._busy = False
        self._slot_ref = slot_ref
        self._violations = violations

    def wait_for_frame(self, timeout_millis):
        if self.closed:
            self._violations.append(f"frame pulled from closed stream {self.generation}")
        self._busy = True
        slot_generation = self._slot_ref["slot"]._generation
        time.sleep(0.001)
        self._busy = False
        return MagicMock(generation=self.generation, slot_generation=slot_generation)

    def close(self):
        if self._busy:
            self._violations.append(f"stream {self.generation} closed mid-wait")
        self.closed = True


def test_no_frame_from_stream_being_replaced():
    violations: list[str] = []
    slot_ref: dict = {}
    counter = {"generation": 0}

    def _open_stream(device):
        counter["generation"] += 1
        return _InstrumentedStream(counter["generation"], slot_ref, violations)

    slot = SharedConnectionSlot(_InstrumentedStream(0, slot_ref, violations))
    slot_ref["slot"] = slot

    device = MagicMock()
    device.to_json.side_effect = lambda: time.sleep(0.002) or "{}"
    service = AdminService(device, slot, _open_stream)

    publisher = MagicMock()
    poller = FrameAcquisitionLoop(slot, publisher, 1, _FRAME_ID)
    poller.start()
    try:
        deadline = time.monotonic() + 5
        while poller.stats.frames == 0 and time.monotonic() < deadline:
            time.sleep(0.001)
        for _ in range(25):
            assert service.dump().status == 0
    finally:
        poller.stop(timeout=2)

    assert violations == []
    assert poller.stats.errors == 0

    frames = [c.args[2] for c in publisher.publish_depth.call_args_list]
    assert frames
    generations = [f.generation for f in frames]
    assert all(f.generation == f.slot_generation for f in frames)
    assert generations == sorted(generations)
    with slot.exclusive() as access:
        assert access.generation == 25
