from __future__ import annotations

import math
import threading
import time

import pytest

from frpfleet.services import dispatch_service
from frpfleet.services.dispatch_service import BatchReport, JobResult, dispatch


class ConcurrencyGauge:
    """Record the highest number of actions running at the same time."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.current = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __call__(self, item):
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)
        try:
            if self.delay:
                time.sleep(self.delay)
            return f"done {item}"
        finally:
            with self._lock:
                self.current -= 1


def test_failures_are_isolated_and_counted():
    failing = {3, 7, 11}

    def action(item: int) -> str:
        if item in failing:
            raise RuntimeError(f"boom {item}")
        return "ok"

    report = dispatch(range(20), action, max_parallel=4)

    assert report.total == 20
    assert report.completed == 20
    assert report.success_count == 17
    assert report.failure_count == 3
    assert sorted(result.item_id for result in report.failed_items) == ["11", "3", "7"]
    assert {result.message for result in report.failed_items} == {"boom 3", "boom 7", "boom 11"}
    assert report.exit_code == 1
    assert report.cancelled is False


def test_concurrency_never_exceeds_limit():
    gauge = ConcurrencyGauge(delay=0.02)

    report = dispatch(range(40), gauge, max_parallel=5)

    assert report.success_count == 40
    assert 1 < gauge.peak <= 5


def test_wall_time_is_bounded_by_batches():
    delay = 0.1
    items = 50
    limit = 10
    gauge = ConcurrencyGauge(delay=delay)

    started = time.monotonic()
    report = dispatch(range(items), gauge, max_parallel=limit)
    elapsed = time.monotonic() - started

    assert report.ok
    batches = math.ceil(items / limit)
    assert elapsed >= batches * delay * 0.9
    assert elapsed < items * delay / 2


def test_empty_input_returns_empty_report():
    report = dispatch([], lambda item: "ok", max_parallel=3)

    assert report == BatchReport(total=0)
    assert report.exit_code == 0


def test_single_item_runs_inline():
    seen = []

    def action(item):
        seen.append(threading.current_thread())
        return "fine"

    report = dispatch(["only"], action, max_parallel=8)

    assert report.results == [JobResult(item_id="only", succeeded=True, message="fine")]
    assert seen == [threading.current_thread()]


def test_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        dispatch([1, 2], lambda item: None, max_parallel=0)


def test_progress_callback_reaches_total():
    updates = []

    dispatch(range(6), lambda item: None, max_parallel=2, on_progress=lambda done, total: updates.append((done, total)))

    assert updates[-1] == (6, 6)
    assert [done for done, _ in updates] == list(range(1, 7))


def test_cancel_stops_new_launches_and_awaits_running():
    cancel = threading.Event()
    started = []
    lock = threading.Lock()

    def action(item: int) -> str:
        with lock:
            started.append(item)
        if item == 0:
            cancel.set()
        time.sleep(0.05)
        return "ok"

    report = dispatch(range(30), action, max_parallel=2, cancel_event=cancel, poll_interval=0.01)

    assert report.cancelled is True
    assert report.total == 30
    assert report.completed == len(started)
    assert report.completed < 30
    assert all(result.succeeded for result in report.results)


def test_cancel_before_single_item():
    cancel = threading.Event()
    cancel.set()

    report = dispatch(["x"], lambda item: "ok", max_parallel=1, cancel_event=cancel)

    assert report.cancelled is True
    assert report.completed == 0


def test_custom_item_id_and_failure_description():
    def action(item):
        raise TimeoutError()

    report = dispatch([{"name": "a"}, {"name": "b"}], action, max_parallel=2, item_id=lambda item: item["name"])

    assert sorted(result.item_id for result in report.results) == ["a", "b"]
    assert {result.message for result in report.results} == {"timed out"}


def test_cancelled_partial_batch_exits_nonzero():
    cancel = threading.Event()

    def action(item: int) -> str:
        if item == 0:
            cancel.set()
        time.sleep(0.02)
        return "ok"

    report = dispatch(range(20), action, max_parallel=2, cancel_event=cancel, poll_interval=0.01)

    assert report.cancelled is True
    assert report.failure_count == 0
    assert report.completed < report.total
    assert report.ok is False
    assert report.exit_code == 1


def test_cancel_after_every_item_finished_still_passes():
    report = BatchReport(
        total=2,
        results=[JobResult("a", True), JobResult("b", True)],
        cancelled=True,
    )

    assert report.exit_code == 0


def test_keyboard_interrupt_awaits_running_items(monkeypatch):
    release = threading.Event()
    started = []
    lock = threading.Lock()

    def action(item: int) -> str:
        with lock:
            started.append(item)
        release.wait(2.0)
        return "ok"

    def interrupted_wait(futures, timeout=None, return_when=None):
        release.set()
        raise KeyboardInterrupt

    monkeypatch.setattr(dispatch_service, "wait", interrupted_wait)

    report = dispatch(range(10), action, max_parallel=3)

    assert report.cancelled is True
    assert report.total == 10
    assert report.completed == 3
    assert sorted(int(result.item_id) for result in report.results) == sorted(started)
    assert all(result.succeeded for result in report.results)
    assert report.exit_code == 1
    assert not [thread for thread in threading.enumerate() if thread.name.startswith("frpfleet-dispatch")]


def test_keyboard_interrupt_on_single_item_returns_partial_report():
    def action(item):
        raise KeyboardInterrupt

    report = dispatch(["only"], action, max_parallel=1)

    assert report.cancelled is True
    assert report.completed == 0
    assert report.exit_code == 1
