"""Bounded-concurrency executor for independent per-item actions."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 0.05
ProgressCallback = Callable[[int, int], None]


@dataclass(slots=True)
class JobResult:
    item_id: str
    succeeded: bool
    message: str = ""


@dataclass(slots=True)
class BatchReport:
    total: int = 0
    results: list[JobResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.succeeded)

    @property
    def failure_count(self) -> int:
        return sum(1 for result in self.results if not result.succeeded)

    @property
    def failed_items(self) -> list[JobResult]:
        return [result for result in self.results if not result.succeeded]

    @property
    def completed(self) -> int:
        return len(self.results)

    @property
    def ok(self) -> bool:
        # A cancelled batch that skipped items is not a pass.
        return self.failure_count == 0 and not (self.cancelled and self.completed < self.total)

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


def _describe_failure(exc: BaseException) -> str:
    text = str(exc).strip()
    if text:
        return text
    if isinstance(exc, TimeoutError):
        return "timed out"
    return type(exc).__name__


def run_item(item: T, action: Callable[[T], str | None], item_id: str) -> JobResult:
    """Run *action* on one item and turn any exception into a failed result."""

    try:
        message = action(item)
    except Exception as exc:
        logger.debug("Item %s failed: %s", item_id, exc)
        return JobResult(item_id=item_id, succeeded=False, message=_describe_failure(exc))
    return JobResult(item_id=item_id, succeeded=True, message=message or "")


class _Progress:
    def __init__(self, total: int, callback: ProgressCallback | None) -> None:
        self.total = total
        self.callback = callback
        self.done = 0

    def advance(self) -> None:
        self.done += 1
        if self.callback is not None:
            self.callback(self.done, self.total)


def dispatch(
    items: Iterable[T],
    action: Callable[[T], str | None],
    *,
    max_parallel: int,
    item_id: Callable[[T], str] = str,
    on_progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> BatchReport:
    """Run *action* over *items* with at most *max_parallel* in flight.

    The action signals failure by raising; its return value, if any, becomes the
    success message. A failing item never affects the others. Setting
    *cancel_event* or interrupting the caller stops new launches; items already
    running are awaited and the partial report is returned with
    ``cancelled=True``.
    """

    if max_parallel <= 0:
        raise ValueError("max_parallel must be greater than 0")
    pending: list[T] = list(items)
    report = BatchReport(total=len(pending))
    if not pending:
        return report
    progress = _Progress(len(pending), on_progress)

    if len(pending) == 1:
        item = pending[0]
        if cancel_event is not None and cancel_event.is_set():
            report.cancelled = True
            return report
        ident = item_id(item)
        try:
            result = run_item(item, action, ident)
        except KeyboardInterrupt:
            report.cancelled = True
            logger.warning("Interrupted while running %s", ident)
            return report
        report.results.append(result)
        progress.advance()
        return report

    workers = min(max_parallel, len(pending))
    queue = list(reversed(pending))
    in_flight: dict[Future[JobResult], str] = {}
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="frpfleet-dispatch")
    try:
        while queue or in_flight:
            if cancel_event is not None and cancel_event.is_set() and queue:
                report.cancelled = True
                queue.clear()
            while queue and len(in_flight) < workers:
                item = queue.pop()
                ident = item_id(item)
                in_flight[executor.submit(run_item, item, action, ident)] = ident
            if not in_flight:
                break
            done, _ = wait(in_flight, timeout=poll_interval, return_when=FIRST_COMPLETED)
            for future in done:
                in_flight.pop(future)
                report.results.append(future.result())
                progress.advance()
    except KeyboardInterrupt:
        report.cancelled = True
        queue.clear()
        logger.warning("Interrupted; waiting for %d running item(s)", len(in_flight))
        for future in list(in_flight):
            report.results.append(future.result())
            progress.advance()
        in_flight.clear()
    finally:
        executor.shutdown(wait=True, cancel_futures=True)
    return report
