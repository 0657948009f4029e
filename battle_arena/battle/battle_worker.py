"""
Battle Worker: the single execution context of one battle.

Every mutation of a battle (join, start, tick, finalize, abort) runs on the
worker thread, one at a time. The periodic tick is driven by the same loop
that drains submitted commands, so a tick can never start while another
tick or a finalize is still in flight.
"""

import logging
import queue
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

_STOP = object()


class WorkerStoppedError(RuntimeError):
    """Command submitted to a worker that has been stopped"""
    pass


class BattleWorker:
    """
    Serialized executor with an optional fixed-period tick.

    schedule_ticks() and cancel_ticks() are meant to be called from work
    running on this worker (the orchestrator enables the schedule inside its
    start command and cancels it inside finalize).
    """

    def __init__(
        self,
        name: str,
        on_tick: Callable[[], Any],
        interval_seconds: float,
        monotonic: Callable[[], float] = time.monotonic
    ):
        """
        Initialize worker.

        Args:
            name: Thread name (shows up in logs)
            on_tick: Called on the worker thread each time the interval elapses
            interval_seconds: Tick period
            monotonic: Timer clock (real monotonic time in production)
        """
        self.name = name
        self.on_tick = on_tick
        self.interval_seconds = interval_seconds
        self.monotonic = monotonic

        self._queue: "queue.Queue" = queue.Queue()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._next_tick_at: Optional[float] = None
        self._stopped = threading.Event()
        self._started = False
        self._start_lock = threading.Lock()

    def start(self):
        with self._start_lock:
            if not self._started:
                self._started = True
                self._thread.start()
                logger.debug(f"Worker {self.name} started")

    @property
    def is_alive(self) -> bool:
        return self._thread.is_alive()

    @property
    def ticks_scheduled(self) -> bool:
        return self._next_tick_at is not None

    def in_worker_thread(self) -> bool:
        return threading.current_thread() is self._thread

    def submit(self, fn: Callable[[], Any]) -> Future:
        """
        Queue fn for execution on the worker.

        Raises:
            WorkerStoppedError: If the worker was stopped
        """
        if self._stopped.is_set():
            raise WorkerStoppedError(f"Worker {self.name} is stopped")
        self.start()

        future: Future = Future()
        self._queue.put((fn, future))
        return future

    def call(self, fn: Callable[[], Any], timeout: Optional[float] = None) -> Any:
        """
        Run fn on the worker and wait for its result.

        Runs inline when already on the worker thread, since waiting on
        ourselves would deadlock.
        """
        if self.in_worker_thread():
            return fn()
        return self.submit(fn).result(timeout=timeout)

    def schedule_ticks(self):
        """Begin firing on_tick every interval, first one an interval from now"""
        self._next_tick_at = self.monotonic() + self.interval_seconds

    def cancel_ticks(self):
        self._next_tick_at = None

    def stop(self, timeout: Optional[float] = None):
        """Stop the loop; commands still queued are cancelled"""
        if self._stopped.is_set():
            return
        self._stopped.set()
        self._next_tick_at = None

        if self._started:
            self._queue.put(_STOP)
            if not self.in_worker_thread():
                self._thread.join(timeout)
        self._cancel_pending()
        logger.debug(f"Worker {self.name} stopped")

    def _run(self):
        while True:
            # A due tick goes ahead of queued commands so a busy queue cannot starve it
            if self._tick_due():
                self._fire_tick()

            try:
                item = self._queue.get(timeout=self._time_until_tick())
            except queue.Empty:
                continue

            if item is _STOP:
                break

            fn, future = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(fn())
            except BaseException as e:
                future.set_exception(e)

    def _tick_due(self) -> bool:
        return self._next_tick_at is not None and self.monotonic() >= self._next_tick_at

    def _time_until_tick(self) -> Optional[float]:
        if self._next_tick_at is None:
            return None
        return max(0.0, self._next_tick_at - self.monotonic())

    def _fire_tick(self):
        if self._next_tick_at is None:
            return
        # Fixed period from the scheduled time; an overrun skips missed ticks
        now = self.monotonic()
        next_tick_at = self._next_tick_at + self.interval_seconds
        self._next_tick_at = next_tick_at if next_tick_at > now else now + self.interval_seconds
        try:
            self.on_tick()
        except Exception:
            logger.exception(f"Worker {self.name}: scheduled tick failed")

    def _cancel_pending(self):
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is not _STOP:
                item[1].cancel()
