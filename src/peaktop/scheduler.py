"""Telemetry scheduling engine for peaktop."""

import logging
import threading
import time
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from peaktop.collector import Collector
from peaktop.config import MonitorConfig
from peaktop.connections import ConnectionCollector
from peaktop.errors import CollectorFailure, CollectorInitError, FailureKind, classify
from peaktop.host import HostMetricsCollector
from peaktop.models import TerminateResult
from peaktop.processes import ProcessTableCollector
from peaktop.store import CollectorStatus, SnapshotStore

LOGGER = logging.getLogger(__name__)

MIN_INTERVAL = 0.1
DEFAULT_INTERVAL = 1.0


def default_collectors() -> list[Collector]:
    """Create the standard host, process table and connection collectors."""
    return [HostMetricsCollector(), ProcessTableCollector(), ConnectionCollector()]


class _SampleTimeout(Exception):
    pass


class CollectorTask:
    """
    Background loop driving one collector.

    Runs {sample -> publish -> wait(interval)} in a daemon thread. Each
    sample call runs on a single-worker executor so it can be abandoned
    after ``sample_timeout`` seconds; while an abandoned call is still
    running, later cycles are skipped rather than queued, and the task
    neither closes nor reopens the collector, so the collector's state is
    never touched by two threads at once.

    Stopping only cuts short the wait between cycles. A sample already in
    flight is allowed up to ``sample_timeout`` to finish; its result is
    discarded.
    """

    def __init__(
        self,
        collector: Collector,
        store: SnapshotStore,
        interval: float = DEFAULT_INTERVAL,
        sample_timeout: float = 5.0,
    ) -> None:
        """
        Initialize the CollectorTask.

        Args:
            collector: The collector to drive.
            store: Where snapshots and status records are published.
            interval: Seconds between the start of two cycles.
            sample_timeout: Upper bound on one sample() call, in seconds.
        """
        self.collector = collector
        self._store = store
        self._interval = max(MIN_INTERVAL, interval)
        self._sample_timeout = sample_timeout
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._pending: Future[Any] | None = None
        self._abandoned = False
        self._cycles = 0

    @property
    def name(self) -> str:
        """Name of the driven collector, also its store slot."""
        return self.collector.name

    @property
    def interval(self) -> float:
        """Get the current sampling interval."""
        return self._interval

    @interval.setter
    def interval(self, value: float) -> None:
        """Set the sampling interval."""
        self._interval = max(MIN_INTERVAL, value)  # Minimum 0.1 seconds

    @property
    def cycles(self) -> int:
        """Number of completed cycles since the last start."""
        return self._cycles

    @property
    def is_running(self) -> bool:
        """Check if the loop thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """
        Open the collector and start its loop thread.

        Returns:
            False if the collector could not be initialized (logged once and
            recorded in the store, not retried), or if a previous run has not
            finished winding down yet.
        """
        if self.is_running:
            if not self._stop_event.is_set():
                return True
            LOGGER.warning("Collector %s cannot restart: its loop is still stopping", self.name)
            return False

        if self._pending is not None and not self._pending.done():
            LOGGER.warning(
                "Collector %s cannot restart: an abandoned sample is still running", self.name
            )
            return False
        if self._abandoned:
            # The abandoned sample has finished; release the state it left behind
            self._abandoned = False
            self._pending = None
            self.collector.close()

        try:
            self.collector.open()
        except CollectorInitError as exc:
            LOGGER.error("Collector %s failed to initialize: %s", self.name, exc)
            failure = CollectorFailure(FailureKind.INIT_FAILURE, "open", str(exc))
            self._store.set_status(
                CollectorStatus(self.name, False, 0, (failure,), init_error=str(exc))
            )
            return False

        self._cycles = 0
        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"peaktop-{self.name}-sample"
        )
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name=f"Collector-{self.name}",
        )
        self._store.set_status(CollectorStatus(self.name, True))
        self._thread.start()
        LOGGER.info("Collector %s started (interval %.1fs)", self.name, self._interval)
        return True

    def cancel(self) -> None:
        """Signal the loop to exit without waiting for it."""
        self._stop_event.set()

    def join(self, timeout: float | None = 5.0) -> None:
        """
        Wait for the loop and any in-flight sample, then release the collector's state.

        A sample that is still running after ``sample_timeout`` is abandoned:
        the collector is left open and the task refuses to restart until
        that call returns.

        Args:
            timeout: How long to wait for the loop to exit once any in-flight
                sample has returned or timed out (seconds).
        """
        if self._thread is not None:
            if timeout is not None:
                timeout += self._sample_timeout
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                LOGGER.warning("Collector %s did not stop within %ss", self.name, timeout)
            else:
                self._thread = None

        pending = self._pending
        if pending is not None and not pending.done():
            wait([pending], timeout=self._sample_timeout)
        hung = pending is not None and not pending.done()

        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

        if hung or self._thread is not None:
            self._abandoned = True
            LOGGER.warning("Collector %s abandoned a sample that is still running", self.name)
        else:
            self._pending = None
            self.collector.close()

        status = self._store.status(self.name) or CollectorStatus(self.name, False)
        self._store.set_status(
            CollectorStatus(
                self.name, False, self._cycles, status.last_failures, status.init_error
            )
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the loop and wait for it to exit."""
        self.cancel()
        self.join(timeout)

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            started = time.monotonic()
            self._run_cycle()

            # Wait out the rest of the interval or until stop is requested
            elapsed = time.monotonic() - started
            if self._stop_event.wait(timeout=max(0.0, self._interval - elapsed)):
                break

    def _run_cycle(self) -> None:
        """Run one sample and publish it; every failure stays inside this task."""
        if self._pending is not None and not self._pending.done():
            failures: tuple[CollectorFailure, ...] = (
                CollectorFailure(FailureKind.TIMEOUT, "cycle", "previous sample still running"),
            )
            LOGGER.warning("Collector %s skipped a cycle: previous sample still running", self.name)
        else:
            if self._executor is None:
                return
            self._pending = self._executor.submit(self.collector.sample)
            try:
                value = self._await(self._pending)
                self._pending = None
            except _SampleTimeout:
                failures = (
                    CollectorFailure(
                        FailureKind.TIMEOUT, "cycle", f"sample exceeded {self._sample_timeout}s"
                    ),
                )
                LOGGER.warning("Collector %s sample timed out", self.name)
            except Exception as exc:
                self._pending = None
                kind = classify(exc)
                failures = self.collector.last_failures + (
                    CollectorFailure(kind, "cycle", str(exc)),
                )
                if kind is FailureKind.UNEXPECTED:
                    LOGGER.exception("Collector %s cycle failed", self.name)
                else:
                    LOGGER.warning("Collector %s cycle failed (%s): %s", self.name, kind.value, exc)
            else:
                # Stop was requested while sampling; discard the late result
                if self._stop_event.is_set():
                    return
                self._store.publish(self.name, value)
                failures = self.collector.last_failures

        if self._stop_event.is_set():
            return
        self._cycles += 1
        self._store.set_status(CollectorStatus(self.name, True, self._cycles, failures))

    def _await(self, future: Future[Any]) -> Any:
        done, _ = wait([future], timeout=self._sample_timeout)
        if not done:
            raise _SampleTimeout()
        return future.result()


class TelemetryScheduler:
    """
    Runs every collector on its own interval in its own thread.

    A slow or failing collector never delays the others. Consumers read the
    results from the SnapshotStore at any time.
    """

    def __init__(
        self,
        store: SnapshotStore | None = None,
        config: MonitorConfig | None = None,
        collectors: Iterable[Collector] | None = None,
    ) -> None:
        """
        Initialize the TelemetryScheduler.

        Args:
            store: Destination for published snapshots. A new store is created when omitted.
            config: Intervals and timeouts. Defaults to MonitorConfig().
            collectors: Collectors to drive. Defaults to host, processes and connections.
        """
        self._config = config or MonitorConfig()
        self._store = store or SnapshotStore()
        collectors = list(collectors) if collectors is not None else default_collectors()

        self._tasks: dict[str, CollectorTask] = {}
        for collector in collectors:
            self._tasks[collector.name] = CollectorTask(
                collector,
                self._store,
                interval=getattr(self._config.intervals, collector.name, DEFAULT_INTERVAL),
                sample_timeout=self._config.sample_timeout,
            )

        self._processes = next(
            (c for c in collectors if isinstance(c, ProcessTableCollector)), None
        )

    @property
    def store(self) -> SnapshotStore:
        """The store snapshots are published to."""
        return self._store

    @property
    def is_running(self) -> bool:
        """Check if any collector loop is running."""
        return any(task.is_running for task in self._tasks.values())

    @property
    def running_collectors(self) -> list[str]:
        """Names of collectors whose loops are running."""
        return [name for name, task in self._tasks.items() if task.is_running]

    def task(self, name: str) -> CollectorTask:
        """Get the task driving the named collector."""
        return self._tasks[name]

    def start(self) -> None:
        """Start one loop per collector. Collectors that fail to open are skipped."""
        for task in self._tasks.values():
            task.start()

    def stop(self, timeout: float | None = None) -> None:
        """
        Stop every collector loop and wait until all have exited.

        Args:
            timeout: Per-collector wait in seconds. Defaults to config.stop_timeout.
        """
        if timeout is None:
            timeout = self._config.stop_timeout

        # Signal everyone first so the loops wind down in parallel
        for task in self._tasks.values():
            task.cancel()
        for task in self._tasks.values():
            task.join(timeout)

    def terminate(self, pid: int) -> TerminateResult:
        """Kill a process through the process table collector."""
        if self._processes is None:
            return TerminateResult(
                pid, False, FailureKind.UNEXPECTED, "process table collector not configured"
            )
        return self._processes.terminate(pid)
