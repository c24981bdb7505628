"""Per-process table sampling and process control."""

import logging
import time
from collections.abc import Callable, Iterable
from enum import Enum

import psutil

from peaktop.collector import Collector
from peaktop.errors import FailureKind, classify
from peaktop.models import ProcessEntry, TerminateResult
from peaktop.sampler import RateSampler

LOGGER = logging.getLogger(__name__)

# Attributes fetched in one pass per process by psutil.process_iter()
PROCESS_ATTRS = ["pid", "name", "cpu_times", "memory_info", "exe"]


class SortKey(Enum):
    """Sort keys for the process table."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    NAME = "name"


def sort_processes(
    processes: Iterable[ProcessEntry], key: SortKey = SortKey.CPU
) -> list[ProcessEntry]:
    """Sort processes by the given key. CPU and memory sort descending, ties by pid."""
    key_func = {
        SortKey.CPU: lambda p: (-p.cpu_percent, p.pid),
        SortKey.MEM: lambda p: (-p.memory_bytes, p.pid),
        SortKey.PID: lambda p: p.pid,
        SortKey.NAME: lambda p: (p.name.lower(), p.pid),
    }
    return sorted(processes, key=key_func[key])


def filter_processes(processes: Iterable[ProcessEntry], text: str) -> list[ProcessEntry]:
    """Keep processes whose name contains ``text``, ignoring case."""
    needle = text.strip().lower()
    if not needle:
        return list(processes)
    return [proc for proc in processes if needle in proc.name.lower()]


class ProcessTableCollector(Collector):
    """
    Builds a process table with CPU usage derived from processor-time deltas.

    CPU usage is computed from the cumulative user+system time each process
    has consumed since the previous cycle, divided by the elapsed wall time
    and the number of logical processors. The previous readings are rebuilt
    every cycle from the pids seen in that cycle only, so exited processes
    are forgotten immediately.
    """

    name = "processes"

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        processor_count: int | None = None,
    ) -> None:
        """
        Initialize the ProcessTableCollector.

        Args:
            clock: Monotonic time source used to timestamp each process reading.
            processor_count: Number of logical processors. Detected at open()
                when omitted.
        """
        super().__init__(clock)
        self._processor_count = processor_count
        self._cpu_times: RateSampler[int] = RateSampler()

    @property
    def processor_count(self) -> int:
        """Number of logical processors CPU usage is normalized against."""
        return self._processor_count or 1

    @property
    def tracked_pids(self) -> int:
        """Number of processes with a retained previous reading."""
        return len(self._cpu_times)

    def open(self) -> None:
        """Detect the processor count once."""
        if self._processor_count is None:
            self._processor_count = psutil.cpu_count(logical=True) or 1

    def close(self) -> None:
        """Drop all retained processor-time readings."""
        self._cpu_times.reset()

    def _sample(self) -> tuple[ProcessEntry, ...]:
        rows: dict[int, tuple[str, int, str]] = {}
        observations: list[tuple[int, float, float]] = []
        denied_cpu = 0

        # One enumeration pass; psutil skips processes that exit mid-iteration
        # and substitutes ad_value for fields we may not read.
        for proc in psutil.process_iter(attrs=PROCESS_ATTRS, ad_value=None):
            now = self._clock()
            info = proc.info
            pid = info.get("pid", proc.pid)
            if pid in rows:
                continue

            cpu_times = info.get("cpu_times")
            if cpu_times is None:
                denied_cpu += 1
            else:
                observations.append((pid, cpu_times.user + cpu_times.system, now))

            memory_info = info.get("memory_info")
            rows[pid] = (
                info.get("name") or "",
                memory_info.rss if memory_info else 0,
                info.get("exe") or "",
            )

        known = {pid for pid, _, _ in observations if pid in self._cpu_times}
        rates = self._cpu_times.observe_cycle(observations)

        if denied_cpu:
            self._record(
                FailureKind.PERMISSION_DENIED,
                "cpu_times",
                f"{denied_cpu} processes without readable processor time",
            )
        anomalies = sum(1 for pid in known if rates[pid] is None)
        if anomalies:
            self._record(
                FailureKind.CLOCK_ANOMALY,
                "cpu_times",
                f"{anomalies} processes without a rate this cycle",
            )

        scale = 100.0 / self.processor_count
        entries = [
            ProcessEntry(
                pid=pid,
                name=name,
                cpu_percent=self._cpu_percent(rates.get(pid), scale),
                memory_bytes=memory,
                executable_path=path,
            )
            for pid, (name, memory, path) in rows.items()
        ]
        return tuple(sort_processes(entries, SortKey.CPU))

    @staticmethod
    def _cpu_percent(rate: float | None, scale: float) -> float:
        if rate is None:
            return 0.0
        return max(0.0, min(100.0, rate * scale))

    def terminate(self, pid: int) -> TerminateResult:
        """
        Forcefully terminate a process.

        Never raises; failures are reported in the returned TerminateResult.

        Args:
            pid: Id of the process to kill.
        """
        try:
            psutil.Process(pid).kill()
        except (psutil.NoSuchProcess, ValueError) as exc:
            # ValueError: negative pid, or pid 0 which would signal the whole group
            LOGGER.info("Terminate %d failed: %s", pid, exc)
            return TerminateResult(pid, False, FailureKind.NO_SUCH_PROCESS, str(exc))
        except (psutil.Error, OSError) as exc:
            kind = classify(exc)
            if kind is not FailureKind.PERMISSION_DENIED:
                kind = FailureKind.UNEXPECTED
            LOGGER.warning("Terminate %d failed (%s): %s", pid, kind.value, exc)
            return TerminateResult(pid, False, kind, str(exc))

        LOGGER.info("Terminated process %d", pid)
        return TerminateResult(pid, True)
