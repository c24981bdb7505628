"""Shared fakes for peaktop tests."""

from collections import namedtuple

import pytest

CpuTimes = namedtuple("CpuTimes", ["user", "system"])
MemInfo = namedtuple("MemInfo", ["rss", "vms"])
NetIO = namedtuple("NetIO", ["bytes_sent", "bytes_recv"])
VirtualMemory = namedtuple("VirtualMemory", ["total", "available"])
DiskUsage = namedtuple("DiskUsage", ["total", "used", "free"])


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProcess:
    """Stand-in for the psutil.Process objects yielded by process_iter()."""

    def __init__(
        self,
        pid: int,
        name: str = "proc",
        cpu: float | None = 0.0,
        rss: int | None = 1024,
        exe: str | None = "/usr/bin/proc",
    ) -> None:
        self.pid = pid
        self.info = {
            "pid": pid,
            "name": name,
            "cpu_times": CpuTimes(cpu, 0.0) if cpu is not None else None,
            "memory_info": MemInfo(rss, rss) if rss is not None else None,
            "exe": exe,
        }


class FakeProcessTable:
    """Replaces psutil.process_iter with a controllable process list."""

    def __init__(self) -> None:
        self.processes: list[FakeProcess] = []
        self.calls = 0

    def set(self, *processes: FakeProcess) -> None:
        self.processes = list(processes)

    def __call__(self, attrs=None, ad_value=None):
        self.calls += 1
        return iter(list(self.processes))


@pytest.fixture
def clock() -> FakeClock:
    """A fake monotonic clock starting at t=0."""
    return FakeClock()


@pytest.fixture
def process_table(monkeypatch) -> FakeProcessTable:
    """Patch psutil.process_iter to enumerate a fake process table."""
    table = FakeProcessTable()
    monkeypatch.setattr("psutil.process_iter", table)
    return table
