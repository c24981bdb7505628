"""Tests for the ProcessTableCollector."""

import multiprocessing
import os
import random
import time

import psutil
import pytest

from conftest import FakeProcess
from peaktop.errors import FailureKind
from peaktop.models import ProcessEntry
from peaktop.processes import (
    ProcessTableCollector,
    SortKey,
    filter_processes,
    sort_processes,
)


def dummy_worker(duration: float = 60.0) -> None:
    """A dummy worker process that sleeps for a given duration."""
    try:
        time.sleep(duration)
    except (KeyboardInterrupt, SystemExit):
        pass


def _by_pid(entries: tuple[ProcessEntry, ...]) -> dict[int, ProcessEntry]:
    return {entry.pid: entry for entry in entries}


class TestProcessTableCollector:
    """Tests for CPU derivation and table maintenance."""

    def test_cpu_percent_from_processor_time_delta(self, process_table, clock):
        """Test pid 42 going from 1.000s to 1.250s over 1s on 4 CPUs reports 6.25%."""
        collector = ProcessTableCollector(clock=clock, processor_count=4)

        process_table.set(FakeProcess(42, cpu=1.000))
        collector.sample()
        clock.advance(1.0)
        process_table.set(FakeProcess(42, cpu=1.250))
        table = collector.sample()

        assert table[0].pid == 42
        assert table[0].cpu_percent == pytest.approx(6.25)

    def test_first_sighting_reports_zero(self, process_table, clock):
        """Test a newly seen pid reports 0% instead of extrapolating."""
        collector = ProcessTableCollector(clock=clock, processor_count=1)

        process_table.set(FakeProcess(7, cpu=5000.0))
        table = collector.sample()

        assert table[0].cpu_percent == 0.0

    def test_cpu_percent_clamped(self, process_table, clock):
        """Test more processor time than wall time on all CPUs clamps to 100%."""
        collector = ProcessTableCollector(clock=clock, processor_count=2)

        process_table.set(FakeProcess(1, cpu=0.0))
        collector.sample()
        clock.advance(1.0)
        process_table.set(FakeProcess(1, cpu=10.0))

        assert collector.sample()[0].cpu_percent == 100.0

    def test_counter_reset_reports_zero(self, process_table, clock):
        """Test a pid whose processor time went backwards reports no usage this cycle."""
        collector = ProcessTableCollector(clock=clock, processor_count=1)

        process_table.set(FakeProcess(9, cpu=50.0))
        collector.sample()
        clock.advance(1.0)
        process_table.set(FakeProcess(9, cpu=0.1))
        table = collector.sample()

        assert table[0].cpu_percent == 0.0
        kinds = [f.kind for f in collector.last_failures]
        assert FailureKind.CLOCK_ANOMALY in kinds

        clock.advance(1.0)
        process_table.set(FakeProcess(9, cpu=0.6))
        assert collector.sample()[0].cpu_percent == pytest.approx(50.0)

    def test_ordering_cpu_descending_then_pid(self, process_table, clock):
        """Test the table is ordered by CPU descending with ties broken by pid."""
        collector = ProcessTableCollector(clock=clock, processor_count=1)
        process_table.set(
            FakeProcess(30, cpu=0.0),
            FakeProcess(10, cpu=0.0),
            FakeProcess(20, cpu=0.0),
            FakeProcess(40, cpu=0.0),
        )
        collector.sample()
        clock.advance(1.0)
        process_table.set(
            FakeProcess(30, cpu=0.1),
            FakeProcess(10, cpu=0.0),
            FakeProcess(20, cpu=0.5),
            FakeProcess(40, cpu=0.0),
        )

        table = collector.sample()

        assert [entry.pid for entry in table] == [20, 30, 10, 40]

    def test_duplicate_pids_collapsed(self, process_table, clock):
        """Test a pid reported twice in one enumeration appears once."""
        collector = ProcessTableCollector(clock=clock, processor_count=1)
        process_table.set(FakeProcess(5, name="a"), FakeProcess(5, name="b"), FakeProcess(6))

        table = collector.sample()

        pids = [entry.pid for entry in table]
        assert sorted(pids) == [5, 6]
        assert _by_pid(table)[5].name == "a"

    def test_vanished_process_dropped(self, process_table, clock):
        """Test a process absent from cycle N+1 is gone from the table and from state."""
        collector = ProcessTableCollector(clock=clock, processor_count=1)
        process_table.set(FakeProcess(1), FakeProcess(2), FakeProcess(3))
        collector.sample()
        assert collector.tracked_pids == 3

        clock.advance(1.0)
        process_table.set(FakeProcess(1), FakeProcess(3))
        table = collector.sample()

        assert 2 not in _by_pid(table)
        assert collector.tracked_pids == 2

    def test_reused_pid_starts_fresh_after_absence(self, process_table, clock):
        """Test a pid that disappeared for a cycle is treated as a first sighting."""
        collector = ProcessTableCollector(clock=clock, processor_count=1)
        process_table.set(FakeProcess(8, cpu=1.0))
        collector.sample()
        clock.advance(1.0)
        process_table.set()
        collector.sample()
        clock.advance(1.0)
        process_table.set(FakeProcess(8, cpu=100.0))

        assert collector.sample()[0].cpu_percent == 0.0

    def test_state_bounded_under_random_churn(self, process_table, clock):
        """Test retained readings never exceed the processes alive in the last cycle."""
        rng = random.Random(7)
        collector = ProcessTableCollector(clock=clock, processor_count=8)
        alive: dict[int, float] = {}
        next_pid = 100

        for _ in range(200):
            for pid in list(alive):
                if rng.random() < 0.25:
                    del alive[pid]
            for _ in range(rng.randint(0, 15)):
                alive[next_pid] = 0.0
                next_pid += 1
            for pid in alive:
                alive[pid] += rng.uniform(0.0, 0.5)

            process_table.set(*(FakeProcess(pid, cpu=cpu) for pid, cpu in alive.items()))
            clock.advance(1.0)
            table = collector.sample()

            assert collector.tracked_pids == len(alive)
            assert len(table) == len(alive)
            assert len({entry.pid for entry in table}) == len(table)
            assert all(0.0 <= entry.cpu_percent <= 100.0 for entry in table)

    def test_partial_fields_on_access_denied(self, process_table, clock):
        """Test unreadable fields yield a partial entry rather than aborting."""
        collector = ProcessTableCollector(clock=clock, processor_count=1)
        process_table.set(
            FakeProcess(1, name="init", cpu=None, rss=None, exe=None),
            FakeProcess(2, name="shell", cpu=1.0),
        )

        table = _by_pid(collector.sample())

        assert table[1] == ProcessEntry(1, "init", 0.0, 0, "")
        assert table[2].executable_path == "/usr/bin/proc"
        assert collector.tracked_pids == 1
        kinds = [f.kind for f in collector.last_failures]
        assert kinds == [FailureKind.PERMISSION_DENIED]

    def test_close_discards_readings(self, process_table, clock):
        """Test close() drops all retained readings."""
        collector = ProcessTableCollector(clock=clock, processor_count=1)
        process_table.set(FakeProcess(1), FakeProcess(2))
        collector.sample()

        collector.close()

        assert collector.tracked_pids == 0

    def test_single_enumeration_per_cycle(self, process_table, clock):
        """Test one cycle enumerates the process list exactly once."""
        collector = ProcessTableCollector(clock=clock, processor_count=1)
        process_table.set(FakeProcess(1), FakeProcess(2))

        collector.sample()

        assert process_table.calls == 1

    def test_open_detects_processor_count(self):
        """Test open() detects at least one processor."""
        collector = ProcessTableCollector()
        collector.open()

        assert collector.processor_count >= 1

    def test_sample_real_system(self):
        """Test sampling the real process table."""
        collector = ProcessTableCollector()
        collector.open()

        collector.sample()
        table = collector.sample()

        assert len(table) > 0
        assert os.getpid() in _by_pid(table)
        assert len({entry.pid for entry in table}) == len(table)
        for entry in table:
            assert isinstance(entry, ProcessEntry)
            assert isinstance(entry.name, str)
            assert isinstance(entry.executable_path, str)
            assert 0.0 <= entry.cpu_percent <= 100.0
            assert entry.memory_bytes >= 0


class TestTerminate:
    """Tests for the kill control operation."""

    def test_terminate_child_process(self):
        """Test terminating a live child process succeeds."""
        p = multiprocessing.Process(target=dummy_worker, args=(60.0,))
        p.start()
        try:
            result = ProcessTableCollector().terminate(p.pid)

            assert result.success
            assert result.pid == p.pid
            assert result.reason is None
            p.join(timeout=5.0)
            assert not p.is_alive()
        finally:
            if p.is_alive():
                p.terminate()
            p.join(timeout=1.0)

    def test_terminate_missing_process(self, monkeypatch):
        """Test terminating a pid that does not exist reports a failure."""

        def missing(pid):
            raise psutil.NoSuchProcess(pid)

        monkeypatch.setattr(psutil, "Process", missing)

        result = ProcessTableCollector().terminate(999_999)

        assert not result.success
        assert result.reason is FailureKind.NO_SUCH_PROCESS

    def test_terminate_access_denied(self, monkeypatch):
        """Test a denied kill reports a permission failure without raising."""

        class Protected:
            def __init__(self, pid):
                self.pid = pid

            def kill(self):
                raise psutil.AccessDenied(self.pid)

        monkeypatch.setattr(psutil, "Process", Protected)

        result = ProcessTableCollector().terminate(1)

        assert not result.success
        assert result.reason is FailureKind.PERMISSION_DENIED

    def test_terminate_invalid_pid(self):
        """Test negative pids are rejected as missing processes."""
        result = ProcessTableCollector().terminate(-5)

        assert not result.success
        assert result.reason is FailureKind.NO_SUCH_PROCESS


class TestSortAndFilter:
    """Tests for process table sorting and filtering helpers."""

    ENTRIES = (
        ProcessEntry(3, "Bash", 5.0, 300),
        ProcessEntry(1, "init", 5.0, 100),
        ProcessEntry(2, "python", 50.0, 200),
    )

    def test_sort_by_cpu(self):
        """Test CPU sort is descending with pid tie-break."""
        assert [p.pid for p in sort_processes(self.ENTRIES, SortKey.CPU)] == [2, 1, 3]

    def test_sort_by_memory(self):
        """Test memory sort is descending."""
        assert [p.pid for p in sort_processes(self.ENTRIES, SortKey.MEM)] == [3, 2, 1]

    def test_sort_by_pid(self):
        """Test pid sort is ascending."""
        assert [p.pid for p in sort_processes(self.ENTRIES, SortKey.PID)] == [1, 2, 3]

    def test_sort_by_name(self):
        """Test name sort ignores case."""
        assert [p.name for p in sort_processes(self.ENTRIES, SortKey.NAME)] == [
            "Bash",
            "init",
            "python",
        ]

    def test_filter_ignores_case(self):
        """Test filtering matches substrings case-insensitively."""
        assert [p.pid for p in filter_processes(self.ENTRIES, "BA")] == [3]

    def test_empty_filter_keeps_everything(self):
        """Test a blank filter returns all processes."""
        assert len(filter_processes(self.ENTRIES, "  ")) == 3
