"""Tests for peaktop data models."""

import dataclasses

import pytest

from peaktop.errors import FailureKind
from peaktop.host import EMPTY_HOST_METRICS
from peaktop.models import (
    UNKNOWN_PROCESS,
    BatteryStatus,
    ConnectionEntry,
    ProcessEntry,
    TerminateResult,
)


def test_process_entry_creation():
    """Test ProcessEntry dataclass creation."""
    entry = ProcessEntry(
        pid=123,
        name="test_process",
        cpu_percent=50.0,
        memory_bytes=1024000,
        executable_path="/usr/bin/test",
    )

    assert entry.pid == 123
    assert entry.name == "test_process"
    assert entry.cpu_percent == 50.0
    assert entry.memory_bytes == 1024000
    assert entry.executable_path == "/usr/bin/test"


def test_process_entry_path_defaults_empty():
    """Test the executable path is empty when not provided."""
    assert ProcessEntry(pid=1, name="init", cpu_percent=0.0, memory_bytes=0).executable_path == ""


def test_process_entry_is_frozen():
    """Test that ProcessEntry is immutable (frozen)."""
    entry = ProcessEntry(pid=1, name="init", cpu_percent=0.1, memory_bytes=10000)

    with pytest.raises(dataclasses.FrozenInstanceError):
        entry.pid = 999


def test_models_use_slots():
    """Test that models use __slots__ for memory efficiency."""
    entry = ProcessEntry(pid=1, name="init", cpu_percent=0.1, memory_bytes=10000)
    connection = ConnectionEntry("TCP", "127.0.0.1", 1, "127.0.0.1", 2, "ESTABLISHED")

    # Slots-based dataclasses don't have __dict__
    assert not hasattr(entry, "__dict__")
    assert not hasattr(connection, "__dict__")
    assert not hasattr(EMPTY_HOST_METRICS, "__dict__")


def test_connection_entry_defaults():
    """Test owner and traffic fields default to unknown."""
    connection = ConnectionEntry("TCP", "10.0.0.2", 50000, "1.1.1.1", 443, "ESTABLISHED")

    assert connection.process_name == UNKNOWN_PROCESS
    assert connection.pid is None
    assert connection.cumulative_traffic is None


def test_host_metrics_is_frozen():
    """Test that HostMetrics snapshots cannot be mutated in place."""
    with pytest.raises(dataclasses.FrozenInstanceError):
        EMPTY_HOST_METRICS.cpu_percent = 50.0


def test_terminate_result():
    """Test TerminateResult carries a reason only on failure."""
    ok = TerminateResult(pid=10, success=True)
    failed = TerminateResult(pid=11, success=False, reason=FailureKind.NO_SUCH_PROCESS)

    assert ok.reason is None
    assert failed.reason is FailureKind.NO_SUCH_PROCESS


def test_host_metrics_battery_defaults_none():
    """Test hosts without a battery report None, laptops a frozen BatteryStatus."""
    assert EMPTY_HOST_METRICS.battery is None

    battery = BatteryStatus(percent=55.0, charging=True)
    metrics = dataclasses.replace(EMPTY_HOST_METRICS, battery=battery)

    assert metrics.battery.charging is True
    with pytest.raises(dataclasses.FrozenInstanceError):
        battery.percent = 10.0
