"""Data models for peaktop."""

from dataclasses import dataclass

from peaktop.errors import FailureKind

# Owner name reported when the OS does not expose which process holds a socket.
UNKNOWN_PROCESS = "Unknown"


@dataclass(slots=True, frozen=True)
class BatteryStatus:
    """Charge level of the main battery."""

    percent: float  # 0.0 - 100.0
    charging: bool  # False when unplugged or unknown


@dataclass(slots=True, frozen=True)
class HostMetrics:
    """Immutable snapshot of host-wide resource usage."""

    cpu_percent: float  # 0.0 - 100.0
    memory_used_bytes: int
    memory_total_bytes: int
    memory_free_bytes: int
    memory_percent: float  # 0.0 - 100.0
    disk_used_bytes: int
    disk_total_bytes: int
    disk_free_bytes: int
    disk_percent: float  # 0.0 - 100.0
    network_download_bytes_per_sec: float
    network_upload_bytes_per_sec: float
    battery: BatteryStatus | None = None  # None on machines without a battery


@dataclass(slots=True, frozen=True)
class ProcessEntry:
    """Immutable snapshot of one process in the process table."""

    pid: int
    name: str
    cpu_percent: float  # 0.0 - 100.0, share of all processors
    memory_bytes: int  # Resident set size
    executable_path: str = ""  # Empty when the OS denies access


@dataclass(slots=True, frozen=True)
class ConnectionEntry:
    """Immutable snapshot of one established network connection."""

    protocol: str  # 'TCP', 'TCP6'
    local_address: str
    local_port: int
    remote_address: str
    remote_port: int
    state: str
    process_name: str = UNKNOWN_PROCESS
    pid: int | None = None
    cumulative_traffic: int | None = None  # Bytes, display only


@dataclass(slots=True, frozen=True)
class TerminateResult:
    """Outcome of a kill request for a single process."""

    pid: int
    success: bool
    reason: FailureKind | None = None
    message: str = ""


@dataclass(slots=True, frozen=True)
class ConnectionStats:
    """Summary of one connection table."""

    active_connections: int
    # (owner name, connection count), busiest owner first
    top_processes: tuple[tuple[str, int], ...] = ()
