"""Host-wide CPU, memory, disk and network sampling."""

import logging
import math
import os
import time
from collections.abc import Callable

import psutil

from peaktop.collector import Collector
from peaktop.errors import CollectorInitError, FailureKind
from peaktop.models import BatteryStatus, HostMetrics
from peaktop.sampler import RateSampler

LOGGER = logging.getLogger(__name__)

EMPTY_HOST_METRICS = HostMetrics(
    cpu_percent=0.0,
    memory_used_bytes=0,
    memory_total_bytes=0,
    memory_free_bytes=0,
    memory_percent=0.0,
    disk_used_bytes=0,
    disk_total_bytes=0,
    disk_free_bytes=0,
    disk_percent=0.0,
    network_download_bytes_per_sec=0.0,
    network_upload_bytes_per_sec=0.0,
)


def clamp_percent(value: float) -> float:
    """Clamp a percentage into [0, 100]."""
    return max(0.0, min(100.0, value))


def resolve_system_volume() -> str:
    """Return the mount point of the volume hosting the OS installation."""
    if os.name == "nt":
        return os.environ.get("SystemDrive", "C:") + "\\"
    return os.path.abspath(os.sep)


def is_loopback(interface: str) -> bool:
    """Check whether a network interface name denotes a loopback device."""
    lowered = interface.lower()
    return lowered.startswith("lo") or "loopback" in lowered


class HostMetricsCollector(Collector):
    """
    Samples CPU utilization, memory pressure, system disk usage and network throughput.

    Each sub-metric is read independently. A failing counter is recorded
    as a classified failure and its metric keeps the last known value,
    while the other metrics in the same cycle still update.
    """

    name = "host"

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        system_volume: str | None = None,
    ) -> None:
        """
        Initialize the HostMetricsCollector.

        Args:
            clock: Monotonic time source for network rate derivation.
            system_volume: Mount point to report disk usage for. Resolved
                once at open() when omitted.
        """
        super().__init__(clock)
        self._system_volume = system_volume
        self._network: RateSampler[str] = RateSampler()
        self._memory_total = 0
        self._disk_total = 0
        self._last = EMPTY_HOST_METRICS

    @property
    def system_volume(self) -> str | None:
        """The volume disk metrics are reported for."""
        return self._system_volume

    def open(self) -> None:
        """Cache near-invariant totals and prime the CPU counter."""
        try:
            self._memory_total = psutil.virtual_memory().total
        except (psutil.Error, OSError) as exc:
            raise CollectorInitError(f"memory counters unavailable: {exc}") from exc

        # First call returns a meaningless 0.0; later calls measure since this one
        try:
            psutil.cpu_percent(interval=None)
        except (psutil.Error, OSError) as exc:
            LOGGER.warning("CPU counter not ready: %s", exc)

        if self._system_volume is None:
            self._system_volume = resolve_system_volume()
        try:
            self._disk_total = psutil.disk_usage(self._system_volume).total
        except (psutil.Error, OSError) as exc:
            LOGGER.warning("Disk totals for %s unavailable: %s", self._system_volume, exc)
            self._disk_total = 0

        LOGGER.debug(
            "Host collector ready: memory_total=%d volume=%s disk_total=%d",
            self._memory_total,
            self._system_volume,
            self._disk_total,
        )

    def close(self) -> None:
        """Forget network baselines and the last published values."""
        self._network.reset()
        self._last = EMPTY_HOST_METRICS

    def _sample(self) -> HostMetrics:
        last = self._last
        values = {
            "cpu_percent": last.cpu_percent,
            "memory_used_bytes": last.memory_used_bytes,
            "memory_total_bytes": last.memory_total_bytes,
            "memory_free_bytes": last.memory_free_bytes,
            "memory_percent": last.memory_percent,
            "disk_used_bytes": last.disk_used_bytes,
            "disk_total_bytes": last.disk_total_bytes,
            "disk_free_bytes": last.disk_free_bytes,
            "disk_percent": last.disk_percent,
            "network_download_bytes_per_sec": last.network_download_bytes_per_sec,
            "network_upload_bytes_per_sec": last.network_upload_bytes_per_sec,
            "battery": last.battery,
        }

        for metric, reader in (
            ("cpu", self._read_cpu),
            ("memory", self._read_memory),
            ("disk", self._read_disk),
            ("network", self._read_network),
            ("battery", self._read_battery),
        ):
            try:
                values.update(reader())
            except Exception as exc:
                # Malformed fields surface as ValueError/TypeError; classified UNEXPECTED
                self._record_exception(metric, exc)

        self._last = HostMetrics(**values)
        return self._last

    def _read_cpu(self) -> dict[str, float]:
        value = psutil.cpu_percent(interval=None)
        if value is None or not math.isfinite(value) or value < 0:
            self._record(FailureKind.TRANSIENT, "cpu", f"invalid reading {value!r}")
            return {}
        return {"cpu_percent": clamp_percent(value)}

    def _read_memory(self) -> dict[str, float]:
        memory = psutil.virtual_memory()
        if self._memory_total <= 0:
            self._memory_total = memory.total
        total = self._memory_total
        if total <= 0:
            self._record(FailureKind.TRANSIENT, "memory", "total memory not yet available")
            return {
                "memory_used_bytes": 0,
                "memory_total_bytes": 0,
                "memory_free_bytes": 0,
                "memory_percent": 0.0,
            }

        free = max(0, min(memory.available, total))
        used = total - free
        return {
            "memory_used_bytes": used,
            "memory_total_bytes": total,
            "memory_free_bytes": free,
            "memory_percent": clamp_percent(used / total * 100),
        }

    def _read_disk(self) -> dict[str, float]:
        usage = psutil.disk_usage(self._system_volume or resolve_system_volume())
        if self._disk_total <= 0:
            self._disk_total = usage.total
        total = self._disk_total
        if total <= 0:
            self._record(FailureKind.TRANSIENT, "disk", "volume size not yet available")
            return {}

        free = max(0, min(usage.free, total))
        used = total - free
        return {
            "disk_used_bytes": used,
            "disk_total_bytes": total,
            "disk_free_bytes": free,
            "disk_percent": clamp_percent(used / total * 100),
        }

    def _read_network(self) -> dict[str, float]:
        counters = psutil.net_io_counters(pernic=True) or {}
        usable = [nic for name, nic in counters.items() if not is_loopback(name)]
        if not usable:
            self._network.reset()
            return {
                "network_download_bytes_per_sec": 0.0,
                "network_upload_bytes_per_sec": 0.0,
            }

        now = self._clock()
        received = sum(nic.bytes_recv for nic in usable)
        sent = sum(nic.bytes_sent for nic in usable)
        has_baseline = "recv" in self._network
        download = self._network.observe("recv", received, now)
        upload = self._network.observe("sent", sent, now)
        if has_baseline and (download is None or upload is None):
            self._record(FailureKind.CLOCK_ANOMALY, "network", "no rate this cycle")
        return {
            "network_download_bytes_per_sec": max(0.0, download or 0.0),
            "network_upload_bytes_per_sec": max(0.0, upload or 0.0),
        }

    def _read_battery(self) -> dict[str, BatteryStatus | None]:
        if not hasattr(psutil, "sensors_battery"):
            return {"battery": None}
        battery = psutil.sensors_battery()
        if battery is None:
            return {"battery": None}
        return {
            "battery": BatteryStatus(
                percent=clamp_percent(float(battery.percent)),
                charging=battery.power_plugged is True,
            )
        }
