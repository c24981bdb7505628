"""Threshold alerts on host metrics."""

import logging
import time
from dataclasses import dataclass
from enum import Enum

from peaktop.config import ThresholdConfig
from peaktop.models import HostMetrics

LOGGER = logging.getLogger(__name__)


class AlertKind(Enum):
    """Resources an alert can be raised for."""

    CPU = "CPU"
    MEMORY = "Memory"
    DISK = "Disk"


@dataclass(slots=True, frozen=True)
class Alert:
    """A threshold crossing worth telling the user about."""

    kind: AlertKind
    title: str
    message: str
    value: float
    threshold: float


class ThresholdMonitor:
    """
    Raises an alert when a host metric exceeds its threshold.

    The same kind of alert is raised at most once per cooldown window.
    """

    def __init__(self, config: ThresholdConfig | None = None) -> None:
        self._config = config or ThresholdConfig()
        self._last_alert: dict[AlertKind, float] = {}

    @property
    def enabled(self) -> bool:
        """Whether alerts are raised at all."""
        return self._config.enable_alerts

    def check(self, metrics: HostMetrics, now: float | None = None) -> list[Alert]:
        """
        Compare host metrics against the configured thresholds.

        Args:
            metrics: Latest host metrics snapshot.
            now: Current monotonic time; defaults to time.monotonic().

        Returns:
            Alerts to deliver now, possibly empty.
        """
        if not self._config.enable_alerts:
            return []
        if now is None:
            now = time.monotonic()

        thresholds = self._config
        candidates = (
            (AlertKind.CPU, "High CPU Usage", metrics.cpu_percent, thresholds.cpu),
            (AlertKind.MEMORY, "High Memory Usage", metrics.memory_percent, thresholds.memory),
            (AlertKind.DISK, "Low Disk Space", metrics.disk_percent, thresholds.disk),
        )

        alerts: list[Alert] = []
        for kind, title, value, threshold in candidates:
            if value <= threshold or not self._cooled_down(kind, now):
                continue
            self._last_alert[kind] = now
            message = f"{kind.value} usage is at {value:.0f}%"
            alert = Alert(kind, title, message, value, threshold)
            LOGGER.info("%s: %s", alert.title, alert.message)
            alerts.append(alert)
        return alerts

    def _cooled_down(self, kind: AlertKind, now: float) -> bool:
        last = self._last_alert.get(kind)
        return last is None or now - last > self._config.cooldown_seconds
