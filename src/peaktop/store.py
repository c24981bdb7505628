"""Published, read-consistent telemetry state for peaktop."""

import threading
import time
from dataclasses import dataclass, field
from typing import Any

from peaktop.connections import ConnectionCollector
from peaktop.errors import CollectorFailure
from peaktop.host import HostMetricsCollector
from peaktop.models import ConnectionEntry, HostMetrics, ProcessEntry
from peaktop.processes import ProcessTableCollector


@dataclass(slots=True, frozen=True)
class Snapshot:
    """A published value together with when and in which order it was published."""

    value: Any
    published_at: float
    sequence: int


@dataclass(slots=True, frozen=True)
class CollectorStatus:
    """Health of one collector as last reported by its scheduler task."""

    name: str
    running: bool
    cycles: int = 0
    last_failures: tuple[CollectorFailure, ...] = field(default_factory=tuple)
    init_error: str = ""


class SnapshotStore:
    """
    Latest immutable snapshot per collector slot.

    Writers replace the whole slot mapping under a lock (copy-on-write);
    readers only dereference the current mapping and never take the lock,
    so a reader sees either the old or the new snapshot, never a mix.
    """

    def __init__(self) -> None:
        self._write_lock = threading.Lock()
        self._snapshots: dict[str, Snapshot] = {}
        self._statuses: dict[str, CollectorStatus] = {}
        self._sequence = 0

    def publish(self, slot: str, value: Any) -> Snapshot:
        """Atomically replace the snapshot in ``slot`` with ``value``."""
        with self._write_lock:
            self._sequence += 1
            snapshot = Snapshot(value=value, published_at=time.time(), sequence=self._sequence)
            snapshots = dict(self._snapshots)
            snapshots[slot] = snapshot
            self._snapshots = snapshots
        return snapshot

    def set_status(self, status: CollectorStatus) -> None:
        """Replace the status record for one collector."""
        with self._write_lock:
            statuses = dict(self._statuses)
            statuses[status.name] = status
            self._statuses = statuses

    def latest(self, slot: str) -> Snapshot | None:
        """Get the latest snapshot for a slot, or None if nothing was published yet."""
        return self._snapshots.get(slot)

    def status(self, slot: str) -> CollectorStatus | None:
        """Get the latest status record for a collector."""
        return self._statuses.get(slot)

    @property
    def sequence(self) -> int:
        """Sequence number of the most recent publication in any slot."""
        return self._sequence

    @property
    def host(self) -> HostMetrics | None:
        """Latest host metrics."""
        snapshot = self._snapshots.get(HostMetricsCollector.name)
        return snapshot.value if snapshot is not None else None

    @property
    def processes(self) -> tuple[ProcessEntry, ...]:
        """Latest process table, ordered by CPU usage."""
        snapshot = self._snapshots.get(ProcessTableCollector.name)
        return snapshot.value if snapshot is not None else ()

    @property
    def connections(self) -> tuple[ConnectionEntry, ...]:
        """Latest established connections."""
        snapshot = self._snapshots.get(ConnectionCollector.name)
        return snapshot.value if snapshot is not None else ()
