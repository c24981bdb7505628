"""Established network connection sampling."""

import csv
import io
import logging
import socket
from collections import Counter
from collections.abc import Iterable, Iterator
from datetime import datetime, timezone
from typing import Any

import psutil

from peaktop.collector import Collector
from peaktop.errors import FailureKind
from peaktop.models import UNKNOWN_PROCESS, ConnectionEntry, ConnectionStats

LOGGER = logging.getLogger(__name__)

EXPORT_FIELDS = [
    "timestamp",
    "process",
    "pid",
    "protocol",
    "local_address",
    "remote_address",
    "state",
    "traffic_bytes",
]


def protocol_name(family: int, sock_type: int) -> str:
    """Return a short protocol label such as 'TCP' or 'UDP6'."""
    base = "UDP" if sock_type == socket.SOCK_DGRAM else "TCP"
    return base + "6" if family == socket.AF_INET6 else base


def filter_connections(
    connections: Iterable[ConnectionEntry],
    protocol: str | None = None,
    process: str = "",
    address: str = "",
) -> list[ConnectionEntry]:
    """
    Narrow a connection table down. Every given criterion must match.

    Args:
        connections: Entries to filter.
        protocol: Exact protocol label such as 'TCP' or 'TCP6', ignoring case.
        process: Substring of the owning process name, ignoring case.
        address: Substring of either the local or the remote address.
    """
    wanted = protocol.upper() if protocol else None
    owner = process.strip().lower()
    address = address.strip()
    return [
        conn
        for conn in connections
        if (wanted is None or conn.protocol.upper() == wanted)
        and (not owner or owner in conn.process_name.lower())
        and (not address or address in conn.local_address or address in conn.remote_address)
    ]


def parse_connection_query(text: str) -> tuple[str | None, str, str]:
    """
    Split a search string into (protocol, process, address) filter criteria.

    ``proto:tcp6`` and ``addr:10.0.`` set the protocol and address; any other
    words make up the process name.
    """
    protocol: str | None = None
    address = ""
    words: list[str] = []
    for token in text.split():
        key, sep, value = token.partition(":")
        if sep and key.lower() == "proto":
            protocol = value or None
        elif sep and key.lower() == "addr":
            address = value
        else:
            words.append(token)
    return protocol, " ".join(words), address


def connection_stats(connections: Iterable[ConnectionEntry], limit: int = 5) -> ConnectionStats:
    """Count active connections and rank owning processes by how many they hold."""
    connections = list(connections)
    per_owner = Counter(conn.process_name for conn in connections)
    ranked = sorted(per_owner.items(), key=lambda item: (-item[1], item[0].lower()))
    return ConnectionStats(len(connections), tuple(ranked[:limit]))


def export_connections(
    connections: Iterable[ConnectionEntry], timestamp: datetime | None = None
) -> str:
    """
    Render a connection table as CSV with a header row.

    Missing pids and unknown traffic are written as empty cells.
    """
    stamp = (timestamp or datetime.now(timezone.utc)).isoformat()
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_FIELDS, lineterminator="\n")
    writer.writeheader()
    for conn in connections:
        writer.writerow(
            {
                "timestamp": stamp,
                "process": conn.process_name,
                "pid": conn.pid if conn.pid is not None else "",
                "protocol": conn.protocol,
                "local_address": f"{conn.local_address}:{conn.local_port}",
                "remote_address": f"{conn.remote_address}:{conn.remote_port}",
                "state": conn.state,
                "traffic_bytes": (
                    conn.cumulative_traffic if conn.cumulative_traffic is not None else ""
                ),
            }
        )
    return buffer.getvalue()


class ConnectionCollector(Collector):
    """
    Lists established TCP sessions and, where possible, the process owning each.

    Uses the system-wide connection table. When the OS refuses it (macOS
    without root), falls back to walking the connections of every process
    this user may inspect.
    """

    name = "connections"

    def __init__(self, kind: str = "tcp") -> None:
        """
        Initialize the ConnectionCollector.

        Args:
            kind: psutil connection kind to enumerate ('tcp', 'tcp4', 'tcp6', 'inet').
        """
        super().__init__()
        self._kind = kind

    def _sample(self) -> tuple[ConnectionEntry, ...]:
        names: dict[int, str] = {}
        entries: list[ConnectionEntry] = []

        for pid, owner, conn in self._enumerate():
            if conn.status != psutil.CONN_ESTABLISHED or not conn.raddr:
                continue
            if owner is None:
                owner = self._resolve_name(pid, names)
            entries.append(
                ConnectionEntry(
                    protocol=protocol_name(conn.family, conn.type),
                    local_address=conn.laddr.ip,
                    local_port=conn.laddr.port,
                    remote_address=conn.raddr.ip,
                    remote_port=conn.raddr.port,
                    state=conn.status,
                    process_name=owner,
                    pid=pid or None,
                )
            )

        unresolved = sum(1 for name in names.values() if name == UNKNOWN_PROCESS)
        if unresolved:
            self._record(
                FailureKind.PERMISSION_DENIED,
                "owner",
                f"{unresolved} owning processes could not be named",
            )

        entries.sort(
            key=lambda c: (c.process_name.lower(), c.pid or 0, c.remote_address, c.remote_port)
        )
        return tuple(entries)

    def _enumerate(self) -> Iterator[tuple[int | None, str | None, Any]]:
        """Yield (pid, process name or None, connection) triples."""
        try:
            connections = psutil.net_connections(kind=self._kind)
        except psutil.AccessDenied as exc:
            self._record(FailureKind.PERMISSION_DENIED, "net_connections", str(exc))
            LOGGER.debug("System-wide connection table denied, walking per-process tables")
            yield from self._enumerate_per_process()
            return

        for conn in connections:
            yield conn.pid, None, conn

    def _enumerate_per_process(self) -> Iterator[tuple[int | None, str | None, Any]]:
        for proc in psutil.process_iter(attrs=["pid", "name"], ad_value=None):
            try:
                # Process.connections() was renamed in psutil 6.0
                if hasattr(proc, "net_connections"):
                    connections = proc.net_connections(kind=self._kind)
                else:
                    connections = proc.connections(kind=self._kind)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            name = proc.info.get("name") or UNKNOWN_PROCESS
            for conn in connections:
                yield proc.pid, name, conn

    @staticmethod
    def _resolve_name(pid: int | None, names: dict[int, str]) -> str:
        if not pid:
            return UNKNOWN_PROCESS
        if pid not in names:
            try:
                names[pid] = psutil.Process(pid).name() or UNKNOWN_PROCESS
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                names[pid] = UNKNOWN_PROCESS
        return names[pid]
