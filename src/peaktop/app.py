"""peaktop - Main Textual application."""

import argparse
import logging
from datetime import datetime
from pathlib import Path

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, Input, Static
from textual.widgets.data_table import CellDoesNotExist, RowDoesNotExist

from peaktop.alerts import ThresholdMonitor
from peaktop.config import MonitorConfig, load_config
from peaktop.connections import (
    ConnectionCollector,
    connection_stats,
    export_connections,
    filter_connections,
    parse_connection_query,
)
from peaktop.host import HostMetricsCollector
from peaktop.logging_config import configure_logging
from peaktop.models import ConnectionEntry, HostMetrics, ProcessEntry
from peaktop.processes import ProcessTableCollector, SortKey, filter_processes, sort_processes
from peaktop.scheduler import TelemetryScheduler
from peaktop.store import SnapshotStore

LOGGER = logging.getLogger(__name__)


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{int(size):5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def format_rate(bytes_per_sec: float) -> str:
    """Format a byte rate as human-readable string."""
    return f"{format_bytes(bytes_per_sec).strip()}/s"


def _bar(percent: float, color: str) -> str:
    bar_len = min(int(percent / 5), 20)  # Cap at 20 chars
    return f"[{color}]█[/{color}]" * bar_len + "[dim]░[/dim]" * (20 - bar_len)


class HeaderStats(Static):
    """Header widget showing host CPU, memory, disk and network statistics."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._metrics: HostMetrics | None = None

    @property
    def metrics(self) -> HostMetrics | None:
        """The host metrics currently displayed."""
        return self._metrics

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_usage_info(), id="usage-info"),
            Static(self._get_network_info(), id="network-info"),
        )

    def update_stats(self, metrics: HostMetrics) -> None:
        """Update the statistics from a host metrics snapshot."""
        self._metrics = metrics
        try:
            self.query_one("#usage-info", Static).update(self._get_usage_info())
            self.query_one("#network-info", Static).update(self._get_network_info())
        except NoMatches:
            pass  # Widget not mounted yet

    def _get_usage_info(self) -> str:
        m = self._metrics
        if m is None:
            return "Loading host metrics..."
        # Use escaped brackets for the bar containers
        return (
            f"CPU \\[{_bar(m.cpu_percent, 'green')}] {m.cpu_percent:5.1f}%\n"
            f"Mem \\[{_bar(m.memory_percent, 'cyan')}] "
            f"{m.memory_used_bytes / 1024**3:.1f}G/{m.memory_total_bytes / 1024**3:.1f}G\n"
            f"Disk\\[{_bar(m.disk_percent, 'yellow')}] "
            f"{m.disk_used_bytes / 1024**3:.1f}G/{m.disk_total_bytes / 1024**3:.1f}G"
        )

    def _get_network_info(self) -> str:
        m = self._metrics
        if m is None:
            return ""
        info = (
            f"Down: {format_rate(m.network_download_bytes_per_sec)}\n"
            f"Up:   {format_rate(m.network_upload_bytes_per_sec)}\n"
            f"Free: {format_bytes(m.memory_free_bytes).strip()} RAM, "
            f"{format_bytes(m.disk_free_bytes).strip()} disk"
        )
        if m.battery is not None:
            state = "charging" if m.battery.charging else "on battery"
            info += f"\nBatt: {m.battery.percent:.0f}% ({state})"
        return info


class ProcessTable(Container):
    """Container for the process data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 2fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._current_pids: set[int] = set()
        self._processes: tuple[ProcessEntry, ...] = ()
        self._sort_key: SortKey = SortKey.CPU
        self._filter_text = ""

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    @property
    def filter_text(self) -> str:
        """Get the current name filter."""
        return self._filter_text

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        self._render_rows()
        return self._sort_key

    def set_filter(self, text: str) -> None:
        """Show only processes whose name contains ``text``."""
        self._filter_text = text
        self._render_rows()

    @property
    def selected_pid(self) -> int | None:
        """The pid of the row under the cursor, if any."""
        table = self.query_one("#process-table", DataTable)
        try:
            row_key = table.coordinate_to_cell_key(table.cursor_coordinate).row_key
        except CellDoesNotExist:
            return None
        return int(row_key.value) if row_key.value is not None else None

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("Name", key="name", width=24)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("RES", key="rss", width=8)
        table.add_column("Path", key="path")

    def update_processes(self, processes: tuple[ProcessEntry, ...]) -> None:
        """Replace the displayed process table with a newly published one."""
        self._processes = processes
        self._render_rows()

    def _render_rows(self) -> None:
        """Redraw rows in the current sort order, keeping the cursor on the same pid."""
        try:
            table = self.query_one("#process-table", DataTable)
        except NoMatches:
            return

        selected = self.selected_pid
        visible = sort_processes(
            filter_processes(self._processes, self._filter_text), self._sort_key
        )

        table.clear()
        for proc in visible:
            table.add_row(
                str(proc.pid),
                proc.name[:24],
                f"{proc.cpu_percent:5.1f}",
                format_bytes(proc.memory_bytes),
                proc.executable_path,
                key=str(proc.pid),
            )
        self._current_pids = {proc.pid for proc in visible}

        if selected in self._current_pids:
            try:
                table.move_cursor(row=table.get_row_index(str(selected)))
            except RowDoesNotExist:
                pass


class ConnectionTable(Container):
    """Container for the established connections table."""

    DEFAULT_CSS = """
    ConnectionTable {
        height: 1fr;
        border: solid $secondary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ConnectionTable."""
        super().__init__(*args, **kwargs)
        self._connections: tuple[ConnectionEntry, ...] = ()
        self._query = ""

    @property
    def connections(self) -> tuple[ConnectionEntry, ...]:
        """All connections from the latest snapshot, before filtering."""
        return self._connections

    @property
    def visible_connections(self) -> tuple[ConnectionEntry, ...]:
        """Connections matching the current filter query."""
        protocol, process, address = parse_connection_query(self._query)
        return tuple(filter_connections(self._connections, protocol, process, address))

    def compose(self) -> ComposeResult:
        """Compose the connection table."""
        yield DataTable(id="connection-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#connection-table", DataTable)
        table.cursor_type = "row"
        table.add_columns("Proto", "Local", "Remote", "State", "Process", "PID")

    def update_connections(self, connections: tuple[ConnectionEntry, ...]) -> None:
        """Replace the displayed connections."""
        self._connections = connections
        self._refresh_table()

    def set_filter(self, query: str) -> None:
        """Filter by ``proto:<name>``, ``addr:<text>`` and process name words."""
        self._query = query
        self._refresh_table()

    def _refresh_table(self) -> None:
        stats = connection_stats(self._connections)
        title = f"Connections: {stats.active_connections} active"
        if stats.top_processes:
            top = ", ".join(f"{name} ({count})" for name, count in stats.top_processes[:3])
            title += f" | top: {top}"
        self.border_title = title

        try:
            table = self.query_one("#connection-table", DataTable)
        except NoMatches:
            return
        table.clear()
        for conn in self.visible_connections:
            table.add_row(
                conn.protocol,
                f"{conn.local_address}:{conn.local_port}",
                f"{conn.remote_address}:{conn.remote_port}",
                conn.state,
                conn.process_name,
                str(conn.pid) if conn.pid is not None else "-",
            )


class PeaktopApp(App):
    """Main peaktop application."""

    TITLE = "peaktop"
    SUB_TITLE = "Resource Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 6;
    }

    Horizontal {
        height: auto;
    }

    #usage-info {
        width: 2fr;
        padding-right: 2;
    }

    #network-info {
        width: 1fr;
        padding-left: 2;
    }

    #filter-input, #connection-filter-input {
        display: none;
    }

    #filter-input.visible, #connection-filter-input.visible {
        display: block;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
        ("slash", "search", "Search"),
        ("c", "filter_connections", "Conn filter"),
        ("e", "export_connections", "Export"),
        ("k", "kill", "Kill"),
        ("escape", "clear_search", "Clear"),
    ]

    def __init__(
        self,
        config: MonitorConfig | None = None,
        scheduler: TelemetryScheduler | None = None,
    ) -> None:
        """Initialize the PeaktopApp."""
        super().__init__()
        self._config = config or MonitorConfig()
        self._scheduler = scheduler or TelemetryScheduler(SnapshotStore(), self._config)
        self._store = self._scheduler.store
        self._alerts = ThresholdMonitor(self._config.thresholds)
        self._seen: dict[str, int] = {}

    @property
    def scheduler(self) -> TelemetryScheduler:
        """The telemetry scheduler feeding this app."""
        return self._scheduler

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield Input(placeholder="Filter by process name", id="filter-input")
        yield ProcessTable()
        yield Input(
            placeholder="Filter connections: name, proto:tcp6, addr:10.0.",
            id="connection-filter-input",
        )
        yield ConnectionTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the telemetry scheduler when the app is mounted."""
        self._scheduler.start()
        # Poll the store; the engine never pushes into widgets
        self.set_interval(0.5, self._check_for_updates)

    def _fresh(self, slot: str):
        """Return the latest value for a slot if it changed since the last check."""
        snapshot = self._store.latest(slot)
        if snapshot is None or self._seen.get(slot) == snapshot.sequence:
            return None
        self._seen[slot] = snapshot.sequence
        return snapshot.value

    def _check_for_updates(self) -> None:
        """Check the store for new snapshots and refresh the UI."""
        metrics = self._fresh(HostMetricsCollector.name)
        if metrics is not None:
            self.query_one("#header-stats", HeaderStats).update_stats(metrics)
            for alert in self._alerts.check(metrics):
                self.notify(alert.message, title=alert.title, severity="warning")

        processes = self._fresh(ProcessTableCollector.name)
        if processes is not None:
            self.query_one(ProcessTable).update_processes(processes)

        connections = self._fresh(ConnectionCollector.name)
        if connections is not None:
            self.query_one(ConnectionTable).update_connections(connections)

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        new_sort_key = self.query_one(ProcessTable).cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_search(self) -> None:
        """Show the process name filter input."""
        filter_input = self.query_one("#filter-input", Input)
        filter_input.add_class("visible")
        filter_input.focus()

    def action_filter_connections(self) -> None:
        """Show the connection filter input."""
        filter_input = self.query_one("#connection-filter-input", Input)
        filter_input.add_class("visible")
        filter_input.focus()

    def action_clear_search(self) -> None:
        """Clear the process and connection filters and hide their inputs."""
        for input_id in ("#filter-input", "#connection-filter-input"):
            filter_input = self.query_one(input_id, Input)
            filter_input.value = ""
            filter_input.remove_class("visible")
        self.query_one(ProcessTable).set_filter("")
        self.query_one(ConnectionTable).set_filter("")
        self.query_one("#process-table", DataTable).focus()

    def on_input_changed(self, event: Input.Changed) -> None:
        """Apply the filter as the user types."""
        if event.input.id == "filter-input":
            self.query_one(ProcessTable).set_filter(event.value)
        elif event.input.id == "connection-filter-input":
            self.query_one(ConnectionTable).set_filter(event.value)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        """Hide the filter input, keeping the filter applied."""
        if event.input.id == "filter-input":
            event.input.remove_class("visible")
            self.query_one("#process-table", DataTable).focus()
        elif event.input.id == "connection-filter-input":
            event.input.remove_class("visible")
            self.query_one("#connection-table", DataTable).focus()

    def action_export_connections(self) -> Path | None:
        """Write the filtered connection table to a CSV file in the export directory."""
        connections = self.query_one(ConnectionTable).visible_connections
        now = datetime.now().astimezone()
        path = self._config.export_dir / f"peaktop-connections-{now:%Y%m%d-%H%M%S}.csv"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(export_connections(connections, now), encoding="utf-8")
        except OSError as exc:
            LOGGER.warning("Could not export connections to %s: %s", path, exc)
            self.notify(f"Export failed: {exc}", severity="error")
            return None
        LOGGER.info("Exported %d connections to %s", len(connections), path)
        self.notify(f"Exported {len(connections)} connections to {path}")
        return path

    def action_kill(self) -> None:
        """Kill the process under the cursor and report the outcome."""
        pid = self.query_one(ProcessTable).selected_pid
        if pid is None:
            self.notify("No process selected", severity="warning")
            return

        result = self._scheduler.terminate(pid)
        if result.success:
            self.notify(f"Killed process {pid}")
        else:
            reason = result.reason.value if result.reason else "failed"
            self.notify(f"Could not kill {pid}: {reason}", severity="error")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._scheduler.stop()
        self.exit()


def main(argv: list[str] | None = None) -> None:
    """Entry point for peaktop application."""
    parser = argparse.ArgumentParser(prog="peaktop", description="Terminal resource monitor")
    parser.add_argument("--config", help="Path to a YAML configuration file")
    parser.add_argument("--log-level", help="Override the configured log level")
    args = parser.parse_args(argv)

    overrides = {"logging": {"level": args.log_level.upper()}} if args.log_level else None
    config = load_config(args.config, overrides)
    configure_logging(config.logging)

    LOGGER.info("Starting peaktop")
    app = PeaktopApp(config)
    try:
        app.run()
    finally:
        app.scheduler.stop()


if __name__ == "__main__":
    main()
