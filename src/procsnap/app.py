"""procsnap - Textual process viewer and command-line entry point."""

import argparse
import json
import logging
import time
from enum import Enum
from pathlib import Path
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, Static
from textual.widgets.data_table import CellDoesNotExist, DuplicateKey, RowDoesNotExist

from procsnap.locking import LockAcquisitionError
from procsnap.logging_config import setup_logger
from procsnap.models import ProcessSnapshot, SystemStats, frame_to_dict
from procsnap.monitor import Frame, SnapshotEngine, SystemMonitor

logger = logging.getLogger(__name__)


class SortKey(Enum):
    """Sort keys for the process table."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    USER = "user"
    NET = "net"


# Status label -> Rich colour
STATUS_COLORS = {
    "Running": "green",
    "Sleeping": "blue",
    "Idle": "grey50",
    "Unknown": "grey50",
}

USAGE_COLORS = {
    "critical": "red",
    "high": "yellow",
    "medium": "cyan",
    "low": "green",
}


def format_bytes(size: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{size:5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def format_rate(rate: int) -> str:
    """Format a byte rate as human-readable string."""
    return f"{format_bytes(rate).strip()}/s"


def format_uptime(seconds: int) -> str:
    """Format uptime as days, hours and minutes."""
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60
    return f"{days}d {hours}h {minutes}m"


def usage_class(percent: float) -> str:
    """Bucket a usage percentage into low, medium, high or critical."""
    if percent >= 90:
        return "critical"
    if percent >= 60:
        return "high"
    if percent >= 30:
        return "medium"
    return "low"


def format_status(status: str) -> str:
    """Colour a status label, falling back to Unknown."""
    label = status if status in STATUS_COLORS else "Unknown"
    color = STATUS_COLORS[label]
    return f"[{color}]{label}[/{color}]"


def _bar(percent: float, width: int = 20) -> str:
    bar_len = min(int(percent / (100 / width)), width)
    color = USAGE_COLORS[usage_class(percent)]
    return f"[{color}]█[/{color}]" * bar_len + "[dim]░[/dim]" * (width - bar_len)


class HeaderStats(Static):
    """Header widget showing CPU, memory, disk and network statistics."""

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
        self._stats: SystemStats | None = None

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_cpu_info(), id="cpu-info"),
            Static(self._get_system_info(), id="system-info"),
        )

    def update_stats(self, stats: SystemStats) -> None:
        """Update the statistics from a system stats frame."""
        self._stats = stats
        try:
            self.query_one("#cpu-info", Static).update(self._get_cpu_info())
            self.query_one("#system-info", Static).update(self._get_system_info())
        except NoMatches:
            pass  # Not mounted yet

    def _get_cpu_info(self) -> str:
        """Get CPU info display."""
        if self._stats is None or not self._stats.cpu_usage:
            return "Loading CPU info..."
        # Escaped brackets for the bar container
        return "\n".join(
            f"CPU{i:<2} \\[{_bar(usage)}] {usage:5.1f}%"
            for i, usage in enumerate(self._stats.cpu_usage)
        )

    def _get_system_info(self) -> str:
        """Get memory, disk, network, load and uptime display."""
        stats = self._stats
        if stats is None or stats.memory_total == 0:
            return "Loading system info..."

        mem_percent = stats.memory_used / stats.memory_total * 100
        disk_percent = (
            stats.disk_used_bytes / stats.disk_total_bytes * 100 if stats.disk_total_bytes else 0.0
        )
        load = stats.load_avg

        return (
            f"Mem \\[{_bar(mem_percent)}] "
            f"{format_bytes(stats.memory_used).strip()}/{format_bytes(stats.memory_total).strip()}\n"
            f"Disk\\[{_bar(disk_percent)}] "
            f"{format_bytes(stats.disk_used_bytes).strip()}/"
            f"{format_bytes(stats.disk_total_bytes).strip()}\n"
            f"Net: rx {format_rate(stats.network_rx_bytes)} "
            f"tx {format_rate(stats.network_tx_bytes)}\n"
            f"Load average: {load[0]:.2f} {load[1]:.2f} {load[2]:.2f}\n"
            f"Uptime: {format_uptime(stats.uptime)}"
        )


class ProcessTable(Container):
    """Container for the process data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._current_pids: set[int] = set()
        self._sort_key: SortKey = SortKey.CPU
        self._sort_reverse: bool = True  # Default: descending for CPU

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        self._sort_reverse = self._sort_key in (SortKey.CPU, SortKey.MEM, SortKey.NET)
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("PPID", key="ppid", width=8)
        table.add_column("USER", key="user", width=10)
        table.add_column("STATUS", key="status", width=9)
        table.add_column("CPU%", key="cpu", width=7)
        table.add_column("MEM", key="mem", width=8)
        table.add_column("RX", key="rx", width=8)
        table.add_column("TX", key="tx", width=8)
        table.add_column("Command", key="command")

    def selected_pid(self) -> int | None:
        """Get the pid of the row under the cursor."""
        table = self.query_one("#process-table", DataTable)
        if table.row_count == 0:
            return None
        try:
            row_key = table.coordinate_to_cell_key(table.cursor_coordinate).row_key
        except CellDoesNotExist:
            return None
        return int(row_key.value) if row_key.value is not None else None

    def update_processes(self, processes: list[ProcessSnapshot]) -> None:
        """
        Update the process table with new data.

        Uses update_cell for existing rows to avoid re-rendering the whole table.
        """
        table = self.query_one("#process-table", DataTable)
        sorted_processes = self.sort_processes(processes)
        new_pids = {proc.pid for proc in sorted_processes}

        for pid in self._current_pids - new_pids:
            try:
                table.remove_row(str(pid))
            except RowDoesNotExist:
                pass

        for proc in sorted_processes:
            row_key = str(proc.pid)
            if proc.pid in self._current_pids:
                self._update_row(table, row_key, proc)
            else:
                self._add_row(table, row_key, proc)

        self._current_pids = new_pids

    def sort_processes(self, processes: list[ProcessSnapshot]) -> list[ProcessSnapshot]:
        """Sort processes based on the current sort key."""
        key_func = {
            SortKey.CPU: lambda p: p.cpu_usage,
            SortKey.MEM: lambda p: p.memory_usage,
            SortKey.PID: lambda p: p.pid,
            SortKey.USER: lambda p: p.user.lower(),
            SortKey.NET: lambda p: p.network_rx + p.network_tx,
        }
        return sorted(processes, key=key_func[self._sort_key], reverse=self._sort_reverse)

    @staticmethod
    def _cells(proc: ProcessSnapshot) -> dict[str, str]:
        return {
            "pid": str(proc.pid),
            "ppid": str(proc.ppid),
            "user": proc.user[:10],
            "status": format_status(proc.status),
            "cpu": f"{proc.cpu_usage:5.1f}",
            "mem": format_bytes(proc.memory_usage),
            "rx": format_bytes(proc.network_rx),
            "tx": format_bytes(proc.network_tx),
            "command": (proc.command or proc.name)[:60],
        }

    def _update_row(self, table: DataTable, row_key: str, proc: ProcessSnapshot) -> None:
        """Update an existing row using update_cell for performance."""
        try:
            for column_key, value in self._cells(proc).items():
                table.update_cell(row_key, column_key, value)
        except CellDoesNotExist:
            pass  # Row was removed

    def _add_row(self, table: DataTable, row_key: str, proc: ProcessSnapshot) -> None:
        """Add a new row to the table."""
        try:
            table.add_row(*self._cells(proc).values(), key=row_key)
        except DuplicateKey:
            pass


class ProcsnapApp(App):
    """Main procsnap application."""

    TITLE = "procsnap"
    SUB_TITLE = "Process Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 7;
    }

    Horizontal {
        height: auto;
    }

    #cpu-info {
        width: 1fr;
        padding-right: 2;
    }

    #system-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
        ("k", "kill", "Kill"),
    ]

    def __init__(self, engine: SnapshotEngine | None = None, poll_rate: float = 2.0) -> None:
        """Initialize the ProcsnapApp."""
        super().__init__()
        self._engine = engine if engine is not None else SnapshotEngine()
        self._update_queue: Queue[Frame] = Queue()
        self._monitor = SystemMonitor(self._engine, self._update_queue, poll_rate=poll_rate)

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the system monitor when the app is mounted."""
        self._monitor.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Drain the queue and render the most recent frame."""
        frame = None
        while True:
            try:
                frame = self._update_queue.get_nowait()
            except Empty:
                break

        if frame is not None:
            self._update_ui(*frame)

    def _update_ui(self, processes: list[ProcessSnapshot], stats: SystemStats) -> None:
        """Update the UI with a new frame."""
        try:
            self.query_one("#header-stats", HeaderStats).update_stats(stats)
            self.query_one(ProcessTable).update_processes(processes)
        except NoMatches:
            logger.debug("Frame arrived before widgets were mounted")

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        new_sort_key = self.query_one(ProcessTable).cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_kill(self) -> None:
        """Kill the process under the cursor."""
        pid = self.query_one(ProcessTable).selected_pid()
        if pid is None:
            self.notify("No process selected", severity="warning")
            return
        try:
            killed = self._engine.kill_process(pid)
        except LockAcquisitionError as exc:
            self.notify(str(exc), severity="error")
            return
        if killed:
            self.notify(f"Killed {pid}")
        else:
            self.notify(f"Could not kill {pid}", severity="warning")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()


def build_parser() -> argparse.ArgumentParser:
    """Create the procsnap argument parser."""
    parser = argparse.ArgumentParser(prog="procsnap", description="Process monitor")
    parser.add_argument(
        "--interval",
        type=float,
        default=2.0,
        help="Seconds between snapshots (default: 2.0).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print a single snapshot as JSON and exit.",
    )
    parser.add_argument(
        "--prune-cache",
        action="store_true",
        help="Forget cached process names and commands once a process exits.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO).",
    )
    parser.add_argument("--log-file", type=Path, default=None, help="Append logs to this file.")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for procsnap."""
    args = build_parser().parse_args(argv)
    setup_logger(
        level=getattr(logging, args.log_level),
        log_file=args.log_file,
        console=args.json,
    )

    engine = SnapshotEngine(prune_static_cache=args.prune_cache)

    if args.json:
        # CPU and network rates need two readings
        time.sleep(max(0.1, args.interval))
        try:
            processes, stats = engine.get_processes()
        except LockAcquisitionError as exc:
            logger.error("%s", exc)
            return 1
        print(json.dumps(frame_to_dict(processes, stats), indent=2))
        return 0

    ProcsnapApp(engine, poll_rate=args.interval).run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
