"""Data models for procsnap."""

from dataclasses import asdict, dataclass


@dataclass(slots=True, frozen=True)
class ProcessStaticInfo:
    """Attributes assumed fixed for the lifetime of a process."""

    name: str
    command: str  # argv joined with spaces
    user: str  # uid as a string, or "-"


@dataclass(slots=True, frozen=True)
class ProcessSnapshot:
    """Immutable snapshot of a process state."""

    pid: int
    ppid: int  # 0 when the process has no parent
    name: str
    cpu_usage: float  # 0.0 - 100.0 * core_count
    memory_usage: int  # Bytes
    network_rx: int
    network_tx: int
    status: str  # 'Running', 'Sleeping', 'Idle' or 'Unknown'
    user: str
    command: str
    threads: int | None = None

    def to_dict(self) -> dict:
        """Return the snapshot as a plain dict."""
        return asdict(self)


@dataclass(slots=True)
class SystemStats:
    """Aggregate system metrics for one snapshot."""

    cpu_usage: list[float]
    memory_total: int
    memory_used: int
    memory_free: int
    memory_cached: int
    uptime: int
    load_avg: tuple[float, float, float]
    network_rx_bytes: int  # Bytes per second
    network_tx_bytes: int
    disk_total_bytes: int
    disk_used_bytes: int
    disk_free_bytes: int

    def to_dict(self) -> dict:
        """Return the stats as a plain dict."""
        data = asdict(self)
        data["load_avg"] = list(self.load_avg)
        return data


def frame_to_dict(processes: list[ProcessSnapshot], stats: SystemStats) -> dict:
    """Serialize one ``get_processes()`` result into JSON-ready data."""
    return {
        "processes": [proc.to_dict() for proc in processes],
        "stats": stats.to_dict(),
    }
