"""OS facts provider for procsnap, backed by psutil."""

import logging
import threading
import time
from dataclasses import dataclass

import psutil

logger = logging.getLogger(__name__)

ROOT_MOUNT = "/"

_STATUS_LABELS = {
    psutil.STATUS_RUNNING: "Running",
    psutil.STATUS_SLEEPING: "Sleeping",
    psutil.STATUS_IDLE: "Idle",
}

# Attributes to fetch per process; uid is POSIX only
_PROCESS_ATTRS = [
    "pid",
    "ppid",
    "name",
    "cmdline",
    "cpu_percent",
    "memory_info",
    "status",
    "uids" if psutil.POSIX else "username",
]


@dataclass(slots=True, frozen=True)
class RawProcess:
    """Live per-process reading taken while the system handle is locked."""

    pid: int
    ppid: int | None
    name: str
    cmdline: list[str]
    user_id: int | str | None
    cpu_percent: float
    memory: int  # RSS bytes
    status: str  # psutil status string


@dataclass(slots=True, frozen=True)
class DiskUsage:
    """Mounted disk with its capacity."""

    mount_point: str
    total: int
    available: int


def map_status(status: str | None) -> str:
    """Map a psutil status string to Running, Sleeping, Idle or Unknown."""
    return _STATUS_LABELS.get(status, "Unknown")


def aggregate_disks(disks: list[DiskUsage]) -> tuple[int, int, int]:
    """
    Sum (total, used, free) bytes over disks mounted at the root path.

    Secondary mounts (removable media, network shares, overlays) are ignored.
    """
    total = used = free = 0
    for disk in disks:
        if disk.mount_point != ROOT_MOUNT:
            continue
        total += disk.total
        used += disk.total - disk.available
        free += disk.available
    return total, used, free


class SystemHandle:
    """
    Cached view of OS process and system facts.

    Readings are only updated by ``refresh()``; every read returns what the last
    refresh captured. Callers share the handle through ``lock``.
    """

    def __init__(self) -> None:
        """Initialize the handle and take a first reading."""
        self.lock = threading.Lock()
        self._processes: list[RawProcess] = []
        self._handles: dict[int, psutil.Process] = {}
        self._cpu_usage: list[float] = []
        self._memory: tuple[int, int] = (0, 0)
        self._uptime = 0
        self._load_average: tuple[float, float, float] = (0.0, 0.0, 0.0)
        self._network_totals: tuple[int, int] = (0, 0)
        self._disks: list[DiskUsage] = []
        # First refresh also primes cpu_percent (first call returns 0.0)
        self.refresh()

    def refresh(self) -> None:
        """Re-read processes, CPU, memory, load, network counters and disks."""
        self._processes, self._handles = self._scan_processes()
        self._cpu_usage = psutil.cpu_percent(percpu=True)

        mem = psutil.virtual_memory()
        self._memory = (mem.total, mem.total - mem.available)

        self._uptime = int(time.time() - psutil.boot_time())
        self._load_average = psutil.getloadavg()

        counters = psutil.net_io_counters(pernic=True)
        self._network_totals = (
            sum(nic.bytes_recv for nic in counters.values()),
            sum(nic.bytes_sent for nic in counters.values()),
        )

        self._disks = self._scan_disks()

    def processes(self) -> list[RawProcess]:
        return list(self._processes)

    def cpu_usage(self) -> list[float]:
        return list(self._cpu_usage)

    def memory(self) -> tuple[int, int]:
        """Get (total, used) memory in bytes."""
        return self._memory

    def uptime(self) -> int:
        return self._uptime

    def load_average(self) -> tuple[float, float, float]:
        return self._load_average

    def network_totals(self) -> tuple[int, int]:
        """Get cumulative (received, sent) bytes summed over all interfaces."""
        return self._network_totals

    def disks(self) -> list[DiskUsage]:
        return list(self._disks)

    def kill(self, pid: int) -> bool:
        """
        Request termination of ``pid`` as seen by the last refresh.

        Returns:
            True if the OS accepted the request, False if the pid is unknown,
            has exited since, or may not be signalled (by this user, or at all
            as with pid 0).
        """
        proc = self._handles.get(pid)
        if proc is None:
            return False
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            logger.warning("Access denied killing process %d", pid)
            return False
        except ValueError:
            # psutil refuses to signal pid 0
            logger.warning("Refusing to kill process %d", pid)
            return False
        logger.info("Sent kill to process %d", pid)
        return True

    def _scan_processes(self) -> tuple[list[RawProcess], dict[int, psutil.Process]]:
        """
        Read every live process.

        Handles NoSuchProcess, AccessDenied and ZombieProcess by skipping the
        process.
        """
        processes: list[RawProcess] = []
        handles: dict[int, psutil.Process] = {}

        for proc in psutil.process_iter(attrs=_PROCESS_ATTRS):
            try:
                info = proc.info

                if "uids" in info:
                    uids = info["uids"]
                    user_id = uids.real if uids else None
                else:
                    user_id = info.get("username")

                mem_info = info.get("memory_info")

                processes.append(
                    RawProcess(
                        pid=info["pid"],
                        ppid=info.get("ppid"),
                        name=info.get("name") or "",
                        cmdline=info.get("cmdline") or [],
                        user_id=user_id,
                        cpu_percent=info.get("cpu_percent") or 0.0,
                        memory=mem_info.rss if mem_info else 0,
                        status=info.get("status") or "",
                    )
                )
                handles[proc.pid] = proc
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        return processes, handles

    def _scan_disks(self) -> list[DiskUsage]:
        disks: list[DiskUsage] = []
        for part in psutil.disk_partitions():
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except OSError as exc:
                logger.debug("Skipping disk %s: %s", part.mountpoint, exc)
                continue
            disks.append(DiskUsage(part.mountpoint, usage.total, usage.free))
        return disks
