"""Snapshot engine and background polling for procsnap."""

import logging
import threading
import time
from collections.abc import Callable
from queue import Queue

from procsnap.cache import StaticInfoCache
from procsnap.locking import hold
from procsnap.models import ProcessSnapshot, SystemStats
from procsnap.network import (
    MAX_PID,
    NetworkSamplerError,
    NetworkThroughputTracker,
    NetworkUsageSampler,
    default_sampler,
)
from procsnap.system import RawProcess, SystemHandle, aggregate_disks, map_status

logger = logging.getLogger(__name__)

Frame = tuple[list[ProcessSnapshot], SystemStats]

DEFAULT_LOCK_TIMEOUT = 5.0


class SnapshotEngine:
    """
    Produces consistent (process list, system stats) frames.

    The system handle and the network tracker form one lock domain and the
    static info cache another. The system lock is always released before the
    cache lock is taken.
    """

    def __init__(
        self,
        system: SystemHandle | None = None,
        sampler: NetworkUsageSampler | None = None,
        cache: StaticInfoCache | None = None,
        lock_timeout: float | None = DEFAULT_LOCK_TIMEOUT,
        prune_static_cache: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the SnapshotEngine.

        Args:
            system: OS facts provider. Defaults to a new SystemHandle.
            sampler: Per-process network sampler. Defaults to the platform's.
            cache: Static info cache. Defaults to an empty one.
            lock_timeout: Seconds to wait for each lock. None waits forever.
            prune_static_cache: Drop cache entries for exited processes.
            clock: Monotonic time source for network rates.
        """
        self._system = system if system is not None else SystemHandle()
        self._sampler = sampler if sampler is not None else default_sampler()
        self._cache = cache if cache is not None else StaticInfoCache()
        self.lock_timeout = lock_timeout
        self.prune_static_cache = prune_static_cache

        rx, tx = self._system.network_totals()
        self._network = NetworkThroughputTracker(rx, tx, clock=clock)

    @property
    def cache(self) -> StaticInfoCache:
        """Get the static info cache."""
        return self._cache

    def get_processes(self) -> Frame:
        """
        Take one snapshot of all processes and system stats.

        Raises:
            LockAcquisitionError: If a shared resource could not be locked.
        """
        with hold(self._system.lock, self.lock_timeout, "Failed to lock system state"):
            system = self._system
            system.refresh()
            raw_processes = system.processes()

            with hold(self._network.lock, self.lock_timeout, "Failed to lock network state"):
                rx_rate, tx_rate = self._network.sample(*system.network_totals())

            disk_total, disk_used, disk_free = aggregate_disks(system.disks())
            memory_total, memory_used = system.memory()

            stats = SystemStats(
                cpu_usage=system.cpu_usage(),
                memory_total=memory_total,
                memory_used=memory_used,
                memory_free=memory_total - memory_used,
                # Always 0; kept as computed
                memory_cached=memory_total - (memory_used + (memory_total - memory_used)),
                uptime=system.uptime(),
                load_avg=tuple(system.load_average()),
                network_rx_bytes=rx_rate,
                network_tx_bytes=tx_rate,
                disk_total_bytes=disk_total,
                disk_used_bytes=disk_used,
                disk_free_bytes=disk_free,
            )

        with hold(self._cache.lock, self.lock_timeout, "Failed to lock process cache"):
            network_usage = self._sample_network()
            if self.prune_static_cache:
                self._cache.prune(raw.pid for raw in raw_processes)
            processes = [self._build_snapshot(raw, network_usage) for raw in raw_processes]

        return processes, stats

    def kill_process(self, pid: int) -> bool:
        """
        Request termination of a process.

        Returns:
            True if the request was accepted, False if there is no such process.

        Raises:
            ValueError: If ``pid`` is not an unsigned 32-bit integer.
            LockAcquisitionError: If the system handle could not be locked.
        """
        if isinstance(pid, bool) or not isinstance(pid, int):
            raise ValueError(f"pid must be an integer: {pid!r}")
        if not 0 <= pid <= MAX_PID:
            raise ValueError(f"pid out of range: {pid}")
        with hold(self._system.lock, self.lock_timeout, "Failed to lock system state"):
            return self._system.kill(pid)

    def _sample_network(self) -> dict[int, tuple[int, int]]:
        try:
            return self._sampler.sample()
        except NetworkSamplerError as exc:
            logger.warning("Per-process network usage unavailable: %s", exc)
            return {}

    def _build_snapshot(
        self,
        raw: RawProcess,
        network_usage: dict[int, tuple[int, int]],
    ) -> ProcessSnapshot:
        static = self._cache.get_or_create(raw.pid, raw.name, raw.cmdline, raw.user_id)
        network_rx, network_tx = network_usage.get(raw.pid, (0, 0))
        return ProcessSnapshot(
            pid=raw.pid,
            ppid=raw.ppid or 0,
            name=static.name,
            cpu_usage=raw.cpu_percent,
            memory_usage=raw.memory,
            network_rx=network_rx,
            network_tx=network_tx,
            status=map_status(raw.status),
            user=static.user,
            command=static.command,
        )


class SystemMonitor:
    """
    Polls a SnapshotEngine from a daemon thread.

    Each frame is pushed to a thread-safe Queue. A failed cycle is logged and
    the loop keeps running.
    """

    def __init__(
        self,
        engine: SnapshotEngine,
        update_queue: Queue[Frame],
        poll_rate: float = 2.0,
    ) -> None:
        """
        Initialize the SystemMonitor.

        Args:
            engine: Engine to take snapshots from.
            update_queue: Thread-safe queue to push frames to.
            poll_rate: How often to poll the system (in seconds). Default 2.0s.
        """
        self._engine = engine
        self._queue = update_queue
        self._poll_rate = max(0.1, poll_rate)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def engine(self) -> SnapshotEngine:
        """Get the engine being polled."""
        return self._engine

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="SystemMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                processes, stats = self._engine.get_processes()
                self._queue.put((processes, stats))
            except Exception:
                logger.exception("Snapshot collection failed")

            # Wait for poll_rate seconds or until stop is requested
            self._stop_event.wait(timeout=self._poll_rate)
