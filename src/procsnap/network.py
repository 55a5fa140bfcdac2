"""Network throughput tracking and per-process network sampling."""

import logging
import re
import subprocess
import sys
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

logger = logging.getLogger(__name__)

# Floor for the time between two samples, in seconds
MIN_ELAPSED = 0.001

MAX_PID = 0xFFFFFFFF

# Seconds to wait for nettop. Kept below the engine lock timeout since the
# sampler runs while the static info cache lock is held.
NETTOP_TIMEOUT = 3.0

NETTOP_COMMAND = ["nettop", "-L", "1", "-P", "-J", "bytes_in,bytes_out"]

# "<name>.<pid>,<bytes_in>,<bytes_out>,"
_NETTOP_LINE = re.compile(r"[^\s]+\.(\d+),(\d+),(\d+),")


class NetworkSamplerError(RuntimeError):
    """Raised when per-process network usage cannot be sampled."""


class NetworkThroughputTracker:
    """
    Convert cumulative rx/tx byte counters into byte rates.

    Keeps the previous (instant, rx, tx) sample and differences each new
    sample against it.
    """

    def __init__(
        self,
        rx: int,
        tx: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the tracker from a first counter reading.

        Args:
            rx: Cumulative bytes received at startup.
            tx: Cumulative bytes sent at startup.
            clock: Monotonic time source in seconds.
        """
        self.lock = threading.RLock()
        self._clock = clock
        self._state = (clock(), rx, tx)

    @property
    def state(self) -> tuple[float, int, int]:
        """Get the last (instant, rx, tx) sample."""
        with self.lock:
            return self._state

    def sample(self, rx: int, tx: int) -> tuple[int, int]:
        """
        Record a new counter reading and return the (rx, tx) rates in bytes/sec.

        A counter that went backwards yields a rate of 0 for that direction.
        """
        with self.lock:
            now = self._clock()
            last_time, last_rx, last_tx = self._state
            elapsed = max(now - last_time, MIN_ELAPSED)
            rates = (
                int(max(rx - last_rx, 0) / elapsed),
                int(max(tx - last_tx, 0) / elapsed),
            )
            self._state = (now, rx, tx)
        return rates


def parse_nettop_output(text: str, strict: bool = False) -> dict[int, tuple[int, int]]:
    """
    Parse ``nettop`` CSV output into a pid -> (bytes_in, bytes_out) mapping.

    Lines that do not look like a process row are skipped. A row whose pid does
    not fit in 32 bits is malformed: it is skipped, or raises when ``strict``.

    Raises:
        NetworkSamplerError: On a malformed row in strict mode.
    """
    usage: dict[int, tuple[int, int]] = {}
    for line in text.splitlines():
        match = _NETTOP_LINE.search(line)
        if match is None:
            continue
        pid, rx, tx = (int(group) for group in match.groups())
        if pid > MAX_PID:
            if strict:
                raise NetworkSamplerError(f"Invalid pid in nettop line: {line!r}")
            logger.debug("Skipping malformed nettop line: %r", line)
            continue
        usage[pid] = (rx, tx)
    return usage


class NetworkUsageSampler(ABC):
    """Source of per-process network byte counts."""

    @abstractmethod
    def sample(self) -> dict[int, tuple[int, int]]:
        """Return a pid -> (bytes received, bytes sent) mapping."""


class UnsupportedSampler(NetworkUsageSampler):
    """Sampler for platforms without per-process counters."""

    def sample(self) -> dict[int, tuple[int, int]]:
        return {}


class NettopSampler(NetworkUsageSampler):
    """Sampler backed by the macOS ``nettop`` utility."""

    def __init__(self, timeout: float | None = NETTOP_TIMEOUT, strict: bool = False) -> None:
        """
        Initialize the sampler.

        Args:
            timeout: Seconds to wait for nettop. None waits forever. Should
                stay below the engine lock timeout, or a slow run makes
                concurrent snapshots time out on the cache lock.
            strict: Fail the whole sample on a malformed row.
        """
        self.timeout = timeout
        self.strict = strict

    def sample(self) -> dict[int, tuple[int, int]]:
        try:
            result = subprocess.run(
                NETTOP_COMMAND,
                capture_output=True,
                text=True,
                errors="replace",
                check=True,
                timeout=self.timeout,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            raise NetworkSamplerError(f"Failed to execute nettop: {exc}") from exc
        return parse_nettop_output(result.stdout, strict=self.strict)


def default_sampler(platform: str | None = None) -> NetworkUsageSampler:
    """Pick the sampler variant for ``platform`` (defaults to ``sys.platform``)."""
    platform = sys.platform if platform is None else platform
    if platform == "darwin":
        return NettopSampler()
    return UnsupportedSampler()
