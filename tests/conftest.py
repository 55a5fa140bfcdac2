"""Shared fixtures for procsnap tests."""

import threading

import pytest

from procsnap.network import NetworkUsageSampler
from procsnap.system import DiskUsage, RawProcess, SystemHandle


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSystem(SystemHandle):
    """SystemHandle whose readings are set by the test instead of psutil."""

    def __init__(
        self,
        processes: list[RawProcess] | None = None,
        network_totals: tuple[int, int] = (0, 0),
        disks: list[DiskUsage] | None = None,
        memory: tuple[int, int] = (16 * 1024**3, 8 * 1024**3),
    ) -> None:
        self.next_processes = processes or []
        self.next_network_totals = network_totals
        self.next_disks = disks or []
        self.next_memory = memory
        self.next_handles: dict = {}
        self.refresh_count = 0
        super().__init__()

    def refresh(self) -> None:
        self.refresh_count += 1
        self._processes = list(self.next_processes)
        self._handles = dict(self.next_handles)
        self._cpu_usage = [10.0, 20.0]
        self._memory = self.next_memory
        self._uptime = 3600
        self._load_average = (1.0, 0.5, 0.25)
        self._network_totals = self.next_network_totals
        self._disks = list(self.next_disks)


class StaticSampler(NetworkUsageSampler):
    """Sampler returning a fixed mapping."""

    def __init__(self, usage: dict[int, tuple[int, int]] | None = None) -> None:
        self.usage = usage or {}
        self.calls = 0
        self.held_locks: list[bool] = []
        self.system_lock: threading.Lock | None = None

    def sample(self) -> dict[int, tuple[int, int]]:
        self.calls += 1
        if self.system_lock is not None:
            self.held_locks.append(self.system_lock.locked())
        return dict(self.usage)


def make_raw(pid: int, **overrides) -> RawProcess:
    """Build a RawProcess with sensible defaults."""
    fields = {
        "pid": pid,
        "ppid": 1,
        "name": f"proc{pid}",
        "cmdline": [f"/usr/bin/proc{pid}", "--flag"],
        "user_id": 1000,
        "cpu_percent": 1.5,
        "memory": 4096,
        "status": "sleeping",
    }
    fields.update(overrides)
    return RawProcess(**fields)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_system() -> FakeSystem:
    return FakeSystem(processes=[make_raw(1, ppid=None), make_raw(42)])


class FakeProc:
    """Stand-in for psutil.Process in kill tests."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.killed = False

    def kill(self) -> None:
        if self.error is not None:
            raise self.error
        self.killed = True
