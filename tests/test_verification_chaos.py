"""Verification Test: Chaos Monkey - process churn and termination.

Spawns dummy processes, terminates some of them while snapshots are being
taken, and kills others through the engine itself. Snapshots must never fail
because a process vanished mid-scan.
"""

import multiprocessing
import random
import time
from queue import Empty, Queue

import pytest

from procsnap.monitor import SnapshotEngine, SystemMonitor


def dummy_worker(duration: float = 60.0) -> None:
    """A dummy worker process that sleeps for a given duration."""
    try:
        time.sleep(duration)
    except (KeyboardInterrupt, SystemExit):
        pass


def spawn(count: int, duration: float = 60.0) -> list[multiprocessing.Process]:
    processes = []
    for _ in range(count):
        p = multiprocessing.Process(target=dummy_worker, args=(duration,))
        p.start()
        processes.append(p)
    return processes


def cleanup(processes: list[multiprocessing.Process]) -> None:
    for p in processes:
        if p.is_alive():
            p.terminate()
    for p in processes:
        p.join(timeout=1.0)


class TestChaosMonkey:
    """Chaos Monkey verification suite tests."""

    def test_kill_process_terminates_child(self):
        """Test kill_process terminates a live child and reports True."""
        processes = spawn(1)
        try:
            engine = SnapshotEngine()
            snapshot, _ = engine.get_processes()
            target = processes[0]
            assert target.pid in {proc.pid for proc in snapshot}

            assert engine.kill_process(target.pid) is True

            target.join(timeout=5.0)
            assert not target.is_alive()
        finally:
            cleanup(processes)

    def test_kill_after_exit_returns_false(self):
        """Test a process that exited and was refreshed away reports False."""
        processes = spawn(1)
        try:
            target = processes[0]
            target.terminate()
            target.join(timeout=5.0)

            engine = SnapshotEngine()
            engine.get_processes()

            assert engine.kill_process(target.pid) is False
        finally:
            cleanup(processes)

    def test_snapshots_survive_random_termination(self):
        """
        Test that snapshots don't fail when processes die mid-poll.

        Processes may vanish between the table scan and the kill lookup; the
        engine must skip them rather than raise.
        """
        processes = spawn(30)
        engine = SnapshotEngine()

        try:
            for p in random.sample(processes, 15):
                p.terminate()
                try:
                    engine.get_processes()
                except Exception as e:
                    pytest.fail(f"get_processes raised during churn: {e}")

            for p in processes:
                # Killed or already gone, never an exception
                assert engine.kill_process(p.pid) in (True, False)
        finally:
            cleanup(processes)

    def test_monitor_keeps_running_during_churn(self):
        """Test the polling thread keeps delivering frames during churn."""
        queue: Queue = Queue()
        monitor = SystemMonitor(SnapshotEngine(), queue, poll_rate=0.2)
        processes: list[multiprocessing.Process] = []

        try:
            monitor.start()
            start_time = time.time()
            frames = 0

            while time.time() - start_time < 3.0:
                processes.extend(spawn(2, duration=10.0))

                alive = [p for p in processes if p.is_alive()]
                if len(alive) > 6:
                    for p in random.sample(alive, 2):
                        p.terminate()

                try:
                    queue.get(timeout=0.5)
                    frames += 1
                except Empty:
                    pass

            assert frames >= 3, f"Expected at least 3 frames during churn, got {frames}"
            assert monitor.is_running, "Monitor crashed during churn"
        finally:
            monitor.stop()
            cleanup(processes)
