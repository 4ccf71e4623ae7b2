"""Unit tests for the bounded encode scheduler"""

import threading
import time
import unittest
from unittest.mock import patch

from vodpack.exceptions import EncodeError, JobCancelledError
from vodpack.scheduler import EncodeScheduler
from vodpack.utils import CancellationToken


class Tracker:
    """Counts how many tasks run at the same time."""

    def __init__(self):
        self.lock = threading.Lock()
        self.running = 0
        self.peak = 0
        self.started = []

    def task(self, label, duration=0.05, result=None):
        def run(token):
            with self.lock:
                self.running += 1
                self.peak = max(self.peak, self.running)
                self.started.append(label)
            try:
                time.sleep(duration)
                return result if result is not None else label
            finally:
                with self.lock:
                    self.running -= 1
        return label, run


def failing(label):
    def run(token):
        raise EncodeError("ffmpeg exited with code 1", target=label)
    return label, run


def waits_for_cancel(label, started=None):
    def run(token):
        if started is not None:
            started.set()
        if token.wait(10):
            raise JobCancelledError("Command cancelled", module="test")
        return label
    return label, run


class TestEncodeScheduler(unittest.TestCase):
    def setUp(self):
        self.tracker = Tracker()

    def test_results_in_submission_order(self):
        scheduler = EncodeScheduler(3, memory_reserve=0.0)
        tasks = [self.tracker.task(f"t{i}", duration=0.05 * (5 - i)) for i in range(5)]
        self.assertEqual(scheduler.run_all(tasks), ["t0", "t1", "t2", "t3", "t4"])

    def test_concurrency_cap(self):
        scheduler = EncodeScheduler(2, memory_reserve=0.0)
        scheduler.run_all([self.tracker.task(f"t{i}") for i in range(6)])
        self.assertLessEqual(self.tracker.peak, 2)
        self.assertLessEqual(scheduler.peak_running, 2)
        self.assertEqual(len(self.tracker.started), 6)

    def test_empty_batch(self):
        self.assertEqual(EncodeScheduler(1).run_all([]), [])

    def test_invalid_worker_count(self):
        with self.assertRaises(ValueError):
            EncodeScheduler(0)

    def test_first_failure_stops_the_batch(self):
        scheduler = EncodeScheduler(1, memory_reserve=0.0)
        tasks = [failing("480p")] + [self.tracker.task(f"t{i}") for i in range(3)]
        with self.assertRaises(EncodeError) as ctx:
            scheduler.run_all(tasks)
        self.assertEqual(ctx.exception.target, "480p")
        # At most the task the worker picked up before the failure was seen
        self.assertLessEqual(len(self.tracker.started), 1)

    def test_failure_cancels_running_siblings(self):
        scheduler = EncodeScheduler(2, memory_reserve=0.0)
        started = threading.Event()

        def fail_after_sibling_starts(token):
            started.wait(5)
            raise EncodeError("ffmpeg exited with code 1", target="720p")

        start = time.time()
        with self.assertRaises(EncodeError):
            scheduler.run_all([waits_for_cancel("240p", started), ("720p", fail_after_sibling_starts)])
        self.assertLess(time.time() - start, 5)
        self.assertTrue(scheduler.token.cancelled)

    def test_failure_does_not_cancel_parent(self):
        parent = CancellationToken()
        scheduler = EncodeScheduler(2, token=parent, memory_reserve=0.0)
        with self.assertRaises(EncodeError):
            scheduler.run_all([failing("240p")])
        self.assertFalse(parent.cancelled)

    def test_parent_cancellation(self):
        parent = CancellationToken()
        scheduler = EncodeScheduler(2, token=parent, memory_reserve=0.0)
        started = threading.Event()
        timer = threading.Timer(0.2, parent.cancel)
        timer.start()
        try:
            with self.assertRaises(JobCancelledError):
                scheduler.run_all([waits_for_cancel("240p", started), waits_for_cancel("360p")])
        finally:
            timer.cancel()
        self.assertTrue(started.is_set())

    @patch.object(EncodeScheduler, "has_memory_headroom", return_value=False)
    def test_low_memory_runs_one_at_a_time(self, mock_headroom):
        scheduler = EncodeScheduler(4, task_stagger_delay=0.01)
        results = scheduler.run_all([self.tracker.task(f"t{i}") for i in range(3)])
        self.assertEqual(results, ["t0", "t1", "t2"])
        self.assertEqual(self.tracker.peak, 1)
        mock_headroom.assert_called()


if __name__ == "__main__":
    unittest.main()
