import io
import time
import unittest

from heap_fragger import CancellationToken, PauseDetector
from experiments.instrumentation import FraggerProfiler


class ManualClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class PauseDetectorTests(unittest.TestCase):
    def test_reports_only_gaps_over_threshold(self) -> None:
        clock = ManualClock()
        sink = io.StringIO()
        profiler = FraggerProfiler(run_id="pauses")
        detector = PauseDetector(5, 350, sink=sink, profiler=profiler, clock=clock)

        self.assertIsNone(detector.check())
        clock.now += 0.2
        self.assertIsNone(detector.check())
        clock.now += 0.5
        self.assertAlmostEqual(detector.check(), 500.0)

        self.assertEqual(len(detector.pauses), 1)
        self.assertIn("PauseDetector detected a 500 ms pause", sink.getvalue())
        self.assertEqual(len(profiler.events_of("pause")), 1)

    def test_start_and_stop(self) -> None:
        token = CancellationToken()
        detector = PauseDetector(1, 10_000, token=token, sink=io.StringIO())
        detector.start()
        time.sleep(0.02)
        self.assertTrue(detector.alive)
        detector.stop(1.0)
        self.assertFalse(detector.alive)
        self.assertTrue(token.cancelled)
        self.assertEqual(detector.pauses, [])


if __name__ == "__main__":
    unittest.main()
