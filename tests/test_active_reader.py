import time
import unittest

from heap_fragger import ActiveReader, CancellationToken, FragmentationEngine

from support import MockObserver, RecordingLimiter, small_config


class ExplodingEngine:
    def __init__(self) -> None:
        self.token = CancellationToken()

    def sample(self):
        raise IndexError("shard vanished mid-read")


class ActiveReaderTests(unittest.TestCase):
    def make_engine(self) -> FragmentationEngine:
        return FragmentationEngine(
            small_config(),
            observer=MockObserver(),
            allocation_limiter=RecordingLimiter(),
            prune_limiter=RecordingLimiter(),
            shuffle_limiter=RecordingLimiter(),
        )

    def test_counts_reads_and_misses(self) -> None:
        engine = self.make_engine()
        reader = ActiveReader(engine)
        reader.read_once()
        self.assertEqual(reader.reads, 1)
        for store in engine.stores:
            store.prune(RecordingLimiter())
        reader.read_once()
        self.assertEqual(reader.misses, 1)

    def test_errors_are_swallowed(self) -> None:
        reader = ActiveReader(ExplodingEngine())
        reader.read_once()
        self.assertEqual(reader.errors, 1)

    def test_runs_alongside_the_engine(self) -> None:
        engine = self.make_engine()
        reader = ActiveReader(engine)
        self.assertIs(reader.token, engine.token)
        reader.start()
        engine.do_pass(0, 4096)
        time.sleep(0.01)
        reader.stop(1.0)
        self.assertFalse(reader.alive)
        self.assertGreater(reader.reads + reader.misses, 0)
        self.assertEqual(reader.errors, 0)


if __name__ == "__main__":
    unittest.main()
