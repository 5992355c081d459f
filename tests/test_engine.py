import unittest

from heap_fragger import CancellationToken, FragmentationEngine, GenerationStore
from heap_fragger.config import MB
from heap_fragger.engine import next_object_size, target_object_count
from experiments.instrumentation import FraggerProfiler

from support import MockObserver, RecordingLimiter, small_config


def make_engine(observer=None, token=None, profiler=None, **overrides) -> FragmentationEngine:
    return FragmentationEngine(
        small_config(**overrides),
        observer=observer or MockObserver(),
        token=token,
        profiler=profiler,
        allocation_limiter=RecordingLimiter(),
        prune_limiter=RecordingLimiter(),
        shuffle_limiter=RecordingLimiter(),
    )


class SizingTests(unittest.TestCase):
    def test_target_count_is_budget_over_size(self) -> None:
        self.assertEqual(target_object_count(100 * MB, MB), 100)
        self.assertEqual(target_object_count(10, 96), 0)
        with self.assertRaises(ValueError):
            target_object_count(MB, 0)

    def test_object_size_growth(self) -> None:
        self.assertEqual(next_object_size(96, 1.0, 32), 128)
        self.assertEqual(next_object_size(100, 1.5, 0), 150)
        self.assertEqual(next_object_size(99, 1.5, 1), 149)


class FragmentationEngineTests(unittest.TestCase):
    def test_prune_ratio_anchors_every_nth_object(self) -> None:
        engine = make_engine()
        store = engine.stores[0]
        store.reset()
        # 1 MB // 1978 bytes == 530 objects; 0, 53, ..., 477 are anchored.
        allocated = engine.allocate(store, 1978)
        self.assertEqual(allocated, 530)
        fresh = [obj for obj in store if obj.payload is not None]
        self.assertEqual(sum(1 for obj in fresh if obj.ref_a is not None), 10)
        self.assertTrue(all(obj.ref_b is not None for obj in fresh))
        self.assertEqual(engine.allocation_limiter.consumed, [1978] * 530)

        self.assertEqual(engine.prune(store), 10)
        self.assertTrue(all(obj.ref_a is not None for obj in store))

    def test_do_pass_runs_every_phase(self) -> None:
        observer = MockObserver()
        engine = make_engine(observer=observer)
        summary = engine.do_pass(0, 4096)
        self.assertEqual(summary["allocated"], 256)
        self.assertEqual(summary["survivors"], 5)
        self.assertTrue(summary["promotion_detected"])
        self.assertEqual(observer.detect_calls, 2)
        self.assertEqual(summary["relinked"], sum(len(store) for store in engine.stores))
        self.assertEqual(engine.shuffle_limiter.consumed, [2] * summary["relinked"])

    def test_shuffle_links_only_current_members(self) -> None:
        engine = make_engine()
        engine.do_pass(0, 4096)
        engine.do_pass(1, 8192)
        members = {id(obj) for store in engine.stores for obj in store}
        for store in engine.stores:
            for obj in store:
                for ref in (obj.ref_a, obj.ref_b):
                    self.assertTrue(ref is None or id(ref) in members)

    def test_anchor_falls_back_to_self_when_every_store_is_empty(self) -> None:
        engine = make_engine()
        for store in engine.stores:
            store.reset()
            store.prune(RecordingLimiter())
        outside = GenerationStore(3)
        engine.allocate(outside, 16384)
        fresh = [obj for obj in outside if obj.payload is not None]
        anchored = [obj for obj in fresh if obj.ref_a is not None]
        self.assertEqual(len(anchored), 2)
        self.assertTrue(all(obj.ref_a is obj for obj in anchored))
        self.assertTrue(all(obj.ref_b is None for obj in fresh))

    def test_run_grows_object_size_per_increment(self) -> None:
        engine = make_engine()
        passes = engine.run(max_passes=1)
        self.assertEqual(passes, 1)
        self.assertEqual([s["object_size"] for s in engine.pass_summaries], [4096, 4128, 4160])
        self.assertEqual(engine.stores, [])

    def test_cancelled_run_stops_cleanly(self) -> None:
        token = CancellationToken()
        token.cancel()
        engine = make_engine(token=token)
        self.assertEqual(engine.run(), 0)
        self.assertEqual(engine.stores, [])

    def test_exhausted_promotion_is_soft_failure(self) -> None:
        profiler = FraggerProfiler(run_id="test")
        engine = make_engine(observer=MockObserver(detected=False, cycles=1000), profiler=profiler)
        summary = engine.do_pass(0, 4096)
        self.assertFalse(summary["promotion_detected"])
        self.assertEqual(summary["promotion_cycles"], 2000)
        self.assertEqual(summary["survivors"], 5)
        exhausted = profiler.events_of("promotion_exhausted")
        self.assertEqual(len(exhausted), 1)
        self.assertEqual(exhausted[0]["cycles"], 2000)

    def test_sample_tolerates_empty_stores(self) -> None:
        engine = make_engine()
        engine.stores = []
        self.assertIsNone(engine.sample())


if __name__ == "__main__":
    unittest.main()
