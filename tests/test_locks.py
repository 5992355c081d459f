import threading
import time
import unittest

from heap_fragger.locks import ReadWriteLock, WrappingCounter


class WrappingCounterTests(unittest.TestCase):
    def test_wraps_past_limit(self) -> None:
        counter = WrappingCounter(wrap_at=2)
        self.assertEqual([counter.next() for _ in range(5)], [0, 1, 2, 0, 1])

    def test_concurrent_increments(self) -> None:
        counter = WrappingCounter()

        def worker() -> None:
            for _ in range(1000):
                counter.next()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(counter.value, 4000)


class ReadWriteLockTests(unittest.TestCase):
    def test_readers_share_the_lock(self) -> None:
        lock = ReadWriteLock()
        with lock.read_lock():
            acquired = threading.Event()

            def reader() -> None:
                with lock.read_lock():
                    acquired.set()

            thread = threading.Thread(target=reader)
            thread.start()
            self.assertTrue(acquired.wait(1.0))
            thread.join()

    def test_writer_waits_for_readers(self) -> None:
        lock = ReadWriteLock()
        order = []
        lock.acquire_read()

        def writer() -> None:
            with lock.write_lock():
                order.append("write")

        thread = threading.Thread(target=writer)
        thread.start()
        time.sleep(0.05)
        order.append("read-done")
        lock.release_read()
        thread.join(1.0)
        self.assertEqual(order, ["read-done", "write"])


if __name__ == "__main__":
    unittest.main()
