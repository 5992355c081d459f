from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from heap_fragger import CancellationToken, RateLimiter, WeakRefCollectionObserver
from heap_fragger.config import MB
from experiments.instrumentation import FraggerProfiler


def watch(observer: WeakRefCollectionObserver, count: int) -> int:
    trials = 0
    while count == 0 or trials < count:
        print("Waiting for Promotion:")
        result = observer.wait_for_promotion()
        if result.detected:
            print(f"\n!!! GC promotion detected after {result.cycles} cycles !!!")
        else:
            print(f"\nNo promotion confirmed after {result.cycles} cycles.")
        trials += 1
    return trials


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Report generational promotions as they are detected.")
    parser.add_argument("-a", "--alloc-mb-per-sec", type=float, default=1000.0)
    parser.add_argument("-n", "--count", type=int, default=0, help="Stop after N trials (0 = forever).")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    token = CancellationToken()
    limiter = RateLimiter(args.alloc_mb_per_sec * MB, verbose=args.verbose, token=token)
    profiler = FraggerProfiler(run_id="watch_promotion", verbose=args.verbose)
    observer = WeakRefCollectionObserver(limiter, token=token, profiler=profiler)
    try:
        watch(observer, args.count)
    except KeyboardInterrupt:
        token.cancel()
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
