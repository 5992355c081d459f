from __future__ import annotations

import argparse
import sys
import time
from typing import List, Optional, TextIO

from heap_fragger import (
    ActiveReader,
    BaselineRetainedSet,
    CancellationToken,
    CollectionObserver,
    FraggerConfig,
    FragmentationEngine,
    PauseDetector,
    SupervisedTask,
)
from experiments.instrumentation import FraggerProfiler

STOP_TIMEOUT_S = 5.0


class HeapFragger(SupervisedTask):
    """
    Process-level wiring: baseline set, pause detector, optional active reader
    and the engine thread, all sharing one cancellation token.
    """

    name = "heap_fragger"

    def __init__(
        self,
        config: FraggerConfig,
        *,
        profiler: Optional[FraggerProfiler] = None,
        observer: Optional[CollectionObserver] = None,
        token: Optional[CancellationToken] = None,
    ) -> None:
        super().__init__(token)
        self.config = config.resolve()
        self.profiler = profiler or FraggerProfiler(run_id="heap_fragger", verbose=config.verbose)
        self.baseline = BaselineRetainedSet()
        self.engine = FragmentationEngine(
            config,
            observer=observer,
            baseline=self.baseline,
            token=self.token,
            profiler=self.profiler,
        )
        self.pause_detector = PauseDetector(
            config.yield_ms,
            config.pause_threshold_ms,
            token=self.token,
            profiler=self.profiler,
        )
        self.reader: Optional[ActiveReader] = (
            ActiveReader(self.engine, self.token) if config.active_reader else None
        )

    def run_task(self) -> None:
        if self.config.heap_mb_to_sit_on > 0:
            self.profiler.say(f"heap_fragger: Creating {self.config.heap_mb_to_sit_on}MB of Heap to sit on...")
            count = self.baseline.populate(self.config.heap_mb_to_sit_on)
            self.profiler.say(
                f"\t[BaselineRetainedSet: per-object footprint is {self.baseline.bytes_per_object:.1f} bytes, "
                f"allocated {count} objects]"
            )

        self.pause_detector.start()
        if self.reader:
            self.reader.start()
        try:
            self.engine.run()
        finally:
            self.token.cancel()
            self.pause_detector.join(STOP_TIMEOUT_S)
            if self.reader:
                self.reader.join(STOP_TIMEOUT_S)


def build_parser() -> argparse.ArgumentParser:
    defaults = FraggerConfig()
    parser = argparse.ArgumentParser(
        prog="heap-fragger",
        description="Induce heap fragmentation at a throttled rate so compaction becomes observable.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Print progress and diagnostics.")
    parser.add_argument("-a", "--alloc-mb-per-sec", type=float, default=defaults.alloc_mb_per_sec)
    parser.add_argument("-f", "--heap-budget-fraction", type=float, default=defaults.heap_budget_fraction,
                        help="Peak churn footprint as a fraction of the estimated heap.")
    parser.add_argument("-b", "--heap-budget-mb", type=int, default=None,
                        help="Peak churn footprint in MB (overrides --heap-budget-fraction).")
    parser.add_argument("-e", "--estimated-heap-mb", type=int, default=None,
                        help="Estimated max heap size; defaults to total host memory.")
    parser.add_argument("-s", "--heap-mb-to-sit-on", type=int, default=defaults.heap_mb_to_sit_on,
                        help="Static live set to pre-allocate, in MB.")
    parser.add_argument("-t", "--pause-threshold-ms", type=float, default=defaults.pause_threshold_ms)
    parser.add_argument("--initial-object-size", type=int, default=defaults.initial_object_size)
    parser.add_argument("-m", "--size-multiplier", type=float, default=defaults.size_multiplier)
    parser.add_argument("-i", "--size-increment", type=int, default=defaults.size_increment)
    parser.add_argument("-r", "--prune-ratio", type=int, default=defaults.prune_ratio,
                        help="Keep one in every N objects of an increment.")
    parser.add_argument("-o", "--prune-ops-per-sec", type=float, default=defaults.prune_ops_per_sec)
    parser.add_argument("--shuffle-ops-per-sec", type=float, default=defaults.shuffle_ops_per_sec)
    parser.add_argument("-y", "--yield-ms", type=float, default=defaults.yield_ms)
    parser.add_argument("-g", "--full-gc-between-passes", action="store_true",
                        help="Run a full collection before every outer pass.")
    parser.add_argument("--active-reader", action="store_true",
                        help="Sample stored objects from a second thread while fragging.")
    parser.add_argument("-l", "--log-file", type=str, default=None)
    parser.add_argument("--events-dir", type=str, default=None,
                        help="Write structured events (JSONL/CSV) here on exit.")
    parser.add_argument("-nap", "--run-time-ms", type=int, default=0,
                        help="Stop after this many milliseconds (0 runs until interrupted).")
    return parser


def config_from_args(args: argparse.Namespace) -> FraggerConfig:
    return FraggerConfig(
        alloc_mb_per_sec=args.alloc_mb_per_sec,
        heap_budget_fraction=args.heap_budget_fraction,
        heap_budget_mb=args.heap_budget_mb,
        estimated_heap_mb=args.estimated_heap_mb,
        heap_mb_to_sit_on=args.heap_mb_to_sit_on,
        pause_threshold_ms=args.pause_threshold_ms,
        initial_object_size=args.initial_object_size,
        size_multiplier=args.size_multiplier,
        size_increment=args.size_increment,
        prune_ratio=args.prune_ratio,
        prune_ops_per_sec=args.prune_ops_per_sec,
        shuffle_ops_per_sec=args.shuffle_ops_per_sec,
        yield_ms=args.yield_ms,
        full_gc_between_passes=args.full_gc_between_passes,
        active_reader=args.active_reader,
        verbose=args.verbose,
        log_file=args.log_file,
        events_dir=args.events_dir,
        run_time_ms=args.run_time_ms,
    )


def main(argv: Optional[List[str]] = None, *, observer: Optional[CollectionObserver] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    parser = build_parser()
    config = config_from_args(parser.parse_args(argv))
    try:
        config.resolve()
    except ValueError as exc:
        parser.error(str(exc))

    log: TextIO = sys.stdout
    if config.log_file:
        try:
            log = open(config.log_file, "w", encoding="utf-8")
        except OSError as exc:
            print(f"heap_fragger: Failed to open log file: {exc}", file=sys.stderr)
            return 1

    profiler = FraggerProfiler(
        run_id=f"heap_fragger_{int(time.time())}",
        output_dir=config.events_dir,
        verbose=config.verbose,
        log=log,
    )
    profiler.say("Executing: heap_fragger " + " ".join(argv))
    fragger = HeapFragger(config, profiler=profiler, observer=observer)

    status = 0
    fragger.start()
    try:
        if config.run_time_ms:
            fragger.join(config.run_time_ms / 1000.0)
        else:
            while fragger.alive:
                fragger.join(0.5)
    except KeyboardInterrupt:
        status = 130
    finally:
        fragger.stop(STOP_TIMEOUT_S)
        profiler.flush()
        if log is not sys.stdout:
            log.close()
    if status == 0 and fragger.error is not None:
        print(f"heap_fragger: Engine stopped on error: {fragger.error!r}", file=sys.stderr)
        return 1
    return status


if __name__ == "__main__":
    sys.exit(main())
