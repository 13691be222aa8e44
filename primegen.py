#!/usr/bin/env python3
"""
primegen.py

Parallel random prime generator.

Every worker process loops:

    sample bits/8 random bytes -> trial division -> Miller-Rabin

and reports probable primes through one shared critical section. Inside it
the worker takes the next sequence number, emits the prime and, once `count`
primes have been emitted, sets the cancellation event. A worker that finds a
prime after cancellation drops it, so exactly `count` primes come out,
numbered 1..count in discovery order.

Example:
    python3 primegen.py 64 5
"""

import argparse
import multiprocessing as mp
import os
import queue
import sys
import time
from dataclasses import dataclass
from typing import Optional

from candidates import random_candidate
from primetest import DEFAULT_ROUNDS, Verdict, classify, new_random_state


MIN_BITS = 32
POLL_INTERVAL = 0.25      # seconds between worker liveness checks


# ----------------------------------------------------------------------
# Errors and configuration
# ----------------------------------------------------------------------

class InvalidConfiguration(ValueError):
    pass


class SearchFailed(RuntimeError):
    """All workers exited before the requested number of primes was found."""


@dataclass(frozen=True)
class SearchConfig:
    bit_length: int
    count: int = 1
    rounds: int = DEFAULT_ROUNDS
    workers: Optional[int] = None

    def validate(self):
        """Raise InvalidConfiguration unless every field is in range."""
        if not _is_int(self.bit_length) or self.bit_length % 8 != 0 or self.bit_length < MIN_BITS:
            raise InvalidConfiguration(
                f"{self.bit_length} is not a multiple of 8 or is less than {MIN_BITS}"
            )
        if not _is_int(self.count) or self.count < 1:
            raise InvalidConfiguration(f"{self.count} cannot be negative or 0")
        if not _is_int(self.rounds) or self.rounds < 1:
            raise InvalidConfiguration(f"rounds must be a positive integer, got {self.rounds}")
        if self.workers is not None and (not _is_int(self.workers) or self.workers < 1):
            raise InvalidConfiguration(f"workers must be a positive integer, got {self.workers}")
        return self

    @property
    def pool_size(self) -> int:
        return self.workers or os.cpu_count() or 1


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class PrimeResult:
    sequence: int
    prime: int


# ----------------------------------------------------------------------
# Worker: sample, filter, test, report
# ----------------------------------------------------------------------

def search_worker(config, cancelled, confirmed, lock, stopped_at, results):
    """
    Search for probable primes until `cancelled` is set.

    - confirmed: shared counter, the sequence number the next prime gets
                 (starts at 1).
    - lock:      guards the counter and the emission together, so no worker
                 can emit a (count + 1)-th prime between another worker's
                 final increment and the cancellation.
    - stopped_at: perf_counter() value taken at the cancellation point.
    - results:   queue of (sequence, prime) tuples read by the coordinator.
    """
    state = new_random_state()

    while not cancelled.is_set():
        candidate = random_candidate(config.bit_length)
        if classify(candidate, config.rounds, state) is not Verdict.PROBABLY_PRIME:
            continue

        with lock:
            # Another worker may have reached the count while we were testing
            if cancelled.is_set():
                break

            results.put((confirmed.value, int(candidate)))
            confirmed.value += 1

            if confirmed.value > config.count:
                stopped_at.value = time.perf_counter()
                cancelled.set()


# ----------------------------------------------------------------------
# Coordinator
# ----------------------------------------------------------------------

class SearchCoordinator:
    """
    Runs config.pool_size worker processes and funnels their reports.

    results() yields PrimeResult objects in sequence order and returns once
    every worker has been joined; `elapsed` is set at that point.
    """

    def __init__(self, config: SearchConfig):
        self.config = config.validate()
        self.elapsed = None

    def results(self):
        config = self.config

        cancelled = mp.Event()
        lock = mp.Lock()
        confirmed = mp.Value("i", 1)
        stopped_at = mp.Value("d", 0.0)
        result_queue = mp.Queue()

        processes = [
            mp.Process(
                target=search_worker,
                args=(config, cancelled, confirmed, lock, stopped_at, result_queue),
                daemon=True,
            )
            for _ in range(config.pool_size)
        ]

        started = time.perf_counter()
        for p in processes:
            p.start()

        try:
            # Each worker's queue feeder thread flushes independently, so
            # reports can arrive out of order. Hold them until it's their turn.
            pending = {}
            next_sequence = 1
            while next_sequence <= config.count:
                try:
                    sequence, prime = result_queue.get(timeout=POLL_INTERVAL)
                except queue.Empty:
                    if not cancelled.is_set() and not any(p.is_alive() for p in processes):
                        raise SearchFailed(
                            f"all workers exited after {next_sequence - 1} "
                            f"of {config.count} primes"
                        )
                    continue

                pending[sequence] = prime
                while next_sequence in pending and next_sequence <= config.count:
                    yield PrimeResult(next_sequence, pending.pop(next_sequence))
                    next_sequence += 1
        finally:
            cancelled.set()
            # A worker can't exit until its queued reports are flushed, so
            # keep the pipe drained while waiting on stragglers.
            for p in processes:
                while p.is_alive():
                    _drain(result_queue)
                    p.join(POLL_INTERVAL)
            result_queue.close()

        self.elapsed = stopped_at.value - started

    def run(self):
        """Collect every result. Returns (list of PrimeResult, elapsed seconds)."""
        found = list(self.results())
        return found, self.elapsed


def _drain(q):
    try:
        while True:
            q.get_nowait()
    except queue.Empty:
        pass


def generate_primes(bit_length, count=1, rounds=DEFAULT_ROUNDS, workers=None):
    """Find `count` probable primes of at most `bit_length` bits."""
    config = SearchConfig(bit_length, count, rounds, workers)
    return SearchCoordinator(config).run()


# ----------------------------------------------------------------------
# CLI
# ----------------------------------------------------------------------

def format_elapsed(seconds):
    """Render seconds as HH:MM:SS.fffffff."""
    ticks = int(round(seconds * 10_000_000))
    whole, fraction = divmod(ticks, 10_000_000)
    minutes, secs = divmod(whole, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{fraction:07d}"


def build_parser():
    parser = argparse.ArgumentParser(
        prog="primegen",
        description="Generate and verify random prime numbers in parallel.",
    )
    parser.add_argument(
        "bits",
        help="Bit length of the primes; a multiple of 8 and at least 32.",
    )
    parser.add_argument(
        "count",
        nargs="?",
        default=1,
        help="Number of primes to generate (default: 1).",
    )
    parser.add_argument(
        "--rounds",
        default=DEFAULT_ROUNDS,
        help=f"Miller-Rabin witness rounds per candidate (default: {DEFAULT_ROUNDS}).",
    )
    parser.add_argument(
        "--workers",
        default=None,
        help="Number of worker processes (default: CPU count).",
    )
    return parser


def parse_args(argv=None):
    """
    Parse and validate the command line into a SearchConfig.

    Numbers are converted here rather than by argparse so that every bad
    value, non-numeric or out of range, raises InvalidConfiguration.
    """
    args = build_parser().parse_args(argv)
    config = SearchConfig(
        _to_int(args.bits),
        _to_int(args.count),
        _to_int(args.rounds),
        None if args.workers is None else _to_int(args.workers),
    )
    return config.validate()


def _to_int(value):
    try:
        return int(value)
    except ValueError:
        raise InvalidConfiguration(f"{value} is not a number") from None


def main(argv=None):
    parser = build_parser()
    try:
        config = parse_args(argv)
    except InvalidConfiguration as e:
        parser.print_usage(sys.stderr)
        sys.stderr.write(f"Issue: {e}\n")
        sys.exit(1)

    print(f"BitLength: {config.bit_length} bits")

    coordinator = SearchCoordinator(config)
    try:
        for result in coordinator.results():
            print(f"{result.sequence}: {result.prime}")
            if result.sequence < config.count:
                print("")
    except SearchFailed as e:
        sys.stderr.write(f"Issue: {e}\n")
        sys.exit(1)

    print(f"Time to Generate: {format_elapsed(coordinator.elapsed)}")


if __name__ == "__main__":
    # Multiprocessing guard (important on Windows)
    main()
