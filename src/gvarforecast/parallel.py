from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Sequence, Tuple

import numpy as np
from joblib import Parallel, delayed

from .config import RunConfig

logger = logging.getLogger(__name__)

# draw_fn(irep, rng) -> (value, n_flags); n_flags counts per-draw fallbacks
DrawFn = Callable[[int, np.random.Generator], Tuple[Any, int]]
AccFactory = Callable[[int, int], "Accumulator"]


class DrawsCancelled(RuntimeError):
    def __init__(self, done: int, total: int):
        super().__init__(f"Cancelled after {done} of {total} draws.")
        self.done = done
        self.total = total


class Accumulator(ABC):
    """Collects per-draw values of one chunk; chunks are merged in draw order."""

    n_flags: int = 0

    @abstractmethod
    def add(self, irep: int, value: Any, n_flags: int = 0) -> None:
        ...

    @abstractmethod
    def merge(self, other: "Accumulator") -> "Accumulator":
        ...


class DrawStore(Accumulator):
    """Keeps every draw: values[irep - start] for draws start..stop-1."""

    def __init__(self, start: int, stop: int, shape: Sequence[int]):
        self.start = start
        self.values = np.full((stop - start,) + tuple(shape), np.nan)
        self.n_flags = 0

    def add(self, irep, value, n_flags=0):
        self.values[irep - self.start] = value
        self.n_flags += n_flags

    def merge(self, other):
        self.values = np.concatenate([self.values, other.values], axis=0)
        self.n_flags += other.n_flags
        return self


class RunningMean(Accumulator):
    """First moment only. Non-finite draws are skipped and counted."""

    def __init__(self, start: int, stop: int, shape: Sequence[int]):
        self.total = np.zeros(tuple(shape))
        self.count = 0
        self.skipped = 0
        self.n_flags = 0

    def add(self, irep, value, n_flags=0):
        self.n_flags += n_flags
        if not np.all(np.isfinite(value)):
            self.skipped += 1
            return
        self.total += value
        self.count += 1

    def merge(self, other):
        self.total += other.total
        self.count += other.count
        self.skipped += other.skipped
        self.n_flags += other.n_flags
        return self

    @property
    def mean(self) -> np.ndarray:
        if self.count == 0:
            return np.full_like(self.total, np.nan)
        return self.total / self.count


def _chunks(n_draws: int, n_chunks: int) -> List[Tuple[int, int]]:
    edges = np.linspace(0, n_draws, n_chunks + 1).astype(int)
    return [(int(a), int(b)) for a, b in zip(edges[:-1], edges[1:]) if b > a]


def _run_chunk(draw_fn: DrawFn, start: int, stop: int, seed_seq: np.random.SeedSequence, new_acc: AccFactory):
    rng = np.random.default_rng(seed_seq)
    acc = new_acc(start, stop)
    for irep in range(start, stop):
        value, n_flags = draw_fn(irep, rng)
        acc.add(irep, value, n_flags)
    return acc


def run_draws(draw_fn: DrawFn, n_draws: int, new_acc: AccFactory, config: RunConfig = RunConfig()) -> Accumulator:
    """
    Apply draw_fn to every draw index and fold the results into one accumulator.

    Sequential (n_workers=1): one generator seeded with config.seed, draws in order.
    Parallel: contiguous chunks on joblib workers, one spawned generator per
    chunk, merged back in draw order.
    """
    if n_draws < 1:
        raise ValueError("No draws to process.")
    n_workers = int(config.n_workers)

    if n_workers == 1:
        rng = np.random.default_rng(config.seed)
        acc = new_acc(0, n_draws)
        for irep in range(n_draws):
            if config.cancel is not None and config.cancel.is_set():
                raise DrawsCancelled(irep, n_draws)
            value, n_flags = draw_fn(irep, rng)
            acc.add(irep, value, n_flags)
            if config.progress is not None:
                config.progress(irep + 1, n_draws)
        return acc

    # a few chunks per worker so progress and cancellation are not all-or-nothing
    bounds = _chunks(n_draws, min(n_draws, 4 * n_workers))
    seeds = np.random.SeedSequence(config.seed).spawn(len(bounds))
    logger.debug("running %d draws in %d chunks on %d %s workers", n_draws, len(bounds), n_workers, config.backend)

    if config.cancel is not None and config.cancel.is_set():
        raise DrawsCancelled(0, n_draws)
    results = Parallel(n_jobs=n_workers, backend=config.backend, return_as="generator")(
        delayed(_run_chunk)(draw_fn, a, b, ss, new_acc) for (a, b), ss in zip(bounds, seeds)
    )
    acc = None
    done = 0
    for (a, b), part in zip(bounds, results):
        acc = part if acc is None else acc.merge(part)
        done += b - a
        if config.progress is not None:
            config.progress(done, n_draws)
        if done < n_draws and config.cancel is not None and config.cancel.is_set():
            raise DrawsCancelled(done, n_draws)
    return acc
