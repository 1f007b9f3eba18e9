"""
A small in-process execution substrate for partitioned data.

It supplies the three primitives the statistics pass relies on: running a
function over every partition (with a full barrier at the end), folding
per-partition counters into a registry, and replicating an immutable value to
every worker. Serial, thread-pool and process-pool flavours share one API so
callers can swap them through configuration.
"""

from __future__ import annotations

import pickle
import threading
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Generic, Iterable, Iterator, Sequence, TypeVar

from loguru import logger

from .counters import CounterRegistry, LocalCounter, new_scope

T = TypeVar("T")
R = TypeVar("R")

EXECUTOR_KINDS = ("serial", "thread", "process")


@dataclass(frozen=True)
class Partitioned(Generic[T]):
    """Immutable collection split into an ordered tuple of partitions."""

    partitions: tuple[tuple[T, ...], ...]

    @classmethod
    def from_iterable(cls, items: Iterable[T], num_partitions: int = 1) -> "Partitioned[T]":
        """Split `items` into contiguous, near-equal partitions."""
        if num_partitions <= 0:
            raise ValueError("num_partitions must be greater than zero.")
        materialised = list(items)
        size, remainder = divmod(len(materialised), num_partitions)
        partitions: list[tuple[T, ...]] = []
        start = 0
        for partition_id in range(num_partitions):
            stop = start + size + (1 if partition_id < remainder else 0)
            partitions.append(tuple(materialised[start:stop]))
            start = stop
        return cls(partitions=tuple(partitions))

    @property
    def num_partitions(self) -> int:
        return len(self.partitions)

    def take(self, n: int) -> list[T]:
        taken: list[T] = []
        for part in self.partitions:
            for item in part:
                if len(taken) >= n:
                    return taken
                taken.append(item)
        return taken

    def first(self) -> T | None:
        head = self.take(1)
        return head[0] if head else None

    def collect(self) -> list[T]:
        return [item for part in self.partitions for item in part]

    def __iter__(self) -> Iterator[T]:
        for part in self.partitions:
            yield from part

    def __len__(self) -> int:
        return sum(len(part) for part in self.partitions)


class Broadcast(Generic[T]):
    """
    Read-only value replicated to every worker.

    The value is pickled once on creation. Each thread that reads `.value`
    gets its own replica, and a process receiving the broadcast rebuilds its
    replica from the pickled bytes, so no two workers share mutable state.
    """

    def __init__(self, value: T) -> None:
        self._payload: bytes | None = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
        self._local = threading.local()

    @property
    def value(self) -> T:
        replica = getattr(self._local, "replica", None)
        if replica is None:
            if self._payload is None:
                raise RuntimeError("Broadcast value has been destroyed.")
            replica = pickle.loads(self._payload)
            self._local.replica = replica
        return replica

    def destroy(self) -> None:
        self._payload = None
        self._local = threading.local()

    def __getstate__(self) -> dict[str, Any]:
        return {"payload": self._payload}

    def __setstate__(self, state: dict[str, Any]) -> None:
        self._payload = state["payload"]
        self._local = threading.local()


def _call(task: Callable[[], R]) -> R:
    return task()


def _run_counting_task(
    fn: Callable[[Sequence[T], dict[str, LocalCounter]], None],
    names: tuple[str, ...],
    partition: Sequence[T],
) -> dict[str, LocalCounter]:
    # A fresh scope per attempt; a re-run never sees a failed attempt's counts.
    scope = new_scope(names)
    fn(partition, scope)
    return scope


class LocalExecutor:
    """
    Run per-partition tasks serially, on a thread pool, or on a process pool.

    Tasks that fail with one of `retry_on` are re-run from scratch up to
    `max_attempts` times. Any other exception propagates immediately.
    """

    def __init__(
        self,
        kind: str = "serial",
        *,
        max_workers: int | None = None,
        max_attempts: int = 1,
        retry_on: tuple[type[BaseException], ...] = (OSError,),
    ) -> None:
        if kind not in EXECUTOR_KINDS:
            raise ValueError(f"kind must be one of {EXECUTOR_KINDS}, got '{kind}'.")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least one.")
        self.kind = kind
        self.max_workers = max_workers
        self.max_attempts = max_attempts
        self.retry_on = retry_on

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"LocalExecutor(kind={self.kind!r}, max_workers={self.max_workers!r})"

    def _pool(self) -> Executor:
        if self.kind == "process":
            return ProcessPoolExecutor(max_workers=self.max_workers)
        return ThreadPoolExecutor(max_workers=self.max_workers)

    def _attempt(
        self,
        task: Callable[[], R],
        partition_id: int,
        call: Callable[[Callable[[], R]], R],
        *,
        first_attempt: int = 1,
    ) -> R:
        attempt = first_attempt
        while True:
            try:
                return call(task)
            except self.retry_on as exc:
                if attempt >= self.max_attempts:
                    raise
                logger.warning(
                    "Partition {} failed on attempt {}/{} ({}); re-running.",
                    partition_id,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                attempt += 1

    def run_partitions(
        self, fn: Callable[[Sequence[T]], R], collection: Partitioned[T]
    ) -> list[R]:
        """Apply `fn` to every partition; results are ordered by partition id."""
        return self._run([partial(fn, part) for part in collection.partitions])

    def _run(self, tasks: list[Callable[[], R]]) -> list[R]:
        if self.kind == "serial" or len(tasks) <= 1:
            return [
                self._attempt(task, partition_id, _call)
                for partition_id, task in enumerate(tasks)
            ]

        with self._pool() as pool:
            if self.kind == "thread":
                futures = [
                    pool.submit(self._attempt, task, partition_id, _call)
                    for partition_id, task in enumerate(tasks)
                ]
                return [future.result() for future in futures]

            def resubmit(task: Callable[[], R]) -> R:
                return pool.submit(task).result()

            futures = [pool.submit(task) for task in tasks]
            results: list[R] = []
            for partition_id, (task, future) in enumerate(zip(tasks, futures)):
                try:
                    results.append(future.result())
                except self.retry_on as exc:
                    if self.max_attempts == 1:
                        raise
                    logger.warning(
                        "Partition {} failed on attempt 1/{} ({}); re-running.",
                        partition_id,
                        self.max_attempts,
                        exc,
                    )
                    results.append(
                        self._attempt(task, partition_id, resubmit, first_attempt=2)
                    )
            return results

    def map_partitions(
        self,
        fn: Callable[[Sequence[T]], Iterable[R]],
        collection: Partitioned[T],
    ) -> Partitioned[R]:
        """Rewrite every partition independently, preserving the partitioning."""
        results = self.run_partitions(partial(_materialise, fn), collection)
        return Partitioned(partitions=tuple(results))

    def foreach_partition(
        self,
        fn: Callable[[Sequence[T], dict[str, LocalCounter]], None],
        collection: Partitioned[T],
        registry: CounterRegistry,
    ) -> None:
        """
        Run a counting pass: each task fills a fresh partition scope, the
        driver commits the scopes, and the registry barrier is released only
        after every partition has reported.
        """
        names = registry.start()
        tasks = [
            partial(_run_counting_task, fn, names, part) for part in collection.partitions
        ]
        scopes = self._run(tasks)
        for partition_id, scope in enumerate(scopes):
            registry.commit(partition_id, scope)
        registry.complete(collection.num_partitions)

    def broadcast(self, value: T) -> Broadcast[T]:
        return Broadcast(value)


def _materialise(fn: Callable[[Sequence[T]], Iterable[R]], partition: Sequence[T]) -> tuple[R, ...]:
    return tuple(fn(partition))
