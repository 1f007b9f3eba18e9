"""
Mergeable key -> count aggregation across partition tasks.

Workers only ever touch a `LocalCounter` that lives inside a single partition
task. The coordinator folds those local counters into `DistributedCounter`s
keyed by partition id, which keeps the final totals exact even when a
partition is executed more than once.
"""

from __future__ import annotations

from collections import Counter
from typing import Generic, Hashable, Iterable, TypeVar

K = TypeVar("K", bound=Hashable)


class CounterRegistrationError(ValueError):
    """Raised when a counter name is registered twice or too late."""


class CounterNotReadyError(RuntimeError):
    """Raised when a counter is read before the pass has fully completed."""


class LocalCounter(Generic[K]):
    """Partition-local accumulator. Cheap to pickle and ship back to the driver."""

    __slots__ = ("_counts",)

    def __init__(self) -> None:
        self._counts: Counter[K] = Counter()

    def add(self, key: K, amount: int = 1) -> None:
        if amount < 0:
            raise ValueError(f"Counter amounts must be non-negative, got {amount}.")
        self._counts[key] += amount

    def items(self) -> Iterable[tuple[K, int]]:
        return self._counts.items()

    def __len__(self) -> int:  # pragma: no cover - trivial
        return len(self._counts)

    def __getstate__(self) -> dict[str, dict[K, int]]:
        return {"counts": dict(self._counts)}

    def __setstate__(self, state: dict[str, dict[K, int]]) -> None:
        self._counts = Counter(state["counts"])


def new_scope(names: Iterable[str]) -> dict[str, LocalCounter]:
    """Fresh local counters for one attempt of one partition task."""
    return {name: LocalCounter() for name in names}


class DistributedCounter(Generic[K]):
    """
    Coordinator-side view of one named counter.

    Each partition contributes exactly one snapshot. Merging a partition that
    has already contributed replaces its previous snapshot, so re-executed
    tasks never double count.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._partials: dict[int, Counter[K]] = {}
        self._ready = False

    def merge(self, partition_id: int, local: LocalCounter[K]) -> None:
        if self._ready:
            raise CounterNotReadyError(
                f"Counter '{self.name}' is sealed; no further partitions may be merged."
            )
        self._partials[partition_id] = Counter(dict(local.items()))

    def value(self) -> dict[K, int]:
        if not self._ready:
            raise CounterNotReadyError(
                f"Counter '{self.name}' cannot be read before the pass completes."
            )
        total: Counter[K] = Counter()
        for partition_id in sorted(self._partials):
            total.update(self._partials[partition_id])
        return dict(total)

    @property
    def partitions(self) -> frozenset[int]:
        return frozenset(self._partials)

    def _seal(self) -> None:
        self._ready = True


class CounterRegistry:
    """Named counters for one statistics pass, plus the completion barrier."""

    def __init__(self) -> None:
        self._counters: dict[str, DistributedCounter] = {}
        self._started = False
        self._completed = False

    def register(self, name: str) -> DistributedCounter:
        if self._started:
            raise CounterRegistrationError(
                f"Cannot register counter '{name}' after the pass has started."
            )
        if name in self._counters:
            raise CounterRegistrationError(f"Counter '{name}' is already registered.")
        counter: DistributedCounter = DistributedCounter(name)
        self._counters[name] = counter
        return counter

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._counters)

    def start(self) -> tuple[str, ...]:
        """Close registration and return the counter names tasks must fill."""
        self._started = True
        return self.names

    def commit(self, partition_id: int, scope: dict[str, LocalCounter]) -> None:
        if self._completed:
            raise CounterNotReadyError("The pass has already completed.")
        unknown = set(scope) - set(self._counters)
        if unknown:
            raise CounterRegistrationError(
                f"Partition {partition_id} reported unregistered counters: {sorted(unknown)}"
            )
        for name, counter in self._counters.items():
            counter.merge(partition_id, scope.get(name, LocalCounter()))

    def complete(self, num_partitions: int) -> None:
        """Barrier: unlock reads once every logical partition has committed."""
        expected = set(range(num_partitions))
        for counter in self._counters.values():
            missing = expected - counter.partitions
            if missing:
                raise CounterNotReadyError(
                    f"Counter '{counter.name}' is missing partitions {sorted(missing)}."
                )
            extra = counter.partitions - expected
            if extra:
                raise CounterNotReadyError(
                    f"Counter '{counter.name}' received unexpected partitions {sorted(extra)}."
                )
        for counter in self._counters.values():
            counter._seal()
        self._completed = True
