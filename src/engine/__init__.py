"""Partitioned execution, mergeable counters and broadcast primitives."""

from .counters import (  # noqa: F401
    CounterNotReadyError,
    CounterRegistrationError,
    CounterRegistry,
    DistributedCounter,
    LocalCounter,
)
from .executors import Broadcast, LocalExecutor, Partitioned  # noqa: F401
