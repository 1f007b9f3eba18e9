"""
Per-attribute indexes mapping raw values to contiguous integer ids.

An index is built once on the driver from exact global value counts and then
shipped to workers unchanged. Ids follow the lexicographic order of the raw
values, so rebuilding from the same counts always yields the same mapping no
matter in which order partial counts arrived.
"""

from __future__ import annotations

from functools import partial
from typing import Mapping

import numpy as np

from .samplers import ClusterSizeSamplerCache, SimilarityFn


class UnseenValueError(KeyError):
    """Raised when a value was not observed while gathering statistics."""

    def __init__(
        self,
        value: str,
        *,
        attribute: str | None = None,
        record_id: str | None = None,
    ) -> None:
        self.value = value
        self.attribute = attribute
        self.record_id = record_id
        message = f"Value {value!r} missing from attribute index"
        if attribute is not None:
            message += f" '{attribute}'"
        if record_id is not None:
            message += f" (record {record_id!r})"
        super().__init__(message)

    def __str__(self) -> str:
        return str(self.args[0])

    def __reduce__(self):
        rebuild = partial(type(self), attribute=self.attribute, record_id=self.record_id)
        return rebuild, (self.value,)


class EmptyDomainError(ValueError):
    """Raised when an attribute index would contain no values."""


class AttributeIndex:
    """
    Bidirectional value <-> id mapping with frequency-weighted sampling.

    The mapping and counts are immutable. The only mutable piece of state is
    the random generator used by `sample` when none is passed explicitly; each
    worker replaces it on its own copy and never shares it.
    """

    def __init__(
        self,
        values: tuple[str, ...],
        counts: np.ndarray,
        *,
        similarity_fn: SimilarityFn | None = None,
        max_cluster_size: int = 0,
        generator: np.random.Generator | None = None,
    ) -> None:
        if not values:
            raise EmptyDomainError("Cannot build an attribute index over an empty domain.")
        counts = np.array(counts, dtype=np.int64)
        if counts.shape != (len(values),):
            raise ValueError("counts must contain exactly one entry per value.")
        counts.setflags(write=False)
        self._values = values
        self._ids = {value: idx for idx, value in enumerate(values)}
        if len(self._ids) != len(values):
            raise ValueError("Attribute index values must be distinct.")
        self._counts = counts
        self._samplers = ClusterSizeSamplerCache(
            values,
            counts,
            similarity_fn=similarity_fn,
            max_cluster_size=max_cluster_size,
        )
        self._generator = generator if generator is not None else np.random.default_rng()

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, value: object) -> bool:
        return value in self._ids

    def __setstate__(self, state: dict) -> None:
        self.__dict__.update(state)
        self._counts.setflags(write=False)

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"AttributeIndex(domain_size={self.domain_size})"

    @property
    def domain_size(self) -> int:
        return len(self._values)

    @property
    def values(self) -> tuple[str, ...]:
        return self._values

    @property
    def counts(self) -> np.ndarray:
        return self._counts

    @property
    def max_cluster_size(self) -> int:
        return self._samplers.max_cluster_size

    @property
    def generator(self) -> np.random.Generator:
        return self._generator

    def id_of(self, value: str) -> int:
        try:
            return self._ids[value]
        except KeyError as exc:
            raise UnseenValueError(value) from exc

    def value_of(self, value_id: int) -> str:
        if isinstance(value_id, (bool, np.bool_)) or not isinstance(value_id, (int, np.integer)):
            raise IndexError(f"Value id must be an integer, got {value_id!r}")
        if not 0 <= value_id < len(self._values):
            raise IndexError(f"Value id {value_id} out of bounds for domain of size {len(self)}")
        return self._values[int(value_id)]

    def count_of(self, value_id: int) -> int:
        self.value_of(value_id)
        return int(self._counts[value_id])

    def probability_of(self, value_id: int, cluster_size_hint: int | None = None) -> float:
        self.value_of(value_id)
        return float(self._samplers.get(cluster_size_hint).probabilities[value_id])

    def set_generator(self, generator: np.random.Generator) -> None:
        self._generator = generator

    def sample(
        self,
        generator: np.random.Generator | None = None,
        cluster_size_hint: int | None = None,
    ) -> int:
        """
        Draw a value id with probability proportional to its observed frequency.

        Parameters
        ----------
        generator:
            Random source for this draw; defaults to the index's local generator.
        cluster_size_hint:
            Number of records in the cluster the proposal is for. Hints up to
            the configured maximum reuse a precomputed distribution.
        """
        sampler = self._samplers.get(cluster_size_hint)
        return sampler.sample(generator if generator is not None else self._generator)

    def sample_many(
        self,
        size: int,
        generator: np.random.Generator | None = None,
        cluster_size_hint: int | None = None,
    ) -> np.ndarray:
        sampler = self._samplers.get(cluster_size_hint)
        return sampler.sample_many(generator if generator is not None else self._generator, size)


def build_attribute_index(
    value_counts: Mapping[str, int],
    *,
    similarity_fn: SimilarityFn | None = None,
    max_cluster_size: int = 0,
    generator: np.random.Generator | None = None,
) -> AttributeIndex:
    """
    Create an AttributeIndex from exact value counts.

    Parameters
    ----------
    value_counts:
        Global number of occurrences for every distinct value.
    max_cluster_size:
        Largest cluster size to precompute sampling distributions for.
    """
    if not value_counts:
        raise EmptyDomainError("Cannot build an attribute index from zero observed values.")
    non_positive = [value for value, count in value_counts.items() if count <= 0]
    if non_positive:
        raise ValueError(f"Value counts must be positive; offending values: {non_positive[:5]}")

    values = tuple(sorted(value_counts))
    counts = np.fromiter((value_counts[value] for value in values), dtype=np.int64, count=len(values))
    return AttributeIndex(
        values,
        counts,
        similarity_fn=similarity_fn,
        max_cluster_size=max_cluster_size,
        generator=generator,
    )
