"""Frequency-weighted value sampling for attribute domains."""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

import numpy as np


@runtime_checkable
class SimilarityFn(Protocol):
    """Pairwise similarity between two raw attribute values."""

    def similarity(self, a: str, b: str) -> float:
        ...


class ConstantSimilarityFn:
    """Every pair of values is equally similar."""

    def similarity(self, a: str, b: str) -> float:
        return 0.0

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ConstantSimilarityFn)

    def __hash__(self) -> int:  # pragma: no cover - trivial
        return hash(ConstantSimilarityFn)


def is_constant(similarity_fn: SimilarityFn | None) -> bool:
    return similarity_fn is None or isinstance(similarity_fn, ConstantSimilarityFn)


class FrequencySampler:
    """
    Draw indices in proportion to non-negative weights.

    The weights are normalised into a cumulative distribution once, after which
    each draw is a single uniform variate plus a binary search.
    """

    __slots__ = ("_cdf",)

    def __init__(self, weights: np.ndarray) -> None:
        weights = np.asarray(weights, dtype=float)
        if weights.ndim != 1 or weights.size == 0:
            raise ValueError("weights must be a non-empty one-dimensional array.")
        if np.any(weights < 0) or not np.all(np.isfinite(weights)):
            raise ValueError("weights must be finite and non-negative.")
        total = weights.sum()
        if total <= 0:
            raise ValueError("weights must not all be zero.")
        cdf = np.cumsum(weights / total)
        cdf[-1] = 1.0
        cdf.setflags(write=False)
        self._cdf = cdf

    def __getstate__(self) -> dict[str, np.ndarray]:
        return {"cdf": self._cdf}

    def __setstate__(self, state: dict[str, np.ndarray]) -> None:
        cdf = state["cdf"]
        cdf.setflags(write=False)
        self._cdf = cdf

    def __len__(self) -> int:
        return self._cdf.size

    @property
    def probabilities(self) -> np.ndarray:
        return np.diff(self._cdf, prepend=0.0)

    def sample(self, generator: np.random.Generator) -> int:
        return int(np.searchsorted(self._cdf, generator.random(), side="right"))

    def sample_many(self, generator: np.random.Generator, size: int) -> np.ndarray:
        if size < 0:
            raise ValueError("size must be non-negative.")
        return np.searchsorted(self._cdf, generator.random(size), side="right").astype(np.int64)


def _log_normalisations(
    values: Sequence[str], probabilities: np.ndarray, similarity_fn: SimilarityFn
) -> np.ndarray:
    # log Z(v) where Z(v) = sum_w p(w) * exp(sim(v, w))
    log_z = np.empty(len(values), dtype=float)
    log_p = np.log(probabilities)
    for i, value in enumerate(values):
        sims = np.fromiter(
            (similarity_fn.similarity(value, other) for other in values),
            dtype=float,
            count=len(values),
        )
        terms = log_p + sims
        peak = terms.max()
        log_z[i] = peak + np.log(np.exp(terms - peak).sum())
    return log_z


class ClusterSizeSamplerCache:
    """
    Proposal distributions over an attribute domain, keyed by cluster size.

    For a cluster of `k` records the proposal weight of value `v` is
    ``count(v) * Z(v) ** -k`` where `Z(v)` is the similarity normalisation of
    `v`. Sizes `1..max_cluster_size` are built once and reused; larger sizes
    are built on demand and not retained. With constant similarity `Z` does not
    depend on `v`, so every size shares the plain frequency sampler.
    """

    def __init__(
        self,
        values: Sequence[str],
        counts: np.ndarray,
        *,
        similarity_fn: SimilarityFn | None = None,
        max_cluster_size: int = 0,
    ) -> None:
        if max_cluster_size < 0:
            raise ValueError("max_cluster_size must be non-negative.")
        self.max_cluster_size = max_cluster_size
        self.frequency = FrequencySampler(counts)
        self._log_counts = np.log(np.asarray(counts, dtype=float))
        self._log_z: np.ndarray | None = None
        self._by_size: dict[int, FrequencySampler] = {}

        if not is_constant(similarity_fn):
            self._log_z = _log_normalisations(values, self.frequency.probabilities, similarity_fn)
            for size in range(1, max_cluster_size + 1):
                self._by_size[size] = self._build(size)

    def _build(self, cluster_size: int) -> FrequencySampler:
        log_weights = self._log_counts - cluster_size * self._log_z
        return FrequencySampler(np.exp(log_weights - log_weights.max()))

    @property
    def cached_sizes(self) -> tuple[int, ...]:
        return tuple(sorted(self._by_size))

    def get(self, cluster_size: int | None) -> FrequencySampler:
        if cluster_size is None or self._log_z is None:
            if cluster_size is not None and cluster_size < 0:
                raise ValueError("cluster_size_hint must be non-negative.")
            return self.frequency
        if cluster_size < 0:
            raise ValueError("cluster_size_hint must be non-negative.")
        if cluster_size == 0:
            return self.frequency
        cached = self._by_size.get(cluster_size)
        if cached is not None:
            return cached
        return self._build(cluster_size)
