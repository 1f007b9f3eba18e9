"""
Record and attribute containers shared by the indexing pipeline.

`Record` is generic over its value type so the same shape carries raw string
values before indexing and dense integer ids afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, Optional, TypeVar

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .indexers import AttributeIndex
    from .samplers import SimilarityFn

V = TypeVar("V")

ValueId = int
FileId = str


@dataclass(frozen=True)
class Record(Generic[V]):
    """One row of source data: identifier, originating file and attribute values."""

    id: str
    file_id: FileId
    values: tuple[V, ...]

    def __len__(self) -> int:  # pragma: no cover - trivial
        return len(self.values)


@dataclass(frozen=True)
class DistortionPrior:
    """Beta(alpha, beta) prior on the probability an attribute value is distorted."""

    alpha: float
    beta: float

    def __post_init__(self) -> None:
        if self.alpha <= 0 or self.beta <= 0:
            raise ValueError(
                f"Distortion prior shape parameters must be positive, got ({self.alpha}, {self.beta})."
            )

    @property
    def mean(self) -> float:
        return self.alpha / (self.alpha + self.beta)


@dataclass(frozen=True)
class AttributeSpec:
    """
    Configuration for one record attribute.

    Parameters
    ----------
    name:
        Attribute name; must be unique within a schema.
    similarity_fn:
        Similarity used by the inference engine. ``None`` means constant
        similarity, i.e. every pair of values is equally similar.
    distortion_prior:
        Prior hyperparameters consumed by the inference engine.
    """

    name: str
    distortion_prior: DistortionPrior
    similarity_fn: Optional["SimilarityFn"] = None


@dataclass(frozen=True)
class IndexedAttribute:
    """An `AttributeSpec` paired with the index built from the source data."""

    name: str
    similarity_fn: Optional["SimilarityFn"]
    distortion_prior: DistortionPrior
    index: "AttributeIndex"

    @classmethod
    def from_spec(cls, spec: AttributeSpec, index: "AttributeIndex") -> "IndexedAttribute":
        return cls(
            name=spec.name,
            similarity_fn=spec.similarity_fn,
            distortion_prior=spec.distortion_prior,
            index=index,
        )
