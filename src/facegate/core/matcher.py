"""Nearest-identity matcher over a static gallery of face embeddings.

A matcher is built once per gallery snapshot and never mutated; callers
rebuild it when identities are added, replaced or removed. Matching is a
linear Euclidean scan, which is plenty for galleries of a few thousand.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from facegate.core.errors import DimensionMismatch, MalformedGalleryEntry
from facegate.core.types import UNKNOWN_LABEL, IdentityRecord, MatchResult, coerce_embedding

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

MATCH_THRESHOLD: float = 0.45


@dataclass(frozen=True)
class MatchConfig:
    """Distance threshold separating "same person" from "unknown"."""

    threshold: float = MATCH_THRESHOLD

    def __post_init__(self) -> None:
        if not math.isfinite(self.threshold) or self.threshold < 0.0:
            raise ValueError(f"Match threshold must be a non-negative finite number, got {self.threshold}")


class IdentityMatcher:
    """Finds the closest enrolled identity for a probe embedding."""

    def __init__(self, records: list[IdentityRecord], config: MatchConfig) -> None:
        self._config = config
        self._records = records
        self._index = {record.id: record for record in records}
        if records:
            self._matrix: NDArray[np.float64] = np.stack([record.embedding for record in records])
        else:
            self._matrix = np.empty((0, 0), dtype=np.float64)

    @property
    def size(self) -> int:
        return len(self._records)

    @property
    def dimension(self) -> int | None:
        """Embedding length shared by the gallery, or None for an empty gallery."""
        return int(self._matrix.shape[1]) if self._records else None

    @property
    def threshold(self) -> float:
        return self._config.threshold

    @property
    def labels(self) -> list[str]:
        return [record.id for record in self._records]

    @property
    def records(self) -> list[IdentityRecord]:
        return list(self._records)

    def get(self, identity_id: str) -> IdentityRecord | None:
        return self._index.get(identity_id)

    def find_best_match(self, probe: object) -> MatchResult:
        """Return the closest identity, or ``"unknown"`` beyond the threshold.

        Ties resolve to the record that comes first in gallery order.

        Raises:
            MalformedEmbedding: If the probe is not a finite 1-D numeric vector.
            DimensionMismatch: If the probe length differs from the gallery's.
        """
        distances = self._distances(probe)
        if distances is None:
            return MatchResult(label=UNKNOWN_LABEL, distance=math.inf)

        best = int(np.argmin(distances))
        best_distance = float(distances[best])
        if best_distance > self._config.threshold:
            logger.debug(
                "No match within %.3f (closest %s at %.4f)",
                self.threshold,
                self._records[best].id,
                best_distance,
            )
            return MatchResult(label=UNKNOWN_LABEL, distance=best_distance)
        return MatchResult(label=self._records[best].id, distance=best_distance)

    def rank(self, probe: object, k: int = 3) -> list[tuple[str, float]]:
        """Return the ``k`` closest identities without applying the threshold."""
        if k <= 0:
            return []
        distances = self._distances(probe)
        if distances is None:
            return []
        order = np.argsort(distances, kind="stable")[:k]
        return [(self._records[i].id, float(distances[i])) for i in order]

    def _distances(self, probe: object) -> NDArray[np.float64] | None:
        vec = coerce_embedding(probe)
        if not self._records:
            return None
        if vec.shape[0] != self._matrix.shape[1]:
            raise DimensionMismatch(expected=int(self._matrix.shape[1]), actual=int(vec.shape[0]))
        distances: NDArray[np.float64] = np.linalg.norm(self._matrix - vec, axis=1)
        return distances


def _valid_records(gallery: Iterable[IdentityRecord | Mapping[str, Any]]) -> list[IdentityRecord]:
    records: list[IdentityRecord] = []
    seen: set[str] = set()
    dimension: int | None = None

    for position, item in enumerate(gallery):
        try:
            record = item if isinstance(item, IdentityRecord) else IdentityRecord.from_mapping(item)
        except MalformedGalleryEntry as exc:
            logger.warning("Skipping gallery entry #%d: %s", position, exc)
            continue

        if record.id in seen:
            logger.warning("Skipping gallery entry #%d: duplicate id %r", position, record.id)
            continue
        if dimension is None:
            dimension = record.dimension
        elif record.dimension != dimension:
            logger.warning(
                "Skipping gallery entry #%d: %r has %d-d embedding, gallery is %d-d",
                position,
                record.id,
                record.dimension,
                dimension,
            )
            continue

        seen.add(record.id)
        records.append(record)
    return records


def create_matcher(
    gallery: Iterable[IdentityRecord | Mapping[str, Any]] | None,
    config: MatchConfig | None = None,
) -> IdentityMatcher:
    """Build a matcher over ``gallery``.

    Entries may be ``IdentityRecord`` objects or raw stored documents. Entries
    with a missing id, an unusable embedding, a repeated id, or an embedding
    length that disagrees with the first valid entry are logged and skipped.
    An empty or None gallery yields a matcher that always answers "unknown".
    """
    records = _valid_records(gallery or ())
    matcher = IdentityMatcher(records, config or MatchConfig())
    logger.debug("Built matcher over %d identities (dimension=%s)", matcher.size, matcher.dimension)
    return matcher
