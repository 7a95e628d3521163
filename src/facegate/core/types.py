"""Common dataclasses and type aliases used across the facegate core."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from facegate.core.errors import MalformedEmbedding, MalformedGalleryEntry

if TYPE_CHECKING:
    from numpy.typing import NDArray

UNKNOWN_LABEL = "unknown"


def coerce_embedding(value: object) -> NDArray[np.float64]:
    """Interpret ``value`` as a finite 1-D float64 vector.

    Accepts sequences, numpy arrays, JSON strings, and document-store maps of
    ``{"0": v0, "1": v1, ...}`` (how typed arrays come back from Firestore).
    The returned array is a read-only copy.

    Raises:
        MalformedEmbedding: If the value is missing, non-numeric, not 1-D,
            empty, or contains NaN/inf.
    """
    if value is None:
        raise MalformedEmbedding("Embedding is missing")
    if isinstance(value, (bytes, bytearray)):
        raise MalformedEmbedding("Embedding must be numeric, got bytes")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise MalformedEmbedding("Embedding string is not valid JSON") from exc
    if isinstance(value, Mapping):
        try:
            keys = sorted(value, key=int)
        except (TypeError, ValueError) as exc:
            raise MalformedEmbedding("Embedding map keys must be integer indices") from exc
        value = [value[key] for key in keys]

    try:
        raw = np.asarray(value)
    except (TypeError, ValueError) as exc:
        raise MalformedEmbedding(f"Embedding is not numeric: {exc}") from exc
    if raw.dtype.kind not in "iuf":
        raise MalformedEmbedding(f"Embedding is not numeric (dtype {raw.dtype})")
    if raw.ndim != 1:
        raise MalformedEmbedding(f"Embedding must be 1-D, got shape {raw.shape}")
    if raw.size == 0:
        raise MalformedEmbedding("Embedding is empty")

    vec = np.array(raw, dtype=np.float64)
    if not np.all(np.isfinite(vec)):
        raise MalformedEmbedding("Embedding contains NaN or infinite values")
    vec.setflags(write=False)
    return vec


# ---------------------------------------------------------------------------
# Frames and detections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned face box in frame-pixel coordinates (top-left origin)."""

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        values = (self.x, self.y, self.width, self.height)
        if not all(math.isfinite(v) for v in values):
            raise ValueError(f"Bounding box values must be finite: {values}")
        if self.width < 0 or self.height < 0:
            raise ValueError(f"Bounding box size must be non-negative: {self.width}x{self.height}")

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2.0, self.y + self.height / 2.0

    @property
    def area(self) -> float:
        return self.width * self.height

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> BoundingBox:
        x = data.get("x", data.get("originX"))
        y = data.get("y", data.get("originY"))
        if x is None or y is None:
            raise ValueError("Bounding box needs x/y (or originX/originY)")
        return cls(float(x), float(y), float(data["width"]), float(data["height"]))


@dataclass(frozen=True)
class FrameSize:
    """Pixel dimensions of the video frame a detection belongs to."""

    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Frame dimensions must be positive: {self.width}x{self.height}")

    @property
    def area(self) -> int:
        return self.width * self.height


@dataclass(frozen=True, eq=False)
class Detection:
    """Coarse face detection for one frame."""

    bbox: BoundingBox
    landmarks: NDArray[np.float32] | None = None
    confidence: float = 1.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Detection:
        """Build a detection from a detector payload.

        Both ``box``/``bbox`` and MediaPipe-style ``boundingBox`` keys are
        understood.
        """
        box = data.get("bbox") or data.get("box") or data.get("boundingBox")
        if box is None:
            raise ValueError("Detection has no bounding box")
        landmarks = data.get("landmarks", data.get("keypoints"))
        return cls(
            bbox=BoundingBox.from_mapping(box),
            landmarks=None if landmarks is None else np.asarray(landmarks, dtype=np.float32),
            confidence=float(data.get("confidence", data.get("score", 1.0))),
        )


# ---------------------------------------------------------------------------
# Identities and match results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class IdentityRecord:
    """One enrolled person: unique id plus a single reference embedding.

    The embedding is coerced and validated on construction, so a record that
    exists is always usable by a matcher.
    """

    id: str
    embedding: NDArray[np.float64]
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            raise MalformedGalleryEntry("Identity record has no id")
        if self.id == UNKNOWN_LABEL:
            raise MalformedGalleryEntry(f"Identity id {UNKNOWN_LABEL!r} is reserved", self.id)
        try:
            embedding = coerce_embedding(self.embedding)
        except MalformedEmbedding as exc:
            raise MalformedGalleryEntry(f"Record {self.id!r}: {exc}", self.id) from exc
        object.__setattr__(self, "embedding", embedding)
        object.__setattr__(self, "metadata", dict(self.metadata or {}))

    @property
    def dimension(self) -> int:
        return int(self.embedding.shape[0])

    @property
    def display_name(self) -> str:
        name = self.metadata.get("name")
        if name:
            return str(name)
        parts = [self.metadata.get("nombre"), self.metadata.get("apellido")]
        full = " ".join(str(p) for p in parts if p)
        return full or self.id

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> IdentityRecord:
        """Build a record from a stored document.

        The embedding may live under ``embedding`` or ``descriptor``. Metadata
        comes from an explicit ``metadata`` map, or else from every other key
        of the document.
        """
        if not isinstance(data, Mapping):
            raise MalformedGalleryEntry(f"Identity record must be a mapping, got {type(data).__name__}")
        raw = data.get("embedding")
        if raw is None:
            raw = data.get("descriptor")
        metadata = data.get("metadata")
        if metadata is None:
            metadata = {k: v for k, v in data.items() if k not in ("id", "embedding", "descriptor")}
        return cls(id=data.get("id"), embedding=raw, metadata=metadata)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "embedding": self.embedding.tolist(),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class MatchResult:
    """Closest gallery identity for a probe, or ``"unknown"``."""

    label: str
    distance: float

    @property
    def matched(self) -> bool:
        return self.label != UNKNOWN_LABEL

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "distance": self.distance if math.isfinite(self.distance) else None,
            "matched": self.matched,
        }

