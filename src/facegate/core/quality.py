"""Quality gate: cheap per-frame check run before any embedding is computed.

The gate is a pure function of one detection and the frame size. It only
looks at box geometry, so it is safe to call on every polling tick.

Checks, first failure wins:
    1. presence  -> NO_FACE
    2. size      -> DISTANCE_TOO_FAR / DISTANCE_TOO_CLOSE
    3. centering -> OFF_CENTER
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Literal

from facegate.core.messages import QUALITY_REASONS
from facegate.core.types import Detection, FrameSize

SizeMetric = Literal["area", "width"]

# Box area / frame area.
MIN_AREA_RATIO: float = 0.08
MAX_AREA_RATIO: float = 0.48

# Box width / frame width.
MIN_WIDTH_RATIO: float = 0.22
MAX_WIDTH_RATIO: float = 0.60

# Max distance of the box center from the frame center, as a fraction of
# the frame dimension on each axis.
CENTER_TOLERANCE: float = 0.15


class QualityCode(StrEnum):
    OK = "OK"
    NO_FACE = "NO_FACE"
    DISTANCE_TOO_FAR = "DISTANCE_TOO_FAR"
    DISTANCE_TOO_CLOSE = "DISTANCE_TOO_CLOSE"
    OFF_CENTER = "OFF_CENTER"


@dataclass(frozen=True)
class QualityConfig:
    """Tunable thresholds for the quality gate."""

    size_metric: SizeMetric = "area"
    min_size_ratio: float = MIN_AREA_RATIO
    max_size_ratio: float = MAX_AREA_RATIO
    center_tolerance: float = CENTER_TOLERANCE

    def __post_init__(self) -> None:
        if self.size_metric not in ("area", "width"):
            raise ValueError(f"Unknown size metric: {self.size_metric}")
        if not 0.0 <= self.min_size_ratio < self.max_size_ratio:
            raise ValueError(
                f"Size band must satisfy 0 <= min < max, got [{self.min_size_ratio}, {self.max_size_ratio}]"
            )
        if self.center_tolerance < 0.0:
            raise ValueError(f"Center tolerance must be non-negative, got {self.center_tolerance}")

    @classmethod
    def for_metric(cls, size_metric: SizeMetric, **overrides: float) -> QualityConfig:
        """Return a config using the default size band for ``size_metric``."""
        if size_metric == "width":
            band = {"min_size_ratio": MIN_WIDTH_RATIO, "max_size_ratio": MAX_WIDTH_RATIO}
        else:
            band = {"min_size_ratio": MIN_AREA_RATIO, "max_size_ratio": MAX_AREA_RATIO}
        band.update(overrides)
        return cls(size_metric=size_metric, **band)


DEFAULT_QUALITY_CONFIG = QualityConfig()


@dataclass(frozen=True)
class QualityVerdict:
    ok: bool
    code: QualityCode
    reason: str
    ratio: float | None = None
    offset: tuple[float, float] | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "ok": self.ok,
            "code": self.code.value,
            "reason": self.reason,
            "ratio": self.ratio,
            "offset": list(self.offset) if self.offset is not None else None,
        }


def _verdict(
    code: QualityCode,
    ratio: float | None = None,
    offset: tuple[float, float] | None = None,
) -> QualityVerdict:
    return QualityVerdict(
        ok=code is QualityCode.OK,
        code=code,
        reason=QUALITY_REASONS[code.value],
        ratio=ratio,
        offset=offset,
    )


def size_ratio(detection: Detection, frame: FrameSize, metric: SizeMetric = "area") -> float:
    if metric == "width":
        return detection.bbox.width / frame.width
    return detection.bbox.area / frame.area


def center_offset(detection: Detection, frame: FrameSize) -> tuple[float, float]:
    """Box center offset from the frame center, normalized per axis to [-0.5, 0.5] for in-frame boxes."""
    cx, cy = detection.bbox.center
    return cx / frame.width - 0.5, cy / frame.height - 0.5


def check_quality(
    detection: Detection | None,
    frame: FrameSize,
    config: QualityConfig = DEFAULT_QUALITY_CONFIG,
) -> QualityVerdict:
    """Decide whether a frame is worth running the embedding extractor on.

    Args:
        detection: Coarse detection for the frame, or None if no face was found.
        frame: Pixel dimensions of the frame.
        config: Size band and centering tolerance.

    Returns:
        A verdict; ``ok`` only when every check passes.
    """
    if detection is None:
        return _verdict(QualityCode.NO_FACE)

    ratio = size_ratio(detection, frame, config.size_metric)
    offset = center_offset(detection, frame)

    if ratio < config.min_size_ratio:
        return _verdict(QualityCode.DISTANCE_TOO_FAR, ratio, offset)
    if ratio > config.max_size_ratio:
        return _verdict(QualityCode.DISTANCE_TOO_CLOSE, ratio, offset)

    dx, dy = offset
    if abs(dx) > config.center_tolerance or abs(dy) > config.center_tolerance:
        return _verdict(QualityCode.OFF_CENTER, ratio, offset)

    return _verdict(QualityCode.OK, ratio, offset)
