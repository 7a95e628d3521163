"""Coarse face detector contract.

The detector runs on every polling tick, so implementations are expected to
be fast (BlazeFace-class models). Only the most prominent face is reported.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from facegate.core.types import Detection

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    import numpy as np
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


class FaceDetector(Protocol):
    """Protocol for coarse face detectors."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def detect(self, frame: NDArray[np.uint8]) -> Detection | None:
        """Detect the most prominent face in a frame.

        Args:
            frame: HxWx3 RGB uint8 array.

        Returns:
            The detection in frame-pixel coordinates, or None if no face was found.
        """
        ...


def most_prominent(detections: Iterable[Detection]) -> Detection | None:
    """Highest confidence wins; the larger box breaks a tie."""
    return max(detections, key=lambda d: (d.confidence, d.bbox.area), default=None)


class PayloadDetector:
    """Wraps a detector that reports faces as plain mappings.

    MediaPipe and similar runtimes hand back ``{"boundingBox": ..., "score": ...}``
    style dicts; each is parsed with ``Detection.from_mapping``.
    """

    def __init__(
        self,
        model_name: str,
        detect_fn: Callable[[NDArray[np.uint8]], Iterable[Mapping[str, Any]]],
        min_confidence: float = 0.5,
    ) -> None:
        self._model_name = model_name
        self._detect_fn = detect_fn
        self._min_confidence = min_confidence

    @property
    def model_name(self) -> str:
        return self._model_name

    def detect(self, frame: NDArray[np.uint8]) -> Detection | None:
        candidates = []
        for payload in self._detect_fn(frame):
            try:
                detection = Detection.from_mapping(payload)
            except (KeyError, TypeError, ValueError) as exc:
                logger.debug("Ignoring unreadable detection from %s: %s", self._model_name, exc)
                continue
            if detection.confidence >= self._min_confidence:
                candidates.append(detection)
        return most_prominent(candidates)
