"""Face embedding extraction.

Implementations: AuraFace v1 (default), ArcFace w600k_r50 (opt-in), both
run through ONNX Runtime.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import cv2
import numpy as np

from facegate.ml.model_manager import get_model_spec

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facegate.core.types import BoundingBox, Detection
    from facegate.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

# Extra margin around the detected box (hair, ears) before squaring the crop.
CROP_PADDING: float = 0.3


class EmbeddingExtractor(Protocol):
    """Protocol for face embedding extractors."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def embedding_dim(self) -> int:
        """Return the embedding dimensionality (e.g., 512)."""
        ...

    def extract(self, frame: NDArray[np.uint8], detection: Detection) -> NDArray[np.float32] | None:
        """Compute the embedding of the detected face.

        Args:
            frame: HxWx3 RGB uint8 array the detection was made on.
            detection: Face box in frame-pixel coordinates.

        Returns:
            The embedding vector, or None if no usable face crop could be taken.
        """
        ...


def crop_face(
    frame: NDArray[np.uint8],
    bbox: BoundingBox,
    padding: float = CROP_PADDING,
) -> NDArray[np.uint8] | None:
    """Cut a padded square around ``bbox``, clipped to the frame."""
    height, width = frame.shape[:2]
    size = max(bbox.width, bbox.height) * (1.0 + padding)
    cx, cy = bbox.center

    x0 = max(0, int(round(cx - size / 2.0)))
    y0 = max(0, int(round(cy - size / 2.0)))
    x1 = min(width, int(round(cx + size / 2.0)))
    y1 = min(height, int(round(cy + size / 2.0)))
    if x1 <= x0 or y1 <= y0:
        return None
    return frame[y0:y1, x0:x1]


def resize_face(crop: NDArray[np.uint8], size: int) -> NDArray[np.uint8]:
    """Stretch a crop to the model's ``size`` x ``size`` input."""
    resized: NDArray[np.uint8] = cv2.resize(crop, (size, size), interpolation=cv2.INTER_LINEAR)
    return resized


def to_blob(face: NDArray[np.uint8]) -> NDArray[np.float32]:
    """HxWx3 uint8 -> 1x3xHxW float32 scaled to [-1, 1]. Frames are RGB already."""
    height, width = face.shape[:2]
    blob: NDArray[np.float32] = cv2.dnn.blobFromImage(
        face, scalefactor=1.0 / 127.5, size=(width, height), mean=(127.5, 127.5, 127.5), swapRB=False
    )
    return blob


class OnnxEmbeddingExtractor:
    """Embedding extractor backed by a cached ONNX Runtime session."""

    def __init__(self, model_manager: ModelManager, model_name: str, normalize: bool = True) -> None:
        self._manager = model_manager
        self._spec = get_model_spec(model_name)
        self._normalize = normalize

    @property
    def model_name(self) -> str:
        return self._spec.name

    @property
    def embedding_dim(self) -> int:
        return self._spec.embedding_dim

    def load(self) -> None:
        """Download the model and create its session ahead of the first frame."""
        self._manager.get_session(self._spec.name)

    def extract(self, frame: NDArray[np.uint8], detection: Detection) -> NDArray[np.float32] | None:
        if frame.ndim != 3 or frame.shape[2] != 3:
            raise ValueError(f"Expected HxWx3 frame, got shape {frame.shape}")

        crop = crop_face(frame, detection.bbox)
        if crop is None:
            logger.debug("Detection %s falls outside the frame", detection.bbox)
            return None

        blob = to_blob(resize_face(crop, self._spec.input_size))
        session = self._manager.get_session(self._spec.name)
        input_name = session.get_inputs()[0].name
        outputs = session.run(None, {input_name: blob})

        embedding = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if embedding.shape[0] != self._spec.embedding_dim:
            raise RuntimeError(
                f"Model {self._spec.name} returned {embedding.shape[0]}-d output, expected {self._spec.embedding_dim}"
            )
        if self._normalize:
            norm = float(np.linalg.norm(embedding))
            if norm > 1e-6:
                embedding = embedding / norm
        return embedding
