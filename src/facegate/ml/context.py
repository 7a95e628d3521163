"""Explicit lifecycle for the detection and embedding models.

A ``VisionContext`` is created once by the caller, initialized before the
first tick and torn down when the checkpoint stops. Nothing is loaded
lazily on first use; a context that is not ready raises
``ExtractorUnavailable`` instead.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from facegate.core.errors import ExtractorUnavailable
from facegate.ml.face_recognizer import OnnxEmbeddingExtractor

if TYPE_CHECKING:
    from types import TracebackType

    from facegate.config import Settings
    from facegate.ml.face_detector import FaceDetector
    from facegate.ml.face_recognizer import EmbeddingExtractor
    from facegate.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)


class VisionContext:
    """Owns the coarse detector, the embedding extractor and the model cache."""

    def __init__(
        self,
        settings: Settings,
        model_manager: ModelManager | None = None,
        detector: FaceDetector | None = None,
        extractor: EmbeddingExtractor | None = None,
    ) -> None:
        self._settings = settings
        self._model_manager = model_manager
        self._detector = detector
        self._extractor = extractor
        self._ready = False
        self._error: str | None = None

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def error(self) -> str | None:
        """Why the last ``init()`` failed, if it did."""
        return self._error

    @property
    def detector(self) -> FaceDetector:
        self._require_ready()
        if self._detector is None:
            raise ExtractorUnavailable("No face detector configured")
        return self._detector

    @property
    def extractor(self) -> EmbeddingExtractor:
        self._require_ready()
        if self._extractor is None:
            raise ExtractorUnavailable("No embedding extractor configured")
        return self._extractor

    def init(self) -> None:
        """Load the embedding model.

        Raises:
            ExtractorUnavailable: If the model cannot be downloaded or loaded.
        """
        if self._ready:
            return
        try:
            if self._extractor is None:
                if self._model_manager is None:
                    raise RuntimeError("No model manager or extractor configured")
                extractor = OnnxEmbeddingExtractor(
                    self._model_manager,
                    self._settings.face_recognition_model,
                    normalize=self._settings.normalize_embeddings,
                )
                extractor.load()
                self._extractor = extractor
        except Exception as exc:
            self._error = str(exc)
            logger.error("Embedding model failed to load: %s", exc)
            raise ExtractorUnavailable(f"Embedding model unavailable: {exc}") from exc

        self._error = None
        self._ready = True
        logger.info(
            "Vision context ready (extractor=%s, dim=%d, detector=%s)",
            self._extractor.model_name,
            self._extractor.embedding_dim,
            self._detector.model_name if self._detector is not None else None,
        )

    def teardown(self) -> None:
        """Release model sessions. Safe to call more than once."""
        if self._model_manager is not None:
            self._model_manager.shutdown()
        self._ready = False
        logger.info("Vision context torn down")

    def __enter__(self) -> VisionContext:
        self.init()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.teardown()

    def _require_ready(self) -> None:
        if not self._ready:
            raise ExtractorUnavailable(self._error or "Vision context is not initialized")
