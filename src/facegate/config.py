"""Environment-based configuration for FaceGate."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from facegate.core.enrollment import DuplicatePolicy
from facegate.core.matcher import MATCH_THRESHOLD, MatchConfig
from facegate.core.quality import CENTER_TOLERANCE, QualityConfig
from facegate.scanner import ScanConfig


class Settings(BaseSettings):
    """Application settings loaded from FACEGATE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FACEGATE_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082
    log_level: str = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None
    admin_api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Embedding model
    face_recognition_model: str = "auraface_v1"
    accept_insightface_license: bool = False
    models_dir: str = "models"
    offline_models: bool = False
    normalize_embeddings: bool = True
    load_models_on_startup: bool = False

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Matching
    match_threshold: float = Field(default=MATCH_THRESHOLD, ge=0.0)
    duplicate_threshold: float | None = Field(default=None, ge=0.0)
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.BLOCK

    # Quality gate (None = default band for the size metric)
    size_metric: Literal["area", "width"] = "area"
    min_face_ratio: float | None = Field(default=None, ge=0.0, le=1.0)
    max_face_ratio: float | None = Field(default=None, gt=0.0)
    center_tolerance: float = Field(default=CENTER_TOLERANCE, ge=0.0)

    # Checkpoint scanning
    poll_interval_ms: int = Field(default=150, ge=10)
    scan_progress_step: int = Field(default=25, ge=1, le=100)
    scan_progress_decay: int = Field(default=10, ge=0)
    match_cooldown: float = Field(default=2.0, ge=0.0)
    extract_timeout: float | None = Field(default=None, gt=0.0)

    # Gallery snapshot loaded at startup
    gallery_path: str | None = None

    @model_validator(mode="after")
    def _check_size_band(self) -> Settings:
        self.quality_config()
        return self

    def quality_config(self) -> QualityConfig:
        overrides: dict[str, float] = {"center_tolerance": self.center_tolerance}
        if self.min_face_ratio is not None:
            overrides["min_size_ratio"] = self.min_face_ratio
        if self.max_face_ratio is not None:
            overrides["max_size_ratio"] = self.max_face_ratio
        return QualityConfig.for_metric(self.size_metric, **overrides)

    def match_config(self) -> MatchConfig:
        return MatchConfig(threshold=self.match_threshold)

    def duplicate_config(self) -> MatchConfig:
        if self.duplicate_threshold is None:
            return self.match_config()
        return MatchConfig(threshold=self.duplicate_threshold)

    def scan_config(self) -> ScanConfig:
        return ScanConfig(
            poll_interval=self.poll_interval_ms / 1000.0,
            progress_step=self.scan_progress_step,
            progress_decay=self.scan_progress_decay,
            match_cooldown=self.match_cooldown,
            extract_timeout=self.extract_timeout,
            quality=self.quality_config(),
        )


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
