"""Pydantic request/response schemas for the FaceGate API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from facegate.core.enrollment import DuplicatePolicy


class BoundingBoxIn(BaseModel):
    """Face box in frame-pixel coordinates."""

    x: float
    y: float
    width: float = Field(ge=0.0)
    height: float = Field(ge=0.0)


class DetectionIn(BaseModel):
    """Coarse detection produced on the client for one frame."""

    box: BoundingBoxIn
    landmarks: list[list[float]] | None = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class FrameIn(BaseModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)


class QualityRequest(BaseModel):
    detection: DetectionIn | None = None
    frame: FrameIn


class QualityResponse(BaseModel):
    ok: bool
    code: str = Field(description="OK, NO_FACE, DISTANCE_TOO_FAR, DISTANCE_TOO_CLOSE or OFF_CENTER")
    reason: str
    ratio: float | None = Field(default=None, description="Measured face size ratio")
    offset: list[float] | None = Field(default=None, description="Box center offset from frame center (dx, dy)")


class MatchRequest(BaseModel):
    embedding: list[float] = Field(min_length=1)
    top_k: int = Field(default=0, ge=0, le=20, description="Also return the k closest identities")


class Candidate(BaseModel):
    id: str
    distance: float


class MatchResponse(BaseModel):
    label: str
    distance: float | None = Field(description="Euclidean distance to the closest identity (null if gallery is empty)")
    matched: bool
    display_name: str | None = None
    candidates: list[Candidate] = Field(default_factory=list)


class EnrollRequest(BaseModel):
    id: str = Field(min_length=1)
    embedding: list[float] = Field(min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)
    policy: DuplicatePolicy | None = Field(default=None, description="Overrides the configured duplicate policy")


class EnrollResponse(BaseModel):
    id: str
    duplicate_of: str | None = None
    distance: float | None = None
    reason: str | None = None


class EmbeddingUpdate(BaseModel):
    embedding: list[float] = Field(min_length=1)
    policy: DuplicatePolicy | None = Field(default=None, description="Overrides the configured duplicate policy")


class IdentityOut(BaseModel):
    id: str
    display_name: str
    metadata: dict[str, Any]


class IdentitiesResponse(BaseModel):
    identities: list[IdentityOut]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    extractor_ready: bool
    gallery_size: int
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available embedding model."""

    name: str
    embedding_dim: int
    status: str = Field(description="Model status: 'active', 'available', or 'requires_license'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
