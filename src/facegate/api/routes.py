"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from facegate.api.middleware import verify_admin_key, verify_api_key
from facegate.api.schemas import (
    Candidate,
    EmbeddingUpdate,
    EnrollRequest,
    EnrollResponse,
    ErrorResponse,
    HealthResponse,
    IdentitiesResponse,
    IdentityOut,
    MatchRequest,
    MatchResponse,
    ModelInfo,
    ModelsResponse,
    QualityRequest,
    QualityResponse,
)
from facegate.core.errors import (
    DuplicateIdentity,
    IdentityExists,
    MalformedEmbedding,
    MalformedGalleryEntry,
    UnknownIdentity,
)
from facegate.core.quality import check_quality
from facegate.core.types import BoundingBox, Detection, FrameSize, IdentityRecord
from facegate.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from facegate.config import Settings
    from facegate.gallery import GalleryStore
    from facegate.ml.context import VisionContext
    from facegate.ml.inference import InferencePool
    from facegate.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_gallery(request: Request) -> GalleryStore:
    gallery: GalleryStore = request.app.state.gallery
    return gallery


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _persist(request: Request) -> None:
    settings = _get_settings(request)
    if settings.gallery_path is not None:
        _get_gallery(request).save(settings.gallery_path)


def _identity_out(record: IdentityRecord) -> IdentityOut:
    return IdentityOut(id=record.id, display_name=record.display_name, metadata=dict(record.metadata))


# ---------------------------------------------------------------------------
# Checkpoint endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/quality",
    response_model=QualityResponse,
    responses={status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse}},
    summary="Check whether a detected face is good enough to identify",
)
async def quality(body: QualityRequest, request: Request) -> QualityResponse:
    """Run the quality gate on a client-side detection."""
    settings = _get_settings(request)
    detection = None
    try:
        if body.detection is not None:
            box = body.detection.box
            landmarks = body.detection.landmarks
            detection = Detection(
                bbox=BoundingBox(box.x, box.y, box.width, box.height),
                landmarks=None if landmarks is None else np.asarray(landmarks, dtype=np.float32),
                confidence=body.detection.confidence,
            )
        verdict = check_quality(detection, FrameSize(body.frame.width, body.frame.height), settings.quality_config())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    return QualityResponse(
        ok=verdict.ok,
        code=verdict.code.value,
        reason=verdict.reason,
        ratio=verdict.ratio,
        offset=list(verdict.offset) if verdict.offset is not None else None,
    )


@router.post(
    "/match",
    response_model=MatchResponse,
    responses={status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse}},
    summary="Identify a face embedding against the enrolled gallery",
)
def match(body: MatchRequest, request: Request) -> MatchResponse:
    """Return the closest enrolled identity, or "unknown"."""
    matcher = _get_gallery(request).matcher()
    try:
        result = matcher.find_best_match(body.embedding)
        ranked = matcher.rank(body.embedding, body.top_k) if body.top_k else []
    except MalformedEmbedding as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    record = matcher.get(result.label) if result.matched else None
    payload = result.to_dict()
    return MatchResponse(
        label=payload["label"],
        distance=payload["distance"],
        matched=payload["matched"],
        display_name=record.display_name if record is not None else None,
        candidates=[Candidate(id=identity_id, distance=distance) for identity_id, distance in ranked],
    )


# ---------------------------------------------------------------------------
# Gallery endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/identities",
    response_model=IdentitiesResponse,
    summary="List enrolled identities",
)
def list_identities(request: Request) -> IdentitiesResponse:
    return IdentitiesResponse(identities=[_identity_out(r) for r in _get_gallery(request).records()])


@router.post(
    "/identities",
    response_model=EnrollResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(verify_admin_key)],
    responses={
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
    },
    summary="Enroll a new identity after a duplicate-face check",
)
def enroll(body: EnrollRequest, request: Request) -> EnrollResponse:
    settings = _get_settings(request)
    gallery = _get_gallery(request)
    try:
        record = IdentityRecord(id=body.id, embedding=body.embedding, metadata=body.metadata)  # type: ignore[arg-type]
        check = gallery.enroll(record, body.policy or settings.duplicate_policy)
    except (IdentityExists, DuplicateIdentity) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except (MalformedGalleryEntry, MalformedEmbedding) as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    _persist(request)
    return EnrollResponse(
        id=record.id,
        duplicate_of=check.match.label if check.duplicate else None,
        distance=check.match.to_dict()["distance"],
        reason=check.reason,
    )


@router.put(
    "/identities/{identity_id}/embedding",
    response_model=IdentityOut,
    dependencies=[Depends(verify_admin_key)],
    responses={
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
    },
    summary="Re-enroll an identity with a new face embedding",
)
def replace_embedding(identity_id: str, body: EmbeddingUpdate, request: Request) -> IdentityOut:
    try:
        policy = body.policy or _get_settings(request).duplicate_policy
        record = _get_gallery(request).replace_embedding(identity_id, body.embedding, policy)
    except UnknownIdentity as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except DuplicateIdentity as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except (MalformedGalleryEntry, MalformedEmbedding) as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    _persist(request)
    return _identity_out(record)


@router.delete(
    "/identities/{identity_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(verify_admin_key)],
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Remove an identity from the gallery",
)
def remove_identity(identity_id: str, request: Request) -> Response:
    try:
        _get_gallery(request).remove(identity_id)
    except UnknownIdentity as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    _persist(request)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Service endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    vision: VisionContext = request.app.state.vision
    model_manager: ModelManager = request.app.state.model_manager
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=model_manager.get_loaded_models(),
        extractor_ready=vision.ready,
        gallery_size=len(_get_gallery(request)),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available embedding models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models and their status based on current configuration."""
    settings = _get_settings(request)

    models: list[ModelInfo] = []
    for spec in MODEL_REGISTRY.values():
        if spec.name == settings.face_recognition_model:
            model_status = "active"
        elif spec.insightface and not settings.accept_insightface_license:
            model_status = "requires_license"
        else:
            model_status = "available"

        models.append(
            ModelInfo(
                name=spec.name,
                embedding_dim=spec.embedding_dim,
                status=model_status,
                license=spec.license,
            )
        )

    return ModelsResponse(models=models)
