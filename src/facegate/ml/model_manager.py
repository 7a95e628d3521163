"""Embedding model files and their ONNX Runtime sessions.

Checkpoints run pitch-side on flaky connections, so a model file already in
``models_dir`` is used as-is and the HuggingFace Hub is only contacted when
it is missing. With ``offline_models`` set the Hub is never contacted.

One session is created per model and kept until ``shutdown()``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import GraphOptimizationLevel, InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from facegate.config import Settings

logger = logging.getLogger(__name__)

CPU_PROVIDER = "CPUExecutionProvider"

Provider = str | tuple[str, dict[str, object]]


class ModelManager(Protocol):
    """What the extractor and the service need from a model cache."""

    def ensure_downloaded(self, model_name: str) -> Path: ...

    def get_session(self, model_name: str) -> InferenceSession: ...

    def get_loaded_models(self) -> list[str]: ...

    def shutdown(self) -> None: ...


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelSpec:
    """Where an embedding model lives and what it produces."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    embedding_dim: int
    input_size: int
    license: str
    insightface: bool

    @property
    def relative_path(self) -> Path:
        """Location under ``models_dir``, matching hf_hub_download's ``local_dir`` layout."""
        if self.subfolder:
            return Path(self.subfolder) / self.filename
        return Path(self.filename)


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "auraface_v1": ModelSpec(
        name="auraface_v1",
        repo_id="fal/AuraFace-v1",
        filename="glintr100.onnx",
        subfolder=None,
        embedding_dim=512,
        input_size=112,
        license="Apache-2.0",
        insightface=False,
    ),
    "w600k_r50": ModelSpec(
        name="w600k_r50",
        repo_id="public-data/insightface",
        filename="w600k_r50.onnx",
        subfolder="models/buffalo_l",
        embedding_dim=512,
        input_size=112,
        license="Non-commercial (InsightFace)",
        insightface=True,
    ),
}


def get_model_spec(model_name: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Runtime options
# ---------------------------------------------------------------------------


def build_providers(device: str, gpu_mem_limit: int = 0) -> list[Provider]:
    """Execution providers for ``device``, always ending with the CPU fallback."""
    accelerator: Provider
    if device == "cuda":
        accelerator = (
            "CUDAExecutionProvider",
            {"device_id": 0, "gpu_mem_limit": gpu_mem_limit, "arena_extend_strategy": "kSameAsRequested"},
        )
    elif device == "openvino":
        accelerator = ("OpenVINOExecutionProvider", {"device_type": "CPU"})
    else:
        return [CPU_PROVIDER]
    return [accelerator, CPU_PROVIDER]


def build_session_options(settings: Settings) -> SessionOptions:
    opts = SessionOptions()
    opts.intra_op_num_threads = settings.intra_op_threads
    opts.inter_op_num_threads = settings.inter_op_threads
    opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    opts.enable_mem_pattern = True
    opts.enable_mem_reuse = True
    if settings.device == "openvino":
        # OpenVINO runs its own graph optimizations.
        opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return opts


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Resolves model files and caches one InferenceSession per model."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._providers = build_providers(settings.device, settings.gpu_mem_limit)
        self._session_options = build_session_options(settings)
        self._lock = threading.Lock()
        self._sessions: dict[str, InferenceSession] = {}

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return the local model file, fetching it from the Hub if it is missing.

        Raises:
            KeyError: For a model that is not in the registry.
            RuntimeError: For an InsightFace model whose license was not accepted.
            FileNotFoundError: If the file is missing and downloads are disabled.
        """
        spec = get_model_spec(model_name)
        if spec.insightface and not self._settings.accept_insightface_license:
            raise RuntimeError(f"Model '{spec.name}' requires FACEGATE_ACCEPT_INSIGHTFACE_LICENSE=true")

        local = self._models_dir / spec.relative_path
        if local.is_file():
            return local
        if self._settings.offline_models:
            raise FileNotFoundError(f"Model file {local} is missing and FACEGATE_OFFLINE_MODELS is set")

        self._models_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Fetching %s from %s", model_name, spec.repo_id)
        path = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir),
            )
        )
        logger.info("Stored %s at %s", model_name, path)
        return path

    def get_session(self, model_name: str) -> InferenceSession:
        """Return the model's session, creating it on first use.

        Creation holds the lock, so concurrent first calls load the model once.
        """
        with self._lock:
            session = self._sessions.get(model_name)
            if session is None:
                session = self._create_session(model_name)
                self._sessions[model_name] = session
            return session

    def get_loaded_models(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def shutdown(self) -> None:
        with self._lock:
            released = len(self._sessions)
            self._sessions.clear()
        logger.info("Released %d model session(s)", released)

    def _create_session(self, model_name: str) -> InferenceSession:
        spec = get_model_spec(model_name)
        path = self.ensure_downloaded(model_name)
        session = InferenceSession(str(path), sess_options=self._session_options, providers=self._providers)

        # Catch a wrong file before the first checkpoint frame does.
        width = session.get_outputs()[0].shape[-1]
        if isinstance(width, int) and width != spec.embedding_dim:
            raise RuntimeError(f"Model {model_name} produces {width}-d output, expected {spec.embedding_dim}")
        logger.info("Loaded %s (%s)", model_name, ", ".join(p if isinstance(p, str) else p[0] for p in self._providers))
        return session
