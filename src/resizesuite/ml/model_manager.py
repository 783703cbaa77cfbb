"""Detector model files and their ONNX Runtime sessions.

Weights live in ``models_dir``. Missing files are pulled from the Hugging Face
Hub repository ``models_repo`` the first time a detector asks for them. A batch
run usually touches the same one or two models for every image, so sessions
stay cached and are dropped once they have sat idle for ``model_ttl`` seconds.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import ExecutionMode, GraphOptimizationLevel, InferenceSession, SessionOptions

if TYPE_CHECKING:
    from resizesuite.config import Settings

logger = logging.getLogger(__name__)

Provider = str | tuple[str, dict[str, object]]


class ModelManager(Protocol):
    """What a detector needs from model management."""

    def get_session(self, model_name: str) -> InferenceSession: ...

    def shutdown(self) -> None: ...


class ModelTask(StrEnum):
    FACE_DETECTION = "face_detection"
    OBJECT_DETECTION = "object_detection"


@dataclass(frozen=True)
class ModelSpec:
    """Where a detector model lives in the hub repository."""

    name: str
    filename: str
    subfolder: str
    task: ModelTask

    def local_path(self, models_dir: Path) -> Path:
        return models_dir / self.subfolder / self.filename


MODEL_REGISTRY: dict[str, ModelSpec] = {
    spec.name: spec
    for spec in (
        ModelSpec("ultraface_rfb_320", "version-RFB-320.onnx", "ultraface", ModelTask.FACE_DETECTION),
        ModelSpec("ultraface_slim_320", "version-slim-320.onnx", "ultraface", ModelTask.FACE_DETECTION),
        ModelSpec("ssd_mobilenet_v1", "ssd_mobilenet_v1_12.onnx", "ssd", ModelTask.OBJECT_DETECTION),
    )
}


def lookup_model(model_name: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        known = ", ".join(sorted(MODEL_REGISTRY))
        raise KeyError(f"Unknown model: {model_name} (known: {known})") from None


def execution_providers(settings: Settings) -> list[Provider]:
    """ONNX Runtime providers for ``settings.device``, CPU always last."""
    if settings.device == "cuda":
        cuda_options: dict[str, object] = {
            "device_id": 0,
            "gpu_mem_limit": settings.gpu_mem_limit,
            "arena_extend_strategy": "kSameAsRequested",
        }
        return [("CUDAExecutionProvider", cuda_options), "CPUExecutionProvider"]
    if settings.device == "openvino":
        return [("OpenVINOExecutionProvider", {"device_type": "CPU"}), "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def session_options(settings: Settings) -> SessionOptions:
    options = SessionOptions()
    options.intra_op_num_threads = settings.intra_op_threads
    options.inter_op_num_threads = settings.inter_op_threads
    options.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    if settings.device == "openvino":
        # OpenVINO optimizes the graph itself.
        options.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return options


@dataclass
class _CachedSession:
    session: InferenceSession
    last_used: float = field(default_factory=time.monotonic)

    def touch(self) -> InferenceSession:
        self.last_used = time.monotonic()
        return self.session


class OnnxModelManager:
    """Resolves detector weights and hands out shared inference sessions.

    Safe to call from several batch workers at once. Two workers asking for
    the same cold model may both build a session; the first one stored wins.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._providers = execution_providers(settings)
        self._options = session_options(settings)

        self._lock = threading.Lock()
        self._sessions: dict[str, _CachedSession] = {}
        self._model_paths: dict[str, Path] = {}

    def ensure_downloaded(self, model_name: str) -> Path:
        """Path of the model file, downloading it when it is not on disk yet.

        Raises:
            KeyError: If ``model_name`` is not a registered model.
        """
        spec = lookup_model(model_name)

        known = self._model_paths.get(model_name)
        if known is not None and known.exists():
            return known

        path = spec.local_path(self._models_dir)
        if not path.exists():
            logger.info("Fetching %s from %s", spec.filename, self._settings.models_repo)
            self._models_dir.mkdir(parents=True, exist_ok=True)
            path = Path(
                hf_hub_download(
                    repo_id=self._settings.models_repo,
                    filename=spec.filename,
                    subfolder=spec.subfolder,
                    local_dir=str(self._models_dir),
                )
            )
        self._model_paths[model_name] = path
        return path

    def get_session(self, model_name: str) -> InferenceSession:
        with self._lock:
            if model_name in self._sessions:
                return self._sessions[model_name].touch()

        self.unload_idle_models()
        path = self.ensure_downloaded(model_name)
        started = time.monotonic()
        session = InferenceSession(str(path), sess_options=self._options, providers=self._providers)

        with self._lock:
            cached = self._sessions.setdefault(model_name, _CachedSession(session))
        logger.info("Loaded %s in %.2fs", model_name, time.monotonic() - started)
        return cached.touch()

    def get_loaded_models(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def unload_idle_models(self) -> None:
        """Drop sessions idle for longer than ``model_ttl``. A TTL of 0 keeps everything."""
        ttl = self._settings.model_ttl
        if ttl == 0:
            return
        cutoff = time.monotonic() - ttl
        with self._lock:
            for name in [name for name, cached in self._sessions.items() if cached.last_used < cutoff]:
                del self._sessions[name]
                logger.info("Unloaded idle model %s", name)

    def shutdown(self) -> None:
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        logger.debug("Released %d model sessions", count)
