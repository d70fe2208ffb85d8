"""Model manager: download, load and cache ONNX ripeness models.

Handles fetching model files from the HuggingFace repo named by
RIPECHECK_MODEL_REPO (or using a local file when RIPECHECK_MODEL_PATH
is set) and creating and caching ONNX InferenceSessions
with the execution providers for the configured device.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from ripecheck.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_downloaded(self, model_name: str) -> Path:
        """Ensure a model is available locally and return its file path."""
        ...

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class OutputKind(StrEnum):
    BINARY = "binary"
    MULTICLASS = "multiclass"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX ripeness model."""

    name: str
    filename: str
    subfolder: str | None
    output: OutputKind
    license: str


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "fruit_freshness_mobilenetv2": ModelSpec(
        name="fruit_freshness_mobilenetv2",
        filename="fruit_freshness_mobilenetv2.onnx",
        subfolder=None,
        output=OutputKind.BINARY,
        license="Apache-2.0",
    ),
    "fruit_ripeness_efficientnet_b0": ModelSpec(
        name="fruit_ripeness_efficientnet_b0",
        filename="fruit_ripeness_efficientnet_b0.onnx",
        subfolder="multiclass",
        output=OutputKind.MULTICLASS,
        license="Apache-2.0",
    ),
}


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Downloads, loads and caches ONNX inference sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._sessions: dict[str, InferenceSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return the local model file, downloading it from HuggingFace if needed.

        Raises:
            KeyError: If the model is not in the registry.
            FileNotFoundError: If RIPECHECK_MODEL_PATH points at a missing file, or
                neither a local path nor a model repo is configured.
        """
        spec = self._get_spec(model_name)

        if self._settings.model_path is not None:
            local = Path(self._settings.model_path)
            if not local.is_file():
                raise FileNotFoundError(f"Model file not found: {local}")
            return local

        if model_name in self._model_paths:
            path = self._model_paths[model_name]
            if path.exists():
                return path

        repo_id = self._settings.model_repo
        if repo_id is None:
            raise FileNotFoundError(
                f"No source for model {model_name}: set RIPECHECK_MODEL_PATH or RIPECHECK_MODEL_REPO"
            )

        self._models_dir.mkdir(parents=True, exist_ok=True)
        downloaded = Path(
            hf_hub_download(
                repo_id=repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir),
            )
        )
        self._model_paths[model_name] = downloaded
        logger.info("Downloaded %s to %s", model_name, downloaded)
        return downloaded

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached InferenceSession, creating one if needed."""
        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                return cached

        model_path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Another thread may have created it while we loaded.
            existing = self._sessions.get(model_name)
            if existing is not None:
                return existing
            self._sessions[model_name] = session
            logger.info("Loaded session for %s from %s", model_name, model_path)
            return session

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            return list(self._sessions.keys())

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        with self._lock:
            self._sessions.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _get_spec(model_name: str) -> ModelSpec:
        try:
            return MODEL_REGISTRY[model_name]
        except KeyError:
            raise KeyError(f"Unknown model: {model_name}") from None

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
