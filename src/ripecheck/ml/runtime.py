"""Runtime adapter: the inference handle the pipeline calls ``predict`` on.

A real ONNX session is used when the configured model loads. Any load failure
degrades to :class:`SyntheticRipenessModel`, which emits category-biased random
scores so the rest of the pipeline keeps running.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol

import numpy as np

from ripecheck.ml.model_manager import MODEL_REGISTRY, OutputKind

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from ripecheck.config import Settings
    from ripecheck.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

RawPrediction = tuple[float, ...]

SYNTHETIC_MODEL_NAME = "synthetic"

# Binary rottenness bands the synthetic runtime samples from: ripe, overripe, spoiled.
_BINARY_BANDS: tuple[tuple[float, float], ...] = ((0.0, 0.3), (0.3, 0.7), (0.7, 1.0))


class RipenessModel(Protocol):
    """Protocol for anything that turns an image tensor into raw ripeness scores."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def synthetic(self) -> bool:
        """Return True when scores are generated rather than inferred."""
        ...

    def predict(self, tensor: NDArray[np.float32]) -> RawPrediction:
        """Run the model on a [1, H, W, 3] float32 tensor.

        Returns:
            Flat score vector: one rottenness score, or four category scores.
        """
        ...


class OnnxRipenessModel:
    """Ripeness model backed by an ONNX Runtime session."""

    def __init__(self, session: InferenceSession, model_name: str) -> None:
        self._session = session
        self._model_name = model_name
        self._input_name: str = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def synthetic(self) -> bool:
        return False

    def predict(self, tensor: NDArray[np.float32]) -> RawPrediction:
        outputs = self._session.run(None, {self._input_name: tensor})
        try:
            scores = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
            return tuple(float(score) for score in scores)
        finally:
            del outputs


class SyntheticRipenessModel:
    """Stand-in runtime producing category-biased pseudo-random scores."""

    def __init__(self, output_size: int = 1, seed: int | None = None) -> None:
        if output_size not in (1, 4):
            raise ValueError(f"output_size must be 1 or 4, got {output_size}")
        self._output_size = output_size
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()

    @property
    def model_name(self) -> str:
        return SYNTHETIC_MODEL_NAME

    @property
    def synthetic(self) -> bool:
        return True

    @property
    def output_size(self) -> int:
        return self._output_size

    def predict(self, tensor: NDArray[np.float32]) -> RawPrediction:
        # Generator is not thread-safe and predict runs on the inference pool.
        with self._lock:
            if self._output_size == 1:
                low, high = _BINARY_BANDS[int(self._rng.integers(len(_BINARY_BANDS)))]
                return (float(self._rng.uniform(low, high)),)

            favoured = int(self._rng.integers(4))
            dominant = float(self._rng.uniform(0.55, 0.9))
            rest = self._rng.dirichlet(np.ones(3)) * (1.0 - dominant)
        scores = [float(x) for x in rest]
        scores.insert(favoured, dominant)
        return tuple(scores)


def _output_size_for(model_name: str) -> int:
    spec = MODEL_REGISTRY.get(model_name)
    if spec is not None and spec.output is OutputKind.MULTICLASS:
        return 4
    return 1


def load_model(settings: Settings, manager: ModelManager) -> RipenessModel:
    """Load the configured ripeness model, falling back to the synthetic runtime.

    Load failures are logged and never raised: the service stays usable with
    generated scores until a working model artifact is provided.
    """
    name = settings.ripeness_model
    if settings.synthetic_model:
        logger.info("Synthetic runtime forced by configuration (model=%s)", name)
        return SyntheticRipenessModel(output_size=_output_size_for(name))

    if settings.model_path is None and settings.model_repo is None:
        logger.info("No model source configured (model=%s); using synthetic runtime", name)
        return SyntheticRipenessModel(output_size=_output_size_for(name))

    try:
        session = manager.get_session(name)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Could not load model %s (%s); using synthetic runtime", name, exc)
        return SyntheticRipenessModel(output_size=_output_size_for(name))

    logger.info("Ripeness model %s ready", name)
    return OnnxRipenessModel(session, name)
