"""Classification pipeline: image in, enriched ripeness result out.

Stages of one call::

    idle -> preprocessing -> inferring -> mapping -> enriching -> emitted -> idle

A failure in any stage raises out of :meth:`ClassificationPipeline.classify`
and nothing is published. Each call runs as one coroutine; awaiting the
inference pool is its only suspension point, so concurrent calls may finish
out of submission order.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np

from ripecheck.catalog import load_catalog
from ripecheck.errors import InferenceError
from ripecheck.ml.inference import InferencePool
from ripecheck.ml.model_manager import OnnxModelManager
from ripecheck.ml.preprocessing import MODEL_INPUT_SIZE, decode_image, normalize_image
from ripecheck.ml.ripeness import map_prediction
from ripecheck.ml.runtime import load_model

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

    from ripecheck.catalog import FruitCatalog
    from ripecheck.config import Settings
    from ripecheck.ml.model_manager import ModelManager
    from ripecheck.ml.ripeness import ConfidenceEntry, MappedPrediction, RipenessCategory
    from ripecheck.ml.runtime import RipenessModel

    ResultListener = Callable[["ClassificationResult"], object]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationResult:
    """One finished classification, ready for display and history."""

    fruit_type: str
    fruit_display_name: str
    ripeness: RipenessCategory
    confidence: float
    all_confidences: tuple[ConfidenceEntry, ...]
    recommended_action: str
    ripeness_indicators: str
    timestamp: datetime
    raw_score: float | None = None
    source: str | None = None


def assemble_result(
    mapped: MappedPrediction,
    fruit_type: str,
    catalog: FruitCatalog,
    source: str | None = None,
    now: datetime | None = None,
) -> ClassificationResult:
    """Enrich a mapped prediction with catalog text and stamp the time."""
    return ClassificationResult(
        fruit_type=fruit_type,
        fruit_display_name=catalog.display_name(fruit_type),
        ripeness=mapped.ripeness,
        confidence=mapped.confidence,
        all_confidences=mapped.all_confidences,
        recommended_action=catalog.recommendation(mapped.ripeness, fruit_type),
        ripeness_indicators=catalog.indicators(mapped.ripeness, fruit_type),
        timestamp=now or datetime.now(UTC),
        raw_score=mapped.raw_score,
        source=source,
    )


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------


class ResultBroadcaster:
    """Fire-and-forget fan-out of finished results to registered listeners.

    Plain callables run inline in registration order. Coroutine functions are
    scheduled as tasks on the running loop and not awaited. Listener errors are
    logged and never reach the publisher.
    """

    def __init__(self) -> None:
        self._listeners: list[ResultListener] = []
        self._lock = threading.Lock()
        self._pending: set[asyncio.Task[object]] = set()

    def subscribe(self, listener: ResultListener) -> Callable[[], None]:
        """Register a listener and return a function that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def publish(self, result: ClassificationResult) -> None:
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                outcome = listener(result)
            except Exception:
                logger.exception("Result listener %r failed", listener)
                continue
            if asyncio.iscoroutine(outcome):
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    outcome.close()
                    logger.exception("Async result listener %r needs a running event loop", listener)
                    continue
                task = loop.create_task(outcome)
                self._pending.add(task)
                task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[object]) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async result listener failed", exc_info=task.exception())


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class HistoryBuffer:
    """Bounded FIFO of recent results; the oldest entry is evicted first."""

    def __init__(self, capacity: int = 50) -> None:
        if capacity < 1:
            raise ValueError(f"History capacity must be at least 1, got {capacity}")
        self._items: deque[ClassificationResult] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    def append(self, result: ClassificationResult) -> None:
        with self._lock:
            self._items.append(result)

    def snapshot(self) -> list[ClassificationResult]:
        """Return the buffered results, oldest first."""
        with self._lock:
            return list(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class PipelineStage(StrEnum):
    IDLE = "idle"
    PREPROCESSING = "preprocessing"
    INFERRING = "inferring"
    MAPPING = "mapping"
    ENRICHING = "enriching"
    EMITTED = "emitted"


class ClassificationPipeline:
    """Owns the model handle, catalog, history and broadcaster for one service instance."""

    def __init__(
        self,
        model: RipenessModel,
        catalog: FruitCatalog,
        *,
        pool: InferencePool | None = None,
        broadcaster: ResultBroadcaster | None = None,
        history: HistoryBuffer | None = None,
        input_size: int = MODEL_INPUT_SIZE,
        max_image_pixels: int = 16_777_216,
        manager: ModelManager | None = None,
    ) -> None:
        self.model = model
        self.catalog = catalog
        self.pool = pool if pool is not None else InferencePool(max_concurrent=2)
        self.broadcaster = broadcaster if broadcaster is not None else ResultBroadcaster()
        self.history = history if history is not None else HistoryBuffer()
        self._input_size = input_size
        self._max_image_pixels = max_image_pixels
        self._manager = manager
        self._call_ids = itertools.count(1)

    async def classify(
        self,
        image: bytes | NDArray[np.uint8],
        filename: str | None = None,
    ) -> ClassificationResult:
        """Classify one image and publish the result.

        Args:
            image: Encoded image bytes, or an already decoded HxWx3 RGB array.
            filename: Source name used only to guess the fruit type.

        Raises:
            PreprocessError: If the input cannot be decoded or normalized.
            InferenceError: If the model fails or returns unusable scores.
            TimeoutError: If the inference pool stays saturated.
        """
        call_id = next(self._call_ids)
        stage = PipelineStage.PREPROCESSING
        tensor: NDArray[np.float32] | None = None
        try:
            logger.debug("classify#%d %s", call_id, stage)
            if isinstance(image, np.ndarray):
                tensor = normalize_image(image, self._input_size)
            else:
                tensor = normalize_image(decode_image(bytes(image), self._max_image_pixels), self._input_size)

            stage = PipelineStage.INFERRING
            logger.debug("classify#%d %s (model=%s)", call_id, stage, self.model.model_name)
            try:
                raw = await self.pool.run(self.model.predict, tensor)
            except TimeoutError:
                raise
            except Exception as exc:
                raise InferenceError(f"Model {self.model.model_name} failed: {exc}") from exc
            finally:
                tensor = None

            stage = PipelineStage.MAPPING
            logger.debug("classify#%d %s raw=%s", call_id, stage, raw)
            mapped = map_prediction(raw)

            stage = PipelineStage.ENRICHING
            logger.debug("classify#%d %s", call_id, stage)
            fruit_type = self.catalog.extract_fruit_type(filename)
            result = assemble_result(mapped, fruit_type, self.catalog, source=filename)
        except Exception as exc:
            logger.warning("classify#%d failed during %s: %s", call_id, stage, exc)
            raise

        self.broadcaster.publish(result)
        logger.debug("classify#%d %s", call_id, PipelineStage.EMITTED)
        logger.info(
            "Classified %s as %s (%.1f%%)",
            filename or "<unnamed>",
            result.ripeness,
            result.confidence,
        )
        return result

    def shutdown(self) -> None:
        """Stop the inference pool and drop cached model sessions."""
        self.pool.shutdown()
        if self._manager is not None:
            self._manager.shutdown()


def build_pipeline(settings: Settings, manager: ModelManager | None = None) -> ClassificationPipeline:
    """Wire a pipeline from settings. Model and catalog failures degrade, never raise."""
    manager = manager or OnnxModelManager(settings)
    catalog = load_catalog(settings.catalog_path)
    if len(catalog) and catalog.metadata.input_size != settings.input_size:
        logger.warning(
            "Catalog was written for %dpx model input, configured input size is %dpx",
            catalog.metadata.input_size,
            settings.input_size,
        )

    model = load_model(settings, manager)
    history = HistoryBuffer(settings.history_capacity)
    broadcaster = ResultBroadcaster()
    broadcaster.subscribe(history.append)

    return ClassificationPipeline(
        model,
        catalog,
        pool=InferencePool(max_concurrent=settings.max_concurrent),
        broadcaster=broadcaster,
        history=history,
        input_size=settings.input_size,
        max_image_pixels=settings.max_image_pixels,
        manager=manager,
    )
