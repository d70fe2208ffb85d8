"""Map raw model scores onto the four ripeness categories.

Two model output shapes are supported:

* four scores, one per category in :data:`CATEGORY_ORDER`. The category is the
  stable arg-max and the percentages are the scores times 100, unnormalised.
* a single rottenness score in [0, 1]. The category comes from fixed threshold
  bands and the four-way distribution is synthesized from the score. That
  distribution is a display aid and does not sum to 100. ``unripe`` only ever
  appears as a secondary value in this mode.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from ripecheck.errors import UnsupportedOutputError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = logging.getLogger(__name__)


class RipenessCategory(StrEnum):
    UNRIPE = "unripe"
    RIPE = "ripe"
    OVERRIPE = "overripe"
    SPOILED = "spoiled"


# Index -> category table for four-way model output.
CATEGORY_ORDER: tuple[RipenessCategory, ...] = (
    RipenessCategory.UNRIPE,
    RipenessCategory.RIPE,
    RipenessCategory.OVERRIPE,
    RipenessCategory.SPOILED,
)

OVERRIPE_THRESHOLD: float = 0.3
SPOILED_THRESHOLD: float = 0.7


@dataclass(frozen=True)
class ConfidenceEntry:
    """Confidence for one category, as a percentage."""

    category: RipenessCategory
    confidence: float


@dataclass(frozen=True)
class MappedPrediction:
    """Category mapper output, before enrichment."""

    ripeness: RipenessCategory
    confidence: float
    all_confidences: tuple[ConfidenceEntry, ...]
    raw_score: float | None = None


def map_prediction(raw: Sequence[float]) -> MappedPrediction:
    """Dispatch on output length: 4 scores or a single rottenness score.

    Raises:
        UnsupportedOutputError: For any other length or a non-finite score.
    """
    scores = [float(value) for value in raw]
    if not all(math.isfinite(value) for value in scores):
        raise UnsupportedOutputError(f"Model returned non-finite scores: {scores}")
    if len(scores) == len(CATEGORY_ORDER):
        return map_multiclass(scores)
    if len(scores) == 1:
        return map_binary(scores[0])
    raise UnsupportedOutputError(f"Expected 1 or {len(CATEGORY_ORDER)} scores, got {len(scores)}")


def map_multiclass(scores: Sequence[float]) -> MappedPrediction:
    """Pick the arg-max category; the first index wins ties."""
    if len(scores) != len(CATEGORY_ORDER):
        raise UnsupportedOutputError(f"Expected {len(CATEGORY_ORDER)} scores, got {len(scores)}")

    best = 0
    for index in range(1, len(scores)):
        if scores[index] > scores[best]:
            best = index

    percentages = {category: score * 100 for category, score in zip(CATEGORY_ORDER, scores, strict=True)}
    ripeness = CATEGORY_ORDER[best]
    return MappedPrediction(
        ripeness=ripeness,
        confidence=percentages[ripeness],
        all_confidences=_distribution(percentages),
    )


def category_for_score(score: float) -> RipenessCategory:
    """Threshold a rottenness score into ripe, overripe or spoiled."""
    if score < OVERRIPE_THRESHOLD:
        return RipenessCategory.RIPE
    if score < SPOILED_THRESHOLD:
        return RipenessCategory.OVERRIPE
    return RipenessCategory.SPOILED


def map_binary(score: float) -> MappedPrediction:
    """Map a single rottenness score and synthesize the four-way distribution."""
    raw_score = score * 100
    if not 0.0 <= score <= 1.0:
        logger.debug("Clamping rottenness score %.4f into [0, 1]", score)
        score = min(max(score, 0.0), 1.0)

    ripeness = category_for_score(score)
    percentages = dict.fromkeys(CATEGORY_ORDER, 0.0)

    if ripeness is RipenessCategory.RIPE:
        percentages[RipenessCategory.RIPE] = (1 - score) * 100
        percentages[RipenessCategory.UNRIPE] = max(OVERRIPE_THRESHOLD - score, 0.0) * 100
    elif ripeness is RipenessCategory.OVERRIPE:
        band = SPOILED_THRESHOLD - OVERRIPE_THRESHOLD
        percentages[RipenessCategory.OVERRIPE] = (score - OVERRIPE_THRESHOLD) / band * 100
        percentages[RipenessCategory.RIPE] = (SPOILED_THRESHOLD - score) / band * 100
    else:
        percentages[RipenessCategory.SPOILED] = score * 100
        percentages[RipenessCategory.OVERRIPE] = (1 - score) * 100 * 0.5

    return MappedPrediction(
        ripeness=ripeness,
        confidence=percentages[ripeness],
        all_confidences=_distribution(percentages),
        raw_score=raw_score,
    )


def _distribution(percentages: Mapping[RipenessCategory, float]) -> tuple[ConfidenceEntry, ...]:
    return tuple(ConfidenceEntry(category=category, confidence=percentages[category]) for category in CATEGORY_ORDER)
