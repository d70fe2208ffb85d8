"""Tests for mapping raw model scores onto ripeness categories."""

from __future__ import annotations

import pytest

from ripecheck.errors import InferenceError, UnsupportedOutputError
from ripecheck.ml.ripeness import (
    CATEGORY_ORDER,
    MappedPrediction,
    RipenessCategory,
    category_for_score,
    map_binary,
    map_multiclass,
    map_prediction,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _as_dict(mapped: MappedPrediction) -> dict[RipenessCategory, float]:
    return {entry.category: entry.confidence for entry in mapped.all_confidences}


def _assert_well_formed(mapped: MappedPrediction) -> None:
    assert [entry.category for entry in mapped.all_confidences] == list(CATEGORY_ORDER)
    assert mapped.confidence == _as_dict(mapped)[mapped.ripeness]


# ---------------------------------------------------------------------------
# Four-way output
# ---------------------------------------------------------------------------


class TestMulticlass:
    def test_ripe_scenario(self) -> None:
        mapped = map_prediction([0.05, 0.80, 0.10, 0.05])

        assert mapped.ripeness == RipenessCategory.RIPE
        assert mapped.confidence == pytest.approx(80.0)
        confidences = [entry.confidence for entry in mapped.all_confidences]
        assert confidences == pytest.approx([5.0, 80.0, 10.0, 5.0])
        assert mapped.raw_score is None
        _assert_well_formed(mapped)

    @pytest.mark.parametrize(
        ("scores", "expected"),
        [
            ([0.9, 0.05, 0.03, 0.02], RipenessCategory.UNRIPE),
            ([0.1, 0.2, 0.6, 0.1], RipenessCategory.OVERRIPE),
            ([0.0, 0.1, 0.2, 0.7], RipenessCategory.SPOILED),
        ],
    )
    def test_argmax_selects_category(self, scores: list[float], expected: RipenessCategory) -> None:
        mapped = map_multiclass(scores)
        assert mapped.ripeness == expected
        _assert_well_formed(mapped)

    def test_tie_resolves_to_lowest_index(self) -> None:
        assert map_multiclass([0.1, 0.4, 0.4, 0.1]).ripeness == RipenessCategory.RIPE
        assert map_multiclass([0.25, 0.25, 0.25, 0.25]).ripeness == RipenessCategory.UNRIPE
        assert map_multiclass([0.0, 0.0, 0.5, 0.5]).ripeness == RipenessCategory.OVERRIPE

    def test_scores_are_not_renormalized(self) -> None:
        mapped = map_multiclass([0.2, 0.2, 0.2, 0.1])
        total = sum(entry.confidence for entry in mapped.all_confidences)
        assert total == pytest.approx(70.0)


# ---------------------------------------------------------------------------
# Binary rottenness score
# ---------------------------------------------------------------------------


class TestBinaryThresholds:
    @pytest.mark.parametrize(
        ("score", "expected"),
        [
            (0.0, RipenessCategory.RIPE),
            (0.29, RipenessCategory.RIPE),
            (0.30, RipenessCategory.OVERRIPE),
            (0.69, RipenessCategory.OVERRIPE),
            (0.70, RipenessCategory.SPOILED),
            (1.0, RipenessCategory.SPOILED),
        ],
    )
    def test_band_boundaries(self, score: float, expected: RipenessCategory) -> None:
        assert category_for_score(score) == expected
        assert map_binary(score).ripeness == expected

    @pytest.mark.parametrize("score", [0.0, 0.1, 0.29, 0.3, 0.5, 0.69, 0.7, 0.9, 1.0])
    def test_unripe_never_selected(self, score: float) -> None:
        assert map_binary(score).ripeness != RipenessCategory.UNRIPE


class TestBinaryDistribution:
    def test_fresh_band(self) -> None:
        mapped = map_binary(0.1)
        confidences = _as_dict(mapped)

        assert confidences[RipenessCategory.RIPE] == pytest.approx(90.0)
        assert confidences[RipenessCategory.UNRIPE] == pytest.approx(20.0)
        assert confidences[RipenessCategory.OVERRIPE] == 0.0
        assert confidences[RipenessCategory.SPOILED] == 0.0
        assert mapped.confidence == pytest.approx(90.0)
        assert mapped.raw_score == pytest.approx(10.0)
        _assert_well_formed(mapped)

    def test_overripe_band(self) -> None:
        mapped = map_binary(0.5)
        confidences = _as_dict(mapped)

        assert confidences[RipenessCategory.OVERRIPE] == pytest.approx(50.0)
        assert confidences[RipenessCategory.RIPE] == pytest.approx(50.0)
        assert confidences[RipenessCategory.UNRIPE] == 0.0
        assert confidences[RipenessCategory.SPOILED] == 0.0
        _assert_well_formed(mapped)

    def test_spoiled_band(self) -> None:
        mapped = map_binary(0.9)
        confidences = _as_dict(mapped)

        assert mapped.ripeness == RipenessCategory.SPOILED
        assert mapped.confidence == pytest.approx(90.0)
        assert confidences[RipenessCategory.OVERRIPE] == pytest.approx(5.0)
        assert confidences[RipenessCategory.RIPE] == 0.0
        assert confidences[RipenessCategory.UNRIPE] == 0.0
        _assert_well_formed(mapped)

    def test_distribution_need_not_sum_to_100(self) -> None:
        total = sum(entry.confidence for entry in map_binary(0.1).all_confidences)
        assert total == pytest.approx(110.0)

    def test_out_of_range_score_is_clamped(self) -> None:
        mapped = map_binary(1.4)
        assert mapped.ripeness == RipenessCategory.SPOILED
        assert mapped.confidence == pytest.approx(100.0)

    def test_raw_score_keeps_unclamped_value(self) -> None:
        assert map_binary(1.4).raw_score == pytest.approx(140.0)
        assert map_binary(-0.2).raw_score == pytest.approx(-20.0)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestMapPrediction:
    def test_single_score_uses_binary_mapping(self) -> None:
        assert map_prediction((0.75,)).ripeness == RipenessCategory.SPOILED

    @pytest.mark.parametrize("scores", [[], [0.5, 0.5], [0.1, 0.2, 0.3], [0.2] * 5])
    def test_unsupported_length_raises(self, scores: list[float]) -> None:
        with pytest.raises(UnsupportedOutputError, match="Expected 1 or 4"):
            map_prediction(scores)

    def test_non_finite_scores_raise(self) -> None:
        with pytest.raises(UnsupportedOutputError, match="non-finite"):
            map_prediction([float("nan")])

    def test_unsupported_output_is_an_inference_error(self) -> None:
        with pytest.raises(InferenceError):
            map_prediction([0.1, 0.9])
