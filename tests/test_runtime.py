"""Tests for the runtime adapter and its synthetic fallback."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import numpy as np
import pytest

from ripecheck.config import Settings
from ripecheck.ml.ripeness import RipenessCategory, map_prediction
from ripecheck.ml.runtime import (
    SYNTHETIC_MODEL_NAME,
    OnnxRipenessModel,
    SyntheticRipenessModel,
    load_model,
)

if TYPE_CHECKING:
    from pathlib import Path

_TENSOR = np.zeros((1, 224, 224, 3), dtype=np.float32)


def _session(output: np.ndarray) -> MagicMock:
    session = MagicMock()
    input_meta = MagicMock()
    input_meta.name = "input_1"
    session.get_inputs.return_value = [input_meta]
    session.run.return_value = [output]
    return session


class TestOnnxRipenessModel:
    def test_feeds_first_input_and_flattens_output(self) -> None:
        session = _session(np.array([[0.82]], dtype=np.float32))
        model = OnnxRipenessModel(session, "fruit_freshness_mobilenetv2")

        raw = model.predict(_TENSOR)

        assert raw == pytest.approx((0.82,))
        assert all(isinstance(score, float) for score in raw)
        args, _kwargs = session.run.call_args
        assert args[0] is None
        assert args[1]["input_1"] is _TENSOR
        assert model.synthetic is False
        assert model.model_name == "fruit_freshness_mobilenetv2"

    def test_four_way_output(self) -> None:
        session = _session(np.array([[0.1, 0.2, 0.6, 0.1]], dtype=np.float32))
        raw = OnnxRipenessModel(session, "m").predict(_TENSOR)
        assert len(raw) == 4

    def test_session_errors_propagate(self) -> None:
        session = _session(np.array([[0.5]], dtype=np.float32))
        session.run.side_effect = RuntimeError("ORT failure")
        with pytest.raises(RuntimeError, match="ORT failure"):
            OnnxRipenessModel(session, "m").predict(_TENSOR)


class TestSyntheticRipenessModel:
    def test_binary_scores_in_unit_range(self) -> None:
        model = SyntheticRipenessModel(output_size=1, seed=1)
        for _ in range(50):
            (score,) = model.predict(_TENSOR)
            assert 0.0 <= score <= 1.0

    def test_binary_scores_cover_every_band(self) -> None:
        model = SyntheticRipenessModel(output_size=1, seed=2)
        seen = {map_prediction(model.predict(_TENSOR)).ripeness for _ in range(200)}
        assert seen == {RipenessCategory.RIPE, RipenessCategory.OVERRIPE, RipenessCategory.SPOILED}

    def test_multiclass_scores_have_a_dominant_category(self) -> None:
        model = SyntheticRipenessModel(output_size=4, seed=3)
        for _ in range(50):
            scores = model.predict(_TENSOR)
            assert len(scores) == 4
            assert max(scores) >= 0.55
            assert sum(scores) == pytest.approx(1.0)

    def test_seeded_output_is_reproducible(self) -> None:
        first = [SyntheticRipenessModel(seed=9).predict(_TENSOR) for _ in range(3)]
        second = [SyntheticRipenessModel(seed=9).predict(_TENSOR) for _ in range(3)]
        assert first == second

    def test_identifies_as_synthetic(self) -> None:
        model = SyntheticRipenessModel()
        assert model.synthetic is True
        assert model.model_name == SYNTHETIC_MODEL_NAME

    def test_rejects_unsupported_output_size(self) -> None:
        with pytest.raises(ValueError, match="output_size"):
            SyntheticRipenessModel(output_size=2)


class TestLoadModel:
    def test_returns_onnx_model_when_session_loads(self, tmp_path: Path) -> None:
        manager = MagicMock()
        manager.get_session.return_value = _session(np.array([[0.1]], dtype=np.float32))

        model = load_model(Settings(models_dir=str(tmp_path), model_repo="acme/ripeness-models"), manager)

        assert isinstance(model, OnnxRipenessModel)
        manager.get_session.assert_called_once_with("fruit_freshness_mobilenetv2")

    def test_load_failure_falls_back_to_synthetic(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        manager = MagicMock()
        manager.get_session.side_effect = OSError("network unreachable")

        model = load_model(Settings(models_dir=str(tmp_path), model_repo="acme/ripeness-models"), manager)

        assert isinstance(model, SyntheticRipenessModel)
        assert model.output_size == 1
        assert "using synthetic runtime" in caplog.text

    def test_multiclass_fallback_keeps_output_size(self, tmp_path: Path) -> None:
        manager = MagicMock()
        manager.get_session.side_effect = FileNotFoundError("gone")

        model = load_model(
            Settings(
                models_dir=str(tmp_path),
                model_repo="acme/ripeness-models",
                ripeness_model="fruit_ripeness_efficientnet_b0",
            ),
            manager,
        )

        assert isinstance(model, SyntheticRipenessModel)
        assert model.output_size == 4

    def test_no_model_source_uses_synthetic_without_loading(self, tmp_path: Path) -> None:
        manager = MagicMock()

        model = load_model(Settings(models_dir=str(tmp_path)), manager)

        assert isinstance(model, SyntheticRipenessModel)
        manager.get_session.assert_not_called()

    def test_local_model_path_is_a_model_source(self, tmp_path: Path) -> None:
        manager = MagicMock()
        manager.get_session.return_value = _session(np.array([[0.1]], dtype=np.float32))

        model = load_model(Settings(models_dir=str(tmp_path), model_path=str(tmp_path / "m.onnx")), manager)

        assert isinstance(model, OnnxRipenessModel)

    def test_synthetic_forced_by_settings(self, tmp_path: Path) -> None:
        manager = MagicMock()

        model = load_model(Settings(models_dir=str(tmp_path), synthetic_model=True), manager)

        assert model.synthetic is True
        manager.get_session.assert_not_called()
