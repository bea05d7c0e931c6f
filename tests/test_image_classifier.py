"""Tests for label loading, output decoding and the ONNX forward pass."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

from ortclassify.ml.errors import EngineLoadError, EngineRunError
from ortclassify.ml.image_classifier import (
    ClassificationResult,
    ClassLabelTable,
    OnnxImageClassifier,
    arg_max,
    decode_output,
)

LABELS = ClassLabelTable(labels=("tench", "goldfish", "great white shark"))


def _make_classifier(outputs: object = None, run_error: Exception | None = None) -> tuple[OnnxImageClassifier, MagicMock]:
    session = MagicMock()
    if run_error is not None:
        session.run.side_effect = run_error
    else:
        session.run.return_value = outputs
    manager = MagicMock()
    manager.get_session.return_value = session
    return OnnxImageClassifier(manager, LABELS, input_name="input1", output_name="output1"), session


def _tensor() -> np.ndarray:
    return np.zeros((1, 3, 4, 4), dtype=np.float32)


# ---------------------------------------------------------------------------
# arg_max / decode_output
# ---------------------------------------------------------------------------


class TestArgMax:
    def test_first_maximum_wins(self) -> None:
        assert arg_max([0.1, 0.9, 0.9, 0.2]) == (0.9, 1)

    def test_single_element(self) -> None:
        assert arg_max([5.0]) == (5.0, 0)

    def test_all_negative(self) -> None:
        assert arg_max([-3.0, -1.0, -2.0]) == (-1.0, 1)

    def test_batched_output_is_flattened(self) -> None:
        assert arg_max(np.array([[0.0, 0.5, 3.5]], dtype=np.float32)) == (3.5, 2)

    def test_empty_raises(self) -> None:
        with pytest.raises(ValueError, match="empty"):
            arg_max([])

    @pytest.mark.parametrize("scores", [[1.0, float("nan")], [float("nan"), 1.0]])
    def test_nan_raises(self, scores: list[float]) -> None:
        with pytest.raises(ValueError, match="NaN"):
            arg_max(scores)

    def test_infinity_is_a_valid_maximum(self) -> None:
        assert arg_max([1.0, float("inf"), 2.0]) == (float("inf"), 1)

    def test_deterministic(self) -> None:
        scores = np.random.default_rng(3).normal(size=1000)
        assert arg_max(scores) == arg_max(scores.copy())


class TestDecodeOutput:
    def test_returns_label_and_raw_score(self) -> None:
        result = decode_output([1.5, 7.25, -2.0], LABELS)
        assert result == ClassificationResult(index=1, label="goldfish", score=7.25)

    def test_score_is_not_a_probability(self) -> None:
        assert decode_output([12.0, 3.0, 4.0], LABELS).score == 12.0


# ---------------------------------------------------------------------------
# ClassLabelTable
# ---------------------------------------------------------------------------


class TestClassLabelTable:
    def test_load_json_data_object(self, tmp_path: Path) -> None:
        path = tmp_path / "imagenet_classes.json"
        path.write_text(json.dumps({"data": ["a", "b", "c"]}))
        table = ClassLabelTable.load(path)
        assert table.labels == ("a", "b", "c")
        assert len(table) == 3
        assert table[2] == "c"

    def test_load_json_list(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.json"
        path.write_text(json.dumps(["x", "y"]))
        assert ClassLabelTable.load(path).labels == ("x", "y")

    def test_load_text_file(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.txt"
        path.write_text("cat\n\ndog\n  bird  \n")
        assert ClassLabelTable.load(path).labels == ("cat", "dog", "bird")

    def test_empty_file_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.txt"
        path.write_text("\n\n")
        with pytest.raises(ValueError, match="no class names"):
            ClassLabelTable.load(path)

    def test_wrong_json_shape_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.json"
        path.write_text(json.dumps({"classes": ["a"]}))
        with pytest.raises(ValueError, match="list of class names"):
            ClassLabelTable.load(path)

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            ClassLabelTable.load(tmp_path / "missing.json")

    def test_is_immutable(self) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            LABELS.labels = ("other",)  # type: ignore[misc]


# ---------------------------------------------------------------------------
# OnnxImageClassifier
# ---------------------------------------------------------------------------


class TestOnnxImageClassifier:
    def test_classify_uses_configured_names(self) -> None:
        classifier, session = _make_classifier([np.array([[0.1, 0.2, 4.0]], dtype=np.float32)])
        tensor = _tensor()

        result = classifier.classify(tensor)

        assert result.index == 2
        assert result.label == "great white shark"
        assert result.score == pytest.approx(4.0)
        output_names, feeds = session.run.call_args.args
        assert output_names == ["output1"]
        assert list(feeds) == ["input1"]
        assert feeds["input1"] is tensor

    def test_engine_error_is_wrapped(self) -> None:
        cause = RuntimeError("shape mismatch")
        classifier, _ = _make_classifier(run_error=cause)
        with pytest.raises(EngineRunError, match="shape mismatch") as excinfo:
            classifier.classify(_tensor())
        assert excinfo.value.__cause__ is cause

    def test_output_length_must_match_labels(self) -> None:
        classifier, _ = _make_classifier([np.zeros((1, 1000), dtype=np.float32)])
        with pytest.raises(EngineRunError, match="1000 scores for 3"):
            classifier.classify(_tensor())

    def test_non_finite_output_raises(self) -> None:
        classifier, _ = _make_classifier([np.array([[0.1, np.nan, 0.3]], dtype=np.float32)])
        with pytest.raises(EngineRunError, match="non-finite"):
            classifier.classify(_tensor())

    def test_missing_output_raises(self) -> None:
        classifier, _ = _make_classifier([None])
        with pytest.raises(EngineRunError, match="output1"):
            classifier.classify(_tensor())

    def test_load_error_propagates(self) -> None:
        manager = MagicMock()
        manager.get_session.side_effect = EngineLoadError("Model file not found: model.onnx")
        classifier = OnnxImageClassifier(manager, LABELS, input_name="input1", output_name="output1")
        with pytest.raises(EngineLoadError):
            classifier.classify(_tensor())
