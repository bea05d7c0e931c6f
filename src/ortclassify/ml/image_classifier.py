"""Image classification: label table, output decoding and the ONNX forward pass."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from ortclassify.ml.errors import EngineRunError

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray
    from onnxruntime import InferenceSession

    from ortclassify.ml.model_manager import OnnxModelManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationResult:
    """The top prediction for one image.

    ``score`` is the raw network output for ``index``; no softmax is applied.
    """

    index: int
    label: str
    score: float


@dataclass(frozen=True)
class ClassLabelTable:
    """Ordered, immutable class names indexed by model output position."""

    labels: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.labels)

    def __getitem__(self, index: int) -> str:
        return self.labels[index]

    @classmethod
    def load(cls, path: str | Path) -> ClassLabelTable:
        """Load labels from a JSON list, a ``{"data": [...]}`` object, or a text file.

        Text files hold one label per line; blank lines are ignored.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file holds no labels or is not a list of strings.
        """
        path = Path(path)
        text = path.read_text(encoding="utf-8")

        if path.suffix.lower() == ".json":
            payload = json.loads(text)
            if isinstance(payload, dict):
                payload = payload.get("data")
            if not isinstance(payload, list) or not all(isinstance(item, str) for item in payload):
                raise ValueError(f"{path}: expected a list of class names")
            labels = tuple(payload)
        else:
            labels = tuple(line.strip() for line in text.splitlines() if line.strip())

        if not labels:
            raise ValueError(f"{path}: no class names found")

        logger.info("Loaded %d class labels from %s", len(labels), path)
        return cls(labels=labels)


def arg_max(scores: ArrayLike) -> tuple[float, int]:
    """Return ``(max_value, index)`` of the largest score.

    The first maximal value wins on ties. Infinities compare as usual.

    Raises:
        ValueError: If ``scores`` is empty or contains NaN.
    """
    values = np.asarray(scores, dtype=np.float64).reshape(-1)
    if values.size == 0:
        raise ValueError("arg_max() of an empty sequence")
    if np.isnan(values).any():
        raise ValueError("arg_max() of a sequence containing NaN")
    index = int(np.argmax(values))
    return float(values[index]), index


def decode_output(scores: ArrayLike, labels: ClassLabelTable) -> ClassificationResult:
    """Map a model output vector to its top class."""
    score, index = arg_max(scores)
    return ClassificationResult(index=index, label=labels[index], score=score)


class OnnxImageClassifier:
    """Runs the classification model on prepared input tensors."""

    def __init__(
        self,
        model_manager: OnnxModelManager,
        labels: ClassLabelTable,
        input_name: str,
        output_name: str,
    ) -> None:
        self._model_manager = model_manager
        self._labels = labels
        self._input_name = input_name
        self._output_name = output_name

    @property
    def labels(self) -> ClassLabelTable:
        return self._labels

    def classify(self, tensor: NDArray[np.float32]) -> ClassificationResult:
        """Run one forward pass and decode the top class.

        Blocking; meant to be submitted to the inference pool.

        Raises:
            EngineLoadError: If the session cannot be created.
            EngineRunError: If the forward pass fails or its output is malformed.
        """
        session = self._model_manager.get_session()
        scores = self._run(session, tensor)
        return decode_output(scores, self._labels)

    def _run(self, session: InferenceSession, tensor: NDArray[np.float32]) -> NDArray[np.float64]:
        try:
            outputs = session.run([self._output_name], {self._input_name: tensor})
        except Exception as exc:
            raise EngineRunError(f"Inference failed: {exc}") from exc

        if not outputs or outputs[0] is None:
            raise EngineRunError(f"Model returned no value for output '{self._output_name}'")

        try:
            scores = np.asarray(outputs[0], dtype=np.float64).reshape(-1)
        except (TypeError, ValueError) as exc:
            raise EngineRunError(f"Model output is not numeric: {exc}") from exc

        if scores.size != len(self._labels):
            raise EngineRunError(f"Model returned {scores.size} scores for {len(self._labels)} class labels")
        if not np.all(np.isfinite(scores)):
            raise EngineRunError("Model output contains non-finite values")
        return scores
