"""Image classification: the capability boundary of the pipeline.

Anything that maps a preprocessed image to a ranked list of labels
satisfies ``ImageClassifier``. The ONNX implementation runs an ImageNet
vision transformer through the model manager.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from fishid.exceptions import ClassificationUnavailable

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from fishid.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationEntry:
    """A single classification prediction."""

    label: str
    score: float

    def __post_init__(self) -> None:
        if not self.label:
            raise ValueError("Classification label must be non-empty")
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"Classification score out of range [0, 1]: {self.score}")


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: NDArray[np.float32]) -> list[ClassificationEntry]:
        """Classify an image and return ranked labels.

        Args:
            image: Preprocessed (1, 3, H, W) float32 tensor.

        Returns:
            Classification entries sorted by score (descending).

        Raises:
            ClassificationUnavailable: If the model cannot be loaded or run.
        """
        ...


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    """Numerically stable softmax over the last axis."""
    shifted = logits - np.max(logits, axis=-1, keepdims=True)
    exp = np.exp(shifted)
    result: NDArray[np.float32] = exp / np.sum(exp, axis=-1, keepdims=True)
    return result


def rank_predictions(probabilities: NDArray[np.float32], labels: dict[int, str]) -> list[ClassificationEntry]:
    """Pair class probabilities with labels, highest first.

    Uses a stable sort so equal scores keep class-index order. Class indices
    missing from ``labels`` are reported as ``LABEL_<index>``.
    """
    order = np.argsort(-probabilities, kind="stable")
    return [
        ClassificationEntry(
            label=labels.get(int(index), f"LABEL_{int(index)}"),
            score=min(max(float(probabilities[index]), 0.0), 1.0),
        )
        for index in order
    ]


class OnnxImageClassifier:
    """Runs an ONNX image classification model obtained from the model manager."""

    def __init__(self, model_manager: ModelManager, model_name: str) -> None:
        self._model_manager = model_manager
        self._model_name = model_name

    @property
    def model_name(self) -> str:
        return self._model_name

    def classify(self, image: NDArray[np.float32]) -> list[ClassificationEntry]:
        try:
            session = self._model_manager.get_session(self._model_name)
            labels = self._model_manager.get_labels(self._model_name)
        except Exception as exc:
            logger.exception("Failed to load classification model %s", self._model_name)
            raise ClassificationUnavailable(f"Classification model '{self._model_name}' could not be loaded") from exc

        input_name = session.get_inputs()[0].name
        try:
            outputs = session.run(None, {input_name: image})
        except Exception as exc:
            logger.exception("Inference failed for %s", self._model_name)
            raise ClassificationUnavailable(f"Classification model '{self._model_name}' failed to run") from exc

        logits = np.asarray(outputs[0], dtype=np.float32)
        if logits.ndim == 2:
            logits = logits[0]
        with np.errstate(invalid="ignore", over="ignore"):
            probabilities = softmax(logits)
        if not np.isfinite(probabilities).all():
            logger.error("Non-finite scores from %s", self._model_name)
            raise ClassificationUnavailable(f"Classification model '{self._model_name}' produced invalid scores")
        return rank_predictions(probabilities, labels)
