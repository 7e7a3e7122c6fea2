"""Image classification over ONNX models from the registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from classifyx.ml.model_manager import get_spec

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from classifyx.ml.model_manager import ModelManager
    from classifyx.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    confidence: float


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: NDArray[np.uint8]) -> list[ClassificationResult]:
        """Classify an image and return ranked tags.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            List of classification results sorted by confidence (descending).
        """
        ...


class OnnxImageClassifier:
    """Runs a registry model and turns its logits into the top-k labels.

    The session is looked up on every call so that idle eviction in the
    model manager only costs a reload on the next request.
    """

    def __init__(
        self,
        model_name: str,
        model_manager: ModelManager,
        preprocessor: ImagePreprocessor,
        labels: list[str],
        top_k: int = 3,
    ) -> None:
        self._spec = get_spec(model_name)
        self._model_manager = model_manager
        self._preprocessor = preprocessor
        self._labels = labels
        self._top_k = top_k

    @property
    def model_name(self) -> str:
        return self._spec.name

    def classify(self, image: NDArray[np.uint8]) -> list[ClassificationResult]:
        tensor = self._preprocessor.preprocess_for_classification(image, self._spec)
        session = self._model_manager.get_session(self._spec.name)
        input_name = session.get_inputs()[0].name
        outputs = session.run(None, {input_name: tensor})

        logits = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if logits.shape[0] != len(self._labels):
            raise RuntimeError(
                f"Model '{self._spec.name}' produced {logits.shape[0]} scores for {len(self._labels)} labels"
            )

        probabilities = softmax(logits)
        k = min(self._top_k, probabilities.shape[0])
        # Stable sort keeps label order for ties.
        top = np.argsort(-probabilities, kind="stable")[:k]
        return [ClassificationResult(label=self._labels[i], confidence=float(probabilities[i])) for i in top]


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    """Numerically stable softmax over a 1-D array."""
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return exp / np.sum(exp)
