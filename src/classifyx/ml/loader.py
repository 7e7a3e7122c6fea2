"""Async load/classify contract between the web layer and the ML stack."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from classifyx.ml.image_classifier import OnnxImageClassifier

if TYPE_CHECKING:
    from classifyx.config import Settings
    from classifyx.ml.image_classifier import ClassificationResult, ImageClassifier
    from classifyx.ml.inference import InferencePool
    from classifyx.ml.model_manager import ModelManager
    from classifyx.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


class ClassifierHandle:
    """A loaded classifier bound to the inference pool."""

    def __init__(
        self,
        classifier: ImageClassifier,
        preprocessor: ImagePreprocessor,
        pool: InferencePool,
    ) -> None:
        self._classifier = classifier
        self._preprocessor = preprocessor
        self._pool = pool

    @property
    def model_name(self) -> str:
        return self._classifier.model_name

    async def classify(self, image_bytes: bytes) -> list[ClassificationResult]:
        """Decode and classify raw image bytes off the event loop.

        Raises:
            ValueError: If the bytes are not a decodable image.
            TimeoutError: If no inference slot frees up in time.
        """
        return await self._pool.run(self._classify_sync, image_bytes)

    def _classify_sync(self, image_bytes: bytes) -> list[ClassificationResult]:
        started = time.perf_counter()
        image = self._preprocessor.decode_image(image_bytes)
        results = self._classifier.classify(image)
        elapsed_ms = (time.perf_counter() - started) * 1000
        if results:
            logger.info(
                "Classified %dx%d image with %s in %.1f ms (top: %s %.4f)",
                image.shape[1],
                image.shape[0],
                self.model_name,
                elapsed_ms,
                results[0].label,
                results[0].confidence,
            )
        return results


async def load_classifier(
    settings: Settings,
    model_manager: ModelManager,
    preprocessor: ImagePreprocessor,
    pool: InferencePool,
) -> ClassifierHandle:
    """Download and open the configured model, returning a ready handle.

    Raises:
        KeyError: If the configured model is not in the registry.
        Exception: Whatever the hub download or ONNX Runtime raise.
    """
    model_name = settings.classification_model

    def _load() -> OnnxImageClassifier:
        labels = model_manager.load_labels(model_name)
        model_manager.get_session(model_name)
        return OnnxImageClassifier(
            model_name,
            model_manager,
            preprocessor,
            labels,
            top_k=settings.top_k,
        )

    logger.info("Loading classifier %s on %s", model_name, settings.device)
    classifier = await pool.run(_load)
    return ClassifierHandle(classifier, preprocessor, pool)
