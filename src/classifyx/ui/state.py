"""View state for the single local page session.

The session owns three pieces of ephemeral state (theme, selected image,
predictions) plus the classifier readiness status. Nothing here outlives
the process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from classifyx.ui.themes import Theme, parse_theme

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from classifyx.ml.image_classifier import ClassificationResult
    from classifyx.ui.images import ImageHandle, ImageStore

logger = logging.getLogger(__name__)


class Status(StrEnum):
    INITIALIZING = "initializing"
    READY = "ready"
    CLASSIFYING = "classifying"
    ERROR = "error"


class SessionBusyError(RuntimeError):
    """Raised when a classification is requested while one is still running."""


class Classifier(Protocol):
    """The async collaborator the session classifies with."""

    @property
    def model_name(self) -> str: ...

    async def classify(self, image_bytes: bytes) -> Sequence[ClassificationResult]: ...


@dataclass(frozen=True)
class Prediction:
    """A label with its probability, formatted for the results table."""

    label: str
    probability: float

    @property
    def percentage(self) -> float:
        return round(self.probability * 100, 2)

    @property
    def display(self) -> str:
        return f"{self.probability * 100:.2f}%"


class ViewSession:
    """Theme, selected image, predictions and classifier status for one page."""

    def __init__(self, store: ImageStore, default_theme: Theme = Theme.DARK) -> None:
        self._store = store
        self._theme = default_theme
        self._image: ImageHandle | None = None
        self._predictions: tuple[Prediction, ...] = ()
        self._status = Status.INITIALIZING
        self._message = "Loading model..."
        self._classifier: Classifier | None = None

    # -- Read-only view ------------------------------------------------------

    @property
    def theme(self) -> Theme:
        return self._theme

    @property
    def image(self) -> ImageHandle | None:
        return self._image

    @property
    def predictions(self) -> tuple[Prediction, ...]:
        return self._predictions

    @property
    def status(self) -> Status:
        return self._status

    @property
    def message(self) -> str:
        return self._message

    @property
    def classifier(self) -> Classifier | None:
        return self._classifier

    @property
    def model_name(self) -> str | None:
        return self._classifier.model_name if self._classifier is not None else None

    @property
    def can_classify(self) -> bool:
        """True when the classify action should be offered."""
        return self._status is Status.READY and self._image is not None

    # -- Actions -------------------------------------------------------------

    def set_theme(self, theme: Theme | str) -> Theme:
        """Switch palettes; image and predictions are left alone.

        Raises:
            ValueError: If ``theme`` names no known palette.
        """
        self._theme = theme if isinstance(theme, Theme) else parse_theme(theme)
        return self._theme

    def select_image(self, data: bytes, filename: str, content_type: str) -> ImageHandle:
        """Adopt a new upload, releasing the previous one and clearing predictions."""
        previous = self._image
        if previous is not None:
            self._store.release(previous)

        self._image = self._store.create(data, filename, content_type)
        self._predictions = ()
        if self._status is not Status.ERROR:
            self._message = f"Selected {filename}"
        logger.info("Selected image %s (%d bytes)", filename, len(data))
        return self._image

    async def initialize(self, load: Callable[[], Awaitable[Classifier]]) -> None:
        """Load the classifier once; a failure disables classification for good."""
        if self._status is not Status.INITIALIZING:
            return

        try:
            classifier = await load()
        except Exception as exc:
            logger.exception("Classifier failed to load")
            self._status = Status.ERROR
            self._message = f"Model failed to load: {exc}"
            return

        self._classifier = classifier
        self._status = Status.READY
        self._message = "Model ready. Select an image."
        logger.info("Classifier %s ready", classifier.model_name)

    async def classify(self) -> tuple[Prediction, ...] | None:
        """Classify the selected image and replace the predictions.

        Returns None, without calling the classifier, when there is no image
        or the classifier is not available. Also returns None when the call
        fails or the image was replaced before the result arrived.

        Raises:
            SessionBusyError: If a classification is already running.
        """
        if self._status is Status.CLASSIFYING:
            logger.info("Rejected classify request: classification already running")
            raise SessionBusyError("A classification is already running")

        handle = self._image
        classifier = self._classifier
        if handle is None or classifier is None or self._status is not Status.READY:
            return None

        self._status = Status.CLASSIFYING
        self._message = f"Classifying {handle.filename}..."
        try:
            results = await classifier.classify(handle.data)
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            logger.warning("Classification of %s failed: %s", handle.filename, reason)
            if self._image is handle:
                self._message = f"Classification failed: {reason}"
            return None
        finally:
            self._status = Status.READY

        if self._image is not handle:
            logger.info("Discarded result for replaced image %s", handle.filename)
            return None

        self._predictions = tuple(Prediction(label=r.label, probability=r.confidence) for r in results)
        if self._predictions:
            top = self._predictions[0]
            self._message = f"Top match: {top.label} ({top.display})"
        else:
            self._message = "The model returned no predictions"
        return self._predictions

    def close(self) -> None:
        """Release the selected image."""
        if self._image is not None:
            self._store.release(self._image)
            self._image = None
        self._predictions = ()
