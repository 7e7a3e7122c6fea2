"""Tests for the page view session."""

from __future__ import annotations

import asyncio

import pytest

from classifyx.ml.image_classifier import ClassificationResult
from classifyx.ui.images import ImageStore
from classifyx.ui.state import Prediction, SessionBusyError, Status, ViewSession
from classifyx.ui.themes import PALETTES, Theme, parse_theme

_RESULTS = [
    ClassificationResult(label="golden retriever", confidence=0.8123456),
    ClassificationResult(label="Labrador retriever", confidence=0.15),
    ClassificationResult(label="kuvasz", confidence=0.004999),
]


class RecordingClassifier:
    model_name = "recording"

    def __init__(self, results: list[ClassificationResult] | None = None) -> None:
        self.results = _RESULTS if results is None else results
        self.calls: list[bytes] = []

    async def classify(self, image_bytes: bytes) -> list[ClassificationResult]:
        self.calls.append(image_bytes)
        return self.results


class GatedClassifier(RecordingClassifier):
    """Blocks inside classify() until ``gate`` is set."""

    def __init__(self, results: list[ClassificationResult] | None = None) -> None:
        super().__init__(results)
        self.started = asyncio.Event()
        self.gate = asyncio.Event()

    async def classify(self, image_bytes: bytes) -> list[ClassificationResult]:
        self.calls.append(image_bytes)
        self.started.set()
        await self.gate.wait()
        return self.results


async def _ready_session(classifier: RecordingClassifier, store: ImageStore | None = None) -> ViewSession:
    session = ViewSession(store or ImageStore())

    async def load() -> RecordingClassifier:
        return classifier

    await session.initialize(load)
    return session


# ---------------------------------------------------------------------------
# Prediction formatting
# ---------------------------------------------------------------------------


class TestPrediction:
    def test_percentage_rounds_to_two_places(self) -> None:
        assert Prediction("x", 0.8123456).percentage == 81.23
        assert Prediction("x", 0.004999).percentage == 0.5
        assert Prediction("x", 1.0).percentage == 100.0

    def test_display_keeps_two_decimals(self) -> None:
        assert Prediction("x", 0.15).display == "15.00%"
        assert Prediction("x", 0.0).display == "0.00%"


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------


class TestInitialize:
    async def test_starts_initializing(self) -> None:
        session = ViewSession(ImageStore())
        assert session.status is Status.INITIALIZING
        assert session.classifier is None
        assert session.can_classify is False

    async def test_successful_load_is_ready(self) -> None:
        session = await _ready_session(RecordingClassifier())
        assert session.status is Status.READY
        assert session.model_name == "recording"

    async def test_load_failure_is_permanent(self) -> None:
        session = ViewSession(ImageStore())

        async def failing_load() -> RecordingClassifier:
            raise RuntimeError("download failed")

        await session.initialize(failing_load)
        assert session.status is Status.ERROR
        assert session.message == "Model failed to load: download failed"

        classifier = RecordingClassifier()

        async def late_load() -> RecordingClassifier:
            return classifier

        await session.initialize(late_load)
        session.select_image(b"img", "a.png", "image/png")

        assert session.status is Status.ERROR
        assert session.can_classify is False
        assert await session.classify() is None
        assert classifier.calls == []
        assert session.message.startswith("Model failed to load")


# ---------------------------------------------------------------------------
# Image intake
# ---------------------------------------------------------------------------


class TestSelectImage:
    async def test_replaces_and_releases_previous(self) -> None:
        store = ImageStore()
        session = ViewSession(store)

        first = session.select_image(b"one", "one.png", "image/png")
        second = session.select_image(b"two", "two.png", "image/png")

        assert session.image is second
        assert store.get(first.id) is None
        assert store.get(second.id) is second
        assert len(store) == 1

    async def test_clears_predictions(self) -> None:
        session = await _ready_session(RecordingClassifier())
        session.select_image(b"one", "one.png", "image/png")
        await session.classify()
        assert len(session.predictions) == 3

        session.select_image(b"two", "two.png", "image/png")
        assert session.predictions == ()

    async def test_passes_any_content_through(self) -> None:
        session = ViewSession(ImageStore())
        handle = session.select_image(b"%PDF-1.7", "doc.pdf", "application/pdf")
        assert handle.content_type == "application/pdf"
        assert handle.data == b"%PDF-1.7"

    async def test_close_releases_image(self) -> None:
        store = ImageStore()
        session = ViewSession(store)
        session.select_image(b"one", "one.png", "image/png")
        session.close()
        assert session.image is None
        assert len(store) == 0


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestClassify:
    async def test_predictions_follow_classifier_order(self) -> None:
        classifier = RecordingClassifier()
        session = await _ready_session(classifier)
        session.select_image(b"dog", "dog.jpg", "image/jpeg")

        predictions = await session.classify()

        assert predictions == session.predictions
        assert [p.label for p in session.predictions] == [r.label for r in _RESULTS]
        assert [p.percentage for p in session.predictions] == [round(r.confidence * 100, 2) for r in _RESULTS]
        assert classifier.calls == [b"dog"]
        assert session.status is Status.READY
        assert session.message == "Top match: golden retriever (81.23%)"

    async def test_replaces_predictions_wholesale(self) -> None:
        classifier = RecordingClassifier()
        session = await _ready_session(classifier)
        session.select_image(b"dog", "dog.jpg", "image/jpeg")
        await session.classify()

        classifier.results = [ClassificationResult(label="tabby", confidence=0.9)]
        await session.classify()

        assert session.predictions == (Prediction("tabby", 0.9),)

    async def test_no_image_is_noop(self) -> None:
        classifier = RecordingClassifier()
        session = await _ready_session(classifier)

        assert await session.classify() is None
        assert classifier.calls == []
        assert session.status is Status.READY

    async def test_not_ready_is_noop(self) -> None:
        session = ViewSession(ImageStore())
        session.select_image(b"dog", "dog.jpg", "image/jpeg")
        assert await session.classify() is None
        assert session.status is Status.INITIALIZING

    async def test_failure_reported_and_retryable(self) -> None:
        class Flaky(RecordingClassifier):
            async def classify(self, image_bytes: bytes) -> list[ClassificationResult]:
                self.calls.append(image_bytes)
                if len(self.calls) == 1:
                    raise ValueError("Cannot decode image")
                return self.results

        classifier = Flaky()
        session = await _ready_session(classifier)
        session.select_image(b"dog", "dog.jpg", "image/jpeg")

        assert await session.classify() is None
        assert session.status is Status.READY
        assert session.message == "Classification failed: Cannot decode image"

        assert await session.classify() is not None
        assert len(session.predictions) == 3

    async def test_messageless_failure_names_exception(self) -> None:
        class TimingOut(RecordingClassifier):
            async def classify(self, image_bytes: bytes) -> list[ClassificationResult]:
                raise TimeoutError

        session = await _ready_session(TimingOut())
        session.select_image(b"dog", "dog.jpg", "image/jpeg")

        assert await session.classify() is None
        assert session.status is Status.READY
        assert session.message == "Classification failed: TimeoutError"

    async def test_empty_result(self) -> None:
        session = await _ready_session(RecordingClassifier(results=[]))
        session.select_image(b"dog", "dog.jpg", "image/jpeg")
        assert await session.classify() == ()
        assert session.message == "The model returned no predictions"

    async def test_second_request_while_busy_is_rejected(self) -> None:
        classifier = GatedClassifier()
        session = await _ready_session(classifier)
        session.select_image(b"dog", "dog.jpg", "image/jpeg")

        first = asyncio.create_task(session.classify())
        await classifier.started.wait()
        assert session.status is Status.CLASSIFYING
        assert session.can_classify is False

        with pytest.raises(SessionBusyError):
            await session.classify()

        classifier.gate.set()
        assert await first is not None
        assert len(classifier.calls) == 1
        assert session.status is Status.READY

    async def test_result_for_replaced_image_is_discarded(self) -> None:
        classifier = GatedClassifier()
        session = await _ready_session(classifier)
        session.select_image(b"dog", "dog.jpg", "image/jpeg")

        in_flight = asyncio.create_task(session.classify())
        await classifier.started.wait()
        session.select_image(b"cat", "cat.jpg", "image/jpeg")
        classifier.gate.set()

        assert await in_flight is None
        assert session.predictions == ()
        assert session.image is not None
        assert session.image.filename == "cat.jpg"
        assert session.status is Status.READY


# ---------------------------------------------------------------------------
# Themes
# ---------------------------------------------------------------------------


class TestTheme:
    async def test_default_theme(self) -> None:
        assert ViewSession(ImageStore()).theme is Theme.DARK
        assert ViewSession(ImageStore(), Theme.LIGHT).theme is Theme.LIGHT

    async def test_switch_leaves_data_untouched(self) -> None:
        session = await _ready_session(RecordingClassifier())
        image = session.select_image(b"dog", "dog.jpg", "image/jpeg")
        await session.classify()
        predictions = session.predictions

        for name in ("light", "forest", Theme.DARK):
            session.set_theme(name)
            assert session.image is image
            assert session.predictions == predictions

        assert session.theme is Theme.DARK

    async def test_unknown_theme_raises(self) -> None:
        session = ViewSession(ImageStore())
        with pytest.raises(ValueError, match="Unknown theme 'neon'"):
            session.set_theme("neon")
        assert session.theme is Theme.DARK

    def test_parse_theme_is_case_insensitive(self) -> None:
        assert parse_theme("Forest") is Theme.FOREST

    def test_every_theme_has_a_palette(self) -> None:
        assert set(PALETTES) == set(Theme)
        assert all("--bg" in p.css_variables() for p in PALETTES.values())
