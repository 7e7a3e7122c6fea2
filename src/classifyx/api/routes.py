"""JSON API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from classifyx.api.middleware import get_settings_from_request, read_upload, verify_api_key
from classifyx.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ImageInfo,
    ImageTag,
    ModelInfo,
    ModelsResponse,
    PredictionOut,
    SessionResponse,
    ThemeUpdate,
)
from classifyx.ml.model_manager import MODEL_REGISTRY
from classifyx.ui.state import SessionBusyError

if TYPE_CHECKING:
    from classifyx.ml.inference import InferencePool
    from classifyx.ml.model_manager import ModelManager
    from classifyx.ui.state import ViewSession

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


def get_view_session(request: Request) -> ViewSession:
    session: ViewSession = request.app.state.session
    return session


def session_snapshot(request: Request, session: ViewSession) -> SessionResponse:
    """Render the view state as its API schema."""
    image = session.image
    image_info = None
    if image is not None:
        image_info = ImageInfo(
            id=image.id,
            filename=image.filename,
            content_type=image.content_type,
            size=image.size,
            preview_url=str(request.app.url_path_for("preview_image", image_id=image.id)),
        )
    return SessionResponse(
        theme=session.theme,
        status=session.status,
        message=session.message,
        model=session.model_name,
        can_classify=session.can_classify,
        image=image_info,
        predictions=[
            PredictionOut(label=p.label, probability=p.probability, percentage=p.percentage)
            for p in session.predictions
        ],
    )


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image with tags",
)
async def classify_image(request: Request, file: UploadFile) -> ClassifyImageResponse:
    """Classify an uploaded image and return ranked tags.

    Does not touch the page session.
    """
    session = get_view_session(request)
    classifier = session.classifier
    if classifier is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Classifier is not available (status: {session.status})",
        )

    data = await read_upload(request, file)
    try:
        results = await classifier.classify(data)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except TimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inference queue is full, retry later",
        ) from exc

    return ClassifyImageResponse(
        model=classifier.model_name,
        tags=[ImageTag(label=r.label, confidence=r.confidence) for r in results],
    )


@router.get(
    "/session",
    response_model=SessionResponse,
    summary="Current view state",
)
async def get_session(request: Request) -> SessionResponse:
    return session_snapshot(request, get_view_session(request))


@router.put(
    "/session/theme",
    response_model=SessionResponse,
    summary="Switch the page theme",
)
async def set_theme(request: Request, body: ThemeUpdate) -> SessionResponse:
    session = get_view_session(request)
    session.set_theme(body.theme)
    return session_snapshot(request, session)


@router.post(
    "/session/image",
    response_model=SessionResponse,
    responses={status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse}},
    summary="Select the image to classify",
)
async def select_image(request: Request, file: UploadFile) -> SessionResponse:
    """Replace the selected image; previous predictions are cleared."""
    data = await read_upload(request, file)
    session = get_view_session(request)
    session.select_image(data, file.filename or "upload", file.content_type or "application/octet-stream")
    return session_snapshot(request, session)


@router.post(
    "/session/classify",
    response_model=SessionResponse,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
    summary="Classify the selected image",
)
async def classify_selected(request: Request) -> SessionResponse:
    """Run the classifier on the selected image.

    Without a selected image or a ready classifier this does nothing and
    returns the unchanged state. Failures are reported in ``message``.
    """
    session = get_view_session(request)
    try:
        await session.classify()
    except SessionBusyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return session_snapshot(request, session)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_settings_from_request(request)
    pool = _get_inference_pool(request)
    manager = _get_model_manager(request)
    return HealthResponse(
        status="ok",
        classifier=get_view_session(request).status,
        gpu=settings.device == "cuda",
        models_loaded=manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models, marking the configured one as active."""
    settings = get_settings_from_request(request)

    models: list[ModelInfo] = []
    for spec in MODEL_REGISTRY.values():
        models.append(
            ModelInfo(
                name=spec.name,
                repo_id=spec.repo_id,
                task=spec.task,
                status="active" if spec.name == settings.classification_model else "available",
                license=spec.license,
            )
        )

    return ModelsResponse(models=models)
