"""HTML page and its form actions.

Every action redirects back to ``/`` (post/redirect/get), so reloading the
page never repeats an upload or a classification.
"""

from __future__ import annotations

import contextlib
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from classifyx.api.middleware import read_upload
from classifyx.api.routes import get_view_session
from classifyx.ui.state import SessionBusyError
from classifyx.ui.themes import PALETTES, Theme

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

router = APIRouter(include_in_schema=False)

# Uploads are served from our own origin, so nothing in them may run.
_PREVIEW_HEADERS = {
    "Cache-Control": "no-store",
    "X-Content-Type-Options": "nosniff",
    "Content-Security-Policy": "sandbox",
}


def preview_media_type(content_type: str) -> str:
    """Pass raster image types through; serve anything else as opaque bytes."""
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type.startswith("image/") and media_type != "image/svg+xml":
        return media_type
    return "application/octet-stream"


def _back_to_index(request: Request) -> RedirectResponse:
    return RedirectResponse(request.url_for("index"), status_code=status.HTTP_303_SEE_OTHER)


@router.get("/", response_class=HTMLResponse, name="index")
async def index(request: Request) -> HTMLResponse:
    session = get_view_session(request)
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "session": session,
            "themes": list(Theme),
            "palette": PALETTES[session.theme],
        },
    )


@router.post("/theme")
async def change_theme(request: Request, theme: Annotated[str, Form()]) -> RedirectResponse:
    try:
        get_view_session(request).set_theme(theme)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return _back_to_index(request)


@router.post("/image")
async def upload_image(request: Request, file: UploadFile) -> RedirectResponse:
    data = await read_upload(request, file)
    get_view_session(request).select_image(
        data,
        file.filename or "upload",
        file.content_type or "application/octet-stream",
    )
    return _back_to_index(request)


@router.post("/classify")
async def classify(request: Request) -> RedirectResponse:
    # The page already shows the running classification.
    with contextlib.suppress(SessionBusyError):
        await get_view_session(request).classify()
    return _back_to_index(request)


@router.get("/preview/{image_id}", name="preview_image")
async def preview_image(request: Request, image_id: str) -> Response:
    handle = request.app.state.image_store.get(image_id)
    if handle is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Image not found")
    return Response(
        content=handle.data,
        media_type=preview_media_type(handle.content_type),
        headers=_PREVIEW_HEADERS,
    )
