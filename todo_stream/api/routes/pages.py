"""Page shells and the stylesheet."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import FileResponse, HTMLResponse

from todo_stream.api.templating import STATIC_DIR, templates

router = APIRouter(tags=["pages"])


@router.get("/", response_class=HTMLResponse)
async def home(request: Request):
    return templates.TemplateResponse(request, "index.html")


@router.get("/stream", response_class=HTMLResponse)
async def stream_page(request: Request):
    return templates.TemplateResponse(request, "stream.html")


@router.get("/styles.css")
async def styles():
    return FileResponse(str(STATIC_DIR / "styles.css"), media_type="text/css")
