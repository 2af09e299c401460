from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from morning_poster.api.schemas import (
    ChatRequest,
    ElementPatch,
    ImageRequest,
    PointerDownRequest,
    PointerMoveRequest,
    ViewportRequest,
)
from morning_poster.assembly.inpaint import decode_image_source, to_data_url
from morning_poster.assembly.render import export_filename, export_to_file
from morning_poster.config import settings
from morning_poster.errors import ExportError, GenerationError, UnknownElementError
from morning_poster.providers.base import BackgroundProvider, QuoteProvider
from morning_poster.providers.gemini_provider import GeminiProvider
from morning_poster.providers.zhipu_provider import ZhipuProvider
from morning_poster.session import EditorSession

logger = logging.getLogger(__name__)

app = FastAPI(title="morning_poster editor")
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

_IMAGE_MIME = {"PNG": "image/png", "JPEG": "image/jpeg", "GIF": "image/gif", "WEBP": "image/webp"}

_session: EditorSession | None = None


# Session state is only touched from the event loop, so every handler that reaches it is async.
async def get_session() -> EditorSession:
    global _session
    if _session is None:
        _session = EditorSession()
    return _session


def _get_zhipu() -> ZhipuProvider:
    if not settings.zhipu_api_key:
        raise HTTPException(status_code=400, detail="ZHIPU_API_KEY is not set")
    return ZhipuProvider(api_key=settings.zhipu_api_key)


def get_background_provider() -> BackgroundProvider:
    if settings.background_provider == "gemini":
        if not settings.gemini_api_key:
            raise HTTPException(status_code=400, detail="GEMINI_API_KEY is not set")
        return GeminiProvider(api_key=settings.gemini_api_key)
    return _get_zhipu()


def get_quote_provider() -> QuoteProvider:
    return _get_zhipu()


def get_zhipu_provider() -> ZhipuProvider:
    return _get_zhipu()


def _element_or_404(session: EditorSession, element_id: str) -> None:
    if element_id not in session.model:
        raise HTTPException(status_code=404, detail=f"element '{element_id}' not found")


@app.get("/api/health")
async def health() -> dict[str, Any]:
    return {"ok": True, "service": "morning-poster"}


@app.get("/api/state")
async def get_state(session: EditorSession = Depends(get_session)) -> dict[str, Any]:
    return session.describe()


@app.patch("/api/elements/{element_id}")
async def patch_element(element_id: str, patch: ElementPatch, session: EditorSession = Depends(get_session)):
    _element_or_404(session, element_id)
    changes: dict[str, Any] = {}
    if "content" in patch.model_fields_set:
        changes["content"] = patch.content
    if patch.position is not None:
        changes["position"] = patch.position.model_dump(exclude_none=True)
    if patch.style:
        changes["style"] = patch.style
    try:
        el = session.update_element(element_id, **changes)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return el.to_dict()


@app.post("/api/viewport")
async def observe_viewport(req: ViewportRequest, session: EditorSession = Depends(get_session)) -> dict[str, Any]:
    scale = session.observe_viewport(req.width, req.height)
    t = session.viewport.display_transform()
    return {"scale": scale, "offset_x": t.offset_x, "offset_y": t.offset_y}


@app.post("/api/pointer/down")
async def pointer_down(req: PointerDownRequest, session: EditorSession = Depends(get_session)) -> dict[str, Any]:
    try:
        accepted = session.pointer_down(req.element_id, req.x, req.y, handle=req.handle)
    except UnknownElementError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    g = session.controller.gesture
    return {
        "accepted": accepted,
        "interaction": session.controller.state.value,
        "gesture_target": g.target_id if g else None,
    }


@app.post("/api/pointer/move")
async def pointer_move(req: PointerMoveRequest, session: EditorSession = Depends(get_session)) -> dict[str, Any]:
    el = session.pointer_move(req.x, req.y)
    return {"element": el.to_dict() if el else None}


@app.post("/api/pointer/up")
async def pointer_up(session: EditorSession = Depends(get_session)) -> dict[str, Any]:
    session.pointer_up()
    return {"interaction": session.controller.state.value}


@app.post("/api/background/generate")
async def generate_background(
    session: EditorSession = Depends(get_session),
    provider: BackgroundProvider = Depends(get_background_provider),
) -> dict[str, Any]:
    try:
        applied = await session.generate_background(provider)
    except GenerationError as exc:
        raise HTTPException(status_code=502, detail=f"背景生成失败: {exc}") from exc
    return {"applied": applied, "background": session.background}


@app.post("/api/quote/generate")
async def generate_quote(
    session: EditorSession = Depends(get_session),
    provider: QuoteProvider = Depends(get_quote_provider),
) -> dict[str, Any]:
    try:
        applied = await session.generate_quote(provider)
    except GenerationError as exc:
        raise HTTPException(status_code=502, detail=f"金句生成失败: {exc}") from exc
    return {"applied": applied, "content": session.model.get("proverb").content}


@app.post("/api/logo")
async def upload_logo(file: UploadFile = File(...), session: EditorSession = Depends(get_session)):
    content = await file.read()
    try:
        img = decode_image_source(content)
    except (OSError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"not an image: {exc}") from exc
    mime = _IMAGE_MIME.get(img.format or "", file.content_type or "image/png")
    return session.set_logo(to_data_url(content, mime=mime)).to_dict()


@app.delete("/api/logo")
async def remove_logo(session: EditorSession = Depends(get_session)):
    return session.set_logo(None).to_dict()


@app.get("/api/export")
async def export_poster(save: bool = False, session: EditorSession = Depends(get_session)) -> Response:
    try:
        png = await session.export_png()
    except ExportError as exc:
        logger.error("Export failed: %s", exc)
        raise HTTPException(status_code=500, detail="下载失败，请重试") from exc
    if save:
        export_to_file(png)
    return Response(
        content=png,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@app.get("/api/preview")
async def preview_poster(session: EditorSession = Depends(get_session)) -> Response:
    try:
        png = await session.preview_png()
    except ExportError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return Response(content=png, media_type="image/png")


@app.post("/api/image")
async def proxy_image(req: ImageRequest, provider: ZhipuProvider = Depends(get_zhipu_provider)) -> dict[str, str]:
    try:
        result = await provider.generate_background(
            req.prompt, size=req.size, watermark_enabled=req.watermark_enabled, model=req.model
        )
    except GenerationError as exc:
        raise HTTPException(status_code=exc.status_code or 502, detail=str(exc)) from exc
    return {"dataUrl": result.data_url}


@app.post("/api/chat")
async def proxy_chat(req: ChatRequest, provider: ZhipuProvider = Depends(get_zhipu_provider)) -> dict[str, Any]:
    if req.stream:
        raise HTTPException(status_code=400, detail="streaming is not supported")
    try:
        return await provider.complete(
            [m.model_dump() for m in req.messages],
            temperature=req.temperature,
            model=req.model,
        )
    except GenerationError as exc:
        raise HTTPException(status_code=exc.status_code or 502, detail=str(exc)) from exc
