from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class PositionPatch(BaseModel):
    x: Optional[float] = None
    y: Optional[float] = None


class ElementPatch(BaseModel):
    """Partial element update; `content` is only applied when present (null clears it)."""

    content: Optional[str] = None
    position: Optional[PositionPatch] = None
    style: Optional[dict[str, Any]] = None


class ViewportRequest(BaseModel):
    width: float = Field(..., ge=0)
    height: float = Field(..., ge=0)


class PointerDownRequest(BaseModel):
    element_id: str
    x: float
    y: float
    handle: bool = False


class PointerMoveRequest(BaseModel):
    x: float
    y: float


class ImageRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    size: str = "720x1280"
    model: Optional[str] = None
    watermark_enabled: bool = False


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    model: Optional[str] = None
    messages: list[ChatMessage] = []
    temperature: float = 1.0
    stream: bool = False
