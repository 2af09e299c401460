from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class GeneratedBackground:
    # Self-contained encoded image, e.g. "data:image/png;base64,...".
    data_url: str
    prompt_used: str
    provider: str
    model: str


class BackgroundProvider(Protocol):
    name: str

    async def generate_background(
        self,
        prompt: str,
        size: str = "720x1280",
        watermark_enabled: bool = False,
    ) -> GeneratedBackground: ...


class QuoteProvider(Protocol):
    name: str

    async def complete(
        self,
        messages: list[dict[str, str]],
        temperature: float = 1.0,
    ) -> dict[str, Any]: ...
