from __future__ import annotations

import logging
from typing import Any

import httpx
from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from morning_poster.assembly.inpaint import to_data_url
from morning_poster.config import settings
from morning_poster.errors import GenerationError
from morning_poster.providers.base import GeneratedBackground

logger = logging.getLogger(__name__)


class ZhipuProvider:
    """
    Zhipu BigModel (CogView images, GLM chat) through its OpenAI-compatible API.
    """

    name = "zhipu"

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout or settings.request_timeout_s
        self.http_client = http_client
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or settings.zhipu_base_url,
            timeout=self.timeout,
            http_client=http_client,
        )

    async def generate_background(
        self,
        prompt: str,
        size: str = "720x1280",
        watermark_enabled: bool = False,
        model: str | None = None,
    ) -> GeneratedBackground:
        model = model or settings.zhipu_image_model
        try:
            resp = await self.client.images.generate(
                model=model,
                prompt=prompt,
                size=size,  # type: ignore[arg-type]
                extra_body={"watermark_enabled": watermark_enabled},
            )
        except APIStatusError as e:
            raise GenerationError("image generation failed", status_code=e.status_code, body=e.response.text) from e
        except APIConnectionError as e:
            raise GenerationError(f"image generation failed: {e}") from e

        url = resp.data[0].url if resp.data else None
        if not url:
            raise GenerationError("No image url returned", status_code=502)

        # The provider returns a short-lived URL; inline it so the poster is self-contained.
        try:
            if self.http_client is not None:
                img_resp = await self.http_client.get(url)
            else:
                async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                    img_resp = await client.get(url)
        except httpx.HTTPError as e:
            raise GenerationError(f"image download failed: {e}") from e
        if img_resp.status_code >= 400:
            raise GenerationError("image download failed", status_code=img_resp.status_code, body=img_resp.text)

        mime = img_resp.headers.get("content-type") or "image/png"
        logger.info("Background generated by %s (%d bytes)", model, len(img_resp.content))
        return GeneratedBackground(
            data_url=to_data_url(img_resp.content, mime=mime.split(";")[0]),
            prompt_used=prompt,
            provider=self.name,
            model=model,
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        temperature: float = 1.0,
        model: str | None = None,
    ) -> dict[str, Any]:
        try:
            resp = await self.client.chat.completions.create(
                model=model or settings.zhipu_chat_model,
                messages=messages,  # type: ignore[arg-type]
                temperature=temperature,
                stream=False,
            )
        except APIStatusError as e:
            raise GenerationError("chat completion failed", status_code=e.status_code, body=e.response.text) from e
        except APIConnectionError as e:
            raise GenerationError(f"chat completion failed: {e}") from e
        return resp.model_dump()
