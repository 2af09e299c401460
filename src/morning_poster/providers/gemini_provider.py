from __future__ import annotations

import logging

from morning_poster.assembly.inpaint import to_data_url
from morning_poster.config import settings
from morning_poster.errors import GenerationError
from morning_poster.providers.base import GeneratedBackground

logger = logging.getLogger(__name__)


def _aspect_ratio_for_size(size: str) -> str:
    """Map "WxH" onto the closest aspect ratio Imagen accepts."""
    try:
        w, h = (int(v) for v in size.lower().split("x", 1))
    except ValueError:
        return "9:16"
    if w <= 0 or h <= 0:
        return "9:16"
    r = w / h
    options = {"9:16": 9 / 16, "3:4": 3 / 4, "1:1": 1.0, "4:3": 4 / 3, "16:9": 16 / 9}
    return min(options, key=lambda k: abs(options[k] - r))


class GeminiProvider:
    """Alternative background source. Imagen does not stamp a visible mark."""

    name = "gemini"

    def __init__(self, api_key: str) -> None:
        # Imported lazily so the app can start without the dependency installed.
        from google import genai  # type: ignore

        self.client = genai.Client(api_key=api_key)

    async def generate_background(
        self,
        prompt: str,
        size: str = "720x1280",
        watermark_enabled: bool = False,
    ) -> GeneratedBackground:
        from google.genai import types  # type: ignore

        model = settings.gemini_image_model
        enriched = f"{prompt}\nNo text. No logos. No watermarks."
        try:
            resp = await self.client.aio.models.generate_images(
                model=model,
                prompt=enriched,
                config=types.GenerateImagesConfig(
                    number_of_images=1,
                    aspect_ratio=_aspect_ratio_for_size(size),
                ),
            )
        except Exception as e:
            raise GenerationError(f"image generation failed: {e}") from e

        for gi in getattr(resp, "generated_images", []) or []:
            image = getattr(gi, "image", None)
            img_bytes = getattr(image, "image_bytes", None)
            if not img_bytes:
                continue
            mime = getattr(image, "mime_type", None) or "image/png"
            return GeneratedBackground(
                data_url=to_data_url(img_bytes, mime=mime),
                prompt_used=enriched,
                provider=self.name,
                model=model,
            )
        raise GenerationError("No image data", status_code=502)
