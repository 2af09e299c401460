from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Loads keys from process env, and also from a local .env file for convenience.
    model_config = SettingsConfigDict(env_prefix="", extra="ignore", env_file=".env", env_file_encoding="utf-8")

    data_dir: str = "data"
    # Bump the key to force the default poster back on every client.
    storage_key: str = "morning_poster_state_v6"

    # Keys
    zhipu_api_key: str | None = None
    gemini_api_key: str | None = None

    # Models
    zhipu_base_url: str = "https://open.bigmodel.cn/api/paas/v4/"
    zhipu_image_model: str = "cogview-3-flash"
    zhipu_chat_model: str = "glm-4.6"
    gemini_image_model: str = "imagen-3.0-generate-002"
    background_provider: Literal["zhipu", "gemini"] = "zhipu"
    request_timeout_s: float = 60.0

    # Canvas
    viewport_padding: int = 20
    min_scale: float = 0.1
    min_resize_value: float = 10.0
    drag_policy: Literal["free", "clamped"] = "free"

    # Pipeline
    watermark_removal: bool = True
    fence_generations: bool = True


settings = Settings()
