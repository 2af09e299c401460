import json
from types import SimpleNamespace

import httpx
import pytest

from conftest import png_bytes
from morning_poster.errors import GenerationError
from morning_poster.providers.gemini_provider import GeminiProvider, _aspect_ratio_for_size
from morning_poster.providers.zhipu_provider import ZhipuProvider

BASE_URL = "https://zhipu.test/api/paas/v4/"


def make_provider(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = ZhipuProvider(api_key="test-key", base_url=BASE_URL, http_client=client)
    provider.client = provider.client.with_options(max_retries=0)
    return provider


@pytest.mark.asyncio
async def test_background_is_downloaded_and_inlined():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path.endswith("/images/generations"):
            return httpx.Response(200, json={"created": 1, "data": [{"url": "https://cdn.test/bg.png"}]})
        return httpx.Response(200, content=png_bytes(), headers={"content-type": "image/png"})

    result = await make_provider(handler).generate_background("a calm sea", size="720x1280")

    body = json.loads(seen[0].content)
    assert body["prompt"] == "a calm sea"
    assert body["size"] == "720x1280"
    assert body["watermark_enabled"] is False
    assert seen[0].headers["authorization"] == "Bearer test-key"
    assert str(seen[1].url) == "https://cdn.test/bg.png"
    assert result.data_url.startswith("data:image/png;base64,")
    assert result.provider == "zhipu"


@pytest.mark.asyncio
async def test_background_without_url():
    def handler(request):
        return httpx.Response(200, json={"created": 1, "data": []})

    with pytest.raises(GenerationError) as exc:
        await make_provider(handler).generate_background("x")
    assert exc.value.status_code == 502


@pytest.mark.asyncio
async def test_upstream_error_carries_status_and_body():
    def handler(request):
        return httpx.Response(429, json={"error": {"message": "too many requests"}})

    with pytest.raises(GenerationError) as exc:
        await make_provider(handler).generate_background("x")
    assert exc.value.status_code == 429
    assert "too many requests" in str(exc.value)


@pytest.mark.asyncio
async def test_failed_download():
    def handler(request):
        if request.url.path.endswith("/images/generations"):
            return httpx.Response(200, json={"created": 1, "data": [{"url": "https://cdn.test/gone.png"}]})
        return httpx.Response(404, text="gone")

    with pytest.raises(GenerationError) as exc:
        await make_provider(handler).generate_background("x")
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_chat_completion_is_returned_as_dict():
    def handler(request):
        body = json.loads(request.content)
        assert body["stream"] is False
        assert body["messages"][0]["role"] == "user"
        return httpx.Response(
            200,
            json={
                "id": "c1",
                "object": "chat.completion",
                "created": 1,
                "model": body["model"],
                "choices": [
                    {"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": "hi"}}
                ],
            },
        )

    data = await make_provider(handler).complete([{"role": "user", "content": "hello"}], temperature=0.5)
    assert data["choices"][0]["message"]["content"] == "hi"


@pytest.mark.parametrize(
    "size,ratio",
    [("720x1280", "9:16"), ("1280x720", "16:9"), ("1024x1024", "1:1"), ("bogus", "9:16")],
)
def test_gemini_aspect_ratio(size, ratio):
    assert _aspect_ratio_for_size(size) == ratio


class FakeAsyncModels:
    def __init__(self, images):
        self.images = images
        self.calls = []

    async def generate_images(self, model, prompt, config):
        self.calls.append({"model": model, "prompt": prompt, "aspect_ratio": config.aspect_ratio})
        return SimpleNamespace(generated_images=self.images)


def gemini_with(images):
    provider = GeminiProvider(api_key="test-key")
    models = FakeAsyncModels(images)
    provider.client = SimpleNamespace(aio=SimpleNamespace(models=models))
    return provider, models


@pytest.mark.asyncio
async def test_gemini_uses_async_client():
    image = SimpleNamespace(image_bytes=png_bytes(), mime_type="image/png")
    provider, models = gemini_with([SimpleNamespace(image=image)])

    result = await provider.generate_background("misty hills", size="720x1280")

    assert models.calls[0]["aspect_ratio"] == "9:16"
    assert models.calls[0]["prompt"].startswith("misty hills")
    assert result.data_url.startswith("data:image/png;base64,")
    assert result.provider == "gemini"


@pytest.mark.asyncio
async def test_gemini_without_image_bytes():
    provider, _ = gemini_with([SimpleNamespace(image=SimpleNamespace(image_bytes=None))])
    with pytest.raises(GenerationError) as exc:
        await provider.generate_background("x")
    assert exc.value.status_code == 502
