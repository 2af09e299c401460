import asyncio
import io
from datetime import date

import pytest
from PIL import Image

from morning_poster.assembly.inpaint import to_data_url
from morning_poster.errors import GenerationError
from morning_poster.providers.base import GeneratedBackground
from morning_poster.session import EditorSession
from morning_poster.storage import SnapshotStore


def png_bytes(size=(40, 80), color=(0, 0, 255, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()


def png_data_url(size=(40, 80), color=(0, 0, 255, 255)) -> str:
    return to_data_url(png_bytes(size, color))


class FakeBackgroundProvider:
    name = "fake"

    def __init__(self, data_url=None, error=None):
        self.data_url = data_url or png_data_url((72, 128), (30, 120, 200, 255))
        self.error = error
        self.calls = []

    async def generate_background(self, prompt, size="720x1280", watermark_enabled=False):
        self.calls.append({"prompt": prompt, "size": size, "watermark_enabled": watermark_enabled})
        if self.error:
            raise self.error
        return GeneratedBackground(data_url=self.data_url, prompt_used=prompt, provider=self.name, model="fake-image")


def completion(content):
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]}


class FakeQuoteProvider:
    name = "fake"

    def __init__(self, contents=None, error=None):
        self.contents = list(contents or ['{"english":"Rise","chinese":"起","source":""}'])
        self.error = error
        self.calls = []

    async def complete(self, messages, temperature=1.0):
        self.calls.append(messages)
        if self.error:
            raise self.error
        return completion(self.contents.pop(0) if len(self.contents) > 1 else self.contents[0])


class GatedQuoteProvider:
    """Each call blocks until its gate is opened, so tests control resolution order."""

    name = "gated"

    def __init__(self, contents):
        self.contents = list(contents)
        self.gates = [asyncio.Event() for _ in contents]
        self.started = 0

    async def complete(self, messages, temperature=1.0):
        i = self.started
        self.started += 1
        await self.gates[i].wait()
        return completion(self.contents[i])


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(root_dir=tmp_path, key="test_state")


@pytest.fixture
def session(store):
    return EditorSession(store=store, today=date(2026, 10, 19))


@pytest.fixture
def failing_provider():
    return FakeBackgroundProvider(error=GenerationError("quota exceeded", status_code=429, body="{}"))
