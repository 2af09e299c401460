import asyncio
from datetime import date

import pytest

from conftest import FakeBackgroundProvider, FakeQuoteProvider, GatedQuoteProvider, png_data_url
from morning_poster.config import settings
from morning_poster.errors import GenerationError
from morning_poster.layout.model import DEFAULT_BACKGROUND, Position
from morning_poster.session import EditorSession


def test_fresh_session_stamps_date_and_persists(session, store):
    assert not session.restored
    assert session.model.get("dateDay").content == "19"
    assert session.model.get("dateMonthYear").content == "Oct. 2026"
    assert session.background == DEFAULT_BACKGROUND
    saved = store.load()
    assert saved["elements"]["dateDay"]["content"] == "19"


def test_session_restores_snapshot(session, store):
    session.update_element("sun", position={"x": 1, "y": 2})
    session.set_background("data:image/png;base64,AAAA")

    again = EditorSession(store=store, today=date(2030, 1, 1))
    assert again.restored
    assert again.model.get("sun").position == Position(1, 2)
    assert again.background == "data:image/png;base64,AAAA"
    # Saved content wins over a fresh date stamp.
    assert again.model.get("dateDay").content == "19"


def test_corrupt_snapshot_starts_fresh(store):
    store.root_dir.mkdir(parents=True, exist_ok=True)
    store.path.write_text("{{{", encoding="utf-8")
    s = EditorSession(store=store, today=date(2026, 1, 5))
    assert not s.restored
    assert s.model.get("dateMonthYear").content == "Jan. 2026"


def test_every_gesture_step_is_written_through(session, store):
    session.observe_viewport(380, 660)
    session.pointer_down("sun", 0, 0)
    session.pointer_move(10, 0)
    assert store.load()["elements"]["sun"]["position"] == {"x": 540.0, "y": 1020.0}
    session.pointer_move(20, 0)
    assert store.load()["elements"]["sun"]["position"] == {"x": 560.0, "y": 1020.0}
    session.pointer_up()
    assert session.describe()["interaction"] == "idle"


def test_logo_set_and_clear(session, store):
    url = png_data_url()
    session.set_logo(url)
    assert store.load()["elements"]["logo"]["content"] == url
    session.set_logo(None)
    logo = session.model.get("logo")
    assert logo.content is None
    assert logo.style.width == 280


@pytest.mark.asyncio
async def test_generate_background_scrubs_watermark(session, store):
    provider = FakeBackgroundProvider()
    assert await session.generate_background(provider)
    assert provider.calls[0]["size"] == "720x1280"
    assert provider.calls[0]["watermark_enabled"] is False
    assert session.background.startswith("data:image/png;base64,")
    assert session.background != provider.data_url
    assert store.load()["background"] == session.background
    assert not session.loading_background


@pytest.mark.asyncio
async def test_generate_background_without_scrub(session, monkeypatch):
    monkeypatch.setattr(settings, "watermark_removal", False)
    provider = FakeBackgroundProvider()
    await session.generate_background(provider)
    assert session.background == provider.data_url


@pytest.mark.asyncio
async def test_generate_background_failure_clears_flag(session, failing_provider):
    with pytest.raises(GenerationError) as exc:
        await session.generate_background(failing_provider)
    assert "429" in str(exc.value)
    assert not session.loading_background
    assert session.background == DEFAULT_BACKGROUND


@pytest.mark.asyncio
async def test_generate_quote_updates_proverb(session):
    provider = FakeQuoteProvider(['{"english":"Rise","chinese":"起","source":"Chinese proverb"}'])
    assert await session.generate_quote(provider)
    assert session.model.get("proverb").content == "Rise\n起"
    assert provider.calls[0][0]["role"] == "system"
    assert not session.loading_quote


@pytest.mark.asyncio
async def test_stale_quote_response_is_dropped(session):
    provider = GatedQuoteProvider(
        ['{"english":"Old","chinese":"旧"}', '{"english":"New","chinese":"新"}']
    )
    first = asyncio.create_task(session.generate_quote(provider))
    second = asyncio.create_task(session.generate_quote(provider))
    await asyncio.sleep(0)
    assert session.loading_quote

    provider.gates[1].set()
    assert await second
    provider.gates[0].set()
    assert not await first

    assert session.model.get("proverb").content == "New\n新"
    assert not session.loading_quote


@pytest.mark.asyncio
async def test_last_write_wins_when_fencing_is_off(session, monkeypatch):
    monkeypatch.setattr(settings, "fence_generations", False)
    provider = GatedQuoteProvider(
        ['{"english":"Old","chinese":"旧"}', '{"english":"New","chinese":"新"}']
    )
    first = asyncio.create_task(session.generate_quote(provider))
    second = asyncio.create_task(session.generate_quote(provider))
    await asyncio.sleep(0)
    provider.gates[1].set()
    await second
    provider.gates[0].set()
    assert await first
    assert session.model.get("proverb").content == "Old\n旧"


@pytest.mark.asyncio
async def test_generation_does_not_block_gestures(session):
    provider = GatedQuoteProvider(['{"english":"A","chinese":"甲"}'])
    task = asyncio.create_task(session.generate_quote(provider))
    await asyncio.sleep(0)
    session.pointer_down("proverb", 0, 0)
    session.pointer_move(5, 5)
    provider.gates[0].set()
    await task
    proverb = session.model.get("proverb")
    assert proverb.position == Position(45, 1055)
    assert proverb.content == "A\n甲"


@pytest.mark.asyncio
async def test_export_png_from_session(session):
    session.set_background(png_data_url((72, 128)))
    session.observe_viewport(800, 900)
    png = await session.export_png()
    assert png.startswith(b"\x89PNG")
