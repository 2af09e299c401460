import io
from datetime import date

import pytest
from PIL import Image

from conftest import png_data_url
from morning_poster.assembly.render import CompositeExporter, export_filename, export_to_file, render_sun
from morning_poster.errors import ExportError
from morning_poster.layout.model import DecorationStyle, default_layout
from morning_poster.layout.viewport import DisplayTransform, ViewportScaler


@pytest.mark.asyncio
async def test_export_is_independent_of_viewport_scale():
    model = default_layout()
    viewport = ViewportScaler(padding=20)
    viewport.observe(380, 660)
    png = await CompositeExporter().export_png(model, png_data_url((90, 160)), viewport)
    assert Image.open(io.BytesIO(png)).size == (720, 1280)
    # The on-screen transform is back once the export is done.
    assert viewport.display_transform().scale == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_preview_uses_display_scale():
    viewport = ViewportScaler(padding=20)
    viewport.observe(380, 660)
    png = await CompositeExporter().preview_png(default_layout(), png_data_url(), viewport)
    assert Image.open(io.BytesIO(png)).size == (360, 640)


def test_render_paints_logo_and_rotated_elements():
    model = default_layout()
    model.update("logo", content="unused-by-render", style={"width": 100, "rotation": 30})
    model.update("dateDay", content="19", style={"rotation": 45, "opacity": 0.5})
    logo = Image.new("RGBA", (50, 25), (255, 0, 0, 255))
    out = CompositeExporter(scrim=False).render(model, Image.new("RGB", (10, 10), (0, 0, 0)), {"logo": logo})
    assert out.size == (720, 1280)
    # Center of the logo box (400 + 50, 40 + 25) is covered by the red logo.
    r, g, b, _ = out.getpixel((450, 65))
    assert r > 200 and g < 50 and b < 50


def test_render_without_background_is_white_canvas():
    model = default_layout()
    for el in list(model):
        if el.style.kind == "text":
            model.update(el.id, content="")
    model.update("sun", position={"x": -1000, "y": -1000})
    out = CompositeExporter(scrim=False).render(model, None)
    assert out.getpixel((360, 640)) == (255, 255, 255, 255)


def test_elements_off_canvas_do_not_fail():
    model = default_layout()
    model.update("proverb", position={"x": -5000, "y": 9000})
    model.update("sun", position={"x": 700, "y": 1270})
    out = CompositeExporter().render(model, None, transform=DisplayTransform(scale=1.0))
    assert out.size == (720, 1280)


def test_sun_glyph_is_colored_and_padded():
    glyph = render_sun(DecorationStyle(size=100, color="#dfff00", opacity=1.0))
    assert glyph.size == (200, 200)
    r, g, b, a = glyph.getpixel((100, 100))
    assert (r, g, b) == (0xDF, 0xFF, 0x00)
    assert a == 255


@pytest.mark.asyncio
async def test_undecodable_background_is_a_single_export_error():
    viewport = ViewportScaler(padding=20)
    with pytest.raises(ExportError):
        await CompositeExporter().export_png(default_layout(), "data:image/png;base64,AAAA", viewport)
    assert viewport.display_transform().scale == 1.0


@pytest.mark.asyncio
async def test_undecodable_logo_is_an_export_error():
    model = default_layout()
    model.update("logo", content="data:image/png;base64,AAAA")
    with pytest.raises(ExportError):
        await CompositeExporter().export_png(model, png_data_url())


def test_export_to_file(tmp_path):
    path = export_to_file(b"png", out_dir=tmp_path, today=date(2026, 10, 19))
    assert path.name == "morning-poster-2026-10-19.png"
    assert path.read_bytes() == b"png"
    assert export_filename(date(2026, 1, 2)) == "morning-poster-2026-01-02.png"


def test_unexpected_render_failure_is_an_export_error(monkeypatch):
    def broken_sun(style):
        raise TypeError("bad glyph")

    monkeypatch.setattr("morning_poster.assembly.render.render_sun", broken_sun)
    with pytest.raises(ExportError):
        CompositeExporter().render(default_layout(), None)


@pytest.mark.asyncio
async def test_oversized_image_is_an_export_error(monkeypatch):
    async def bomb(ref, timeout=None):
        raise Image.DecompressionBombError("too many pixels")

    monkeypatch.setattr("morning_poster.assembly.render.load_image_ref", bomb)
    with pytest.raises(ExportError):
        await CompositeExporter().export_png(default_layout(), png_data_url())
