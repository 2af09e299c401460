from __future__ import annotations

import io
import logging
import math
from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import Mapping

import httpx
from PIL import Image, ImageDraw, ImageFilter, ImageFont

from morning_poster.assembly.inpaint import decode_image_source
from morning_poster.config import settings
from morning_poster.errors import ExportError
from morning_poster.layout.model import (
    DecorationStyle,
    Element,
    ImageStyle,
    LayoutModel,
    TextStyle,
)
from morning_poster.layout.viewport import DisplayTransform, ViewportScaler

logger = logging.getLogger(__name__)

TEXT_SHADOW = (0, 0, 0, 77)  # rgba(0,0,0,0.3)
TEXT_MIN_WIDTH = 50

# Sun glyph in a 200x200 design space.
_SUN_LONG_RAYS = [
    ((100, 20), (100, 50)),
    ((100, 180), (100, 150)),
    ((20, 100), (50, 100)),
    ((180, 100), (150, 100)),
    ((43.4, 43.4), (64.6, 64.6)),
    ((156.6, 156.6), (135.4, 135.4)),
    ((43.4, 156.6), (64.6, 135.4)),
    ((156.6, 43.4), (135.4, 64.6)),
]


async def load_image_ref(ref: str, timeout: float | None = None) -> Image.Image:
    """Resolve a data URL or an http(s) URL to a decoded image."""
    if ref.startswith("data:"):
        return decode_image_source(ref)
    async with httpx.AsyncClient(timeout=timeout or settings.request_timeout_s, follow_redirects=True) as client:
        resp = await client.get(ref)
        resp.raise_for_status()
        return decode_image_source(resp.content)


def _hex_to_rgb(hex_color: str) -> tuple[int, int, int]:
    s = hex_color.strip().lstrip("#")
    if len(s) == 3:
        s = "".join([c * 2 for c in s])
    if len(s) != 6:
        return (255, 255, 255)
    try:
        return (int(s[0:2], 16), int(s[2:4], 16), int(s[4:6], 16))
    except ValueError:
        return (255, 255, 255)


def _is_bold(weight: str) -> bool:
    try:
        return int(weight) >= 600
    except (TypeError, ValueError):
        return str(weight).lower() == "bold"


def _font_candidates(family: str, bold: bool) -> list[str]:
    fam = family.lower()
    serif = "serif" in fam.replace("sans-serif", "")
    if serif:
        cjk = [
            "/usr/share/fonts/opentype/noto/NotoSerifCJK-Bold.ttc" if bold else "/usr/share/fonts/opentype/noto/NotoSerifCJK-Regular.ttc",
            "/System/Library/Fonts/Supplemental/Songti.ttc",
            "C:\\Windows\\Fonts\\simsun.ttc",
        ]
        latin = [
            "/usr/share/fonts/truetype/dejavu/DejaVuSerif-Bold.ttf" if bold else "/usr/share/fonts/truetype/dejavu/DejaVuSerif.ttf",
            "/System/Library/Fonts/Supplemental/Georgia.ttf",
        ]
    else:
        cjk = [
            "/usr/share/fonts/opentype/noto/NotoSansCJK-Bold.ttc" if bold else "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
            "/usr/share/fonts/noto-cjk/NotoSansCJK-Regular.ttc",
            "/System/Library/Fonts/PingFang.ttc",
            "C:\\Windows\\Fonts\\msyhbd.ttc" if bold else "C:\\Windows\\Fonts\\msyh.ttc",
        ]
        latin = [
            "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf" if bold else "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
            "/System/Library/Fonts/Supplemental/Arial.ttf",
        ]
    return ["assets/fonts/NotoSansSC-Regular.ttf", *cjk, *latin]


@lru_cache(maxsize=64)
def _load_font(family: str, size: int, bold: bool) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """
    Prefer a CJK-capable TTF so Chinese copy renders. If nothing is installed,
    fall back to Pillow's built-in font at the requested size.
    """
    for c in _font_candidates(family, bold):
        if Path(c).exists():
            try:
                return ImageFont.truetype(c, size=size)
            except OSError:
                continue
    return ImageFont.load_default(size=size)


def _resize_cover(img: Image.Image, size: tuple[int, int]) -> Image.Image:
    """
    Resize to cover the target canvas (no stretching), then center-crop.
    """
    tw, th = size
    iw, ih = img.size
    if iw <= 0 or ih <= 0:
        return img.resize(size, Image.Resampling.LANCZOS)

    scale = max(tw / iw, th / ih)
    nw, nh = max(tw, math.ceil(iw * scale)), max(th, math.ceil(ih * scale))
    resized = img.resize((nw, nh), Image.Resampling.LANCZOS)

    left = max(0, (nw - tw) // 2)
    top = max(0, (nh - th) // 2)
    return resized.crop((left, top, left + tw, top + th))


def _apply_scrim(img_rgba: Image.Image) -> Image.Image:
    """
    Darken top and bottom for legibility: black 20% at the top fading to clear
    in the middle, then clear to black 40% at the bottom.
    """
    w, h = img_rgba.size
    overlay = Image.new("RGBA", (w, h), (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    mid = max(1, h // 2)
    for y in range(h):
        if y < mid:
            a = int(51 * (1 - y / mid))
        else:
            a = int(102 * ((y - mid) / max(1, h - mid)))
        draw.line([(0, y), (w, y)], fill=(0, 0, 0, a))
    return Image.alpha_composite(img_rgba, overlay)


def _scale_alpha(layer: Image.Image, opacity: float) -> Image.Image:
    opacity = max(0.0, min(1.0, opacity))
    if opacity >= 1.0:
        return layer
    a = layer.getchannel("A").point(lambda px: int(px * opacity))
    layer.putalpha(a)
    return layer


def _paste_rotated(canvas: Image.Image, layer: Image.Image, xy: tuple[float, float], rotation: float) -> None:
    """Composite `layer` with its top-left at `xy`, rotated clockwise about its own center."""
    x, y = xy
    if rotation % 360:
        cx, cy = x + layer.width / 2, y + layer.height / 2
        # CSS rotates clockwise; PIL rotates counter-clockwise.
        layer = layer.rotate(-rotation, resample=Image.Resampling.BICUBIC, expand=True)
        x, y = cx - layer.width / 2, cy - layer.height / 2
    canvas.alpha_composite(_clip_layer(canvas, layer, int(round(x)), int(round(y))), (0, 0))


def _clip_layer(canvas: Image.Image, layer: Image.Image, x: int, y: int) -> Image.Image:
    # alpha_composite rejects negative destinations, so place the layer on a canvas-sized sheet.
    sheet = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    sheet.paste(layer, (x, y))
    return sheet


def _render_text(el: Element, style: TextStyle) -> Image.Image | None:
    text = el.content or ""
    if not text:
        return None
    size = max(1, int(round(style.font_size)))
    font = _load_font(style.font_family, size, _is_bold(style.font_weight))
    lines = text.split("\n")
    pitch = max(1, int(round(style.font_size * style.line_height)))

    probe = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    widths = [int(math.ceil(probe.textlength(line, font=font))) if line else 0 for line in lines]
    box_w = max(TEXT_MIN_WIDTH, *widths)
    pad = 6
    layer = Image.new("RGBA", (box_w + pad * 2, pitch * len(lines) + pad * 2), (0, 0, 0, 0))
    shadow = Image.new("RGBA", layer.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    shadow_draw = ImageDraw.Draw(shadow)
    fill = _hex_to_rgb(style.color) + (255,)

    for i, (line, lw) in enumerate(zip(lines, widths)):
        if style.text_align == "center":
            lx = (box_w - lw) / 2
        elif style.text_align == "right":
            lx = box_w - lw
        else:
            lx = 0
        # Center the glyph box within the line box, like CSS half-leading.
        ly = i * pitch + (pitch - size) / 2
        shadow_draw.text((pad + lx, pad + ly + 2), line, font=font, fill=TEXT_SHADOW)
        draw.text((pad + lx, pad + ly), line, font=font, fill=fill)

    composed = Image.alpha_composite(shadow.filter(ImageFilter.GaussianBlur(2)), layer)
    return _scale_alpha(composed, style.opacity)


def _render_image(img: Image.Image, style: ImageStyle) -> Image.Image | None:
    iw, ih = img.size
    if iw <= 0 or ih <= 0:
        return None
    w = max(1, int(round(style.width)))
    h = max(1, int(round(w * ih / iw)))
    return img.convert("RGBA").resize((w, h), Image.Resampling.LANCZOS)


def render_sun(style: DecorationStyle) -> Image.Image:
    """The sun glyph with a soft glow; the glow overflows the element box by half its size."""
    size = max(1, int(round(style.size)))
    k = size / 200
    pad = size // 2
    color = _hex_to_rgb(style.color) + (255,)
    glyph = Image.new("RGBA", (size + pad * 2, size + pad * 2), (0, 0, 0, 0))
    draw = ImageDraw.Draw(glyph)

    def pt(px: float, py: float) -> tuple[float, float]:
        return (pad + px * k, pad + py * k)

    r = 40 * k
    cx, cy = pt(100, 100)
    draw.ellipse([(cx - r, cy - r), (cx + r, cy + r)], fill=color)
    long_w = max(1, int(round(8 * k)))
    for a, b in _SUN_LONG_RAYS:
        draw.line([pt(*a), pt(*b)], fill=color, width=long_w)
        for end in (a, b):
            ex, ey = pt(*end)
            draw.ellipse([(ex - long_w / 2, ey - long_w / 2), (ex + long_w / 2, ey + long_w / 2)], fill=color)

    short = color[:3] + (204,)
    short_w = max(1, int(round(4 * k)))
    for i in range(8):
        theta = math.radians(22.5 + 45 * i)
        # Ray from radius 65 to 90 about the center, rotated clockwise from 12 o'clock.
        x1, y1 = 100 + 65 * math.sin(theta), 100 - 65 * math.cos(theta)
        x2, y2 = 100 + 90 * math.sin(theta), 100 - 90 * math.cos(theta)
        draw.line([pt(x1, y1), pt(x2, y2)], fill=short, width=short_w)

    glow = glyph.filter(ImageFilter.GaussianBlur(max(1, 4 * k)))
    out = Image.alpha_composite(glow, glyph)
    return _scale_alpha(out, style.opacity)


class CompositeExporter:
    """
    Rasterizes a layout at its fixed logical resolution.

    Rendering never depends on the on-screen scale: `export_png` neutralizes
    the viewport's display transform for the duration of the render.
    """

    def __init__(self, scrim: bool = True) -> None:
        self.scrim = scrim

    def render(
        self,
        model: LayoutModel,
        background: Image.Image | None,
        images: Mapping[str, Image.Image] | None = None,
        transform: DisplayTransform | None = None,
    ) -> Image.Image:
        size = (model.width, model.height)
        images = images or {}
        try:
            if background is not None:
                canvas = _resize_cover(background.convert("RGB"), size).convert("RGBA")
            else:
                canvas = Image.new("RGBA", size, (255, 255, 255, 255))
            if self.scrim:
                canvas = _apply_scrim(canvas)

            for el in model.paint_order():
                layer, offset = self._render_element(el, images)
                if layer is None:
                    continue
                rotation = getattr(el.style, "rotation", 0.0) or 0.0
                _paste_rotated(canvas, layer, (el.position.x - offset, el.position.y - offset), rotation)

            if transform is not None and transform.scale != 1.0:
                w = max(1, int(round(size[0] * transform.scale)))
                h = max(1, int(round(size[1] * transform.scale)))
                canvas = canvas.resize((w, h), Image.Resampling.LANCZOS)
            return canvas
        except Exception as e:
            # Any failure here aborts the export as a whole; no partial image escapes.
            raise ExportError(f"failed to render poster: {e}") from e

    def _render_element(self, el: Element, images: Mapping[str, Image.Image]) -> tuple[Image.Image | None, int]:
        style = el.style
        if isinstance(style, TextStyle):
            # Text layers carry padding for the shadow.
            return _render_text(el, style), 6
        if isinstance(style, ImageStyle):
            img = images.get(el.id)
            if el.content is None or img is None:
                return None, 0
            return _render_image(img, style), 0
        if isinstance(style, DecorationStyle):
            return render_sun(style), int(round(style.size)) // 2
        return None, 0

    async def resolve_images(self, model: LayoutModel, background: str | None) -> tuple[Image.Image | None, dict[str, Image.Image]]:
        try:
            bg = await load_image_ref(background) if background else None
            images: dict[str, Image.Image] = {}
            for el in model:
                if isinstance(el.style, ImageStyle) and el.content:
                    images[el.id] = await load_image_ref(el.content)
        except (httpx.HTTPError, OSError, ValueError, Image.DecompressionBombError) as e:
            raise ExportError(f"failed to load poster images: {e}") from e
        return bg, images

    async def export_png(self, model: LayoutModel, background: str | None, viewport: ViewportScaler | None = None) -> bytes:
        bg, images = await self.resolve_images(model, background)
        viewport = viewport or ViewportScaler((model.width, model.height))
        with viewport.neutralized():
            img = self.render(model, bg, images, transform=viewport.display_transform())
        buf = io.BytesIO()
        try:
            img.convert("RGB").save(buf, format="PNG")
        except (OSError, ValueError) as e:
            raise ExportError(f"failed to encode poster: {e}") from e
        return buf.getvalue()

    async def preview_png(self, model: LayoutModel, background: str | None, viewport: ViewportScaler) -> bytes:
        bg, images = await self.resolve_images(model, background)
        img = self.render(model, bg, images, transform=viewport.display_transform())
        buf = io.BytesIO()
        try:
            img.convert("RGB").save(buf, format="PNG")
        except (OSError, ValueError) as e:
            raise ExportError(f"failed to encode preview: {e}") from e
        return buf.getvalue()


def export_filename(today: date | None = None) -> str:
    return f"morning-poster-{(today or date.today()).isoformat()}.png"


def export_to_file(content: bytes, out_dir: Path | None = None, today: date | None = None) -> Path:
    out_dir = Path(out_dir or Path(settings.data_dir) / "exports")
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / export_filename(today)
    path.write_bytes(content)
    logger.info("Exported poster to %s", path)
    return path
