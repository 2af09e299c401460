from __future__ import annotations

import base64
import binascii
import io
import logging
from dataclasses import dataclass
from typing import Union

from PIL import Image, ImageDraw, ImageFilter, ImageStat

logger = logging.getLogger(__name__)

ImageSource = Union[bytes, str]

DONOR_BLUR_RADIUS = 18
FILL_BLUR_RADIUS = 10


@dataclass(frozen=True)
class WatermarkBoxes:
    dest: tuple[int, int, int, int]
    donor: tuple[int, int, int, int]
    sample: tuple[int, int, int, int]


def watermark_boxes(width: int, height: int) -> WatermarkBoxes:
    """
    Rectangles for a provider mark anchored bottom-right:
    - dest: ~26% x 12% of the image, inset by a 2% margin
    - donor: same size, 1.2x its height above dest, kept inside the image
    - sample: band over the top 60% of dest, starting 20% of the band down
    All boxes are (left, top, right, bottom) and lie within the image.
    """
    margin_x = round(width * 0.02)
    margin_y = round(height * 0.02)
    wm_w = min(width, max(1, round(width * 0.26)))
    wm_h = min(height, max(1, round(height * 0.12)))
    dest_x = max(0, width - wm_w - margin_x)
    dest_y = max(0, height - wm_h - margin_y)

    src_x = dest_x
    src_y = max(0, dest_y - round(wm_h * 1.2))
    if src_x + wm_w > width:
        src_x = max(0, width - wm_w)
    if src_y + wm_h > height:
        src_y = max(0, height - wm_h)

    sample_h = max(1, round(wm_h * 0.6))
    sample_y = min(dest_y + round(sample_h * 0.2), height - sample_h)

    return WatermarkBoxes(
        dest=(dest_x, dest_y, dest_x + wm_w, dest_y + wm_h),
        donor=(src_x, src_y, src_x + wm_w, src_y + wm_h),
        sample=(dest_x, sample_y, dest_x + wm_w, sample_y + sample_h),
    )


def decode_image_source(src: ImageSource) -> Image.Image:
    """Open raw image bytes or a base64 `data:` URL."""
    if isinstance(src, str):
        if not src.startswith("data:"):
            raise ValueError("only data: URLs can be decoded without fetching")
        header, _, payload = src.partition(",")
        if ";base64" not in header:
            raise ValueError("data URL is not base64 encoded")
        try:
            raw = base64.b64decode(payload, validate=True)
        except binascii.Error as e:
            raise ValueError(f"invalid base64 payload: {e}") from e
    else:
        raw = src
    img = Image.open(io.BytesIO(raw))
    img.load()
    return img


def to_data_url(content: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"


def _inpaint(img: Image.Image) -> Image.Image:
    base = img.convert("RGBA")
    boxes = watermark_boxes(*base.size)
    dx1, dy1, dx2, dy2 = boxes.dest
    wm_w, wm_h = dx2 - dx1, dy2 - dy1

    # Blend the donor patch in on a transparent layer so the blur feathers its edges.
    donor = base.crop(boxes.donor)
    patch_layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
    patch_layer.paste(donor, (dx1, dy1))
    base = Image.alpha_composite(base, patch_layer.filter(ImageFilter.GaussianBlur(DONOR_BLUR_RADIUS)))

    band = base.crop(boxes.sample)
    r, g, b, _a = (int(round(v)) for v in ImageStat.Stat(band).mean)

    top = (r, g, b, round(255 * 0.55))
    bottom = (min(255, r + 3), min(255, g + 3), min(255, b + 3), round(255 * 0.85))
    fill_layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(fill_layer)
    span = max(1, wm_h - 1)
    for i in range(wm_h):
        t = i / span
        color = tuple(int(round(top[c] + (bottom[c] - top[c]) * t)) for c in range(4))
        draw.line([(dx1, dy1 + i), (dx1 + wm_w - 1, dy1 + i)], fill=color)

    return Image.alpha_composite(base, fill_layer.filter(ImageFilter.GaussianBlur(FILL_BLUR_RADIUS)))


def remove_watermark(src: ImageSource) -> ImageSource:
    """
    Best-effort cosmetic removal of the bottom-right provider watermark.

    Accepts encoded bytes or a data URL and returns the same type, PNG encoded.
    Never raises: on any failure the input is returned untouched.
    """
    try:
        img = decode_image_source(src)
        out = _inpaint(img)
        buf = io.BytesIO()
        out.save(buf, format="PNG")
        encoded = buf.getvalue()
    except Exception as e:
        logger.warning("Watermark removal skipped: %s", e)
        return src
    if isinstance(src, str):
        return to_data_url(encoded)
    return encoded
