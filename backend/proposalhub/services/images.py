from __future__ import annotations

import io
from typing import Any

import httpx
from PIL import Image, ImageOps, UnidentifiedImageError

from ..observability.logging import get_logger

log = get_logger("images")

LOGO_BOX = (400, 400)
MAX_IMAGE_BYTES = 15 * 1024 * 1024


class ImageProcessingError(ValueError):
    pass


def fetch_image_bytes(url: str, *, timeout: float = 15.0) -> bytes:
    u = str(url or "").strip()
    if not u.lower().startswith(("http://", "https://")):
        raise ImageProcessingError("imageUrl must be an http(s) URL")
    buf = bytearray()
    with httpx.Client(follow_redirects=True, timeout=timeout) as client, client.stream("GET", u) as r:
        r.raise_for_status()
        for chunk in r.iter_bytes():
            buf.extend(chunk)
            if len(buf) > MAX_IMAGE_BYTES:
                raise ImageProcessingError("Image is too large")
    return bytes(buf)


def _relative_box(crop: dict[str, Any], width: int, height: int) -> tuple[int, int, int, int]:
    """Convert a crop given as 0..1 fractions of the image into a pixel box."""
    try:
        x = float(crop["x"])
        y = float(crop["y"])
        w = float(crop["width"])
        h = float(crop["height"])
    except (KeyError, TypeError, ValueError) as e:
        raise ImageProcessingError("crop must have numeric x, y, width and height") from e

    if w <= 0 or h <= 0:
        raise ImageProcessingError("crop width and height must be positive")
    if x < 0 or y < 0 or x + w > 1.0001 or y + h > 1.0001:
        raise ImageProcessingError("crop must lie within the image (relative 0..1 coordinates)")

    left = round(x * width)
    top = round(y * height)
    right = min(width, left + max(1, round(w * width)))
    bottom = min(height, top + max(1, round(h * height)))
    return left, top, right, bottom


def crop_to_logo(data: bytes, crop: dict[str, Any]) -> bytes:
    """Crop with relative coordinates and fit into a 400x400 transparent PNG (contain)."""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageProcessingError("Could not read image") from e

    img = img.convert("RGBA")
    box = _relative_box(crop, img.width, img.height)
    cropped = img.crop(box)
    fitted = ImageOps.contain(cropped, LOGO_BOX)

    canvas = Image.new("RGBA", LOGO_BOX, (0, 0, 0, 0))
    offset = ((LOGO_BOX[0] - fitted.width) // 2, (LOGO_BOX[1] - fitted.height) // 2)
    canvas.paste(fitted, offset)

    out = io.BytesIO()
    canvas.save(out, format="PNG")
    log.info("image_cropped", source_size=[img.width, img.height], box=list(box))
    return out.getvalue()


def sniff_image_extension(data: bytes) -> str | None:
    """jpg/png/gif/webp from the image bytes, or None when Pillow cannot read it."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = (img.format or "").lower()
    except (UnidentifiedImageError, OSError):
        return None
    return {"jpeg": "jpg", "png": "png", "gif": "gif", "webp": "webp"}.get(fmt)
