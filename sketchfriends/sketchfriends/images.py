"""Image capture/resize — turns drawings into bounded data URLs."""

from __future__ import annotations

import base64
import binascii
import io
import re
from pathlib import Path

from PIL import Image, UnidentifiedImageError

DEFAULT_MAX_WIDTH = 512
JPEG_QUALITY = 70

_DATA_URL_RE = re.compile(r"^data:(image/[\w.+-]+);base64,(.*)$", re.DOTALL)


class CaptureError(Exception):
    """The drawing could not be read as an image."""


def encode_image(data: bytes, mime: str = "image/jpeg") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def decode_image(data_url: str) -> tuple[str, bytes]:
    """Split a data URL into (mime type, raw bytes)."""
    match = _DATA_URL_RE.match(data_url)
    if not match:
        raise CaptureError("not an image data URL")
    try:
        return match.group(1), base64.b64decode(match.group(2), validate=True)
    except binascii.Error as exc:
        raise CaptureError(f"broken base64 payload: {exc}") from exc


def _open(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise CaptureError(f"unreadable image: {exc}") from exc
    return img


def load_drawing(path: str | Path) -> str:
    """Read a photo of a drawing from disk and return it as a data URL."""
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise CaptureError(f"cannot read {path}: {exc}") from exc
    img = _open(data)
    mime = Image.MIME.get(img.format or "", "image/jpeg")
    return encode_image(data, mime)


def resize_image(data_url: str, max_width: int = DEFAULT_MAX_WIDTH) -> str:
    """Shrink to *max_width* as JPEG; narrower images are returned unchanged."""
    _, data = decode_image(data_url)
    img = _open(data)
    scale = max_width / img.width
    if scale >= 1:
        return data_url

    size = (max_width, max(1, round(img.height * scale)))
    if img.mode in ("RGBA", "LA", "P"):
        img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.getchannel("A"))
        img = background
    else:
        img = img.convert("RGB")

    buf = io.BytesIO()
    img.resize(size, Image.Resampling.LANCZOS).save(buf, format="JPEG", quality=JPEG_QUALITY)
    return encode_image(buf.getvalue(), "image/jpeg")
