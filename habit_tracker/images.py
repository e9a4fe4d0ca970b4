import io
import logging
import os
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from .config import SCREENSHOT_MAX_STORED_BYTES, UPLOAD_DIR
from .errors import bad_request

logger = logging.getLogger(__name__)

UPLOAD_URL_PREFIX = "/api/uploads"

# (longest side in px, JPEG quality), tried in order until the output fits
COMPRESSION_STEPS = [(1200, 70), (800, 60), (640, 50), (480, 40), (320, 30)]
MIN_SIDE = 40


def compress_screenshot(data: bytes, max_bytes: int = SCREENSHOT_MAX_STORED_BYTES) -> bytes:
    """Re-encode an uploaded image as a JPEG no larger than ``max_bytes``.

    Images are only ever shrunk, never enlarged. Raises a 400 ``INVALID_IMAGE``
    error when the payload is not a decodable image.
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise bad_request("INVALID_IMAGE", "Uploaded file is not a valid image") from e

    img = ImageOps.exif_transpose(img)
    if img.mode != "RGB":
        img = img.convert("RGB")

    for side, quality in COMPRESSION_STEPS:
        out = _encode(img, side, quality)
        if len(out) <= max_bytes:
            return out

    # Still too big: keep halving at the lowest quality
    side, quality = COMPRESSION_STEPS[-1]
    while len(out) > max_bytes and side > MIN_SIDE:
        side //= 2
        out = _encode(img, side, quality)
    return out


def _encode(img: Image.Image, side: int, quality: int) -> bytes:
    candidate = img.copy()
    candidate.thumbnail((side, side))
    buf = io.BytesIO()
    candidate.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def screenshot_url(filename: Optional[str]) -> Optional[str]:
    if not filename:
        return None
    return f"{UPLOAD_URL_PREFIX}/{filename}"


def store_screenshot(data: bytes, user_id: str, file_id: str) -> str:
    os.makedirs(UPLOAD_DIR, exist_ok=True)
    filename = f"payment-{user_id}-{file_id}.jpg"
    with open(os.path.join(UPLOAD_DIR, filename), "wb") as f:
        f.write(data)
    return filename


def delete_screenshot(filename: Optional[str]) -> None:
    if not filename:
        return
    path = os.path.join(UPLOAD_DIR, os.path.basename(filename))
    try:
        os.remove(path)
        logger.info("Deleted payment screenshot %s", filename)
    except FileNotFoundError:
        logger.warning("Payment screenshot %s already gone", filename)
