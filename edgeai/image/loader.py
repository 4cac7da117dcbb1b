from __future__ import annotations

import base64
import binascii
import io
import os
import urllib.parse
import urllib.request
from typing import Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from edgeai.errors import InvalidImageError
from edgeai.utils.logger import logger

ImageSource = Union[str, os.PathLike, bytes, bytearray, memoryview, Image.Image, np.ndarray]

URL_TIMEOUT_SECONDS = 60


def _decode_data_uri(uri: str) -> bytes:
    header, sep, payload = uri.partition(",")
    if not sep:
        raise InvalidImageError("malformed data URI: missing ',' separator")
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise InvalidImageError(f"malformed base64 payload in data URI: {exc}") from exc
    return urllib.parse.unquote_to_bytes(payload)


def _fetch_url(url: str) -> bytes:
    request = urllib.request.Request(url, headers={"User-Agent": "edgeai"})
    try:
        with urllib.request.urlopen(request, timeout=URL_TIMEOUT_SECONDS) as response:
            return response.read()
    except OSError as exc:
        raise InvalidImageError(f"cannot fetch image from {url}: {exc}") from exc


def _read_source_bytes(source: str | os.PathLike) -> bytes:
    text = os.fspath(source)
    if text.startswith("data:"):
        return _decode_data_uri(text)
    scheme = urllib.parse.urlparse(text).scheme.lower()
    if scheme in {"http", "https", "file"}:
        return _fetch_url(text)
    try:
        with open(os.path.expanduser(text), "rb") as handle:
            return handle.read()
    except OSError as exc:
        raise InvalidImageError(f"cannot read image file {text}: {exc}") from exc


def _from_array(array: np.ndarray) -> Image.Image:
    arr = np.asarray(array)
    if arr.ndim == 3 and arr.shape[2] == 1:
        arr = arr[:, :, 0]
    if arr.ndim not in (2, 3) or (arr.ndim == 3 and arr.shape[2] not in (3, 4)):
        raise InvalidImageError(f"unsupported image array shape {arr.shape}")
    if arr.dtype != np.uint8:
        raise InvalidImageError(f"image arrays must be uint8, got {arr.dtype}")
    if arr.shape[0] == 0 or arr.shape[1] == 0:
        raise InvalidImageError(f"image has zero area ({arr.shape[1]}x{arr.shape[0]})")
    return Image.fromarray(np.ascontiguousarray(arr))


def to_rgb(image: Image.Image) -> Image.Image:
    """Convert any 8-bit mode to RGB; transparency is dropped, not composited."""
    if image.mode == "RGB":
        return image
    if image.mode in {"P", "LA", "PA"}:
        image = image.convert("RGBA")
    return image.convert("RGB")


def load_image(source: ImageSource) -> Image.Image:
    """Decode an image source into an RGB PIL image.

    Accepts a PIL image, a uint8 ``HxW``/``HxWxC`` array, raw encoded bytes,
    an http(s) URL, a ``data:`` URI or a filesystem path.
    """
    if isinstance(source, Image.Image):
        image = source
    elif isinstance(source, np.ndarray):
        image = _from_array(source)
    else:
        if isinstance(source, (bytes, bytearray, memoryview)):
            payload = bytes(source)
        elif isinstance(source, (str, os.PathLike)):
            payload = _read_source_bytes(source)
        else:
            raise InvalidImageError(
                f"unsupported image source type: {type(source).__name__}"
            )
        if not payload:
            raise InvalidImageError("image payload is empty")
        try:
            image = Image.open(io.BytesIO(payload))
            image.load()
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise InvalidImageError(f"cannot decode image: {exc}") from exc

    width, height = image.size
    if width <= 0 or height <= 0:
        raise InvalidImageError(f"image has zero area ({width}x{height})")
    if image.mode not in {"RGB", "RGBA", "L", "P", "LA", "PA"}:
        logger.warning("Converting unusual image mode %s to RGB", image.mode)
    return to_rgb(image)
