"""Image preprocessing: decoding and fixed-size tensor preparation.

Both models consume a 224x224 RGB image stretched to fit (aspect ratio is
not preserved) with a bilinear filter. The classifier takes raw uint8
channel values; the regressor takes float32 values scaled to [0, 1].
"""

from __future__ import annotations

import io
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, UnidentifiedImageError

from beantime.exceptions import DecodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

ImageInput = bytes | str | Path | Image.Image

INPUT_WIDTH: int = 224
INPUT_HEIGHT: int = 224
INPUT_CHANNELS: int = 3

# Modes PIL can hand back per pixel as RGB(A) without conversion.
_DIRECT_MODES = frozenset({"RGB", "RGBA"})


class TensorEncoding(StrEnum):
    QUANTIZED = "quantized"
    FLOAT = "float"


_ELEMENT_DTYPES: dict[TensorEncoding, type[np.generic]] = {
    TensorEncoding.QUANTIZED: np.uint8,
    TensorEncoding.FLOAT: np.float32,
}


def element_size(encoding: TensorEncoding) -> int:
    """Return the size in bytes of one tensor element for an encoding."""
    return np.dtype(_ELEMENT_DTYPES[encoding]).itemsize


def load_image(source: ImageInput, max_pixels: int | None = None) -> Image.Image:
    """Decode an image from bytes, a file path, or an existing PIL image.

    Raises:
        DecodeError: If the source cannot be read or exceeds ``max_pixels``.
    """
    if isinstance(source, Image.Image):
        image = source
    else:
        try:
            if isinstance(source, bytes):
                image = Image.open(io.BytesIO(source))
            else:
                image = Image.open(Path(source))
            image.load()
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Could not decode image: {exc}") from exc

    if image.width == 0 or image.height == 0:
        raise DecodeError("Image has no pixels")
    if max_pixels is not None and image.width * image.height > max_pixels:
        raise DecodeError(f"Image too large: {image.width}x{image.height} exceeds {max_pixels} pixels")
    return image


def to_canonical_rgb(image: Image.Image) -> Image.Image:
    """Convert indexed, packed, greyscale or CMYK images to RGBA.

    RGB and RGBA images are returned as-is.
    """
    if image.mode in _DIRECT_MODES:
        return image
    try:
        return image.convert("RGBA")
    except (ValueError, OSError) as exc:
        raise DecodeError(f"Unsupported pixel format: {image.mode}") from exc


def prepare(
    image: Image.Image,
    width: int = INPUT_WIDTH,
    height: int = INPUT_HEIGHT,
    encoding: TensorEncoding = TensorEncoding.QUANTIZED,
) -> NDArray[np.uint8] | NDArray[np.float32]:
    """Resize an image and pack its pixels into a model input tensor.

    Args:
        image: Decoded image of any size and mode. It is not modified.
        width: Target width in pixels.
        height: Target height in pixels.
        encoding: ``QUANTIZED`` for uint8 channels, ``FLOAT`` for float32
            channels divided by 255.

    Returns:
        C-contiguous array of shape (height, width, 3), rows top to bottom,
        columns left to right, channels in R, G, B order. Alpha is dropped.
    """
    canonical = to_canonical_rgb(image)
    resized = canonical.resize((width, height), resample=Image.Resampling.BILINEAR)
    pixels = np.asarray(resized, dtype=np.uint8)
    if pixels.ndim != 3 or pixels.shape[2] < INPUT_CHANNELS:
        raise DecodeError(f"Unexpected pixel layout {pixels.shape} for mode {resized.mode}")
    rgb = pixels[:, :, :INPUT_CHANNELS]

    if encoding is TensorEncoding.QUANTIZED:
        return np.ascontiguousarray(rgb, dtype=np.uint8)
    return np.ascontiguousarray(rgb, dtype=np.float32) / np.float32(255.0)
