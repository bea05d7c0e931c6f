"""Image preprocessing pipeline.

Decodes uploaded bytes with Pillow, scales them to the model's square input
and converts the RGBA pixel buffer into a channel-major float32 tensor.
"""

from __future__ import annotations

import base64
import io
import math
from typing import TYPE_CHECKING, Literal

import numpy as np
from PIL import Image, ImageOps

from ortclassify.ml.errors import ImageDecodeError, TensorShapeMismatch

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike, NDArray

DEFAULT_SIZE = 224
MAX_PIXEL_VALUE = 255.0

_RESAMPLE: dict[str, Image.Resampling] = {
    "bilinear": Image.Resampling.BILINEAR,
    "nearest": Image.Resampling.NEAREST,
}


def decode_image(image_bytes: bytes, max_pixels: int | None = None) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGBA uint8 numpy array.

    EXIF orientation is applied so the pixels match what a viewer shows.

    Args:
        image_bytes: Raw file bytes (any format Pillow can read).
        max_pixels: Reject images with more pixels than this.

    Returns:
        HxWx4 RGBA uint8 numpy array.

    Raises:
        ImageDecodeError: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise ImageDecodeError("Empty image file")

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if max_pixels is not None and width * height > max_pixels:
                raise ImageDecodeError(f"Image has {width * height} pixels, limit is {max_pixels}")
            img.load()
            rgba = ImageOps.exif_transpose(img).convert("RGBA")
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(f"Cannot decode image: {exc}") from exc

    return np.asarray(rgba, dtype=np.uint8)


def resize_to_square(
    image: NDArray[np.uint8],
    size: int = DEFAULT_SIZE,
    resample: Literal["bilinear", "nearest"] = "bilinear",
) -> NDArray[np.uint8]:
    """Scale an RGBA image to ``size`` pixels wide and read a size x size region.

    The height is scaled proportionally and truncated to an integer. The
    region is read from the top-left corner: a tall image loses its bottom
    rows, a wide image is padded with transparent black rows.

    Only the source rows that land inside the square are resampled, so the
    intermediate image never exceeds size x size whatever the aspect ratio.

    Args:
        image: HxWx4 RGBA uint8 array.
        size: Target width and height.
        resample: Interpolation filter.

    Returns:
        size x size x 4 RGBA uint8 array.
    """
    if image.ndim != 3 or image.shape[2] != 4:
        raise ValueError(f"Expected an HxWx4 RGBA array, got shape {image.shape}")

    height, width = image.shape[:2]
    scaled_height = max(1, int(size * height / width))
    rows = min(size, scaled_height)
    # Source band covering output rows [0, rows) at the full-image scale.
    box = (0.0, 0.0, float(width), rows * height / scaled_height)
    scaled = Image.fromarray(image).resize((size, rows), resample=_RESAMPLE[resample], box=box)

    square = np.zeros((size, size, 4), dtype=np.uint8)
    square[:rows] = np.asarray(scaled, dtype=np.uint8)
    return square


def image_data_to_tensor(
    data: ArrayLike,
    dims: Sequence[int] = (1, 3, DEFAULT_SIZE, DEFAULT_SIZE),
) -> NDArray[np.float32]:
    """Convert an RGBA pixel buffer into a normalized channel-major tensor.

    Alpha is dropped, the interleaved ``(H, W, C)`` layout is transposed to
    planar ``(C, H, W)`` and every byte ``v`` becomes ``v / 255.0``.

    Args:
        data: RGBA uint8 values, flat or shaped HxWx4.
        dims: Output tensor shape, usually ``(1, 3, W, W)``.

    Returns:
        float32 array with shape ``dims``.

    Raises:
        TensorShapeMismatch: If the buffer does not fill ``dims`` exactly.
    """
    pixels = np.asarray(data, dtype=np.uint8).reshape(-1)
    expected = math.prod(dims)

    if pixels.size % 4 != 0:
        actual = (pixels.size // 4) * 3 + min(pixels.size % 4, 3)
        raise TensorShapeMismatch(expected, actual)

    rgb = pixels.reshape(-1, 4)[:, :3]
    if rgb.size != expected:
        raise TensorShapeMismatch(expected, rgb.size)

    planar = np.ascontiguousarray(rgb.T)
    return (planar / MAX_PIXEL_VALUE).astype(np.float32).reshape(tuple(dims))


def encode_preview(image: NDArray[np.uint8]) -> str:
    """Encode an RGBA array as a base64 PNG string."""
    buf = io.BytesIO()
    Image.fromarray(image).save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")
