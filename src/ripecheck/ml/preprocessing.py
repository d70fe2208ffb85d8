"""Image preprocessing: decode uploads and build the model input tensor."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from ripecheck.errors import PreprocessError

if TYPE_CHECKING:
    from numpy.typing import NDArray

MODEL_INPUT_SIZE = 224


def decode_image(image_bytes: bytes, max_pixels: int = 16_777_216) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGB uint8 numpy array.

    EXIF orientation is applied and any colour mode (greyscale, palette, RGBA,
    CMYK) is converted to RGB.

    Args:
        image_bytes: Raw file bytes (any format Pillow can read).
        max_pixels: Upper bound on width * height.

    Returns:
        HxWx3 RGB uint8 numpy array.

    Raises:
        PreprocessError: If the data is empty, undecodable, or too large.
    """
    if not image_bytes:
        raise PreprocessError("Empty image data")

    try:
        img = Image.open(io.BytesIO(image_bytes))
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise PreprocessError("Input is not a decodable image") from exc

    with img:
        width, height = img.size
        if width * height > max_pixels:
            raise PreprocessError(f"Image has {width * height} pixels, limit is {max_pixels}")
        try:
            rgb = ImageOps.exif_transpose(img).convert("RGB")
        except (OSError, ValueError) as exc:
            # Truncated or corrupt pixel data only surfaces when decoding.
            raise PreprocessError(f"Could not decode image data: {exc}") from exc

    return np.array(rgb, dtype=np.uint8)


def normalize_image(image: NDArray[np.uint8], size: int = MODEL_INPUT_SIZE) -> NDArray[np.float32]:
    """Resize with nearest-neighbour sampling and rescale pixels to [0, 1].

    The source array is never modified. Output pixel (y, x) samples source
    pixel (floor(y * H / size), floor(x * W / size)).

    Args:
        image: HxWx3 RGB array with values in [0, 255].
        size: Side length of the square model input.

    Returns:
        float32 tensor of shape (1, size, size, 3).

    Raises:
        PreprocessError: If the array is not a non-empty HxWx3 image.
    """
    if image.ndim != 3 or image.shape[2] != 3 or image.shape[0] == 0 or image.shape[1] == 0:
        raise PreprocessError(f"Expected an HxWx3 RGB image, got shape {image.shape}")

    height, width = image.shape[:2]
    rows = (np.arange(size) * height) // size
    cols = (np.arange(size) * width) // size

    # Fancy indexing copies, so the caller's array is untouched.
    resized = image[rows[:, np.newaxis], cols[np.newaxis, :]]
    tensor = resized.astype(np.float32) / np.float32(255.0)
    return tensor[np.newaxis, ...]
