"""Image preprocessing: decoding with Pillow, model input tensors with numpy.

Decoding handles format detection, EXIF orientation, color space conversion
and size validation. Tensor preparation applies the resize, crop and
normalization constants published with each model.
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from classifyx.ml.model_manager import ModelSpec


class ImagePreprocessor(Protocol):
    """Protocol for image preprocessing."""

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        """Decode raw image bytes into an RGB uint8 numpy array.

        Args:
            image_bytes: Raw file bytes (any supported format).

        Returns:
            HxWx3 RGB uint8 numpy array.

        Raises:
            ValueError: If the image cannot be decoded or exceeds size limits.
        """
        ...

    def preprocess_for_classification(self, image: NDArray[np.uint8], spec: ModelSpec) -> NDArray[np.float32]:
        """Prepare an image for a classification model.

        Args:
            image: HxWx3 RGB uint8 array.
            spec: Registry entry carrying the model's input constants.

        Returns:
            1x3xSxS float32 tensor, S being ``spec.crop_size``.
        """
        ...


class PilImagePreprocessor:
    """Pillow-backed implementation of :class:`ImagePreprocessor`."""

    def __init__(self, max_image_pixels: int) -> None:
        self._max_image_pixels = max_image_pixels

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        if not image_bytes:
            raise ValueError("Empty image payload")

        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                width, height = img.size
                if width * height > self._max_image_pixels:
                    raise ValueError(
                        f"Image is {width}x{height} pixels, limit is {self._max_image_pixels} pixels"
                    )
                oriented = ImageOps.exif_transpose(img)
                rgb = oriented.convert("RGB")
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
            raise ValueError(f"Cannot decode image: {exc}") from exc

        return np.asarray(rgb, dtype=np.uint8)

    def preprocess_for_classification(self, image: NDArray[np.uint8], spec: ModelSpec) -> NDArray[np.float32]:
        img = Image.fromarray(image)
        size = spec.crop_size

        if spec.resize_shortest_edge is None:
            img = img.resize((size, size), Image.Resampling.BILINEAR)
        else:
            img = _resize_shortest_edge(img, spec.resize_shortest_edge)
            img = _center_crop(img, size)

        arr = np.asarray(img, dtype=np.float32) / 255.0
        mean = np.asarray(spec.mean, dtype=np.float32)
        std = np.asarray(spec.std, dtype=np.float32)
        arr = (arr - mean) / std

        # HWC -> NCHW
        return np.ascontiguousarray(arr.transpose(2, 0, 1)[np.newaxis, ...], dtype=np.float32)


def _resize_shortest_edge(img: Image.Image, edge: int) -> Image.Image:
    width, height = img.size
    scale = edge / min(width, height)
    new_size = (max(edge, round(width * scale)), max(edge, round(height * scale)))
    return img.resize(new_size, Image.Resampling.BILINEAR)


def _center_crop(img: Image.Image, size: int) -> Image.Image:
    width, height = img.size
    left = (width - size) // 2
    top = (height - size) // 2
    return img.crop((left, top, left + size, top + size))
