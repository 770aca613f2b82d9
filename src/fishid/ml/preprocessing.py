"""Image preprocessing pipeline.

Validates and decodes uploads (raw bytes or data URIs), applies EXIF
orientation, converts to RGB, enforces size limits, and produces the
normalized NCHW tensor expected by the classification model.
"""

from __future__ import annotations

import base64
import binascii
import io
import re
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from fishid.exceptions import InvalidInput

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from fishid.config import Settings

# ViT-base/16 at 224px, normalized with mean=std=0.5 per channel.
CLASSIFIER_INPUT_SIZE: tuple[int, int] = (224, 224)
CLASSIFIER_MEAN: tuple[float, float, float] = (0.5, 0.5, 0.5)
CLASSIFIER_STD: tuple[float, float, float] = (0.5, 0.5, 0.5)

_DATA_URI_RE = re.compile(r"^data:(?P<mime>image/[\w.+-]+)?(?P<params>(?:;[\w-]+=[^;,]*)*);base64,(?P<data>.*)$", re.DOTALL)


def validate_content_type(content_type: str | None) -> None:
    """Reject uploads whose declared media type is not an image."""
    if content_type is None or not content_type.lower().startswith("image/"):
        raise InvalidInput("Please upload a valid image file", unsupported_media_type=True)


def decode_data_uri(uri: str) -> bytes:
    """Extract the payload of a base64 ``data:image/...`` URI."""
    match = _DATA_URI_RE.match(uri.strip())
    if match is None or match.group("mime") is None:
        raise InvalidInput("Expected a base64-encoded data:image/... URI", unsupported_media_type=True)
    try:
        payload = re.sub(r"\s+", "", match.group("data"))
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInput("Data URI payload is not valid base64") from exc


class ImagePreprocessor(Protocol):
    """Protocol for image preprocessing."""

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        """Decode raw image bytes into an RGB uint8 numpy array.

        Raises:
            InvalidInput: If the image cannot be decoded or exceeds size limits.
        """
        ...

    def preprocess_for_classification(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Prepare an HxWx3 RGB image for the classification model."""
        ...


class PillowImagePreprocessor:
    """Pillow-backed decoder and ViT-style preprocessor."""

    def __init__(
        self,
        settings: Settings,
        input_size: tuple[int, int] = CLASSIFIER_INPUT_SIZE,
    ) -> None:
        self._max_file_size = settings.max_file_size
        self._max_image_pixels = settings.max_image_pixels
        self._input_size = input_size
        self._mean = np.asarray(CLASSIFIER_MEAN, dtype=np.float32)
        self._std = np.asarray(CLASSIFIER_STD, dtype=np.float32)

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        if not image_bytes:
            raise InvalidInput("Uploaded file is empty")
        if len(image_bytes) > self._max_file_size:
            raise InvalidInput(f"Uploaded file exceeds the {self._max_file_size} byte limit")

        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                width, height = img.size
                if width * height > self._max_image_pixels:
                    raise InvalidInput(f"Image is {width}x{height}, above the {self._max_image_pixels} pixel limit")
                oriented = ImageOps.exif_transpose(img)
                rgb = oriented.convert("RGB")
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError) as exc:
            raise InvalidInput("Could not decode image data") from exc

        return np.asarray(rgb, dtype=np.uint8)

    def preprocess_for_classification(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        resized = Image.fromarray(image).resize(self._input_size, Image.Resampling.BILINEAR)
        arr = np.asarray(resized, dtype=np.float32) / 255.0
        arr = (arr - self._mean) / self._std
        # HWC -> NCHW
        tensor: NDArray[np.float32] = np.ascontiguousarray(arr.transpose(2, 0, 1)[np.newaxis, ...], dtype=np.float32)
        return tensor
