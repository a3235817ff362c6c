"""
Image file handling for the photo editing pipeline.

Decoding and encoding are delegated to Pillow; this module only converts
between files and ImageBuffer and maps codec failures to DecodeFailedError.
"""

import logging
from typing import Dict, Any, Union, BinaryIO
from pathlib import Path
import numpy as np
from PIL import Image as PILImage, UnidentifiedImageError

from .data_models import ImageBuffer
from .error_handling import DecodeFailedError

logger = logging.getLogger(__name__)


class ImageFileHandler:
    """
    Loads source images into RGBA buffers and writes buffers as PNG.

    Any mode Pillow can decode (L, LA, P, RGB, RGBA, CMYK...) is converted to
    RGBA on load. PNG output is lossless so repeated edits do not accumulate
    compression artifacts.
    """

    def __init__(self, max_pixels: int = 64 * 1024 * 1024):
        """
        Initialize the image file handler.

        Args:
            max_pixels: Largest width * height accepted on load
        """
        self.max_pixels = max_pixels

    def load(self, file_path: Union[str, Path]) -> ImageBuffer:
        """
        Decode an image file into an ImageBuffer.

        Args:
            file_path: Path to a PNG/JPEG (or other Pillow-readable) image

        Returns:
            RGBA ImageBuffer

        Raises:
            DecodeFailedError: If the file is missing, unreadable or not an image
        """
        file_path = Path(file_path)

        if not file_path.is_file():
            raise DecodeFailedError(
                f"Image not found or unreadable: {file_path}",
                details={'path': str(file_path)}
            )

        try:
            with PILImage.open(file_path) as img:
                width, height = img.size
                if width * height > self.max_pixels:
                    raise DecodeFailedError(
                        f"Image too large: {width}x{height}",
                        details={'path': str(file_path), 'size': [width, height]}
                    )
                pixels = np.asarray(img.convert("RGBA"), dtype=np.uint8)
        except (UnidentifiedImageError, PILImage.DecompressionBombError, OSError, ValueError) as e:
            raise DecodeFailedError(
                f"Failed to decode image {file_path}: {e}",
                details={'path': str(file_path)}
            ) from e

        buffer = ImageBuffer(pixels)
        logger.debug(f"Decoded {file_path.name}: {buffer.width}x{buffer.height}")
        return buffer

    def get_image_info(self, file_path: Union[str, Path]) -> Dict[str, Any]:
        """
        Read image header information without decoding pixel data.

        Raises:
            DecodeFailedError: If the file is not a readable image
        """
        file_path = Path(file_path)
        try:
            with PILImage.open(file_path) as img:
                return {
                    'width': img.size[0],
                    'height': img.size[1],
                    'mode': img.mode,
                    'format': img.format,
                    'file_size_mb': file_path.stat().st_size / (1024 ** 2),
                }
        except (UnidentifiedImageError, OSError) as e:
            raise DecodeFailedError(
                f"Failed to read image info from {file_path}: {e}",
                details={'path': str(file_path)}
            ) from e

    @staticmethod
    def to_pil(buffer: ImageBuffer) -> PILImage.Image:
        return PILImage.fromarray(np.ascontiguousarray(buffer.pixels))

    def encode_png(self, buffer: ImageBuffer, stream: BinaryIO) -> None:
        """Write a buffer as lossless PNG to an open binary stream."""
        self.to_pil(buffer).save(stream, format="PNG")

    def save_png(self, buffer: ImageBuffer, file_path: Union[str, Path]) -> None:
        """Write a buffer as lossless PNG to a path."""
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'wb') as f:
            self.encode_png(buffer, f)
        logger.debug(f"Wrote PNG {file_path}")
