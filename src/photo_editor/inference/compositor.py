"""
Pixel compositing for the photo editing pipeline.

Every operation is a pure buffer-to-buffer function: inputs are never
modified and a new ImageBuffer is returned. Geometry that falls entirely
outside the buffer is not an error; the base buffer is returned as-is
(same object) and a warning is logged, so callers can detect the no-op
with an identity check.
"""

import logging
from typing import Tuple
import numpy as np

from ..core.data_models import ImageBuffer, Mask, Rect, Point, RGBA
from ..core.error_handling import GeometryError

logger = logging.getLogger(__name__)

# 4x5 color matrices: rows R, G, B, A; columns R, G, B, A, offset (0-255 units)
GRAYSCALE_MATRIX = np.array([
    [0.213, 0.715, 0.072, 0.0, 0.0],
    [0.213, 0.715, 0.072, 0.0, 0.0],
    [0.213, 0.715, 0.072, 0.0, 0.0],
    [0.0, 0.0, 0.0, 1.0, 0.0],
], dtype=np.float32)

INVERT_MATRIX = np.array([
    [-1.0, 0.0, 0.0, 0.0, 255.0],
    [0.0, -1.0, 0.0, 0.0, 255.0],
    [0.0, 0.0, -1.0, 0.0, 255.0],
    [0.0, 0.0, 0.0, 1.0, 0.0],
], dtype=np.float32)

# Warm tint used when no style transfer model is available
POPART_MATRIX = np.array([
    [1.0, 0.0, 0.0, 0.0, 50.0],
    [0.0, 1.0, 0.0, 0.0, -50.0],
    [0.0, 0.0, 1.0, 0.0, -50.0],
    [0.0, 0.0, 0.0, 1.0, 0.0],
], dtype=np.float32)


def _to_uint8(values: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


class Compositor:
    """
    Applies masks, patches, flat fills and color transforms to ImageBuffers.

    Features:
    - Convex per-pixel blending with a soft mask
    - Flat color region fill with opacity
    - Filled circular markers
    - 4x5 color matrix transforms on RGB
    - Bounds clamping with no-op on fully out-of-bounds geometry
    """

    def blend(self, base: ImageBuffer, mask: Mask, overlay: ImageBuffer) -> ImageBuffer:
        """
        Blend overlay onto base: result = overlay * mask + base * (1 - mask).

        All four channels are blended, so the result always lies between
        base and overlay for every channel.

        Raises:
            GeometryError: If base, mask and overlay sizes differ
        """
        if overlay.size != base.size:
            raise GeometryError(
                f"Overlay size {overlay.size} does not match base {base.size}"
            )
        if not mask.matches(base):
            raise GeometryError(
                f"Mask size {(mask.width, mask.height)} does not match base {base.size}"
            )

        weights = mask.values[..., np.newaxis]
        result = (
            overlay.pixels.astype(np.float32) * weights
            + base.pixels.astype(np.float32) * (1.0 - weights)
        )
        return ImageBuffer(_to_uint8(result))

    def paint_region(
        self,
        base: ImageBuffer,
        region: Rect,
        color: RGBA,
        opacity: float = 1.0
    ) -> ImageBuffer:
        """
        Fill a rectangle with a flat color at the given opacity.

        The region is clamped to the buffer. A region with zero area is a
        no-op; a region entirely outside the buffer is a no-op with a warning.
        """
        if region.is_empty or opacity <= 0.0:
            return base

        clamped = region.clamp(base.width, base.height)
        if clamped.is_empty:
            logger.warning(
                f"Region {region} lies outside {base.width}x{base.height} buffer; skipped"
            )
            return base

        opacity = min(opacity, 1.0)
        pixels = base.to_numpy()
        target = pixels[clamped.top:clamped.bottom, clamped.left:clamped.right]
        fill = np.asarray(color, dtype=np.float32)

        if opacity >= 1.0:
            target[...] = fill.astype(np.uint8)
        else:
            target[...] = _to_uint8(fill * opacity + target.astype(np.float32) * (1.0 - opacity))

        return ImageBuffer(pixels)

    def paint_marker(
        self,
        base: ImageBuffer,
        center: Point,
        radius: int,
        color: RGBA
    ) -> ImageBuffer:
        """
        Draw a filled circle.

        The disc is clipped to the buffer, so a center near or past an edge
        still leaves the visible part of the marker. A disc lying entirely
        outside the buffer, or a non-positive radius, is a no-op.
        """
        if radius <= 0:
            return base

        cx, cy = int(center.x), int(center.y)
        bounds = Rect(cx - radius, cy - radius, cx + radius + 1, cy + radius + 1)
        box = bounds.clamp(base.width, base.height)
        if box.is_empty:
            logger.warning(
                f"Marker at ({cx}, {cy}) r={radius} lies outside "
                f"{base.width}x{base.height} buffer; skipped"
            )
            return base

        ys, xs = np.ogrid[box.top:box.bottom, box.left:box.right]
        inside = (xs - cx) ** 2 + (ys - cy) ** 2 <= radius * radius
        if not inside.any():
            logger.warning(f"Marker at ({cx}, {cy}) r={radius} does not cover any pixel; skipped")
            return base

        pixels = base.to_numpy()
        window = pixels[box.top:box.bottom, box.left:box.right]
        window[inside] = np.asarray(color, dtype=np.uint8)
        return ImageBuffer(pixels)

    def apply_color_matrix(self, base: ImageBuffer, matrix: np.ndarray) -> ImageBuffer:
        """
        Apply a 4x5 color matrix to the RGB channels.

        Alpha is copied through unchanged regardless of the matrix's alpha row.
        """
        matrix = np.asarray(matrix, dtype=np.float32)
        if matrix.shape != (4, 5):
            raise GeometryError(f"Color matrix must be 4x5, got {matrix.shape}")

        rgba = base.pixels.astype(np.float32)
        rgb = rgba @ matrix[:3, :4].T + matrix[:3, 4]

        pixels = np.empty_like(base.pixels)
        pixels[..., :3] = _to_uint8(rgb)
        pixels[..., 3] = base.pixels[..., 3]
        return ImageBuffer(pixels)

    def fill_background(self, base: ImageBuffer, color: RGBA) -> ImageBuffer:
        """Solid layer the size of base, used as a blend overlay."""
        return ImageBuffer.filled(base.width, base.height, color)

    def crop(self, base: ImageBuffer, region: Rect) -> ImageBuffer:
        """
        Copy of the (clamped) region.

        Raises:
            GeometryError: If the region does not intersect the buffer
        """
        clamped = region.clamp(base.width, base.height)
        if clamped.is_empty:
            raise GeometryError(f"Region {region} does not intersect the buffer")
        return ImageBuffer(base.pixels[clamped.top:clamped.bottom, clamped.left:clamped.right])

    @staticmethod
    def changed_region(before: ImageBuffer, after: ImageBuffer) -> Tuple[int, int, int, int]:
        """Bounding box (left, top, right, bottom) of differing pixels, or all zeros."""
        diff = np.any(before.pixels != after.pixels, axis=2)
        if not diff.any():
            return (0, 0, 0, 0)
        rows = np.where(diff.any(axis=1))[0]
        cols = np.where(diff.any(axis=0))[0]
        return (int(cols[0]), int(rows[0]), int(cols[-1]) + 1, int(rows[-1]) + 1)
