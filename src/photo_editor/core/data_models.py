"""
Data models for the photo editing pipeline.

Key concepts:
- ImageBuffer: immutable RGBA8 pixel buffer shared by every stage
- Mask: per-pixel "keep original" weight in [0, 1]
- Rect / Point: pixel geometry used by the compositor
- OperationRequest: a validated operation call from the request boundary
"""

import logging
from enum import Enum
from typing import Tuple, Optional, Dict, Any, Mapping
from dataclasses import dataclass, field
import numpy as np

from .error_handling import InvalidArgumentError, UnknownOperationError

logger = logging.getLogger(__name__)

RGBA = Tuple[int, int, int, int]


@dataclass(frozen=True, eq=False)
class ImageBuffer:
    """
    In-memory RGBA pixel buffer.

    Pixels are a (height, width, 4) uint8 array in RGBA order. The array is
    marked read-only on construction; transforms produce new buffers.
    """
    pixels: np.ndarray

    def __post_init__(self):
        """Validate and freeze pixel data after initialization."""
        pixels = self.pixels
        if not isinstance(pixels, np.ndarray):
            raise ValueError("ImageBuffer pixels must be a numpy array")
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"ImageBuffer pixels must have shape (H, W, 4), got {pixels.shape}")
        if pixels.dtype != np.uint8:
            raise ValueError(f"ImageBuffer pixels must be uint8, got {pixels.dtype}")
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise ValueError("ImageBuffer must have non-zero width and height")

        # Own the memory so no caller keeps a writable alias
        frozen = np.array(pixels, dtype=np.uint8, copy=True, order='C')
        frozen.flags.writeable = False
        object.__setattr__(self, 'pixels', frozen)

        if frozen.size != self.width * self.height * self.channels:
            raise ValueError("Pixel count does not match width * height * channels")

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def channels(self) -> int:
        return self.pixels.shape[2]

    @property
    def stride(self) -> int:
        """Bytes per row."""
        return self.width * self.channels

    @property
    def size(self) -> Tuple[int, int]:
        """(width, height) of the buffer."""
        return (self.width, self.height)

    def rgb(self) -> np.ndarray:
        """Read-only view of the RGB channels."""
        return self.pixels[..., :3]

    def alpha(self) -> np.ndarray:
        """Read-only view of the alpha channel."""
        return self.pixels[..., 3]

    def to_numpy(self) -> np.ndarray:
        """Writable copy of the pixel array."""
        return self.pixels.copy()

    def copy(self) -> 'ImageBuffer':
        return ImageBuffer(self.pixels)

    def equals(self, other: 'ImageBuffer') -> bool:
        """Pixel-exact comparison."""
        return isinstance(other, ImageBuffer) and np.array_equal(self.pixels, other.pixels)

    def get_statistics(self) -> Dict[str, Any]:
        """Basic statistics used for logging."""
        return {
            'width': self.width,
            'height': self.height,
            'mean_rgb': [float(v) for v in self.rgb().reshape(-1, 3).mean(axis=0)],
            'opaque': bool((self.alpha() == 255).all()),
        }

    @classmethod
    def from_rgb(cls, rgb: np.ndarray, alpha: int = 255) -> 'ImageBuffer':
        """Build a buffer from an (H, W, 3) uint8 array with constant alpha."""
        if rgb.ndim != 3 or rgb.shape[2] != 3:
            raise ValueError(f"Expected (H, W, 3) array, got {rgb.shape}")
        a = np.full(rgb.shape[:2] + (1,), alpha, dtype=np.uint8)
        return cls(np.concatenate([rgb.astype(np.uint8), a], axis=2))

    @classmethod
    def filled(cls, width: int, height: int, color: RGBA) -> 'ImageBuffer':
        """Build a buffer filled with a single RGBA color."""
        pixels = np.empty((height, width, 4), dtype=np.uint8)
        pixels[...] = np.asarray(color, dtype=np.uint8)
        return cls(pixels)


@dataclass(frozen=True, eq=False)
class Mask:
    """
    Per-pixel weight map in [0, 1].

    1.0 keeps the overlay, 0.0 keeps the base (see Compositor.blend).
    """
    values: np.ndarray

    def __post_init__(self):
        """Validate, clip and freeze mask values."""
        values = np.asarray(self.values, dtype=np.float32)
        if values.ndim != 2:
            raise ValueError(f"Mask values must be 2D, got {values.ndim}D")
        values = np.clip(values, 0.0, 1.0)
        values = np.nan_to_num(values, nan=0.0)
        values.flags.writeable = False
        object.__setattr__(self, 'values', values)

    @property
    def width(self) -> int:
        return self.values.shape[1]

    @property
    def height(self) -> int:
        return self.values.shape[0]

    def matches(self, buffer: ImageBuffer) -> bool:
        """Whether the mask has the same resolution as the buffer."""
        return self.width == buffer.width and self.height == buffer.height

    def threshold(self, value: float) -> 'Mask':
        """Hard 0/1 mask: 1 where the weight is strictly above `value`."""
        return Mask((self.values > value).astype(np.float32))

    def invert(self) -> 'Mask':
        return Mask(1.0 - self.values)

    @classmethod
    def zeros(cls, width: int, height: int) -> 'Mask':
        return cls(np.zeros((height, width), dtype=np.float32))

    @classmethod
    def full(cls, width: int, height: int, value: float = 1.0) -> 'Mask':
        return cls(np.full((height, width), value, dtype=np.float32))

    @classmethod
    def from_rect(cls, width: int, height: int, rect: 'Rect') -> 'Mask':
        """Hard mask that is 1 inside the (clamped) rectangle."""
        values = np.zeros((height, width), dtype=np.float32)
        clamped = rect.clamp(width, height)
        if not clamped.is_empty:
            values[clamped.top:clamped.bottom, clamped.left:clamped.right] = 1.0
        return cls(values)


@dataclass(frozen=True)
class Point:
    x: int
    y: int


@dataclass(frozen=True)
class Rect:
    """Half-open pixel rectangle [left, right) x [top, bottom)."""
    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return max(0, self.right - self.left)

    @property
    def height(self) -> int:
        return max(0, self.bottom - self.top)

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def is_empty(self) -> bool:
        return self.area == 0

    def intersects(self, width: int, height: int) -> bool:
        """Whether any part of the rectangle lies inside a width x height buffer."""
        return not self.clamp(width, height).is_empty

    def clamp(self, width: int, height: int) -> 'Rect':
        """Clip the rectangle to [0, width) x [0, height)."""
        left = min(max(self.left, 0), width)
        right = min(max(self.right, 0), width)
        top = min(max(self.top, 0), height)
        bottom = min(max(self.bottom, 0), height)
        return Rect(left, top, max(left, right), max(top, bottom))

    @classmethod
    def from_xywh(cls, x: int, y: int, w: int, h: int) -> 'Rect':
        return cls(x, y, x + w, y + h)

    @classmethod
    def around(cls, center: Point, radius: int) -> 'Rect':
        """Square of side 2 * radius centred on a point."""
        return cls(center.x - radius, center.y - radius, center.x + radius, center.y + radius)


class Operation(Enum):
    """Operations exposed at the request boundary, keyed by wire name."""
    REMOVE_BACKGROUND = "removeBackground"
    APPLY_FILTER = "applyFilter"
    ADD_OBJECT = "addObject"
    REMOVE_OBJECT = "removeObject"
    INITIALIZE_MODELS = "initializeModels"

    @classmethod
    def from_name(cls, name: str) -> 'Operation':
        for op in cls:
            if op.value == name:
                return op
        raise UnknownOperationError(
            f"Unknown operation: {name}",
            details={'operation': name}
        )

    @property
    def requires_image(self) -> bool:
        return self is not Operation.INITIALIZE_MODELS


@dataclass
class OperationRequest:
    """A single operation call: name, source image and string parameters."""
    operation: str
    image_path: Optional[str] = None
    params: Dict[str, str] = field(default_factory=dict)

    def validate(self) -> Operation:
        """
        Validate the request before any I/O.

        Returns:
            The resolved Operation

        Raises:
            InvalidArgumentError: If required fields are missing or malformed
            UnknownOperationError: If the operation name is not recognised
        """
        if not isinstance(self.operation, str) or not self.operation:
            raise InvalidArgumentError("Operation name is required.")

        op = Operation.from_name(self.operation)

        if op.requires_image:
            if not isinstance(self.image_path, str) or not self.image_path.strip():
                raise InvalidArgumentError(
                    "Image path is required.",
                    details={'operation': self.operation}
                )

        for key, value in self.params.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise InvalidArgumentError(
                    f"Parameter {key!r} must be a string",
                    details={'operation': self.operation, 'param': str(key)}
                )

        return op

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        """Read an integer parameter."""
        raw = self.params.get(key)
        if raw is None or raw == "":
            return default
        try:
            return int(float(raw))
        except (ValueError, OverflowError):
            raise InvalidArgumentError(
                f"Parameter {key!r} must be numeric, got {raw!r}",
                details={'operation': self.operation, 'param': key}
            )

    def get_float(self, key: str, default: Optional[float] = None) -> Optional[float]:
        """Read a float parameter."""
        raw = self.params.get(key)
        if raw is None or raw == "":
            return default
        try:
            return float(raw)
        except ValueError:
            raise InvalidArgumentError(
                f"Parameter {key!r} must be numeric, got {raw!r}",
                details={'operation': self.operation, 'param': key}
            )

    @classmethod
    def from_call(cls, method: str, arguments: Optional[Mapping[str, Any]]) -> 'OperationRequest':
        """
        Build a request from a method-channel call.

        `imagePath` becomes the image path; every other argument becomes a
        parameter. Non-string values are kept so validate() can reject them,
        except numbers and booleans which are stringified.
        """
        arguments = dict(arguments or {})
        image_path = arguments.pop('imagePath', None)
        params = {}
        for key, value in arguments.items():
            if value is None:
                continue
            if isinstance(value, (bool, int, float)):
                value = str(value)
            params[key] = value
        return cls(operation=method, image_path=image_path, params=params)
