"""
Conversion between ImageBuffer / Mask and model tensors.

Handles spatial resizing, channel order, batch dimension and value
normalization so that the rest of the pipeline never deals with a model's
tensor layout directly. All resizing goes through
torch.nn.functional.interpolate on CPU tensors without antialiasing, which
is deterministic for identical inputs.
"""

import logging
from typing import Tuple, Optional, Sequence
import numpy as np
import torch
import torch.nn.functional as F

from ..core.config import ModelSpec
from ..core.data_models import ImageBuffer, Mask
from ..core.error_handling import TensorShapeError, ConfigurationError

logger = logging.getLogger(__name__)

# Rec. 709 luma weights, same as GRAYSCALE_MATRIX
_LUMA = (0.213, 0.715, 0.072)


def _resize(tensor: torch.Tensor, height: int, width: int, mode: str = "bilinear") -> torch.Tensor:
    """Resize a (N, C, H, W) float tensor; no-op when the size already matches."""
    if tensor.shape[-2] == height and tensor.shape[-1] == width:
        return tensor
    if mode == "nearest":
        return F.interpolate(tensor, size=(height, width), mode="nearest")
    if mode == "bilinear":
        return F.interpolate(tensor, size=(height, width), mode="bilinear", align_corners=False)
    raise ConfigurationError(f"Unknown interpolation mode: {mode}")


def _normalize(tensor: torch.Tensor, normalization: str) -> torch.Tensor:
    """Map 0-255 values into the model's input range."""
    if normalization == "zero_one":
        return tensor / 255.0
    if normalization == "minus_one_one":
        return tensor / 127.5 - 1.0
    if normalization == "none":
        return tensor
    raise ConfigurationError(f"Unknown normalization: {normalization}")


def _denormalize(tensor: torch.Tensor, normalization: str) -> torch.Tensor:
    """Map model output values back into 0-255."""
    if normalization == "zero_one":
        return tensor * 255.0
    if normalization == "minus_one_one":
        return (tensor + 1.0) * 127.5
    if normalization == "none":
        return tensor
    raise ConfigurationError(f"Unknown normalization: {normalization}")


def _spatial_dims(shape: Sequence[int], layout: str) -> Tuple[int, int, int]:
    """(channels, height, width) of a 4D shape in the given layout."""
    if len(shape) != 4:
        raise TensorShapeError(f"Expected a 4D tensor shape, got {tuple(shape)}")
    if layout == "NCHW":
        return shape[1], shape[2], shape[3]
    if layout == "NHWC":
        return shape[3], shape[1], shape[2]
    raise ConfigurationError(f"Unknown tensor layout: {layout}")


class TensorCodec:
    """
    Encodes ImageBuffers into model input tensors and decodes model outputs.

    Features:
    - Bilinear resize to the model's spatial size
    - NCHW / NHWC channel layouts
    - zero_one, minus_one_one and raw (none) normalization
    - float32 or uint8 input tensors
    - Soft or thresholded mask decoding
    """

    def __init__(self, device: str = "cpu"):
        """
        Initialize tensor codec.

        Args:
            device: Device the encoded tensors are placed on
        """
        self.device = device

    def _buffer_to_nchw(self, buffer: ImageBuffer, channels: int) -> torch.Tensor:
        pixels = torch.from_numpy(np.array(buffer.pixels, dtype=np.float32))
        tensor = pixels.permute(2, 0, 1).unsqueeze(0)  # (1, 4, H, W)

        if channels == 4:
            return tensor
        if channels == 3:
            return tensor[:, :3]
        if channels == 1:
            weights = torch.tensor(_LUMA, dtype=torch.float32).view(1, 3, 1, 1)
            return (tensor[:, :3] * weights).sum(dim=1, keepdim=True)
        raise TensorShapeError(f"Unsupported input channel count: {channels}")

    def encode(
        self,
        buffer: ImageBuffer,
        target_shape: Sequence[int],
        normalization: str = "zero_one",
        layout: str = "NCHW",
        dtype: str = "float32"
    ) -> torch.Tensor:
        """
        Convert an image buffer into a model input tensor.

        Args:
            buffer: Source image
            target_shape: Declared 4D input shape (batch dimension is forced to 1)
            normalization: zero_one, minus_one_one or none
            layout: NCHW or NHWC
            dtype: float32 or uint8

        Returns:
            Tensor of shape target_shape with batch size 1
        """
        channels, height, width = _spatial_dims(target_shape, layout)
        if target_shape[0] != 1:
            logger.debug(f"Declared batch size {target_shape[0]} overridden to 1")

        tensor = self._buffer_to_nchw(buffer, channels)
        tensor = _resize(tensor, height, width, "bilinear")

        if dtype == "uint8":
            if normalization != "none":
                raise ConfigurationError("uint8 input tensors require normalization 'none'")
            tensor = tensor.round().clamp(0, 255).to(torch.uint8)
        elif dtype == "float32":
            tensor = _normalize(tensor, normalization)
        else:
            raise ConfigurationError(f"Unknown tensor dtype: {dtype}")

        if layout == "NHWC":
            tensor = tensor.permute(0, 2, 3, 1)

        return tensor.contiguous().to(self.device)

    def encode_for(self, buffer: ImageBuffer, spec: ModelSpec) -> torch.Tensor:
        """Encode a buffer using a model's declared contract."""
        return self.encode(
            buffer,
            spec.input_shape,
            normalization=spec.normalization,
            layout=spec.layout,
            dtype=spec.dtype
        )

    def encode_mask(
        self,
        mask: Mask,
        target_shape: Sequence[int],
        layout: str = "NCHW"
    ) -> torch.Tensor:
        """
        Convert a mask into a single-channel 0/1 tensor at the model's resolution.

        Nearest-neighbour resizing keeps the mask hard.
        """
        _, height, width = _spatial_dims(target_shape, layout)
        tensor = torch.from_numpy(np.array(mask.values, dtype=np.float32)).view(
            1, 1, mask.height, mask.width
        )
        tensor = _resize(tensor, height, width, "nearest")
        tensor = (tensor > 0.5).to(torch.float32)
        if layout == "NHWC":
            tensor = tensor.permute(0, 2, 3, 1)
        return tensor.contiguous().to(self.device)

    @staticmethod
    def _single_channel(tensor: torch.Tensor) -> torch.Tensor:
        """Reduce a probability tensor to (1, 1, H, W)."""
        if tensor.dim() == 2:
            return tensor.view(1, 1, *tensor.shape)
        if tensor.dim() == 3 and tensor.shape[0] == 1:
            return tensor.unsqueeze(0)
        if tensor.dim() == 4 and tensor.shape[0] == 1:
            if tensor.shape[1] == 1:
                return tensor
            if tensor.shape[3] == 1:
                return tensor.permute(0, 3, 1, 2)
        raise TensorShapeError(
            f"Expected a single-channel probability tensor, got shape {tuple(tensor.shape)}",
            details={'shape': list(tensor.shape)}
        )

    def decode_mask(
        self,
        tensor: torch.Tensor,
        target_width: int,
        target_height: int,
        threshold: Optional[float] = None,
        interpolation: str = "bilinear"
    ) -> Mask:
        """
        Convert a single-channel probability tensor into a Mask.

        Args:
            tensor: (1, 1, H, W), (1, H, W, 1), (1, H, W) or (H, W) tensor
            target_width: Width of the image the mask applies to
            target_height: Height of the image the mask applies to
            threshold: If given, produce a hard 0/1 mask (> threshold)
            interpolation: bilinear or nearest

        Returns:
            Mask at the target resolution with values in [0, 1]
        """
        probs = self._single_channel(tensor.detach().cpu()).to(torch.float32)
        probs = probs.clamp(0.0, 1.0)
        probs = _resize(probs, target_height, target_width, interpolation)

        values = probs[0, 0].numpy()
        mask = Mask(values)
        if threshold is not None:
            mask = mask.threshold(threshold)
        return mask

    def decode_image(
        self,
        tensor: torch.Tensor,
        normalization: str = "zero_one",
        layout: str = "NCHW",
        target_size: Optional[Tuple[int, int]] = None,
        alpha: Optional[np.ndarray] = None
    ) -> ImageBuffer:
        """
        Convert a generated image tensor back into an ImageBuffer.

        Args:
            tensor: 4D (batch 1) or 3D image tensor with 1, 3 or 4 channels
            normalization: Normalization the model's output uses
            layout: NCHW or NHWC
            target_size: Optional (width, height) to resize to
            alpha: Optional (H, W) uint8 alpha used when the tensor has no alpha channel

        Returns:
            RGBA ImageBuffer with values clamped to [0, 255]
        """
        data = tensor.detach().cpu().to(torch.float32)
        if data.dim() == 3:
            data = data.unsqueeze(0)
        if data.dim() != 4 or data.shape[0] != 1:
            raise TensorShapeError(
                f"Expected a single image tensor, got shape {tuple(tensor.shape)}",
                details={'shape': list(tensor.shape)}
            )
        if layout == "NHWC":
            data = data.permute(0, 3, 1, 2)

        channels = data.shape[1]
        if channels == 1:
            data = data.repeat(1, 3, 1, 1)
        elif channels not in (3, 4):
            raise TensorShapeError(
                f"Expected 1, 3 or 4 channels, got {channels}",
                details={'shape': list(tensor.shape)}
            )

        data = _denormalize(data, normalization)
        if target_size is not None:
            width, height = target_size
            data = _resize(data, height, width, "bilinear")

        data = data.clamp(0.0, 255.0).round().to(torch.uint8)
        pixels = data[0].permute(1, 2, 0).numpy()
        height, width = pixels.shape[:2]

        if pixels.shape[2] == 4:
            return ImageBuffer(pixels)

        if alpha is None:
            alpha_channel = np.full((height, width, 1), 255, dtype=np.uint8)
        else:
            if alpha.shape != (height, width):
                raise TensorShapeError(
                    f"Alpha shape {alpha.shape} does not match image {(height, width)}"
                )
            alpha_channel = alpha.astype(np.uint8)[..., np.newaxis]

        return ImageBuffer(np.concatenate([pixels, alpha_channel], axis=2))

    def decode_for(
        self,
        tensor: torch.Tensor,
        spec: ModelSpec,
        target_size: Optional[Tuple[int, int]] = None,
        alpha: Optional[np.ndarray] = None
    ) -> ImageBuffer:
        """Decode a generated image using a model's declared contract."""
        return self.decode_image(
            tensor,
            normalization=spec.normalization,
            layout=spec.layout,
            target_size=target_size,
            alpha=alpha
        )

    def resize_buffer(self, buffer: ImageBuffer, width: int, height: int) -> ImageBuffer:
        """Deterministic bilinear resize of all four channels."""
        if buffer.width == width and buffer.height == height:
            return buffer
        tensor = self._buffer_to_nchw(buffer, 4)
        tensor = _resize(tensor, height, width, "bilinear")
        tensor = tensor.clamp(0.0, 255.0).round().to(torch.uint8)
        return ImageBuffer(tensor[0].permute(1, 2, 0).numpy())
