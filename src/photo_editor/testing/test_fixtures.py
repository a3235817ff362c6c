"""
Test fixtures and utilities for pipeline testing.

This module provides reusable fixtures: temporary directories, synthetic
source images on disk, and small scripted TorchScript models with known
behavior saved under the asset names the pipeline expects.
"""

import logging
import tempfile
import shutil
import struct
import zlib
from pathlib import Path
from typing import Dict, Iterable, Optional

import torch
import torch.nn as nn

from .synthetic_images import SyntheticImageGenerator
from ..core.config import PipelineConfig, ModelSpec, SEGMENTATION, STYLE_TRANSFER, INPAINTING
from ..core.data_models import ImageBuffer, RGBA

logger = logging.getLogger(__name__)

# Model resolution used by fixture configs; small so tests stay fast
FIXTURE_MODEL_SIZE = 64


class IdentityModel(nn.Module):
    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return x


class ChannelMaskModel(nn.Module):
    """Segmentation stand-in: the chosen input channel is the foreground probability."""

    def __init__(self, channel: int = 0):
        super().__init__()
        self.channel = channel

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return x[:, self.channel:self.channel + 1]


class InvertStyleModel(nn.Module):
    """Style transfer stand-in for zero_one inputs: 1 - x."""

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return 1.0 - x


class FillInpaintingModel(nn.Module):
    """Inpainting stand-in: masked pixels become a constant value."""

    def __init__(self, fill: float = 1.0):
        super().__init__()
        self.fill = fill

    def forward(self, image: torch.Tensor, mask: torch.Tensor) -> torch.Tensor:
        return image * (1.0 - mask) + mask * self.fill


class TestDataFixtures:
    """
    Provides reusable test fixtures for pipeline testing.

    Features:
    - Temporary file management
    - Synthetic PNG/JPEG source images
    - Scripted TorchScript model assets
    - Corrupt asset files for failure paths
    - Configuration fixtures
    """

    __test__ = False

    def __init__(self, temp_dir: Optional[str] = None):
        """
        Initialize test fixtures.

        Args:
            temp_dir: Optional temporary directory (creates one if None)
        """
        if temp_dir is None:
            self.temp_dir = tempfile.mkdtemp()
            self._cleanup_temp_dir = True
        else:
            self.temp_dir = temp_dir
            self._cleanup_temp_dir = False

        self.temp_path = Path(self.temp_dir)
        self.temp_path.mkdir(parents=True, exist_ok=True)

        self.image_generator = SyntheticImageGenerator(random_seed=42)

        logger.info(f"TestDataFixtures initialized with temp_dir: {self.temp_dir}")

    def cleanup(self):
        """Clean up temporary files and directories."""
        if self._cleanup_temp_dir and Path(self.temp_dir).exists():
            shutil.rmtree(self.temp_dir)
            logger.info("Cleaned up temporary test directory")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit with cleanup."""
        self.cleanup()

    @property
    def asset_dir(self) -> Path:
        return self.temp_path / "models"

    @property
    def output_dir(self) -> Path:
        return self.temp_path / "processed"

    def get_model_specs(self, size: int = FIXTURE_MODEL_SIZE) -> Dict[str, ModelSpec]:
        """Contracts matching the scripted models, at a small resolution."""
        return {
            SEGMENTATION: ModelSpec(
                name=SEGMENTATION,
                asset_name="segmentation_model",
                input_shape=(1, 3, size, size),
                output_shape=(1, 1, size, size),
                normalization="zero_one",
            ),
            STYLE_TRANSFER: ModelSpec(
                name=STYLE_TRANSFER,
                asset_name="style_transfer_model",
                input_shape=(1, 3, size, size),
                output_shape=(1, 3, size, size),
                normalization="zero_one",
            ),
            INPAINTING: ModelSpec(
                name=INPAINTING,
                asset_name="inpainting_model",
                input_shape=(1, 3, size, size),
                output_shape=(1, 3, size, size),
                normalization="minus_one_one",
                mask_input=True,
            ),
        }

    def get_pipeline_config(self, **overrides) -> PipelineConfig:
        """
        Pipeline configuration rooted in the temporary directory.

        Args:
            **overrides: PipelineConfig fields to replace

        Returns:
            PipelineConfig with seeded placement and fixture model specs
        """
        values = {
            'asset_dir': str(self.asset_dir),
            'output_dir': str(self.output_dir),
            'device': 'cpu',
            'models': self.get_model_specs(),
            'random_seed': 42,
        }
        values.update(overrides)
        return PipelineConfig(**values)

    @staticmethod
    def create_mock_model(name: str) -> nn.Module:
        """Scripted stand-in for a declared model name."""
        if name == SEGMENTATION:
            module = ChannelMaskModel(channel=0)
        elif name == STYLE_TRANSFER:
            module = InvertStyleModel()
        elif name == INPAINTING:
            module = FillInpaintingModel(fill=1.0)
        else:
            module = IdentityModel()
        return torch.jit.script(module.eval())

    def save_mock_models(
        self,
        config: PipelineConfig,
        names: Optional[Iterable[str]] = None
    ) -> Dict[str, str]:
        """
        Save scripted models where the config expects their assets.

        Args:
            config: Pipeline configuration (asset_dir and model_extension are used)
            names: Models to write (defaults to every declared model)

        Returns:
            Mapping of model name to asset path
        """
        names = list(names) if names is not None else config.model_names()
        Path(config.asset_dir).mkdir(parents=True, exist_ok=True)

        paths = {}
        for name in names:
            path = config.asset_path(name)
            self.create_mock_model(name).save(str(path))
            paths[name] = str(path)
            logger.debug(f"Saved mock model {name} to {path}")
        return paths

    def save_corrupt_model(self, config: PipelineConfig, name: str) -> str:
        """Write a file under a model's asset name that no runtime can load."""
        Path(config.asset_dir).mkdir(parents=True, exist_ok=True)
        path = config.asset_path(name)
        path.write_bytes(b"this is not a torchscript archive")
        return str(path)

    def save_image(
        self,
        buffer: ImageBuffer,
        filename: str,
        subdirectory: str = ""
    ) -> str:
        """
        Save a buffer as PNG inside the temporary directory.

        Returns:
            Path to saved file
        """
        save_dir = self.temp_path / subdirectory if subdirectory else self.temp_path
        save_dir.mkdir(parents=True, exist_ok=True)
        return self.image_generator.save(buffer, save_dir / f"{filename}.png")

    def create_solid_image(
        self,
        width: int = 100,
        height: int = 100,
        color: RGBA = (255, 0, 0, 255),
        filename: str = "solid"
    ) -> str:
        return self.save_image(self.image_generator.solid(width, height, color), filename)

    def create_gradient_image(self, width: int = 80, height: int = 60, filename: str = "gradient") -> str:
        return self.save_image(self.image_generator.gradient(width, height), filename)

    def create_jpeg_image(self, width: int = 64, height: int = 48, filename: str = "photo") -> str:
        buffer = self.image_generator.gradient(width, height)
        return self.image_generator.save_jpeg(buffer, self.temp_path / f"{filename}.jpg")

    def create_corrupt_image(self, filename: str = "corrupt.png") -> str:
        path = self.temp_path / filename
        path.write_bytes(b"plain text pretending to be an image")
        return str(path)

    def create_oversized_png(self, width: int = 20000, height: int = 20000,
                             filename: str = "oversized.png") -> str:
        """PNG whose header declares width x height but carries no pixel data."""
        def chunk(kind: bytes, data: bytes) -> bytes:
            crc = zlib.crc32(kind + data) & 0xFFFFFFFF
            return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", crc)

        ihdr = struct.pack(">IIBBBBB", width, height, 8, 6, 0, 0, 0)
        path = self.temp_path / filename
        path.write_bytes(
            b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IDAT", b"") + chunk(b"IEND", b"")
        )
        return str(path)

    def get_temp_file_path(self, filename: str, subdirectory: str = "") -> str:
        """Path inside the temporary directory (the file is not created)."""
        if subdirectory:
            target = self.temp_path / subdirectory
            target.mkdir(parents=True, exist_ok=True)
            return str(target / filename)
        return str(self.temp_path / filename)
