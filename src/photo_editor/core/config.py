"""
Configuration classes for the photo editing pipeline.
"""

import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Tuple, Optional, Dict, Any, List

from .error_handling import ConfigurationError

logger = logging.getLogger(__name__)

NORMALIZATIONS = ("zero_one", "minus_one_one", "none")
LAYOUTS = ("NCHW", "NHWC")
DTYPES = ("float32", "uint8")

SEGMENTATION = "segmentation"
STYLE_TRANSFER = "styleTransfer"
INPAINTING = "inpainting"


@dataclass
class ModelSpec:
    """Inference contract of one named model."""

    name: str
    asset_name: str

    # Batch-first shapes in the model's own layout
    input_shape: Tuple[int, ...] = (1, 3, 256, 256)
    output_shape: Tuple[int, ...] = (1, 1, 256, 256)

    layout: str = "NCHW"  # NCHW, NHWC
    dtype: str = "float32"  # float32, uint8
    normalization: str = "zero_one"  # zero_one, minus_one_one, none

    # Inpainting models take (image, mask) instead of a single image tensor
    mask_input: bool = False

    def __post_init__(self):
        """Validate declared contract."""
        self.input_shape = tuple(int(d) for d in self.input_shape)
        self.output_shape = tuple(int(d) for d in self.output_shape)

        if self.layout not in LAYOUTS:
            raise ConfigurationError(f"Unknown tensor layout for {self.name}: {self.layout}")
        if self.dtype not in DTYPES:
            raise ConfigurationError(f"Unknown tensor dtype for {self.name}: {self.dtype}")
        if self.normalization not in NORMALIZATIONS:
            raise ConfigurationError(
                f"Unknown normalization for {self.name}: {self.normalization}"
            )
        if len(self.input_shape) != 4:
            raise ConfigurationError(
                f"Input shape for {self.name} must be 4D, got {self.input_shape}"
            )

    @property
    def spatial_size(self) -> Tuple[int, int]:
        """(height, width) the model expects."""
        if self.layout == "NCHW":
            return self.input_shape[2], self.input_shape[3]
        return self.input_shape[1], self.input_shape[2]

    @property
    def input_channels(self) -> int:
        if self.layout == "NCHW":
            return self.input_shape[1]
        return self.input_shape[3]


def default_model_specs() -> Dict[str, ModelSpec]:
    """Declared contracts for the three bundled models."""
    return {
        SEGMENTATION: ModelSpec(
            name=SEGMENTATION,
            asset_name="segmentation_model",
            input_shape=(1, 3, 256, 256),
            output_shape=(1, 1, 256, 256),
            normalization="zero_one",
        ),
        STYLE_TRANSFER: ModelSpec(
            name=STYLE_TRANSFER,
            asset_name="style_transfer_model",
            input_shape=(1, 3, 384, 384),
            output_shape=(1, 3, 384, 384),
            normalization="zero_one",
        ),
        INPAINTING: ModelSpec(
            name=INPAINTING,
            asset_name="inpainting_model",
            input_shape=(1, 3, 512, 512),
            output_shape=(1, 3, 512, 512),
            normalization="minus_one_one",
            mask_input=True,
        ),
    }


@dataclass
class PipelineConfig:
    """Configuration for the operation pipeline."""

    # Locations
    asset_dir: str = "assets/models"
    output_dir: str = "processed"
    model_extension: str = ".pt"

    # Inference
    device: str = "cpu"  # auto, cpu, cuda, mps
    models: Dict[str, ModelSpec] = field(default_factory=default_model_specs)

    # Background removal
    background_color: Tuple[int, int, int, int] = (0, 0, 0, 0)
    mask_threshold: Optional[float] = None  # None keeps soft weights
    mask_resize: str = "bilinear"  # bilinear, nearest

    # Object insertion / removal fallback
    marker_radius: int = 50
    marker_color: Tuple[int, int, int, int] = (255, 0, 0, 255)
    fallback_region_color: Tuple[int, int, int, int] = (0, 0, 0, 255)
    fallback_region_min: int = 50
    fallback_region_max: int = 200
    fallback_opacity: float = 1.0
    random_seed: Optional[int] = None

    # Filters
    popart_fallback: bool = False

    def __post_init__(self):
        """Normalise fields loaded from JSON and validate ranges."""
        self.background_color = tuple(self.background_color)
        self.marker_color = tuple(self.marker_color)
        self.fallback_region_color = tuple(self.fallback_region_color)

        for name in ("background_color", "marker_color", "fallback_region_color"):
            color = getattr(self, name)
            if len(color) != 4 or any(not 0 <= c <= 255 for c in color):
                raise ConfigurationError(f"{name} must be four values in [0, 255], got {color}")

        if self.mask_resize not in ("bilinear", "nearest"):
            raise ConfigurationError(f"Unknown mask_resize: {self.mask_resize}")
        if self.mask_threshold is not None and not 0.0 <= self.mask_threshold <= 1.0:
            raise ConfigurationError("mask_threshold must lie in [0, 1]")
        if not 0.0 <= self.fallback_opacity <= 1.0:
            raise ConfigurationError("fallback_opacity must lie in [0, 1]")
        if self.fallback_region_min <= 0 or self.fallback_region_max <= self.fallback_region_min:
            raise ConfigurationError("fallback region size range is empty")

    def model_names(self) -> List[str]:
        return list(self.models.keys())

    def get_model_spec(self, name: str) -> Optional[ModelSpec]:
        return self.models.get(name)

    def asset_path(self, name: str) -> Optional[Path]:
        """Path of a declared model's asset file."""
        spec = self.models.get(name)
        if spec is None:
            return None
        return Path(self.asset_dir) / f"{spec.asset_name}{self.model_extension}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['models'] = {name: asdict(spec) for name, spec in self.models.items()}
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PipelineConfig':
        data = dict(data)
        models = data.pop('models', None)
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {sorted(unknown)}")
            for key in unknown:
                data.pop(key)

        config = cls(**data)
        if models is not None:
            specs = default_model_specs()
            for name, spec_data in models.items():
                spec_data = dict(spec_data)
                spec_data.setdefault('name', name)
                specs[name] = ModelSpec(**spec_data)
            config.models = specs
        return config

    def save(self, config_file: str) -> None:
        """Save configuration to a JSON file."""
        path = Path(config_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Saved configuration to {config_file}")

    @classmethod
    def load(cls, config_file: str) -> 'PipelineConfig':
        """Load configuration from a JSON file."""
        try:
            with open(config_file, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Failed to load configuration from {config_file}: {e}"
            ) from e
        logger.info(f"Loaded configuration from {config_file}")
        return cls.from_dict(data)


@dataclass
class OperationResult:
    """Outcome of one dispatched operation."""

    success: bool
    operation: str
    processing_time: float = 0.0

    output_path: Optional[str] = None

    # Error handling
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    warnings: List[str] = None

    # e.g. fallback_used, model_used, filter_type, model_status
    metadata: Dict[str, Any] = None
    state_history: List[str] = None

    def __post_init__(self):
        """Initialize default values for mutable fields."""
        if self.warnings is None:
            self.warnings = []
        if self.metadata is None:
            self.metadata = {}
        if self.state_history is None:
            self.state_history = []

    def add_warning(self, message: str) -> None:
        """Add a warning message to the result."""
        self.warnings.append(message)

    def is_successful(self) -> bool:
        return self.success and self.error_code is None

    @property
    def fallback_used(self) -> bool:
        return bool(self.metadata.get('fallback_used', False))

    def to_response(self) -> Dict[str, Any]:
        """JSON-friendly view for the request boundary."""
        return {
            'success': self.success,
            'operation': self.operation,
            'outputPath': self.output_path,
            'code': self.error_code,
            'message': self.error_message,
            'warnings': list(self.warnings),
            'metadata': self.metadata,
            'processingTime': self.processing_time,
        }
