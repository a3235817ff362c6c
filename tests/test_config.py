"""
Unit tests for pipeline configuration and result objects.
"""

import pytest
import tempfile
import shutil
import json
from pathlib import Path

from photo_editor.core.config import (
    PipelineConfig, ModelSpec, OperationResult, default_model_specs,
    SEGMENTATION, STYLE_TRANSFER, INPAINTING
)
from photo_editor.core.error_handling import ConfigurationError


class TestModelSpec:
    """Test ModelSpec validation."""

    def test_default_specs(self):
        specs = default_model_specs()

        assert set(specs) == {SEGMENTATION, STYLE_TRANSFER, INPAINTING}
        assert specs[SEGMENTATION].spatial_size == (256, 256)
        assert specs[INPAINTING].mask_input is True
        assert specs[INPAINTING].normalization == "minus_one_one"

    def test_nhwc_dimensions(self):
        spec = ModelSpec("m", "m", input_shape=[1, 32, 48, 3], layout="NHWC")

        assert spec.input_shape == (1, 32, 48, 3)
        assert spec.spatial_size == (32, 48)
        assert spec.input_channels == 3

    @pytest.mark.parametrize("kwargs", [
        {'layout': "CHW"},
        {'dtype': "float16"},
        {'normalization': "imagenet"},
        {'input_shape': (3, 256, 256)},
    ])
    def test_invalid_spec(self, kwargs):
        with pytest.raises(ConfigurationError):
            ModelSpec("m", "m", **kwargs)


class TestPipelineConfig:
    """Test PipelineConfig functionality."""

    def setup_method(self):
        """Setup test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Cleanup test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_defaults(self):
        config = PipelineConfig()

        assert config.background_color == (0, 0, 0, 0)
        assert config.marker_radius == 50
        assert config.popart_fallback is False
        assert config.model_names() == [SEGMENTATION, STYLE_TRANSFER, INPAINTING]

    def test_asset_path(self):
        config = PipelineConfig(asset_dir="/models", model_extension=".ptl")

        assert config.asset_path(SEGMENTATION) == Path("/models/segmentation_model.ptl")
        assert config.asset_path("unknown") is None

    @pytest.mark.parametrize("kwargs", [
        {'background_color': (0, 0, 0)},
        {'marker_color': (256, 0, 0, 255)},
        {'mask_resize': "bicubic"},
        {'mask_threshold': 1.5},
        {'fallback_opacity': -0.1},
        {'fallback_region_min': 100, 'fallback_region_max': 100},
    ])
    def test_invalid_config(self, kwargs):
        with pytest.raises(ConfigurationError):
            PipelineConfig(**kwargs)

    def test_save_and_load(self):
        """Test JSON round trip of a customised configuration."""
        config = PipelineConfig(
            asset_dir="assets",
            background_color=(255, 255, 255, 255),
            popart_fallback=True,
            random_seed=7
        )
        config.models[SEGMENTATION] = ModelSpec(
            SEGMENTATION, "seg", input_shape=(1, 3, 128, 128), output_shape=(1, 1, 128, 128)
        )
        config_file = Path(self.temp_dir) / "nested" / "config.json"
        config.save(str(config_file))

        loaded = PipelineConfig.load(str(config_file))

        assert loaded.background_color == (255, 255, 255, 255)
        assert loaded.popart_fallback is True
        assert loaded.random_seed == 7
        assert loaded.models[SEGMENTATION].asset_name == "seg"
        assert loaded.models[SEGMENTATION].input_shape == (1, 3, 128, 128)
        assert loaded.models[STYLE_TRANSFER].asset_name == "style_transfer_model"

    def test_unknown_keys_are_ignored(self):
        config = PipelineConfig.from_dict({'output_dir': "out", 'patch_size': [256, 256]})
        assert config.output_dir == "out"

    def test_load_missing_file(self):
        with pytest.raises(ConfigurationError):
            PipelineConfig.load(str(Path(self.temp_dir) / "missing.json"))

    def test_load_malformed_file(self):
        config_file = Path(self.temp_dir) / "bad.json"
        config_file.write_text("{not json")

        with pytest.raises(ConfigurationError):
            PipelineConfig.load(str(config_file))


class TestOperationResult:
    """Test OperationResult functionality."""

    def test_result_defaults(self):
        result = OperationResult(success=True, operation="applyFilter")

        assert result.warnings == []
        assert result.metadata == {}
        assert result.is_successful()
        assert result.fallback_used is False

    def test_add_warning(self):
        result = OperationResult(success=True, operation="addObject")
        result.add_warning("clamped")

        assert result.warnings == ["clamped"]

    def test_failed_result(self):
        result = OperationResult(
            success=False, operation="removeBackground",
            error_code="MODEL_NOT_FOUND", error_message="missing"
        )
        assert not result.is_successful()

    def test_to_response(self):
        result = OperationResult(
            success=True, operation="removeObject", output_path="/out/p.png",
            metadata={'fallback_used': True}
        )
        response = result.to_response()

        assert response['outputPath'] == "/out/p.png"
        assert response['metadata'] == {'fallback_used': True}
        assert result.fallback_used is True
        json.dumps(response)
