"""
Testing utilities for the photo editor.

This module provides synthetic image generation, scripted TorchScript
models and fixtures for exercising the pipeline without real assets.
"""

from .synthetic_images import SyntheticImageGenerator
from .test_fixtures import TestDataFixtures

__all__ = [
    'SyntheticImageGenerator',
    'TestDataFixtures'
]
