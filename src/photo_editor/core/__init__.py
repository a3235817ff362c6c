"""
Core Components

Shared data structures, configuration, error taxonomy and image file I/O
used by the inference pipeline and the command-line front end.
"""

from .config import PipelineConfig, ModelSpec, OperationResult
from .data_models import ImageBuffer, Mask, Rect, Point, Operation, OperationRequest
from .image_io import ImageFileHandler

__all__ = [
    'PipelineConfig',
    'ModelSpec',
    'OperationResult',
    'ImageBuffer',
    'Mask',
    'Rect',
    'Point',
    'Operation',
    'OperationRequest',
    'ImageFileHandler'
]
