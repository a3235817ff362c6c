"""
Inference pipeline components for the photo editor.

This module provides model loading, tensor conversion, compositing,
result persistence and the operation dispatcher that ties them together.
"""

from .model_registry import ModelRegistry, ModelHandle, ModelLoadStatus
from .tensor_codec import TensorCodec
from .compositor import Compositor
from .result_store import ResultStore
from .dispatcher import OperationDispatcher, ChannelResponse, PipelineState, CoordinateSource

__all__ = [
    'ModelRegistry',
    'ModelHandle',
    'ModelLoadStatus',
    'TensorCodec',
    'Compositor',
    'ResultStore',
    'OperationDispatcher',
    'ChannelResponse',
    'PipelineState',
    'CoordinateSource'
]
