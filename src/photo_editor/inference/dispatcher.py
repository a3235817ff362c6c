"""
Operation dispatcher for the photo editing pipeline.

This module is the public entry point: it receives a named operation plus
parameters, drives the image through model inference and compositing, and
persists the result. Nothing raises past the dispatcher; failures come back
as OperationResult / ChannelResponse objects carrying an error code.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, List, Mapping

import numpy as np

from .model_registry import ModelRegistry
from .tensor_codec import TensorCodec
from .compositor import Compositor, GRAYSCALE_MATRIX, INVERT_MATRIX, POPART_MATRIX
from .result_store import ResultStore
from ..core.config import (
    PipelineConfig, OperationResult, SEGMENTATION, STYLE_TRANSFER, INPAINTING
)
from ..core.data_models import (
    ImageBuffer, Mask, Rect, Point, Operation, OperationRequest, RGBA
)
from ..core.image_io import ImageFileHandler
from ..core.error_handling import (
    EditorError, InvalidArgumentError, ModelNotFoundError, ModelLoadError,
    ErrorHandler, RecoveryManager, get_global_error_handler
)

logger = logging.getLogger(__name__)

SIMPLE_FILTERS = {
    "grayscale": GRAYSCALE_MATRIX,
    "colorInvert": INVERT_MATRIX,
    "color_reverse": INVERT_MATRIX,
}

MODEL_FILTERS = {
    "popart": STYLE_TRANSFER,
}


class PipelineState(Enum):
    RECEIVED = "Received"
    IMAGE_LOADED = "ImageLoaded"
    MODEL_INVOKED = "ModelInvoked"
    COMPOSITED = "Composited"
    PERSISTED = "Persisted"
    DONE = "Done"
    FAILED = "Failed"


_TRANSITIONS = {
    PipelineState.RECEIVED: {PipelineState.IMAGE_LOADED, PipelineState.DONE},
    PipelineState.IMAGE_LOADED: {PipelineState.MODEL_INVOKED, PipelineState.COMPOSITED},
    PipelineState.MODEL_INVOKED: {PipelineState.COMPOSITED},
    PipelineState.COMPOSITED: {PipelineState.PERSISTED},
    PipelineState.PERSISTED: {PipelineState.DONE},
    PipelineState.DONE: set(),
    PipelineState.FAILED: set(),
}


class PipelineRun:
    """State of one request moving through the pipeline."""

    def __init__(self):
        self.state = PipelineState.RECEIVED
        self.history: List[PipelineState] = [PipelineState.RECEIVED]
        self.failure_kind: Optional[str] = None

    def advance(self, state: PipelineState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal pipeline transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def fail(self, kind: str) -> None:
        """Move to the terminal failure state from any non-terminal state."""
        if self.state in (PipelineState.DONE, PipelineState.FAILED):
            return
        self.failure_kind = kind
        self.state = PipelineState.FAILED
        self.history.append(PipelineState.FAILED)

    def describe(self) -> List[str]:
        names = [s.value for s in self.history]
        if self.failure_kind:
            names[-1] = f"Failed({self.failure_kind})"
        return names


class CoordinateSource:
    """
    Placement of fallback markers and removal regions.

    Seeded for reproducible placement; unseeded in production. Ranges: marker
    centers in the middle half of the image, removal regions anchored in the
    top-left quarter with sides in [min_size, max_size).
    """

    def __init__(self, seed: Optional[int] = None):
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()

    def _integer(self, low: int, high: int) -> int:
        with self._lock:
            return int(self._rng.integers(low, max(high, low + 1)))

    def marker_center(self, width: int, height: int) -> Point:
        return Point(
            self._integer(width // 4, width * 3 // 4),
            self._integer(height // 4, height * 3 // 4),
        )

    def removal_region(self, width: int, height: int, min_size: int, max_size: int) -> Rect:
        left = self._integer(0, width // 2)
        top = self._integer(0, height // 2)
        return Rect(
            left,
            top,
            left + self._integer(min_size, max_size),
            top + self._integer(min_size, max_size),
        )


class FixedCoordinateSource(CoordinateSource):
    """Always returns the same placement."""

    def __init__(self, center: Point, region: Rect):
        super().__init__(seed=0)
        self.center = center
        self.region = region

    def marker_center(self, width: int, height: int) -> Point:
        return self.center

    def removal_region(self, width: int, height: int, min_size: int, max_size: int) -> Rect:
        return self.region


@dataclass
class ChannelResponse:
    """Reply shape of the method-channel boundary."""
    success: bool
    result: Any = None
    code: Optional[str] = None
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {'success': True, 'result': self.result, 'details': self.details}
        return {
            'success': False,
            'code': self.code,
            'message': self.message,
            'details': self.details,
        }


def parse_color(value: str) -> RGBA:
    """Parse #RRGGBB or #RRGGBBAA into an RGBA tuple."""
    text = value.strip().lstrip('#')
    if len(text) not in (6, 8):
        raise InvalidArgumentError(f"Color must be #RRGGBB or #RRGGBBAA, got {value!r}")
    try:
        channels = [int(text[i:i + 2], 16) for i in range(0, len(text), 2)]
    except ValueError:
        raise InvalidArgumentError(f"Color must be hexadecimal, got {value!r}")
    if len(channels) == 3:
        channels.append(255)
    return tuple(channels)


class OperationDispatcher:
    """
    Maps operation requests onto registry, codec, compositor and store calls.

    The dispatcher holds no per-request state, so it can serve concurrent
    requests; each request owns its buffers and tensors, and model access
    is serialised per model inside the ModelRegistry.

    Example:
        ```python
        config = PipelineConfig(asset_dir="assets/models", output_dir="out")
        with OperationDispatcher(config) as dispatcher:
            dispatcher.execute("initializeModels")
            result = dispatcher.execute("applyFilter", "photo.jpg", filterType="grayscale")
            if result.success:
                print(result.output_path)
        ```
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        registry: Optional[ModelRegistry] = None,
        codec: Optional[TensorCodec] = None,
        compositor: Optional[Compositor] = None,
        store: Optional[ResultStore] = None,
        image_handler: Optional[ImageFileHandler] = None,
        coordinate_source: Optional[CoordinateSource] = None,
        error_handler: Optional[ErrorHandler] = None
    ):
        """
        Initialize the dispatcher.

        Args:
            config: Pipeline configuration (uses defaults if None)
            registry: Model registry (created from config if None)
            codec: Tensor codec
            compositor: Compositor
            store: Result store (writes to config.output_dir if None)
            image_handler: Source image decoder
            coordinate_source: Placement for fallback markers and regions
            error_handler: Records failures (global handler if None)
        """
        self.config = config or PipelineConfig()
        self.registry = registry or ModelRegistry(self.config)
        self.codec = codec or TensorCodec(device=self.registry.device)
        self.compositor = compositor or Compositor()
        self.image_handler = image_handler or ImageFileHandler()
        self.store = store or ResultStore(self.config.output_dir, self.image_handler)
        self.coordinate_source = coordinate_source or CoordinateSource(self.config.random_seed)
        self.error_handler = error_handler or get_global_error_handler()
        self.recovery_manager = RecoveryManager()

        self._handlers = {
            Operation.REMOVE_BACKGROUND: self._remove_background,
            Operation.APPLY_FILTER: self._apply_filter,
            Operation.ADD_OBJECT: self._add_object,
            Operation.REMOVE_OBJECT: self._remove_object,
        }

        logger.info(f"OperationDispatcher initialized (output_dir={self.config.output_dir})")

    # --- Public API -------------------------------------------------------

    def dispatch(self, request: OperationRequest) -> OperationResult:
        """
        Run one request through the pipeline.

        Returns:
            OperationResult; on failure success is False and error_code is set
        """
        start_time = time.time()
        run = PipelineRun()
        result = OperationResult(success=False, operation=str(request.operation))

        try:
            operation = request.validate()
            logger.info(f"Dispatching {operation.value} for {request.image_path}")

            if operation is Operation.INITIALIZE_MODELS:
                self._initialize_models(result)
                run.advance(PipelineState.DONE)
            else:
                source = self.image_handler.load(request.image_path)
                run.advance(PipelineState.IMAGE_LOADED)

                output = self._handlers[operation](request, source, run, result)
                run.advance(PipelineState.COMPOSITED)

                result.output_path = self.store.save(output)
                run.advance(PipelineState.PERSISTED)
                run.advance(PipelineState.DONE)

            result.success = True

        except EditorError as e:
            self._record_failure(result, run, e)
        except Exception as e:
            # Last line of defence at the request boundary
            wrapped = EditorError(f"Unexpected error: {e}", error_code="INTERNAL_ERROR")
            wrapped.__cause__ = e
            self._record_failure(result, run, wrapped)
        finally:
            result.processing_time = time.time() - start_time
            result.state_history = run.describe()

        if result.success:
            logger.info(
                f"{result.operation} completed in {result.processing_time:.2f}s"
                + (" (fallback)" if result.fallback_used else "")
            )
        return result

    def execute(self, operation: str, image_path: Optional[str] = None, **params: str) -> OperationResult:
        """Convenience wrapper around dispatch()."""
        return self.dispatch(OperationRequest(operation, image_path, dict(params)))

    def handle_call(self, method: str, arguments: Optional[Mapping[str, Any]] = None) -> ChannelResponse:
        """
        Handle a method-channel call.

        Image operations reply with the output path; initializeModels replies
        with the per-model load status.
        """
        if arguments is not None and not isinstance(arguments, Mapping):
            return ChannelResponse(
                success=False,
                code="INVALID_ARGUMENT",
                message="Arguments must be a mapping."
            )

        result = self.dispatch(OperationRequest.from_call(method, arguments))

        if not result.success:
            return ChannelResponse(
                success=False,
                code=result.error_code,
                message=result.error_message,
                details=result.metadata
            )

        if result.operation == Operation.INITIALIZE_MODELS.value:
            value = result.metadata.get('model_status', {})
        else:
            value = result.output_path
        return ChannelResponse(success=True, result=value, details=result.metadata)

    def cleanup(self) -> None:
        """Release every loaded model."""
        self.registry.release_all()
        logger.info("OperationDispatcher cleaned up")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit with cleanup."""
        self.cleanup()

    # --- Failure mapping --------------------------------------------------

    def _record_failure(self, result: OperationResult, run: PipelineRun, error: EditorError) -> None:
        run.fail(error.error_code)
        result.success = False
        result.output_path = None
        result.error_code = error.error_code
        result.error_message = str(error)
        result.metadata['recovery_suggestions'] = self.recovery_manager.get_recovery_suggestions(error)
        if error.details:
            result.metadata['error_details'] = error.details
        self.error_handler.handle_error(error, context=result.operation)

    # --- Operations -------------------------------------------------------

    def _initialize_models(self, result: OperationResult) -> None:
        outcomes = self.registry.initialize_all()
        result.metadata['model_status'] = {name: s.to_dict() for name, s in outcomes.items()}
        for name, status in outcomes.items():
            if not status.loaded:
                result.add_warning(f"{name}: {status.status} ({status.message})")

    def _infer(self, model_name: str, *inputs) -> Any:
        return self.registry.invoke(model_name, *inputs)

    def _remove_background(
        self, request: OperationRequest, source: ImageBuffer, run: PipelineRun, result: OperationResult
    ) -> ImageBuffer:
        threshold = request.get_float('threshold', self.config.mask_threshold)
        if threshold is not None and not 0.0 <= threshold <= 1.0:
            raise InvalidArgumentError(f"threshold must lie in [0, 1], got {threshold}")

        background_color = self.config.background_color
        if request.params.get('backgroundColor'):
            background_color = parse_color(request.params['backgroundColor'])

        self.registry.load(SEGMENTATION)
        spec = self.config.get_model_spec(SEGMENTATION)

        output = self._infer(SEGMENTATION, self.codec.encode_for(source, spec))
        run.advance(PipelineState.MODEL_INVOKED)

        mask = self.codec.decode_mask(
            output,
            source.width,
            source.height,
            threshold=threshold,
            interpolation=self.config.mask_resize
        )

        # Mask weights keep the original; everything else becomes background
        background = self.compositor.fill_background(source, background_color)
        composited = self.compositor.blend(background, mask, source)

        result.metadata.update({
            'model_used': SEGMENTATION,
            'fallback_used': False,
            'mask_coverage': float(mask.values.mean()),
        })
        return composited

    def _apply_filter(
        self, request: OperationRequest, source: ImageBuffer, run: PipelineRun, result: OperationResult
    ) -> ImageBuffer:
        filter_type = request.params.get('filterType')
        result.metadata['filter_type'] = filter_type

        if filter_type in SIMPLE_FILTERS:
            result.metadata['fallback_used'] = False
            return self.compositor.apply_color_matrix(source, SIMPLE_FILTERS[filter_type])

        if filter_type in MODEL_FILTERS:
            return self._style_transfer(MODEL_FILTERS[filter_type], source, run, result)

        logger.info(f"Unknown filter {filter_type!r}; returning original image")
        result.metadata['passthrough'] = True
        return source.copy()

    def _style_transfer(
        self, model_name: str, source: ImageBuffer, run: PipelineRun, result: OperationResult
    ) -> ImageBuffer:
        try:
            self.registry.load(model_name)
        except (ModelNotFoundError, ModelLoadError) as e:
            if not self.config.popart_fallback:
                raise
            logger.warning(f"{model_name} unavailable, using color tint: {e}")
            result.add_warning(f"{model_name} unavailable; applied color tint instead")
            result.metadata.update({'fallback_used': True, 'fallback': 'color_matrix'})
            return self.compositor.apply_color_matrix(source, POPART_MATRIX)

        spec = self.config.get_model_spec(model_name)
        output = self._infer(model_name, self.codec.encode_for(source, spec))
        run.advance(PipelineState.MODEL_INVOKED)

        styled = self.codec.decode_for(output, spec, target_size=source.size, alpha=source.alpha())
        result.metadata.update({'model_used': model_name, 'fallback_used': False})
        return styled

    def _requested_region(self, request: OperationRequest) -> Optional[Rect]:
        """Region from left/top/right/bottom or x/y(/radius) parameters."""
        edges = ('left', 'top', 'right', 'bottom')
        present = [k for k in edges if request.params.get(k)]
        if present:
            if len(present) != len(edges):
                raise InvalidArgumentError(
                    f"Region requires all of {', '.join(edges)}; got {', '.join(present)}"
                )
            return Rect(*(request.get_int(k) for k in edges))

        point = self._requested_point(request)
        if point is not None:
            radius = request.get_int('radius', self.config.marker_radius)
            return Rect.around(point, radius)
        return None

    @staticmethod
    def _requested_point(request: OperationRequest) -> Optional[Point]:
        has_x = bool(request.params.get('x'))
        has_y = bool(request.params.get('y'))
        if has_x != has_y:
            raise InvalidArgumentError("Point requires both x and y")
        if not has_x:
            return None
        return Point(request.get_int('x'), request.get_int('y'))

    def _add_object(
        self, request: OperationRequest, source: ImageBuffer, run: PipelineRun, result: OperationResult
    ) -> ImageBuffer:
        if self.registry.is_loaded(INPAINTING):
            return self._inpaint(request, source, run, result)

        radius = request.get_int('radius', self.config.marker_radius)
        center = self._requested_point(request)
        if center is None:
            center = self.coordinate_source.marker_center(source.width, source.height)

        # Caller coordinates are pulled inside the image so the marker shows
        clamped = Point(
            min(max(center.x, 0), source.width - 1),
            min(max(center.y, 0), source.height - 1),
        )
        if clamped != center:
            result.add_warning(f"Marker center {center.x},{center.y} clamped to {clamped.x},{clamped.y}")

        output = self.compositor.paint_marker(source, clamped, radius, self.config.marker_color)
        if output is source:
            result.add_warning("Marker not drawn; image unchanged")

        result.metadata.update({
            'fallback_used': True,
            'fallback': 'marker',
            'center': [clamped.x, clamped.y],
            'radius': radius,
            'changed_region': list(self.compositor.changed_region(source, output)),
        })
        return output

    def _remove_object(
        self, request: OperationRequest, source: ImageBuffer, run: PipelineRun, result: OperationResult
    ) -> ImageBuffer:
        if self.registry.is_loaded(INPAINTING):
            return self._inpaint(request, source, run, result)

        region = self._requested_region(request)
        if region is None:
            region = self.coordinate_source.removal_region(
                source.width,
                source.height,
                self.config.fallback_region_min,
                self.config.fallback_region_max
            )

        output = self.compositor.paint_region(
            source,
            region,
            self.config.fallback_region_color,
            self.config.fallback_opacity
        )
        if output is source:
            result.add_warning(f"Region {region} outside image; image unchanged")

        clamped = region.clamp(source.width, source.height)
        result.metadata.update({
            'fallback_used': True,
            'fallback': 'region',
            'region': [clamped.left, clamped.top, clamped.right, clamped.bottom],
            'changed_region': list(self.compositor.changed_region(source, output)),
        })
        return output

    def _inpaint(
        self, request: OperationRequest, source: ImageBuffer, run: PipelineRun, result: OperationResult
    ) -> ImageBuffer:
        region = self._requested_region(request)
        if region is None:
            raise InvalidArgumentError(
                "Inpainting requires a region (left, top, right, bottom) or a point (x, y)"
            )

        clamped = region.clamp(source.width, source.height)
        result.metadata.update({'model_used': INPAINTING, 'fallback_used': False})
        if clamped.is_empty:
            logger.warning(f"Inpainting region {region} outside image; skipped")
            result.add_warning(f"Region {region} outside image; image unchanged")
            return source

        spec = self.config.get_model_spec(INPAINTING)
        region_mask = Mask.from_rect(source.width, source.height, clamped)

        inputs = [self.codec.encode_for(source, spec)]
        if spec.mask_input:
            inputs.append(self.codec.encode_mask(region_mask, spec.input_shape, spec.layout))

        output = self._infer(INPAINTING, *inputs)
        run.advance(PipelineState.MODEL_INVOKED)

        patch = self.codec.decode_for(output, spec, target_size=source.size, alpha=source.alpha())
        result.metadata['region'] = [clamped.left, clamped.top, clamped.right, clamped.bottom]
        return self.compositor.blend(source, region_mask, patch)
