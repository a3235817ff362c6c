"""
Model registry for loading and sharing inference models.

The registry is the only component that constructs or destroys model
runtimes. Handles are loaded once per name, borrowed by the dispatcher for
the duration of one inference call, and released explicitly.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, Callable, Iterable, Iterator, List

import torch

from ..core.config import PipelineConfig, ModelSpec
from ..core.error_handling import ModelNotFoundError, ModelLoadError

logger = logging.getLogger(__name__)

LOADED = "loaded"
NOT_FOUND = "not_found"
LOAD_FAILED = "load_failed"


@dataclass
class ModelHandle:
    """Loaded model runtime plus its declared tensor contract."""
    name: str
    spec: ModelSpec
    module: Any
    asset_path: str
    loaded_at: float = field(default_factory=time.time)

    @property
    def input_shape(self):
        return self.spec.input_shape

    @property
    def output_shape(self):
        return self.spec.output_shape

    def invoke(self, *inputs: torch.Tensor) -> torch.Tensor:
        """
        Run inference.

        Callers must hold the model's lock (ModelRegistry.borrow does this).
        """
        if self.module is None:
            raise ModelNotFoundError(
                f"Model {self.name} has been released",
                details={'model': self.name}
            )
        with torch.no_grad():
            output = self.module(*inputs)
        # Some exported models return (tensor,) or a list
        if isinstance(output, (tuple, list)):
            output = output[0]
        if not isinstance(output, torch.Tensor):
            raise ModelLoadError(
                f"Model {self.name} returned {type(output).__name__}, expected a tensor",
                details={'model': self.name}
            )
        return output


@dataclass
class ModelLoadStatus:
    """Outcome of one load attempt."""
    name: str
    status: str
    message: str = ""

    @property
    def loaded(self) -> bool:
        return self.status == LOADED

    def to_dict(self) -> Dict[str, Any]:
        return {'status': self.status, 'message': self.message}


def load_torchscript(path: Path, device: str) -> Any:
    """Default loader: TorchScript module in eval mode."""
    module = torch.jit.load(str(path), map_location=device)
    module.eval()
    return module


class ModelRegistry:
    """
    Lazily loads and caches model handles by name.

    Thread safety: each model name has its own re-entrant lock that
    serialises load, release and inference on that model. A registry-wide
    lock only guards the lock table and cache dictionaries, so inference on
    one model never blocks another.

    Example:
        ```python
        registry = ModelRegistry(PipelineConfig(asset_dir="assets/models"))
        registry.initialize_all()

        with registry.borrow("segmentation") as handle:
            output = handle.invoke(input_tensor)
        ```
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        loader: Optional[Callable[[Path, str], Any]] = None
    ):
        """
        Initialize the registry.

        Args:
            config: Pipeline configuration declaring models and asset location
            loader: Callable (asset_path, device) -> runtime; defaults to TorchScript
        """
        self.config = config or PipelineConfig()
        self.device = self._resolve_device(self.config.device)
        self._loader = loader or load_torchscript

        self._handles: Dict[str, ModelHandle] = {}
        self._status: Dict[str, ModelLoadStatus] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

        logger.info(f"ModelRegistry initialized with device: {self.device}")

    def _resolve_device(self, device_config: str) -> str:
        """Resolve device configuration to actual device string."""
        if device_config == "auto":
            if torch.cuda.is_available():
                return "cuda"
            elif hasattr(torch.backends, 'mps') and torch.backends.mps.is_available():
                return "mps"
            else:
                return "cpu"
        return device_config

    def _lock_for(self, name: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(name)
            if lock is None:
                lock = threading.RLock()
                self._locks[name] = lock
            return lock

    def _record(self, name: str, status: str, message: str = "") -> None:
        with self._registry_lock:
            self._status[name] = ModelLoadStatus(name, status, message)

    def load(self, name: str) -> ModelHandle:
        """
        Load a model, or return the cached handle if already loaded.

        Args:
            name: Declared model name (e.g. "segmentation")

        Returns:
            The cached ModelHandle

        Raises:
            ModelNotFoundError: If the model is not declared or its asset is missing
            ModelLoadError: If the asset cannot be loaded by the runtime
        """
        with self._lock_for(name):
            handle = self._handles.get(name)
            if handle is not None:
                return handle

            spec = self.config.get_model_spec(name)
            if spec is None:
                self._record(name, NOT_FOUND, "model is not declared")
                raise ModelNotFoundError(
                    f"Unknown model: {name}",
                    details={'model': name}
                )

            asset_path = self.config.asset_path(name)
            if not asset_path.is_file():
                message = f"model asset not found: {asset_path}"
                self._record(name, NOT_FOUND, message)
                logger.error(f"Model {name}: {message}")
                raise ModelNotFoundError(
                    f"Model {name} not found at {asset_path}",
                    details={'model': name, 'asset_path': str(asset_path)}
                )

            logger.info(f"Loading model {name} from {asset_path}")
            start_time = time.time()
            try:
                module = self._loader(asset_path, self.device)
            except Exception as e:
                self._record(name, LOAD_FAILED, str(e))
                logger.error(f"Failed to load model {name}: {e}")
                raise ModelLoadError(
                    f"Failed to load model {name} from {asset_path}: {e}",
                    details={'model': name, 'asset_path': str(asset_path)}
                ) from e

            handle = ModelHandle(
                name=name,
                spec=spec,
                module=module,
                asset_path=str(asset_path)
            )
            with self._registry_lock:
                self._handles[name] = handle
            self._record(name, LOADED)

            logger.info(f"Model {name} loaded in {time.time() - start_time:.2f}s")
            return handle

    def release(self, name: str) -> None:
        """
        Free a model's runtime and evict it from the cache.

        Blocks until any in-flight inference on the same model completes.
        Releasing a model that is not loaded is a no-op.
        """
        with self._lock_for(name):
            with self._registry_lock:
                handle = self._handles.pop(name, None)
                self._status.pop(name, None)
            if handle is None:
                return

            handle.module = None
            if self.device == "cuda" and torch.cuda.is_available():
                torch.cuda.empty_cache()

            logger.info(f"Released model {name}")

    def release_all(self) -> None:
        for name in self.loaded_models():
            self.release(name)

    def is_loaded(self, name: str) -> bool:
        with self._registry_lock:
            return name in self._handles

    def loaded_models(self) -> List[str]:
        with self._registry_lock:
            return list(self._handles.keys())

    def load_status(self, name: str) -> Optional[ModelLoadStatus]:
        """Outcome of the most recent load attempt for a model."""
        with self._registry_lock:
            return self._status.get(name)

    def initialize_all(self, names: Optional[Iterable[str]] = None) -> Dict[str, ModelLoadStatus]:
        """
        Attempt to load every declared model.

        Individual failures are recorded, never raised, so one missing model
        does not prevent the others from loading.

        Args:
            names: Models to load (defaults to all declared models)

        Returns:
            Mapping of model name to its load outcome
        """
        names = list(names) if names is not None else self.config.model_names()
        outcomes = {}

        for name in names:
            try:
                self.load(name)
                outcomes[name] = ModelLoadStatus(name, LOADED)
            except ModelNotFoundError as e:
                outcomes[name] = ModelLoadStatus(name, NOT_FOUND, str(e))
            except ModelLoadError as e:
                outcomes[name] = ModelLoadStatus(name, LOAD_FAILED, str(e))

        loaded = sum(1 for s in outcomes.values() if s.loaded)
        logger.info(f"Initialized models: {loaded}/{len(outcomes)} loaded")
        return outcomes

    @contextmanager
    def borrow(self, name: str) -> Iterator[ModelHandle]:
        """
        Borrow a loaded model for one invocation.

        Holds the model's lock for the duration of the block so the model
        cannot be released or reloaded underneath the caller.

        Raises:
            ModelNotFoundError: If the model is not loaded
        """
        with self._lock_for(name):
            with self._registry_lock:
                handle = self._handles.get(name)
            if handle is None:
                status = self.load_status(name)
                reason = f" ({status.message})" if status and status.message else ""
                raise ModelNotFoundError(
                    f"Model {name} is not loaded{reason}",
                    details={'model': name}
                )
            yield handle

    def invoke(self, name: str, *inputs: torch.Tensor) -> torch.Tensor:
        """Run one inference call on a loaded model."""
        with self.borrow(name) as handle:
            start_time = time.time()
            output = handle.invoke(*[t.to(self.device) for t in inputs])
            logger.debug(f"Inference on {name} took {time.time() - start_time:.3f}s")
            return output.detach().cpu()

    def get_model_info(self) -> Dict[str, Any]:
        """Declared and loaded state of every model."""
        info = {}
        for name in self.config.model_names():
            status = self.load_status(name)
            info[name] = {
                'asset_path': str(self.config.asset_path(name)),
                'loaded': self.is_loaded(name),
                'status': status.status if status else None,
            }
        return info

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit with cleanup."""
        self.release_all()
