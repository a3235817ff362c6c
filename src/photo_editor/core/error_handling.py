"""
Error taxonomy and handling utilities for the photo editing pipeline.

Every failure that can reach the request boundary is an EditorError subclass
carrying a boundary error code, so the dispatcher can turn it into a
(code, message) pair without inspecting messages.
"""

import logging
import threading
import traceback
import time
from typing import Dict, Any, Optional, List
from pathlib import Path
import json

logger = logging.getLogger(__name__)


class EditorError(Exception):
    """Base exception for photo editor errors."""

    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, error_code: str = None, details: Dict[str, Any] = None):
        super().__init__(message)
        self.error_code = error_code or self.default_code
        self.details = details or {}
        self.timestamp = time.time()


class InvalidArgumentError(EditorError):
    """Request fields are missing or malformed."""
    default_code = "INVALID_ARGUMENT"


class UnknownOperationError(EditorError):
    """Operation name is not one the dispatcher implements."""
    default_code = "NOT_IMPLEMENTED"


class ModelError(EditorError):
    """Errors related to model loading or inference."""
    default_code = "MODEL_ERROR"


class ModelNotFoundError(ModelError):
    """Model is not declared, its asset is missing, or it is not loaded."""
    default_code = "MODEL_NOT_FOUND"


class ModelLoadError(ModelError):
    """Model asset exists but the runtime could not load it."""
    default_code = "MODEL_LOAD_FAILED"


class DataError(EditorError):
    """Errors related to pixel or tensor data."""
    default_code = "DATA_ERROR"


class DecodeFailedError(DataError):
    """Source image is missing or cannot be decoded."""
    default_code = "DECODE_FAILED"


class TensorShapeError(DataError):
    """Tensor does not have the layout a codec operation expects."""
    default_code = "TENSOR_SHAPE_MISMATCH"


class ResourceError(EditorError):
    """Errors related to system resources (disk, memory)."""
    default_code = "RESOURCE_ERROR"


class SaveFailedError(ResourceError):
    """Result image could not be persisted."""
    default_code = "SAVE_FAILED"


class GeometryError(EditorError):
    """Buffers or regions are geometrically incompatible."""
    default_code = "GEOMETRY_ERROR"


class ConfigurationError(EditorError):
    """Errors related to configuration or setup."""
    default_code = "CONFIGURATION_ERROR"


class ErrorHandler:
    """
    Centralized error recording.

    Keeps an in-memory history of handled errors and optionally mirrors them
    to a log file and a JSON error log next to it.
    """

    def __init__(self, log_file: Optional[str] = None, max_history: int = 100):
        """
        Initialize error handler.

        Args:
            log_file: Optional path to log file for error recording
            max_history: Number of errors kept in memory and in the JSON log
        """
        self.log_file = log_file
        self.max_history = max_history
        self.error_history: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

        if log_file:
            self._setup_file_logging(log_file)

    def _setup_file_logging(self, log_file: str) -> None:
        """Setup file logging for errors."""
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.ERROR)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        file_handler.setFormatter(formatter)

        logging.getLogger().addHandler(file_handler)

    def handle_error(
        self,
        error: Exception,
        context: str = "",
        recoverable: bool = False,
        recovery_suggestions: List[str] = None
    ) -> Dict[str, Any]:
        """
        Handle and log an error with context and recovery information.

        Args:
            error: The exception that occurred
            context: Context description where error occurred
            recoverable: Whether the error is potentially recoverable
            recovery_suggestions: List of suggested recovery actions

        Returns:
            Dictionary with error information
        """
        error_info = {
            'error_type': type(error).__name__,
            'error_message': str(error),
            'context': context,
            'recoverable': recoverable,
            'recovery_suggestions': recovery_suggestions or [],
            'timestamp': time.time(),
            'traceback': traceback.format_exc()
        }

        if isinstance(error, EditorError):
            error_info['error_code'] = error.error_code
            error_info['details'] = error.details

        logger.error(f"Error in {context}: {error}")
        if recoverable:
            logger.info(f"Error is recoverable. Suggestions: {recovery_suggestions}")

        with self._lock:
            self.error_history.append(error_info)
            del self.error_history[:-self.max_history]

            if self.log_file:
                self._save_error_to_file(error_info)

        return error_info

    def _save_error_to_file(self, error_info: Dict[str, Any]) -> None:
        """Append error information to the JSON error log."""
        error_log_path = Path(self.log_file).with_suffix('.errors.json')

        existing_errors = []
        if error_log_path.exists():
            try:
                with open(error_log_path, 'r') as f:
                    existing_errors = json.load(f)
            except (json.JSONDecodeError, IOError):
                existing_errors = []

        existing_errors.append(error_info)
        existing_errors = existing_errors[-self.max_history:]

        try:
            with open(error_log_path, 'w') as f:
                json.dump(existing_errors, f, indent=2, default=str)
        except OSError as e:
            logger.warning(f"Failed to save error to file: {e}")

    def get_error_summary(self) -> Dict[str, Any]:
        """Get summary of recent errors."""
        with self._lock:
            history = list(self.error_history)

        if not history:
            return {'total_errors': 0, 'recent_errors': []}

        error_codes = {}
        for error in history:
            code = error.get('error_code', error['error_type'])
            error_codes[code] = error_codes.get(code, 0) + 1

        return {
            'total_errors': len(history),
            'error_codes': error_codes,
            'recent_errors': history[-10:],
            'recoverable_errors': sum(1 for e in history if e['recoverable'])
        }

    def clear(self) -> None:
        """Forget all recorded errors."""
        with self._lock:
            self.error_history.clear()


class RecoveryManager:
    """Maps failures to hints a caller can act on."""

    _CODE_SUGGESTIONS = {
        "INVALID_ARGUMENT": [
            "Pass a non-empty imagePath argument",
            "Check parameter names and value types",
        ],
        "NOT_IMPLEMENTED": [
            "Use one of: initializeModels, removeBackground, applyFilter, addObject, removeObject",
        ],
        "MODEL_NOT_FOUND": [
            "Call initializeModels before model-backed operations",
            "Check that the model asset exists in the asset directory",
        ],
        "MODEL_LOAD_FAILED": [
            "Verify model file is not corrupted",
            "Re-export the model as TorchScript for the installed torch version",
        ],
        "DECODE_FAILED": [
            "Check file path is correct",
            "Verify the file is a PNG or JPEG image",
        ],
        "SAVE_FAILED": [
            "Check the output directory is writable",
            "Free disk space",
        ],
        "TENSOR_SHAPE_MISMATCH": [
            "Check the declared input/output shapes for the model",
        ],
        "INTERNAL_ERROR": [
            "Check the error log for the full traceback",
        ],
    }

    def get_recovery_suggestions(self, error: Exception) -> List[str]:
        """
        Get recovery suggestions for an error.

        Args:
            error: The error that occurred

        Returns:
            List of recovery suggestions
        """
        if isinstance(error, EditorError) and error.error_code != "INTERNAL_ERROR":
            return list(self._CODE_SUGGESTIONS.get(error.error_code, []))

        # Match on the message for wrapped or foreign exceptions
        suggestions = []
        error_str = str(error).lower()
        if "out of memory" in error_str:
            suggestions.extend([
                "Use a smaller input image",
                "Use CPU instead of GPU",
            ])
        if "no such file" in error_str or "not found" in error_str:
            suggestions.extend([
                "Check file path is correct",
                "Check file permissions",
            ])
        return suggestions or list(self._CODE_SUGGESTIONS["INTERNAL_ERROR"])


_global_error_handler = None


def get_global_error_handler() -> ErrorHandler:
    """Get or create global error handler."""
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_global_error_handling(log_file: Optional[str] = None) -> ErrorHandler:
    """
    Setup global error handling.

    Args:
        log_file: Optional log file path

    Returns:
        Configured ErrorHandler instance
    """
    global _global_error_handler
    _global_error_handler = ErrorHandler(log_file)
    return _global_error_handler
