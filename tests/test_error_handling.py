"""
Unit tests for the error taxonomy and error handling utilities.
"""

import pytest
import tempfile
import shutil
import json
import threading
from pathlib import Path

from photo_editor.core.error_handling import (
    EditorError, InvalidArgumentError, UnknownOperationError,
    ModelError, ModelNotFoundError, ModelLoadError,
    DataError, DecodeFailedError, TensorShapeError,
    ResourceError, SaveFailedError, GeometryError, ConfigurationError,
    ErrorHandler, RecoveryManager,
    get_global_error_handler, setup_global_error_handling
)


class TestEditorErrors:
    """Test custom exception classes."""

    def test_editor_error_basic(self):
        """Test basic EditorError functionality."""
        error = EditorError("Test error")

        assert str(error) == "Test error"
        assert error.error_code == "INTERNAL_ERROR"
        assert error.details == {}
        assert error.timestamp > 0

    def test_editor_error_with_details(self):
        """Test EditorError with code and details."""
        details = {"param": "value"}
        error = EditorError("Test error", "TEST_ERROR", details)

        assert error.error_code == "TEST_ERROR"
        assert error.details == details

    @pytest.mark.parametrize("error_class,code", [
        (InvalidArgumentError, "INVALID_ARGUMENT"),
        (UnknownOperationError, "NOT_IMPLEMENTED"),
        (ModelNotFoundError, "MODEL_NOT_FOUND"),
        (ModelLoadError, "MODEL_LOAD_FAILED"),
        (DecodeFailedError, "DECODE_FAILED"),
        (TensorShapeError, "TENSOR_SHAPE_MISMATCH"),
        (SaveFailedError, "SAVE_FAILED"),
        (GeometryError, "GEOMETRY_ERROR"),
        (ConfigurationError, "CONFIGURATION_ERROR"),
    ])
    def test_default_codes(self, error_class, code):
        """Each error type carries its boundary code."""
        assert error_class("boom").error_code == code

    def test_error_hierarchy(self):
        """Test specific error type inheritance."""
        assert isinstance(ModelNotFoundError("x"), ModelError)
        assert isinstance(ModelLoadError("x"), ModelError)
        assert isinstance(DecodeFailedError("x"), DataError)
        assert isinstance(TensorShapeError("x"), DataError)
        assert isinstance(SaveFailedError("x"), ResourceError)
        for error_class in (InvalidArgumentError, GeometryError, ConfigurationError):
            assert isinstance(error_class("x"), EditorError)


class TestErrorHandler:
    """Test ErrorHandler functionality."""

    def setup_method(self):
        """Setup test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Cleanup test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_handle_error_records_history(self):
        """Test that handled errors are recorded with their code."""
        handler = ErrorHandler()
        info = handler.handle_error(ModelNotFoundError("missing", details={'model': 'x'}), "removeBackground")

        assert info['error_type'] == "ModelNotFoundError"
        assert info['error_code'] == "MODEL_NOT_FOUND"
        assert info['details'] == {'model': 'x'}
        assert info['context'] == "removeBackground"
        assert len(handler.error_history) == 1

    def test_handle_plain_exception(self):
        """Test handling an exception outside the taxonomy."""
        handler = ErrorHandler()
        info = handler.handle_error(ValueError("bad"), "test", recoverable=True, recovery_suggestions=["retry"])

        assert 'error_code' not in info
        assert info['recoverable'] is True
        assert info['recovery_suggestions'] == ["retry"]

    def test_concurrent_errors_are_all_recorded(self):
        """Test that errors handled from several threads all reach the history."""
        handler = ErrorHandler(max_history=1000)

        def work(index):
            for i in range(50):
                handler.handle_error(InvalidArgumentError(f"worker {index} error {i}"), "applyFilter")

        threads = [threading.Thread(target=work, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        summary = handler.get_error_summary()
        assert summary['total_errors'] == 400
        assert summary['error_codes'] == {'INVALID_ARGUMENT': 400}

    def test_history_is_bounded(self):
        """Test that the history keeps only the most recent errors."""
        handler = ErrorHandler(max_history=3)
        for i in range(5):
            handler.handle_error(EditorError(f"error {i}"))

        assert len(handler.error_history) == 3
        assert handler.error_history[0]['error_message'] == "error 2"

    def test_error_summary(self):
        """Test error summary aggregation."""
        handler = ErrorHandler()
        assert handler.get_error_summary() == {'total_errors': 0, 'recent_errors': []}

        handler.handle_error(DecodeFailedError("a"))
        handler.handle_error(DecodeFailedError("b"))
        handler.handle_error(SaveFailedError("c"), recoverable=True)

        summary = handler.get_error_summary()
        assert summary['total_errors'] == 3
        assert summary['error_codes'] == {'DECODE_FAILED': 2, 'SAVE_FAILED': 1}
        assert summary['recoverable_errors'] == 1

        handler.clear()
        assert handler.get_error_summary()['total_errors'] == 0

    def test_error_log_file(self):
        """Test that errors are mirrored to a JSON error log."""
        log_file = Path(self.temp_dir) / "logs" / "editor.log"
        handler = ErrorHandler(str(log_file))
        handler.handle_error(InvalidArgumentError("no image"), "applyFilter")

        error_log = log_file.with_suffix('.errors.json')
        assert error_log.exists()
        with open(error_log) as f:
            entries = json.load(f)
        assert entries[0]['error_code'] == "INVALID_ARGUMENT"


class TestRecoveryManager:
    """Test RecoveryManager suggestions."""

    def test_suggestions_by_code(self):
        manager = RecoveryManager()
        suggestions = manager.get_recovery_suggestions(ModelNotFoundError("missing"))

        assert any("initializeModels" in s for s in suggestions)

    def test_suggestions_for_unknown_code(self):
        manager = RecoveryManager()
        assert manager.get_recovery_suggestions(GeometryError("x")) == []

    def test_suggestions_from_message(self):
        manager = RecoveryManager()
        suggestions = manager.get_recovery_suggestions(RuntimeError("CUDA out of memory"))

        assert "Use CPU instead of GPU" in suggestions

    def test_internal_error_uses_message(self):
        manager = RecoveryManager()
        wrapped = EditorError("Unexpected error: CUDA out of memory", error_code="INTERNAL_ERROR")

        assert "Use a smaller input image" in manager.get_recovery_suggestions(wrapped)

    def test_internal_error_default_suggestion(self):
        manager = RecoveryManager()
        suggestions = manager.get_recovery_suggestions(EditorError("Unexpected error: boom"))

        assert suggestions == ["Check the error log for the full traceback"]


class TestGlobalErrorHandler:
    """Test global error handler management."""

    def test_global_handler_is_shared(self):
        assert get_global_error_handler() is get_global_error_handler()

    def test_setup_replaces_handler(self):
        previous = get_global_error_handler()
        handler = setup_global_error_handling()

        assert handler is get_global_error_handler()
        assert handler is not previous
