"""
Unit tests for ResultStore.
"""

import pytest
import tempfile
import shutil
from pathlib import Path
from unittest.mock import Mock

from photo_editor.inference.result_store import ResultStore
from photo_editor.core.data_models import ImageBuffer
from photo_editor.core.image_io import ImageFileHandler
from photo_editor.core.error_handling import SaveFailedError


class TestResultStore:
    """Test ResultStore functionality."""

    def setup_method(self):
        """Setup test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.output_dir = Path(self.temp_dir) / "processed"
        self.buffer = ImageBuffer.filled(10, 8, (1, 2, 3, 255))

    def teardown_method(self):
        """Cleanup test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_save_creates_named_png(self):
        store = ResultStore(self.output_dir, clock=lambda: 1700000000.5)
        path = Path(store.save(self.buffer))

        assert path.is_absolute()
        assert path.name == "processed_image_1700000000500.png"
        assert ImageFileHandler().load(path).equals(self.buffer)

    def test_same_millisecond_saves_are_unique(self):
        store = ResultStore(self.output_dir, clock=lambda: 1700000000.0)

        paths = [store.save(self.buffer) for _ in range(3)]

        assert len(set(paths)) == 3
        assert [Path(p).name for p in paths] == [
            "processed_image_1700000000000.png",
            "processed_image_1700000000001.png",
            "processed_image_1700000000002.png",
        ]

    def test_existing_file_is_not_overwritten(self):
        self.output_dir.mkdir(parents=True)
        existing = self.output_dir / "processed_image_1700000000000.png"
        existing.write_bytes(b"keep me")

        store = ResultStore(self.output_dir, clock=lambda: 1700000000.0)
        path = Path(store.save(self.buffer))

        assert path.name == "processed_image_1700000000001.png"
        assert existing.read_bytes() == b"keep me"

    def test_no_temp_files_left(self):
        store = ResultStore(self.output_dir)
        store.save(self.buffer)

        assert [p.name for p in self.output_dir.iterdir() if p.name.startswith(".tmp_")] == []

    def test_failed_encode_leaves_nothing(self):
        """Test that a failed write removes the partial file."""
        handler = Mock()
        handler.encode_png = Mock(side_effect=OSError("disk full"))
        store = ResultStore(self.output_dir, image_handler=handler)

        with pytest.raises(SaveFailedError) as exc_info:
            store.save(self.buffer)

        assert exc_info.value.error_code == "SAVE_FAILED"
        assert list(self.output_dir.iterdir()) == []

    def test_unwritable_output_dir(self):
        blocker = Path(self.temp_dir) / "file"
        blocker.write_text("not a directory")
        store = ResultStore(blocker / "processed")

        with pytest.raises(SaveFailedError):
            store.save(self.buffer)

    def test_list_and_purge(self):
        now = [1700000000.0]
        store = ResultStore(self.output_dir, clock=lambda: now[0])
        old = store.save(self.buffer)
        now[0] += 3600
        recent = store.save(self.buffer)

        assert [str(p.resolve()) for p in store.list_results()] == [old, recent]

        removed = store.purge(older_than_seconds=60)

        assert removed == 1
        assert not Path(old).exists()
        assert Path(recent).exists()

    def test_list_results_missing_dir(self):
        assert ResultStore(self.output_dir).list_results() == []
