"""
Persistence of processed images.
"""

import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

from ..core.data_models import ImageBuffer
from ..core.image_io import ImageFileHandler
from ..core.error_handling import SaveFailedError

logger = logging.getLogger(__name__)

FILENAME_PREFIX = "processed_image_"
FILENAME_SUFFIX = ".png"


class ResultStore:
    """
    Writes result buffers as PNG files named processed_image_<unix_millis>.png.

    Files are written to a temporary name in the output directory and moved
    into place with os.replace, so a failed write never leaves a partial
    result under the final name.
    """

    def __init__(
        self,
        output_dir: Union[str, Path],
        image_handler: Optional[ImageFileHandler] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Initialize result store.

        Args:
            output_dir: Application-private directory for results
            image_handler: PNG encoder (defaults to ImageFileHandler)
            clock: Returns the current time in seconds (defaults to time.time)
        """
        self.output_dir = Path(output_dir)
        self.image_handler = image_handler or ImageFileHandler()
        self._clock = clock or time.time
        self._name_lock = threading.Lock()
        self._last_millis = 0

    def _reserve_path(self) -> Path:
        """Pick a result filename that is unique within this store."""
        with self._name_lock:
            millis = int(self._clock() * 1000)
            # Two saves in the same millisecond get consecutive stamps
            millis = max(millis, self._last_millis + 1)
            path = self.output_dir / f"{FILENAME_PREFIX}{millis}{FILENAME_SUFFIX}"
            while path.exists():
                millis += 1
                path = self.output_dir / f"{FILENAME_PREFIX}{millis}{FILENAME_SUFFIX}"
            self._last_millis = millis
            return path

    def save(self, buffer: ImageBuffer) -> str:
        """
        Persist a buffer.

        Returns:
            Absolute path of the written PNG

        Raises:
            SaveFailedError: If the directory or file cannot be written
        """
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SaveFailedError(
                f"Cannot create output directory {self.output_dir}: {e}",
                details={'output_dir': str(self.output_dir)}
            ) from e

        final_path = self._reserve_path()
        tmp_path = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=".tmp_", suffix=FILENAME_SUFFIX, dir=self.output_dir
            )
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, 'wb') as f:
                self.image_handler.encode_png(buffer, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, final_path)
        except (OSError, ValueError) as e:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()
            raise SaveFailedError(
                f"Failed to save result to {final_path}: {e}",
                details={'path': str(final_path)}
            ) from e

        logger.info(f"Saved result {final_path.name} ({buffer.width}x{buffer.height})")
        return str(final_path.resolve())

    def list_results(self) -> List[Path]:
        """Result files in the output directory, oldest first."""
        if not self.output_dir.is_dir():
            return []
        files = self.output_dir.glob(f"{FILENAME_PREFIX}*{FILENAME_SUFFIX}")
        return sorted(files, key=lambda p: p.name)

    def purge(self, older_than_seconds: float) -> int:
        """
        Delete results whose timestamp is older than the given age.

        Returns:
            Number of files removed
        """
        cutoff_millis = int((self._clock() - older_than_seconds) * 1000)
        removed = 0
        for path in self.list_results():
            stamp = path.stem[len(FILENAME_PREFIX):]
            if stamp.isdigit() and int(stamp) < cutoff_millis:
                path.unlink()
                removed += 1
        if removed:
            logger.info(f"Purged {removed} old results from {self.output_dir}")
        return removed
