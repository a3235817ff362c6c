#!/usr/bin/env python3
"""
Basic editing example.

Builds scripted stand-in models and a synthetic photo in a temporary
directory, then runs every operation through the method-channel boundary
the way a host application would.
"""

import logging
import tempfile
import shutil

from photo_editor.testing import TestDataFixtures
from photo_editor.inference import OperationDispatcher

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main():
    """Run basic editing example."""
    logger.info("Starting basic editing example")

    temp_dir = tempfile.mkdtemp()
    logger.info(f"Using temporary directory: {temp_dir}")

    try:
        with TestDataFixtures(temp_dir) as fixtures:
            # Step 1: source image and model assets
            source = fixtures.image_generator.split(320, 240, (230, 40, 40, 255), (40, 90, 200, 255))
            image_path = fixtures.save_image(source, "photo")
            config = fixtures.get_pipeline_config()
            fixtures.save_mock_models(config)
            logger.info(f"Created source image: {image_path}")

            with OperationDispatcher(config) as dispatcher:
                # Step 2: load models
                init = dispatcher.handle_call("initializeModels")
                for name, status in init.result.items():
                    logger.info(f"  {name}: {status['status']}")

                # Step 3: run each operation
                calls = [
                    ("removeBackground", {'threshold': 0.5}),
                    ("applyFilter", {'filterType': "grayscale"}),
                    ("applyFilter", {'filterType': "popart"}),
                    ("addObject", {'x': 160, 'y': 120, 'radius': 30}),
                    ("removeObject", {'left': 20, 'top': 20, 'right': 120, 'bottom': 100}),
                    ("sharpen", {}),
                ]
                for method, arguments in calls:
                    response = dispatcher.handle_call(method, dict(arguments, imagePath=image_path))
                    if response.success:
                        logger.info(f"{method}: {response.result}")
                    else:
                        logger.warning(f"{method}: [{response.code}] {response.message}")

            logger.info("Basic editing example completed successfully!")

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)
        logger.info("Cleaned up temporary files")


if __name__ == '__main__':
    main()
