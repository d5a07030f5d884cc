"""
logging_config.py
~~~~~~~~~~~~~~~~~

Logging setup shared by the command-line harness and the API server.
"""

import logging
import os
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(log_file: Optional[str] = None) -> None:
    """
    Set up logging based on environment.

    - Level comes from LOG_LEVEL (default INFO)
    - Records go to the console, and are appended to ``log_file`` when given
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    logging.basicConfig(level=log_level, format=LOG_FORMAT)

    if log_file:
        root = logging.getLogger()
        path = os.path.abspath(log_file)
        already_attached = any(
            isinstance(h, logging.FileHandler) and h.baseFilename == path
            for h in root.handlers
        )
        if not already_attached:
            handler = logging.FileHandler(path, mode='a')
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            root.addHandler(handler)

    logging.getLogger('ffnn').setLevel(log_level)
