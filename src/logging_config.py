"""
Centralized logging configuration for DevMind.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """
    Setup root logging for the CLI and server.

    Args:
        level: Log level name
        log_file: Optional file that receives a copy of every record
    """
    handlers = [logging.StreamHandler(sys.stderr)]

    if log_file is not None:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        format=LOG_FORMAT,
                        handlers=handlers,
                        force=True)
