"""
Logging configuration

Every module logs through loguru with `logger.bind(tag=__name__)`; the
console format shows that tag.
"""

import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[tag]}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[tag]}:{function}:{line} - {message}"


def setup_logging(level: str = "INFO", log_dir: Optional[Union[str, Path]] = None) -> None:
    """
    Replace the default loguru sink

    Args:
        level: minimum level for all sinks
        log_dir: also write a daily rotated file here (optional)
    """
    logger.remove()
    logger.configure(extra={"tag": "mazemind"})

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path / "mazemind_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level=level,
            rotation="00:00",
            retention="7 days",
        )

    logger.bind(tag=__name__).debug(f"Logging configured: level={level}, log_dir={log_dir}")
