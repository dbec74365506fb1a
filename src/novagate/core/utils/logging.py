"""
Loguru sinks for the gateway process.

``novagate run`` calls :func:`setup_logging` with the ``logging`` config
section: a colored stderr sink always, and a rotated file sink when
``logging.file`` is set.
"""

import sys

from loguru import logger

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> <level>{level: <7}</level> {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <7} | {name}:{function}:{line} | {message}"


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    *,
    rotation: str = "20 MB",
    retention: int = 5,
) -> None:
    """Replace loguru's default handler with the gateway's sinks.

    *retention* is the number of rotated files kept next to *log_file*.
    """
    level = level.upper()
    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)
    if not log_file:
        return
    logger.add(log_file, level=level, format=FILE_FORMAT, rotation=rotation, retention=retention, enqueue=True)
