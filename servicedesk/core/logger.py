"""Logging setup for the service desk backend.

Modules log through ``logging.getLogger(__name__)``; ``setup_logger``
configures the ``servicedesk`` parent logger once at application start.
"""

import logging
import logging.handlers
import os

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Rotation of the optional log file
MAX_BYTES = 10485760  # 10MB
BACKUP_COUNT = 5


def setup_logger(
    name: str = "servicedesk",
    log_dir: str = "logs",
    level: str = "INFO",
    file_logging: bool = False,
    console_logging: bool = True,
) -> logging.Logger:
    """Attach console and, when enabled, rotating file output to ``name``.

    Raises:
        ValueError: If level is not a standard logging level name
    """
    logger = logging.getLogger(name)

    level_value = logging.getLevelName(level.upper())
    if not isinstance(level_value, int):
        raise ValueError(f"Invalid log level: {level}")
    logger.setLevel(level_value)

    # Reloads must not stack handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = []
    if file_logging:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, f"{name}.log"), maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT,
        ))
    if console_logging:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger
