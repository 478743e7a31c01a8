import logging
import sys
from logging.handlers import RotatingFileHandler

from conduit.config import LOG_BACKUP_COUNT, LOG_FORMAT, LOG_MAX_BYTES

ROOT_LOGGER_NAME = "conduit"


def setup_logging(level=logging.INFO, log_file=None):
    """
    Sets up logging for the ``conduit`` logger hierarchy.

    Installs a console handler and, when ``log_file`` is given, a rotating file
    handler that keeps every record down to DEBUG.

    Args:
        level: Minimum level printed on the console
        log_file: Optional path of a rotating log file (max 10MB, 5 backups)

    Returns:
        The configured ``conduit`` logger
    """
    detailed_formatter = logging.Formatter(LOG_FORMAT)
    simple_formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")

    conduit_logger = logging.getLogger(ROOT_LOGGER_NAME)
    conduit_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers
    conduit_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(simple_formatter)
    conduit_logger.addHandler(console_handler)

    if log_file:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            mode="a",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(detailed_formatter)
        conduit_logger.addHandler(file_handler)

    # Prevent propagation to root logger to avoid duplicate logs
    conduit_logger.propagate = False
    return conduit_logger


def get_logger(name=None):
    """
    Get a logger inside the ``conduit`` hierarchy.

    Args:
        name: Optional logger name (will be prefixed with 'conduit.')

    Returns:
        Logger instance
    """
    if name:
        return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
    return logging.getLogger(ROOT_LOGGER_NAME)


def new_logger(level=logging.INFO, stream=None, name="standalone"):
    """
    Build a standalone leveled logger writing to ``stream`` (stderr by default).

    The logger does not propagate, so records only reach ``stream``.
    """
    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}.{id(stream)}")
    logger.setLevel(level)
    logger.handlers.clear()
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_noop_logger():
    """Return a logger that discards everything (useful in tests)."""
    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.noop")
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    logger.propagate = False
    logger.disabled = True
    return logger
