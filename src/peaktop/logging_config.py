"""Logging setup for peaktop."""

import logging
from logging.handlers import RotatingFileHandler

from textual.logging import TextualHandler

from peaktop.config import LoggingConfig

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(config: LoggingConfig) -> None:
    """
    Configure the logging subsystem.

    Records go to textual's devtools console so they never draw over the
    terminal UI, and additionally to a rotating file when one is configured.
    """
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: list[logging.Handler] = [TextualHandler()]

    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(config.log_file, maxBytes=5_000_000, backupCount=3)
        handlers.append(file_handler)

    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=config.level, handlers=handlers, force=True)

    logging.getLogger(__name__).debug("Logging configured at level %s", config.level)
