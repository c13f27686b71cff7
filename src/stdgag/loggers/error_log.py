import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from stdgag.settings import StdGagSettings, get_settings


def setup_error_logger(settings: Optional[StdGagSettings] = None) -> logging.Logger:
    """
    Configure the package logger for stdgag.
    Writes WARN+ to stderr, and ERROR+ to a rotating file when logging is enabled.

    The stderr handler is bound to whatever sys.stderr is at setup time, so
    messages emitted while stderr is gagged or captured end up in that sink.
    """
    logger = logging.getLogger("stdgag")
    if logger.handlers:
        return logger

    settings = settings or get_settings()
    logger.setLevel(logging.WARNING)

    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(logging.WARNING)
    sh.setFormatter(
        logging.Formatter(
            "[%(asctime)s] %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    logger.addHandler(sh)

    if settings.enable_logging:
        errors_dir = Path(settings.logs_dir)
        errors_dir.mkdir(parents=True, exist_ok=True)

        fh = RotatingFileHandler(
            errors_dir / "stdgag_errors.log",
            maxBytes=5_000_000,
            backupCount=3,
            encoding="utf-8",
        )
        fh.setLevel(logging.ERROR)
        fh.setFormatter(
            logging.Formatter(
                "%(asctime)s\t%(levelname)s\t%(name)s\t%(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(fh)

    logger.propagate = False
    return logger


def get_error_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"stdgag.{name}")
