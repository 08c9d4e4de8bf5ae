import logging
import sys

_BASE = "tipac"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure the package logger.

    Adds a single stdout handler unless the root logger (uvicorn, pytest)
    already has one, in which case records simply propagate.
    """
    logger = logging.getLogger(_BASE)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not logging.getLogger().handlers and not logger.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s"
        ))
        logger.addHandler(h)
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    base = logging.getLogger(_BASE)
    return base.getChild(name) if name else base
