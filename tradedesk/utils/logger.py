"""Shared logger for the settlement engine."""
import logging

from ..config import Config

logger = logging.getLogger("tradedesk")
if not logger.handlers:
    h = logging.StreamHandler()
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    h.setFormatter(fmt)
    logger.addHandler(h)
    logger.setLevel(getattr(logging, Config.LOG_LEVEL, logging.INFO))


def get_logger(name: str = "") -> logging.Logger:
    return logger.getChild(name) if name else logger
