# filebeam/logutil.py
import logging
from logging.handlers import RotatingFileHandler
import os

from filebeam import config

_LOGGER_NAME = "filebeam"
_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s]: %(message)s"

def _marked(logger: logging.Logger, mark: str):
    return next((h for h in logger.handlers if getattr(h, mark, False)), None)

def setup_once(path: str | None = None) -> logging.Logger:
    """
    Attach the rotating log file to the 'filebeam' logger unless it is already there.
    Children ('filebeam.transfers.manager', ...) log through it; nothing reaches the root logger.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    if _marked(logger, "_filebeam_file") is not None:
        return logger

    path = path or config.LOG_PATH
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    fh = RotatingFileHandler(path, maxBytes=config.LOG_MAX_BYTES, backupCount=config.LOG_BACKUP_COUNT, encoding="utf-8")
    fh._filebeam_file = True
    fh.setLevel(config.LOG_LEVEL)
    fh.setFormatter(logging.Formatter(_FORMAT))

    logger.setLevel(logging.DEBUG)
    logger.addHandler(fh)
    logger.propagate = False
    logger.debug(f"log file {path} (level {config.LOG_LEVEL})")
    return logger

def enable_console(level: int = logging.DEBUG) -> None:
    """Mirror log records to stderr (the cli's --verbose)."""
    logger = setup_once()
    sh = _marked(logger, "_filebeam_console")
    if sh is None:
        sh = logging.StreamHandler()
        sh._filebeam_console = True
        sh.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        logger.addHandler(sh)
    sh.setLevel(level)

def get_logger(name: str | None = None) -> logging.Logger:
    base = setup_once()
    return base if not name else base.getChild(name)
