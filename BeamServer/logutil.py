# BeamServer/logutil.py
from __future__ import annotations
import json, logging, os, time
from logging.handlers import RotatingFileHandler
from contextlib import contextmanager

from . import config

_LOGGER_NAME = "beamserver"

# LogRecord attributes that are not `extra=` fields
_RECORD_KEYS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

def _extras(record: logging.LogRecord) -> dict:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_KEYS and not k.startswith("_")}

def preview(val, limit: int = 120) -> str:
    s = str(val)
    return s if len(s) <= limit else s[:limit] + "..."

class JSONLFormatter(logging.Formatter):
    """One JSON object per line: ts, lvl, logger, msg, then the record's extras."""
    def format(self, record: logging.LogRecord) -> str:
        line = {
            "ts": round(record.created, 3),
            "lvl": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for k, v in _extras(record).items():
            line[k] = v if isinstance(v, (str, int, float, bool, type(None))) else repr(v)
        if record.exc_info:
            line["exc"] = self.formatException(record.exc_info)
        return json.dumps(line, separators=(",", ":"))

class ConsoleFormatter(logging.Formatter):
    """`12:00:01 INFO  files: download path=a.txt size=5`"""
    def format(self, record: logging.LogRecord) -> str:
        ts = time.strftime("%H:%M:%S", time.localtime(record.created))
        name = record.name[len(_LOGGER_NAME) + 1:] or record.name
        extras = " ".join(f"{k}={preview(v)}" for k, v in _extras(record).items())
        return f"{ts} {record.levelname:<5} {name}: {record.getMessage()}" + (f" {extras}" if extras else "")

def setup_once() -> logging.Logger:
    """Install the console and rotating JSONL handlers on the `beamserver` logger, once."""
    logger = logging.getLogger(_LOGGER_NAME)
    if getattr(logger, "_beam_configured", False):
        return logger
    logger.setLevel(logging.DEBUG)

    ch = logging.StreamHandler()
    ch.setLevel(config.LOG_LEVEL_CONSOLE)
    ch.setFormatter(ConsoleFormatter())
    logger.addHandler(ch)

    os.makedirs(config.LOG_DIR, exist_ok=True)
    fh = RotatingFileHandler(os.path.join(config.LOG_DIR, f"{config.LOG_BASENAME}.jsonl"),
                             maxBytes=config.LOG_MAX_BYTES, backupCount=config.LOG_BACKUP_COUNT, encoding="utf-8")
    fh.setLevel(config.LOG_LEVEL_FILE)
    fh.setFormatter(JSONLFormatter())
    logger.addHandler(fh)

    logger.propagate = False
    logger._beam_configured = True  # type: ignore[attr-defined]
    return logger

def get_logger(name: str | None = None) -> logging.Logger:
    base = setup_once()
    return base if not name else logging.getLogger(f"{_LOGGER_NAME}.{name}")

class ContextAdapter(logging.LoggerAdapter):
    """Adds the bound fields (client address, path) to every record."""
    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

def bind(logger: logging.Logger, **ctx) -> ContextAdapter:
    return ContextAdapter(logger, ctx)

@contextmanager
def span(logger: logging.Logger | ContextAdapter, event: str, **fields):
    """
    Time a block. The end record goes to DEBUG unless the block took longer
    than SLOW_REQUEST_MS; failures are logged with the traceback and re-raised.
    """
    t0 = time.perf_counter()
    try:
        yield fields
    except Exception:
        logger.exception(f"{event} failed", extra={**fields, "dur_ms": int((time.perf_counter() - t0) * 1000)})
        raise
    dur_ms = int((time.perf_counter() - t0) * 1000)
    level = logging.INFO if dur_ms >= config.SLOW_REQUEST_MS else logging.DEBUG
    logger.log(level, f"{event} done", extra={**fields, "dur_ms": dur_ms})
