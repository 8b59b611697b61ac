# src/landing_analytics/logging_utils.py
import os
import time
import logging
from functools import wraps
from pathlib import Path
from datetime import datetime, timezone

_CONFIGURED = False

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

# attributes every LogRecord has; anything else arrived through extra=
_RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "taskName"}


class ContextFormatter(logging.Formatter):
    """
    Standard line format followed by the record's extra= context as
    key=value pairs, so event-style messages keep their payload:

        ... INFO events - section_viewed section_id=hero-section depth=25
    """

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS and not k.startswith("_")}
        if not context:
            return line
        pairs = " ".join(f"{k}={_render(v)}" for k, v in context.items())
        head, sep, tail = line.partition("\n")  # keep tracebacks below the context
        return f"{head} {pairs}{sep}{tail}"


def _render(value) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    text = str(value)
    return repr(text) if " " in text else text


def init_logging(*, reset: bool = False, level: int = logging.INFO) -> None:
    """
    Configure the ROOT logger once for the whole app.
    - Writes to stdout AND logs/logs.txt (or $LOG_DIR/logs.txt)
    - If reset=True, overwrite the log file on this run.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    log_dir = Path(os.getenv("LOG_DIR") or Path(__file__).resolve().parents[2] / "logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "logs.txt"

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = ContextFormatter(LOG_FORMAT)
    mode = "w" if reset else "a"
    for handler in (logging.StreamHandler(), logging.FileHandler(log_file, mode=mode, encoding="utf-8")):
        handler.setLevel(level)
        handler.setFormatter(fmt)
        root.addHandler(handler)

    # Faker is chatty at INFO
    logging.getLogger("faker").setLevel(logging.WARNING)

    root.info("----- RUN START %s -----", datetime.now(timezone.utc).isoformat())
    _CONFIGURED = True


def get_logger(name: str | None = None) -> logging.Logger:
    """Grab a named logger; one per module."""
    return logging.getLogger(name or "app")


def log_time(logger=None):
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            active_logger = logger or logging.getLogger(func.__module__)
            start = time.perf_counter()
            result = func(*args, **kwargs)
            duration = time.perf_counter() - start
            active_logger.info("%s executed in %.3f seconds", func.__name__, duration)
            return result
        return wrapper
    return decorator
