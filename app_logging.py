import logging
import os
from pathlib import Path
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

# requests logs every connection at DEBUG through urllib3; the player polls
# streams often enough for that to drown the playback logs.
_LIBRARY_LOGGERS = ("urllib3", "requests")


def _parse_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        val = int(raw)
    except ValueError:
        return default
    return val if val >= 1 else default


def _parse_level(level_name: str, default: int) -> int:
    level = getattr(logging, str(level_name or "").upper(), None)
    return level if isinstance(level, int) else default


def _apply_module_levels(root_logger: logging.Logger, default_level: int) -> None:
    """
    Apply per-module log levels from env var:
    GOTIFY_LOG_MODULE_LEVELS="playback_controller=DEBUG,stream_source=INFO"
    """
    raw = os.getenv("GOTIFY_LOG_MODULE_LEVELS", "").strip()
    if not raw:
        return

    for item in raw.split(","):
        module_name, sep, level_name = item.strip().partition("=")
        module_name = module_name.strip()
        level_name = level_name.strip()
        if not sep or not module_name or not level_name:
            root_logger.warning("Invalid module-level logging entry: %s", item.strip())
            continue
        level = _parse_level(level_name, default_level)
        logging.getLogger(module_name).setLevel(level)
        root_logger.info("Log level override: %s=%s", module_name, logging.getLevelName(level))


def _file_handler(level: int, formatter: logging.Formatter) -> logging.Handler | None:
    log_file = os.getenv("GOTIFY_LOG_FILE")
    if not log_file:
        return None
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=_parse_int_env("GOTIFY_LOG_ROTATE_BYTES", 5 * 1024 * 1024),
        backupCount=_parse_int_env("GOTIFY_LOG_BACKUP_COUNT", 3),
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(level_name: str | None = None) -> logging.Logger:
    """
    Configure player-wide logging. Safe to call more than once.

    Env vars:
    - GOTIFY_LOG_LEVEL: DEBUG/INFO/WARNING/ERROR (default: INFO), overridden
      by an explicit ``level_name``
    - GOTIFY_LOG_FILE: optional path to a log file
    - GOTIFY_LOG_ROTATE_BYTES: max file size before rotation (default: 5242880)
    - GOTIFY_LOG_BACKUP_COUNT: number of rotated files to keep (default: 3)
    - GOTIFY_LOG_MODULE_LEVELS: comma-separated module overrides
      e.g. "playback_controller=DEBUG,stream_source=INFO"
    """
    level = _parse_level(level_name or os.getenv("GOTIFY_LOG_LEVEL", "INFO"), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    file_handler = _file_handler(level, formatter)
    if file_handler is not None:
        root.addHandler(file_handler)

    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _apply_module_levels(root, level)
    return root
