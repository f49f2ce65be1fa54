"""Logging for the sync worker: one rotating log file, optional console echo."""

import logging
import logging.handlers
from pathlib import Path
from typing import Any

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Per-request chatter at INFO/DEBUG.
_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def _level(name: Any, fallback: int = logging.INFO) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else fallback


def _file_handler(project_root: Path, cfg: dict[str, Any]) -> logging.Handler:
    log_path = project_root / cfg.get("file", "data/logs/flowcore.log")
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=int(cfg.get("max_bytes", 10 * 1024 * 1024)),
        backupCount=int(cfg.get("backup_count", 3)),
        encoding="utf-8",
    )


def setup_logging(project_root: Path, settings: dict[str, Any]) -> None:
    """Configure the root logger from the ``logging`` settings section.

    Replaces (and closes) handlers from an earlier call. HTTP client and
    SQLite driver loggers are held at WARNING unless the root level is
    DEBUG; ``logging.loggers`` overrides any logger's level by name.
    """
    cfg = settings.get("logging", {})
    level = _level(cfg.get("level", "INFO"))
    formatter = logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root = logging.getLogger()
    root.setLevel(level)
    for h in root.handlers[:]:
        root.removeHandler(h)
        h.close()

    handlers = [_file_handler(project_root, cfg)]
    if cfg.get("log_to_console", False):
        handlers.append(logging.StreamHandler())
    for h in handlers:
        h.setFormatter(formatter)
        root.addHandler(h)

    noisy_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)
    for name, name_level in (cfg.get("loggers") or {}).items():
        logging.getLogger(name).setLevel(_level(name_level))
