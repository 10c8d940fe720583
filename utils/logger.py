# utils/logger.py
"""
Logging for the cache and quality services.

Every module logs through ``get_logger(__name__)``. Loggers handed out
before ``setup_logging()`` runs are rewired in place, so module-level
``log`` objects pick up the configured level and rotating file.
"""
from __future__ import annotations

import copy
import logging
import logging.handlers
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Optional, Union

if TYPE_CHECKING:
    from config.settings import LoggingConfig

_colorama_lock = threading.Lock()
_colorama_ready: Optional[bool] = None

_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
_CONSOLE_DATEFMT = "%H:%M:%S"

LevelLike = Union[int, str]


def _ensure_colorama() -> bool:
    """Initialise colorama once per process; False when it is not installed."""
    global _colorama_ready

    with _colorama_lock:
        if _colorama_ready is None:
            try:
                import colorama

                colorama.init()
                _colorama_ready = True
            except ImportError:
                _colorama_ready = False
        return _colorama_ready


def _resolve_level(level: LevelLike) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    return value if isinstance(value, int) else logging.INFO


def log_file_for(log_dir: Path, day: Optional[datetime] = None) -> Path:
    """Daily log file path inside ``log_dir``."""
    stamp = (day or datetime.now()).strftime("%Y%m%d")
    return Path(log_dir) / f"cryptodash_{stamp}.log"


class ColorFormatter(logging.Formatter):
    """Colours the level name for terminal output.

    Works on a shallow copy so the file handler, which formats the same
    record, never writes escape codes.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        shown = copy.copy(record)
        color = self.COLORS.get(shown.levelname)
        if color:
            shown.levelname = f"{color}{shown.levelname}{self.RESET}"
        return super().format(shown)


class LoggerManager:
    """Process-wide owner of the console and file handlers.

    One console handler and at most one rotating file handler are shared by
    every logger this manager hands out.
    """

    _instance: Optional[LoggerManager] = None
    _instance_lock = threading.Lock()

    def __new__(cls) -> LoggerManager:
        with cls._instance_lock:
            if cls._instance is None:
                inst = super().__new__(cls)
                inst._ready = False
                cls._instance = inst
        return cls._instance

    def __init__(self) -> None:
        if self._ready:
            return
        self._ready = True
        self._lock = threading.Lock()
        self._loggers: Dict[str, logging.Logger] = {}
        self._level: int = logging.INFO
        self._console: Optional[logging.Handler] = None
        self._file: Optional[logging.Handler] = None

    @property
    def level(self) -> int:
        return self._level

    @property
    def log_file(self) -> Optional[Path]:
        handler = self._file
        if isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)
        return None

    def setup(
        self,
        log_dir: Optional[Path] = None,
        level: LevelLike = logging.INFO,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
    ) -> None:
        """Apply level and file logging to all known loggers. Safe to repeat."""
        with self._lock:
            self._level = _resolve_level(level)

            if self._file is not None:
                for logger in self._loggers.values():
                    logger.removeHandler(self._file)
                self._file.close()
                self._file = None

            if log_dir is not None:
                path = log_file_for(Path(log_dir))
                path.parent.mkdir(parents=True, exist_ok=True)
                handler = logging.handlers.RotatingFileHandler(
                    path,
                    maxBytes=max_bytes,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
                handler.setFormatter(logging.Formatter(_FORMAT))
                self._file = handler

            for handler in (self._console, self._file):
                if handler is not None:
                    handler.setLevel(self._level)
            for logger in self._loggers.values():
                self._wire(logger)

    def get_logger(self, name: str = "cryptodash") -> logging.Logger:
        with self._lock:
            logger = self._loggers.get(name)
            if logger is None:
                logger = logging.getLogger(name)
                for handler in logger.handlers[:]:
                    logger.removeHandler(handler)
                self._wire(logger)
                self._loggers[name] = logger
            return logger

    def teardown(self) -> None:
        """Detach and close every handler and forget cached loggers."""
        with self._lock:
            for logger in self._loggers.values():
                for handler in logger.handlers[:]:
                    logger.removeHandler(handler)
            self._loggers.clear()
            for handler in (self._console, self._file):
                if handler is not None:
                    handler.close()
            self._console = None
            self._file = None

    def _wire(self, logger: logging.Logger) -> None:
        """Attach the shared handlers to ``logger`` (lock held)."""
        logger.setLevel(self._level)
        # propagate stays on so pytest's caplog sees our records
        if self._console is None:
            self._console = self._make_console_handler()
        for handler in (self._console, self._file):
            if handler is not None and handler not in logger.handlers:
                logger.addHandler(handler)

    def _make_console_handler(self) -> logging.Handler:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(self._level)

        isatty = getattr(sys.stderr, "isatty", None)
        use_color = bool(isatty and isatty())
        if use_color and sys.platform == "win32":
            use_color = _ensure_colorama()

        formatter_cls = ColorFormatter if use_color else logging.Formatter
        handler.setFormatter(formatter_cls(_FORMAT, datefmt=_CONSOLE_DATEFMT))
        return handler


_manager = LoggerManager()


def get_logger(name: str = "cryptodash") -> logging.Logger:
    """Get a logger instance."""
    return _manager.get_logger(name)


def setup_logging(
    log_dir: Optional[Path] = None,
    level: LevelLike = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Setup global logging configuration."""
    _manager.setup(log_dir, level, max_bytes, backup_count)


def configure_logging(
    settings: LoggingConfig,
    log_dir: Optional[Path] = None,
    level: Optional[LevelLike] = None,
) -> None:
    """Apply a ``LoggingConfig`` section; explicit arguments win over it."""
    if log_dir is None and settings.log_dir:
        log_dir = Path(settings.log_dir)
    _manager.setup(
        log_dir,
        settings.level if level is None else level,
        settings.max_bytes,
        settings.backup_count,
    )


def current_log_file() -> Optional[Path]:
    return _manager.log_file


def teardown_logging() -> None:
    """Close handlers and forget cached loggers."""
    _manager.teardown()
