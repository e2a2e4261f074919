"""Logging setup for the CLI and the stream workers."""

import logging
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

# Both streams of a session log from pool threads; the thread name tells them apart.
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

QUIET_LOGGERS = ("urllib3", "requests", "absl", "mediapipe", "sqlalchemy.engine")


@dataclass
class LoggingSettings:
    """
    The ``logging`` section of config.yaml.

    Attributes:
        level: Level name for the root logger.
        file: Rotating log file, or None for console only.
        max_bytes: Size at which the log file rotates.
        backup_count: Rotated files kept on disk.
        console: Also log to stdout.
    """
    level: str = "INFO"
    file: Optional[str] = None
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    console: bool = True

    @classmethod
    def from_dict(cls, section: Optional[Dict[str, Any]]) -> "LoggingSettings":
        section = section or {}
        defaults = cls()
        return cls(
            level=str(section.get("level", defaults.level)),
            file=section.get("file", defaults.file),
            max_bytes=int(section.get("max_bytes", defaults.max_bytes)),
            backup_count=int(section.get("backup_count", defaults.backup_count)),
            console=bool(section.get("console", defaults.console)),
        )


def setup_logging(settings: Optional[LoggingSettings] = None, verbose: bool = False) -> logging.Logger:
    """
    Install console and rotating file handlers on the root logger.

    Args:
        settings: Logging settings; defaults apply when None.
        verbose: Force DEBUG regardless of the configured level.

    Returns:
        The root logger.
    """
    settings = settings or LoggingSettings()
    level = logging.DEBUG if verbose else getattr(logging, settings.level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    handlers = []
    if settings.console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if settings.file:
        log_path = Path(settings.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_path,
            maxBytes=settings.max_bytes,
            backupCount=settings.backup_count,
            encoding="utf-8",
        ))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.debug(f"Logging configured: level={logging.getLevelName(level)}, file={settings.file}")
    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class StreamProgress:
    """
    Periodic progress lines for one analysis stream.

    Emits a DEBUG line each time another ``step_percent`` of the planned
    frames has been processed, and an INFO line with the valid-frame count
    when the stream finishes.
    """

    def __init__(self, logger: logging.Logger, stream: str, planned: int, step_percent: int = 10):
        self.logger = logger
        self.stream = stream
        self.planned = max(planned, 1)
        self.step_percent = step_percent
        self.processed = 0
        self.valid = 0
        self._next_percent = step_percent

    def frame_done(self, valid: bool) -> None:
        self.processed += 1
        if valid:
            self.valid += 1

        percent = self.processed * 100 // self.planned
        if percent >= self._next_percent:
            self.logger.debug(f"{self.stream}: {percent}% ({self.processed}/{self.planned} frames)")
            self._next_percent = (percent // self.step_percent + 1) * self.step_percent

    def finish(self) -> None:
        self.logger.info(
            f"{self.stream}: finished {self.processed}/{self.planned} frames ({self.valid} valid)"
        )
