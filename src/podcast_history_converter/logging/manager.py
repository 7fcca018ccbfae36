import logging
import logging.handlers
import sys
from dataclasses import dataclass
from pathlib import Path
from queue import Queue
from typing import Any, Dict, List, Optional

LOGGER_NAMESPACE = "podcast_history_converter"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Rotating log file: 10MB x 5
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


@dataclass
class LogConfig:
    level: int = logging.INFO
    format: str = DEFAULT_FORMAT
    date_format: str = DEFAULT_DATE_FORMAT
    log_file: Optional[Path] = None
    queue_size: int = -1  # no size limit

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> "LogConfig":
        """Build a LogConfig from the `logging` section of settings.yaml.

        Level names ("INFO", "warning") are converted to logging constants and
        the directory of the log file is created.

        Raises:
            ValueError: If the level name is unknown
        """
        level = settings.get("level", "INFO")
        if isinstance(level, str):
            level_name = level.upper()
            level = logging.getLevelName(level_name)
            if not isinstance(level, int):
                raise ValueError(f"Unknown logging level '{level_name}'")

        log_file = settings.get("log_file")
        log_path = None
        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

        return cls(
            level=level,
            format=settings.get("format", DEFAULT_FORMAT),
            date_format=settings.get("date_format", DEFAULT_DATE_FORMAT),
            log_file=log_path,
            queue_size=settings.get("queue_size", -1),
        )


class LoggerManager:
    """
    Singleton owning the process-wide logging setup.

    Loggers handed out by get_logger live under the `podcast_history_converter`
    namespace and only carry a QueueHandler. One QueueListener drains the queue
    into a stderr handler and, when configured, a rotating file handler, so
    log lines never mix with the report the CLI prints on stdout.

    shutdown() stops the listener and detaches the queue handlers again, which
    lets the next ApplicationContext (or test) start from a clean setup.

    Attributes:
        _instance (LoggerManager): The singleton instance
        _initialized (bool): Whether the listener is running
        _queue (Queue): Queue shared by all handed out loggers
        _listener (QueueListener): Drains the queue into the output handlers
        _loggers (List[logging.Logger]): Loggers that carry our queue handler
        config (LogConfig): The logging configuration
    """

    _instance = None
    _initialized = False
    _queue = None
    _listener = None

    def __new__(cls, config: Optional[LogConfig] = None) -> "LoggerManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, config: Optional[LogConfig] = None):
        if self._initialized:
            return
        self.config = config or LogConfig()
        self._queue = Queue(maxsize=self.config.queue_size)
        self._loggers: List[logging.Logger] = []
        self._listener = logging.handlers.QueueListener(
            self._queue, *self._build_handlers(), respect_handler_level=True
        )
        self._listener.start()
        LoggerManager._initialized = True

    def _build_handlers(self) -> List[logging.Handler]:
        formatter = logging.Formatter(
            fmt=self.config.format, datefmt=self.config.date_format
        )

        handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
        if self.config.log_file:
            handlers.append(
                logging.handlers.RotatingFileHandler(
                    self.config.log_file,
                    maxBytes=LOG_FILE_MAX_BYTES,
                    backupCount=LOG_FILE_BACKUPS,
                )
            )

        for handler in handlers:
            handler.setFormatter(formatter)
        return handlers

    def get_logger(self, name: str) -> logging.Logger:
        """Get the namespaced logger for a component, attached to the queue."""
        logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")

        if logger not in self._loggers:
            logger.addHandler(logging.handlers.QueueHandler(self._queue))
            logger.setLevel(self.config.level)
            logger.propagate = False
            self._loggers.append(logger)

        return logger

    def shutdown(self) -> None:
        """Flush pending records and detach every queue handler."""
        if self._listener:
            self._listener.stop()
            self._listener = None

        for logger in self._loggers:
            for handler in list(logger.handlers):
                if isinstance(handler, logging.handlers.QueueHandler):
                    logger.removeHandler(handler)
        self._loggers = []
        LoggerManager._initialized = False
