import logging
import sys
from contextlib import AbstractContextManager
from pathlib import Path
from types import TracebackType
from typing import List, Optional, Type

import typer

from podcast_history_converter.config.config_manager import ConfigManager
from podcast_history_converter.logging.manager import LogConfig, LoggerManager
from podcast_history_converter.players import PLAYER_REGISTRY
from podcast_history_converter.players.base import Player


class ApplicationContext(AbstractContextManager):
    """Resources of one CLI invocation.

    Entering loads the configuration and starts logging; every store opened
    through open_player is closed again on exit, before logging shuts down.

    Example:
        >>> with ApplicationContext(Path("configs/settings.yaml")) as app_ctx:
        ...     source = app_ctx.open_player("beyondpod", Path("backup.bpbak"))
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        log_config: Optional[LogConfig] = None,
        typer_ctx: Optional[typer.Context] = None,
    ):
        """
        Args:
            config_path: settings.yaml to load instead of the searched default
            log_config: Logging configuration overriding the `logging` settings
            typer_ctx: Typer context used for CLI parameter resolution
        """
        self.config_path = config_path
        self.typer_ctx = typer_ctx
        self._log_config = log_config

        self.conf: Optional[ConfigManager] = None
        self.logger_manager: Optional[LoggerManager] = None
        self.logger: Optional[logging.Logger] = None
        self._players: List[Player] = []

    @property
    def is_initialized(self) -> bool:
        return bool(self.conf and self.logger_manager and self.logger)

    def __enter__(self) -> "ApplicationContext":
        try:
            self.conf = self._load_config()
            self._initialize_logging()
        except Exception as e:
            # Logging may not be up yet
            print(f"Failed to initialize context: {e}", file=sys.stderr)
            self.__exit__(type(e), e, None)
            raise

        self.logger.debug(f"Configuration loaded from {self.conf.config_path}")
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        try:
            self.close_players()
        finally:
            if self.logger_manager:
                self.logger_manager.shutdown()
                self.logger_manager = None

    def open_player(self, format_name: str, path: Path) -> Player:
        """Open a store of the given format; it is closed with the context.

        Raises:
            ValueError: If the format is not supported
            StoreError: If the store cannot be opened
        """
        player_class = PLAYER_REGISTRY.get(format_name)
        if player_class is None:
            raise ValueError(
                f"Unknown player format '{format_name}', "
                f"expected one of: {', '.join(sorted(PLAYER_REGISTRY))}"
            )
        player = player_class(path, self.logger_manager)
        self._players.append(player)
        return player

    def close_players(self) -> None:
        while self._players:
            player = self._players.pop()
            try:
                player.close()
            except Exception as e:
                print(
                    f"Error closing {player.name} store {player.path}: "
                    f"{e} ({type(e).__name__})",
                    file=sys.stderr,
                )
                continue
            if self.logger:
                self.logger.debug(f"Closed {player.name} store {player.path}")

    def _load_config(self) -> ConfigManager:
        if self.config_path is None:
            return ConfigManager(typer_ctx=self.typer_ctx)
        return ConfigManager(config_path=self.config_path, typer_ctx=self.typer_ctx)

    def _initialize_logging(self) -> None:
        if self._log_config is None:
            self._log_config = LogConfig.from_settings(self.conf.get("logging", {}))

        self.logger_manager = LoggerManager(self._log_config)
        self.logger = self.logger_manager.get_logger("core.context")

        if not self.logger.handlers:
            raise RuntimeError("Logger initialization failed")
