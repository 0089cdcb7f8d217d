"""I/O utilities for nightfall."""

from nightfall.io.logging import (
    GameLogLevel,
    GameLogger,
    LogCategory,
    LogEntry,
    create_game_logger,
)
from nightfall.io.persistence import (
    ActionLog,
    EventEntry,
    GameArchive,
    PlayerLog,
    create_game_archive,
    load_game_archive,
    save_game_archive,
)

__all__ = [
    "ActionLog",
    "EventEntry",
    "GameArchive",
    "GameLogLevel",
    "GameLogger",
    "LogCategory",
    "LogEntry",
    "PlayerLog",
    "create_game_archive",
    "create_game_logger",
    "load_game_archive",
    "save_game_archive",
]
