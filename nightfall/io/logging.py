import json
import logging
import sys
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel

from nightfall.engine.state import EventType, GameEvent, utcnow


class GameLogLevel(str, Enum):
    MINIMAL = "minimal"
    STANDARD = "standard"
    VERBOSE = "verbose"


class LogCategory(str, Enum):
    GAME = "game"
    PHASE = "phase"
    EVENT = "event"
    VOTE = "vote"
    DEATH = "death"


class LogEntry(BaseModel):
    timestamp: datetime
    level: str
    category: str
    message: str
    game_id: Optional[str] = None
    data: dict[str, Any] = {}


_EVENT_CATEGORIES = {
    EventType.GAME_START: LogCategory.GAME,
    EventType.GAME_END: LogCategory.GAME,
    EventType.PHASE_CHANGE: LogCategory.PHASE,
    EventType.NIGHT_STEP: LogCategory.PHASE,
    EventType.DEATH_ANNOUNCEMENT: LogCategory.DEATH,
    EventType.ELIMINATION: LogCategory.DEATH,
    EventType.HUNTER_SHOT: LogCategory.DEATH,
    EventType.SELF_DESTRUCT: LogCategory.DEATH,
    EventType.VOTE_RESULT: LogCategory.VOTE,
    EventType.PK_START: LogCategory.VOTE,
    EventType.PK_VOTE: LogCategory.VOTE,
}

# Events worth logging at MINIMAL level.
_MILESTONES = {
    EventType.GAME_START,
    EventType.GAME_END,
    EventType.DEATH_ANNOUNCEMENT,
    EventType.ELIMINATION,
    EventType.HUNTER_SHOT,
    EventType.SELF_DESTRUCT,
    EventType.SHERIFF_ELECTED,
}


class GameLogger:
    """Structured game log that doubles as an event sink.

    Bound to one game when ``game_id`` is given; otherwise it logs the
    events of every game it receives under ``nightfall.game``.
    """

    def __init__(
        self,
        game_id: Optional[str] = None,
        log_level: GameLogLevel = GameLogLevel.STANDARD,
        output_path: Optional[Path] = None,
        enable_console: bool = True,
        enable_file: bool = False,
    ):
        self.game_id = game_id
        self.log_level = log_level
        self.output_path = output_path
        self.enable_console = enable_console
        self.enable_file = enable_file
        self.entries: list[LogEntry] = []

        name = f"nightfall.game.{game_id}" if game_id else "nightfall.game"
        self._logger = logging.getLogger(name)
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False

        for handler in self._logger.handlers[:]:
            self._logger.removeHandler(handler)

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.INFO)
            console_handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", "%H:%M:%S")
            )
            self._logger.addHandler(console_handler)

        if enable_file and output_path:
            output_path.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(
                output_path / f"{game_id or 'games'}.log", encoding="utf-8"
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
            )
            self._logger.addHandler(file_handler)

    def _should_log(self, required_level: GameLogLevel) -> bool:
        levels = [GameLogLevel.MINIMAL, GameLogLevel.STANDARD, GameLogLevel.VERBOSE]
        return levels.index(self.log_level) >= levels.index(required_level)

    def _add_entry(
        self,
        level: str,
        category: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
        game_id: Optional[str] = None,
    ) -> None:
        entry = LogEntry(
            timestamp=utcnow(),
            level=level,
            category=category,
            message=message,
            game_id=game_id or self.game_id,
            data=data or {},
        )
        self.entries.append(entry)

    def publish(self, events: Sequence[GameEvent]) -> None:
        for event in events:
            if self.game_id is None or event.game_id == self.game_id:
                self.log_event(event)

    def log_event(self, event: GameEvent) -> None:
        description = self._get_event_description(event)
        category = _EVENT_CATEGORIES.get(event.event_type, LogCategory.EVENT)

        self._add_entry(
            level="INFO" if event.public else "DEBUG",
            category=category.value,
            message=description,
            data=self._format_event_data(event),
            game_id=event.game_id,
        )

        required = GameLogLevel.MINIMAL if event.event_type in _MILESTONES else GameLogLevel.STANDARD
        if event.public and self._should_log(required):
            self._logger.info(f"[{event.game_id}] {description}")
        elif self._should_log(GameLogLevel.VERBOSE):
            self._logger.debug(f"[{event.game_id}] {description}")

    def _format_event_data(self, event: GameEvent) -> dict[str, Any]:
        data: dict[str, Any] = {
            "event_type": event.event_type.value,
            "round": event.round,
            "phase": event.phase.value,
            "public": event.public,
            "timestamp": event.timestamp.isoformat(),
        }
        if event.seat is not None:
            data["seat"] = event.seat
        if event.target_seat is not None:
            data["target_seat"] = event.target_seat
        if event.data:
            data["extra"] = event.data
        return data

    def _get_event_description(self, event: GameEvent) -> str:
        seat = f"Seat {event.seat}" if event.seat is not None else "Unknown"
        target = f"Seat {event.target_seat}" if event.target_seat is not None else "Unknown"
        extra = event.data

        descriptions = {
            EventType.GAME_START: f"Game started with {extra.get('player_count', '?')} players",
            EventType.GAME_END: f"Game ended - {extra.get('winner', 'unknown')} wins ({extra.get('reason', '')})",
            EventType.PHASE_CHANGE: f"Phase changed to {extra.get('new_phase', 'unknown')}",
            EventType.WAITING_FOR_PLAYERS: f"Waiting for players ({extra.get('ready')}/{extra.get('player_count')} ready)",
            EventType.NIGHT_STEP: f"Night {event.round}: {extra.get('step', 'unknown')} step",
            EventType.SEER_RESULT: f"Seer checked {target}: {extra.get('camp', 'unknown')}",
            EventType.DEATH_ANNOUNCEMENT: f"{seat} was found dead",
            EventType.PEACEFUL_NIGHT: "No one died last night",
            EventType.SPEAKER_CHANGE: f"{seat} has the floor",
            EventType.AWAIT_LEADER_CALL: f"Waiting for the sheriff ({seat}) to call a vote",
            EventType.LEADER_CALL: f"Sheriff called a vote on {target}",
            EventType.ELECTION_STAGE: f"Sheriff election: {extra.get('stage', 'unknown')}",
            EventType.SHERIFF_ELECTED: f"{seat} was elected sheriff",
            EventType.NO_SHERIFF: f"No sheriff elected ({extra.get('reason', 'unknown')})",
            EventType.VOTE_RESULT: "Vote concluded",
            EventType.PK_START: f"PK round {extra.get('pk_round')} between {extra.get('candidates')}",
            EventType.PK_VOTE: f"PK vote between {extra.get('candidates')}",
            EventType.ELIMINATION: f"{seat} was voted out",
            EventType.PEACEFUL_DAY: f"No one was voted out ({extra.get('reason', 'unknown')})",
            EventType.BADGE_TRANSFER_PENDING: f"{seat} must pass or tear the badge",
            EventType.BADGE_PASS: f"Sheriff badge passed to {target}",
            EventType.BADGE_LOST: f"Sheriff badge lost ({extra.get('reason', 'unknown')})",
            EventType.HUNTER_SHOT_PENDING: f"Hunter {seat} may take a shot",
            EventType.HUNTER_SHOT: f"Hunter shot {target}",
            EventType.HUNTER_SKIP: f"Hunter {seat} held fire",
            EventType.SELF_DESTRUCT: f"{seat} self-destructed",
        }

        return f"[Event] {descriptions.get(event.event_type, f'{event.event_type.value}: {seat} -> {target}')}"

    def get_entries(self, category: Optional[str] = None) -> list[LogEntry]:
        if category:
            return [e for e in self.entries if e.category == category]
        return self.entries.copy()

    def export_json(self) -> str:
        return json.dumps(
            [e.model_dump(mode="json") for e in self.entries],
            indent=2,
            ensure_ascii=False,
            default=str,
        )


def create_game_logger(
    game_id: Optional[str] = None,
    log_level: GameLogLevel = GameLogLevel.STANDARD,
    output_path: Optional[Union[str, Path]] = None,
    enable_console: bool = True,
    enable_file: bool = False,
) -> GameLogger:
    path = Path(output_path) if output_path else None

    return GameLogger(
        game_id=game_id,
        log_level=log_level,
        output_path=path,
        enable_console=enable_console,
        enable_file=enable_file,
    )
