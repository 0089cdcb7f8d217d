import json
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, Field

from nightfall.engine.roles import WinningTeam
from nightfall.engine.rules import game_statistics
from nightfall.engine.state import ActionRecord, GameEvent, GameRecord, utcnow


class PlayerLog(BaseModel):
    seat: int
    name: Optional[str] = None
    role: str
    camp: str
    is_alive: bool
    is_sheriff: bool = False


class ActionLog(BaseModel):
    sequence: int
    round: int
    phase: str
    actor_seat: int
    action_type: str
    target_seat: Optional[int] = None
    pk_round: int = 0
    submitted_at: datetime


class EventEntry(BaseModel):
    event_type: str
    timestamp: datetime
    round: int
    phase: str
    seat: Optional[int] = None
    target_seat: Optional[int] = None
    data: dict[str, Any] = Field(default_factory=dict)
    public: bool = True


class GameArchive(BaseModel):
    game_id: str
    config_id: Optional[str] = None
    created_at: datetime
    archived_at: datetime
    winner: str = WinningTeam.NONE.value
    win_reason: Optional[str] = None
    final_round: int = 1
    players: list[PlayerLog] = Field(default_factory=list)
    actions: list[ActionLog] = Field(default_factory=list)
    events: list[EventEntry] = Field(default_factory=list)
    statistics: dict[str, Any] = Field(default_factory=dict)

    def get_public_events(self) -> list[EventEntry]:
        return [e for e in self.events if e.public]

    def get_events_by_type(self, event_type: str) -> list[EventEntry]:
        return [e for e in self.events if e.event_type == event_type]

    def get_actions_for_round(self, round_number: int) -> list[ActionLog]:
        return [a for a in self.actions if a.round == round_number]


def create_game_archive(
    record: GameRecord,
    actions: Sequence[ActionRecord],
    events: Optional[Sequence[GameEvent]] = None,
) -> GameArchive:
    return GameArchive(
        game_id=record.game_id,
        config_id=record.config_id,
        created_at=record.created_at,
        archived_at=utcnow(),
        winner=record.winner.value,
        win_reason=record.win_reason,
        final_round=record.round,
        players=[
            PlayerLog(
                seat=p.seat,
                name=p.name,
                role=p.role.value,
                camp=p.camp.value,
                is_alive=p.alive,
                is_sheriff=p.seat == record.leader_seat,
            )
            for p in record.players
        ],
        actions=[
            ActionLog(
                sequence=a.sequence,
                round=a.round,
                phase=a.phase.value,
                actor_seat=a.actor_seat,
                action_type=a.action_type.value,
                target_seat=a.target_seat,
                pk_round=a.pk_round,
                submitted_at=a.submitted_at,
            )
            for a in sorted(actions, key=lambda a: a.sequence)
        ],
        events=[
            EventEntry(
                event_type=e.event_type.value,
                timestamp=e.timestamp,
                round=e.round,
                phase=e.phase.value,
                seat=e.seat,
                target_seat=e.target_seat,
                data=e.data,
                public=e.public,
            )
            for e in events or []
        ],
        statistics=game_statistics(record, actions),
    )


def save_game_archive(archive: GameArchive, path: Union[str, Path]) -> None:
    _save_file(archive.model_dump(mode="json"), Path(path))


def load_game_archive(path: Union[str, Path]) -> GameArchive:
    path = Path(path)
    data = _load_file(path)
    return GameArchive(**data)


def _load_file(path: Path) -> dict:
    suffix = path.suffix.lower()
    content = path.read_text(encoding="utf-8")

    if suffix in (".yaml", ".yml"):
        return yaml.safe_load(content)
    elif suffix == ".json":
        return json.loads(content)
    else:
        raise ValueError(f"Unsupported archive file format: {suffix}. Use .yaml, .yml, or .json")


def _save_file(data: dict, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    suffix = path.suffix.lower()

    if suffix in (".yaml", ".yml"):
        content = yaml.safe_dump(data, default_flow_style=False, allow_unicode=True)
    elif suffix == ".json":
        content = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    else:
        raise ValueError(f"Unsupported archive file format: {suffix}. Use .yaml, .yml, or .json")

    path.write_text(content, encoding="utf-8")
