from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from nightfall.engine.roles import ActionType, Role
from nightfall.engine.state import GameEvent, GameRecord


class PlayerRequest(BaseModel):
    seat: int = Field(ge=1)
    role: Role
    name: Optional[str] = None
    ready: bool = True


class CreateGameRequest(BaseModel):
    players: List[PlayerRequest]
    config_id: Optional[str] = None
    game_id: Optional[str] = None


class ActionSubmitRequest(BaseModel):
    actor_seat: int
    action_type: ActionType
    target_seat: Optional[int] = None


class EndSpeechRequest(BaseModel):
    seat: int


class PlayerResponse(BaseModel):
    seat: int
    name: Optional[str] = None
    alive: bool
    is_sheriff: bool = False


class GameStateResponse(BaseModel):
    game_id: str
    config_id: Optional[str] = None
    phase: str
    round: int
    night_step: Optional[int] = None
    version: int
    next_deadline: datetime
    leader_seat: Optional[int] = None
    players: List[PlayerResponse]
    stage: Optional[str] = None
    winner: Optional[str] = None
    win_reason: Optional[str] = None

    @classmethod
    def from_record(cls, record: GameRecord) -> "GameStateResponse":
        sub_state = record.election_state or record.day_speech_state or record.voting_pk_state
        return cls(
            game_id=record.game_id,
            config_id=record.config_id,
            phase=record.phase.value,
            round=record.round,
            night_step=record.night_step,
            version=record.version,
            next_deadline=record.schedule.next_deadline,
            leader_seat=record.leader_seat,
            players=[
                PlayerResponse(
                    seat=p.seat,
                    name=p.name,
                    alive=p.alive,
                    is_sheriff=p.seat == record.leader_seat,
                )
                for p in record.players
            ],
            stage=sub_state.stage if sub_state is not None else None,
            winner=record.winner.value if record.is_finished else None,
            win_reason=record.win_reason,
        )


class AdvanceResponse(BaseModel):
    game_id: str
    status: str
    phase: Optional[str] = None
    round: Optional[int] = None
    event_count: int = 0


class ActionResponse(BaseModel):
    success: bool
    sequence: int
    message: str = ""


class EventResponse(BaseModel):
    event_type: str
    round: int
    phase: str
    seat: Optional[int] = None
    target_seat: Optional[int] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime

    @classmethod
    def from_event(cls, event: GameEvent) -> "EventResponse":
        return cls(
            event_type=event.event_type.value,
            round=event.round,
            phase=event.phase.value,
            seat=event.seat,
            target_seat=event.target_seat,
            data=event.data,
            timestamp=event.timestamp,
        )
