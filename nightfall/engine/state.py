from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .roles import (
    ActionType,
    Camp,
    DeathCause,
    Phase,
    PkNoVotePolicy,
    Role,
    WinMode,
    WinningTeam,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Player(BaseModel):
    """A seat at the table.

    Attributes:
        seat: Seat number, unique and stable for the whole match
        role: The player's assigned role
        camp: Win-condition faction (derived from role when not given)
        alive: Whether the player is still alive; never reverts to True
        ready: Whether the player confirmed readiness in the lobby
        name: Optional display name
    """

    seat: int = Field(ge=1)
    role: Role
    camp: Optional[Camp] = Field(default=None)
    alive: bool = Field(default=True)
    ready: bool = Field(default=True)
    name: Optional[str] = Field(default=None)

    @model_validator(mode="after")
    def set_camp_from_role(self) -> "Player":
        """Fall back to the builtin camp when none was supplied."""
        if self.camp is None:
            self.camp = Camp.from_role(self.role)
        return self


class Death(BaseModel):
    model_config = ConfigDict(frozen=True)

    seat: int
    cause: DeathCause


class Schedule(BaseModel):
    """When a game fires next and who currently holds the right to advance it.

    The scheduling deadline and the mutual-exclusion lease are kept apart.
    A record is claimable once ``next_deadline`` has passed and no lease is
    live; an expired lease counts as no lease.
    """

    model_config = ConfigDict(frozen=True)

    next_deadline: datetime
    lease_owner_token: Optional[str] = None
    lease_expiry: Optional[datetime] = None

    def is_leased(self, now: datetime) -> bool:
        return (
            self.lease_owner_token is not None
            and self.lease_expiry is not None
            and now < self.lease_expiry
        )

    def is_due(self, now: datetime) -> bool:
        return now >= self.next_deadline and not self.is_leased(now)

    def claimed_by(self, token: str, lease_expiry: datetime) -> "Schedule":
        return Schedule(
            next_deadline=self.next_deadline,
            lease_owner_token=token,
            lease_expiry=lease_expiry,
        )


class NightStep(BaseModel):
    """One ordered window of the night, belonging to one role."""

    model_config = ConfigDict(frozen=True)

    name: str
    skill_codes: list[str] = Field(default_factory=list)
    duration: int = Field(default=20, gt=0)

    def allows(self, action_type: ActionType) -> bool:
        return action_type.value in self.skill_codes


# =============================================================================
# Sub-machine contexts
# =============================================================================


class _SpeakingStage(BaseModel):
    order: list[int]
    speaker_index: int = Field(default=0, ge=0)

    @property
    def current_speaker(self) -> Optional[int]:
        if 0 <= self.speaker_index < len(self.order):
            return self.order[self.speaker_index]
        return None


class ElectionSignup(BaseModel):
    stage: Literal["signup"] = "signup"


class ElectionSpeech(_SpeakingStage):
    stage: Literal["speech"] = "speech"
    candidates: list[int]


class ElectionVote(BaseModel):
    stage: Literal["vote"] = "vote"
    candidates: list[int]


class ElectionPkSpeech(_SpeakingStage):
    stage: Literal["pk_speech"] = "pk_speech"
    pk_round: int = Field(ge=1)
    candidates: list[int]


class ElectionPkVote(BaseModel):
    stage: Literal["pk_vote"] = "pk_vote"
    pk_round: int = Field(ge=1)
    candidates: list[int]


class ElectionDone(BaseModel):
    stage: Literal["done"] = "done"
    elected_seat: Optional[int] = None
    reason: str


ElectionState = Annotated[
    Union[
        ElectionSignup,
        ElectionSpeech,
        ElectionVote,
        ElectionPkSpeech,
        ElectionPkVote,
        ElectionDone,
    ],
    Field(discriminator="stage"),
]


class DaySpeaking(_SpeakingStage):
    stage: Literal["speaking"] = "speaking"


class AwaitLeaderCall(BaseModel):
    stage: Literal["await_leader_call"] = "await_leader_call"


DaySpeechState = Annotated[
    Union[DaySpeaking, AwaitLeaderCall],
    Field(discriminator="stage"),
]


class PkSpeech(_SpeakingStage):
    """Tied seats speak in ascending order; ``order`` doubles as the candidate list."""

    stage: Literal["pk_speech"] = "pk_speech"
    pk_round: int = Field(ge=1)

    @property
    def candidates(self) -> list[int]:
        return list(self.order)


class PkVote(BaseModel):
    stage: Literal["pk_vote"] = "pk_vote"
    pk_round: int = Field(ge=1)
    candidates: list[int]


VotingPkState = Annotated[
    Union[PkSpeech, PkVote],
    Field(discriminator="stage"),
]


class PendingBadgeTransfer(BaseModel):
    dead_seat: int
    origin_phase: Phase
    round: int


class PendingHunterShot(BaseModel):
    hunter_seat: int
    origin_phase: Phase
    round: int


# =============================================================================
# Rules
# =============================================================================


class RuleVariants(BaseModel):
    """Configurable rule variants.

    Different play groups use different house rules; these settings control
    how the contested edge cases are resolved.
    """

    # Witch rules
    witch_can_self_heal_n1: bool = Field(
        default=True,
        description="Whether the Witch can save herself on night 1"
    )
    witch_can_self_heal: bool = Field(
        default=False,
        description="Whether the Witch can save herself after night 1"
    )
    witch_can_use_both_potions: bool = Field(
        default=False,
        description="Whether the Witch can use both potions in one night"
    )

    # Guard rules
    guard_can_self_guard: bool = Field(
        default=True,
        description="Whether the Guard can protect themselves"
    )
    same_guard_same_save_kills: bool = Field(
        default=True,
        description="If Guard protects and Witch saves the kill target, the target still dies"
    )

    # Win condition
    win_mode: WinMode = Field(
        default=WinMode.PARITY,
        description="Win condition mode (parity, side_elimination or city_elimination)"
    )

    # Werewolf special actions
    allow_wolf_self_explode: bool = Field(
        default=True,
        description="Allow werewolves to self-destruct during their day speech"
    )
    allow_wolf_self_knife: bool = Field(
        default=False,
        description="Allow werewolves to target their own teammates at night"
    )

    # Leader (sheriff) rules
    leader_vote_weight: float = Field(
        default=1.5,
        gt=0,
        description="Vote weight of the leader in elimination votes"
    )
    sheriff_campaign_min_players: int = Field(
        default=10,
        ge=1,
        description="Minimum table size that holds a sheriff campaign on round 1"
    )

    # Voting rules
    max_pk_rounds: int = Field(
        default=2,
        ge=1,
        description="Maximum number of PK tie-break rounds"
    )
    pk_no_vote_policy: PkNoVotePolicy = Field(
        default=PkNoVotePolicy.PEACEFUL_DAY,
        description="Outcome of a PK vote that receives no eligible ballots"
    )

    # Hunter rules
    hunter_can_shoot_if_poisoned: bool = Field(
        default=False,
        description="Whether the Hunter can shoot if killed by Witch poison"
    )

    # Lobby
    min_players: int = Field(
        default=6,
        ge=1,
        description="Minimum roster size before the first night starts"
    )


# =============================================================================
# Game record
# =============================================================================


class GameRecord(BaseModel):
    """The one mutable record per match.

    Only the orchestrator commits changes to it. Sub-machine contexts are
    present only while their parent phase is active.
    """

    game_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    config_id: Optional[str] = Field(default=None)
    phase: Phase = Field(default=Phase.WAITING)
    round: int = Field(default=1, ge=1)
    night_step: Optional[int] = Field(default=None, ge=0)
    schedule: Schedule

    leader_seat: Optional[int] = Field(default=None)
    election_state: Optional[ElectionState] = Field(default=None)
    day_speech_state: Optional[DaySpeechState] = Field(default=None)
    voting_pk_state: Optional[VotingPkState] = Field(default=None)
    pending_badge_transfer: Optional[PendingBadgeTransfer] = Field(default=None)
    pending_hunter_shot: Optional[PendingHunterShot] = Field(default=None)
    resolved_hunter_seats: list[int] = Field(default_factory=list)

    last_night_deaths: list[Death] = Field(default_factory=list)
    deaths_announced: bool = Field(default=False)

    winner: WinningTeam = Field(default=WinningTeam.NONE)
    win_reason: Optional[str] = Field(default=None)

    players: list[Player] = Field(default_factory=list)
    version: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("players")
    @classmethod
    def validate_unique_seats(cls, v: list[Player]) -> list[Player]:
        seats = [p.seat for p in v]
        if len(seats) != len(set(seats)):
            raise ValueError("Seat numbers must be unique")
        return sorted(v, key=lambda p: p.seat)

    def get_player(self, seat: Optional[int]) -> Optional[Player]:
        if seat is None:
            return None
        for p in self.players:
            if p.seat == seat:
                return p
        return None

    def get_alive_players(self) -> list[Player]:
        return [p for p in self.players if p.alive]

    def alive_seats(self) -> list[int]:
        return [p.seat for p in self.players if p.alive]

    def is_alive(self, seat: Optional[int]) -> bool:
        player = self.get_player(seat)
        return player is not None and player.alive

    @property
    def roles_present(self) -> set[Role]:
        return {p.role for p in self.players}

    @property
    def is_finished(self) -> bool:
        return self.phase == Phase.FINISHED

    def is_due(self, now: datetime) -> bool:
        return not self.is_finished and self.schedule.is_due(now)


class ActionRecord(BaseModel):
    """An append-only log entry for a player action or vote.

    ``pk_round`` is 0 for the main vote of a stage and 1.. for PK rounds.
    ``sequence`` is assigned by the store and orders submissions.
    """

    model_config = ConfigDict(frozen=True)

    action_id: str = Field(default_factory=lambda: uuid4().hex)
    game_id: str
    round: int = Field(ge=1)
    phase: Phase
    actor_seat: int
    action_type: ActionType
    target_seat: Optional[int] = Field(default=None)
    pk_round: int = Field(default=0, ge=0)
    sequence: int = Field(default=0, ge=0)
    submitted_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Events
# =============================================================================


class EventType(str, Enum):
    """Announcements produced by transitions."""

    # Game lifecycle
    GAME_START = "game_start"
    GAME_END = "game_end"
    PHASE_CHANGE = "phase_change"
    WAITING_FOR_PLAYERS = "waiting_for_players"

    # Night
    NIGHT_STEP = "night_step"
    SEER_RESULT = "seer_result"
    DEATH_ANNOUNCEMENT = "death_announcement"
    PEACEFUL_NIGHT = "peaceful_night"

    # Speeches
    SPEAKER_CHANGE = "speaker_change"
    AWAIT_LEADER_CALL = "await_leader_call"
    LEADER_CALL = "leader_call"

    # Election
    ELECTION_STAGE = "election_stage"
    SHERIFF_ELECTED = "sheriff_elected"
    NO_SHERIFF = "no_sheriff"

    # Voting
    VOTE_RESULT = "vote_result"
    PK_START = "pk_start"
    PK_VOTE = "pk_vote"
    ELIMINATION = "elimination"
    PEACEFUL_DAY = "peaceful_day"

    # Interrupts
    BADGE_TRANSFER_PENDING = "badge_transfer_pending"
    BADGE_PASS = "badge_pass"
    BADGE_LOST = "badge_lost"
    HUNTER_SHOT_PENDING = "hunter_shot_pending"
    HUNTER_SHOT = "hunter_shot"
    HUNTER_SKIP = "hunter_skip"
    SELF_DESTRUCT = "self_destruct"


class GameEvent(BaseModel):
    """Immutable announcement emitted by a transition.

    Formatting and delivery belong to whoever consumes the event.
    """

    model_config = ConfigDict(frozen=True)

    event_type: EventType
    game_id: str
    round: int = Field(ge=1)
    phase: Phase
    seat: Optional[int] = Field(default=None, description="Seat the event is about")
    target_seat: Optional[int] = Field(default=None, description="Second seat involved, if any")
    data: dict[str, Any] = Field(default_factory=dict)
    public: bool = Field(default=True)
    visible_to: list[int] = Field(default_factory=list, description="Seats that may see a private event")
    timestamp: datetime = Field(default_factory=utcnow)


# =============================================================================
# Resolver results
# =============================================================================


class SeerResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    seer_seat: int
    target_seat: int
    camp: Camp


class NightResolution(BaseModel):
    """Outcome of one night's actions."""

    deaths: list[Death] = Field(default_factory=list)
    kill_target: Optional[int] = None
    kill_from_self_destruct: bool = False
    protected_seat: Optional[int] = None
    saved_seat: Optional[int] = None
    poisoned_seat: Optional[int] = None
    saved_through: bool = False
    seer_results: list[SeerResult] = Field(default_factory=list)

    @property
    def dead_seats(self) -> list[int]:
        return [d.seat for d in self.deaths]


class VoteResult(BaseModel):
    """Outcome of one tally."""

    vote_counts: dict[int, float] = Field(default_factory=dict)
    eliminated_seat: Optional[int] = None
    tied_seats: list[int] = Field(default_factory=list)

    @property
    def is_tie(self) -> bool:
        return len(self.tied_seats) > 1

    @property
    def is_empty(self) -> bool:
        return not self.vote_counts


class WinVerdict(BaseModel):
    winner: WinningTeam = WinningTeam.NONE
    reason: str = "game continues"

    @property
    def is_over(self) -> bool:
        return self.winner != WinningTeam.NONE
