"""Game model and deterministic resolvers."""

from nightfall.engine.roles import (
    BUILTIN_ROLE_TO_CAMP,
    NIGHT_SKILL_ROLES,
    ROLE_SKILL_CODES,
    ActionType,
    Camp,
    DeathCause,
    Phase,
    PkNoVotePolicy,
    Role,
    WinMode,
    WinningTeam,
)
from nightfall.engine.rules import (
    check_win_condition,
    compute_day_speech_order,
    compute_kill_target,
    current_pk_round,
    current_speaker,
    election_candidates,
    filter_actions,
    game_statistics,
    resolve_night_actions,
    resolve_vote,
    tally_votes,
    validate_action,
)
from nightfall.engine.state import (
    ActionRecord,
    AwaitLeaderCall,
    DaySpeaking,
    Death,
    ElectionDone,
    ElectionPkSpeech,
    ElectionPkVote,
    ElectionSignup,
    ElectionSpeech,
    ElectionVote,
    EventType,
    GameEvent,
    GameRecord,
    NightResolution,
    NightStep,
    PendingBadgeTransfer,
    PendingHunterShot,
    PkSpeech,
    PkVote,
    Player,
    RuleVariants,
    Schedule,
    SeerResult,
    VoteResult,
    WinVerdict,
    utcnow,
)

__all__ = [
    "BUILTIN_ROLE_TO_CAMP",
    "NIGHT_SKILL_ROLES",
    "ROLE_SKILL_CODES",
    "ActionRecord",
    "ActionType",
    "AwaitLeaderCall",
    "Camp",
    "DaySpeaking",
    "Death",
    "DeathCause",
    "ElectionDone",
    "ElectionPkSpeech",
    "ElectionPkVote",
    "ElectionSignup",
    "ElectionSpeech",
    "ElectionVote",
    "EventType",
    "GameEvent",
    "GameRecord",
    "NightResolution",
    "NightStep",
    "PendingBadgeTransfer",
    "PendingHunterShot",
    "Phase",
    "PkNoVotePolicy",
    "PkSpeech",
    "PkVote",
    "Player",
    "Role",
    "RuleVariants",
    "Schedule",
    "SeerResult",
    "VoteResult",
    "WinMode",
    "WinVerdict",
    "WinningTeam",
    "check_win_condition",
    "compute_day_speech_order",
    "compute_kill_target",
    "current_pk_round",
    "current_speaker",
    "election_candidates",
    "filter_actions",
    "game_statistics",
    "resolve_night_actions",
    "resolve_vote",
    "tally_votes",
    "utcnow",
    "validate_action",
]
