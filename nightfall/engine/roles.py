from enum import Enum
from typing import Mapping, Optional


class Role(str, Enum):
    """Game roles."""

    WEREWOLF = "werewolf"
    VILLAGER = "villager"
    SEER = "seer"
    WITCH = "witch"
    HUNTER = "hunter"
    GUARD = "guard"
    IDIOT = "idiot"

    @property
    def is_special(self) -> bool:
        """True for non-basic good roles (the "gods")."""
        return self in {
            Role.SEER,
            Role.WITCH,
            Role.HUNTER,
            Role.GUARD,
            Role.IDIOT,
        }

    @property
    def is_villager(self) -> bool:
        return self == Role.VILLAGER


class Camp(str, Enum):
    """Win-condition faction."""

    WEREWOLF = "werewolf"
    GOOD = "good"
    NEUTRAL = "neutral"

    @classmethod
    def from_role(
        cls,
        role: Role,
        role_to_camp: Optional[Mapping[str, "Camp"]] = None,
    ) -> "Camp":
        if role_to_camp:
            camp = role_to_camp.get(role.value)
            if camp is not None:
                return Camp(camp)
        return BUILTIN_ROLE_TO_CAMP[role]


class Phase(str, Enum):
    """Top-level game phases."""

    WAITING = "waiting"
    NIGHT = "night"
    SHERIFF_CAMPAIGN = "sheriff_campaign"
    DAY = "day"
    VOTING = "voting"
    HUNTER_SHOT = "hunter_shot"
    SHERIFF_TRANSFER = "sheriff_transfer"
    FINISHED = "finished"


class WinningTeam(str, Enum):
    GOOD = "good"
    WEREWOLF = "wolf"
    NONE = "none"


class WinMode(str, Enum):
    """How the wolf camp wins.

    PARITY: good camp wiped, or living wolves >= living good players.
    SIDE_ELIMINATION: PARITY, or every villager / every special role dead.
    CITY_ELIMINATION: only when the whole good camp is dead.
    """

    PARITY = "parity"
    SIDE_ELIMINATION = "side_elimination"
    CITY_ELIMINATION = "city_elimination"


class PkNoVotePolicy(str, Enum):
    """What a PK vote with zero eligible ballots resolves to."""

    PEACEFUL_DAY = "peaceful_day"
    RERUN_PK = "rerun_pk"


class DeathCause(str, Enum):
    WOLF_KILL = "wolf_kill"
    POISON = "poison"
    # Guard and save on the same kill target: the target dies anyway.
    NONE = "none"
    VOTE = "vote"
    HUNTER_SHOT = "hunter_shot"
    SELF_DESTRUCT = "self_destruct"


class ActionType(str, Enum):
    """Recorded player actions.

    Night action values double as the skill codes used by night steps.
    """

    GUARD_PROTECT = "guard_protect"
    WOLF_KILL = "werewolf_kill"
    SEER_CHECK = "seer_check"
    WITCH_SAVE = "witch_save"
    WITCH_POISON = "witch_poison"
    HUNTER_SHOOT = "hunter_shoot"
    SELF_DESTRUCT = "werewolf_self_explode"

    SHERIFF_SIGNUP = "sheriff_signup"
    SHERIFF_WITHDRAW = "sheriff_withdraw"
    SHERIFF_VOTE = "sheriff_vote"

    VOTE = "vote"
    LEADER_CALL = "leader_call"
    BADGE_PASS = "badge_pass"
    BADGE_TEAR = "badge_tear"

    @property
    def is_night_skill(self) -> bool:
        return self in NIGHT_SKILL_ROLES


BUILTIN_ROLE_TO_CAMP: dict[Role, Camp] = {
    Role.WEREWOLF: Camp.WEREWOLF,
    Role.VILLAGER: Camp.GOOD,
    Role.SEER: Camp.GOOD,
    Role.WITCH: Camp.GOOD,
    Role.HUNTER: Camp.GOOD,
    Role.GUARD: Camp.GOOD,
    Role.IDIOT: Camp.GOOD,
}

# Night skill -> role allowed to use it
NIGHT_SKILL_ROLES: dict[ActionType, Role] = {
    ActionType.GUARD_PROTECT: Role.GUARD,
    ActionType.WOLF_KILL: Role.WEREWOLF,
    ActionType.SEER_CHECK: Role.SEER,
    ActionType.WITCH_SAVE: Role.WITCH,
    ActionType.WITCH_POISON: Role.WITCH,
}

ROLE_SKILL_CODES: dict[Role, list[str]] = {
    Role.GUARD: [ActionType.GUARD_PROTECT.value],
    Role.WEREWOLF: [ActionType.WOLF_KILL.value],
    Role.SEER: [ActionType.SEER_CHECK.value],
    Role.WITCH: [ActionType.WITCH_SAVE.value, ActionType.WITCH_POISON.value],
    Role.HUNTER: [ActionType.HUNTER_SHOOT.value],
}
