from collections.abc import Iterable, Sequence
from typing import Optional

from .roles import (
    NIGHT_SKILL_ROLES,
    ActionType,
    Camp,
    DeathCause,
    Phase,
    Role,
    WinMode,
    WinningTeam,
)
from .state import (
    ActionRecord,
    AwaitLeaderCall,
    DaySpeaking,
    Death,
    ElectionPkSpeech,
    ElectionPkVote,
    ElectionSignup,
    ElectionSpeech,
    ElectionVote,
    GameRecord,
    NightResolution,
    NightStep,
    PkSpeech,
    PkVote,
    Player,
    RuleVariants,
    SeerResult,
    VoteResult,
    WinVerdict,
)
from nightfall.exceptions import InvalidActionError


def filter_actions(
    actions: Iterable[ActionRecord],
    round_number: Optional[int] = None,
    action_types: Optional[Iterable[ActionType]] = None,
    pk_round: Optional[int] = None,
) -> list[ActionRecord]:
    """Select actions by round, type and PK round, in submission order."""
    types = set(action_types) if action_types is not None else None
    selected = [
        a for a in actions
        if (round_number is None or a.round == round_number)
        and (types is None or a.action_type in types)
        and (pk_round is None or a.pk_round == pk_round)
    ]
    return sorted(selected, key=lambda a: a.sequence)


def _first(actions: Sequence[ActionRecord]) -> Optional[ActionRecord]:
    return actions[0] if actions else None


def _acted_by(record: GameRecord, actions: Iterable[ActionRecord], role: Role) -> list[ActionRecord]:
    """Keep only actions whose actor is alive and holds ``role``."""
    result = []
    for action in actions:
        actor = record.get_player(action.actor_seat)
        if actor and actor.alive and actor.role == role:
            result.append(action)
    return result


# =============================================================================
# Night
# =============================================================================


def compute_kill_target(
    record: GameRecord,
    round_actions: Sequence[ActionRecord],
    previous_round_actions: Sequence[ActionRecord] = (),
) -> tuple[Optional[int], bool]:
    """Work out who the wolves kill tonight.

    A self-destruct from the previous round that named a target overrides
    the vote. Otherwise the plurality of wolf kills wins, and ties go to the
    target whose first kill action was submitted earliest.

    Returns:
        Tuple of (target seat or None, whether it came from a self-destruct)
    """
    for action in filter_actions(previous_round_actions, action_types=[ActionType.SELF_DESTRUCT]):
        if action.target_seat is not None:
            return action.target_seat, True

    kills = _acted_by(
        record,
        filter_actions(round_actions, action_types=[ActionType.WOLF_KILL]),
        Role.WEREWOLF,
    )
    counts: dict[int, int] = {}
    first_seen: dict[int, int] = {}
    for action in kills:
        if action.target_seat is None:
            continue
        counts[action.target_seat] = counts.get(action.target_seat, 0) + 1
        first_seen.setdefault(action.target_seat, action.sequence)

    if not counts:
        return None, False

    top = max(counts.values())
    tied = [seat for seat, count in counts.items() if count == top]
    return min(tied, key=lambda seat: first_seen[seat]), False


def resolve_night_actions(
    record: GameRecord,
    round_actions: Sequence[ActionRecord],
    previous_round_actions: Sequence[ActionRecord] = (),
    rules: Optional[RuleVariants] = None,
) -> NightResolution:
    """Turn one night's recorded actions into deaths.

    Args:
        record: Game record as it stood when the night ended
        round_actions: Actions recorded during this round
        previous_round_actions: Actions from the previous round (self-destruct)
        rules: Rule variants; defaults apply when omitted

    Returns:
        NightResolution with the ordered death list
    """
    rules = rules or RuleVariants()
    resolution = NightResolution()

    # 1. Kill target
    kill_target, from_self_destruct = compute_kill_target(
        record, round_actions, previous_round_actions
    )
    resolution.kill_target = kill_target
    resolution.kill_from_self_destruct = from_self_destruct

    # 2. Defensive actions
    guard_action = _first(_acted_by(
        record, filter_actions(round_actions, action_types=[ActionType.GUARD_PROTECT]), Role.GUARD
    ))
    save_action = _first(_acted_by(
        record, filter_actions(round_actions, action_types=[ActionType.WITCH_SAVE]), Role.WITCH
    ))
    poison_action = _first(_acted_by(
        record, filter_actions(round_actions, action_types=[ActionType.WITCH_POISON]), Role.WITCH
    ))
    if guard_action:
        resolution.protected_seat = guard_action.target_seat
    if save_action:
        resolution.saved_seat = save_action.target_seat

    deaths: list[Death] = []

    # 3. Wolf kill, which never lands on a teammate unless self-knife is allowed
    target_player = record.get_player(kill_target)
    if (
        target_player is not None
        and target_player.alive
        and (target_player.camp != Camp.WEREWOLF or rules.allow_wolf_self_knife)
    ):
        is_protected = resolution.protected_seat == kill_target
        is_saved = resolution.saved_seat == kill_target

        if is_protected and is_saved:
            if rules.same_guard_same_save_kills:
                deaths.append(Death(seat=kill_target, cause=DeathCause.NONE))
                resolution.saved_through = True
        elif not (is_protected or is_saved):
            deaths.append(Death(seat=kill_target, cause=DeathCause.WOLF_KILL))

    # 4. Poison ignores protection
    if poison_action and poison_action.target_seat is not None:
        target = record.get_player(poison_action.target_seat)
        already_dead = target is None or not target.alive or any(d.seat == target.seat for d in deaths)
        if not already_dead and target.camp != Camp.WEREWOLF:
            deaths.append(Death(seat=target.seat, cause=DeathCause.POISON))
            resolution.poisoned_seat = target.seat

    # 5. Seer checks
    for action in _acted_by(
        record, filter_actions(round_actions, action_types=[ActionType.SEER_CHECK]), Role.SEER
    ):
        target = record.get_player(action.target_seat)
        if target:
            resolution.seer_results.append(SeerResult(
                seer_seat=action.actor_seat,
                target_seat=target.seat,
                camp=target.camp,
            ))

    resolution.deaths = deaths
    return resolution


# =============================================================================
# Votes
# =============================================================================


def tally_votes(
    record: GameRecord,
    votes: Iterable[ActionRecord],
    leader_seat: Optional[int] = None,
    leader_weight: float = 1.0,
    candidates: Optional[Sequence[int]] = None,
) -> dict[int, float]:
    """Count ballots from living voters for living targets.

    When ``candidates`` is given only votes for those seats count, and the
    candidates themselves cannot vote.
    """
    counts: dict[int, float] = {}
    for vote in sorted(votes, key=lambda v: v.sequence):
        if vote.target_seat is None:
            continue
        if not record.is_alive(vote.actor_seat) or not record.is_alive(vote.target_seat):
            continue
        if candidates is not None:
            if vote.actor_seat in candidates or vote.target_seat not in candidates:
                continue
        weight = leader_weight if leader_seat is not None and vote.actor_seat == leader_seat else 1.0
        counts[vote.target_seat] = counts.get(vote.target_seat, 0.0) + weight
    return counts


def resolve_vote(
    record: GameRecord,
    votes: Iterable[ActionRecord],
    leader_seat: Optional[int] = None,
    leader_weight: float = 1.0,
    candidates: Optional[Sequence[int]] = None,
) -> VoteResult:
    """Resolve one tally into an elimination, a tie, or nothing.

    Args:
        record: Current game record
        votes: Ballots for this (sub-)round
        leader_seat: Seat whose ballot is weighted, if any
        leader_weight: Weight of the leader's ballot
        candidates: Restrict to a PK candidate list

    Returns:
        VoteResult; ``is_empty`` when no ballot counted
    """
    counts = tally_votes(record, votes, leader_seat, leader_weight, candidates)
    if not counts:
        return VoteResult()

    top = max(counts.values())
    top_seats = sorted(seat for seat, count in counts.items() if count == top)

    if len(top_seats) == 1:
        return VoteResult(vote_counts=counts, eliminated_seat=top_seats[0])
    return VoteResult(vote_counts=counts, tied_seats=top_seats)


# =============================================================================
# Win condition
# =============================================================================


def check_win_condition(
    players: Sequence[Player],
    win_mode: WinMode = WinMode.PARITY,
) -> WinVerdict:
    """Check if a camp has won.

    The good camp wins once no werewolf is alive. The wolf camp wins once
    the good camp is empty, or on headcount parity, or (side elimination)
    once every villager or every special role is dead. Neutral players
    count for neither side.

    Args:
        players: Full roster including dead players
        win_mode: How the wolf camp wins

    Returns:
        WinVerdict with the winner and a reason
    """
    alive = [p for p in players if p.alive]
    wolves = [p for p in alive if p.camp == Camp.WEREWOLF]
    good = [p for p in alive if p.camp == Camp.GOOD]

    if not wolves:
        return WinVerdict(winner=WinningTeam.GOOD, reason="all werewolves eliminated")

    if not good:
        return WinVerdict(winner=WinningTeam.WEREWOLF, reason="good camp eliminated")

    match win_mode:
        case WinMode.CITY_ELIMINATION:
            return WinVerdict()
        case WinMode.SIDE_ELIMINATION:
            roster_has_villagers = any(p.role.is_villager and p.camp == Camp.GOOD for p in players)
            roster_has_specials = any(p.role.is_special and p.camp == Camp.GOOD for p in players)
            if roster_has_villagers and not any(p.role.is_villager for p in good):
                return WinVerdict(winner=WinningTeam.WEREWOLF, reason="all villagers eliminated")
            if roster_has_specials and not any(p.role.is_special for p in good):
                return WinVerdict(winner=WinningTeam.WEREWOLF, reason="all special roles eliminated")
        case WinMode.PARITY:
            pass

    if len(wolves) >= len(good):
        return WinVerdict(winner=WinningTeam.WEREWOLF, reason="werewolves reached parity")

    return WinVerdict()


def game_statistics(record: GameRecord, actions: Iterable[ActionRecord]) -> dict[str, int]:
    """Summary counters reported with the final verdict."""
    actions = list(actions)

    def count(action_type: ActionType) -> int:
        return sum(1 for a in actions if a.action_type == action_type)

    return {
        "total_rounds": record.round,
        "total_votes": count(ActionType.VOTE),
        "total_deaths": sum(1 for p in record.players if not p.alive),
        "wolf_kills": count(ActionType.WOLF_KILL),
        "witch_saves": count(ActionType.WITCH_SAVE),
        "witch_poisons": count(ActionType.WITCH_POISON),
        "guard_protects": count(ActionType.GUARD_PROTECT),
        "seer_checks": count(ActionType.SEER_CHECK),
    }


# =============================================================================
# Speaking order
# =============================================================================


def _rotate_after(seats: Sequence[int], pivot: int) -> list[int]:
    return [s for s in seats if s > pivot] + [s for s in seats if s <= pivot]


def compute_day_speech_order(
    record: GameRecord,
    dead_seats: Sequence[int] = (),
) -> list[int]:
    """Compute the day speaking order once, when day begins.

    1. With a living leader: start after the leader's seat, end on the leader.
    2. Else with deaths last night: start after the lowest dead seat.
    3. Else ascending on odd rounds, descending on even rounds.

    Only living seats are returned.
    """
    seats = sorted(p.seat for p in record.players)
    alive = set(record.alive_seats())

    if record.leader_seat is not None and record.leader_seat in alive:
        ordered = _rotate_after(seats, record.leader_seat)
    elif dead_seats:
        ordered = _rotate_after(seats, min(dead_seats))
    elif record.round % 2 == 1:
        ordered = seats
    else:
        ordered = list(reversed(seats))

    return [s for s in ordered if s in alive]


def next_speaker_index(
    order: Sequence[int],
    current_index: int,
    eligible: Iterable[int],
) -> Optional[int]:
    """Index of the next speaker after ``current_index`` still eligible to speak."""
    eligible = set(eligible)
    for index in range(current_index + 1, len(order)):
        if order[index] in eligible:
            return index
    return None


# =============================================================================
# Action validation
# =============================================================================


def current_pk_round(record: GameRecord) -> int:
    """PK round an incoming ballot belongs to (0 for a main vote)."""
    match record.election_state:
        case ElectionPkVote(pk_round=pk_round):
            return pk_round
    match record.voting_pk_state:
        case PkVote(pk_round=pk_round):
            return pk_round
    return 0


def current_speaker(record: GameRecord) -> Optional[int]:
    """Seat currently holding the floor, if any speech stage is active."""
    match record.phase:
        case Phase.DAY:
            if isinstance(record.day_speech_state, DaySpeaking):
                return record.day_speech_state.current_speaker
        case Phase.SHERIFF_CAMPAIGN:
            if isinstance(record.election_state, (ElectionSpeech, ElectionPkSpeech)):
                return record.election_state.current_speaker
        case Phase.VOTING:
            if isinstance(record.voting_pk_state, PkSpeech):
                return record.voting_pk_state.current_speaker
    return None


def election_candidates(record: GameRecord, actions: Iterable[ActionRecord]) -> list[int]:
    """Current candidates of the running election, after withdrawals."""
    state = record.election_state
    if not isinstance(state, (ElectionSpeech, ElectionVote, ElectionPkSpeech, ElectionPkVote)):
        return []
    withdrawn = {
        a.actor_seat
        for a in filter_actions(actions, record.round, [ActionType.SHERIFF_WITHDRAW])
    }
    return [s for s in state.candidates if s not in withdrawn and record.is_alive(s)]


def _has_submitted(
    actions: Iterable[ActionRecord],
    actor_seat: int,
    action_types: Iterable[ActionType],
    round_number: Optional[int] = None,
    pk_round: Optional[int] = None,
) -> bool:
    return any(
        a.actor_seat == actor_seat
        for a in filter_actions(actions, round_number, action_types, pk_round)
    )


def _require(condition: bool, reason: str, action_type: ActionType) -> None:
    if not condition:
        raise InvalidActionError(reason, action_type.value)


def _require_living_target(record: GameRecord, target_seat: Optional[int], action_type: ActionType) -> None:
    _require(target_seat is not None, "a target seat is required", action_type)
    _require(record.get_player(target_seat) is not None, f"seat {target_seat} does not exist", action_type)
    _require(record.is_alive(target_seat), f"seat {target_seat} is not alive", action_type)


def validate_action(
    record: GameRecord,
    actions: Sequence[ActionRecord],
    actor_seat: int,
    action_type: ActionType,
    target_seat: Optional[int] = None,
    night_steps: Sequence[NightStep] = (),
    rules: Optional[RuleVariants] = None,
) -> None:
    """Check an action against the current record before it is logged.

    Args:
        record: Current game record
        actions: Action log of the game so far
        actor_seat: Seat submitting the action
        action_type: Kind of action
        target_seat: Target seat, if the action takes one
        night_steps: Night steps of this match, already filtered to its roles
        rules: Rule variants; defaults apply when omitted

    Raises:
        InvalidActionError: The action is not allowed right now
    """
    rules = rules or RuleVariants()
    _require(not record.is_finished, "the game is over", action_type)

    actor = record.get_player(actor_seat)
    _require(actor is not None, f"seat {actor_seat} does not exist", action_type)

    # Dead leaders pass the badge and dead hunters shoot; everyone else must be alive.
    if action_type not in (ActionType.BADGE_PASS, ActionType.BADGE_TEAR, ActionType.HUNTER_SHOOT):
        _require(actor.alive, f"seat {actor_seat} is not alive", action_type)

    if action_type.is_night_skill:
        _validate_night_skill(record, actions, actor, action_type, target_seat, night_steps, rules)
        return

    match action_type:
        case ActionType.HUNTER_SHOOT:
            pending = record.pending_hunter_shot
            _require(
                record.phase == Phase.HUNTER_SHOT and pending is not None,
                "no hunter shot is pending",
                action_type,
            )
            _require(pending.hunter_seat == actor_seat, "only the dying hunter may shoot", action_type)
            _require(
                not _has_submitted(actions, actor_seat, [action_type], pending.round),
                "the hunter already acted",
                action_type,
            )
            if target_seat is not None:
                _require_living_target(record, target_seat, action_type)
                _require(target_seat != actor_seat, "the hunter cannot shoot themselves", action_type)

        case ActionType.SELF_DESTRUCT:
            _require(rules.allow_wolf_self_explode, "self-destruct is disabled", action_type)
            _require(actor.role == Role.WEREWOLF, "only werewolves may self-destruct", action_type)
            _require(
                current_speaker(record) == actor_seat and record.phase == Phase.DAY,
                "only the current day speaker may self-destruct",
                action_type,
            )
            if target_seat is not None:
                _require_living_target(record, target_seat, action_type)

        case ActionType.SHERIFF_SIGNUP:
            _require(
                record.phase == Phase.SHERIFF_CAMPAIGN
                and isinstance(record.election_state, ElectionSignup),
                "sign-up is closed",
                action_type,
            )
            _require(
                not _has_submitted(actions, actor_seat, [action_type], record.round),
                "already signed up",
                action_type,
            )

        case ActionType.SHERIFF_WITHDRAW:
            _require(
                record.phase == Phase.SHERIFF_CAMPAIGN
                and isinstance(record.election_state, (ElectionSpeech, ElectionPkSpeech)),
                "withdrawal is only allowed during campaign speeches",
                action_type,
            )
            _require(
                actor_seat in election_candidates(record, actions),
                "not a running candidate",
                action_type,
            )

        case ActionType.SHERIFF_VOTE:
            _require(
                record.phase == Phase.SHERIFF_CAMPAIGN
                and isinstance(record.election_state, (ElectionVote, ElectionPkVote)),
                "the sheriff vote is not open",
                action_type,
            )
            candidates = election_candidates(record, actions)
            _require(actor_seat not in candidates, "candidates cannot vote", action_type)
            _require(target_seat in candidates, f"seat {target_seat} is not a candidate", action_type)
            _require(
                not _has_submitted(actions, actor_seat, [action_type], record.round, current_pk_round(record)),
                "already voted",
                action_type,
            )

        case ActionType.VOTE:
            _require(record.phase == Phase.VOTING, "voting is not open", action_type)
            pk_state = record.voting_pk_state
            _require(not isinstance(pk_state, PkSpeech), "PK speeches are still running", action_type)
            _require_living_target(record, target_seat, action_type)
            _require(target_seat != actor_seat, "cannot vote for yourself", action_type)
            if isinstance(pk_state, PkVote):
                _require(actor_seat not in pk_state.candidates, "PK candidates cannot vote", action_type)
                _require(
                    target_seat in pk_state.candidates,
                    f"seat {target_seat} is not a PK candidate",
                    action_type,
                )
            _require(
                not _has_submitted(actions, actor_seat, [action_type], record.round, current_pk_round(record)),
                "already voted",
                action_type,
            )

        case ActionType.LEADER_CALL:
            _require(
                record.phase == Phase.DAY and isinstance(record.day_speech_state, AwaitLeaderCall),
                "the leader call window is not open",
                action_type,
            )
            _require(actor_seat == record.leader_seat, "only the leader may call a vote", action_type)
            _require_living_target(record, target_seat, action_type)
            _require(
                not _has_submitted(actions, actor_seat, [action_type], record.round),
                "the leader already called a vote",
                action_type,
            )

        case ActionType.BADGE_PASS | ActionType.BADGE_TEAR:
            pending = record.pending_badge_transfer
            _require(
                record.phase == Phase.SHERIFF_TRANSFER and pending is not None,
                "no badge transfer is pending",
                action_type,
            )
            _require(pending.dead_seat == actor_seat, "only the fallen leader holds the badge", action_type)
            _require(
                not _has_submitted(
                    actions, actor_seat, [ActionType.BADGE_PASS, ActionType.BADGE_TEAR], pending.round
                ),
                "the badge was already handed over",
                action_type,
            )
            if action_type == ActionType.BADGE_PASS:
                _require_living_target(record, target_seat, action_type)
                pending_dead = {d.seat for d in record.last_night_deaths}
                _require(
                    target_seat != actor_seat and target_seat not in pending_dead,
                    f"seat {target_seat} cannot receive the badge",
                    action_type,
                )

        case _:
            raise InvalidActionError("unsupported action", action_type.value)


def _current_night_step(record: GameRecord, night_steps: Sequence[NightStep]) -> Optional[NightStep]:
    if record.night_step is None or not night_steps:
        return None
    if record.night_step < len(night_steps):
        return night_steps[record.night_step]
    return None


def _validate_night_skill(
    record: GameRecord,
    actions: Sequence[ActionRecord],
    actor: Player,
    action_type: ActionType,
    target_seat: Optional[int],
    night_steps: Sequence[NightStep],
    rules: RuleVariants,
) -> None:
    _require(record.phase == Phase.NIGHT, "night actions are only allowed at night", action_type)
    _require(actor.role == NIGHT_SKILL_ROLES[action_type], f"{actor.role.value} cannot use this skill", action_type)

    step = _current_night_step(record, night_steps)
    if night_steps:
        _require(step is not None and step.allows(action_type), "not this role's night step", action_type)

    _require(
        not _has_submitted(actions, actor.seat, [action_type], record.round),
        "already acted this night",
        action_type,
    )
    _require_living_target(record, target_seat, action_type)
    target = record.get_player(target_seat)

    round_actions = filter_actions(actions, record.round)
    previous_actions = filter_actions(actions, record.round - 1) if record.round > 1 else []

    match action_type:
        case ActionType.WOLF_KILL:
            if target.camp == Camp.WEREWOLF:
                _require(rules.allow_wolf_self_knife, "werewolves cannot target a teammate", action_type)

        case ActionType.GUARD_PROTECT:
            if target_seat == actor.seat:
                _require(rules.guard_can_self_guard, "the guard cannot protect themselves", action_type)
            last_guard = _first(filter_actions(previous_actions, action_types=[ActionType.GUARD_PROTECT]))
            _require(
                last_guard is None or last_guard.target_seat != target_seat,
                "cannot protect the same seat two nights in a row",
                action_type,
            )

        case ActionType.SEER_CHECK:
            _require(target_seat != actor.seat, "the seer cannot check themselves", action_type)

        case ActionType.WITCH_SAVE | ActionType.WITCH_POISON:
            _require(
                not _has_submitted(actions, actor.seat, [action_type]),
                "that potion is already used",
                action_type,
            )
            other = ActionType.WITCH_POISON if action_type == ActionType.WITCH_SAVE else ActionType.WITCH_SAVE
            if not rules.witch_can_use_both_potions:
                _require(
                    not _has_submitted(round_actions, actor.seat, [other], record.round),
                    "only one potion per night",
                    action_type,
                )
            if action_type == ActionType.WITCH_SAVE:
                kill_target, _ = compute_kill_target(record, round_actions, previous_actions)
                _require(kill_target == target_seat, "the save potion only works on the kill target", action_type)
                if target_seat == actor.seat:
                    can_self_heal = (
                        rules.witch_can_self_heal_n1 if record.round == 1 else rules.witch_can_self_heal
                    )
                    _require(can_self_heal, "the witch cannot save herself tonight", action_type)
