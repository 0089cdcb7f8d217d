"""Unit tests for the deterministic resolvers.

Tests cover:
- Wolf kill target selection (plurality, ties, self-destruct override)
- Night resolution: guard / witch save / poison interactions
- Vote tallying with leader weight and PK candidate restriction
- Win condition evaluation for every win mode
- Day speaking order
- Action validation
"""

import pytest

from nightfall.engine import (
    ActionType,
    Camp,
    DeathCause,
    Phase,
    Role,
    WinMode,
    WinningTeam,
    check_win_condition,
    compute_day_speech_order,
    compute_kill_target,
    game_statistics,
    resolve_night_actions,
    resolve_vote,
    validate_action,
)
from nightfall.engine.state import (
    AwaitLeaderCall,
    DaySpeaking,
    Death,
    PendingBadgeTransfer,
    PkVote,
    Player,
    RuleVariants,
)
from nightfall.exceptions import InvalidActionError

THREE_WOLVES = [
    Role.WEREWOLF,
    Role.WEREWOLF,
    Role.WEREWOLF,
    Role.SEER,
    Role.WITCH,
    Role.GUARD,
    Role.VILLAGER,
    Role.VILLAGER,
]


def kill(record, *seats):
    for seat in seats:
        record.get_player(seat).alive = False
    return record


# =============================================================================
# Kill target
# =============================================================================


class TestKillTarget:
    def test_plurality_wins(self, build_record, build_action):
        record = build_record(THREE_WOLVES)
        actions = [
            build_action(1, ActionType.WOLF_KILL, 5),
            build_action(2, ActionType.WOLF_KILL, 7),
            build_action(3, ActionType.WOLF_KILL, 5),
        ]
        assert compute_kill_target(record, actions) == (5, False)

    def test_tie_goes_to_first_submitted(self, build_record, build_action):
        record = build_record(THREE_WOLVES)
        actions = [
            build_action(1, ActionType.WOLF_KILL, 7),
            build_action(2, ActionType.WOLF_KILL, 5),
        ]
        assert compute_kill_target(record, actions) == (7, False)

    def test_dead_wolf_is_ignored(self, build_record, build_action):
        record = kill(build_record(THREE_WOLVES), 1)
        actions = [
            build_action(1, ActionType.WOLF_KILL, 7),
            build_action(1, ActionType.WOLF_KILL, 7),
            build_action(2, ActionType.WOLF_KILL, 5),
        ]
        assert compute_kill_target(record, actions) == (5, False)

    def test_non_wolf_kill_actions_are_ignored(self, build_record, build_action):
        record = build_record(THREE_WOLVES)
        actions = [build_action(4, ActionType.WOLF_KILL, 7)]
        assert compute_kill_target(record, actions) == (None, False)

    def test_self_destruct_target_overrides(self, build_record, build_action):
        record = build_record(THREE_WOLVES, round_number=2)
        previous = [build_action(1, ActionType.SELF_DESTRUCT, 4, round_number=1, phase=Phase.DAY)]
        actions = [
            build_action(2, ActionType.WOLF_KILL, 7, round_number=2),
            build_action(3, ActionType.WOLF_KILL, 7, round_number=2),
        ]
        assert compute_kill_target(record, actions, previous) == (4, True)

    def test_self_destruct_without_target_does_not_override(self, build_record, build_action):
        record = build_record(THREE_WOLVES, round_number=2)
        previous = [build_action(1, ActionType.SELF_DESTRUCT, None, round_number=1, phase=Phase.DAY)]
        actions = [build_action(2, ActionType.WOLF_KILL, 7, round_number=2)]
        assert compute_kill_target(record, actions, previous) == (7, False)


# =============================================================================
# Night resolution
# =============================================================================


class TestNightResolution:
    def test_unprotected_kill(self, build_record, build_action):
        record = build_record()
        result = resolve_night_actions(record, [build_action(1, ActionType.WOLF_KILL, 7)])
        assert result.deaths == [Death(seat=7, cause=DeathCause.WOLF_KILL)]

    def test_guard_blocks_kill(self, build_record, build_action):
        record = build_record()
        actions = [
            build_action(5, ActionType.GUARD_PROTECT, 3),
            build_action(1, ActionType.WOLF_KILL, 3),
        ]
        result = resolve_night_actions(record, actions)
        assert result.deaths == []
        assert result.protected_seat == 3

    def test_witch_save_blocks_kill(self, build_record, build_action):
        record = build_record()
        actions = [
            build_action(1, ActionType.WOLF_KILL, 3),
            build_action(4, ActionType.WITCH_SAVE, 3),
        ]
        result = resolve_night_actions(record, actions)
        assert result.deaths == []
        assert result.saved_seat == 3

    def test_guard_and_save_on_same_target_kills(self, build_record, build_action):
        record = build_record()
        actions = [
            build_action(5, ActionType.GUARD_PROTECT, 3),
            build_action(1, ActionType.WOLF_KILL, 3),
            build_action(4, ActionType.WITCH_SAVE, 3),
        ]
        result = resolve_night_actions(record, actions)
        assert result.deaths == [Death(seat=3, cause=DeathCause.NONE)]
        assert result.saved_through

    def test_guard_and_save_survives_when_variant_off(self, build_record, build_action):
        record = build_record()
        actions = [
            build_action(5, ActionType.GUARD_PROTECT, 3),
            build_action(1, ActionType.WOLF_KILL, 3),
            build_action(4, ActionType.WITCH_SAVE, 3),
        ]
        rules = RuleVariants(same_guard_same_save_kills=False)
        result = resolve_night_actions(record, actions, rules=rules)
        assert result.deaths == []
        assert not result.saved_through

    def test_poison_ignores_guard(self, build_record, build_action):
        record = build_record()
        actions = [
            build_action(5, ActionType.GUARD_PROTECT, 8),
            build_action(1, ActionType.WOLF_KILL, 7),
            build_action(4, ActionType.WITCH_POISON, 8),
        ]
        result = resolve_night_actions(record, actions)
        assert result.deaths == [
            Death(seat=7, cause=DeathCause.WOLF_KILL),
            Death(seat=8, cause=DeathCause.POISON),
        ]
        assert result.poisoned_seat == 8

    def test_poison_on_wolf_has_no_effect(self, build_record, build_action):
        record = build_record()
        actions = [build_action(4, ActionType.WITCH_POISON, 1)]
        result = resolve_night_actions(record, actions)
        assert result.deaths == []
        assert result.poisoned_seat is None

    def test_poison_on_kill_target_counts_once(self, build_record, build_action):
        record = build_record()
        actions = [
            build_action(1, ActionType.WOLF_KILL, 7),
            build_action(4, ActionType.WITCH_POISON, 7),
        ]
        result = resolve_night_actions(record, actions)
        assert result.dead_seats == [7]

    def test_no_kill_is_peaceful(self, build_record):
        result = resolve_night_actions(build_record(), [])
        assert result.deaths == []
        assert result.kill_target is None

    def test_seer_sees_camp(self, build_record, build_action):
        record = build_record()
        result = resolve_night_actions(record, [build_action(3, ActionType.SEER_CHECK, 1)])
        assert len(result.seer_results) == 1
        assert result.seer_results[0].target_seat == 1
        assert result.seer_results[0].camp == Camp.WEREWOLF

    def test_self_destruct_target_dies_at_night(self, build_record, build_action):
        record = build_record(round_number=2)
        previous = [build_action(1, ActionType.SELF_DESTRUCT, 6, round_number=1, phase=Phase.DAY)]
        result = resolve_night_actions(record, [], previous)
        assert result.deaths == [Death(seat=6, cause=DeathCause.WOLF_KILL)]
        assert result.kill_from_self_destruct

    def test_kill_on_teammate_is_void(self, build_record, build_action):
        record = build_record(round_number=2)
        previous = [build_action(1, ActionType.SELF_DESTRUCT, 2, round_number=1, phase=Phase.DAY)]
        assert resolve_night_actions(record, [], previous).deaths == []
        assert resolve_night_actions(record, [build_action(1, ActionType.WOLF_KILL, 2)]).deaths == []

    def test_self_knife_variant_kills_teammate(self, build_record, build_action):
        record = build_record()
        result = resolve_night_actions(
            record, [build_action(1, ActionType.WOLF_KILL, 2)], rules=RuleVariants(allow_wolf_self_knife=True)
        )
        assert result.deaths == [Death(seat=2, cause=DeathCause.WOLF_KILL)]


# =============================================================================
# Votes
# =============================================================================


class TestVoteResolution:
    def test_single_top_seat_is_eliminated(self, build_record, build_action):
        record = build_record(phase=Phase.VOTING)
        votes = [
            build_action(1, ActionType.VOTE, 7, phase=Phase.VOTING),
            build_action(2, ActionType.VOTE, 7, phase=Phase.VOTING),
            build_action(3, ActionType.VOTE, 8, phase=Phase.VOTING),
        ]
        result = resolve_vote(record, votes)
        assert result.eliminated_seat == 7
        assert not result.is_tie

    def test_tie_lists_tied_seats(self, build_record, build_action):
        record = build_record(phase=Phase.VOTING)
        votes = [
            build_action(1, ActionType.VOTE, 7, phase=Phase.VOTING),
            build_action(2, ActionType.VOTE, 7, phase=Phase.VOTING),
            build_action(3, ActionType.VOTE, 8, phase=Phase.VOTING),
            build_action(4, ActionType.VOTE, 8, phase=Phase.VOTING),
            build_action(5, ActionType.VOTE, 3, phase=Phase.VOTING),
        ]
        result = resolve_vote(record, votes)
        assert result.is_tie
        assert result.tied_seats == [7, 8]
        assert result.eliminated_seat is None
        assert result.vote_counts == {7: 2.0, 8: 2.0, 3: 1.0}

    def test_leader_vote_is_weighted(self, build_record, build_action):
        record = build_record(phase=Phase.VOTING)
        votes = [
            build_action(1, ActionType.VOTE, 7, phase=Phase.VOTING),
            build_action(3, ActionType.VOTE, 8, phase=Phase.VOTING),
        ]
        result = resolve_vote(record, votes, leader_seat=3, leader_weight=1.5)
        assert result.vote_counts == {7: 1.0, 8: 1.5}
        assert result.eliminated_seat == 8

    def test_dead_voters_and_targets_do_not_count(self, build_record, build_action):
        record = kill(build_record(phase=Phase.VOTING), 2, 8)
        votes = [
            build_action(1, ActionType.VOTE, 7, phase=Phase.VOTING),
            build_action(2, ActionType.VOTE, 3, phase=Phase.VOTING),
            build_action(3, ActionType.VOTE, 8, phase=Phase.VOTING),
        ]
        result = resolve_vote(record, votes)
        assert result.vote_counts == {7: 1.0}

    def test_pk_candidates_cannot_vote(self, build_record, build_action):
        record = build_record(phase=Phase.VOTING)
        votes = [
            build_action(7, ActionType.VOTE, 8, phase=Phase.VOTING, pk_round=1),
            build_action(1, ActionType.VOTE, 3, phase=Phase.VOTING, pk_round=1),
            build_action(2, ActionType.VOTE, 7, phase=Phase.VOTING, pk_round=1),
        ]
        result = resolve_vote(record, votes, candidates=[7, 8])
        assert result.vote_counts == {7: 1.0}
        assert result.eliminated_seat == 7

    def test_no_votes_is_empty(self, build_record):
        result = resolve_vote(build_record(phase=Phase.VOTING), [])
        assert result.is_empty
        assert result.eliminated_seat is None


# =============================================================================
# Win conditions
# =============================================================================


class TestWinConditions:
    def test_no_wolves_means_good_wins(self, build_record):
        record = kill(build_record(), 1, 2)
        verdict = check_win_condition(record.players)
        assert verdict.winner == WinningTeam.GOOD

    def test_wolves_at_parity_win(self):
        players = [
            Player(seat=1, role=Role.WEREWOLF),
            Player(seat=2, role=Role.WEREWOLF),
            Player(seat=3, role=Role.WEREWOLF),
            Player(seat=4, role=Role.VILLAGER),
            Player(seat=5, role=Role.SEER),
        ]
        verdict = check_win_condition(players)
        assert verdict.winner == WinningTeam.WEREWOLF
        assert verdict.is_over

    def test_wolves_below_parity_continue(self):
        players = [
            Player(seat=1, role=Role.WEREWOLF),
            Player(seat=2, role=Role.WEREWOLF),
            Player(seat=3, role=Role.VILLAGER),
            Player(seat=4, role=Role.VILLAGER),
            Player(seat=5, role=Role.SEER),
        ]
        verdict = check_win_condition(players)
        assert verdict.winner == WinningTeam.NONE
        assert not verdict.is_over

    def test_side_elimination_all_villagers_dead(self, build_record):
        record = kill(build_record(), 7, 8)
        assert check_win_condition(record.players, WinMode.PARITY).winner == WinningTeam.NONE
        verdict = check_win_condition(record.players, WinMode.SIDE_ELIMINATION)
        assert verdict.winner == WinningTeam.WEREWOLF
        assert verdict.reason == "all villagers eliminated"

    def test_side_elimination_all_specials_dead(self, build_record):
        record = kill(build_record(), 3, 4, 5, 6)
        verdict = check_win_condition(record.players, WinMode.SIDE_ELIMINATION)
        assert verdict.winner == WinningTeam.WEREWOLF
        assert verdict.reason == "all special roles eliminated"

    def test_city_elimination_ignores_parity(self):
        players = [
            Player(seat=1, role=Role.WEREWOLF),
            Player(seat=2, role=Role.WEREWOLF),
            Player(seat=3, role=Role.VILLAGER),
        ]
        assert check_win_condition(players, WinMode.CITY_ELIMINATION).winner == WinningTeam.NONE

    def test_good_camp_empty_wins_in_every_mode(self):
        players = [
            Player(seat=1, role=Role.WEREWOLF),
            Player(seat=2, role=Role.VILLAGER, alive=False),
        ]
        for mode in WinMode:
            assert check_win_condition(players, mode).winner == WinningTeam.WEREWOLF

    def test_neutral_players_count_for_neither_side(self):
        players = [
            Player(seat=1, role=Role.WEREWOLF),
            Player(seat=2, role=Role.VILLAGER),
            Player(seat=3, role=Role.VILLAGER),
            Player(seat=4, role=Role.IDIOT, camp=Camp.NEUTRAL),
        ]
        assert check_win_condition(players).winner == WinningTeam.NONE
        players[1].alive = False
        assert check_win_condition(players).winner == WinningTeam.WEREWOLF

    def test_statistics_count_actions(self, build_record, build_action):
        record = kill(build_record(round_number=2), 7)
        actions = [
            build_action(1, ActionType.WOLF_KILL, 7),
            build_action(3, ActionType.SEER_CHECK, 1),
            build_action(1, ActionType.VOTE, 8, phase=Phase.VOTING),
        ]
        stats = game_statistics(record, actions)
        assert stats["total_rounds"] == 2
        assert stats["total_deaths"] == 1
        assert stats["wolf_kills"] == 1
        assert stats["seer_checks"] == 1
        assert stats["total_votes"] == 1


# =============================================================================
# Day speaking order
# =============================================================================


class TestDaySpeechOrder:
    def test_leader_speaks_last(self, build_record):
        record = build_record(phase=Phase.DAY, leader_seat=3)
        assert compute_day_speech_order(record) == [4, 5, 6, 7, 8, 1, 2, 3]

    def test_starts_after_lowest_dead_seat(self, build_record):
        record = kill(build_record(phase=Phase.DAY), 2, 5)
        assert compute_day_speech_order(record, [5, 2]) == [3, 4, 6, 7, 8, 1]

    def test_dead_leader_falls_back_to_deaths(self, build_record):
        record = kill(build_record(phase=Phase.DAY, leader_seat=6), 6)
        assert compute_day_speech_order(record, [6]) == [7, 8, 1, 2, 3, 4, 5]

    def test_peaceful_odd_round_ascends(self, build_record):
        record = build_record(phase=Phase.DAY, round_number=1)
        assert compute_day_speech_order(record) == [1, 2, 3, 4, 5, 6, 7, 8]

    def test_peaceful_even_round_descends(self, build_record):
        record = build_record(phase=Phase.DAY, round_number=2)
        assert compute_day_speech_order(record) == [8, 7, 6, 5, 4, 3, 2, 1]


# =============================================================================
# Action validation
# =============================================================================


class TestActionValidation:
    def test_night_skill_outside_its_step(self, build_record, flow):
        record = build_record(night_step=0)
        with pytest.raises(InvalidActionError):
            validate_action(record, [], 1, ActionType.WOLF_KILL, 7, flow.night_steps_for(record.roles_present))

    def test_night_skill_in_its_step(self, build_record, flow):
        record = build_record(night_step=1)
        validate_action(record, [], 1, ActionType.WOLF_KILL, 7, flow.night_steps_for(record.roles_present))

    def test_wrong_role(self, build_record, flow):
        record = build_record(night_step=1)
        with pytest.raises(InvalidActionError) as exc_info:
            validate_action(record, [], 3, ActionType.WOLF_KILL, 7, flow.night_steps_for(record.roles_present))
        assert exc_info.value.action_type == "werewolf_kill"

    def test_dead_actor(self, build_record, flow):
        record = kill(build_record(night_step=1), 1)
        with pytest.raises(InvalidActionError):
            validate_action(record, [], 1, ActionType.WOLF_KILL, 7, flow.night_steps_for(record.roles_present))

    def test_one_action_per_round(self, build_record, build_action, flow):
        record = build_record(night_step=1)
        actions = [build_action(1, ActionType.WOLF_KILL, 7)]
        with pytest.raises(InvalidActionError):
            validate_action(record, actions, 1, ActionType.WOLF_KILL, 8, flow.night_steps_for(record.roles_present))

    def test_wolves_cannot_target_teammates(self, build_record, flow):
        record = build_record(night_step=1)
        steps = flow.night_steps_for(record.roles_present)
        with pytest.raises(InvalidActionError, match="teammate"):
            validate_action(record, [], 1, ActionType.WOLF_KILL, 2, steps)

    def test_wolf_self_knife_variant(self, build_record, flow):
        record = build_record(night_step=1)
        steps = flow.night_steps_for(record.roles_present)
        validate_action(
            record, [], 1, ActionType.WOLF_KILL, 2, steps, RuleVariants(allow_wolf_self_knife=True)
        )

    def test_guard_cannot_repeat_target(self, build_record, build_action, flow):
        record = build_record(round_number=2, night_step=0)
        steps = flow.night_steps_for(record.roles_present)
        actions = [build_action(5, ActionType.GUARD_PROTECT, 3, round_number=1)]
        with pytest.raises(InvalidActionError):
            validate_action(record, actions, 5, ActionType.GUARD_PROTECT, 3, steps)
        validate_action(record, actions, 5, ActionType.GUARD_PROTECT, 4, steps)

    def test_witch_saves_only_kill_target(self, build_record, build_action, flow):
        record = build_record(night_step=3)
        steps = flow.night_steps_for(record.roles_present)
        actions = [build_action(1, ActionType.WOLF_KILL, 7)]
        with pytest.raises(InvalidActionError):
            validate_action(record, actions, 4, ActionType.WITCH_SAVE, 8, steps)
        validate_action(record, actions, 4, ActionType.WITCH_SAVE, 7, steps)

    def test_witch_potion_used_once_per_game(self, build_record, build_action, flow):
        record = build_record(round_number=2, night_step=3)
        steps = flow.night_steps_for(record.roles_present)
        actions = [
            build_action(4, ActionType.WITCH_POISON, 8, round_number=1),
        ]
        with pytest.raises(InvalidActionError):
            validate_action(record, actions, 4, ActionType.WITCH_POISON, 7, steps)

    def test_witch_one_potion_per_night(self, build_record, build_action, flow):
        record = build_record(night_step=3)
        steps = flow.night_steps_for(record.roles_present)
        actions = [
            build_action(1, ActionType.WOLF_KILL, 7),
            build_action(4, ActionType.WITCH_SAVE, 7),
        ]
        with pytest.raises(InvalidActionError):
            validate_action(record, actions, 4, ActionType.WITCH_POISON, 8, steps)
        validate_action(
            record, actions, 4, ActionType.WITCH_POISON, 8, steps, RuleVariants(witch_can_use_both_potions=True)
        )

    def test_vote_only_while_voting(self, build_record):
        record = build_record(phase=Phase.DAY)
        with pytest.raises(InvalidActionError):
            validate_action(record, [], 1, ActionType.VOTE, 7)

    def test_vote_once_per_round(self, build_record, build_action):
        record = build_record(phase=Phase.VOTING)
        validate_action(record, [], 1, ActionType.VOTE, 7)
        actions = [build_action(1, ActionType.VOTE, 7, phase=Phase.VOTING)]
        with pytest.raises(InvalidActionError):
            validate_action(record, actions, 1, ActionType.VOTE, 8)

    def test_cannot_vote_for_self(self, build_record):
        record = build_record(phase=Phase.VOTING)
        with pytest.raises(InvalidActionError, match="yourself"):
            validate_action(record, [], 3, ActionType.VOTE, 3)

    def test_pk_vote_restricted_to_candidates(self, build_record):
        record = build_record(phase=Phase.VOTING, voting_pk_state=PkVote(pk_round=1, candidates=[7, 8]))
        with pytest.raises(InvalidActionError):
            validate_action(record, [], 7, ActionType.VOTE, 8)
        with pytest.raises(InvalidActionError):
            validate_action(record, [], 1, ActionType.VOTE, 3)
        validate_action(record, [], 1, ActionType.VOTE, 8)

    def test_leader_call_only_by_leader(self, build_record):
        record = build_record(phase=Phase.DAY, leader_seat=3, day_speech_state=AwaitLeaderCall())
        with pytest.raises(InvalidActionError):
            validate_action(record, [], 4, ActionType.LEADER_CALL, 7)
        validate_action(record, [], 3, ActionType.LEADER_CALL, 7)

    def test_dead_leader_passes_badge(self, build_record):
        record = kill(
            build_record(
                phase=Phase.SHERIFF_TRANSFER,
                leader_seat=3,
                pending_badge_transfer=PendingBadgeTransfer(dead_seat=3, origin_phase=Phase.VOTING, round=1),
            ),
            3,
        )
        validate_action(record, [], 3, ActionType.BADGE_PASS, 4)
        validate_action(record, [], 3, ActionType.BADGE_TEAR)
        with pytest.raises(InvalidActionError):
            validate_action(record, [], 4, ActionType.BADGE_PASS, 5)
        with pytest.raises(InvalidActionError):
            validate_action(record, [], 3, ActionType.BADGE_PASS, 3)

    def test_self_destruct_by_current_speaker_only(self, build_record):
        record = build_record(phase=Phase.DAY, day_speech_state=DaySpeaking(order=[1, 2, 3], speaker_index=0))
        validate_action(record, [], 1, ActionType.SELF_DESTRUCT)
        with pytest.raises(InvalidActionError):
            validate_action(record, [], 2, ActionType.SELF_DESTRUCT)

    def test_self_destruct_disabled(self, build_record):
        record = build_record(phase=Phase.DAY, day_speech_state=DaySpeaking(order=[1, 2, 3], speaker_index=0))
        with pytest.raises(InvalidActionError):
            validate_action(
                record, [], 1, ActionType.SELF_DESTRUCT, rules=RuleVariants(allow_wolf_self_explode=False)
            )

    def test_no_actions_after_game_end(self, build_record):
        record = build_record(phase=Phase.FINISHED)
        with pytest.raises(InvalidActionError):
            validate_action(record, [], 1, ActionType.VOTE, 7)
