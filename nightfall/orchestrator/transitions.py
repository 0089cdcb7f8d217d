"""The phase transition table.

``PhaseMachine`` is the pure decision function behind ``advance``: given a
claimed record, the action log, the flow configuration and the current
time, it computes the next record (including its next deadline) and the
events to announce. It performs no I/O.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional, assert_never

from nightfall.config.flow import FlowConfig
from nightfall.engine.roles import ActionType, DeathCause, Phase, PkNoVotePolicy, Role
from nightfall.engine.rules import (
    check_win_condition,
    compute_day_speech_order,
    filter_actions,
    game_statistics,
    next_speaker_index,
    resolve_night_actions,
    resolve_vote,
)
from nightfall.engine.state import (
    ActionRecord,
    AwaitLeaderCall,
    DaySpeaking,
    ElectionDone,
    EventType,
    GameEvent,
    GameRecord,
    NightStep,
    PendingBadgeTransfer,
    PendingHunterShot,
    PkSpeech,
    PkVote,
    Schedule,
    VoteResult,
)
from nightfall.orchestrator.election import ElectionMachine

logger = logging.getLogger(__name__)

# Causes under which a dying hunter still fires (poison is governed by a rule variant).
HUNTER_SHOT_CAUSES = {DeathCause.WOLF_KILL, DeathCause.NONE, DeathCause.VOTE}


@dataclass
class Transition:
    record: GameRecord
    events: list[GameEvent] = field(default_factory=list)

    @property
    def next_deadline(self) -> datetime:
        return self.record.schedule.next_deadline


class PhaseMachine:
    def __init__(
        self,
        record: GameRecord,
        actions: Sequence[ActionRecord],
        flow: FlowConfig,
        now: datetime,
    ):
        self.record = record.model_copy(deep=True)
        self.actions = sorted(actions, key=lambda a: a.sequence)
        self.flow = flow
        self.rules = flow.rule_variants
        self.durations = flow.durations
        self.now = now
        self.events: list[GameEvent] = []
        self._next_deadline: Optional[datetime] = None

    def run(self) -> Transition:
        """Fire the transition that is due for the record's current phase."""
        phase = self.record.phase
        match phase:
            case Phase.WAITING:
                self._start_game()
            case Phase.NIGHT:
                self._advance_night()
            case Phase.SHERIFF_CAMPAIGN:
                self._advance_campaign()
            case Phase.DAY:
                self._advance_day()
            case Phase.VOTING:
                self._advance_voting()
            case Phase.HUNTER_SHOT:
                self._resolve_hunter_shot()
            case Phase.SHERIFF_TRANSFER:
                self._resolve_badge_transfer()
            case Phase.FINISHED:
                raise ValueError(f"Game {self.record.game_id} is finished and cannot advance")
            case _:
                assert_never(phase)

        if self._next_deadline is None:
            raise RuntimeError(f"Transition out of {phase.value} did not schedule a deadline")

        self.record.schedule = Schedule(next_deadline=self._next_deadline)
        self.record.version += 1
        self.record.updated_at = self.now
        return Transition(record=self.record, events=self.events)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _schedule(self, seconds: int) -> None:
        self._next_deadline = self.now + timedelta(seconds=seconds)

    def _emit(
        self,
        event_type: EventType,
        seat: Optional[int] = None,
        target_seat: Optional[int] = None,
        public: bool = True,
        visible_to: Optional[list[int]] = None,
        **data: Any,
    ) -> None:
        self.events.append(GameEvent(
            event_type=event_type,
            game_id=self.record.game_id,
            round=self.record.round,
            phase=self.record.phase,
            seat=seat,
            target_seat=target_seat,
            data=data,
            public=public,
            visible_to=visible_to or [],
            timestamp=self.now,
        ))

    def _set_phase(self, phase: Phase) -> None:
        previous = self.record.phase
        self.record.phase = phase
        if previous != phase:
            self._emit(EventType.PHASE_CHANGE, previous_phase=previous.value, new_phase=phase.value)

    def _night_steps(self) -> list[NightStep]:
        return self.flow.night_steps_for(self.record.roles_present)

    def _round_actions(
        self,
        action_types: Sequence[ActionType],
        round_number: Optional[int] = None,
        pk_round: Optional[int] = None,
    ) -> list[ActionRecord]:
        return filter_actions(
            self.actions,
            round_number if round_number is not None else self.record.round,
            action_types,
            pk_round,
        )

    def _kill(self, seat: int) -> None:
        player = self.record.get_player(seat)
        if player is not None:
            player.alive = False

    def _check_game_over(self) -> bool:
        verdict = check_win_condition(self.record.players, self.rules.win_mode)
        if not verdict.is_over:
            return False

        self.record.winner = verdict.winner
        self.record.win_reason = verdict.reason
        self.record.night_step = None
        self.record.election_state = None
        self.record.day_speech_state = None
        self.record.voting_pk_state = None
        self.record.pending_badge_transfer = None
        self.record.pending_hunter_shot = None
        self._set_phase(Phase.FINISHED)
        self._emit(
            EventType.GAME_END,
            winner=verdict.winner.value,
            reason=verdict.reason,
            statistics=game_statistics(self.record, self.actions),
        )
        self._schedule(0)
        logger.info(f"Game {self.record.game_id} finished: {verdict.winner.value} ({verdict.reason})")
        return True

    # =========================================================================
    # Waiting
    # =========================================================================

    def _start_game(self) -> None:
        players = self.record.players
        ready = sum(1 for p in players if p.ready)
        if len(players) < self.rules.min_players or ready < len(players):
            logger.debug(
                f"Game {self.record.game_id} waiting: {ready}/{len(players)} ready, "
                f"{self.rules.min_players} required"
            )
            self._schedule(self.durations.waiting)
            self._emit(
                EventType.WAITING_FOR_PLAYERS,
                ready=ready,
                player_count=len(players),
                min_players=self.rules.min_players,
            )
            return

        self._emit(EventType.GAME_START, player_count=len(players), config_id=self.record.config_id)
        self._start_night(1)

    # =========================================================================
    # Night
    # =========================================================================

    def _start_night(self, round_number: int) -> None:
        self.record.round = round_number
        self.record.day_speech_state = None
        self.record.voting_pk_state = None
        self.record.night_step = 0
        self._set_phase(Phase.NIGHT)

        steps = self._night_steps()
        if steps:
            self._schedule(steps[0].duration)
            self._emit(EventType.NIGHT_STEP, step=steps[0].name, step_index=0, step_count=len(steps))
        else:
            self._schedule(self.durations.night)
            self._emit(EventType.NIGHT_STEP, step="night", step_index=0, step_count=1)

    def _advance_night(self) -> None:
        steps = self._night_steps()
        index = self.record.night_step or 0

        if index + 1 < len(steps):
            step = steps[index + 1]
            self.record.night_step = index + 1
            self._schedule(step.duration)
            self._emit(EventType.NIGHT_STEP, step=step.name, step_index=index + 1, step_count=len(steps))
            return

        self._end_night()

    def _end_night(self) -> None:
        record = self.record
        previous = self._round_actions(
            [ActionType.SELF_DESTRUCT], round_number=record.round - 1
        ) if record.round > 1 else []
        resolution = resolve_night_actions(
            record,
            filter_actions(self.actions, record.round),
            previous,
            self.rules,
        )
        record.night_step = None
        record.last_night_deaths = list(resolution.deaths)
        record.deaths_announced = False

        for result in resolution.seer_results:
            self._emit(
                EventType.SEER_RESULT,
                seat=result.seer_seat,
                target_seat=result.target_seat,
                public=False,
                visible_to=[result.seer_seat],
                camp=result.camp.value,
            )

        logger.info(
            f"Game {record.game_id} night {record.round} resolved: "
            f"{[(d.seat, d.cause.value) for d in resolution.deaths] or 'no deaths'}"
        )

        if record.leader_seat is not None and record.leader_seat in resolution.dead_seats:
            self._start_badge_transfer(record.leader_seat, Phase.NIGHT)
            return

        if (
            record.round == 1
            and record.leader_seat is None
            and len(record.players) >= self.rules.sheriff_campaign_min_players
        ):
            self._start_campaign()
            return

        self._continue_after_night()

    def _announce_night_deaths(self) -> None:
        if self.record.deaths_announced:
            return
        for death in self.record.last_night_deaths:
            self._kill(death.seat)
            self._emit(EventType.DEATH_ANNOUNCEMENT, seat=death.seat)
        if not self.record.last_night_deaths:
            self._emit(EventType.PEACEFUL_NIGHT)
        self.record.deaths_announced = True

    def _hunter_can_shoot(self, seat: int, cause: DeathCause) -> bool:
        player = self.record.get_player(seat)
        if player is None or player.role != Role.HUNTER or seat in self.record.resolved_hunter_seats:
            return False
        if cause == DeathCause.POISON:
            return self.rules.hunter_can_shoot_if_poisoned
        return cause in HUNTER_SHOT_CAUSES

    def _continue_after_night(self) -> None:
        """Announce stored deaths, then hunter shot, verdict, or day."""
        self._announce_night_deaths()

        for death in self.record.last_night_deaths:
            if self._hunter_can_shoot(death.seat, death.cause):
                self._start_hunter_shot(death.seat, Phase.NIGHT)
                return

        if self._check_game_over():
            return

        self._start_day()

    # =========================================================================
    # Sheriff campaign
    # =========================================================================

    def _election(self) -> ElectionMachine:
        return ElectionMachine(
            self.record,
            self.actions,
            self.durations,
            emit=self._emit,
            max_pk_rounds=self.rules.max_pk_rounds,
        )

    def _start_campaign(self) -> None:
        self._set_phase(Phase.SHERIFF_CAMPAIGN)
        progress = self._election().start()
        self.record.election_state = progress.state
        self._schedule(progress.duration)

    def _advance_campaign(self) -> None:
        state = self.record.election_state
        if state is None:
            state = ElectionDone(reason="no_election")

        progress = self._election().advance(state)
        if progress.is_done:
            self._finish_election(progress.state)
            return

        self.record.election_state = progress.state
        self._schedule(progress.duration)

    def _finish_election(self, done: ElectionDone) -> None:
        self.record.election_state = None
        self.record.leader_seat = done.elected_seat
        if done.elected_seat is not None:
            self._emit(EventType.SHERIFF_ELECTED, seat=done.elected_seat, reason=done.reason)
        else:
            self._emit(EventType.NO_SHERIFF, reason=done.reason)

        # Night deaths are only applied after the campaign, so a fresh leader may already be dead
        if done.elected_seat in {d.seat for d in self.record.last_night_deaths}:
            self._start_badge_transfer(done.elected_seat, Phase.NIGHT)
            return
        self._continue_after_night()

    # =========================================================================
    # Day
    # =========================================================================

    def _announce_speaker(self, seat: int, index: int, total: int) -> None:
        is_leader = seat == self.record.leader_seat
        self._schedule(self.durations.leader_speech if is_leader else self.durations.day_speech)
        self._emit(EventType.SPEAKER_CHANGE, seat=seat, speaker_index=index, speaker_count=total)

    def _start_day(self) -> None:
        record = self.record
        dead_seats = [d.seat for d in record.last_night_deaths]
        order = compute_day_speech_order(record, dead_seats)
        record.last_night_deaths = []
        record.deaths_announced = False
        record.election_state = None
        record.pending_badge_transfer = None
        record.pending_hunter_shot = None
        self._set_phase(Phase.DAY)

        if not order:
            self._start_voting()
            return

        record.day_speech_state = DaySpeaking(order=order, speaker_index=0)
        self._announce_speaker(order[0], 0, len(order))

    def _advance_day(self) -> None:
        self_destruct = self._pending_self_destruct()
        if self_destruct is not None:
            self._resolve_self_destruct(self_destruct)
            return

        state = self.record.day_speech_state
        match state:
            case DaySpeaking():
                index = next_speaker_index(state.order, state.speaker_index, self.record.alive_seats())
                if index is not None:
                    self.record.day_speech_state = DaySpeaking(order=state.order, speaker_index=index)
                    self._announce_speaker(state.order[index], index, len(state.order))
                    return
                if self.record.is_alive(self.record.leader_seat):
                    self.record.day_speech_state = AwaitLeaderCall()
                    self._schedule(self.durations.leader_call)
                    self._emit(EventType.AWAIT_LEADER_CALL, seat=self.record.leader_seat)
                    return
                self._start_voting()
            case AwaitLeaderCall():
                calls = [
                    a for a in self._round_actions([ActionType.LEADER_CALL])
                    if a.actor_seat == self.record.leader_seat
                ]
                self._start_voting(called_seat=calls[0].target_seat if calls else None)
            case None:
                self._start_voting()
            case _:
                assert_never(state)

    def _pending_self_destruct(self) -> Optional[ActionRecord]:
        for action in self._round_actions([ActionType.SELF_DESTRUCT]):
            player = self.record.get_player(action.actor_seat)
            if action.phase == Phase.DAY and player and player.alive and player.role == Role.WEREWOLF:
                return action
        return None

    def _resolve_self_destruct(self, action: ActionRecord) -> None:
        seat = action.actor_seat
        self._kill(seat)
        self.record.day_speech_state = None
        self._emit(EventType.SELF_DESTRUCT, seat=seat)
        if seat == self.record.leader_seat:
            self.record.leader_seat = None
            self._emit(EventType.BADGE_LOST, seat=seat, reason="self_destruct")

        if self._check_game_over():
            return
        self._start_night(self.record.round + 1)

    # =========================================================================
    # Voting
    # =========================================================================

    def _start_voting(self, called_seat: Optional[int] = None) -> None:
        self.record.day_speech_state = None
        self.record.voting_pk_state = None
        self._set_phase(Phase.VOTING)
        self._schedule(self.durations.voting)
        if called_seat is not None:
            self._emit(EventType.LEADER_CALL, seat=self.record.leader_seat, target_seat=called_seat)

    def _advance_voting(self) -> None:
        state = self.record.voting_pk_state
        match state:
            case None:
                votes = self._round_actions([ActionType.VOTE], pk_round=0)
                result = resolve_vote(
                    self.record,
                    votes,
                    leader_seat=self.record.leader_seat,
                    leader_weight=self.rules.leader_vote_weight,
                )
                self._announce_vote(result, pk_round=0)
                self._apply_vote_result(result, pk_round=0)
            case PkSpeech():
                index = next_speaker_index(state.order, state.speaker_index, self.record.alive_seats())
                if index is not None:
                    self.record.voting_pk_state = PkSpeech(
                        pk_round=state.pk_round, order=state.order, speaker_index=index
                    )
                    self._schedule(self.durations.pk_speech)
                    self._emit(EventType.SPEAKER_CHANGE, seat=state.order[index], pk_round=state.pk_round)
                    return
                candidates = [s for s in state.order if self.record.is_alive(s)]
                self.record.voting_pk_state = PkVote(pk_round=state.pk_round, candidates=candidates)
                self._schedule(self.durations.pk_vote)
                self._emit(EventType.PK_VOTE, pk_round=state.pk_round, candidates=candidates)
            case PkVote():
                votes = self._round_actions([ActionType.VOTE], pk_round=state.pk_round)
                result = resolve_vote(
                    self.record,
                    votes,
                    leader_seat=self.record.leader_seat,
                    leader_weight=self.rules.leader_vote_weight,
                    candidates=state.candidates,
                )
                self._announce_vote(result, pk_round=state.pk_round)
                if result.is_empty and self.rules.pk_no_vote_policy == PkNoVotePolicy.RERUN_PK:
                    result = VoteResult(
                        vote_counts={seat: 0.0 for seat in state.candidates},
                        tied_seats=list(state.candidates),
                    )
                self._apply_vote_result(result, pk_round=state.pk_round)
            case _:
                assert_never(state)

    def _announce_vote(self, result: VoteResult, pk_round: int) -> None:
        self._emit(
            EventType.VOTE_RESULT,
            pk_round=pk_round,
            vote_counts={str(k): v for k, v in result.vote_counts.items()},
            eliminated_seat=result.eliminated_seat,
            tied_seats=result.tied_seats,
        )

    def _apply_vote_result(self, result: VoteResult, pk_round: int) -> None:
        if result.is_empty:
            self._peaceful_day("no_votes" if pk_round == 0 else "pk_no_votes")
            return

        if result.is_tie:
            if pk_round >= self.rules.max_pk_rounds:
                self._peaceful_day("tie")
                return
            self._start_pk(pk_round + 1, result.tied_seats)
            return

        self._eliminate(result.eliminated_seat)

    def _start_pk(self, pk_round: int, seats: Sequence[int]) -> None:
        order = sorted(seats)
        self.record.voting_pk_state = PkSpeech(pk_round=pk_round, order=order, speaker_index=0)
        self._schedule(self.durations.pk_speech)
        self._emit(EventType.PK_START, pk_round=pk_round, candidates=order)
        self._emit(EventType.SPEAKER_CHANGE, seat=order[0], pk_round=pk_round)

    def _peaceful_day(self, reason: str) -> None:
        self.record.voting_pk_state = None
        self._emit(EventType.PEACEFUL_DAY, reason=reason)
        self._start_night(self.record.round + 1)

    def _eliminate(self, seat: int) -> None:
        self._kill(seat)
        self.record.voting_pk_state = None
        self._emit(EventType.ELIMINATION, seat=seat)

        if seat == self.record.leader_seat:
            self._start_badge_transfer(seat, Phase.VOTING)
            return
        self._continue_after_elimination(seat)

    def _continue_after_elimination(self, seat: int) -> None:
        if self._hunter_can_shoot(seat, DeathCause.VOTE):
            self._start_hunter_shot(seat, Phase.VOTING)
            return
        if self._check_game_over():
            return
        self._start_night(self.record.round + 1)

    # =========================================================================
    # Interrupts
    # =========================================================================

    def _start_badge_transfer(self, dead_seat: int, origin: Phase) -> None:
        self.record.pending_badge_transfer = PendingBadgeTransfer(
            dead_seat=dead_seat, origin_phase=origin, round=self.record.round
        )
        self.record.day_speech_state = None
        self.record.voting_pk_state = None
        self._set_phase(Phase.SHERIFF_TRANSFER)
        self._schedule(self.durations.sheriff_transfer)
        self._emit(EventType.BADGE_TRANSFER_PENDING, seat=dead_seat)

    def _resolve_badge_transfer(self) -> None:
        record = self.record
        pending = record.pending_badge_transfer
        if pending is None:
            raise ValueError(f"Game {record.game_id} is in sheriff_transfer without a pending transfer")

        handovers = [
            a for a in self._round_actions(
                [ActionType.BADGE_PASS, ActionType.BADGE_TEAR], round_number=pending.round
            )
            if a.actor_seat == pending.dead_seat
        ]
        action = handovers[0] if handovers else None
        pending_dead = {d.seat for d in record.last_night_deaths} if pending.origin_phase == Phase.NIGHT else set()

        if (
            action is not None
            and action.action_type == ActionType.BADGE_PASS
            and record.is_alive(action.target_seat)
            and action.target_seat != pending.dead_seat
            and action.target_seat not in pending_dead
        ):
            record.leader_seat = action.target_seat
            self._emit(EventType.BADGE_PASS, seat=pending.dead_seat, target_seat=action.target_seat)
        else:
            record.leader_seat = None
            self._emit(EventType.BADGE_LOST, seat=pending.dead_seat, reason="torn" if action else "timeout")

        record.pending_badge_transfer = None
        match pending.origin_phase:
            case Phase.NIGHT:
                self._continue_after_night()
            case Phase.VOTING:
                self._continue_after_elimination(pending.dead_seat)
            case _:
                raise ValueError(f"Unexpected badge transfer origin: {pending.origin_phase.value}")

    def _start_hunter_shot(self, hunter_seat: int, origin: Phase) -> None:
        self.record.pending_hunter_shot = PendingHunterShot(
            hunter_seat=hunter_seat, origin_phase=origin, round=self.record.round
        )
        self._set_phase(Phase.HUNTER_SHOT)
        self._schedule(self.durations.hunter_shot)
        self._emit(EventType.HUNTER_SHOT_PENDING, seat=hunter_seat)

    def _resolve_hunter_shot(self) -> None:
        record = self.record
        pending = record.pending_hunter_shot
        if pending is None:
            raise ValueError(f"Game {record.game_id} is in hunter_shot without a pending shot")

        record.resolved_hunter_seats.append(pending.hunter_seat)
        record.pending_hunter_shot = None

        shots = [
            a for a in self._round_actions([ActionType.HUNTER_SHOOT], round_number=pending.round)
            if a.actor_seat == pending.hunter_seat
        ]
        target = shots[0].target_seat if shots else None

        if target is not None and target != pending.hunter_seat and record.is_alive(target):
            self._kill(target)
            self._emit(EventType.HUNTER_SHOT, seat=pending.hunter_seat, target_seat=target)
            if target == record.leader_seat:
                record.leader_seat = None
                self._emit(EventType.BADGE_LOST, seat=target, reason="shot")
        else:
            self._emit(EventType.HUNTER_SKIP, seat=pending.hunter_seat)

        match pending.origin_phase:
            case Phase.NIGHT:
                self._continue_after_night()
            case Phase.VOTING:
                if self._check_game_over():
                    return
                self._start_night(record.round + 1)
            case _:
                raise ValueError(f"Unexpected hunter shot origin: {pending.origin_phase.value}")
