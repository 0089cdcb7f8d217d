"""Sheriff (leader) election sub-machine.

signup -> speech -> vote -> [tie -> pk_speech -> pk_vote]* -> done

Each call to ``ElectionMachine.advance`` performs exactly one step and is
driven by the same claim protocol as the top-level phases.
"""

import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Optional, assert_never

from nightfall.config.flow import PhaseDurations
from nightfall.engine.roles import ActionType
from nightfall.engine.rules import filter_actions, next_speaker_index, resolve_vote
from nightfall.engine.state import (
    ActionRecord,
    ElectionDone,
    ElectionPkSpeech,
    ElectionPkVote,
    ElectionSignup,
    ElectionSpeech,
    ElectionVote,
    EventType,
    GameRecord,
)

Emit = Callable[..., Any]


@dataclass
class ElectionProgress:
    """Result of one election step.

    ``duration`` is None once the election is done.
    """

    state: Any
    duration: Optional[int] = None

    @property
    def is_done(self) -> bool:
        return isinstance(self.state, ElectionDone)


class ElectionMachine:
    def __init__(
        self,
        record: GameRecord,
        actions: Sequence[ActionRecord],
        durations: PhaseDurations,
        emit: Emit,
        max_pk_rounds: int = 2,
    ):
        self.record = record
        self.actions = filter_actions(actions, record.round)
        self.durations = durations
        self.emit = emit
        self.max_pk_rounds = max_pk_rounds

    def start(self) -> ElectionProgress:
        self.emit(EventType.ELECTION_STAGE, stage="signup")
        return ElectionProgress(ElectionSignup(), self.durations.sheriff_signup)

    def advance(self, state: Any) -> ElectionProgress:
        match state:
            case ElectionSignup():
                return self._close_signup()
            case ElectionSpeech():
                return self._next_speech(state)
            case ElectionVote():
                return self._count_votes(state.candidates, pk_round=0)
            case ElectionPkSpeech():
                return self._next_pk_speech(state)
            case ElectionPkVote():
                return self._count_votes(state.candidates, pk_round=state.pk_round)
            case ElectionDone():
                return ElectionProgress(state)
            case _:
                assert_never(state)

    # -------------------------------------------------------------------------

    def _withdrawn(self) -> set[int]:
        return {
            a.actor_seat
            for a in filter_actions(self.actions, action_types=[ActionType.SHERIFF_WITHDRAW])
        }

    def _remaining(self, candidates: Sequence[int]) -> list[int]:
        withdrawn = self._withdrawn()
        return [s for s in candidates if s not in withdrawn and self.record.is_alive(s)]

    def _done(self, elected_seat: Optional[int], reason: str) -> ElectionProgress:
        return ElectionProgress(ElectionDone(elected_seat=elected_seat, reason=reason))

    def _speech_order(self, candidates: list[int]) -> list[int]:
        """Sorted candidates rotated to a start seat drawn from a per-game seed."""
        rng = random.Random(f"{self.record.game_id}:{self.record.round}")
        start = rng.randrange(len(candidates))
        return candidates[start:] + candidates[:start]

    def _close_signup(self) -> ElectionProgress:
        signed_up: list[int] = []
        for action in filter_actions(self.actions, action_types=[ActionType.SHERIFF_SIGNUP]):
            if action.actor_seat not in signed_up and self.record.is_alive(action.actor_seat):
                signed_up.append(action.actor_seat)
        candidates = sorted(signed_up)

        if not candidates:
            return self._done(None, "no_candidates")
        if len(candidates) == 1:
            return self._done(candidates[0], "uncontested")

        order = self._speech_order(candidates)
        self.emit(EventType.ELECTION_STAGE, stage="speech", candidates=candidates, order=order)
        self.emit(EventType.SPEAKER_CHANGE, seat=order[0], stage="speech")
        return ElectionProgress(
            ElectionSpeech(candidates=candidates, order=order, speaker_index=0),
            self.durations.sheriff_speech,
        )

    def _next_speech(self, state: ElectionSpeech) -> ElectionProgress:
        remaining = self._remaining(state.candidates)
        if len(remaining) <= 1:
            return self._done(remaining[0] if remaining else None, "withdrawals")

        index = next_speaker_index(state.order, state.speaker_index, remaining)
        if index is not None:
            self.emit(EventType.SPEAKER_CHANGE, seat=state.order[index], stage="speech")
            return ElectionProgress(
                ElectionSpeech(candidates=remaining, order=state.order, speaker_index=index),
                self.durations.sheriff_speech,
            )

        self.emit(EventType.ELECTION_STAGE, stage="vote", candidates=remaining)
        return ElectionProgress(ElectionVote(candidates=remaining), self.durations.sheriff_vote)

    def _next_pk_speech(self, state: ElectionPkSpeech) -> ElectionProgress:
        remaining = self._remaining(state.candidates)
        if len(remaining) <= 1:
            return self._done(remaining[0] if remaining else None, "withdrawals")

        index = next_speaker_index(state.order, state.speaker_index, remaining)
        if index is not None:
            self.emit(EventType.SPEAKER_CHANGE, seat=state.order[index], stage="pk_speech")
            return ElectionProgress(
                ElectionPkSpeech(
                    pk_round=state.pk_round,
                    candidates=remaining,
                    order=state.order,
                    speaker_index=index,
                ),
                self.durations.sheriff_speech,
            )

        self.emit(EventType.ELECTION_STAGE, stage="pk_vote", candidates=remaining, pk_round=state.pk_round)
        return ElectionProgress(
            ElectionPkVote(pk_round=state.pk_round, candidates=remaining),
            self.durations.sheriff_vote,
        )

    def _count_votes(self, candidates: Sequence[int], pk_round: int) -> ElectionProgress:
        candidates = self._remaining(candidates)
        if len(candidates) <= 1:
            return self._done(candidates[0] if candidates else None, "withdrawals")

        votes = filter_actions(self.actions, action_types=[ActionType.SHERIFF_VOTE], pk_round=pk_round)
        result = resolve_vote(self.record, votes, candidates=candidates)
        self.emit(
            EventType.VOTE_RESULT,
            stage="election",
            pk_round=pk_round,
            vote_counts={str(k): v for k, v in result.vote_counts.items()},
            tied_seats=result.tied_seats,
            elected_seat=result.eliminated_seat,
        )

        if result.is_empty:
            return self._done(None, "no_votes")
        if not result.is_tie:
            return self._done(result.eliminated_seat, "elected")
        if pk_round >= self.max_pk_rounds:
            return self._done(None, "tie")

        tied = sorted(result.tied_seats)
        self.emit(EventType.PK_START, stage="election", pk_round=pk_round + 1, candidates=tied)
        self.emit(EventType.SPEAKER_CHANGE, seat=tied[0], stage="pk_speech")
        return ElectionProgress(
            ElectionPkSpeech(pk_round=pk_round + 1, candidates=tied, order=tied, speaker_index=0),
            self.durations.sheriff_speech,
        )
