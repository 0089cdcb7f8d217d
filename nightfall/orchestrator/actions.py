"""Player action intake.

Validates an action against the current record, appends it to the action
log and, for actions that end a wait early, expedites the game through the
orchestrator's claim protocol.
"""

import logging
from datetime import datetime
from typing import Optional

from nightfall.engine.roles import ActionType
from nightfall.engine.rules import current_pk_round, current_speaker, election_candidates, validate_action
from nightfall.engine.state import ActionRecord, utcnow
from nightfall.exceptions import InvalidActionError, LateActionError, PersistenceError
from nightfall.orchestrator.phase_orchestrator import AdvanceResult, PhaseOrchestrator

logger = logging.getLogger(__name__)

# Actions that resolve a single-actor wait and so end it immediately.
EXPEDITING_ACTIONS = {
    ActionType.HUNTER_SHOOT,
    ActionType.BADGE_PASS,
    ActionType.BADGE_TEAR,
    ActionType.LEADER_CALL,
    ActionType.SELF_DESTRUCT,
}


class ActionService:
    def __init__(self, orchestrator: PhaseOrchestrator):
        self.orchestrator = orchestrator
        self.store = orchestrator.store

    def submit(
        self,
        game_id: str,
        actor_seat: int,
        action_type: ActionType,
        target_seat: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ActionRecord:
        """Validate and log one action.

        Args:
            game_id: Game the action belongs to
            actor_seat: Seat submitting the action
            action_type: Kind of action
            target_seat: Target seat, if any
            now: Submission time

        Returns:
            The stored action with its sequence number

        Raises:
            GameNotFoundError: Unknown game
            InvalidActionError: The action is not allowed right now
            LateActionError: A transition ran while the action was being logged
        """
        now = now or utcnow()
        record = self.store.get(game_id)
        actions = self.store.list_actions(game_id)
        flow = self.orchestrator.registry.get(record.config_id)

        validate_action(
            record,
            actions,
            actor_seat,
            action_type,
            target_seat,
            night_steps=flow.night_steps_for(record.roles_present),
            rules=flow.rule_variants,
        )

        stored = self.store.append_action(ActionRecord(
            game_id=game_id,
            round=record.round,
            phase=record.phase,
            actor_seat=actor_seat,
            action_type=action_type,
            target_seat=target_seat,
            pk_round=current_pk_round(record),
            submitted_at=now,
        ))
        logger.info(
            f"Game {game_id}: seat {actor_seat} submitted {action_type.value}"
            + (f" -> {target_seat}" if target_seat is not None else "")
        )

        # A commit since the read, or a claim still in flight, may have missed this action
        current = self.store.get(game_id)
        if current.version != record.version or current.schedule.is_leased(now):
            logger.warning(f"Game {game_id}: action #{stored.sequence} landed during a transition")
            raise LateActionError(game_id, stored.sequence, action_type.value)

        if self._ends_wait(action_type, record, actions + [stored]):
            self._expedite(game_id, record.version, now)
        return stored

    def end_speech(self, game_id: str, seat: int, now: Optional[datetime] = None) -> AdvanceResult:
        """Let the current speaker yield the floor early."""
        now = now or utcnow()
        record = self.store.get(game_id)
        if current_speaker(record) != seat:
            raise InvalidActionError(f"seat {seat} is not the current speaker", "end_speech")
        return self.orchestrator.expedite(game_id, expected_version=record.version, now=now)

    @staticmethod
    def _ends_wait(action_type: ActionType, record, actions: list[ActionRecord]) -> bool:
        if action_type in EXPEDITING_ACTIONS:
            return True
        if action_type == ActionType.SHERIFF_WITHDRAW:
            return len(election_candidates(record, actions)) <= 1
        return False

    def _expedite(self, game_id: str, version: int, now: datetime) -> None:
        try:
            self.orchestrator.expedite(game_id, expected_version=version, now=now)
        except PersistenceError as e:
            logger.warning(f"Game {game_id}: expedite failed, the sweep will pick it up: {e}")
