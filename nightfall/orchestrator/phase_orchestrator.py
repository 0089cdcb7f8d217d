"""Phase orchestrator: the single entry point that advances a game.

Every executor (the sweep job, the HTTP layer, the action service) calls
``PhaseOrchestrator.advance``. Mutual exclusion comes from the store's
compare-and-set on the schedule; the orchestrator holds no locks of its own.
"""

import logging
import socket
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Protocol

from nightfall.config.flow import FlowConfigRegistry
from nightfall.engine.roles import Phase
from nightfall.engine.state import GameEvent, GameRecord, Player, Schedule, utcnow
from nightfall.exceptions import PersistenceError, StoreError
from nightfall.orchestrator.transitions import PhaseMachine
from nightfall.store.base import RecordStore

logger = logging.getLogger(__name__)


class AdvanceStatus(str, Enum):
    ADVANCED = "advanced"
    NOT_DUE = "not_due"
    ALREADY_CLAIMED = "already_claimed"
    FINISHED = "finished"


@dataclass
class AdvanceResult:
    """Outcome of one ``advance`` call.

    Attributes:
        game_id: Game that was advanced
        status: What happened
        record: The committed record when status is ADVANCED
        events: Events produced by the committed transition
    """

    game_id: str
    status: AdvanceStatus
    record: Optional[GameRecord] = None
    events: list[GameEvent] = field(default_factory=list)

    @property
    def claimed(self) -> bool:
        return self.status == AdvanceStatus.ADVANCED


class EventSink(Protocol):
    def publish(self, events: Sequence[GameEvent]) -> None:
        ...


def default_executor_id() -> str:
    return f"{socket.gethostname()}-{uuid.uuid4().hex[:6]}"


class PhaseOrchestrator:
    def __init__(
        self,
        store: RecordStore,
        registry: Optional[FlowConfigRegistry] = None,
        sinks: Optional[Sequence[EventSink]] = None,
        executor_id: Optional[str] = None,
        lease_seconds: Optional[int] = None,
    ):
        """Initialize the orchestrator.

        Args:
            store: Record store shared by all executors
            registry: Flow configurations; built-in defaults when omitted
            sinks: Event sinks that receive the events of committed transitions
            executor_id: Prefix of lease tokens, for log correlation
            lease_seconds: Override for the flow configuration's lease length
        """
        self.store = store
        self.registry = registry or FlowConfigRegistry()
        self.sinks: list[EventSink] = list(sinks or [])
        self.executor_id = executor_id or default_executor_id()
        self.lease_seconds = lease_seconds

    def add_sink(self, sink: EventSink) -> None:
        self.sinks.append(sink)

    def _new_token(self) -> str:
        return f"{self.executor_id}:{uuid.uuid4().hex}"

    def create_game(
        self,
        players: Sequence[Player],
        config_id: Optional[str] = None,
        game_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> GameRecord:
        """Create a game in the waiting phase, due immediately."""
        now = now or utcnow()
        flow = self.registry.get(config_id)
        roster = [
            p.model_copy(update={"camp": flow.camp_for(p.role)}) for p in players
        ]
        data = dict(
            config_id=config_id,
            phase=Phase.WAITING,
            players=roster,
            schedule=Schedule(next_deadline=now),
            created_at=now,
            updated_at=now,
        )
        if game_id:
            data["game_id"] = game_id
        record = GameRecord(**data)
        self.store.create(record)
        logger.info(f"Created game {record.game_id} with {len(roster)} players (config: {flow.config_id})")
        return record

    def advance_game(self, game_id: str, now: Optional[datetime] = None) -> AdvanceResult:
        return self.advance(self.store.get(game_id), now)

    def advance(self, record: GameRecord, now: Optional[datetime] = None) -> AdvanceResult:
        """Fire the next transition of ``record`` if it is due.

        Safe to call any number of times from any number of executors: at
        most one caller holding the same snapshot commits a change.

        Args:
            record: Snapshot of the game as the caller last read it
            now: Current time

        Returns:
            AdvanceResult describing what happened

        Raises:
            PersistenceError: The store failed; the lease was released
        """
        now = now or utcnow()
        game_id = record.game_id

        if record.is_finished:
            return AdvanceResult(game_id, AdvanceStatus.FINISHED, record)
        if not record.schedule.is_due(now):
            return AdvanceResult(game_id, AdvanceStatus.NOT_DUE, record)

        flow = self.registry.get(record.config_id)
        lease = self.lease_seconds or flow.durations.lease
        token = self._new_token()
        claimed = record.schedule.claimed_by(token, now + timedelta(seconds=lease))

        try:
            won = self.store.compare_and_set_schedule(game_id, record.schedule, claimed)
        except StoreError as e:
            raise PersistenceError(game_id, e) from e
        if not won:
            logger.debug(f"Game {game_id}: stale claim, another executor holds it")
            return AdvanceResult(game_id, AdvanceStatus.ALREADY_CLAIMED)
        logger.debug(f"Game {game_id}: claimed by {token} until {claimed.lease_expiry}")

        try:
            actions = self.store.list_actions(game_id)
            transition = PhaseMachine(record, actions, flow, now).run()
            committed = self.store.commit(game_id, token, transition.record)
        except StoreError as e:
            self._release(game_id, token, record.schedule)
            raise PersistenceError(game_id, e) from e
        except Exception:
            self._release(game_id, token, record.schedule)
            raise

        if not committed:
            logger.warning(f"Game {game_id}: lease {token} lost before commit, transition discarded")
            return AdvanceResult(game_id, AdvanceStatus.ALREADY_CLAIMED)

        new_record = transition.record
        logger.info(
            f"Game {game_id}: {record.phase.value} -> {new_record.phase.value} "
            f"(round {new_record.round}, version {new_record.version}, "
            f"next at {new_record.schedule.next_deadline.isoformat()})"
        )
        self._publish(transition.events)
        return AdvanceResult(game_id, AdvanceStatus.ADVANCED, new_record, transition.events)

    def expedite(
        self,
        game_id: str,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> AdvanceResult:
        """Pull the next deadline forward to ``now`` and advance.

        Does nothing when the record moved past ``expected_version`` or is
        currently leased by another executor.
        """
        now = now or utcnow()
        record = self.store.get(game_id)
        if record.is_finished:
            return AdvanceResult(game_id, AdvanceStatus.FINISHED, record)
        if expected_version is not None and record.version != expected_version:
            logger.debug(f"Game {game_id}: expedite skipped, version {record.version} != {expected_version}")
            return AdvanceResult(game_id, AdvanceStatus.ALREADY_CLAIMED)
        if record.schedule.is_leased(now):
            return AdvanceResult(game_id, AdvanceStatus.ALREADY_CLAIMED)

        if record.schedule.next_deadline > now:
            expedited = Schedule(next_deadline=now)
            try:
                moved = self.store.compare_and_set_schedule(game_id, record.schedule, expedited)
            except StoreError as e:
                raise PersistenceError(game_id, e) from e
            if not moved:
                return AdvanceResult(game_id, AdvanceStatus.ALREADY_CLAIMED)
            record = record.model_copy(update={"schedule": expedited})

        return self.advance(record, now)

    def _release(self, game_id: str, token: str, schedule: Schedule) -> None:
        try:
            released = self.store.release(game_id, token, schedule)
        except StoreError as e:
            logger.warning(f"Game {game_id}: could not release lease {token}, it will expire: {e}")
            return
        if released:
            logger.warning(f"Game {game_id}: released lease {token} after a failed transition")

    def _publish(self, events: Sequence[GameEvent]) -> None:
        if not events:
            return
        for sink in self.sinks:
            try:
                sink.publish(events)
            except Exception as e:
                logger.warning(f"Event sink {type(sink).__name__} failed: {e}")
