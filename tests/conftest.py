"""Shared fixtures for the nightfall test suite."""

import itertools
from datetime import datetime, timezone
from typing import Optional

import pytest

from nightfall.config.flow import FlowConfig, FlowConfigRegistry
from nightfall.engine import ActionType, Phase, Role
from nightfall.engine.state import ActionRecord, GameRecord, Player, RuleVariants, Schedule
from nightfall.orchestrator import ActionService, EventLog, PhaseOrchestrator
from nightfall.store import InMemoryRecordStore

T0 = datetime(2026, 3, 1, 20, 0, tzinfo=timezone.utc)

# 8 seats: below the sheriff campaign threshold.
STANDARD_ROLES = [
    Role.WEREWOLF,
    Role.WEREWOLF,
    Role.SEER,
    Role.WITCH,
    Role.GUARD,
    Role.HUNTER,
    Role.VILLAGER,
    Role.VILLAGER,
]

# 12 seats: holds a sheriff campaign on round 1.
LARGE_ROLES = [
    Role.WEREWOLF,
    Role.WEREWOLF,
    Role.WEREWOLF,
    Role.WEREWOLF,
    Role.SEER,
    Role.WITCH,
    Role.HUNTER,
    Role.GUARD,
    Role.VILLAGER,
    Role.VILLAGER,
    Role.VILLAGER,
    Role.VILLAGER,
]


def make_players(roles: list[Role]) -> list[Player]:
    return [Player(seat=i + 1, role=role) for i, role in enumerate(roles)]


@pytest.fixture
def now() -> datetime:
    return T0


@pytest.fixture
def build_record():
    def _build(
        roles: Optional[list[Role]] = None,
        phase: Phase = Phase.NIGHT,
        round_number: int = 1,
        game_id: str = "g1",
        **fields,
    ) -> GameRecord:
        fields.setdefault("schedule", Schedule(next_deadline=T0))
        return GameRecord(
            game_id=game_id,
            phase=phase,
            round=round_number,
            players=make_players(roles or STANDARD_ROLES),
            **fields,
        )

    return _build


@pytest.fixture
def build_action():
    sequence = itertools.count(1)

    def _build(
        actor_seat: int,
        action_type: ActionType,
        target_seat: Optional[int] = None,
        round_number: int = 1,
        phase: Phase = Phase.NIGHT,
        pk_round: int = 0,
        game_id: str = "g1",
    ) -> ActionRecord:
        return ActionRecord(
            game_id=game_id,
            round=round_number,
            phase=phase,
            actor_seat=actor_seat,
            action_type=action_type,
            target_seat=target_seat,
            pk_round=pk_round,
            sequence=next(sequence),
        )

    return _build


@pytest.fixture
def flow() -> FlowConfig:
    return FlowConfig()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def event_log() -> EventLog:
    return EventLog()


@pytest.fixture
def registry() -> FlowConfigRegistry:
    return FlowConfigRegistry([
        FlowConfig(),
        FlowConfig(
            config_id="rerun",
            rule_variants=RuleVariants(pk_no_vote_policy="rerun_pk"),
        ),
    ])


@pytest.fixture
def orchestrator(store, registry, event_log) -> PhaseOrchestrator:
    return PhaseOrchestrator(store, registry=registry, sinks=[event_log], executor_id="test")


@pytest.fixture
def action_service(orchestrator) -> ActionService:
    return ActionService(orchestrator)


@pytest.fixture
def tick(orchestrator):
    """Advance a game at its own next deadline."""

    def _tick(game_id: str):
        record = orchestrator.store.get(game_id)
        return orchestrator.advance(record, record.schedule.next_deadline)

    return _tick


@pytest.fixture
def started_game(orchestrator, tick):
    """An 8-seat game advanced into the first night step (guard)."""
    record = orchestrator.create_game(make_players(STANDARD_ROLES), game_id="g1", now=T0)
    tick(record.game_id)
    return record.game_id


@pytest.fixture
def standard_players() -> list[Player]:
    return make_players(STANDARD_ROLES)


@pytest.fixture
def large_roles() -> list[Role]:
    return list(LARGE_ROLES)
