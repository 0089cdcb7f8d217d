import threading
from datetime import datetime
from typing import Optional

from nightfall.engine.state import ActionRecord, GameRecord, Schedule
from nightfall.exceptions import GameNotFoundError, StoreError
from nightfall.store.base import RecordStore


class InMemoryRecordStore(RecordStore):
    """Process-local store.

    Records are copied in and out so callers never share mutable state with
    the store. The lock only makes each primitive atomic.
    """

    def __init__(self):
        self._records: dict[str, GameRecord] = {}
        self._actions: dict[str, list[ActionRecord]] = {}
        self._sequence = 0
        self._lock = threading.Lock()

    def create(self, record: GameRecord) -> GameRecord:
        with self._lock:
            if record.game_id in self._records:
                raise StoreError(f"Game already exists: {record.game_id}")
            self._records[record.game_id] = record.model_copy(deep=True)
            self._actions[record.game_id] = []
        return record

    def get(self, game_id: str) -> GameRecord:
        with self._lock:
            record = self._records.get(game_id)
            if record is None:
                raise GameNotFoundError(game_id)
            return record.model_copy(deep=True)

    def compare_and_set_schedule(self, game_id: str, expected: Schedule, new: Schedule) -> bool:
        with self._lock:
            record = self._records.get(game_id)
            if record is None:
                raise GameNotFoundError(game_id)
            if record.schedule != expected:
                return False
            self._records[game_id] = record.model_copy(update={"schedule": new})
            return True

    def commit(self, game_id: str, lease_owner_token: str, record: GameRecord) -> bool:
        with self._lock:
            current = self._records.get(game_id)
            if current is None:
                raise GameNotFoundError(game_id)
            if current.schedule.lease_owner_token != lease_owner_token:
                return False
            self._records[game_id] = record.model_copy(deep=True)
            return True

    def release(self, game_id: str, lease_owner_token: str, schedule: Schedule) -> bool:
        with self._lock:
            current = self._records.get(game_id)
            if current is None or current.schedule.lease_owner_token != lease_owner_token:
                return False
            self._records[game_id] = current.model_copy(update={"schedule": schedule})
            return True

    def list_due(self, now: datetime) -> list[GameRecord]:
        with self._lock:
            due = [r for r in self._records.values() if r.is_due(now)]
            return [r.model_copy(deep=True) for r in sorted(due, key=lambda r: r.schedule.next_deadline)]

    def append_action(self, action: ActionRecord) -> ActionRecord:
        with self._lock:
            if action.game_id not in self._records:
                raise GameNotFoundError(action.game_id)
            self._sequence += 1
            stored = action.model_copy(update={"sequence": self._sequence})
            self._actions[action.game_id].append(stored)
            return stored

    def list_actions(self, game_id: str, round_number: Optional[int] = None) -> list[ActionRecord]:
        with self._lock:
            if game_id not in self._records:
                raise GameNotFoundError(game_id)
            return [
                a for a in self._actions[game_id]
                if round_number is None or a.round == round_number
            ]
