from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from nightfall.engine.state import ActionRecord, GameRecord, Schedule


class RecordStore(ABC):
    """Storage collaborator for game records and their action logs.

    Atomicity of ``compare_and_set_schedule``, ``commit`` and ``release``
    is the only concurrency guarantee the orchestrator relies on.
    """

    @abstractmethod
    def create(self, record: GameRecord) -> GameRecord:
        """Insert a new record. Raises StoreError if the id is taken."""

    @abstractmethod
    def get(self, game_id: str) -> GameRecord:
        """Read one record. Raises GameNotFoundError."""

    @abstractmethod
    def compare_and_set_schedule(self, game_id: str, expected: Schedule, new: Schedule) -> bool:
        """Replace the schedule iff the stored one still equals ``expected``."""

    @abstractmethod
    def commit(self, game_id: str, lease_owner_token: str, record: GameRecord) -> bool:
        """Write ``record`` iff ``lease_owner_token`` still holds the lease.

        The written record carries its own (unleased) schedule.
        """

    @abstractmethod
    def release(self, game_id: str, lease_owner_token: str, schedule: Schedule) -> bool:
        """Give up a lease, restoring ``schedule``, iff the token still holds it."""

    @abstractmethod
    def list_due(self, now: datetime) -> list[GameRecord]:
        """Active records whose deadline has passed and that hold no live lease."""

    @abstractmethod
    def append_action(self, action: ActionRecord) -> ActionRecord:
        """Append to the action log, returning the entry with its sequence number."""

    @abstractmethod
    def list_actions(self, game_id: str, round_number: Optional[int] = None) -> list[ActionRecord]:
        """Action log of a game in submission order, optionally for one round."""
