"""SQLite-backed record store.

Every primitive is a single conditional UPDATE, so the database provides
the atomicity and any number of processes can share one file.
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from nightfall.engine.state import ActionRecord, GameRecord, Schedule
from nightfall.exceptions import GameNotFoundError, StoreError
from nightfall.store.base import RecordStore

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS games (
    game_id TEXT PRIMARY KEY,
    phase TEXT NOT NULL,
    next_deadline TEXT NOT NULL,
    lease_owner TEXT,
    lease_expiry TEXT,
    version INTEGER NOT NULL DEFAULT 0,
    payload TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_games_due ON games (phase, next_deadline);
CREATE TABLE IF NOT EXISTS actions (
    sequence INTEGER PRIMARY KEY AUTOINCREMENT,
    game_id TEXT NOT NULL REFERENCES games (game_id),
    round INTEGER NOT NULL,
    payload TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_actions_game ON actions (game_id, round);
"""

_GAME_COLUMNS = "game_id, phase, next_deadline, lease_owner, lease_expiry, version, payload"


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC timestamp so string comparison orders correctly."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SqliteRecordStore(RecordStore):
    def __init__(self, path: Union[str, Path], timeout: float = 5.0):
        self.path = Path(path)
        self.timeout = timeout
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            with closing(sqlite3.connect(self.path, timeout=self.timeout)) as conn:
                with conn:
                    yield conn
        except sqlite3.Error as e:
            raise StoreError(f"SQLite store {self.path}: {e}") from e

    @staticmethod
    def _schedule_params(schedule: Schedule) -> tuple[Any, ...]:
        return (
            _ts(schedule.next_deadline),
            schedule.lease_owner_token,
            _ts(schedule.lease_expiry),
        )

    @staticmethod
    def _row_to_record(row: tuple[Any, ...]) -> GameRecord:
        _, _, next_deadline, lease_owner, lease_expiry, _, payload = row
        data = json.loads(payload)
        data["schedule"] = Schedule(
            next_deadline=_parse_ts(next_deadline),
            lease_owner_token=lease_owner,
            lease_expiry=_parse_ts(lease_expiry),
        )
        return GameRecord.model_validate(data)

    def _exists(self, conn: sqlite3.Connection, game_id: str) -> bool:
        row = conn.execute("SELECT 1 FROM games WHERE game_id = ?", (game_id,)).fetchone()
        return row is not None

    def create(self, record: GameRecord) -> GameRecord:
        try:
            with self._connection() as conn:
                conn.execute(
                    f"INSERT INTO games ({_GAME_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.game_id,
                        record.phase.value,
                        *self._schedule_params(record.schedule),
                        record.version,
                        record.model_dump_json(exclude={"schedule"}),
                    ),
                )
        except StoreError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise StoreError(f"Game already exists: {record.game_id}") from e
            raise
        return record

    def get(self, game_id: str) -> GameRecord:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {_GAME_COLUMNS} FROM games WHERE game_id = ?", (game_id,)
            ).fetchone()
        if row is None:
            raise GameNotFoundError(game_id)
        return self._row_to_record(row)

    def compare_and_set_schedule(self, game_id: str, expected: Schedule, new: Schedule) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE games SET next_deadline = ?, lease_owner = ?, lease_expiry = ? "
                "WHERE game_id = ? AND next_deadline = ? AND lease_owner IS ? AND lease_expiry IS ?",
                (*self._schedule_params(new), game_id, *self._schedule_params(expected)),
            )
            if cursor.rowcount == 1:
                return True
            if not self._exists(conn, game_id):
                raise GameNotFoundError(game_id)
            return False

    def commit(self, game_id: str, lease_owner_token: str, record: GameRecord) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE games SET phase = ?, next_deadline = ?, lease_owner = ?, lease_expiry = ?, "
                "version = ?, payload = ? WHERE game_id = ? AND lease_owner = ?",
                (
                    record.phase.value,
                    *self._schedule_params(record.schedule),
                    record.version,
                    record.model_dump_json(exclude={"schedule"}),
                    game_id,
                    lease_owner_token,
                ),
            )
            if cursor.rowcount == 1:
                return True
            if not self._exists(conn, game_id):
                raise GameNotFoundError(game_id)
            return False

    def release(self, game_id: str, lease_owner_token: str, schedule: Schedule) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE games SET next_deadline = ?, lease_owner = ?, lease_expiry = ? "
                "WHERE game_id = ? AND lease_owner = ?",
                (*self._schedule_params(schedule), game_id, lease_owner_token),
            )
            return cursor.rowcount == 1

    def list_due(self, now: datetime) -> list[GameRecord]:
        stamp = _ts(now)
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT {_GAME_COLUMNS} FROM games "
                "WHERE phase != 'finished' AND next_deadline <= ? "
                "AND (lease_owner IS NULL OR lease_expiry IS NULL OR lease_expiry <= ?) "
                "ORDER BY next_deadline",
                (stamp, stamp),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def append_action(self, action: ActionRecord) -> ActionRecord:
        with self._connection() as conn:
            if not self._exists(conn, action.game_id):
                raise GameNotFoundError(action.game_id)
            cursor = conn.execute(
                "INSERT INTO actions (game_id, round, payload) VALUES (?, ?, ?)",
                (action.game_id, action.round, action.model_dump_json(exclude={"sequence"})),
            )
            stored = action.model_copy(update={"sequence": cursor.lastrowid})
        logger.debug(f"Appended action {stored.action_type.value} #{stored.sequence} to {stored.game_id}")
        return stored

    def list_actions(self, game_id: str, round_number: Optional[int] = None) -> list[ActionRecord]:
        query = "SELECT sequence, payload FROM actions WHERE game_id = ?"
        params: tuple[Any, ...] = (game_id,)
        if round_number is not None:
            query += " AND round = ?"
            params += (round_number,)
        query += " ORDER BY sequence"
        with self._connection() as conn:
            if not self._exists(conn, game_id):
                raise GameNotFoundError(game_id)
            rows = conn.execute(query, params).fetchall()
        return [
            ActionRecord.model_validate({**json.loads(payload), "sequence": sequence})
            for sequence, payload in rows
        ]
