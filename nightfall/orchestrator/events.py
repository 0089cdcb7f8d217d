"""In-memory event sink."""

import threading
from collections import defaultdict, deque
from collections.abc import Sequence
from typing import Optional

from nightfall.engine.state import EventType, GameEvent


class EventLog:
    """Keeps published events, grouped by game.

    Live games keep every event. Once more than ``max_finished_games``
    games have ended, the events of the oldest finished game are dropped.
    """

    def __init__(self, max_finished_games: int = 100):
        if max_finished_games < 1:
            raise ValueError("max_finished_games must be at least 1")
        self.max_finished_games = max_finished_games
        self._events: dict[str, list[GameEvent]] = defaultdict(list)
        self._finished: deque[str] = deque()
        self._lock = threading.Lock()

    def publish(self, events: Sequence[GameEvent]) -> None:
        with self._lock:
            for event in events:
                self._events[event.game_id].append(event)
                if event.event_type == EventType.GAME_END and event.game_id not in self._finished:
                    self._finished.append(event.game_id)
            while len(self._finished) > self.max_finished_games:
                self._events.pop(self._finished.popleft(), None)

    def for_game(
        self,
        game_id: str,
        seat: Optional[int] = None,
        since: int = 0,
    ) -> list[GameEvent]:
        """Events of one game, starting at index ``since``.

        With ``seat`` set, private events are kept only when visible to it.
        """
        with self._lock:
            events = list(self._events.get(game_id, []))[since:]
        if seat is None:
            return events
        return [e for e in events if e.public or seat in e.visible_to]

    def public_for_game(self, game_id: str) -> list[GameEvent]:
        return [e for e in self.for_game(game_id) if e.public]
