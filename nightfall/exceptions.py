"""Exception types raised by nightfall."""

from typing import Optional


class NightfallError(Exception):
    """Base class for all nightfall errors."""


class GameNotFoundError(NightfallError):
    def __init__(self, game_id: str):
        super().__init__(f"Game not found: {game_id}")
        self.game_id = game_id


class InvalidActionError(NightfallError):
    """A submitted player action failed validation.

    The action is never written to the action log. Only the submitting
    caller sees this error.
    """

    def __init__(self, reason: str, action_type: Optional[str] = None):
        message = f"{action_type}: {reason}" if action_type else reason
        super().__init__(message)
        self.reason = reason
        self.action_type = action_type


class LateActionError(NightfallError):
    """A valid action was logged after the game had already moved on.

    The action stays in the log but the transition that closed its window
    did not see it, so it may never count.
    """

    def __init__(self, game_id: str, sequence: int, action_type: str):
        super().__init__(f"Game {game_id}: {action_type} (#{sequence}) arrived after the phase moved on")
        self.game_id = game_id
        self.sequence = sequence
        self.action_type = action_type


class StoreError(NightfallError):
    """The record store was unreachable or rejected a write."""


class PersistenceError(NightfallError):
    """A transition was abandoned because the store failed mid-way."""

    def __init__(self, game_id: str, cause: Exception):
        super().__init__(f"Transition for game {game_id} abandoned: {cause}")
        self.game_id = game_id
        self.cause = cause


class ConfigError(NightfallError):
    """A flow configuration file could not be parsed."""
