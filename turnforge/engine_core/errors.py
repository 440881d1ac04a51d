"""
Runtime error taxonomy.

Every error raised inside a game session is a GameEngineError. The session
loop never lets these escape: it converts them into a `game.gameError`
record so the host can inspect the last good state plus the error detail.
Artifact validation errors live in spec_schema.validation because they are
raised before any session exists.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Any


class GameEngineError(Exception):
    """Base class for errors recorded into game state."""

    error_type = "invalid_state"

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_record(self) -> dict[str, Any]:
        """Build the `game.gameError` record for this error."""
        return {
            "errorType": self.error_type,
            "errorMessage": self.message,
            "errorContext": self.context,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


class InvalidStateError(GameEngineError):
    """Raised when game state does not match the artifacts (unknown phase, missing player)."""

    error_type = "invalid_state"


class DeadlockError(GameEngineError):
    """Raised when no transition can fire and no player input is possible."""

    error_type = "deadlock"


class MissingInstructionError(GameEngineError):
    """Raised when a selected transition or input phase has no instruction payload."""

    error_type = "missing_instruction"


class IterationLimitError(GameEngineError):
    """Raised when automatic transitions keep firing past the iteration cap."""

    error_type = "iteration_limit"


class StateDeltaError(GameEngineError):
    """Raised when a state delta operation cannot be applied."""

    error_type = "transition_failed"


class TypeMismatchError(StateDeltaError):
    """Raised when an operation targets a leaf of the wrong type."""

    error_type = "type_mismatch"


class InvalidPathError(StateDeltaError):
    """Raised when a path is not a concrete game.* or players.<id>.* dot-path."""


class TemplateResolutionError(StateDeltaError):
    """Raised when placeholders survive variable binding."""


class RngConfigurationError(StateDeltaError):
    """Raised when an rng op has mismatched or non-normalized probabilities."""


class ExpressionError(Exception):
    """Raised when a logic expression is malformed."""
