"""
Session Module - Manages in-memory game sessions.

A session represents one play-through of a game:
- Created from validated artifacts and an ordered player list
- Holds the current game state
- Processes player actions and automatic transitions
- Dropped when the host ends it
"""

from .manager import SessionManager, GameSession, SessionState, ActionResponse, validate_artifacts
from .game_loop import GameLoop, LoopResult, MechanicsExecutor, MechanicsResult

__all__ = [
    "SessionManager",
    "GameSession",
    "SessionState",
    "ActionResponse",
    "validate_artifacts",
    "GameLoop",
    "LoopResult",
    "MechanicsExecutor",
    "MechanicsResult",
]
