"""
Game State - JSON-shaped state tree and path helpers.

Design principles:
- Serializable: the state is a plain dict that round-trips through JSON
- Game-agnostic: only the runtime fields below are fixed, the rest of the
  tree is whatever the generated schema declares
- Explicit: every value is classified into a ValueKind and every mutation
  walks the tree through the helpers in this module

Shape:
    {
        "game": {"currentPhase": str, "gameEnded": bool, "gameError"?: dict, ...},
        "players": {player_id: {"actionRequired": bool, "actionsAllowed": bool | None,
                                "illegalActionCount": int, "privateMessage": str, ...}},
    }
"""

from __future__ import annotations
from copy import deepcopy
from enum import Enum
from typing import Any
import re

from .errors import GameEngineError, InvalidPathError


GameState = dict[str, Any]

_MISSING = object()
_BRACKET_INDEX = re.compile(r"\[(\d+)\]")


class ValueKind(Enum):
    """Kinds of values that can live in the state tree."""
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"


def kind_of(value: Any) -> ValueKind:
    """Classify a state value. Booleans are never numbers."""
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, list):
        return ValueKind.ARRAY
    if isinstance(value, dict):
        return ValueKind.OBJECT
    raise TypeError(f"Unsupported state value type: {type(value).__name__}")


def is_number(value: Any) -> bool:
    return value is not None and kind_of(value) is ValueKind.NUMBER


def parse_path(path: str) -> list[str]:
    """
    Split a dot-path into segments.

    `game.rounds[2].winner` and `game.rounds.2.winner` both give
    ["game", "rounds", "2", "winner"].
    """
    normalized = _BRACKET_INDEX.sub(r".\1", path.strip())
    return [segment for segment in normalized.split(".") if segment]


def _child(container: Any, segment: str) -> Any:
    if isinstance(container, dict):
        return container.get(segment, _MISSING)
    if isinstance(container, list) and segment.isdigit():
        index = int(segment)
        return container[index] if index < len(container) else _MISSING
    return _MISSING


def get_path(tree: Any, path: str, default: Any = None) -> Any:
    """Read the value at a dot-path, or default if any segment is absent."""
    current = tree
    for segment in parse_path(path):
        current = _child(current, segment)
        if current is _MISSING:
            return default
    return current


def has_path(tree: Any, path: str) -> bool:
    return get_path(tree, path, _MISSING) is not _MISSING


def set_path(tree: dict[str, Any], path: str, value: Any) -> None:
    """
    Write a value at a dot-path, creating intermediate objects.

    A non-container on the way is replaced by an object. Numeric segments
    index into existing lists.

    Raises:
        InvalidPathError: a list index is out of range or not numeric
    """
    segments = parse_path(path)
    if not segments:
        raise ValueError("Cannot set an empty path")

    current: Any = tree
    for segment in segments[:-1]:
        nxt = _child(current, segment)
        if nxt is _MISSING or not isinstance(nxt, (dict, list)):
            nxt = {}
            _assign(current, segment, nxt)
        current = nxt
    _assign(current, segments[-1], value)


def _assign(container: Any, segment: str, value: Any) -> None:
    if isinstance(container, list) and segment.isdigit():
        index = int(segment)
        if index < len(container):
            container[index] = value
            return
        if index == len(container):
            container.append(value)
            return
        raise InvalidPathError(
            f"Index {index} out of range for list of length {len(container)}",
            {"segment": segment},
        )
    if isinstance(container, list):
        raise InvalidPathError(
            f"Cannot address a list with non-numeric segment '{segment}'",
            {"segment": segment},
        )
    container[segment] = value


def delete_path(tree: dict[str, Any], path: str) -> bool:
    """Remove the leaf at a dot-path. Returns False if it was already absent."""
    segments = parse_path(path)
    if not segments:
        return False
    parent = get_path(tree, ".".join(segments[:-1])) if len(segments) > 1 else tree
    last = segments[-1]
    if isinstance(parent, dict) and last in parent:
        del parent[last]
        return True
    if isinstance(parent, list) and last.isdigit() and int(last) < len(parent):
        del parent[int(last)]
        return True
    return False


# =============================================================================
# Runtime state construction
# =============================================================================

def default_player_state() -> dict[str, Any]:
    """Runtime fields every player record carries."""
    return {
        "actionRequired": False,
        "actionsAllowed": None,
        "illegalActionCount": 0,
        "privateMessage": "",
    }


def create_initial_state(init_phase: str, player_ids: list[str]) -> GameState:
    """Create the state a session starts from: init phase, all players at defaults."""
    if len(set(player_ids)) != len(player_ids):
        raise ValueError("Player ids must be unique")
    return {
        "game": {
            "currentPhase": init_phase,
            "gameEnded": False,
            "publicMessage": "",
        },
        "players": {pid: default_player_state() for pid in player_ids},
    }


def clone_state(state: GameState) -> GameState:
    """Deep copy the state."""
    return deepcopy(state)


def current_phase(state: GameState) -> str | None:
    return get_path(state, "game.currentPhase")


def has_error(state: GameState) -> bool:
    return bool(get_path(state, "game.gameError"))


def is_game_ended(state: GameState) -> bool:
    return bool(get_path(state, "game.gameEnded", False))


def player_ids(state: GameState) -> list[str]:
    players = state.get("players") or {}
    return list(players.keys())


def actions_allowed(player: dict[str, Any]) -> bool:
    """A player's effective actionsAllowed; None falls back to actionRequired."""
    allowed = player.get("actionsAllowed")
    if allowed is None:
        return bool(player.get("actionRequired", False))
    return bool(allowed)


def players_requiring_action(state: GameState) -> list[str]:
    players = state.get("players") or {}
    return [pid for pid, p in players.items() if isinstance(p, dict) and p.get("actionRequired")]


def record_error(state: GameState, error: GameEngineError) -> GameState:
    """Return a copy of the state with the error written to game.gameError."""
    new_state = clone_state(state)
    game = new_state.setdefault("game", {})
    game["gameError"] = error.to_record()
    game["publicMessage"] = f"Game Error: {error.message}"
    return new_state
