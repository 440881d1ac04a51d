"""
State-Delta Engine - the single point of state mutation.

Every change an instruction makes to the game goes through apply_state_delta().

Design principles:
- Pure: (state, ops) -> new_state, the input state is never touched
- Ordered: ops apply in sequence and each sees the result of the previous one
- Atomic: one failing op discards the whole batch
- Typed: ops check the ValueKind of the leaf they touch

Ops (plain dicts, as dumped from the artifact models):
    {"op": "set", "path": "game.round", "value": 1}
    {"op": "increment", "path": "players.p-1.score", "value": 1}
    {"op": "append", "path": "game.log", "value": "..."}
    {"op": "delete", "path": "game.pending"}
    {"op": "transfer", "fromPath": "players.a.gold", "toPath": "players.b.gold", "amount": 2}
    {"op": "merge", "path": "game.board", "value": {...}}
    {"op": "rng", "path": "game.weather", "choices": [...], "probabilities": [...]}

Paths in `players.[*].field` form expand to one op per player.
"""

from __future__ import annotations
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping
import random
import re

from loguru import logger

from .errors import (
    GameEngineError, InvalidPathError, RngConfigurationError, StateDeltaError,
    TypeMismatchError,
)
from .state import (
    GameState, clone_state, delete_path, get_path, has_path, is_number,
    kind_of, parse_path, player_ids, set_path,
)
from .templates import contains_placeholder


log = logger.bind(component="state_delta")

StateDeltaOp = Mapping[str, Any]

PROBABILITY_TOLERANCE = 0.01

_PLAYER_WILDCARD = re.compile(r"^players(?:\.\[\*\]|\[\*\]|\.\*)\.(.+)$")


def _op_name(op: StateDeltaOp) -> str:
    return str(op.get("op", ""))


# =============================================================================
# RNG resolution
# =============================================================================

def validate_rng_operation(op: StateDeltaOp) -> None:
    """Check an rng op's choices and probabilities."""
    choices = op.get("choices")
    probabilities = op.get("probabilities")
    path = op.get("path")
    if not isinstance(choices, list) or not choices:
        raise RngConfigurationError(
            f"rng op at '{path}' needs a non-empty choices list", {"op": dict(op)}
        )
    if not isinstance(probabilities, list) or len(probabilities) != len(choices):
        raise RngConfigurationError(
            f"rng op at '{path}' has {len(choices)} choices but "
            f"{len(probabilities) if isinstance(probabilities, list) else 0} probabilities",
            {"op": dict(op)},
        )
    if not all(is_number(p) and p >= 0 for p in probabilities):
        raise RngConfigurationError(
            f"rng op at '{path}' has non-numeric or negative probabilities", {"op": dict(op)}
        )
    total = sum(probabilities)
    if abs(total - 1.0) > PROBABILITY_TOLERANCE:
        raise RngConfigurationError(
            f"rng op at '{path}' probabilities sum to {total}, expected 1.0",
            {"op": dict(op), "sum": total},
        )


def draw_choice(choices: list[Any], probabilities: list[float], rng: random.Random) -> Any:
    """Pick one choice by cumulative probability; rounding falls through to the last."""
    roll = rng.random()
    cumulative = 0.0
    for choice, probability in zip(choices, probabilities):
        cumulative += probability
        if roll < cumulative:
            return choice
    return choices[-1]


def resolve_rng_operations(ops: Iterable[StateDeltaOp], rng: random.Random) -> list[dict[str, Any]]:
    """
    Replace every rng op with a set op holding the drawn value.

    Each rng op is drawn exactly once. Other ops pass through unchanged.
    """
    resolved: list[dict[str, Any]] = []
    for op in ops:
        if _op_name(op) != "rng":
            resolved.append(dict(op))
            continue
        validate_rng_operation(op)
        value = draw_choice(op["choices"], op["probabilities"], rng)
        log.debug(f"rng draw for {op.get('path')}: {value!r}")
        resolved.append({"op": "set", "path": op["path"], "value": deepcopy(value)})
    return resolved


# =============================================================================
# Engine
# =============================================================================

@dataclass
class StateDeltaEngine:
    """
    Applies StateDelta op batches.

    Stateless apart from the random source used for rng ops.
    """
    rng: random.Random = field(default_factory=random.Random)

    def apply(self, state: GameState, ops: Iterable[StateDeltaOp]) -> GameState:
        """
        Apply ops in order and return the new state.

        Raises:
            StateDeltaError: any op failed; the input state is unchanged
        """
        new_state = clone_state(state)
        expanded = self._expand_wildcards(new_state, list(ops))
        for op in resolve_rng_operations(expanded, self.rng):
            self._apply_one(new_state, op)
        return new_state

    def _expand_wildcards(self, state: GameState, ops: list[StateDeltaOp]) -> list[dict[str, Any]]:
        expanded: list[dict[str, Any]] = []
        for op in ops:
            path = op.get("path")
            match = _PLAYER_WILDCARD.match(path) if isinstance(path, str) else None
            if match is None:
                for key in ("fromPath", "toPath"):
                    value = op.get(key)
                    if isinstance(value, str) and _PLAYER_WILDCARD.match(value):
                        raise InvalidPathError(
                            f"Player wildcards are not allowed in transfer paths: '{value}'",
                            {"op": dict(op)},
                        )
                expanded.append(dict(op))
                continue
            for pid in player_ids(state):
                expanded.append({**op, "path": f"players.{pid}.{match.group(1)}"})
        return expanded

    def _check_path(self, state: GameState, path: Any, op: StateDeltaOp) -> str:
        if not isinstance(path, str) or not path:
            raise InvalidPathError(f"Op '{_op_name(op)}' is missing a path", {"op": dict(op)})
        if contains_placeholder(path):
            raise InvalidPathError(
                f"Path '{path}' still contains a template placeholder", {"op": dict(op)}
            )
        if "[*]" in path or ".*." in path:
            raise InvalidPathError(f"Path '{path}' has a misplaced wildcard", {"op": dict(op)})

        segments = parse_path(path)
        root = segments[0] if segments else ""
        if root == "game" and len(segments) >= 2:
            return path
        if root == "players" and len(segments) >= 3:
            if segments[1] not in (state.get("players") or {}):
                raise InvalidPathError(
                    f"Path '{path}' names unknown player '{segments[1]}'", {"op": dict(op)}
                )
            return path
        raise InvalidPathError(
            f"Path '{path}' must be rooted at game.<field> or players.<id>.<field>",
            {"op": dict(op)},
        )

    def _apply_one(self, state: GameState, op: StateDeltaOp) -> None:
        handler = self._handlers().get(_op_name(op))
        if handler is None:
            raise StateDeltaError(f"Unknown state delta op '{_op_name(op)}'", {"op": dict(op)})
        try:
            handler(state, op)
        except GameEngineError:
            raise
        except (TypeError, ValueError, KeyError, IndexError) as e:
            raise StateDeltaError(
                f"Op '{_op_name(op)}' on '{op.get('path')}' failed: {e}", {"op": dict(op)}
            ) from e

    def _handlers(self) -> dict[str, Callable[[GameState, StateDeltaOp], None]]:
        return {
            "set": self._apply_set,
            "increment": self._apply_increment,
            "append": self._apply_append,
            "delete": self._apply_delete,
            "transfer": self._apply_transfer,
            "merge": self._apply_merge,
        }

    # -------------------------------------------------------------------------
    # Op handlers
    # -------------------------------------------------------------------------

    def _apply_set(self, state: GameState, op: StateDeltaOp) -> None:
        path = self._check_path(state, op.get("path"), op)
        set_path(state, path, deepcopy(op.get("value")))

    def _apply_increment(self, state: GameState, op: StateDeltaOp) -> None:
        path = self._check_path(state, op.get("path"), op)
        amount = op.get("value")
        if not is_number(amount):
            raise TypeMismatchError(
                f"increment at '{path}' needs a numeric value, got {amount!r}", {"op": dict(op)}
            )
        current = get_path(state, path)
        if not is_number(current):
            raise TypeMismatchError(
                f"Cannot increment '{path}': leaf is {_describe(current)}, not a number",
                {"op": dict(op)},
            )
        set_path(state, path, current + amount)

    def _apply_append(self, state: GameState, op: StateDeltaOp) -> None:
        path = self._check_path(state, op.get("path"), op)
        value = deepcopy(op.get("value"))
        if not has_path(state, path):
            set_path(state, path, [value])
            return
        current = get_path(state, path)
        if not isinstance(current, list):
            raise TypeMismatchError(
                f"Cannot append to '{path}': leaf is {_describe(current)}, not an array",
                {"op": dict(op)},
            )
        current.append(value)

    def _apply_delete(self, state: GameState, op: StateDeltaOp) -> None:
        path = self._check_path(state, op.get("path"), op)
        delete_path(state, path)

    def _apply_transfer(self, state: GameState, op: StateDeltaOp) -> None:
        from_path = self._check_path(state, op.get("fromPath"), op)
        to_path = self._check_path(state, op.get("toPath"), op)

        source = get_path(state, from_path)
        if not is_number(source):
            raise TypeMismatchError(
                f"Cannot transfer from '{from_path}': leaf is {_describe(source)}, not a number",
                {"op": dict(op)},
            )
        amount = op.get("amount", op.get("value"))
        if amount is None:
            amount = source
        if not is_number(amount) or amount < 0:
            raise TypeMismatchError(
                f"transfer amount must be a non-negative number, got {amount!r}", {"op": dict(op)}
            )
        if amount > source:
            raise StateDeltaError(
                f"Cannot transfer {amount} from '{from_path}': only {source} available",
                {"op": dict(op)},
            )

        destination = get_path(state, to_path, 0)
        if not is_number(destination):
            raise TypeMismatchError(
                f"Cannot transfer to '{to_path}': leaf is {_describe(destination)}, not a number",
                {"op": dict(op)},
            )
        set_path(state, from_path, source - amount)
        set_path(state, to_path, destination + amount)

    def _apply_merge(self, state: GameState, op: StateDeltaOp) -> None:
        path = self._check_path(state, op.get("path"), op)
        value = op.get("value")
        if not isinstance(value, dict):
            raise TypeMismatchError(
                f"merge at '{path}' needs an object value, got {_describe(value)}", {"op": dict(op)}
            )
        current = get_path(state, path)
        if current is None:
            set_path(state, path, deepcopy(value))
            return
        if not isinstance(current, dict):
            raise TypeMismatchError(
                f"Cannot merge into '{path}': leaf is {_describe(current)}, not an object",
                {"op": dict(op)},
            )
        current.update(deepcopy(value))


def _describe(value: Any) -> str:
    try:
        return kind_of(value).value
    except TypeError:
        return type(value).__name__


# Convenience function
def apply_state_delta(
    state: GameState,
    ops: Iterable[StateDeltaOp],
    rng: random.Random | None = None,
) -> GameState:
    """Apply a batch of state delta ops; see StateDeltaEngine.apply."""
    return StateDeltaEngine(rng=rng or random.Random()).apply(state, ops)
