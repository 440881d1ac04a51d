"""
Logic Evaluator for transition preconditions and action validation checks.

Expressions are JSON-Logic trees: a single-key dict maps an operator to its
arguments, anything else is a literal.

Supports:
- Comparisons: ==, ===, !=, !==, <, <=, >, >= (< and <= also take a "between" form)
- Boolean: and, or, not, !, !!, if
- Arithmetic: +, -, *, /, %, max, min
- Data access: var, missing, missing_some, lookup, in, cat
- Player quantifiers: allPlayers, anyPlayer

The evaluator is closed: an operator outside this set is an ExpressionError,
never a silent pass. Quantifiers range over the players map so preconditions
never need a concrete player id or list index:

    {"allPlayers": ["actionRequired", "==", false]}
    {"anyPlayer": ["score", ">=", 3]}
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable
import re

from .errors import ExpressionError
from .state import GameState, get_path, players_requiring_action


COMPARISON_OPERATORS = frozenset({"==", "===", "!=", "!==", "<", "<=", ">", ">="})
QUANTIFIERS = frozenset({"allPlayers", "anyPlayer"})
SUPPORTED_OPERATIONS = frozenset(
    COMPARISON_OPERATORS
    | QUANTIFIERS
    | {
        "and", "or", "not", "!", "!!", "if",
        "+", "-", "*", "/", "%", "max", "min",
        "var", "missing", "missing_some", "lookup", "in", "cat",
    }
)

# Fields the router computes from the players map before each evaluation.
COMPUTED_CONTEXT_FIELDS = frozenset({
    "playersCount",
    "playersRequiringActionCount",
    "allPlayersCompletedActions",
})

_FORBIDDEN_INDEX = re.compile(r"players(?:\[(\d+)\]|\.(\d+)(?=\.|$))")
_EXPLICIT_PLAYER = re.compile(r"^players\.([A-Za-z_][\w-]*)\.(.+)$")


@dataclass
class ExpressionContext:
    """
    Context for evaluating expressions.

    Provides access to:
    - game and players from the current state
    - input: the pending player action, if any
    - computed router fields (player counts)
    """
    game_state: GameState
    input: Any = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_state(cls, state: GameState, input: Any = None) -> ExpressionContext:
        return cls(game_state=state, input=input)

    def computed_fields(self) -> dict[str, Any]:
        """Router-computed fields available to every expression."""
        players = self.game_state.get("players") or {}
        requiring = len(players_requiring_action(self.game_state))
        return {
            "playersCount": len(players),
            "playersRequiringActionCount": requiring,
            "allPlayersCompletedActions": requiring == 0,
        }

    def as_data(self) -> dict[str, Any]:
        data = {
            "game": self.game_state.get("game") or {},
            "players": self.game_state.get("players") or {},
            "input": self.input,
        }
        data.update(self.computed_fields())
        data.update(self.extra)
        return data


def truthy(value: Any) -> bool:
    """JSON-Logic truthiness: empty arrays are false, objects are true."""
    if isinstance(value, dict):
        return True
    return bool(value)


def _to_number(value: Any) -> int | float | None:
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return int(number) if number.is_integer() and "." not in value else number
    return None


def _loose_equals(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if isinstance(left, (int, float, bool, str)) and isinstance(right, (int, float, bool, str)):
        a, b = _to_number(left), _to_number(right)
        if a is not None and b is not None:
            return a == b
    return left == right


def _strict_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    return type(left) is type(right) and left == right


class ExpressionEvaluator:
    """
    Evaluates JSON-Logic expressions against an ExpressionContext.

    Usage:
        evaluator = ExpressionEvaluator()
        ctx = ExpressionContext.for_state(state)
        evaluator.evaluate_condition({"==": [{"var": "game.round"}, 3]}, ctx)
    """

    def __init__(self):
        self._operations: dict[str, Callable[[list[Any], dict[str, Any]], Any]] = {
            "var": self._op_var,
            "missing": self._op_missing,
            "missing_some": self._op_missing_some,
            "lookup": self._op_lookup,
            "if": self._op_if,
            "and": self._op_and,
            "or": self._op_or,
            "not": self._op_not,
            "!": self._op_not,
            "!!": lambda args, data: truthy(self._eval(args[0], data)) if args else False,
            "in": self._op_in,
            "cat": lambda args, data: "".join(
                "" if v is None else str(v) for v in (self._eval(a, data) for a in args)
            ),
            "+": self._op_add,
            "-": self._op_subtract,
            "*": self._op_multiply,
            "/": self._op_divide,
            "%": self._op_modulo,
            "max": lambda args, data: self._numeric_reduce(max, args, data),
            "min": lambda args, data: self._numeric_reduce(min, args, data),
            "allPlayers": self._op_all_players,
            "anyPlayer": self._op_any_player,
        }
        for op in COMPARISON_OPERATORS:
            self._operations[op] = self._make_comparison(op)

    def evaluate(self, expr: Any, context: ExpressionContext | dict[str, Any]) -> Any:
        """
        Evaluate an expression.

        Args:
            expr: JSON-Logic tree or literal
            context: ExpressionContext, or an already-built data dict

        Returns:
            Evaluated value

        Raises:
            ExpressionError: the expression is malformed or uses an unknown operator
        """
        data = context.as_data() if isinstance(context, ExpressionContext) else context
        return self._eval(expr, data)

    def evaluate_condition(self, expr: Any, context: ExpressionContext | dict[str, Any]) -> bool:
        """Evaluate an expression as a boolean condition."""
        return truthy(self.evaluate(expr, context))

    def _eval(self, expr: Any, data: dict[str, Any]) -> Any:
        if isinstance(expr, list):
            return [self._eval(item, data) for item in expr]
        if not isinstance(expr, dict):
            return expr
        if len(expr) != 1:
            raise ExpressionError(
                f"Expression objects must have exactly one operator key, got {sorted(expr)}"
            )
        op, args = next(iter(expr.items()))
        handler = self._operations.get(op)
        if handler is None:
            raise ExpressionError(f"Unsupported operation '{op}'")
        if not isinstance(args, list):
            args = [args]
        return handler(args, data)

    # -------------------------------------------------------------------------
    # Data access
    # -------------------------------------------------------------------------

    def _op_var(self, args: list[Any], data: dict[str, Any]) -> Any:
        path = self._eval(args[0], data) if args else None
        default = self._eval(args[1], data) if len(args) > 1 else None
        if path is None or path == "":
            return data
        value = get_path(data, str(path))
        return default if value is None else value

    def _op_missing(self, args: list[Any], data: dict[str, Any]) -> list[Any]:
        keys = self._eval(args, data)
        if len(keys) == 1 and isinstance(keys[0], list):
            keys = keys[0]
        return [key for key in keys if get_path(data, str(key)) in (None, "")]

    def _op_missing_some(self, args: list[Any], data: dict[str, Any]) -> list[Any]:
        if len(args) != 2:
            raise ExpressionError("missing_some expects [minimum, [keys...]]")
        need = _to_number(self._eval(args[0], data))
        keys = self._eval(args[1], data)
        if need is None or not isinstance(keys, list):
            raise ExpressionError("missing_some expects a number and a list of keys")
        missing = self._op_missing([keys], data)
        return [] if len(keys) - len(missing) >= need else missing

    def _op_lookup(self, args: list[Any], data: dict[str, Any]) -> Any:
        if len(args) != 2:
            raise ExpressionError("lookup expects [collection, key]")
        collection = self._eval(args[0], data)
        key = self._eval(args[1], data)
        if isinstance(collection, list):
            index = _to_number(key)
            if isinstance(index, int) and not isinstance(key, bool) and 0 <= index < len(collection):
                return collection[index]
            return None
        if isinstance(collection, dict):
            return collection.get(str(key))
        return None

    # -------------------------------------------------------------------------
    # Logic
    # -------------------------------------------------------------------------

    def _op_if(self, args: list[Any], data: dict[str, Any]) -> Any:
        index = 0
        while index + 1 < len(args):
            if truthy(self._eval(args[index], data)):
                return self._eval(args[index + 1], data)
            index += 2
        if index < len(args):
            return self._eval(args[index], data)
        return None

    def _op_and(self, args: list[Any], data: dict[str, Any]) -> Any:
        value: Any = True
        for arg in args:
            value = self._eval(arg, data)
            if not truthy(value):
                return value
        return value

    def _op_or(self, args: list[Any], data: dict[str, Any]) -> Any:
        value: Any = False
        for arg in args:
            value = self._eval(arg, data)
            if truthy(value):
                return value
        return value

    def _op_not(self, args: list[Any], data: dict[str, Any]) -> bool:
        return not truthy(self._eval(args[0], data)) if args else True

    def _op_in(self, args: list[Any], data: dict[str, Any]) -> bool:
        if len(args) != 2:
            raise ExpressionError("in expects [needle, haystack]")
        needle, haystack = self._eval(args[0], data), self._eval(args[1], data)
        if isinstance(haystack, str):
            return isinstance(needle, str) and needle in haystack
        if isinstance(haystack, list):
            return any(_loose_equals(needle, item) for item in haystack)
        return False

    # -------------------------------------------------------------------------
    # Comparison
    # -------------------------------------------------------------------------

    def _make_comparison(self, op: str) -> Callable[[list[Any], dict[str, Any]], bool]:
        def compare(args: list[Any], data: dict[str, Any]) -> bool:
            values = [self._eval(arg, data) for arg in args]
            if op in {"<", "<="} and len(values) == 3:
                return self._compare(values[0], values[1], op) and self._compare(values[1], values[2], op)
            if len(values) != 2:
                raise ExpressionError(f"'{op}' expects two arguments, got {len(values)}")
            return self._compare(values[0], values[1], op)
        return compare

    def _compare(self, left: Any, right: Any, op: str) -> bool:
        """Perform comparison operation."""
        if op == "==":
            return _loose_equals(left, right)
        if op == "!=":
            return not _loose_equals(left, right)
        if op == "===":
            return _strict_equals(left, right)
        if op == "!==":
            return not _strict_equals(left, right)

        if isinstance(left, str) and isinstance(right, str):
            a, b = left, right
        else:
            a, b = _to_number(left), _to_number(right)
            if a is None or b is None:
                return False
        if op == "<":
            return a < b
        if op == "<=":
            return a <= b
        if op == ">":
            return a > b
        if op == ">=":
            return a >= b
        raise ExpressionError(f"Unknown comparison operator '{op}'")

    # -------------------------------------------------------------------------
    # Arithmetic
    # -------------------------------------------------------------------------

    def _numbers(self, args: list[Any], data: dict[str, Any]) -> list[int | float] | None:
        numbers = [_to_number(self._eval(arg, data)) for arg in args]
        if any(n is None for n in numbers):
            return None
        return numbers

    def _op_add(self, args: list[Any], data: dict[str, Any]) -> Any:
        numbers = self._numbers(args, data)
        return None if numbers is None else sum(numbers)

    def _op_subtract(self, args: list[Any], data: dict[str, Any]) -> Any:
        numbers = self._numbers(args, data)
        if not numbers:
            return None
        if len(numbers) == 1:
            return -numbers[0]
        return numbers[0] - numbers[1]

    def _op_multiply(self, args: list[Any], data: dict[str, Any]) -> Any:
        numbers = self._numbers(args, data)
        if numbers is None:
            return None
        product: int | float = 1
        for n in numbers:
            product *= n
        return product

    def _op_divide(self, args: list[Any], data: dict[str, Any]) -> Any:
        numbers = self._numbers(args, data)
        if not numbers or len(numbers) != 2 or numbers[1] == 0:
            return None
        return numbers[0] / numbers[1]

    def _op_modulo(self, args: list[Any], data: dict[str, Any]) -> Any:
        numbers = self._numbers(args, data)
        if not numbers or len(numbers) != 2 or numbers[1] == 0:
            return None
        return numbers[0] % numbers[1]

    def _numeric_reduce(self, fn: Callable, args: list[Any], data: dict[str, Any]) -> Any:
        numbers = self._numbers(args, data)
        return fn(numbers) if numbers else None

    # -------------------------------------------------------------------------
    # Player quantifiers
    # -------------------------------------------------------------------------

    def _quantifier_args(self, name: str, args: list[Any]) -> tuple[str, str, Any]:
        if len(args) != 3 or not isinstance(args[0], str) or args[1] not in COMPARISON_OPERATORS:
            raise ExpressionError(f"{name} expects [field, comparison, value], got {args!r}")
        return args[0], args[1], args[2]

    def _player_records(self, data: dict[str, Any]) -> list[dict[str, Any]]:
        players = data.get("players") or {}
        records = players.values() if isinstance(players, dict) else players
        return [p for p in records if isinstance(p, dict)]

    def _op_all_players(self, args: list[Any], data: dict[str, Any]) -> bool:
        field_name, op, value_expr = self._quantifier_args("allPlayers", args)
        value = self._eval(value_expr, data)
        return all(
            self._compare(get_path(player, field_name), value, op)
            for player in self._player_records(data)
        )

    def _op_any_player(self, args: list[Any], data: dict[str, Any]) -> bool:
        field_name, op, value_expr = self._quantifier_args("anyPlayer", args)
        value = self._eval(value_expr, data)
        return any(
            self._compare(get_path(player, field_name), value, op)
            for player in self._player_records(data)
        )


# =============================================================================
# Static inspection (used by the artifact validator)
# =============================================================================

def find_unsupported_operations(logic: Any) -> list[str]:
    """List operators outside the supported set, plus malformed quantifiers."""
    found: list[str] = []

    def check(node: Any) -> None:
        if isinstance(node, list):
            for item in node:
                check(item)
            return
        if not isinstance(node, dict):
            return
        for key, value in node.items():
            if key in QUANTIFIERS:
                if (
                    not isinstance(value, list)
                    or len(value) != 3
                    or not isinstance(value[0], str)
                    or value[1] not in COMPARISON_OPERATORS
                ):
                    found.append(f"{key}:must-be-array-format-[field,op,value]")
                else:
                    check(value[2])
                continue
            if key not in SUPPORTED_OPERATIONS:
                found.append(key)
            check(value)

    check(logic)
    return list(dict.fromkeys(found))


_BINARY_OPERATIONS = frozenset({"in", "lookup", "missing_some"})


def find_malformed_expressions(logic: Any) -> list[str]:
    """
    List shape errors the evaluator would raise on.

    Mirrors the evaluator's arity rules: one operator key per object, two
    arguments for comparisons (three for the between form of < and <=),
    and two for in, lookup and missing_some. Operator names and quantifier
    shapes are left to find_unsupported_operations.
    """
    found: list[str] = []

    def check(node: Any) -> None:
        if isinstance(node, list):
            for item in node:
                check(item)
            return
        if not isinstance(node, dict):
            return
        if len(node) != 1:
            found.append(f"object with keys {sorted(node)} must have exactly one operator")
            for value in node.values():
                check(value)
            return

        op, value = next(iter(node.items()))
        args = value if isinstance(value, list) else [value]
        if op in QUANTIFIERS:
            if isinstance(value, list) and len(value) == 3:
                check(value[2])
            return

        if op in COMPARISON_OPERATORS:
            allowed = {2, 3} if op in {"<", "<="} else {2}
            if len(args) not in allowed:
                found.append(f"'{op}' expects two arguments, got {len(args)}")
        elif op in _BINARY_OPERATIONS and len(args) != 2:
            found.append(f"'{op}' expects two arguments, got {len(args)}")
        elif op == "missing_some":
            minimum, keys = args
            if not isinstance(minimum, (dict, int, float)) or isinstance(minimum, bool):
                found.append("'missing_some' expects a numeric minimum")
            if not isinstance(keys, (dict, list)):
                found.append("'missing_some' expects a list of keys")
        check(args)

    check(logic)
    return list(dict.fromkeys(found))


def _walk_strings(node: Any):
    if isinstance(node, str):
        yield node
    elif isinstance(node, list):
        for item in node:
            yield from _walk_strings(item)
    elif isinstance(node, dict):
        for key, value in node.items():
            yield key
            yield from _walk_strings(value)


def find_forbidden_index(logic: Any) -> str | None:
    """Return the first literal index into the players map (players[0], players.1.x)."""
    for text in _walk_strings(logic):
        match = _FORBIDDEN_INDEX.search(text)
        if match:
            return match.group(0)
    return None


def find_explicit_player_reference(logic: Any) -> str | None:
    """Return the first var path that names a concrete player (players.player1.score)."""
    for path in extract_var_references(logic):
        match = _EXPLICIT_PLAYER.match(path)
        if match and not match.group(1).isdigit():
            return path
    return None


def extract_var_references(logic: Any) -> list[str]:
    """Collect every string path referenced through `var`."""
    refs: list[str] = []

    def traverse(node: Any) -> None:
        if isinstance(node, list):
            for item in node:
                traverse(item)
            return
        if not isinstance(node, dict):
            return
        for key, value in node.items():
            if key == "var":
                target = value[0] if isinstance(value, list) and value else value
                if isinstance(target, str) and target:
                    refs.append(target)
                else:
                    traverse(target)
            elif key in QUANTIFIERS and isinstance(value, list) and len(value) == 3:
                traverse(value[2])
            else:
                traverse(value)

    traverse(logic)
    return refs


def quantifier_fields(logic: Any) -> list[str]:
    """Collect the player field names used by allPlayers/anyPlayer."""
    fields: list[str] = []

    def traverse(node: Any) -> None:
        if isinstance(node, list):
            for item in node:
                traverse(item)
        elif isinstance(node, dict):
            for key, value in node.items():
                if key in QUANTIFIERS and isinstance(value, list) and value and isinstance(value[0], str):
                    fields.append(value[0])
                traverse(value)

    traverse(logic)
    return fields


# Convenience function
def evaluate_expression(expr: Any, game_state: GameState, input: Any = None) -> Any:
    """
    Evaluate an expression in a game context.

    Args:
        expr: JSON-Logic expression
        game_state: Current game state
        input: Optional pending player action

    Returns:
        Evaluated value
    """
    context = ExpressionContext.for_state(game_state, input=input)
    return ExpressionEvaluator().evaluate(expr, context)
