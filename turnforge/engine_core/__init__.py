"""
Engine Core - Deterministic runtime for phase-driven turn-based games.

The engine is the runtime that:
1. Holds GameState as a plain JSON tree
2. Evaluates JSON-Logic preconditions and validation checks
3. Routes the current phase to the next transition or to player input
4. Applies instruction state deltas atomically
5. Resolves player templates and instruction placeholders
"""

from .errors import (
    GameEngineError,
    InvalidStateError,
    DeadlockError,
    MissingInstructionError,
    IterationLimitError,
    StateDeltaError,
    TypeMismatchError,
    InvalidPathError,
    TemplateResolutionError,
    RngConfigurationError,
    ExpressionError,
)
from .state import GameState, ValueKind, kind_of, create_initial_state
from .expression import ExpressionContext, ExpressionEvaluator, evaluate_expression
from .state_delta import StateDeltaEngine, apply_state_delta, resolve_rng_operations
from .templates import (
    CompiledTemplate,
    Placeholder,
    PlayerMapping,
    bind_player_aliases,
    compile_payload,
    find_unresolved,
    render_payload,
    resolve_player_templates,
)
from .router import Router, RouterDecision, RouterStatus, ActionRoute

__all__ = [
    "GameEngineError",
    "InvalidStateError",
    "DeadlockError",
    "MissingInstructionError",
    "IterationLimitError",
    "StateDeltaError",
    "TypeMismatchError",
    "InvalidPathError",
    "TemplateResolutionError",
    "RngConfigurationError",
    "ExpressionError",
    "GameState",
    "ValueKind",
    "kind_of",
    "create_initial_state",
    "ExpressionContext",
    "ExpressionEvaluator",
    "evaluate_expression",
    "StateDeltaEngine",
    "apply_state_delta",
    "resolve_rng_operations",
    "CompiledTemplate",
    "Placeholder",
    "PlayerMapping",
    "bind_player_aliases",
    "compile_payload",
    "find_unresolved",
    "render_payload",
    "resolve_player_templates",
    "Router",
    "RouterDecision",
    "RouterStatus",
    "ActionRoute",
]
