"""
Router - decides what happens next from the current phase.

The router reads state and artifacts; it never applies state deltas.
Given a state it either:
- reports the game finished or already failed (pass-through)
- selects the first transition out of the current phase whose
  preconditions all hold, plus the instruction to run for it
- reports that the phase is waiting for player input
- records a deadlock when an automatic phase cannot leave

Routing a player action (route_action) checks that the player may act and
runs the action's validation checks against the submitted input.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, TYPE_CHECKING

from loguru import logger

from .errors import (
    DeadlockError, ExpressionError, GameEngineError, InvalidStateError, MissingInstructionError,
)
from .expression import ExpressionContext, ExpressionEvaluator
from .state import (
    GameState, actions_allowed, current_phase, has_error, is_game_ended, record_error,
)
from .templates import render_payload

if TYPE_CHECKING:
    from ..spec_schema.artifacts import Transition, TransitionsArtifact


log = logger.bind(component="router")


class RouterStatus(Enum):
    """Outcome of one router step."""
    AWAITING_INPUT = "awaiting_input"
    TRANSITION_READY = "transition_ready"
    ERROR = "error"
    FINISHED = "finished"


@dataclass
class RouterDecision:
    """
    Result of a router step.

    On ERROR, state carries the recorded game.gameError.
    """
    status: RouterStatus
    state: GameState
    requires_player_input: bool = False
    transition_ready: bool = False
    selected_transition: Transition | None = None
    instruction: Any = None
    error: GameEngineError | None = None


@dataclass
class ActionRoute:
    """Result of routing a player action."""
    accepted: bool
    state: GameState
    player_id: str
    instruction: Any = None
    rejection: str | None = None
    error: GameEngineError | None = None

    @classmethod
    def reject(cls, state: GameState, player_id: str, reason: str) -> ActionRoute:
        return cls(accepted=False, state=state, player_id=player_id, rejection=reason)


def build_action_variables(player_id: str, action: Any) -> dict[str, Any]:
    """Template variables bound while a player action is validated and applied."""
    payload = action if isinstance(action, dict) else {"value": action}
    return {
        "playerId": player_id,
        "playerAction": action,
        "input": payload,
    }


class Router:
    """
    Phase state machine over the transitions artifact.

    Instruction payloads are the session's compiled instruction trees:
    player_phase_instructions keyed by phase, transition_instructions keyed
    by transition id.
    """

    def __init__(
        self,
        transitions: TransitionsArtifact,
        player_phase_instructions: Mapping[str, Any],
        transition_instructions: Mapping[str, Any],
    ):
        self.transitions = transitions
        self.player_phase_instructions = dict(player_phase_instructions)
        self.transition_instructions = dict(transition_instructions)
        self.evaluator = ExpressionEvaluator()

    def step(self, state: GameState, pending_action: Any = None) -> RouterDecision:
        """
        Decide the next move for the given state.

        Args:
            state: Current game state
            pending_action: The player action being processed, if any;
                bound as `input` while preconditions are evaluated

        Returns:
            RouterDecision
        """
        if has_error(state):
            return RouterDecision(status=RouterStatus.ERROR, state=state)
        if is_game_ended(state):
            return RouterDecision(status=RouterStatus.FINISHED, state=state)

        phase = current_phase(state)
        if phase not in self.transitions.phases:
            return self._fail(state, InvalidStateError(
                f"Current phase '{phase}' is not a declared phase",
                {"phase": phase, "phases": list(self.transitions.phases)},
            ))

        requires_input = self.transitions.requires_player_input(phase)
        candidates = self.transitions.outgoing(phase)

        for transition in candidates:
            if not self._preconditions_hold(transition, state, pending_action):
                continue
            instruction = self.transition_instructions.get(transition.id)
            if instruction is None:
                return self._fail(state, MissingInstructionError(
                    f"No instruction for transition '{transition.id}'",
                    {"phase": phase, "transition": transition.id},
                ))
            log.debug(f"Transition ready: {transition.id} ({phase} -> {transition.to_phase})")
            return RouterDecision(
                status=RouterStatus.TRANSITION_READY,
                state=state,
                transition_ready=True,
                selected_transition=transition,
                instruction=instruction,
            )

        if requires_input:
            log.debug(f"Awaiting player input in phase {phase}")
            return RouterDecision(
                status=RouterStatus.AWAITING_INPUT,
                state=state,
                requires_player_input=True,
            )

        if not candidates:
            # Terminal phase the state was loaded into without gameEnded set.
            return RouterDecision(status=RouterStatus.FINISHED, state=state)

        return self._fail(state, DeadlockError(
            f"No transition can fire from automatic phase '{phase}'",
            {"phase": phase, "transitionsChecked": [t.id for t in candidates]},
        ))

    def _preconditions_hold(
        self, transition: Transition, state: GameState, pending_action: Any
    ) -> bool:
        context = ExpressionContext.for_state(state, input=pending_action)
        for precondition in transition.preconditions:
            if precondition.blocks_automatic_firing:
                return False
            try:
                if not self.evaluator.evaluate_condition(precondition.logic, context):
                    return False
            except ExpressionError as e:
                log.warning(
                    f"Precondition {precondition.id} of {transition.id} failed to evaluate: {e}"
                )
                return False
        return True

    def _fail(self, state: GameState, error: GameEngineError) -> RouterDecision:
        log.error(f"{error.error_type}: {error.message}")
        return RouterDecision(
            status=RouterStatus.ERROR,
            state=record_error(state, error),
            error=error,
        )

    # -------------------------------------------------------------------------
    # Player actions
    # -------------------------------------------------------------------------

    def route_action(self, state: GameState, player_id: str, action: Any) -> ActionRoute:
        """
        Check a player action and pick the instruction that applies it.

        Rejections leave the state alone; the caller decides how to
        penalize them. A missing phase instruction is recorded as an error.
        """
        phase = current_phase(state)
        if not self.transitions.requires_player_input(phase):
            return ActionRoute.reject(state, player_id, f"Phase '{phase}' does not accept player actions")

        player = (state.get("players") or {}).get(player_id)
        if player is None:
            return ActionRoute.reject(state, player_id, f"Unknown player '{player_id}'")
        if not actions_allowed(player):
            return ActionRoute.reject(state, player_id, "You cannot act right now")

        entry = self.player_phase_instructions.get(phase)
        if entry is None:
            error = MissingInstructionError(
                f"No player instructions for phase '{phase}'", {"phase": phase}
            )
            log.error(f"{error.error_type}: {error.message}")
            return ActionRoute(
                accepted=False, state=record_error(state, error), player_id=player_id, error=error
            )

        instruction = self._select_action(entry.get("playerActions") or [], action)
        if instruction is None:
            return ActionRoute.reject(state, player_id, "Unknown action for this phase")

        variables = build_action_variables(player_id, action)
        context = ExpressionContext.for_state(state, input=variables["input"])
        for check in (instruction.get("validation") or {}).get("checks") or []:
            logic = render_payload(check.get("logic"), variables)
            message = check.get("errorMessage") or "Invalid action"
            try:
                passed = self.evaluator.evaluate_condition(logic, context)
            except ExpressionError as e:
                log.warning(f"Validation check {check.get('id')} failed to evaluate: {e}")
                passed = False
            if not passed:
                return ActionRoute.reject(state, player_id, render_payload(message, variables))

        return ActionRoute(accepted=True, state=state, player_id=player_id, instruction=instruction)

    def _select_action(self, actions: list[dict[str, Any]], action: Any) -> dict[str, Any] | None:
        key = None
        if isinstance(action, dict):
            key = action.get("actionId") or action.get("action")
        if key is not None:
            for candidate in actions:
                if key in (candidate.get("id"), candidate.get("actionName")):
                    return candidate
        if len(actions) == 1:
            return actions[0]
        return None
