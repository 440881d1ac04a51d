"""
Game Loop - drives the Router and the State-Delta Engine.

The loop:
1. A player submits an action
2. Router checks the player may act and the action passes its checks
3. The action instruction's state delta is applied
4. Router picks transitions out of the current phase, one at a time;
   each fired transition applies its instruction and moves the phase
5. Stop when the game waits for input, ends, or records an error

At most config.max_iterations transitions fire per call. The counter lives
only in the loop and never in game state.

Instructions with mechanicsGuidance, or placeholders the built-in
variables cannot fill, go through an optional MechanicsExecutor first.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol
import random

from loguru import logger

from ..config import EngineConfig
from ..engine_core.errors import (
    GameEngineError, IterationLimitError, StateDeltaError, TemplateResolutionError,
)
from ..engine_core.router import ActionRoute, Router, RouterStatus, build_action_variables
from ..engine_core.state import (
    GameState, clone_state, create_initial_state, get_path, has_error, is_game_ended,
    record_error, set_path,
)
from ..engine_core.state_delta import StateDeltaEngine
from ..engine_core.templates import find_unresolved, render_payload


log = logger.bind(component="game_loop")


@dataclass
class MechanicsResult:
    """What a mechanics executor computed for one instruction."""
    variables: dict[str, Any] = field(default_factory=dict)
    state_delta: list[dict[str, Any]] = field(default_factory=list)


class MechanicsExecutor(Protocol):
    """
    Computes the non-deterministic part of an instruction.

    Gets the compiled instruction, the current state and the variables
    bound so far. Returns extra variables for the instruction's
    placeholders and extra ops applied before the instruction's own.
    """

    def execute(
        self, instruction: dict[str, Any], state: GameState, variables: dict[str, Any]
    ) -> MechanicsResult:
        ...


@dataclass
class LoopResult:
    """Result of initialize() or submit_action()."""
    state: GameState
    requires_player_input: bool = False
    game_ended: bool = False
    iterations: int = 0
    fired_transitions: list[str] = field(default_factory=list)
    error: GameEngineError | None = None


def _needs_mechanics(instruction: dict[str, Any]) -> bool:
    guidance = instruction.get("mechanicsGuidance") or {}
    return bool(guidance.get("rules") or guidance.get("computation"))


class GameLoop:
    """
    The main game loop driver.

    Usage:
        loop = GameLoop(router, EngineConfig())
        result = loop.initialize(["alice", "bob"])
        result = loop.submit_action(result.state, "alice", {"move": "rock"})
    """

    def __init__(
        self,
        router: Router,
        config: EngineConfig | None = None,
        executor: MechanicsExecutor | None = None,
        rng: random.Random | None = None,
    ):
        self.router = router
        self.config = config or EngineConfig()
        self.executor = executor
        self.rng = rng or random.Random(self.config.rng_seed)
        self.engine = StateDeltaEngine(rng=self.rng)

    def initialize(self, players: Iterable[str]) -> LoopResult:
        """Build the starting state and run until the first input or the end."""
        state = create_initial_state(self.router.transitions.init_phase, list(players))
        log.info(f"Initializing game with {len(state['players'])} players")
        return self.run(state)

    def submit_action(self, state: GameState, player_id: str, action: Any) -> LoopResult:
        """
        Process one player action.

        A rejected action costs the player an illegal-action count and
        leaves the phase unchanged.
        """
        if has_error(state) or is_game_ended(state):
            return self._result(state)

        route: ActionRoute = self.router.route_action(state, player_id, action)
        if route.error is not None:
            return LoopResult(state=route.state, error=route.error)
        if not route.accepted:
            return LoopResult(
                state=self._reject(state, player_id, route.rejection or "Invalid action"),
                requires_player_input=True,
            )

        variables = build_action_variables(player_id, action)
        try:
            state = self._execute_instruction(route.instruction, state, variables)
        except StateDeltaError as e:
            return self._fail(state, e)
        log.debug(f"Applied action {route.instruction.get('id')} for {player_id}")
        return self.run(state, pending_action=variables["input"])

    def run(self, state: GameState, pending_action: Any = None) -> LoopResult:
        """Fire transitions until input is needed, the game ends, or an error is recorded."""
        fired: list[str] = []
        while True:
            decision = self.router.step(state, pending_action if not fired else None)
            if decision.status is not RouterStatus.TRANSITION_READY:
                return LoopResult(
                    state=decision.state,
                    requires_player_input=decision.requires_player_input,
                    game_ended=decision.status is RouterStatus.FINISHED,
                    iterations=len(fired),
                    fired_transitions=fired,
                    error=decision.error,
                )

            if len(fired) >= self.config.max_iterations:
                return self._fail(state, IterationLimitError(
                    f"More than {self.config.max_iterations} transitions fired without player input",
                    {"firedTransitions": fired[-5:]},
                ), fired)

            transition = decision.selected_transition
            try:
                state = self._execute_instruction(decision.instruction, state, {})
            except StateDeltaError as e:
                e.context.setdefault("transition", transition.id)
                return self._fail(state, e, fired)
            state = self._enter_phase(state, transition.to_phase)
            fired.append(transition.id)
            log.info(f"Phase transition: {transition.from_phase} -> {transition.to_phase}")

    # -------------------------------------------------------------------------
    # Instruction execution
    # -------------------------------------------------------------------------

    def _execute_instruction(
        self, instruction: dict[str, Any], state: GameState, variables: dict[str, Any]
    ) -> GameState:
        ops_template = instruction.get("stateDelta") or []
        extra_ops: list[dict[str, Any]] = []

        if self.executor is not None and (
            _needs_mechanics(instruction) or find_unresolved(ops_template, variables)
        ):
            result = self.executor.execute(instruction, state, dict(variables))
            variables = {**variables, **result.variables}
            extra_ops = list(result.state_delta)

        unresolved = find_unresolved(ops_template, variables)
        if unresolved:
            raise TemplateResolutionError(
                f"Instruction {instruction.get('id')} has unresolved placeholders: "
                + ", ".join(unresolved),
                {"instruction": instruction.get("id"), "placeholders": unresolved},
            )

        ops = extra_ops + render_payload(ops_template, variables)
        new_state = self.engine.apply(state, ops)
        return self._apply_messages(new_state, instruction.get("messages") or {}, variables)

    def _apply_messages(
        self, state: GameState, messages: dict[str, Any], variables: dict[str, Any]
    ) -> GameState:
        if not messages:
            return state
        scope = {"game": state.get("game", {}), "players": state.get("players", {}), **variables}
        players = state.get("players") or {}

        for message in messages.get("private") or []:
            to = render_payload(message.get("to"), scope)
            if to not in players:
                log.warning(f"Private message addressed to unknown player {to!r}")
                continue
            players[to]["privateMessage"] = render_payload(message.get("template", ""), scope)

        public = messages.get("public")
        if public:
            set_path(state, "game.publicMessage", render_payload(public.get("template", ""), scope))
        return state

    def _enter_phase(self, state: GameState, phase: str) -> GameState:
        new_state = clone_state(state)
        set_path(new_state, "game.currentPhase", phase)
        if self.router.transitions.is_terminal(phase):
            set_path(new_state, "game.gameEnded", True)
            log.info(f"Game ended in phase {phase}")
        return new_state

    def _reject(self, state: GameState, player_id: str, reason: str) -> GameState:
        new_state = clone_state(state)
        player = (new_state.get("players") or {}).get(player_id)
        if player is not None:
            player["illegalActionCount"] = get_path(player, "illegalActionCount", 0) + 1
            player["privateMessage"] = reason
        log.info(f"Rejected action from {player_id}: {reason}")
        return new_state

    def _fail(
        self, state: GameState, error: GameEngineError, fired: list[str] | None = None
    ) -> LoopResult:
        log.error(f"{error.error_type}: {error.message}")
        fired = fired or []
        return LoopResult(
            state=record_error(state, error),
            iterations=len(fired),
            fired_transitions=fired,
            error=error,
        )

    def _result(self, state: GameState) -> LoopResult:
        return LoopResult(state=state, game_ended=is_game_ended(state))
