"""
Pytest fixtures for Turnforge tests.

The main fixture game is 3-player rock-paper-scissors over 3 rounds:

    init -> playing (input) -> scoring -> playing ... -> finished

Scoring is delegated to a MechanicsExecutor; RpsScorer gives a point to
every player whose move beats at least one opponent.
"""

import random

import pytest

from ..engine_core.state import create_initial_state
from ..engine_core.templates import PlayerMapping
from ..session.game_loop import MechanicsResult
from ..session.manager import build_router
from ..spec_schema.artifacts import GameArtifacts, TransitionsArtifact


BEATS = {"rock": "scissors", "paper": "rock", "scissors": "paper"}


def rps_schema() -> dict:
    return {
        "type": "object",
        "properties": {
            "game": {
                "type": "object",
                "properties": {
                    "currentPhase": {"type": "string"},
                    "gameEnded": {"type": "boolean"},
                    "currentRound": {"type": "number"},
                    "publicMessage": {"type": "string"},
                },
            },
            "players": {
                "type": "object",
                "additionalProperties": {
                    "type": "object",
                    "properties": {
                        "score": {"type": "number"},
                        "move": {"type": ["string", "null"]},
                        "actionRequired": {"type": "boolean"},
                    },
                },
            },
        },
    }


def rps_transitions() -> dict:
    return {
        "phases": ["init", "playing", "scoring", "finished"],
        "phaseMetadata": [
            {"phase": "init", "requiresPlayerInput": False},
            {"phase": "playing", "requiresPlayerInput": True},
            {"phase": "scoring", "requiresPlayerInput": False},
            {"phase": "finished", "requiresPlayerInput": False},
        ],
        "transitions": [
            {
                "id": "initialize_game",
                "fromPhase": "init",
                "toPhase": "playing",
                "checkedFields": ["game.currentPhase"],
                "preconditions": [
                    {
                        "id": "in_init",
                        "logic": {"==": [{"var": "game.currentPhase"}, "init"]},
                        "deterministic": True,
                        "explain": "Game has not started",
                    }
                ],
            },
            {
                "id": "all_moves_submitted",
                "fromPhase": "playing",
                "toPhase": "scoring",
                "checkedFields": ["players[*].actionRequired"],
                "preconditions": [
                    {
                        "id": "everyone_moved",
                        "logic": {"allPlayers": ["actionRequired", "==", False]},
                        "deterministic": True,
                        "explain": "Every player has chosen a move",
                    }
                ],
            },
            {
                "id": "next_round",
                "fromPhase": "scoring",
                "toPhase": "playing",
                "checkedFields": ["game.currentRound"],
                "preconditions": [
                    {
                        "id": "rounds_left",
                        "logic": {"<=": [{"var": "game.currentRound"}, 3]},
                        "deterministic": True,
                        "explain": "Fewer than 3 rounds played",
                    }
                ],
            },
            {
                "id": "game_over",
                "fromPhase": "scoring",
                "toPhase": "finished",
                "checkedFields": ["game.currentRound"],
                "preconditions": [
                    {
                        "id": "rounds_done",
                        "logic": {">": [{"var": "game.currentRound"}, 3]},
                        "deterministic": True,
                        "explain": "All 3 rounds played",
                    }
                ],
            },
        ],
    }


def rps_instructions() -> dict:
    return {
        "version": "1.0",
        "playerPhases": {
            "playing": {
                "phase": "playing",
                "playerActions": [
                    {
                        "id": "submit_move",
                        "actionName": "Submit move",
                        "description": "Choose rock, paper or scissors",
                        "validation": {
                            "checks": [
                                {
                                    "id": "valid_move",
                                    "logic": {"in": [{"var": "input.move"}, ["rock", "paper", "scissors"]]},
                                    "errorMessage": "Move must be rock, paper or scissors",
                                }
                            ]
                        },
                        "stateDelta": [
                            {"op": "set", "path": "players.{{playerId}}.move", "value": "{{input.move}}"},
                            {"op": "set", "path": "players.{{playerId}}.actionRequired", "value": False},
                        ],
                        "messages": {
                            "private": [{"to": "{{playerId}}", "template": "You chose {{input.move}}"}],
                        },
                    }
                ],
            }
        },
        "transitions": {
            "initialize_game": {
                "id": "initialize_game",
                "transitionName": "Start game",
                "stateDelta": [
                    {"op": "set", "path": "game.currentRound", "value": 1},
                    {"op": "set", "path": "players.[*].score", "value": 0},
                    {"op": "set", "path": "players.[*].actionRequired", "value": True},
                ],
                "messages": {"public": {"template": "Round 1: choose rock, paper or scissors"}},
            },
            "all_moves_submitted": {
                "id": "all_moves_submitted",
                "transitionName": "Score round",
                "mechanicsGuidance": {
                    "rules": ["A player scores 1 point if their move beats at least one opponent"],
                },
                "stateDelta": [
                    {"op": "increment", "path": "game.currentRound", "value": 1},
                ],
                "messages": {"public": {"template": "Round scored"}},
            },
            "next_round": {
                "id": "next_round",
                "transitionName": "Next round",
                "stateDelta": [
                    {"op": "set", "path": "players.[*].move", "value": None},
                    {"op": "set", "path": "players.[*].actionRequired", "value": True},
                ],
                "messages": {"public": {"template": "Round {{game.currentRound}}: choose your move"}},
            },
            "game_over": {
                "id": "game_over",
                "transitionName": "Game over",
                "stateDelta": [],
                "messages": {"public": {"template": "Game over"}},
            },
        },
    }


class RpsScorer:
    """MechanicsExecutor that scores a rock-paper-scissors round."""

    def __init__(self):
        self.calls: list[str] = []

    def execute(self, instruction, state, variables):
        self.calls.append(instruction["id"])
        moves = {pid: p.get("move") for pid, p in state["players"].items()}
        ops = []
        for pid, move in moves.items():
            if any(BEATS.get(move) == other for opp, other in moves.items() if opp != pid):
                ops.append({"op": "increment", "path": f"players.{pid}.score", "value": 1})
        return MechanicsResult(state_delta=ops)


@pytest.fixture
def players() -> list[str]:
    return ["alice", "bob", "carol"]


@pytest.fixture
def schema() -> dict:
    return rps_schema()


@pytest.fixture
def transitions() -> dict:
    return rps_transitions()


@pytest.fixture
def instructions() -> dict:
    return rps_instructions()


@pytest.fixture
def artifacts(schema, transitions, instructions) -> GameArtifacts:
    return GameArtifacts.from_instructions_artifact(schema, transitions, instructions)


@pytest.fixture
def scorer() -> RpsScorer:
    return RpsScorer()


@pytest.fixture
def router(artifacts, players):
    return build_router(artifacts, PlayerMapping.from_players(players))


@pytest.fixture
def rng() -> random.Random:
    return random.Random(7)


@pytest.fixture
def playing_state(players) -> dict:
    """Round 1 of the fixture game, every player still to move."""
    state = create_initial_state("init", players)
    state["game"].update({"currentPhase": "playing", "currentRound": 1})
    for player in state["players"].values():
        player.update({"actionRequired": True, "score": 0, "move": None})
    return state


# =============================================================================
# Deadlock fixture
# =============================================================================

def deadlock_transitions() -> dict:
    """SUBMISSION waits on players; RESOLVE waits on a field nothing sets."""
    return {
        "phases": ["init", "submission", "resolve", "done"],
        "phaseMetadata": [
            {"phase": "init", "requiresPlayerInput": False},
            {"phase": "submission", "requiresPlayerInput": True},
            {"phase": "resolve", "requiresPlayerInput": False},
            {"phase": "done", "requiresPlayerInput": False},
        ],
        "transitions": [
            {
                "id": "start",
                "fromPhase": "init",
                "toPhase": "submission",
                "preconditions": [
                    {"id": "always", "logic": {"==": [1, 1]}, "deterministic": True, "explain": ""}
                ],
            },
            {
                "id": "submitted",
                "fromPhase": "submission",
                "toPhase": "resolve",
                "preconditions": [
                    {"id": "someone_ready", "logic": {"anyPlayer": ["ready", "==", True]},
                     "deterministic": True, "explain": ""}
                ],
            },
            {
                "id": "resolved",
                "fromPhase": "resolve",
                "toPhase": "done",
                "preconditions": [
                    {"id": "is_resolved", "logic": {"==": [{"var": "game.resolved"}, True]},
                     "deterministic": True, "explain": ""}
                ],
            },
        ],
    }


@pytest.fixture
def deadlock_artifact() -> TransitionsArtifact:
    return TransitionsArtifact.model_validate(deadlock_transitions())


@pytest.fixture
def deadlock_instructions() -> dict:
    return {
        "start": {"id": "start", "stateDelta": []},
        "submitted": {"id": "submitted", "stateDelta": []},
        "resolved": {"id": "resolved", "stateDelta": []},
    }
