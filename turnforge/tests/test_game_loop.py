"""
Tests for the game loop.

Tests:
- The 3-player, 3-round rock-paper-scissors game end to end
- Illegal actions
- Recorded runtime errors
- Iteration cap
- Mechanics executor hand-off
"""

import pytest

from ..config import EngineConfig
from ..engine_core.router import Router
from ..engine_core.templates import PlayerMapping
from ..session.game_loop import GameLoop, MechanicsResult
from ..session.manager import build_router
from ..spec_schema.artifacts import TransitionsArtifact


ROUNDS = [
    {"alice": "rock", "bob": "paper", "carol": "scissors"},
    {"alice": "rock", "bob": "rock", "carol": "paper"},
    {"alice": "scissors", "bob": "paper", "carol": "paper"},
]


@pytest.fixture
def loop(router, scorer):
    return GameLoop(router, EngineConfig(), executor=scorer)


def _play_round(loop, state, moves):
    result = None
    for player_id, move in moves.items():
        result = loop.submit_action(state, player_id, {"move": move})
        assert result.error is None
        state = result.state
    return result


class TestInitialize:
    """Tests for game initialization."""

    def test_runs_to_first_input_phase(self, loop, players):
        result = loop.initialize(players)
        assert result.requires_player_input
        assert not result.game_ended
        assert result.fired_transitions == ["initialize_game"]
        game = result.state["game"]
        assert game["currentPhase"] == "playing"
        assert game["currentRound"] == 1
        assert game["publicMessage"] == "Round 1: choose rock, paper or scissors"
        for player in result.state["players"].values():
            assert player["actionRequired"] is True
            assert player["score"] == 0
            assert player["illegalActionCount"] == 0


class TestRockPaperScissors:
    """The full fixture game."""

    def test_waits_until_everyone_moved(self, loop, players):
        state = loop.initialize(players).state
        result = loop.submit_action(state, "alice", {"move": "rock"})
        assert result.requires_player_input
        assert result.fired_transitions == []
        assert result.state["players"]["alice"]["move"] == "rock"
        assert result.state["players"]["alice"]["actionRequired"] is False
        assert result.state["players"]["alice"]["privateMessage"] == "You chose rock"
        assert result.state["game"]["currentPhase"] == "playing"

    def test_round_scoring(self, loop, players):
        state = loop.initialize(players).state
        result = _play_round(loop, state, ROUNDS[0])
        assert result.fired_transitions == ["all_moves_submitted", "next_round"]
        assert result.requires_player_input
        game = result.state["game"]
        assert game["currentRound"] == 2
        assert game["currentPhase"] == "playing"
        assert game["publicMessage"] == "Round 2: choose your move"
        scores = {pid: p["score"] for pid, p in result.state["players"].items()}
        assert scores == {"alice": 1, "bob": 1, "carol": 1}
        assert all(p["move"] is None for p in result.state["players"].values())

    def test_full_game(self, loop, players, scorer):
        state = loop.initialize(players).state
        for moves in ROUNDS:
            result = _play_round(loop, state, moves)
            state = result.state

        assert result.game_ended
        assert not result.requires_player_input
        assert result.fired_transitions == ["all_moves_submitted", "game_over"]
        game = state["game"]
        assert game["currentPhase"] == "finished"
        assert game["gameEnded"] is True
        assert game["publicMessage"] == "Game over"
        assert "gameError" not in game
        scores = {pid: p["score"] for pid, p in state["players"].items()}
        assert scores == {"alice": 2, "bob": 1, "carol": 2}
        assert scorer.calls == ["all_moves_submitted"] * 3

    def test_actions_after_game_end_ignored(self, loop, players):
        state = loop.initialize(players).state
        for moves in ROUNDS:
            state = _play_round(loop, state, moves).state
        result = loop.submit_action(state, "alice", {"move": "rock"})
        assert result.game_ended
        assert result.state is state


class TestIllegalActions:
    """Rejected actions are counted, not applied."""

    def test_invalid_move(self, loop, players):
        state = loop.initialize(players).state
        result = loop.submit_action(state, "bob", {"move": "lizard"})
        assert result.requires_player_input
        bob = result.state["players"]["bob"]
        assert bob["illegalActionCount"] == 1
        assert bob["privateMessage"] == "Move must be rock, paper or scissors"
        assert bob.get("move") is None
        assert result.error is None

    def test_acting_twice(self, loop, players):
        state = loop.initialize(players).state
        state = loop.submit_action(state, "alice", {"move": "rock"}).state
        result = loop.submit_action(state, "alice", {"move": "paper"})
        alice = result.state["players"]["alice"]
        assert alice["illegalActionCount"] == 1
        assert alice["move"] == "rock"


class TestRecordedErrors:
    """Runtime failures end up in game.gameError."""

    def test_type_mismatch_recorded(self, artifacts, players):
        artifacts.transition_instructions["initialize_game"].state_delta[0].value = "one"
        artifacts.transition_instructions["all_moves_submitted"].mechanics_guidance = None
        loop = GameLoop(build_router(artifacts, PlayerMapping.from_players(players)))
        state = loop.initialize(players).state
        for pid in players:
            state = loop.submit_action(state, pid, {"move": "rock"}).state
        error = state["game"]["gameError"]
        assert error["errorType"] == "type_mismatch"
        assert state["game"]["publicMessage"].startswith("Game Error: ")
        assert state["game"]["currentPhase"] == "playing"

    def test_errors_are_sticky(self, loop, players):
        state = loop.initialize(players).state
        state["game"]["gameError"] = {"errorType": "deadlock"}
        result = loop.submit_action(state, "alice", {"move": "rock"})
        assert result.state is state
        assert state["players"]["alice"].get("move") is None

    def test_unresolved_placeholder_recorded(self, players):
        artifact = TransitionsArtifact.model_validate({
            "phases": ["init", "done"],
            "phaseMetadata": [{"phase": "init"}, {"phase": "done"}],
            "transitions": [{"id": "go", "fromPhase": "init", "toPhase": "done",
                             "preconditions": [{"id": "t", "logic": True}]}],
        })
        instruction = {"id": "go", "stateDelta": [
            {"op": "set", "path": "game.winner", "value": "{{winnerId}}"},
        ]}
        loop = GameLoop(Router(artifact, {}, {"go": instruction}))
        result = loop.initialize(players)
        assert result.error is not None
        assert result.state["game"]["gameError"]["errorType"] == "transition_failed"
        assert result.state["game"]["currentPhase"] == "init"

    @pytest.mark.parametrize("bad_path", ["game.history.3", "game.history.last"])
    def test_bad_list_path_recorded(self, players, bad_path):
        artifact = TransitionsArtifact.model_validate({
            "phases": ["init", "done"],
            "phaseMetadata": [{"phase": "init"}, {"phase": "done"}],
            "transitions": [{"id": "go", "fromPhase": "init", "toPhase": "done",
                             "preconditions": [{"id": "t", "logic": True}]}],
        })
        instruction = {"id": "go", "stateDelta": [
            {"op": "set", "path": "game.history", "value": []},
            {"op": "set", "path": bad_path, "value": "x"},
        ]}
        loop = GameLoop(Router(artifact, {}, {"go": instruction}))
        result = loop.initialize(players)
        assert result.error is not None
        error = result.state["game"]["gameError"]
        assert error["errorType"] == "transition_failed"
        assert error["errorContext"]["transition"] == "go"
        assert "history" not in result.state["game"]
        assert result.state["game"]["currentPhase"] == "init"

    def test_player_text_with_braces_is_data(self, artifacts, players):
        action = artifacts.player_phase_instructions["playing"].player_actions[0]
        action.validation = None
        artifacts.transition_instructions["all_moves_submitted"].mechanics_guidance = None
        loop = GameLoop(build_router(artifacts, PlayerMapping.from_players(players)))
        state = loop.initialize(players).state
        result = loop.submit_action(state, "alice", {"move": "{{nice}}"})
        assert result.error is None
        assert "gameError" not in result.state["game"]
        alice = result.state["players"]["alice"]
        assert alice["move"] == "{{nice}}"
        assert alice["privateMessage"] == "You chose {{nice}}"


class TestIterationLimit:
    """Automatic transitions are capped per call."""

    def test_cycle_hits_cap(self, players):
        artifact = TransitionsArtifact.model_validate({
            "phases": ["ping", "pong", "end"],
            "phaseMetadata": [{"phase": p} for p in ("ping", "pong", "end")],
            "transitions": [
                {"id": "to_pong", "fromPhase": "ping", "toPhase": "pong",
                 "preconditions": [{"id": "t", "logic": True}]},
                {"id": "to_ping", "fromPhase": "pong", "toPhase": "ping",
                 "preconditions": [{"id": "t", "logic": True}]},
                {"id": "to_end", "fromPhase": "pong", "toPhase": "end",
                 "preconditions": [{"id": "f", "logic": False}]},
            ],
        })
        instructions = {t.id: {"id": t.id, "stateDelta": []} for t in artifact.transitions}
        loop = GameLoop(Router(artifact, {}, instructions), EngineConfig(max_iterations=5))
        result = loop.initialize(players)
        assert result.iterations == 5
        assert result.state["game"]["gameError"]["errorType"] == "iteration_limit"
        assert "iterations" not in result.state["game"]


class TestMechanicsExecutor:
    """Executor hand-off for guidance and unresolved placeholders."""

    def test_executor_fills_placeholders(self, players):
        artifact = TransitionsArtifact.model_validate({
            "phases": ["init", "done"],
            "phaseMetadata": [{"phase": "init"}, {"phase": "done"}],
            "transitions": [{"id": "go", "fromPhase": "init", "toPhase": "done",
                             "preconditions": [{"id": "t", "logic": True}]}],
        })
        instruction = {"id": "go", "stateDelta": [
            {"op": "set", "path": "game.winner", "value": "{{winnerId}}"},
        ]}

        class PickFirst:
            def execute(self, instruction, state, variables):
                return MechanicsResult(variables={"winnerId": next(iter(state["players"]))})

        loop = GameLoop(Router(artifact, {}, {"go": instruction}), executor=PickFirst())
        result = loop.initialize(players)
        assert result.error is None
        assert result.game_ended
        assert result.state["game"]["winner"] == "alice"
