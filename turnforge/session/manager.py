"""
Session Manager - Creates and manages game sessions.

LIFECYCLE:
1. Host hands over generated artifacts plus the ordered player ids
2. Artifacts are validated (ArtifactValidationError on any error)
3. Player templates are resolved, aliases bound to the real ids, and
   instruction templates compiled once
4. The game initializes and runs to the first input phase
5. Players submit actions until the game ends or records an error
6. Host ends the session; nothing is persisted

Sessions share no mutable game state. Serializing calls into one
session is the host's job.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any
import random
import time
import uuid

from loguru import logger

from ..config import EngineConfig
from ..engine_core.router import Router
from ..engine_core.state import GameState, has_error, is_game_ended
from ..engine_core.templates import (
    PlayerMapping, bind_player_aliases, compile_payload, resolve_player_templates,
)
from ..logging import setup_logging
from ..spec_schema.artifacts import GameArtifacts, dump_payload
from ..spec_schema.validation import ensure_valid, validate_artifacts
from .game_loop import GameLoop, LoopResult, MechanicsExecutor


log = logger.bind(component="session")

__all__ = [
    "ActionResponse",
    "GameSession",
    "SessionManager",
    "SessionState",
    "build_router",
    "validate_artifacts",
]


class SessionState(Enum):
    """State of a game session."""
    ACTIVE = "active"  # Game in progress
    FINISHED = "finished"  # Game reached a terminal phase
    FAILED = "failed"  # game.gameError recorded
    ENDED = "ended"  # Host ended the session


@dataclass
class ActionResponse:
    """What the host gets back after an action."""
    state: GameState
    requires_player_input: bool
    game_ended: bool
    error: dict[str, Any] | None = None

    @classmethod
    def from_loop(cls, result: LoopResult) -> ActionResponse:
        return cls(
            state=result.state,
            requires_player_input=result.requires_player_input,
            game_ended=result.game_ended or is_game_ended(result.state),
            error=result.state.get("game", {}).get("gameError"),
        )


def build_router(artifacts: GameArtifacts, mapping: PlayerMapping) -> Router:
    """
    Prepare instruction payloads for one session and build its Router.

    Templates are resolved, aliases bound and placeholders compiled here,
    once, so executing an instruction only renders.
    """
    def prepare(model) -> Any:
        payload = resolve_player_templates(dump_payload(model))
        return compile_payload(bind_player_aliases(payload, mapping))

    return Router(
        artifacts.state_transitions,
        {phase: prepare(entry) for phase, entry in artifacts.player_phase_instructions.items()},
        {tid: prepare(entry) for tid, entry in artifacts.transition_instructions.items()},
    )


@dataclass
class GameSession:
    """
    One play-through of a game.

    Holds the compiled runtime and the latest state. The session is
    discarded when the host ends it.
    """
    session_id: str
    artifacts: GameArtifacts
    players: list[str]
    mapping: PlayerMapping
    loop: GameLoop
    created_at: float = field(default_factory=time.time)
    game_state: GameState | None = None
    status: SessionState = SessionState.ACTIVE
    last_result: LoopResult | None = None

    def initialize(self, players: list[str] | None = None) -> GameState:
        """
        Start (or restart) the game from the init phase.

        Players are fixed when the session is created; passing them again
        only checks they match.
        """
        if players is not None and list(players) != self.players:
            raise ValueError("Players are fixed when the session is created")
        self._absorb(self.loop.initialize(self.players))
        return self.game_state

    def submit_action(self, player_id: str, payload: Any) -> ActionResponse:
        """Submit one player action and run the game forward."""
        if self.game_state is None:
            self.initialize()
        if self.status is SessionState.ENDED:
            return ActionResponse(
                state=self.game_state,
                requires_player_input=False,
                game_ended=is_game_ended(self.game_state),
                error=self.game_state.get("game", {}).get("gameError"),
            )
        result = self.loop.submit_action(self.game_state, player_id, payload)
        self._absorb(result)
        return ActionResponse.from_loop(result)

    @property
    def requires_player_input(self) -> bool:
        return bool(self.last_result and self.last_result.requires_player_input)

    def is_active(self) -> bool:
        return self.status is SessionState.ACTIVE

    def _absorb(self, result: LoopResult) -> None:
        self.last_result = result
        self.game_state = result.state
        if has_error(result.state):
            self.status = SessionState.FAILED
        elif is_game_ended(result.state):
            self.status = SessionState.FINISHED
        else:
            self.status = SessionState.ACTIVE


class SessionManager:
    """
    Manages game sessions.

    Responsibilities:
    - Create sessions from validated artifacts
    - Track active sessions
    - Clean up ended sessions

    No persistence - sessions are in-memory only.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        executor: MechanicsExecutor | None = None,
    ):
        self.config = config or EngineConfig()
        self.executor = executor
        self._sessions: dict[str, GameSession] = {}

    @classmethod
    def from_env(
        cls,
        executor: MechanicsExecutor | None = None,
        log_file: str | Path | None = None,
    ) -> SessionManager:
        """
        Build a manager for a host process.

        Reads EngineConfig from the environment and configures logging at
        its log_level, so call it once at startup.
        """
        config = EngineConfig.from_env()
        setup_logging(config.log_level, log_file=log_file)
        return cls(config, executor)

    def create_session(
        self,
        artifacts: GameArtifacts | dict[str, Any],
        players: list[str],
        session_id: str | None = None,
        rng: random.Random | None = None,
    ) -> GameSession:
        """
        Create and initialize a game session.

        Args:
            artifacts: GameArtifacts bundle (model or raw JSON)
            players: Ordered player ids; player1 is the first
            session_id: Optional id, generated when omitted
            rng: Optional random source for rng ops

        Returns:
            GameSession, already initialized

        Raises:
            ArtifactValidationError: artifacts have validation errors
            ValueError: duplicate session id, or no/duplicate players
        """
        if not isinstance(artifacts, GameArtifacts):
            artifacts = GameArtifacts.model_validate(artifacts)
        if not players:
            raise ValueError("At least one player is required")
        if len(set(players)) != len(players):
            raise ValueError("Player ids must be unique")

        session_id = session_id or str(uuid.uuid4())
        if session_id in self._sessions:
            raise ValueError(f"Session {session_id} already exists")

        ensure_valid(
            artifacts.state_transitions,
            artifacts.state_schema,
            artifacts.instructions_artifact(),
        )

        mapping = PlayerMapping.from_players(players)
        loop = GameLoop(
            build_router(artifacts, mapping),
            config=self.config,
            executor=self.executor,
            rng=rng,
        )
        session = GameSession(
            session_id=session_id,
            artifacts=artifacts,
            players=list(players),
            mapping=mapping,
            loop=loop,
        )
        session.initialize()
        self._sessions[session_id] = session
        log.info(f"Created session {session_id} with {len(players)} players")
        return session

    def get_session(self, session_id: str) -> GameSession | None:
        """Get a session by ID."""
        return self._sessions.get(session_id)

    def end_session(self, session_id: str) -> bool:
        """End a session and drop it. Returns False if it did not exist."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.status = SessionState.ENDED
        log.info(f"Ended session {session_id}")
        return True

    def list_sessions(self) -> list[dict[str, Any]]:
        """List all sessions with summary info."""
        return [
            {
                "session_id": s.session_id,
                "status": s.status.value,
                "players": list(s.players),
                "current_phase": (s.game_state or {}).get("game", {}).get("currentPhase"),
                "created_at": s.created_at,
            }
            for s in self._sessions.values()
        ]
