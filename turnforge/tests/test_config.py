"""
Tests for configuration, logging setup and error records.
"""

import pytest
from loguru import logger

from ..config import DEFAULT_MAX_ITERATIONS, EngineConfig
from ..engine_core.errors import DeadlockError, TypeMismatchError
from ..engine_core.state import ValueKind, create_initial_state, kind_of, record_error
from ..logging import setup_logging


class TestEngineConfig:
    """Tests for EngineConfig."""

    def test_defaults(self, monkeypatch):
        for name in ("TURNFORGE_MAX_ITERATIONS", "TURNFORGE_RNG_SEED", "TURNFORGE_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
        config = EngineConfig.from_env()
        assert config.max_iterations == DEFAULT_MAX_ITERATIONS == 20
        assert config.rng_seed is None
        assert config.log_level == "INFO"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TURNFORGE_MAX_ITERATIONS", "7")
        monkeypatch.setenv("TURNFORGE_RNG_SEED", "42")
        monkeypatch.setenv("TURNFORGE_LOG_LEVEL", "debug")
        config = EngineConfig.from_env()
        assert config == EngineConfig(max_iterations=7, rng_seed=42, log_level="DEBUG")

    def test_max_iterations_must_be_positive(self):
        with pytest.raises(ValueError):
            EngineConfig(max_iterations=0)


class TestLogging:
    """Tests for setup_logging."""

    def test_invalid_level(self):
        with pytest.raises(ValueError):
            setup_logging("LOUD")

    def test_file_sink(self, tmp_path):
        log_file = tmp_path / "logs" / "engine.log"
        setup_logging("DEBUG", log_file=log_file, console_output=False)
        logger.bind(component="test").debug("hello from test")
        logger.complete()
        logger.remove()
        assert "hello from test" in log_file.read_text()


class TestErrorRecords:
    """Tests for GameEngineError records and value kinds."""

    def test_record_error(self):
        state = create_initial_state("init", ["a"])
        recorded = record_error(state, DeadlockError("stuck", {"phase": "init"}))
        error = recorded["game"]["gameError"]
        assert error["errorType"] == "deadlock"
        assert error["errorMessage"] == "stuck"
        assert error["errorContext"] == {"phase": "init"}
        assert "T" in error["timestamp"]
        assert recorded["game"]["publicMessage"] == "Game Error: stuck"
        assert "gameError" not in state["game"]

    def test_subclass_error_type(self):
        assert TypeMismatchError("x").to_record()["errorType"] == "type_mismatch"

    def test_value_kinds(self):
        assert kind_of(True) is ValueKind.BOOL
        assert kind_of(3.5) is ValueKind.NUMBER
        assert kind_of(None) is ValueKind.NULL
        assert kind_of({"a": 1}) is ValueKind.OBJECT
        with pytest.raises(TypeError):
            kind_of({1, 2})

    def test_duplicate_player_ids(self):
        with pytest.raises(ValueError):
            create_initial_state("init", ["a", "a"])
