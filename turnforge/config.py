"""
Engine configuration.

Settings come from environment variables with defaults:
- TURNFORGE_MAX_ITERATIONS: automatic transitions allowed per call (default 20)
- TURNFORGE_RNG_SEED: optional integer seed for rng state-delta draws
- TURNFORGE_LOG_LEVEL: loguru level (default INFO)
"""

from __future__ import annotations
from dataclasses import dataclass
import os


DEFAULT_MAX_ITERATIONS = 20
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class EngineConfig:
    """Runtime settings shared by every session a manager creates."""
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    rng_seed: int | None = None
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")

    @classmethod
    def from_env(cls) -> EngineConfig:
        seed = os.getenv("TURNFORGE_RNG_SEED")
        return cls(
            max_iterations=int(os.getenv("TURNFORGE_MAX_ITERATIONS", str(DEFAULT_MAX_ITERATIONS))),
            rng_seed=int(seed) if seed not in (None, "") else None,
            log_level=os.getenv("TURNFORGE_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        )
