"""Game artifact schema - pydantic models and static validation."""

from .artifacts import (
    GameArtifacts,
    TransitionsArtifact,
    Transition,
    Precondition,
    PhaseMetadata,
    InstructionsArtifact,
    PlayerPhaseInstructions,
    PlayerActionInstruction,
    TransitionInstruction,
    StateDeltaOp,
)
from .validation import (
    validate_artifacts,
    ensure_valid,
    ValidationResult,
    ValidationIssue,
    ArtifactValidationError,
)

__all__ = [
    "GameArtifacts",
    "TransitionsArtifact",
    "Transition",
    "Precondition",
    "PhaseMetadata",
    "InstructionsArtifact",
    "PlayerPhaseInstructions",
    "PlayerActionInstruction",
    "TransitionInstruction",
    "StateDeltaOp",
    "validate_artifacts",
    "ensure_valid",
    "ValidationResult",
    "ValidationIssue",
    "ArtifactValidationError",
]
