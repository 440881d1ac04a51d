"""
Artifact Models - pydantic models for the generated game artifacts.

A game is described by four documents:
- stateSchema: JSON-Schema-like description of the game and player fields
- stateTransitions: phases, phase metadata and guarded transitions
- playerPhaseInstructions: per input phase, the actions players may take
- transitionInstructions: per transition id, what happens when it fires

Field names follow the artifacts' camelCase; models accept either spelling.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field


ARTIFACT_CONFIG = {"populate_by_name": True, "extra": "allow"}


# =============================================================================
# Transitions
# =============================================================================

class Precondition(BaseModel):
    """A guard on a transition. logic=None means the guard cannot be checked."""
    id: str
    logic: Optional[Any] = None
    deterministic: bool = True
    explain: str = ""

    model_config = ARTIFACT_CONFIG

    @property
    def blocks_automatic_firing(self) -> bool:
        return self.logic is None or not self.deterministic


class PhaseMetadata(BaseModel):
    """Per-phase flags."""
    phase: str
    requires_player_input: bool = Field(False, alias="requiresPlayerInput")

    model_config = ARTIFACT_CONFIG


class Transition(BaseModel):
    """A guarded edge between two phases."""
    id: str
    from_phase: str = Field(alias="fromPhase")
    to_phase: str = Field(alias="toPhase")
    condition: Optional[str] = None
    checked_fields: list[str] = Field(default_factory=list, alias="checkedFields")
    preconditions: list[Precondition] = Field(default_factory=list)
    human_summary: Optional[str] = Field(None, alias="humanSummary")

    model_config = ARTIFACT_CONFIG


class TransitionsArtifact(BaseModel):
    """The phase graph. phases[0] is the init phase."""
    phases: list[str] = Field(min_length=1)
    phase_metadata: list[PhaseMetadata] = Field(default_factory=list, alias="phaseMetadata")
    transitions: list[Transition]

    model_config = ARTIFACT_CONFIG

    @property
    def init_phase(self) -> str:
        return self.phases[0]

    def metadata_for(self, phase: str) -> Optional[PhaseMetadata]:
        for meta in self.phase_metadata:
            if meta.phase == phase:
                return meta
        return None

    def requires_player_input(self, phase: str) -> bool:
        meta = self.metadata_for(phase)
        return bool(meta and meta.requires_player_input)

    def outgoing(self, phase: str) -> list[Transition]:
        return [t for t in self.transitions if t.from_phase == phase]

    def is_terminal(self, phase: str) -> bool:
        """No outbound transitions and no player input."""
        return not self.outgoing(phase) and not self.requires_player_input(phase)

    @property
    def input_phases(self) -> list[str]:
        return [p for p in self.phases if self.requires_player_input(p)]


# =============================================================================
# State delta ops
# =============================================================================

class DeltaOpType(str, Enum):
    """State delta op names."""
    SET = "set"
    INCREMENT = "increment"
    APPEND = "append"
    DELETE = "delete"
    TRANSFER = "transfer"
    MERGE = "merge"
    RNG = "rng"


class SetOp(BaseModel):
    op: Literal["set"] = "set"
    path: str
    value: Any = None

    model_config = ARTIFACT_CONFIG


class IncrementOp(BaseModel):
    op: Literal["increment"] = "increment"
    path: str
    value: Any = Field(description="number, or a template resolving to one")

    model_config = ARTIFACT_CONFIG


class AppendOp(BaseModel):
    op: Literal["append"] = "append"
    path: str
    value: Any = None

    model_config = ARTIFACT_CONFIG


class DeleteOp(BaseModel):
    op: Literal["delete"] = "delete"
    path: str

    model_config = ARTIFACT_CONFIG


class TransferOp(BaseModel):
    """Move a numeric amount between two leaves. No amount moves everything."""
    op: Literal["transfer"] = "transfer"
    from_path: str = Field(alias="fromPath")
    to_path: str = Field(alias="toPath")
    amount: Optional[Any] = Field(
        None,
        validation_alias=AliasChoices("amount", "value"),
        serialization_alias="amount",
    )

    model_config = ARTIFACT_CONFIG


class MergeOp(BaseModel):
    op: Literal["merge"] = "merge"
    path: str
    value: Any = Field(default_factory=dict)

    model_config = ARTIFACT_CONFIG


class RngOp(BaseModel):
    op: Literal["rng"] = "rng"
    path: str
    choices: list[Any]
    probabilities: list[float]

    model_config = ARTIFACT_CONFIG


StateDeltaOp = Annotated[
    Union[SetOp, IncrementOp, AppendOp, DeleteOp, TransferOp, MergeOp, RngOp],
    Field(discriminator="op"),
]


# =============================================================================
# Instructions
# =============================================================================

class ValidationCheck(BaseModel):
    """A check a player action must pass before it is applied."""
    id: str
    logic: Any
    error_message: str = Field("Invalid action", alias="errorMessage")

    model_config = ARTIFACT_CONFIG


class ActionValidation(BaseModel):
    checks: list[ValidationCheck] = Field(default_factory=list)

    model_config = ARTIFACT_CONFIG


class MechanicsGuidance(BaseModel):
    """Natural-language rules the mechanics executor computes from."""
    rules: list[str] = Field(default_factory=list)
    computation: Optional[str] = None

    model_config = ARTIFACT_CONFIG


class PrivateMessage(BaseModel):
    to: str
    template: str

    model_config = ARTIFACT_CONFIG


class PublicMessage(BaseModel):
    to: Optional[str] = None
    template: str

    model_config = ARTIFACT_CONFIG


class Messages(BaseModel):
    private: list[PrivateMessage] = Field(default_factory=list)
    public: Optional[PublicMessage] = None

    model_config = ARTIFACT_CONFIG


class RngConfig(BaseModel):
    operations: list[dict[str, Any]] = Field(default_factory=list)
    guidance: Optional[str] = None

    model_config = ARTIFACT_CONFIG


class PlayerActionInstruction(BaseModel):
    """What happens when a player submits one kind of action."""
    id: str
    action_name: str = Field(alias="actionName")
    description: str = ""
    validation: Optional[ActionValidation] = None
    mechanics_guidance: Optional[MechanicsGuidance] = Field(None, alias="mechanicsGuidance")
    state_delta: list[StateDeltaOp] = Field(default_factory=list, alias="stateDelta")
    messages: Optional[Messages] = None
    required_state_fields: list[str] = Field(default_factory=list, alias="requiredStateFields")

    model_config = ARTIFACT_CONFIG


class PlayerPhaseInstructions(BaseModel):
    """The player actions available in one input phase."""
    phase: str
    player_actions: list[PlayerActionInstruction] = Field(
        default_factory=list, alias="playerActions"
    )

    model_config = ARTIFACT_CONFIG


class TransitionInstruction(BaseModel):
    """What happens when a transition fires."""
    id: str
    transition_name: str = Field("", alias="transitionName")
    description: str = ""
    priority: int = 0
    mechanics_guidance: Optional[MechanicsGuidance] = Field(None, alias="mechanicsGuidance")
    rng_config: Optional[RngConfig] = Field(None, alias="rngConfig")
    state_delta: list[StateDeltaOp] = Field(default_factory=list, alias="stateDelta")
    messages: Optional[Messages] = None
    required_state_fields: list[str] = Field(default_factory=list, alias="requiredStateFields")

    model_config = ARTIFACT_CONFIG


class InstructionsArtifact(BaseModel):
    """The combined instructions document, keyed by phase and transition id."""
    version: str = "1.0"
    generated_at: Optional[str] = Field(None, alias="generatedAt")
    player_phases: dict[str, PlayerPhaseInstructions] = Field(
        default_factory=dict, alias="playerPhases"
    )
    transitions: dict[str, TransitionInstruction] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ARTIFACT_CONFIG


# =============================================================================
# Bundle
# =============================================================================

class GameArtifacts(BaseModel):
    """Everything a session needs to run one game."""
    state_schema: dict[str, Any] = Field(default_factory=dict, alias="stateSchema")
    state_transitions: TransitionsArtifact = Field(alias="stateTransitions")
    player_phase_instructions: dict[str, PlayerPhaseInstructions] = Field(
        default_factory=dict, alias="playerPhaseInstructions"
    )
    transition_instructions: dict[str, TransitionInstruction] = Field(
        default_factory=dict, alias="transitionInstructions"
    )

    model_config = ARTIFACT_CONFIG

    @classmethod
    def from_instructions_artifact(
        cls,
        state_schema: dict[str, Any],
        state_transitions: Union[TransitionsArtifact, dict[str, Any]],
        instructions: Union[InstructionsArtifact, dict[str, Any]],
    ) -> "GameArtifacts":
        """Build the bundle from the combined instructions document."""
        if not isinstance(instructions, InstructionsArtifact):
            instructions = InstructionsArtifact.model_validate(instructions)
        if not isinstance(state_transitions, TransitionsArtifact):
            state_transitions = TransitionsArtifact.model_validate(state_transitions)
        return cls(
            state_schema=state_schema,
            state_transitions=state_transitions,
            player_phase_instructions=instructions.player_phases,
            transition_instructions=instructions.transitions,
        )

    def instructions_artifact(self) -> InstructionsArtifact:
        return InstructionsArtifact(
            player_phases=self.player_phase_instructions,
            transitions=self.transition_instructions,
        )


def dump_payload(model: BaseModel) -> dict[str, Any]:
    """Dump a model as the camelCase JSON tree the runtime works on."""
    return model.model_dump(by_alias=True, exclude_none=True)
