"""
Artifact Validation - static checks on the generated game artifacts.

Validates that:
1. The phase graph is well-formed (declared phases, unique ids, metadata)
2. Every phase can make progress (no zero-exit input phases, a path to a terminal phase)
3. The init phase has a way out
4. Precondition logic only reads fields the state schema declares
5. Instructions line up with the phase graph and their ops are well-formed

Validation is pure: the same artifacts always give the same issues.
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
import re

from loguru import logger
from pydantic import ValidationError

from .artifacts import (
    DeltaOpType, InstructionsArtifact, TransitionsArtifact, dump_payload,
)
from ..engine_core.expression import (
    COMPUTED_CONTEXT_FIELDS,
    extract_var_references,
    find_explicit_player_reference,
    find_forbidden_index,
    find_malformed_expressions,
    find_unsupported_operations,
    quantifier_fields,
)
from ..engine_core.state import parse_path


log = logger.bind(component="validation")

BASE_GAME_FIELDS = frozenset({
    "game.currentPhase", "game.gameEnded", "game.gameError", "game.publicMessage",
})
BASE_PLAYER_FIELDS = frozenset({
    "actionRequired", "actionsAllowed", "illegalActionCount", "privateMessage",
})

_BRACKETS = re.compile(r"\[\*\]|\[\d+\]|\[[\w-]+\]")
_TEMPLATE = re.compile(r"\{\{[^}]*\}\}")
_TEMPLATE_SEGMENT = re.compile(r"\.\{\{[^}]*\}\}(?=\.|$)")


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueCategory(str, Enum):
    STRUCTURE = "structure"
    DEADLOCK = "deadlock"
    REFERENCE = "reference"
    SEMANTIC = "semantic"
    INSTRUCTIONS = "instructions"


@dataclass
class ValidationIssue:
    """One problem found in the artifacts."""
    severity: Severity
    category: IssueCategory
    message: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationResult:
    """Result of validation. valid is False iff any issue is an error."""
    valid: bool
    issues: list[ValidationIssue]

    @property
    def errors(self) -> list[str]:
        return [i.message for i in self.issues if i.severity is Severity.ERROR]

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self.issues if i.severity is Severity.WARNING]


class ArtifactValidationError(Exception):
    """Raised when artifacts fail validation."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(
            f"Artifact validation failed with {len(errors)} error(s): " + "; ".join(errors)
        )


class _Issues:
    def __init__(self):
        self.items: list[ValidationIssue] = []

    def error(self, category: IssueCategory, message: str, **context: Any) -> None:
        self.items.append(ValidationIssue(Severity.ERROR, category, message, context))

    def warning(self, category: IssueCategory, message: str, **context: Any) -> None:
        self.items.append(ValidationIssue(Severity.WARNING, category, message, context))

    def result(self) -> ValidationResult:
        valid = not any(i.severity is Severity.ERROR for i in self.items)
        return ValidationResult(valid=valid, issues=list(self.items))


def _pydantic_messages(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    ]


def validate_artifacts(
    transitions: TransitionsArtifact | dict[str, Any],
    schema: Any,
    instructions: InstructionsArtifact | dict[str, Any] | None = None,
) -> ValidationResult:
    """
    Validate the phase graph, and the instructions when given.

    Args:
        transitions: stateTransitions artifact (model or raw JSON)
        schema: state schema, JSON-Schema style or a planner field list
        instructions: combined instructions document (model or raw JSON)

    Returns:
        ValidationResult with every issue found
    """
    issues = _Issues()

    if not isinstance(transitions, TransitionsArtifact):
        try:
            transitions = TransitionsArtifact.model_validate(transitions)
        except ValidationError as exc:
            for message in _pydantic_messages(exc):
                issues.error(IssueCategory.STRUCTURE, f"Malformed transitions artifact: {message}")
            return issues.result()

    _check_structure(transitions, issues)
    _check_connectivity(transitions, issues)
    _check_reachability(transitions, issues)
    _check_init_coverage(transitions, issues)

    schema_fields = extract_schema_fields(schema)
    for t in transitions.transitions:
        for p in t.preconditions:
            if p.blocks_automatic_firing:
                issues.warning(
                    IssueCategory.SEMANTIC,
                    f"Transition {t.id} precondition {p.id} is null or non-deterministic "
                    "and will block automatic firing",
                    transition=t.id, precondition=p.id,
                )
            if p.logic is None:
                continue
            _check_logic(
                p.logic, schema_fields, issues,
                where=f"Transition {t.id} precondition {p.id}",
                allow_input=False,
            )

    if instructions is not None:
        if not isinstance(instructions, InstructionsArtifact):
            try:
                instructions = InstructionsArtifact.model_validate(instructions)
            except ValidationError as exc:
                for message in _pydantic_messages(exc):
                    issues.error(IssueCategory.INSTRUCTIONS, f"Malformed instructions: {message}")
                return issues.result()
        _check_instructions(transitions, instructions, schema_fields, issues)

    return issues.result()


def ensure_valid(
    transitions: TransitionsArtifact | dict[str, Any],
    schema: Any,
    instructions: InstructionsArtifact | dict[str, Any] | None = None,
) -> ValidationResult:
    """Validate and raise ArtifactValidationError on any error. Warnings are logged."""
    result = validate_artifacts(transitions, schema, instructions)
    for warning in result.warnings:
        log.warning(warning)
    if not result.valid:
        raise ArtifactValidationError(result.errors)
    return result


# =============================================================================
# Phase graph checks
# =============================================================================

def _check_structure(artifact: TransitionsArtifact, issues: _Issues) -> None:
    phases = set(artifact.phases)
    if len(phases) != len(artifact.phases):
        issues.error(IssueCategory.STRUCTURE, "Phase list contains duplicates")

    seen: set[str] = set()
    for t in artifact.transitions:
        if t.id in seen:
            issues.error(IssueCategory.STRUCTURE, f"Duplicate transition id: {t.id}", transition=t.id)
        seen.add(t.id)
        if t.from_phase not in phases:
            issues.error(
                IssueCategory.STRUCTURE,
                f"Transition {t.id} has unknown fromPhase: {t.from_phase}",
                transition=t.id,
            )
        if t.to_phase not in phases:
            issues.error(
                IssueCategory.STRUCTURE,
                f"Transition {t.id} has unknown toPhase: {t.to_phase}",
                transition=t.id,
            )

    described = set()
    for meta in artifact.phase_metadata:
        if meta.phase not in phases:
            issues.error(
                IssueCategory.STRUCTURE,
                f"Phase metadata names undeclared phase: {meta.phase}",
                phase=meta.phase,
            )
        described.add(meta.phase)
    for phase in artifact.phases:
        if phase not in described:
            issues.warning(
                IssueCategory.STRUCTURE,
                f"Phase {phase} has no metadata and is treated as automatic",
                phase=phase,
            )


def _check_connectivity(artifact: TransitionsArtifact, issues: _Issues) -> None:
    init = artifact.init_phase
    in_degree = {p: 0 for p in artifact.phases}
    out_degree = {p: 0 for p in artifact.phases}
    for t in artifact.transitions:
        if t.from_phase in out_degree:
            out_degree[t.from_phase] += 1
        if t.to_phase in in_degree:
            in_degree[t.to_phase] += 1

    for phase in artifact.phases:
        if phase == init:
            continue
        if in_degree[phase] == 0:
            issues.warning(
                IssueCategory.STRUCTURE,
                f"Phase {phase} has no incoming transitions (unreachable)",
                phase=phase,
            )
        if out_degree[phase] == 0 and artifact.requires_player_input(phase):
            issues.error(
                IssueCategory.DEADLOCK,
                f"Phase {phase} requires player input but has no outgoing transitions",
                phase=phase,
            )


def _check_reachability(artifact: TransitionsArtifact, issues: _Issues) -> None:
    terminals = {p for p in artifact.phases if artifact.is_terminal(p)}
    if not terminals:
        issues.error(IssueCategory.DEADLOCK, "No terminal phase: the game can never finish")
        return

    edges: dict[str, set[str]] = {p: set() for p in artifact.phases}
    for t in artifact.transitions:
        if t.from_phase in edges:
            edges[t.from_phase].add(t.to_phase)

    for phase in artifact.phases:
        if phase in terminals or not edges[phase]:
            continue
        if not _reaches(phase, terminals, edges):
            issues.error(
                IssueCategory.DEADLOCK,
                f"Phase {phase} has no path to completion",
                phase=phase,
            )


def _reaches(start: str, targets: set[str], edges: dict[str, set[str]]) -> bool:
    visited = {start}
    queue = deque([start])
    while queue:
        phase = queue.popleft()
        if phase in targets:
            return True
        for nxt in edges.get(phase, ()):
            if nxt not in visited:
                visited.add(nxt)
                queue.append(nxt)
    return False


def _check_init_coverage(artifact: TransitionsArtifact, issues: _Issues) -> None:
    init = artifact.init_phase
    if not artifact.outgoing(init):
        issues.error(
            IssueCategory.STRUCTURE,
            f"No transition from init phase {init}",
            phase=init,
        )


# =============================================================================
# Field references
# =============================================================================

def extract_schema_fields(schema: Any) -> set[str]:
    """
    Collect dotted field paths from a state schema.

    Accepts a JSON-Schema tree (properties / items / additionalProperties)
    or a planner list of {"name", "path": "game" | "player"} entries.
    Player fields come out as players.<field>.
    """
    fields: set[str] = set()

    if isinstance(schema, list):
        for entry in schema:
            if not isinstance(entry, dict) or not entry.get("name"):
                continue
            name = entry["name"]
            if entry.get("path") == "game" and not name.startswith("game."):
                name = f"game.{name}"
            elif entry.get("path") == "player":
                name = re.sub(r"^players\.\*\.", "players.", name)
                if not name.startswith("players."):
                    name = f"players.{name}"
            fields.add(name)
        return fields

    def traverse(node: Any, path: str) -> None:
        if not isinstance(node, dict):
            return
        for key, value in (node.get("properties") or {}).items():
            child = f"{path}.{key}" if path else key
            fields.add(child)
            traverse(value, child)
        items = node.get("items")
        if isinstance(items, dict) and items.get("properties"):
            traverse(items, path)
        extra = node.get("additionalProperties")
        if isinstance(extra, dict) and extra.get("properties"):
            traverse(extra, path)

    traverse(schema, "")
    return fields


def normalize_field_reference(ref: str) -> str:
    """players[*].score, players[0].score and players.{{playerId}}.score all become players.score."""
    return _TEMPLATE_SEGMENT.sub("", _BRACKETS.sub("", ref))


def is_valid_field_reference(ref: str, schema_fields: set[str], allow_input: bool = False) -> bool:
    if ref in COMPUTED_CONTEXT_FIELDS:
        return True
    if ref == "input" or ref.startswith("input."):
        return allow_input
    base = ref[: -len(".length")] if ref.endswith(".length") else ref
    normalized = normalize_field_reference(base)
    if normalized in BASE_GAME_FIELDS:
        return True
    if normalized.startswith("players.") and normalized.split(".", 1)[1] in BASE_PLAYER_FIELDS:
        return True
    if normalized in schema_fields:
        return True
    return any(normalize_field_reference(f) == normalized for f in schema_fields)


def _player_field_declared(name: str, schema_fields: set[str]) -> bool:
    return name in BASE_PLAYER_FIELDS or is_valid_field_reference(f"players.{name}", schema_fields)


def _check_logic(
    logic: Any,
    schema_fields: set[str],
    issues: _Issues,
    where: str,
    allow_input: bool,
) -> None:
    for op in find_unsupported_operations(logic):
        issues.error(IssueCategory.SEMANTIC, f"{where} uses unsupported operation: {op}", operation=op)

    for problem in find_malformed_expressions(logic):
        issues.error(IssueCategory.SEMANTIC, f"{where} has malformed logic: {problem}", problem=problem)

    forbidden = find_forbidden_index(logic)
    if forbidden:
        issues.error(
            IssueCategory.REFERENCE,
            f"{where} indexes players directly ({forbidden}); use allPlayers or anyPlayer",
            reference=forbidden,
        )

    explicit = find_explicit_player_reference(logic)
    if explicit:
        issues.error(
            IssueCategory.REFERENCE,
            f"{where} references a specific player ({explicit}); use allPlayers or anyPlayer",
            reference=explicit,
        )

    for ref in extract_var_references(logic):
        if ref == explicit or (forbidden and forbidden in ref):
            continue
        if not is_valid_field_reference(ref, schema_fields, allow_input=allow_input):
            issues.error(
                IssueCategory.REFERENCE,
                f"{where} references unknown field: {ref}",
                field=ref,
            )

    for name in quantifier_fields(logic):
        if not _player_field_declared(name, schema_fields):
            issues.error(
                IssueCategory.REFERENCE,
                f"{where} quantifies over undeclared player field: {name}",
                field=name,
            )


# =============================================================================
# Instructions
# =============================================================================

def _check_instructions(
    transitions: TransitionsArtifact,
    instructions: InstructionsArtifact,
    schema_fields: set[str],
    issues: _Issues,
) -> None:
    phases = set(transitions.phases)

    for key, entry in instructions.player_phases.items():
        if key not in phases:
            issues.error(
                IssueCategory.INSTRUCTIONS,
                f"Player phase instructions for undeclared phase: {key}",
                phase=key,
            )
        elif not transitions.requires_player_input(key):
            issues.error(
                IssueCategory.INSTRUCTIONS,
                f"Player phase instructions for phase {key}, which does not require player input",
                phase=key,
            )
        if entry.phase != key:
            issues.warning(
                IssueCategory.INSTRUCTIONS,
                f"Player phase instructions keyed {key} declare phase {entry.phase}",
                phase=key,
            )
        for action in entry.player_actions:
            where = f"Action {action.id} in phase {key}"
            if action.validation:
                for check in action.validation.checks:
                    _check_logic(
                        check.logic, schema_fields, issues,
                        where=f"{where} check {check.id}", allow_input=True,
                    )
            _check_ops([dump_payload(op) for op in action.state_delta], where, issues)

    for phase in transitions.input_phases:
        if phase not in instructions.player_phases:
            issues.error(
                IssueCategory.INSTRUCTIONS,
                f"Input phase {phase} has no player phase instructions",
                phase=phase,
            )

    transition_ids = {t.id for t in transitions.transitions}
    for t in transitions.transitions:
        if t.id not in instructions.transitions:
            issues.error(
                IssueCategory.INSTRUCTIONS,
                f"Transition {t.id} has no transition instruction",
                transition=t.id,
            )
    for key, instruction in instructions.transitions.items():
        if key not in transition_ids:
            issues.warning(
                IssueCategory.INSTRUCTIONS,
                f"Transition instruction {key} matches no transition",
                transition=key,
            )
        _check_ops(
            [dump_payload(op) for op in instruction.state_delta],
            f"Transition instruction {key}",
            issues,
        )


def _check_ops(ops: list[dict[str, Any]], where: str, issues: _Issues) -> None:
    for index, op in enumerate(ops):
        name = op.get("op")
        label = f"{where} op {index} ({name})"

        if name == DeltaOpType.RNG.value:
            choices = op.get("choices") or []
            probabilities = op.get("probabilities") or []
            if not choices:
                issues.error(IssueCategory.INSTRUCTIONS, f"{label} has no choices")
            elif len(choices) != len(probabilities):
                issues.error(
                    IssueCategory.INSTRUCTIONS,
                    f"{label} has {len(choices)} choices but {len(probabilities)} probabilities",
                )
            elif abs(sum(probabilities) - 1.0) > 0.01:
                issues.error(
                    IssueCategory.INSTRUCTIONS,
                    f"{label} probabilities sum to {sum(probabilities)}, expected 1.0",
                )

        if name == DeltaOpType.TRANSFER.value:
            if op.get("fromPath") == op.get("toPath"):
                issues.error(IssueCategory.INSTRUCTIONS, f"{label} transfers to its own source")
            paths = [op.get("fromPath"), op.get("toPath")]
        else:
            paths = [op.get("path")]

        for path in paths:
            if not path:
                issues.error(IssueCategory.INSTRUCTIONS, f"{label} is missing a path")
                continue
            _check_op_path(path, label, issues)


def _check_op_path(path: str, label: str, issues: _Issues) -> None:
    segments = parse_path(path)
    for segment in segments:
        if _TEMPLATE.search(segment) and not _TEMPLATE.fullmatch(segment):
            issues.error(
                IssueCategory.INSTRUCTIONS,
                f"{label} path {path} mixes literal text and a template in segment '{segment}'",
                path=path,
            )
    if segments and segments[0] not in ("game", "players"):
        issues.error(
            IssueCategory.INSTRUCTIONS,
            f"{label} path {path} must start with game or players",
            path=path,
        )
