"""
Player templates and the instruction template IR.

Generated instructions name players in several spellings ({{p1id}},
{{player1id}}, players.p1.score). This module normalizes them to one alias
form (player1), binds aliases to the concrete ids of a session, and
compiles every `{{name}}` placeholder into a small IR so rendering never
re-parses strings.

Pipeline per session:
    resolve_player_templates  ->  bind_player_aliases  ->  compile_payload
and per instruction execution:
    render_payload(compiled, variables)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping
import json
import re

from .state import get_path


_PLAYER_ID_TEMPLATE = re.compile(r"\{\{(?:p|player)(\d+)id\}\}", re.IGNORECASE)
_SHORT_PLAYER_PATH = re.compile(r"\bplayers\.p(\d+)\.")
_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w.\-]*)\s*\}\}")
_ALIAS_PATH = re.compile(r"\bplayers\.(player\d+)(?=\.|$)")


def _walk_strings(obj: Any, fn) -> Any:
    if isinstance(obj, str):
        return fn(obj)
    if isinstance(obj, list):
        return [_walk_strings(item, fn) for item in obj]
    if isinstance(obj, dict):
        return {key: _walk_strings(value, fn) for key, value in obj.items()}
    return obj


def _resolve_player_string(text: str) -> str:
    text = _PLAYER_ID_TEMPLATE.sub(lambda m: f"player{m.group(1)}", text)
    return _SHORT_PLAYER_PATH.sub(lambda m: f"players.player{m.group(1)}.", text)


def resolve_player_templates(obj: Any) -> Any:
    """
    Rewrite player-id templates to aliases throughout a JSON tree.

    {{p1id}} and {{PLAYER1ID}} become player1; players.p2.score becomes
    players.player2.score. Non-string values are returned unchanged and the
    input is never mutated. Applying it twice gives the same result.
    """
    return _walk_strings(obj, _resolve_player_string)


# =============================================================================
# Player mapping
# =============================================================================

@dataclass(frozen=True)
class PlayerMapping:
    """Immutable alias -> player id table (player1 -> the first player's id)."""
    aliases: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "aliases", MappingProxyType(dict(self.aliases)))

    @classmethod
    def from_players(cls, player_ids: Iterable[str]) -> PlayerMapping:
        return cls({f"player{i + 1}": pid for i, pid in enumerate(player_ids)})

    def __getitem__(self, alias: str) -> str:
        return self.aliases[alias]

    def __contains__(self, alias: object) -> bool:
        return alias in self.aliases

    def __len__(self) -> int:
        return len(self.aliases)

    def get(self, alias: str, default: str | None = None) -> str | None:
        return self.aliases.get(alias, default)

    def reverse(self) -> dict[str, str]:
        return {pid: alias for alias, pid in self.aliases.items()}


def bind_player_aliases(obj: Any, mapping: PlayerMapping) -> Any:
    """
    Replace player aliases with concrete ids.

    Rewrites `players.player<N>` path segments anywhere in string values,
    and whole-string aliases in message `to` fields. Unknown aliases are
    left alone for the validator or runtime to report.
    """
    def bind_path(text: str) -> str:
        return _ALIAS_PATH.sub(lambda m: f"players.{mapping.get(m.group(1), m.group(1))}", text)

    def bind(node: Any) -> Any:
        if isinstance(node, str):
            return bind_path(node)
        if isinstance(node, list):
            return [bind(item) for item in node]
        if isinstance(node, dict):
            bound = {}
            for key, value in node.items():
                if key == "to" and isinstance(value, str) and value in mapping:
                    bound[key] = mapping[value]
                else:
                    bound[key] = bind(value)
            return bound
        return node

    return bind(obj)


# =============================================================================
# Template IR
# =============================================================================

@dataclass(frozen=True)
class Placeholder:
    """A `{{name}}` slot. Dotted names read nested variables (input.move)."""
    name: str

    def lookup(self, variables: Mapping[str, Any]) -> tuple[bool, Any]:
        if self.name in variables:
            return True, variables[self.name]
        missing = object()
        value = get_path(dict(variables), self.name, missing)
        if value is missing:
            return False, None
        return True, value

    def __str__(self) -> str:
        return "{{" + self.name + "}}"


def _format(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


@dataclass(frozen=True)
class CompiledTemplate:
    """A string split once into literal text and Placeholder tokens."""
    parts: tuple[str | Placeholder, ...]

    @classmethod
    def compile(cls, text: str) -> CompiledTemplate:
        parts: list[str | Placeholder] = []
        position = 0
        for match in _PLACEHOLDER.finditer(text):
            if match.start() > position:
                parts.append(text[position:match.start()])
            parts.append(Placeholder(match.group(1)))
            position = match.end()
        if position < len(text):
            parts.append(text[position:])
        return cls(tuple(parts))

    @property
    def placeholders(self) -> list[str]:
        return [part.name for part in self.parts if isinstance(part, Placeholder)]

    @property
    def is_concrete(self) -> bool:
        return not self.placeholders

    def render(self, variables: Mapping[str, Any]) -> Any:
        """
        Substitute variables.

        A template that is exactly one placeholder returns the variable's
        value with its type intact. Otherwise values are interpolated as
        text. Placeholders with no variable are kept verbatim.
        """
        if len(self.parts) == 1 and isinstance(self.parts[0], Placeholder):
            found, value = self.parts[0].lookup(variables)
            return value if found else str(self.parts[0])

        rendered = []
        for part in self.parts:
            if isinstance(part, Placeholder):
                found, value = part.lookup(variables)
                rendered.append(_format(value) if found else str(part))
            else:
                rendered.append(part)
        return "".join(rendered)

    def __str__(self) -> str:
        return "".join(str(part) for part in self.parts)


def compile_payload(obj: Any) -> Any:
    """Compile every string holding a placeholder into a CompiledTemplate."""
    def compile_string(text: str) -> Any:
        if _PLACEHOLDER.search(text):
            return CompiledTemplate.compile(text)
        return text
    return _walk_strings(obj, compile_string)


def render_payload(obj: Any, variables: Mapping[str, Any]) -> Any:
    """Render a compiled (or raw) payload into a plain JSON tree."""
    if isinstance(obj, CompiledTemplate):
        return obj.render(variables)
    if isinstance(obj, str):
        if _PLACEHOLDER.search(obj):
            return CompiledTemplate.compile(obj).render(variables)
        return obj
    if isinstance(obj, list):
        return [render_payload(item, variables) for item in obj]
    if isinstance(obj, dict):
        return {key: render_payload(value, variables) for key, value in obj.items()}
    return obj


def find_placeholders(obj: Any) -> list[str]:
    """List placeholder names still present in a raw or compiled payload."""
    names: list[str] = []

    def visit(node: Any) -> None:
        if isinstance(node, CompiledTemplate):
            names.extend(node.placeholders)
        elif isinstance(node, str):
            names.extend(match.group(1) for match in _PLACEHOLDER.finditer(node))
        elif isinstance(node, list):
            for item in node:
                visit(item)
        elif isinstance(node, dict):
            for value in node.values():
                visit(value)

    visit(obj)
    return list(dict.fromkeys(names))


def contains_placeholder(text: str) -> bool:
    return bool(_PLACEHOLDER.search(text))


def find_unresolved(obj: Any, variables: Mapping[str, Any]) -> list[str]:
    """
    List placeholder names in a template payload that variables cannot fill.

    Works on the template itself, never on rendered output, so text a
    player submitted is treated as data even when it looks like `{{x}}`.
    """
    names: list[str] = []

    def visit(node: Any) -> None:
        if isinstance(node, str) and _PLACEHOLDER.search(node):
            node = CompiledTemplate.compile(node)
        if isinstance(node, CompiledTemplate):
            names.extend(
                part.name for part in node.parts
                if isinstance(part, Placeholder) and not part.lookup(variables)[0]
            )
        elif isinstance(node, list):
            for item in node:
                visit(item)
        elif isinstance(node, dict):
            for value in node.values():
                visit(value)

    visit(obj)
    return list(dict.fromkeys(names))
