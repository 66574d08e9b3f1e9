"""Drift detection for Battle.net payloads.

``validate_payload`` never raises. It reports every field that deviates from the
expected shape and separately whether the fields the sync cannot work without
are present, so callers can accept a partially drifted payload and still refuse
one that is unusable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ValidationError

from rostersync.schemas.battlenet import (
    CharacterEquipmentPayload,
    CharacterPayload,
    CollectionsPayload,
    GuildPayload,
    GuildRosterPayload,
    MythicKeystonePayload,
    ProfessionsPayload,
)


ROOT_PATH = "(root)"
_MAX_RECEIVED_LENGTH = 80


class PayloadKind(str, Enum):
    guild = "guild"
    guild_roster = "guild_roster"
    character = "character"
    character_equipment = "character_equipment"
    mythic_keystone = "mythic_keystone"
    professions = "professions"
    collections = "collections"


PAYLOAD_MODELS: dict[PayloadKind, type[BaseModel]] = {
    PayloadKind.guild: GuildPayload,
    PayloadKind.guild_roster: GuildRosterPayload,
    PayloadKind.character: CharacterPayload,
    PayloadKind.character_equipment: CharacterEquipmentPayload,
    PayloadKind.mythic_keystone: MythicKeystonePayload,
    PayloadKind.professions: ProfessionsPayload,
    PayloadKind.collections: CollectionsPayload,
}

CRITICAL_FIELDS: dict[PayloadKind, tuple[str, ...]] = {
    PayloadKind.guild: ("id", "name", "faction.type", "realm.id", "realm.slug"),
    PayloadKind.guild_roster: ("guild.id", "guild.name", "members"),
    PayloadKind.character: (
        "id",
        "name",
        "faction.type",
        "realm.id",
        "realm.slug",
        "character_class.id",
    ),
    PayloadKind.character_equipment: ("character.id", "character.name", "equipped_items"),
    PayloadKind.mythic_keystone: ("character.id", "character.name"),
    PayloadKind.professions: ("character.id", "character.name"),
    PayloadKind.collections: ("character.id", "character.name"),
}


@dataclass(frozen=True)
class FieldFailure:
    path: str
    expected: str
    received: str
    is_critical: bool


@dataclass
class ValidationResult:
    is_valid: bool
    has_critical_fields: bool
    failures: list[FieldFailure] = field(default_factory=list)

    @property
    def critical_failures(self) -> list[FieldFailure]:
        return [failure for failure in self.failures if failure.is_critical]

    def describe(self) -> str:
        return "; ".join(
            f"{failure.path}: expected {failure.expected}, got {failure.received}"
            for failure in self.failures
        )


def lookup_path(data: Any, path: str) -> Any:
    """Walk a dotted path through nested dicts, returning None when any hop is missing."""
    current = data
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _path_from_loc(loc: tuple[Any, ...]) -> str:
    if not loc:
        return ROOT_PATH
    return ".".join(str(part) for part in loc)


def _is_critical(path: str, critical_fields: tuple[str, ...]) -> bool:
    if path == ROOT_PATH:
        return True
    return any(path == critical or critical.startswith(f"{path}.") for critical in critical_fields)


def _describe_received(error: dict[str, Any]) -> str:
    if error.get("type") == "missing":
        return "missing"
    value = error.get("input")
    if value is None:
        return "null"
    text = f"{type(value).__name__} {value!r}"
    if len(text) > _MAX_RECEIVED_LENGTH:
        text = text[: _MAX_RECEIVED_LENGTH - 3] + "..."
    return text


def validate_payload(kind: PayloadKind, data: Any) -> ValidationResult:
    critical_fields = CRITICAL_FIELDS[kind]
    model = PAYLOAD_MODELS[kind]

    failures: list[FieldFailure] = []
    try:
        model.model_validate(data)
    except ValidationError as exc:
        for error in exc.errors():
            path = _path_from_loc(tuple(error.get("loc", ())))
            failures.append(
                FieldFailure(
                    path=path,
                    expected=error.get("msg", error.get("type", "valid value")),
                    received=_describe_received(error),
                    is_critical=_is_critical(path, critical_fields),
                )
            )

    has_critical = isinstance(data, dict) and all(
        lookup_path(data, critical) is not None for critical in critical_fields
    )
    if not has_critical and not any(failure.is_critical for failure in failures):
        # Present but null critical values are reported even if the model allowed them.
        failures.extend(
            FieldFailure(path=critical, expected="a value", received="null", is_critical=True)
            for critical in critical_fields
            if lookup_path(data, critical) is None
        )

    return ValidationResult(
        is_valid=not failures,
        has_critical_fields=has_critical,
        failures=failures,
    )
