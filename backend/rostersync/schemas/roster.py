from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from rostersync.core.slugs import create_slug, identity_key

logger = logging.getLogger(__name__)


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _dict_or_empty(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


class RosterMember(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    realm_slug: str
    rank: int
    level: Optional[int] = None
    class_name: Optional[str] = None
    bnet_character_id: Optional[int] = None
    raw: dict[str, Any]

    @property
    def key(self) -> str:
        return identity_key(self.name, self.realm_slug)


class RosterSnapshot(BaseModel):
    """One roster fetch, shared read-only by the member and rank reconcilers."""

    model_config = ConfigDict(frozen=True)

    guild_name: Optional[str] = None
    members: tuple[RosterMember, ...] = ()

    @classmethod
    def from_payload(cls, roster: dict[str, Any]) -> "RosterSnapshot":
        by_key: dict[str, RosterMember] = {}
        members = roster.get("members")
        for index, entry in enumerate(members if isinstance(members, list) else []):
            if not isinstance(entry, dict):
                logger.warning("Skipping roster entry %d that is not an object: %r", index, entry)
                continue
            character = _dict_or_empty(entry.get("character"))
            name = _str_or_none(character.get("name"))
            realm_slug = _str_or_none(_dict_or_empty(character.get("realm")).get("slug"))
            rank = _int_or_none(entry.get("rank"))
            if name is None or realm_slug is None or rank is None:
                logger.warning("Skipping roster entry %d without name, realm or rank: %r", index, entry)
                continue
            member = RosterMember(
                name=name,
                realm_slug=create_slug(realm_slug),
                rank=rank,
                level=_int_or_none(character.get("level")),
                class_name=_str_or_none(_dict_or_empty(character.get("playable_class")).get("name")),
                bnet_character_id=_int_or_none(character.get("id")),
                raw=entry,
            )
            # Duplicate identities collapse to the last entry.
            by_key[member.key] = member
        return cls(
            guild_name=_str_or_none(_dict_or_empty(roster.get("guild")).get("name")),
            members=tuple(by_key.values()),
        )

    def by_key(self) -> dict[str, RosterMember]:
        return {member.key: member for member in self.members}

    def rank_histogram(self) -> dict[int, int]:
        counts: dict[int, int] = {}
        for member in self.members:
            counts[member.rank] = counts.get(member.rank, 0) + 1
        return counts

    @property
    def leader(self) -> Optional[RosterMember]:
        return next((member for member in self.members if member.rank == 0), None)
