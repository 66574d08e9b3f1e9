"""Complete expected shapes of the Battle.net profile payloads we consume.

These models are only used to report drift. Unknown keys are kept, and the sync
code reads the raw dict, so a field disappearing here never breaks a sync unless
it is one of the critical fields listed in ``payload_validation``.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr


class BattleNetPayload(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Href(BattleNetPayload):
    href: StrictStr


class SelfLinks(BattleNetPayload):
    self_link: Href = Field(alias="self")


class TypedName(BattleNetPayload):
    type: StrictStr
    name: StrictStr


class IdName(BattleNetPayload):
    id: StrictInt
    name: StrictStr


class Realm(BattleNetPayload):
    id: StrictInt
    name: StrictStr
    slug: StrictStr


class RealmRef(BattleNetPayload):
    id: StrictInt
    slug: StrictStr


class CharacterRef(BattleNetPayload):
    id: StrictInt
    name: StrictStr


class GuildPayload(BattleNetPayload):
    links: SelfLinks = Field(alias="_links")
    id: StrictInt
    name: StrictStr
    faction: TypedName
    achievement_points: StrictInt
    member_count: StrictInt
    realm: Realm
    created_timestamp: StrictInt


class RosterGuild(BattleNetPayload):
    id: StrictInt
    name: StrictStr
    realm: Realm
    faction: TypedName


class PlayableRef(BattleNetPayload):
    id: StrictInt


class RosterCharacter(BattleNetPayload):
    id: StrictInt
    name: StrictStr
    level: StrictInt
    realm: RealmRef
    playable_class: PlayableRef
    playable_race: PlayableRef


class RosterEntry(BattleNetPayload):
    character: RosterCharacter
    rank: StrictInt


class GuildRosterPayload(BattleNetPayload):
    guild: RosterGuild
    members: list[RosterEntry]


class CharacterGuild(BattleNetPayload):
    id: StrictInt
    name: StrictStr
    realm: Realm


class CharacterPayload(BattleNetPayload):
    id: StrictInt
    name: StrictStr
    gender: TypedName
    faction: TypedName
    race: IdName
    character_class: IdName
    active_spec: IdName
    realm: Realm
    guild: Optional[CharacterGuild] = None
    level: StrictInt
    achievement_points: StrictInt
    last_login_timestamp: StrictInt
    equipped_item_level: StrictInt


class CharacterEquipmentPayload(BattleNetPayload):
    character: CharacterRef
    equipped_items: list[dict[str, Any]]


class MythicKeystonePayload(BattleNetPayload):
    character: CharacterRef
    current_period: Optional[dict[str, Any]] = None
    current_mythic_rating: Optional[dict[str, Any]] = None


class ProfessionsPayload(BattleNetPayload):
    character: CharacterRef
    primaries: list[dict[str, Any]] = Field(default_factory=list)
    secondaries: list[dict[str, Any]] = Field(default_factory=list)


class CollectionsPayload(BattleNetPayload):
    character: CharacterRef
    toys: Optional[Href] = None
