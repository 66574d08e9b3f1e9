"""Three-way reconciliation of a guild's membership table against a fresh roster.

Rows are matched by the case-insensitive (name, realm slug) identity key because
the remote numeric character id is not always known locally. Rows are never
deleted; members who left are flagged unavailable and keep their ``is_main``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence, Union, assert_never

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from rostersync.core.slugs import identity_key
from rostersync.models.character import DEFAULT_CHARACTER_ROLE, Character
from rostersync.models.guild import Guild, GuildMember
from rostersync.schemas.roster import RosterMember, RosterSnapshot
from rostersync.services.battlenet_errors import GuildMemberSyncError

logger = logging.getLogger(__name__)

_LOOKUP_CHUNK = 500


@dataclass(frozen=True)
class AddExistingCharacter:
    member: RosterMember
    character_id: int


@dataclass(frozen=True)
class CreateCharacterAndAdd:
    member: RosterMember


MemberAddition = Union[AddExistingCharacter, CreateCharacterAndAdd]


@dataclass(frozen=True)
class MemberUpdate:
    row: GuildMember
    member: RosterMember
    character_id: Optional[int]


@dataclass
class RosterDiff:
    additions: list[MemberAddition] = field(default_factory=list)
    updates: list[MemberUpdate] = field(default_factory=list)
    deactivations: list[GuildMember] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.additions or self.updates or self.deactivations)


@dataclass
class GuildMemberSyncResult:
    added: int = 0
    characters_created: int = 0
    updated: int = 0
    deactivated: int = 0


def local_member_key(row: GuildMember, character: Optional[Character]) -> Optional[str]:
    """Identity key of an existing membership row, or None when it cannot be derived."""
    if character is not None:
        return identity_key(character.name, character.realm)
    stored = row.member_data_json if isinstance(row.member_data_json, dict) else {}
    stored_character = stored.get("character") if isinstance(stored.get("character"), dict) else {}
    stored_realm = stored_character.get("realm") if isinstance(stored_character.get("realm"), dict) else {}
    realm_slug = stored_realm.get("slug")
    if row.character_name and isinstance(realm_slug, str) and realm_slug:
        return identity_key(row.character_name, realm_slug)
    return None


def compare_guild_members(
    snapshot: RosterSnapshot,
    local_rows: Sequence[tuple[GuildMember, Optional[Character]]],
    characters_by_key: dict[str, Character],
) -> RosterDiff:
    diff = RosterDiff()

    local_by_key: dict[str, GuildMember] = {}
    unmatched: list[GuildMember] = []
    for row, character in local_rows:
        key = local_member_key(row, character)
        if key is None:
            logger.warning("Guild member row %s has no derivable identity; deactivating it", row.id)
            unmatched.append(row)
            continue
        if key in local_by_key:
            logger.warning(
                "Duplicate membership rows for %s in guild %s; keeping row %s",
                key,
                row.guild_id,
                local_by_key[key].id,
            )
            unmatched.append(row)
            continue
        local_by_key[key] = row

    seen: set[str] = set()
    for member in snapshot.members:
        key = member.key
        existing_character = characters_by_key.get(key)
        row = local_by_key.get(key)
        if row is None:
            if existing_character is not None and existing_character.id is not None:
                diff.additions.append(AddExistingCharacter(member=member, character_id=existing_character.id))
            else:
                diff.additions.append(CreateCharacterAndAdd(member=member))
            continue

        seen.add(key)
        resolved_id = row.character_id
        if resolved_id is None and existing_character is not None:
            resolved_id = existing_character.id
        if row.rank != member.rank or resolved_id != row.character_id or not row.is_available:
            diff.updates.append(MemberUpdate(row=row, member=member, character_id=resolved_id))

    for key, row in local_by_key.items():
        if key not in seen:
            unmatched.append(row)
    diff.deactivations.extend(row for row in unmatched if row.is_available)
    return diff


def _chunks(values: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


async def _load_local_rows(session: AsyncSession, guild_id: int) -> list[tuple[GuildMember, Optional[Character]]]:
    stmt = (
        select(GuildMember, Character)
        .join(Character, GuildMember.character_id == Character.id, isouter=True)
        .where(GuildMember.guild_id == guild_id)
        .order_by(GuildMember.id)
    )
    result = await session.exec(stmt)
    return list(result.all())


async def _load_characters_by_key(
    session: AsyncSession, snapshot: RosterSnapshot, region: str
) -> dict[str, Character]:
    names = sorted({member.name.lower() for member in snapshot.members})
    wanted = {member.key for member in snapshot.members}
    found: dict[str, Character] = {}
    for chunk in _chunks(names, _LOOKUP_CHUNK):
        stmt = (
            select(Character)
            .where(Character.region == region, func.lower(Character.name).in_(chunk))
            .order_by(Character.id)
        )
        result = await session.exec(stmt)
        for character in result.all():
            key = identity_key(character.name, character.realm)
            if key in wanted:
                found.setdefault(key, character)
    return found


def _new_character(member: RosterMember, region: str) -> Character:
    return Character(
        name=member.name,
        realm=member.realm_slug,
        region=region,
        class_name=member.class_name or "Unknown",
        level=member.level or 1,
        role=DEFAULT_CHARACTER_ROLE,
        bnet_character_id=member.bnet_character_id,
    )


def _new_membership(guild_id: int, member: RosterMember, character_id: int, now: datetime) -> GuildMember:
    return GuildMember(
        guild_id=guild_id,
        character_id=character_id,
        character_name=member.name,
        character_class=member.class_name,
        rank=member.rank,
        is_available=True,
        is_main=False,
        member_data_json=member.raw,
        joined_at=now,
        created_at=now,
        updated_at=now,
    )


async def sync_guild_members(
    session: AsyncSession,
    guild: Guild,
    snapshot: RosterSnapshot,
) -> GuildMemberSyncResult:
    """Apply the roster diff for ``guild`` in one transaction.

    Order: create characters, insert memberships, update changed rows, deactivate
    departed rows. Any failure rolls the whole batch back and raises
    ``GuildMemberSyncError``.
    """
    guild_id = guild.id
    region = guild.region

    local_rows = await _load_local_rows(session, guild_id)
    characters_by_key = await _load_characters_by_key(session, snapshot, region)
    diff = compare_guild_members(snapshot, local_rows, characters_by_key)

    result = GuildMemberSyncResult()
    if diff.is_empty:
        logger.debug("Guild %s roster unchanged", guild_id)
        return result

    now = datetime.now(timezone.utc)
    try:
        pending: list[tuple[RosterMember, Character]] = []
        existing: list[tuple[RosterMember, int]] = []
        for addition in diff.additions:
            if isinstance(addition, AddExistingCharacter):
                existing.append((addition.member, addition.character_id))
            elif isinstance(addition, CreateCharacterAndAdd):
                pending.append((addition.member, _new_character(addition.member, region)))
            else:
                assert_never(addition)

        if pending:
            session.add_all([character for _, character in pending])
            await session.flush()
            result.characters_created = len(pending)

        new_rows = [_new_membership(guild_id, member, character_id, now) for member, character_id in existing]
        new_rows.extend(_new_membership(guild_id, member, character.id, now) for member, character in pending)
        session.add_all(new_rows)
        result.added = len(new_rows)

        for update in diff.updates:
            row = update.row
            row.rank = update.member.rank
            row.character_id = update.character_id
            row.member_data_json = update.member.raw
            if not row.is_available:
                row.is_available = True
                row.left_at = None
            row.updated_at = now
            session.add(row)
        result.updated = len(diff.updates)

        for row in diff.deactivations:
            row.is_available = False
            row.left_at = now
            row.updated_at = now
            session.add(row)
        result.deactivated = len(diff.deactivations)

        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("Rolling back roster sync for guild %s", guild_id)
        raise GuildMemberSyncError(guild_id, f"roster persistence failed: {exc}") from exc

    logger.info(
        "Guild %s roster synced: %d added (%d new characters), %d updated, %d deactivated",
        guild_id,
        result.added,
        result.characters_created,
        result.updated,
        result.deactivated,
    )
    return result
