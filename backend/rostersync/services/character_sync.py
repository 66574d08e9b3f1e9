from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from rostersync.models.character import Character
from rostersync.models.guild import Guild, GuildMember
from rostersync.services.battlenet_client import BattleNetClient
from rostersync.services.battlenet_errors import BattleNetNotFoundError
from rostersync.services.sync_queue import enqueue_guild_sync, find_local_guild
from rostersync.services.toy_hash import calculate_toy_hash

logger = logging.getLogger(__name__)


def _dict_or_empty(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _str_or(value: Any, fallback: Optional[str]) -> Optional[str]:
    return value if isinstance(value, str) and value else fallback


def _int_or(value: Any, fallback: Optional[int]) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return fallback


async def _mark_unavailable(session: AsyncSession, character: Character) -> None:
    character_id = character.id
    now = datetime.now(timezone.utc)
    character.is_available = False
    character.last_synced_at = now
    character.updated_at = now
    session.add(character)
    await session.commit()
    logger.info("Character %s no longer exists remotely; marked unavailable", character_id)

    try:
        result = await session.exec(
            select(GuildMember).where(GuildMember.character_id == character_id, GuildMember.is_available.is_(True))
        )
        memberships = result.all()
        for membership in memberships:
            membership.is_available = False
            membership.updated_at = now
            session.add(membership)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(
            "Character %s is unavailable but its guild memberships could not be updated; data is inconsistent",
            character_id,
        )
        return
    if memberships:
        logger.info("Marked %d memberships of character %s unavailable", len(memberships), character_id)


async def _stamp_last_synced(session: AsyncSession, character_id: int) -> None:
    try:
        character = await session.get(Character, character_id)
        if character is None:
            return
        character.last_synced_at = datetime.now(timezone.utc)
        session.add(character)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to stamp last_synced_at for character %s", character_id)


async def _fetch_profile_bundle(client: BattleNetClient, character: Character) -> list[Any]:
    return await asyncio.gather(
        client.get_character(character.realm, character.name, character.region),
        client.get_character_equipment(character.realm, character.name, character.region),
        client.get_mythic_keystone_profile(character.realm, character.name, character.region),
        client.get_professions(character.realm, character.name, character.region),
        return_exceptions=True,
    )


async def sync_character(session: AsyncSession, client: BattleNetClient, character: Character) -> None:
    """Refresh one character from its profile endpoints. Never raises.

    Any failure is logged and only stamps ``last_synced_at`` so the character
    waits a full interval before it is tried again. Profile 404 marks the character and its memberships unavailable. A guild seen on
    the profile but missing locally is queued for the next run rather than created here.
    """
    character_id = character.id
    label = f"{character.name}@{character.realm}-{character.region}"
    if not character.is_available:
        logger.info("Skipping unavailable character %s (%s)", character_id, label)
        return

    logger.debug("Syncing character %s (%s)", character_id, label)
    try:
        profile, equipment, mythic, professions = await _fetch_profile_bundle(client, character)
        if isinstance(profile, BattleNetNotFoundError):
            await _mark_unavailable(session, character)
            return
        for outcome in (profile, equipment, mythic, professions):
            if isinstance(outcome, BaseException):
                raise outcome

        local_guild: Optional[Guild] = None
        missing_guild: Optional[dict[str, Any]] = None
        remote_guild = _dict_or_empty(profile.get("guild"))
        remote_guild_id = _int_or(remote_guild.get("id"), None)
        remote_guild_name = _str_or(remote_guild.get("name"), None)
        if remote_guild_id is not None and remote_guild_name is not None:
            remote_realm = _dict_or_empty(remote_guild.get("realm")) or _dict_or_empty(profile.get("realm"))
            realm_slug = _str_or(remote_realm.get("slug"), character.realm)
            local_guild = await find_local_guild(
                session,
                bnet_guild_id=remote_guild_id,
                name=remote_guild_name,
                realm_slug=realm_slug,
                region=character.region,
            )
            if local_guild is None:
                missing_guild = dict(
                    bnet_guild_id=remote_guild_id,
                    name=remote_guild_name,
                    realm_slug=realm_slug,
                    realm_name=_str_or(remote_realm.get("name"), None),
                    region=character.region,
                )

        toy_hash = await calculate_toy_hash(client, character)

        now = datetime.now(timezone.utc)
        character.bnet_character_id = _int_or(profile.get("id"), character.bnet_character_id)
        character.name = _str_or(profile.get("name"), character.name)
        character.realm = _str_or(_dict_or_empty(profile.get("realm")).get("slug"), character.realm)
        character.level = _int_or(profile.get("level"), character.level)
        character.class_name = _str_or(
            _dict_or_empty(profile.get("character_class")).get("name"), character.class_name
        )
        character.item_level = _int_or(profile.get("equipped_item_level"), character.item_level)
        character.profile_json = profile
        character.equipment_json = equipment
        character.mythic_profile_json = mythic
        primaries = _dict_or_empty(professions).get("primaries")
        character.professions_json = primaries if isinstance(primaries, list) else []
        character.is_available = True
        character.last_synced_at = now
        character.updated_at = now
        if toy_hash is not None:
            character.toy_hash = toy_hash
        session.add(character)

        if local_guild is not None:
            result = await session.exec(
                select(GuildMember).where(
                    GuildMember.character_id == character_id,
                    GuildMember.guild_id == local_guild.id,
                )
            )
            membership = result.first()
            if membership is None:
                logger.debug("Character %s has no membership row in guild %s yet", character_id, local_guild.id)
            elif (membership.character_name, membership.character_class) != (character.name, character.class_name):
                membership.character_name = character.name
                membership.character_class = character.class_name
                membership.updated_at = now
                session.add(membership)

        await session.commit()
        logger.info("Synced character %s (%s)", character_id, label)

        if missing_guild is not None:
            await enqueue_guild_sync(session, **missing_guild)
    except Exception:
        logger.exception("Character sync failed for %s (%s)", character_id, label)
        await session.rollback()
        await _stamp_last_synced(session, character_id)
