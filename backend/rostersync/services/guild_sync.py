from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from sqlalchemy import func
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from rostersync.models.character import Character
from rostersync.models.guild import Guild
from rostersync.schemas.roster import RosterSnapshot
from rostersync.services.battlenet_client import BattleNetClient
from rostersync.services.battlenet_errors import BattleNetError, BattleNetNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class GuildSyncSuccess:
    guild_data: dict[str, Any]
    roster: dict[str, Any]
    snapshot: RosterSnapshot


@dataclass
class GuildSyncFailure:
    error: str
    excluded: bool = False


GuildSyncResult = Union[GuildSyncSuccess, GuildSyncFailure]


async def resolve_leader_id(session: AsyncSession, snapshot: RosterSnapshot, region: str) -> Optional[int]:
    """User owning the rank 0 character, if that character is linked to an account."""
    leader = snapshot.leader
    if leader is None:
        return None
    stmt = (
        select(Character)
        .where(
            func.lower(Character.name) == leader.name.lower(),
            Character.realm == leader.realm_slug,
            Character.region == region,
            Character.user_id.is_not(None),
        )
        .order_by(Character.id)
    )
    result = await session.exec(stmt)
    character = result.first()
    return character.user_id if character else None


async def _bnet_id_taken_elsewhere(session: AsyncSession, guild_id: int, bnet_guild_id: int) -> bool:
    stmt = select(Guild.id).where(Guild.bnet_guild_id == bnet_guild_id, Guild.id != guild_id)
    result = await session.exec(stmt)
    return result.first() is not None


async def sync_guild(session: AsyncSession, client: BattleNetClient, guild: Guild) -> GuildSyncResult:
    """Fetch the guild summary and roster and store them on ``guild``.

    A 404 on either call flags the guild ``exclude_from_sync`` so stale selection
    stops picking it up. Member and rank reconciliation are left to the caller,
    which receives the roster snapshot on success.
    """
    guild_id = guild.id
    label = f"{guild.name}@{guild.realm}-{guild.region}"
    try:
        guild_data = await client.get_guild(guild.realm, guild.name, guild.region)
        roster = await client.get_guild_roster(guild.realm, guild.name, guild.region)
    except BattleNetNotFoundError as exc:
        logger.warning("Guild %s (%s) no longer exists remotely; excluding from sync", guild_id, label)
        now = datetime.now(timezone.utc)
        guild.exclude_from_sync = True
        guild.last_updated = now
        guild.updated_at = now
        session.add(guild)
        await session.commit()
        return GuildSyncFailure(error=str(exc), excluded=True)
    except BattleNetError as exc:
        logger.warning("Guild %s (%s) sync failed: %s", guild_id, label, exc)
        return GuildSyncFailure(error=str(exc))

    snapshot = RosterSnapshot.from_payload(roster)
    leader_id = await resolve_leader_id(session, snapshot, guild.region)

    remote_id = guild_data.get("id")
    if remote_id != guild.bnet_guild_id and await _bnet_id_taken_elsewhere(session, guild_id, remote_id):
        logger.error(
            "Guild %s (%s) resolves to remote guild %s which another local guild already owns",
            guild_id,
            label,
            remote_id,
        )
    else:
        guild.bnet_guild_id = remote_id

    now = datetime.now(timezone.utc)
    guild.guild_data_json = guild_data
    guild.roster_json = roster
    guild.member_count = len(snapshot.members)
    guild.leader_id = leader_id
    guild.last_updated = now
    guild.last_roster_sync = now
    guild.updated_at = now
    session.add(guild)
    await session.commit()

    logger.info("Guild %s (%s) fetched: %d roster members", guild_id, label, len(snapshot.members))
    return GuildSyncSuccess(guild_data=guild_data, roster=roster, snapshot=snapshot)
