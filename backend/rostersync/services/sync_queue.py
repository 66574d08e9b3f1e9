"""Durable queue of remote guilds discovered through character profiles.

A character sync that finds its guild missing locally only records a
``GuildSyncRequest``. The sync runner drains pending rows at the start of every
run, so the guild is created and synced exactly once even if many of its
characters are seen in the same cycle.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from rostersync.core.slugs import create_slug
from rostersync.models.guild import Guild
from rostersync.models.guild_sync_request import GuildSyncRequest, GuildSyncRequestStatus

logger = logging.getLogger(__name__)

MAX_REQUEST_ATTEMPTS = 3


async def find_local_guild(
    session: AsyncSession,
    *,
    bnet_guild_id: Optional[int],
    name: str,
    realm_slug: str,
    region: str,
) -> Optional[Guild]:
    """Look a remote guild up by remote id, then by (name, realm, region).

    A guild found by name that has no remote id yet gets it backfilled; the caller
    commits.
    """
    if bnet_guild_id is not None:
        result = await session.exec(select(Guild).where(Guild.bnet_guild_id == bnet_guild_id))
        guild = result.first()
        if guild is not None:
            return guild

    result = await session.exec(
        select(Guild)
        .where(Guild.region == region, func.lower(Guild.name) == name.lower())
        .order_by(Guild.id)
    )
    wanted_realm = create_slug(realm_slug)
    guild = next((candidate for candidate in result.all() if create_slug(candidate.realm) == wanted_realm), None)
    if guild is None:
        return None

    if guild.bnet_guild_id is None and bnet_guild_id is not None:
        logger.info("Backfilling remote id %s on guild %s", bnet_guild_id, guild.id)
        guild.bnet_guild_id = bnet_guild_id
        session.add(guild)
    return guild


async def enqueue_guild_sync(
    session: AsyncSession,
    *,
    bnet_guild_id: int,
    name: str,
    realm_slug: str,
    realm_name: Optional[str],
    region: str,
) -> bool:
    """Record a missing guild. Returns False when it was already queued."""
    result = await session.exec(select(GuildSyncRequest).where(GuildSyncRequest.bnet_guild_id == bnet_guild_id))
    existing = result.first()
    if existing is not None:
        logger.debug("Guild %s already queued (status %s)", bnet_guild_id, existing.status.value)
        return False

    session.add(
        GuildSyncRequest(
            bnet_guild_id=bnet_guild_id,
            name=name,
            realm_slug=realm_slug,
            realm_name=realm_name,
            region=region,
        )
    )
    try:
        await session.commit()
    except IntegrityError:
        # Another worker queued the same guild between our read and insert.
        await session.rollback()
        return False
    logger.info("Queued sync for missing guild %s (%s@%s-%s)", bnet_guild_id, name, realm_slug, region)
    return True


async def list_pending_requests(session: AsyncSession, limit: int) -> list[GuildSyncRequest]:
    stmt = (
        select(GuildSyncRequest)
        .where(
            or_(
                GuildSyncRequest.status == GuildSyncRequestStatus.pending,
                (GuildSyncRequest.status == GuildSyncRequestStatus.failed)
                & (GuildSyncRequest.attempts < MAX_REQUEST_ATTEMPTS),
            )
        )
        .order_by(GuildSyncRequest.created_at, GuildSyncRequest.id)
        .limit(limit)
    )
    result = await session.exec(stmt)
    return list(result.all())


async def resolve_request_guild(session: AsyncSession, request: GuildSyncRequest) -> tuple[Guild, bool]:
    """Local guild for a queued request, creating a minimal one when needed.

    Returns ``(guild, created)``.
    """
    guild = await find_local_guild(
        session,
        bnet_guild_id=request.bnet_guild_id,
        name=request.name,
        realm_slug=request.realm_slug,
        region=request.region,
    )
    if guild is not None:
        return guild, False

    guild = Guild(
        name=request.name,
        realm=request.realm_slug,
        region=request.region,
        bnet_guild_id=request.bnet_guild_id,
        exclude_from_sync=False,
    )
    session.add(guild)
    await session.flush()
    logger.info("Created local guild %s for remote guild %s", guild.id, request.bnet_guild_id)
    return guild, True


def mark_request(request: GuildSyncRequest, *, error: Optional[str] = None) -> None:
    request.attempts += 1
    request.processed_at = datetime.now(timezone.utc)
    if error is None:
        request.status = GuildSyncRequestStatus.done
        request.last_error = None
    else:
        request.status = GuildSyncRequestStatus.failed
        request.last_error = error[:2000]
