from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from rostersync.models.guild import GuildRank, default_rank_name
from rostersync.schemas.roster import RosterSnapshot

logger = logging.getLogger(__name__)


@dataclass
class GuildRankSyncResult:
    created: int = 0
    updated: int = 0
    zeroed: int = 0


async def sync_guild_ranks(
    session: AsyncSession,
    guild_id: int,
    snapshot: RosterSnapshot,
) -> GuildRankSyncResult:
    """Make each rank's ``member_count`` match the roster histogram.

    Ranks are never deleted and names are never overwritten, so custom names survive
    a rank emptying out.
    """
    histogram = snapshot.rank_histogram()
    result = await session.exec(select(GuildRank).where(GuildRank.guild_id == guild_id))
    ranks = {rank.rank_id: rank for rank in result.all()}

    outcome = GuildRankSyncResult()
    now = datetime.now(timezone.utc)

    for rank_id, count in sorted(histogram.items()):
        rank = ranks.get(rank_id)
        if rank is None:
            session.add(
                GuildRank(
                    guild_id=guild_id,
                    rank_id=rank_id,
                    rank_name=default_rank_name(rank_id),
                    member_count=count,
                )
            )
            outcome.created += 1
        elif rank.member_count != count:
            rank.member_count = count
            rank.updated_at = now
            session.add(rank)
            outcome.updated += 1

    for rank_id, rank in ranks.items():
        if rank_id not in histogram and rank.member_count != 0:
            rank.member_count = 0
            rank.updated_at = now
            session.add(rank)
            outcome.zeroed += 1

    if outcome.created or outcome.updated or outcome.zeroed:
        await session.commit()
        logger.info(
            "Guild %s ranks synced: %d created, %d updated, %d zeroed",
            guild_id,
            outcome.created,
            outcome.updated,
            outcome.zeroed,
        )
    return outcome
