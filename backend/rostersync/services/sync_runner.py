"""Sync cycle orchestration.

One run drains the missing-guild queue, then refreshes stale guilds (summary,
roster, members, ranks) and finally stale characters. Every guild and character
gets its own session, so a failure aborts only that item.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from sqlalchemy import or_
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from rostersync.core.config import settings
from rostersync.models.character import Character
from rostersync.models.guild import Guild
from rostersync.models.guild_sync_request import GuildSyncRequest
from rostersync.services.battlenet_client import BattleNetClient
from rostersync.services.battlenet_errors import GuildMemberSyncError
from rostersync.services.character_sync import sync_character
from rostersync.services.guild_members_sync import sync_guild_members
from rostersync.services.guild_ranks_sync import sync_guild_ranks
from rostersync.services.guild_sync import GuildSyncFailure, sync_guild
from rostersync.services.sync_queue import list_pending_requests, mark_request, resolve_request_guild

logger = logging.getLogger(__name__)

T = TypeVar("T")
SessionFactory = Callable[[], AsyncSession]


@dataclass
class SyncRunSummary:
    skipped: bool = False
    guild_requests_processed: int = 0
    guilds_synced: int = 0
    guilds_failed: int = 0
    characters_synced: int = 0
    characters_failed: int = 0
    duration_seconds: float = 0.0


async def find_stale_guild_ids(session: AsyncSession, *, older_than: datetime, limit: int) -> list[int]:
    stmt = (
        select(Guild.id)
        .where(
            Guild.exclude_from_sync.is_(False),
            or_(Guild.last_updated.is_(None), Guild.last_updated < older_than),
        )
        .order_by(Guild.last_updated.asc().nulls_first(), Guild.id)
        .limit(limit)
    )
    result = await session.exec(stmt)
    return list(result.all())


async def find_stale_character_ids(session: AsyncSession, *, older_than: datetime, limit: int) -> list[int]:
    stmt = (
        select(Character.id)
        .where(
            Character.is_available.is_(True),
            or_(Character.last_synced_at.is_(None), Character.last_synced_at < older_than),
        )
        .order_by(Character.last_synced_at.asc().nulls_first(), Character.id)
        .limit(limit)
    )
    result = await session.exec(stmt)
    return list(result.all())


async def sync_guild_roster(session: AsyncSession, client: BattleNetClient, guild: Guild) -> bool:
    """Full guild refresh: summary and roster, then members and ranks from one snapshot."""
    guild_id = guild.id
    outcome = await sync_guild(session, client, guild)
    if isinstance(outcome, GuildSyncFailure):
        return False
    try:
        await sync_guild_members(session, guild, outcome.snapshot)
    except GuildMemberSyncError:
        logger.exception("Member reconciliation failed for guild %s; ranks left unchanged", guild_id)
        return False
    await sync_guild_ranks(session, guild_id, outcome.snapshot)
    return True


class SyncRunner:
    def __init__(
        self,
        client: BattleNetClient,
        session_factory: Optional[SessionFactory] = None,
        *,
        concurrency: Optional[int] = None,
        batch_limit: Optional[int] = None,
        guild_interval: Optional[timedelta] = None,
        character_interval: Optional[timedelta] = None,
    ) -> None:
        if session_factory is None:
            from rostersync.db.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self.client = client
        self.session_factory = session_factory
        self.concurrency = concurrency or settings.SYNC_WORKER_CONCURRENCY
        self.batch_limit = batch_limit or settings.SYNC_BATCH_LIMIT
        self.guild_interval = guild_interval or timedelta(hours=settings.GUILD_SYNC_INTERVAL_HOURS)
        self.character_interval = character_interval or timedelta(hours=settings.CHARACTER_SYNC_INTERVAL_HOURS)
        self.last_summary: Optional[SyncRunSummary] = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_sync(self) -> SyncRunSummary:
        if self._lock.locked():
            logger.warning("Sync already in progress; skipping this run")
            return SyncRunSummary(skipped=True)

        async with self._lock:
            started = time.monotonic()
            summary = SyncRunSummary()
            logger.info("Sync run started")

            summary.guild_requests_processed = await self._drain_guild_requests()

            now = datetime.now(timezone.utc)
            async with self.session_factory() as session:
                guild_ids = await find_stale_guild_ids(
                    session, older_than=now - self.guild_interval, limit=self.batch_limit
                )
            logger.info("Syncing %d stale guilds", len(guild_ids))
            guild_results = await self._run_bounded(guild_ids, self._sync_guild_by_id)
            summary.guilds_synced = sum(1 for ok in guild_results if ok)
            summary.guilds_failed = len(guild_results) - summary.guilds_synced

            async with self.session_factory() as session:
                character_ids = await find_stale_character_ids(
                    session,
                    older_than=datetime.now(timezone.utc) - self.character_interval,
                    limit=self.batch_limit,
                )
            logger.info("Syncing %d stale characters", len(character_ids))
            character_results = await self._run_bounded(character_ids, self._sync_character_by_id)
            summary.characters_synced = sum(1 for ok in character_results if ok)
            summary.characters_failed = len(character_results) - summary.characters_synced

            summary.duration_seconds = time.monotonic() - started
            logger.info(
                "Sync run finished in %.1fs: %d queued guilds, guilds %d ok/%d failed, characters %d ok/%d failed",
                summary.duration_seconds,
                summary.guild_requests_processed,
                summary.guilds_synced,
                summary.guilds_failed,
                summary.characters_synced,
                summary.characters_failed,
            )
            self.last_summary = summary
            return summary

    async def _run_bounded(self, ids: Sequence[int], worker: Callable[[int], Awaitable[T]]) -> list[T]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_one(item_id: int) -> T:
            async with semaphore:
                return await worker(item_id)

        return list(await asyncio.gather(*(run_one(item_id) for item_id in ids)))

    async def _sync_guild_by_id(self, guild_id: int) -> bool:
        try:
            async with self.session_factory() as session:
                guild = await session.get(Guild, guild_id)
                if guild is None:
                    return False
                return await sync_guild_roster(session, self.client, guild)
        except Exception:
            logger.exception("Guild %s sync aborted", guild_id)
            return False

    async def _sync_character_by_id(self, character_id: int) -> bool:
        try:
            async with self.session_factory() as session:
                character = await session.get(Character, character_id)
                if character is None:
                    return False
                await sync_character(session, self.client, character)
                return True
        except Exception:
            logger.exception("Character %s sync aborted", character_id)
            return False

    async def _drain_guild_requests(self) -> int:
        async with self.session_factory() as session:
            requests = await list_pending_requests(session, self.batch_limit)
            request_ids = [request.id for request in requests]
        if request_ids:
            logger.info("Processing %d queued guild sync requests", len(request_ids))
        results = await self._run_bounded(request_ids, self._process_guild_request)
        return sum(1 for ok in results if ok)

    async def _process_guild_request(self, request_id: int) -> bool:
        try:
            async with self.session_factory() as session:
                request = await session.get(GuildSyncRequest, request_id)
                if request is None:
                    return False
                guild, created = await resolve_request_guild(session, request)
                await session.commit()
                guild_id = guild.id

                error: Optional[str] = None
                if guild.exclude_from_sync:
                    logger.info("Queued guild %s is excluded from sync; closing request", guild_id)
                elif created or guild.last_updated is None:
                    if not await sync_guild_roster(session, self.client, guild):
                        error = f"guild {guild_id} sync failed"

                request = await session.get(GuildSyncRequest, request_id)
                mark_request(request, error=error)
                session.add(request)
                await session.commit()
                return error is None
        except Exception:
            logger.exception("Queued guild request %s aborted", request_id)
            return False
