from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class SyncRunRead(BaseModel):
    skipped: bool
    guild_requests_processed: int
    guilds_synced: int
    guilds_failed: int
    characters_synced: int
    characters_failed: int
    duration_seconds: float

    class Config:
        from_attributes = True


class SyncStatusRead(BaseModel):
    enabled: bool
    running: bool
    last_run: Optional[SyncRunRead] = None
