from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, Column, DateTime, Integer, Text
from sqlmodel import Enum as SQLEnum, Field, SQLModel


class GuildSyncRequestStatus(str, Enum):
    pending = "pending"
    done = "done"
    failed = "failed"


class GuildSyncRequest(SQLModel, table=True):
    """A remote guild seen on a character profile that has no local guild record yet.

    Rows are drained by the sync runner, which creates (or attaches to) the local
    guild and runs a full guild sync for it.
    """

    __tablename__ = "guild_sync_requests"

    id: Optional[int] = Field(default=None, primary_key=True)
    bnet_guild_id: int = Field(sa_column=Column(BigInteger, unique=True, nullable=False))
    name: str = Field(nullable=False, max_length=255)
    realm_slug: str = Field(nullable=False, max_length=255)
    realm_name: Optional[str] = Field(default=None, max_length=255)
    region: str = Field(nullable=False, max_length=16)
    status: GuildSyncRequestStatus = Field(
        default=GuildSyncRequestStatus.pending,
        sa_column=Column(
            SQLEnum(GuildSyncRequestStatus, name="guild_sync_request_status"),
            nullable=False,
            server_default=GuildSyncRequestStatus.pending.value,
            index=True,
        ),
    )
    attempts: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, server_default="0"),
    )
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    processed_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
