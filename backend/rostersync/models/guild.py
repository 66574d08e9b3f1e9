from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from rostersync.db.types import JSONType

GUILD_MASTER_RANK = 0


class Guild(SQLModel, table=True):
    __tablename__ = "guilds"
    __table_args__ = (UniqueConstraint("name", "realm", "region", name="uq_guilds_name_realm_region"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(nullable=False, max_length=255)
    realm: str = Field(nullable=False, max_length=255)
    region: str = Field(nullable=False, max_length=16)
    bnet_guild_id: Optional[int] = Field(
        default=None,
        sa_column=Column(BigInteger, unique=True, nullable=True, index=True),
    )
    leader_id: Optional[int] = Field(default=None, foreign_key="users.id", nullable=True)
    member_count: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, server_default="0"),
    )
    exclude_from_sync: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=text("false")),
    )
    guild_data_json: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSONType, nullable=True))
    roster_json: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSONType, nullable=True))
    last_updated: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True, index=True),
    )
    last_roster_sync: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class GuildMember(SQLModel, table=True):
    """A character's membership in a guild.

    ``rank`` and availability follow the remote roster. ``is_main`` is local-only and
    never written by the sync engine.
    """

    __tablename__ = "guild_members"
    __table_args__ = (UniqueConstraint("guild_id", "character_id", name="uq_guild_members_guild_character"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    guild_id: int = Field(foreign_key="guilds.id", nullable=False, index=True)
    character_id: Optional[int] = Field(default=None, foreign_key="characters.id", nullable=True, index=True)
    character_name: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    character_class: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    rank: int = Field(nullable=False)
    is_main: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=text("false")),
    )
    is_available: bool = Field(
        default=True,
        sa_column=Column(Boolean, nullable=False, server_default=text("true")),
    )
    member_data_json: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSONType, nullable=True))
    joined_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    left_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class GuildRank(SQLModel, table=True):
    __tablename__ = "guild_ranks"
    __table_args__ = (UniqueConstraint("guild_id", "rank_id", name="uq_guild_ranks_guild_rank"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    guild_id: int = Field(foreign_key="guilds.id", nullable=False, index=True)
    rank_id: int = Field(nullable=False)
    rank_name: str = Field(sa_column=Column(String(255), nullable=False))
    is_custom: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=text("false")),
    )
    member_count: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, server_default="0"),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


def default_rank_name(rank_id: int) -> str:
    if rank_id == GUILD_MASTER_RANK:
        return "Guild Master"
    return f"Rank {rank_id}"
