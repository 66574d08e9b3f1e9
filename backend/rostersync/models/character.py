from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String, text
from sqlmodel import Field, SQLModel

from rostersync.db.types import JSONType

DEFAULT_CHARACTER_ROLE = "DPS"


class Character(SQLModel, table=True):
    __tablename__ = "characters"

    id: Optional[int] = Field(default=None, primary_key=True)
    # Set by the account-linking flow; the sync engine only reads it.
    user_id: Optional[int] = Field(default=None, foreign_key="users.id", nullable=True, index=True)
    name: str = Field(nullable=False, index=True, max_length=255)
    realm: str = Field(nullable=False, index=True, max_length=255)
    region: str = Field(nullable=False, max_length=16)
    class_name: str = Field(
        default="Unknown",
        sa_column=Column(String(64), nullable=False, server_default="Unknown"),
    )
    level: int = Field(
        default=1,
        sa_column=Column(Integer, nullable=False, server_default="1"),
    )
    role: str = Field(
        default=DEFAULT_CHARACTER_ROLE,
        sa_column=Column(String(32), nullable=False, server_default=DEFAULT_CHARACTER_ROLE),
    )
    bnet_character_id: Optional[int] = Field(
        default=None,
        sa_column=Column(BigInteger, nullable=True, index=True),
    )
    item_level: Optional[int] = Field(default=None, nullable=True)
    is_available: bool = Field(
        default=True,
        sa_column=Column(Boolean, nullable=False, server_default=text("true")),
    )
    toy_hash: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), nullable=True, index=True),
    )
    profile_json: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSONType, nullable=True))
    equipment_json: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSONType, nullable=True))
    mythic_profile_json: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSONType, nullable=True))
    professions_json: Optional[list[Any]] = Field(default=None, sa_column=Column(JSONType, nullable=True))
    last_synced_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True, index=True),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
