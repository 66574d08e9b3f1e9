from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, Column, DateTime
from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    """Account that owns characters. Created by the login flow, read here to resolve guild leaders."""

    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    battletag: str = Field(index=True, unique=True, nullable=False, max_length=255)
    bnet_id: Optional[int] = Field(
        default=None,
        sa_column=Column(BigInteger, unique=True, nullable=True),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
