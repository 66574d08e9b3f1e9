"""
Shared test utilities and factories.

Re-exports all factory functions for convenient imports:
    from rostersync.testing import create_guild, create_character, create_guild_member
"""

from rostersync.testing.factories import (
    create_character,
    create_guild,
    create_guild_member,
    create_guild_rank,
    create_user,
)

__all__ = [
    "create_character",
    "create_guild",
    "create_guild_member",
    "create_guild_rank",
    "create_user",
]
