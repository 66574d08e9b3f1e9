"""Import all models for metadata creation."""

from rostersync.models.character import Character
from rostersync.models.guild import Guild, GuildMember, GuildRank
from rostersync.models.guild_sync_request import GuildSyncRequest
from rostersync.models.user import User

__all__ = [
    "User",
    "Guild",
    "GuildMember",
    "GuildRank",
    "Character",
    "GuildSyncRequest",
]
