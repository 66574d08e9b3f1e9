"""
Unit tests for guild roster reconciliation.

Tests the business logic in rostersync.services.guild_members_sync including:
- Diffing a roster snapshot against local membership rows
- Creating characters and memberships for new members
- Rank updates, deactivation and reactivation
- Transaction rollback on persistence failures
"""

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from rostersync.models.character import Character
from rostersync.models.guild import GuildMember
from rostersync.schemas.roster import RosterSnapshot
from rostersync.services.battlenet_errors import GuildMemberSyncError
from rostersync.services.guild_members_sync import (
    AddExistingCharacter,
    CreateCharacterAndAdd,
    compare_guild_members,
    local_member_key,
    sync_guild_members,
)
from rostersync.testing import create_character, create_guild, create_guild_member
from rostersync.testing.battlenet import roster_entry, roster_payload


def _snapshot(*entries) -> RosterSnapshot:
    return RosterSnapshot.from_payload(roster_payload(list(entries)))


async def _members(session_factory, guild_id: int) -> list[GuildMember]:
    async with session_factory() as fresh:
        result = await fresh.exec(
            select(GuildMember).where(GuildMember.guild_id == guild_id).order_by(GuildMember.id)
        )
        return list(result.all())


async def _characters(session_factory) -> list[Character]:
    async with session_factory() as fresh:
        result = await fresh.exec(select(Character).order_by(Character.id))
        return list(result.all())


@pytest.mark.unit
def test_compare_classifies_additions():
    """Test that unknown members are created and known characters are reused."""
    known = Character(id=42, name="Jaina", realm="silvermoon", region="eu")
    snapshot = _snapshot(roster_entry("Jaina", rank=1), roster_entry("Thrall", rank=2))

    diff = compare_guild_members(snapshot, [], {"jaina-silvermoon": known})

    assert diff.additions == [
        AddExistingCharacter(member=snapshot.members[0], character_id=42),
        CreateCharacterAndAdd(member=snapshot.members[1]),
    ]
    assert diff.updates == []
    assert diff.deactivations == []


@pytest.mark.unit
def test_local_member_key_falls_back_to_stored_roster_entry():
    """Test that unlinked rows are keyed from the roster entry stored on them."""
    row = GuildMember(
        guild_id=1,
        character_name="Thrall",
        rank=1,
        member_data_json={"character": {"name": "Thrall", "realm": {"slug": "Orgrimmar"}}},
    )

    assert local_member_key(row, None) == "thrall-orgrimmar"
    assert local_member_key(GuildMember(guild_id=1, rank=1), None) is None


@pytest.mark.unit
@pytest.mark.service
async def test_new_members_are_added_with_new_characters(session: AsyncSession, session_factory):
    """Test that roster members without a local character get one created."""
    guild = await create_guild(session)
    snapshot = _snapshot(roster_entry("Thrall", rank=0, character_id=900, level=70))

    result = await sync_guild_members(session, guild, snapshot)

    assert result.added == 1
    assert result.characters_created == 1
    (character,) = await _characters(session_factory)
    assert character.name == "Thrall"
    assert character.realm == "silvermoon"
    assert character.region == "eu"
    assert character.role == "DPS"
    assert character.class_name == "Unknown"
    assert character.level == 70
    assert character.bnet_character_id == 900
    (member,) = await _members(session_factory, guild.id)
    assert member.character_id == character.id
    assert member.rank == 0
    assert member.is_available
    assert member.joined_at is not None


@pytest.mark.unit
@pytest.mark.service
async def test_existing_character_is_matched_case_insensitively(session: AsyncSession, session_factory):
    """Test that a remote Thrall/Orgrimmar matches a local thrall/orgrimmar."""
    guild = await create_guild(session, realm="orgrimmar")
    character = await create_character(session, name="thrall", realm="orgrimmar")
    snapshot = _snapshot(roster_entry("Thrall", rank=2, realm_slug="Orgrimmar"))

    result = await sync_guild_members(session, guild, snapshot)

    assert result.added == 1
    assert result.characters_created == 0
    (member,) = await _members(session_factory, guild.id)
    assert member.character_id == character.id
    assert len(await _characters(session_factory)) == 1


@pytest.mark.unit
@pytest.mark.service
async def test_second_sync_with_same_roster_writes_nothing(session: AsyncSession, session_factory):
    """Test that reconciling against an unchanged roster is a no-op."""
    guild = await create_guild(session)
    snapshot = _snapshot(roster_entry("Thrall", rank=0), roster_entry("Jaina", rank=1))

    await sync_guild_members(session, guild, snapshot)
    before = [(row.id, row.updated_at) for row in await _members(session_factory, guild.id)]

    second = await sync_guild_members(session, guild, snapshot)

    assert (second.added, second.updated, second.deactivated, second.characters_created) == (0, 0, 0, 0)
    assert [(row.id, row.updated_at) for row in await _members(session_factory, guild.id)] == before


@pytest.mark.unit
@pytest.mark.service
async def test_rank_change_updates_row(session: AsyncSession, session_factory):
    """Test that a changed rank is written to the existing row."""
    guild = await create_guild(session)
    character = await create_character(session, name="Thrall")
    row = await create_guild_member(session, guild, character, rank=3)

    result = await sync_guild_members(session, guild, _snapshot(roster_entry("Thrall", rank=1)))

    assert result.updated == 1
    (member,) = await _members(session_factory, guild.id)
    assert member.id == row.id
    assert member.rank == 1


@pytest.mark.unit
@pytest.mark.service
async def test_departed_member_is_deactivated_not_deleted(session: AsyncSession, session_factory):
    """Test that a member missing from the roster keeps its row and is_main."""
    guild = await create_guild(session)
    stays = await create_character(session, name="Thrall")
    leaves = await create_character(session, name="Jaina")
    await create_guild_member(session, guild, stays, rank=0)
    await create_guild_member(session, guild, leaves, rank=1, is_main=True)

    result = await sync_guild_members(session, guild, _snapshot(roster_entry("Thrall", rank=0)))

    assert result.deactivated == 1
    members = {row.character_id: row for row in await _members(session_factory, guild.id)}
    departed = members[leaves.id]
    assert departed.is_available is False
    assert departed.left_at is not None
    assert departed.is_main is True
    assert members[stays.id].is_available is True


@pytest.mark.unit
@pytest.mark.service
async def test_returning_member_is_reactivated(session: AsyncSession, session_factory):
    """Test that an unavailable row is reactivated when the member reappears."""
    guild = await create_guild(session)
    character = await create_character(session, name="Jaina")
    await create_guild_member(session, guild, character, rank=4, is_available=False)

    result = await sync_guild_members(session, guild, _snapshot(roster_entry("Jaina", rank=4)))

    assert result.updated == 1
    (member,) = await _members(session_factory, guild.id)
    assert member.is_available is True
    assert member.left_at is None


@pytest.mark.unit
@pytest.mark.service
async def test_already_unavailable_member_is_left_alone(session: AsyncSession, session_factory):
    """Test that deactivation only touches rows that are still available."""
    guild = await create_guild(session)
    character = await create_character(session, name="Jaina")
    await create_guild_member(session, guild, character, rank=4, is_available=False)

    result = await sync_guild_members(session, guild, _snapshot())

    assert result.deactivated == 0


@pytest.mark.unit
@pytest.mark.service
async def test_unlinked_row_gets_character_id(session: AsyncSession, session_factory):
    """Test that a row without character_id is linked once a character exists."""
    guild = await create_guild(session)
    row = await create_guild_member(session, guild, character_name="Anduin", realm="silvermoon", rank=2)
    character = await create_character(session, name="Anduin")

    result = await sync_guild_members(session, guild, _snapshot(roster_entry("Anduin", rank=2)))

    assert result.updated == 1
    assert result.added == 0
    (member,) = await _members(session_factory, guild.id)
    assert member.id == row.id
    assert member.character_id == character.id


@pytest.mark.unit
@pytest.mark.service
async def test_characters_from_other_regions_are_not_reused(session: AsyncSession, session_factory):
    """Test that character lookup is scoped to the guild's region."""
    guild = await create_guild(session)
    await create_character(session, name="Thrall", region="us")

    result = await sync_guild_members(session, guild, _snapshot(roster_entry("Thrall", rank=1)))

    assert result.characters_created == 1
    assert len(await _characters(session_factory)) == 2


@pytest.mark.unit
@pytest.mark.service
async def test_persistence_failure_rolls_back_everything(session: AsyncSession, session_factory, monkeypatch):
    """Test that a failed commit leaves no partial roster behind."""
    guild = await create_guild(session)
    guild_id = guild.id

    async def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(session, "commit", failing_commit)

    with pytest.raises(GuildMemberSyncError) as excinfo:
        await sync_guild_members(session, guild, _snapshot(roster_entry("Thrall", rank=0)))

    assert excinfo.value.guild_id == guild_id
    assert await _characters(session_factory) == []
    assert await _members(session_factory, guild_id) == []


@pytest.mark.unit
@pytest.mark.service
async def test_row_without_identity_is_deactivated(session: AsyncSession, session_factory):
    """Test that a row that cannot be matched to any roster entry does not stay available."""
    guild = await create_guild(session)
    await create_guild_member(session, guild, character_name=None, member_data_json=None, rank=1)

    result = await sync_guild_members(session, guild, _snapshot(roster_entry("Thrall", rank=1)))

    assert result.deactivated == 1
    rows = await _members(session_factory, guild.id)
    assert [row.is_available for row in rows] == [False, True]
    assert sum(1 for row in rows if row.is_available) == 1
