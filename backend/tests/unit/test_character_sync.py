"""
Unit tests for single character refresh.

Tests rostersync.services.character_sync including:
- Updating character fields from the profile endpoints
- Marking characters and memberships unavailable on 404
- Queueing guilds that are not known locally
- Toy hash calculation for unlinked characters
"""

import hashlib

import pytest
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from rostersync.models.character import Character
from rostersync.models.guild import Guild, GuildMember
from rostersync.models.guild_sync_request import GuildSyncRequest, GuildSyncRequestStatus
from rostersync.services.character_sync import sync_character
from rostersync.services.toy_hash import NO_TOYS_HASH
from rostersync.testing import create_character, create_guild, create_guild_member, create_user
from rostersync.testing.battlenet import (
    FakeBattleNet,
    character_guild_ref,
    character_path,
    character_payload,
    register_character,
)


async def _character(session_factory, character_id: int) -> Character:
    async with session_factory() as fresh:
        return await fresh.get(Character, character_id)


async def _memberships(session_factory, character_id: int) -> list[GuildMember]:
    async with session_factory() as fresh:
        result = await fresh.exec(select(GuildMember).where(GuildMember.character_id == character_id))
        return list(result.all())


async def _requests(session_factory) -> list[GuildSyncRequest]:
    async with session_factory() as fresh:
        result = await fresh.exec(select(GuildSyncRequest))
        return list(result.all())


@pytest.mark.unit
@pytest.mark.service
async def test_profile_fields_are_stored(session: AsyncSession, session_factory, fake_battlenet: FakeBattleNet, bnet_client):
    """Test that a successful sync copies the profile onto the character."""
    character = await create_character(session, name="Thrall", class_name="Unknown", level=10)
    register_character(fake_battlenet, "Thrall", character_id=321, class_name="Shaman", toy_ids=[5, 3])

    await sync_character(session, bnet_client, character)

    stored = await _character(session_factory, character.id)
    assert stored.bnet_character_id == 321
    assert stored.class_name == "Shaman"
    assert stored.level == 80
    assert stored.item_level == 610
    assert stored.profile_json["id"] == 321
    assert stored.equipment_json["equipped_items"]
    assert stored.mythic_profile_json["current_mythic_rating"]["rating"] == 2500.5
    assert stored.professions_json == [{"profession": {"id": 164, "name": "Blacksmithing"}}]
    assert stored.toy_hash == hashlib.sha256(b"3,5").hexdigest()
    assert stored.is_available is True
    assert stored.last_synced_at is not None


@pytest.mark.unit
@pytest.mark.service
async def test_linked_character_keeps_toy_hash(session: AsyncSession, session_factory, fake_battlenet, bnet_client):
    """Test that characters linked to an account are not fingerprinted."""
    user = await create_user(session)
    character = await create_character(session, name="Thrall", user_id=user.id, toy_hash="existing")
    register_character(fake_battlenet, "Thrall", toy_ids=[1])

    await sync_character(session, bnet_client, character)

    assert (await _character(session_factory, character.id)).toy_hash == "existing"
    assert fake_battlenet.calls_to(character_path("silvermoon", "thrall", "/collections")) == 0


@pytest.mark.unit
@pytest.mark.service
async def test_character_without_toys_gets_sentinel_hash(session: AsyncSession, session_factory, fake_battlenet, bnet_client):
    """Test that a collections index without a toys link hashes as empty."""
    character = await create_character(session, name="Thrall")
    register_character(fake_battlenet, "Thrall")

    await sync_character(session, bnet_client, character)

    assert (await _character(session_factory, character.id)).toy_hash == NO_TOYS_HASH


@pytest.mark.unit
@pytest.mark.service
async def test_optional_endpoints_missing(session: AsyncSession, session_factory, fake_battlenet, bnet_client):
    """Test that 404s on keystone and professions endpoints still sync the character."""
    character = await create_character(session, name="Thrall")
    register_character(fake_battlenet, "Thrall")
    fake_battlenet.routes.pop(character_path("silvermoon", "thrall", "/mythic-keystone-profile"))
    fake_battlenet.routes.pop(character_path("silvermoon", "thrall", "/professions"))

    await sync_character(session, bnet_client, character)

    stored = await _character(session_factory, character.id)
    assert stored.mythic_profile_json is None
    assert stored.professions_json == []
    assert stored.profile_json is not None


@pytest.mark.unit
@pytest.mark.service
async def test_missing_profile_marks_character_and_memberships_unavailable(
    session: AsyncSession, session_factory, bnet_client
):
    """Test that a deleted character cascades to its guild memberships."""
    guild = await create_guild(session)
    character = await create_character(session, name="Thrall")
    await create_guild_member(session, guild, character, rank=1, is_main=True)

    await sync_character(session, bnet_client, character)

    stored = await _character(session_factory, character.id)
    assert stored.is_available is False
    assert stored.last_synced_at is not None
    (membership,) = await _memberships(session_factory, character.id)
    assert membership.is_available is False
    assert membership.is_main is True


@pytest.mark.unit
@pytest.mark.service
async def test_unavailable_character_is_skipped(session: AsyncSession, fake_battlenet: FakeBattleNet, bnet_client):
    """Test that unavailable characters make no API calls."""
    character = await create_character(session, name="Thrall", is_available=False)

    await sync_character(session, bnet_client, character)

    assert fake_battlenet.requests == []


@pytest.mark.unit
@pytest.mark.service
async def test_unknown_guild_is_queued(session: AsyncSession, session_factory, fake_battlenet, bnet_client):
    """Test that a guild missing locally is queued instead of created."""
    character = await create_character(session, name="Thrall")
    register_character(fake_battlenet, "Thrall", guild=character_guild_ref(88, "Horde Heroes"))

    await sync_character(session, bnet_client, character)

    (request,) = await _requests(session_factory)
    assert request.bnet_guild_id == 88
    assert request.name == "Horde Heroes"
    assert request.realm_slug == "silvermoon"
    assert request.region == "eu"
    assert request.status == GuildSyncRequestStatus.pending
    async with session_factory() as fresh:
        assert (await fresh.exec(select(Guild))).all() == []


@pytest.mark.unit
@pytest.mark.service
async def test_unknown_guild_is_queued_once(session: AsyncSession, session_factory, fake_battlenet, bnet_client):
    """Test that two characters of the same missing guild produce one request."""
    first = await create_character(session, name="Thrall")
    second = await create_character(session, name="Garrosh")
    register_character(fake_battlenet, "Thrall", guild=character_guild_ref(88, "Horde Heroes"))
    register_character(fake_battlenet, "Garrosh", character_id=502, guild=character_guild_ref(88, "Horde Heroes"))

    await sync_character(session, bnet_client, first)
    await sync_character(session, bnet_client, second)

    assert len(await _requests(session_factory)) == 1


@pytest.mark.unit
@pytest.mark.service
async def test_known_guild_refreshes_membership_display(
    session: AsyncSession, session_factory, fake_battlenet, bnet_client
):
    """Test that a found guild backfills its remote id and refreshes the member's name and class."""
    guild = await create_guild(session, name="Horde Heroes")
    character = await create_character(session, name="Thrall", class_name="Unknown")
    await create_guild_member(session, guild, character, rank=2, character_class="Unknown")
    register_character(
        fake_battlenet,
        "Thrall",
        class_name="Shaman",
        guild=character_guild_ref(88, "Horde Heroes"),
    )

    await sync_character(session, bnet_client, character)

    (membership,) = await _memberships(session_factory, character.id)
    assert membership.character_class == "Shaman"
    assert membership.rank == 2
    async with session_factory() as fresh:
        assert (await fresh.get(Guild, guild.id)).bnet_guild_id == 88
    assert await _requests(session_factory) == []


@pytest.mark.unit
@pytest.mark.service
async def test_api_failure_only_stamps_last_synced(session: AsyncSession, session_factory, fake_battlenet, bnet_client):
    """Test that a failed fetch leaves the profile untouched but marks the attempt."""
    character = await create_character(session, name="Thrall", class_name="Warrior")
    register_character(fake_battlenet, "Thrall", class_name="Shaman")
    fake_battlenet.routes[character_path("silvermoon", "thrall", "/equipment")].clear()
    fake_battlenet.add(character_path("silvermoon", "thrall", "/equipment"), status_code=500)

    await sync_character(session, bnet_client, character)

    stored = await _character(session_factory, character.id)
    assert stored.class_name == "Warrior"
    assert stored.profile_json is None
    assert stored.is_available is True
    assert stored.last_synced_at is not None


@pytest.mark.unit
@pytest.mark.service
async def test_drifted_guild_field_is_tolerated(session: AsyncSession, session_factory, fake_battlenet, bnet_client):
    """Test that a guild reference that is not an object is ignored and the profile still syncs."""
    character = await create_character(session, name="Thrall", class_name="Unknown")
    register_character(fake_battlenet, "Thrall", class_name="Shaman")
    profile_path = character_path("silvermoon", "thrall")
    drifted = character_payload("Thrall", class_name="Shaman")
    drifted["guild"] = "Horde Heroes"
    fake_battlenet.routes[profile_path].clear()
    fake_battlenet.add(profile_path, drifted)

    await sync_character(session, bnet_client, character)

    stored = await _character(session_factory, character.id)
    assert stored.class_name == "Shaman"
    assert stored.profile_json["guild"] == "Horde Heroes"
    assert stored.last_synced_at is not None
    assert await _requests(session_factory) == []


@pytest.mark.unit
@pytest.mark.service
async def test_unexpected_error_is_logged_and_stamped(
    session: AsyncSession, session_factory, fake_battlenet, bnet_client, monkeypatch
):
    """Test that an error outside the API and storage layers does not escape."""
    character = await create_character(session, name="Thrall", class_name="Warrior")
    register_character(fake_battlenet, "Thrall", class_name="Shaman")

    async def broken_toy_hash(client, character):
        raise RuntimeError("unexpected payload")

    monkeypatch.setattr("rostersync.services.character_sync.calculate_toy_hash", broken_toy_hash)

    await sync_character(session, bnet_client, character)

    stored = await _character(session_factory, character.id)
    assert stored.class_name == "Warrior"
    assert stored.last_synced_at is not None
