"""Account-wide toy collection fingerprint.

Toys are shared across every character on a Battle.net account, so two
unlinked characters with the same hash very likely belong to the same player.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Optional

from rostersync.models.character import Character
from rostersync.services.battlenet_client import BattleNetClient
from rostersync.services.battlenet_errors import BattleNetError, BattleNetNotFoundError

logger = logging.getLogger(__name__)

# Sentinel stored for characters without toys.
NO_TOYS_HASH = "a3741d687719e1c015f4f115371c77064771f699817f81f09016350165a19111"


def hash_toy_ids(toy_ids: list[int]) -> str:
    if not toy_ids:
        return NO_TOYS_HASH
    joined = ",".join(str(toy_id) for toy_id in sorted(toy_ids))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def extract_toy_ids(payload: Any) -> list[int]:
    if not isinstance(payload, dict) or not isinstance(payload.get("toys"), list):
        return []
    toy_ids = []
    for entry in payload["toys"]:
        toy = entry.get("toy") if isinstance(entry, dict) else None
        toy_id = toy.get("id") if isinstance(toy, dict) else None
        if isinstance(toy_id, int) and not isinstance(toy_id, bool):
            toy_ids.append(toy_id)
    return toy_ids


async def calculate_toy_hash(client: BattleNetClient, character: Character) -> Optional[str]:
    """Hash of the character's toy ids, or None when it could not be determined.

    Linked characters (``user_id`` set) are skipped and also return None.
    """
    if character.user_id is not None:
        return None
    if not character.name or not character.realm or not character.region:
        logger.warning("Cannot hash toys for character %s: name, realm or region missing", character.id)
        return None

    try:
        index = await client.get_collections_index(character.realm, character.name, character.region)
        toys_link = index.get("toys") if isinstance(index, dict) else None
        href = toys_link.get("href") if isinstance(toys_link, dict) else None
        if not isinstance(href, str) or not href:
            logger.debug("Character %s has no toys collection link", character.id)
            return NO_TOYS_HASH
        toys = await client.get_href(href, character.region)
    except BattleNetNotFoundError:
        logger.warning("Collections for character %s returned 404; assuming no toys", character.id)
        return NO_TOYS_HASH
    except BattleNetError:
        logger.exception("Failed to calculate toy hash for character %s", character.id)
        return None

    toy_ids = extract_toy_ids(toys)
    logger.debug("Character %s has %d toys", character.id, len(toy_ids))
    return hash_toy_ids(toy_ids)
