import hashlib

import pytest

from rostersync.services.toy_hash import NO_TOYS_HASH, extract_toy_ids, hash_toy_ids
from rostersync.testing.battlenet import toys_payload

pytestmark = pytest.mark.unit


def test_hash_is_order_independent():
    expected = hashlib.sha256(b"1,2,3").hexdigest()

    assert hash_toy_ids([3, 1, 2]) == expected
    assert hash_toy_ids([1, 2, 3]) == expected


def test_empty_collection_uses_sentinel():
    assert hash_toy_ids([]) == NO_TOYS_HASH


def test_extract_skips_malformed_entries():
    payload = toys_payload([10, 20])
    payload["toys"].extend([None, {"toy": {"id": "30"}}, {"toy": {}}, {"toy": "Hearthstone"}, "junk"])

    assert extract_toy_ids(payload) == [10, 20]


def test_extract_handles_missing_list():
    assert extract_toy_ids({}) == []
    assert extract_toy_ids(None) == []
