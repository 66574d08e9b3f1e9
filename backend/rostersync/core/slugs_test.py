"""Unit tests for slug and identity key helpers."""

from rostersync.core.slugs import create_slug, identity_key


def test_create_slug_hyphenates_and_lowercases() -> None:
    assert create_slug("Area 52") == "area-52"
    assert create_slug("  Argent   Dawn ") == "argent-dawn"


def test_create_slug_strips_punctuation() -> None:
    assert create_slug("Kel'Thuzad") == "kelthuzad"
    assert create_slug("--Weird--Name--") == "weird-name"


def test_create_slug_empty() -> None:
    assert create_slug("") == ""
    assert create_slug(None) == ""


def test_identity_key_is_case_insensitive() -> None:
    """Thrall/Orgrimmar matches thrall/orgrimmar."""
    assert identity_key("Thrall", "Orgrimmar") == identity_key("thrall", "orgrimmar")
    assert identity_key("Thrall", "Orgrimmar") == "thrall-orgrimmar"


def test_identity_key_accepts_realm_display_name() -> None:
    assert identity_key("Jaina", "Area 52") == identity_key("jaina", "area-52")
