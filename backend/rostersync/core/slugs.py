import re

_WHITESPACE = re.compile(r"\s+")
_NON_SLUG = re.compile(r"[^\w-]+")
_MULTI_HYPHEN = re.compile(r"-{2,}")


def create_slug(value: str | None) -> str:
    """Lowercase, hyphenate whitespace and drop anything that is not a word char or hyphen."""
    if not value:
        return ""
    slug = _WHITESPACE.sub("-", value.lower())
    slug = _NON_SLUG.sub("", slug)
    slug = _MULTI_HYPHEN.sub("-", slug)
    return slug.strip("-")


def identity_key(name: str, realm: str) -> str:
    """Composite character identity used before a remote numeric id is known.

    ``Thrall`` on ``Orgrimmar`` and ``thrall`` on ``orgrimmar`` share a key, as do
    realm display names and their slugs (``Area 52`` / ``area-52``).
    """
    return f"{name.strip().lower()}-{create_slug(realm)}"
