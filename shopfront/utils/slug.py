import re

SLUG_PATTERN = re.compile(r"^[a-z0-9-]{3,50}$")
RESERVED_SLUGS = frozenset({"platform"})


def normalize_slug(value) -> str:
    """Trim and lowercase user-typed slugs (registration, public lookup)."""
    if value is None:
        return ""
    return str(value).strip().lower()


def is_valid_slug(value: str) -> bool:
    return bool(value) and SLUG_PATTERN.match(value) is not None


def is_reserved_slug(value: str) -> bool:
    return normalize_slug(value) in RESERVED_SLUGS
