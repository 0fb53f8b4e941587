import pytest

from shopfront.services.passwords import (
    hash_password,
    placeholder_password_hash,
    validate_password_strength,
    verify_password,
)
from shopfront.utils.slug import is_reserved_slug, is_valid_slug, normalize_slug


def test_hash_and_verify_password():
    hashed = hash_password("Sup3rSecret")

    assert hashed != "Sup3rSecret"
    assert verify_password("Sup3rSecret", hashed)
    assert not verify_password("sup3rsecret", hashed)


def test_verify_password_tolerates_malformed_hash():
    assert verify_password("anything", "not-a-bcrypt-hash") is False
    assert verify_password("anything", "") is False


def test_passwords_longer_than_72_bytes_are_accepted():
    long_password = "Ab1" + "x" * 100

    assert verify_password(long_password, hash_password(long_password))


def test_placeholder_hashes_are_unique_and_unguessable():
    first, second = placeholder_password_hash(), placeholder_password_hash()

    assert first != second
    assert not verify_password("", first)


@pytest.mark.parametrize(
    ("password", "message"),
    [
        ("Sh0rt", "Password must be at least 8 characters long"),
        ("ALLUPPER123", "Password must contain at least one lowercase letter"),
        ("alllower123", "Password must contain at least one uppercase letter"),
        ("NoDigitsHere", "Password must contain at least one number"),
        ("Sup3rSecret", None),
    ],
)
def test_password_strength_rules(password, message):
    assert validate_password_strength(password) == message


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(" Acme-Co ", "acme-co"), ("SHOP", "shop"), (None, ""), (123, "123")],
)
def test_normalize_slug(raw, expected):
    assert normalize_slug(raw) == expected


@pytest.mark.parametrize(
    ("slug", "valid"),
    [
        ("acme-co", True),
        ("abc", True),
        ("a" * 50, True),
        ("ab", False),
        ("a" * 51, False),
        ("Acme-Co", False),
        ("acme_co", False),
        ("", False),
    ],
)
def test_slug_grammar(slug, valid):
    assert is_valid_slug(slug) is valid


def test_reserved_slug_check_ignores_case():
    assert is_reserved_slug(" Platform ")
    assert not is_reserved_slug("platforms")
