from __future__ import annotations

import json

import pytest

from shopfront.core.errors import (
    AccountInactive,
    IdentityResolutionFailed,
    InvalidCredential,
    ProvisioningThrottled,
)
from shopfront.core.rate_limiter import RateLimitRule, SlidingWindowLimiter
from shopfront.models.audit_log import AuditLog
from shopfront.models.user import User
from shopfront.services.identity_resolver import PROVISIONING_BUCKET, IdentityResolver
from shopfront.services.token_verifier import (
    LegacyVerified,
    RemoteKeyVerified,
    SharedSecretVerified,
    VerificationFailed,
)

from tests.fixtures_data import make_user


def _one_per_minute() -> SlidingWindowLimiter:
    return SlidingWindowLimiter({PROVISIONING_BUCKET: RateLimitRule(limit=1, window_seconds=60)})


def test_external_identity_matches_on_subject(db):
    user = make_user(db, "known@example.com", auth_user_id="sub-1")

    resolved = IdentityResolver(db).resolve(SharedSecretVerified({"sub": "sub-1", "email": "other@example.com"}))

    assert resolved.id == user.id


def test_email_fallback_links_subject(db):
    user = make_user(db, "linked@example.com")

    resolved = IdentityResolver(db).resolve(
        RemoteKeyVerified({"sub": "sub-new", "email": "  Linked@Example.com "})
    )

    assert resolved.id == user.id
    db.expire_all()
    assert db.get(User, user.id).auth_user_id == "sub-new"


def test_existing_subject_link_is_not_overwritten(db):
    user = make_user(db, "stable@example.com", auth_user_id="sub-original")

    IdentityResolver(db).resolve(SharedSecretVerified({"sub": "sub-other", "email": "stable@example.com"}))

    db.expire_all()
    assert db.get(User, user.id).auth_user_id == "sub-original"


def test_unknown_identity_without_provisioning_fails(db):
    with pytest.raises(IdentityResolutionFailed) as exc:
        IdentityResolver(db).resolve(SharedSecretVerified({"sub": "ghost", "email": "ghost@example.com"}))

    assert exc.value.status_code == 401
    assert db.query(User).count() == 0


def test_claims_without_subject_or_email_fail(db):
    with pytest.raises(IdentityResolutionFailed):
        IdentityResolver(db).resolve(SharedSecretVerified({"role": "authenticated"}), allow_provisioning=True)


def test_first_sight_provisions_customer_and_audits(db):
    claims = {
        "sub": "fresh-sub",
        "email": "Fresh@Example.com",
        "iss": "https://idp.example.test/auth/v1",
        "user_metadata": {"full_name": "Grace Brewster Hopper"},
    }

    user = IdentityResolver(db).resolve(SharedSecretVerified(claims), allow_provisioning=True, client_key="10.0.0.1")

    assert user.email == "fresh@example.com"
    assert user.auth_user_id == "fresh-sub"
    assert user.role == "customer"
    assert user.status == "active"
    assert (user.first_name, user.last_name) == ("Grace", "Brewster Hopper")

    entry = db.query(AuditLog).filter(AuditLog.action == "user.provisioned").one()
    assert entry.entity_id == user.id
    assert json.loads(entry.meta_json)["auth_user_id"] == "fresh-sub"


def test_provisioning_without_email_uses_placeholder_address(db):
    user = IdentityResolver(db).resolve(SharedSecretVerified({"sub": "phone-only"}), allow_provisioning=True)

    assert user.email == "phone-only@local.user"


def test_concurrent_provisioning_converges_on_one_row(db, monkeypatch):
    winner = make_user(db, "race@example.com", auth_user_id="race-sub")
    resolver = IdentityResolver(db)
    original_find = resolver.find_external
    lookups = []

    def stale_find(sub, email):
        # The first lookup runs before the concurrent request has committed.
        lookups.append(sub)
        if len(lookups) == 1:
            return None
        return original_find(sub, email)

    monkeypatch.setattr(resolver, "find_external", stale_find)

    resolved = resolver.resolve(
        SharedSecretVerified({"sub": "race-sub", "email": "race@example.com"}),
        allow_provisioning=True,
    )

    assert resolved.id == winner.id
    assert db.query(User).filter(User.auth_user_id == "race-sub").count() == 1
    assert db.query(AuditLog).count() == 0


def test_provisioning_is_throttled_per_client(db):
    resolver = IdentityResolver(db, limiter=_one_per_minute())

    resolver.resolve(SharedSecretVerified({"sub": "first"}), allow_provisioning=True, client_key="1.2.3.4")
    with pytest.raises(ProvisioningThrottled) as exc:
        resolver.resolve(SharedSecretVerified({"sub": "second"}), allow_provisioning=True, client_key="1.2.3.4")

    assert exc.value.status_code == 429
    resolver.resolve(SharedSecretVerified({"sub": "third"}), allow_provisioning=True, client_key="5.6.7.8")
    assert db.query(User).count() == 2


def test_matching_existing_user_does_not_count_toward_provisioning_limit(db):
    make_user(db, "regular@example.com", auth_user_id="regular")
    resolver = IdentityResolver(db, limiter=_one_per_minute())

    for _ in range(3):
        resolver.resolve(SharedSecretVerified({"sub": "regular"}), allow_provisioning=True, client_key="9.9.9.9")


def test_legacy_identity_resolves_by_numeric_id(db):
    user = make_user(db, "legacy@example.com")

    assert IdentityResolver(db).resolve(LegacyVerified({"id": user.id})).id == user.id
    assert IdentityResolver(db).resolve(LegacyVerified({"id": str(user.id)})).id == user.id


@pytest.mark.parametrize(
    ("claims", "message"),
    [
        ({"sub": "7"}, "Invalid token (no user id)"),
        ({"id": True}, "Invalid token (no user id)"),
        ({"id": 999}, "User not found"),
    ],
)
def test_legacy_identity_failures(db, claims, message):
    with pytest.raises(IdentityResolutionFailed) as exc:
        IdentityResolver(db).resolve(LegacyVerified(claims))

    assert exc.value.message == message


def test_legacy_identity_never_provisions(db):
    with pytest.raises(IdentityResolutionFailed):
        IdentityResolver(db).resolve(LegacyVerified({"id": 42, "email": "new@example.com"}), allow_provisioning=True)

    assert db.query(User).count() == 0


def test_inactive_account_is_rejected(db):
    make_user(db, "inactive@example.com", auth_user_id="sleepy", status="inactive")

    with pytest.raises(AccountInactive):
        IdentityResolver(db).resolve(SharedSecretVerified({"sub": "sleepy"}))


def test_failed_verification_is_not_resolvable(db):
    with pytest.raises(InvalidCredential):
        IdentityResolver(db).resolve(VerificationFailed("Invalid token"))
