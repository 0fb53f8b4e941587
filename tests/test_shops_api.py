from __future__ import annotations

import pytest

from shopfront.models.audit_log import AuditLog
from shopfront.models.shop import Shop
from shopfront.models.shop_member import ShopMember
from shopfront.models.user import User
from shopfront.services.passwords import verify_password

from tests.fixtures_data import (
    SHOP_REGISTRATION,
    external_token,
    make_membership,
    make_shop,
    make_user,
    shop_headers,
)


def _register(client, **overrides):
    return client.post("/api/v1/shops/register", json={**SHOP_REGISTRATION, **overrides})


def test_register_shop_creates_shop_admin_and_membership(client, db):
    response = _register(client)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["shop"]["slug"] == "acme-co"
    assert body["data"]["shop"]["status"] == "active"
    assert body["data"]["admin_user"]["email"] == "owner@acme.com"
    assert body["data"]["admin_user"]["role"] == "admin"

    shop = db.query(Shop).filter(Shop.slug == "acme-co").one()
    admin = db.query(User).filter(User.email == "owner@acme.com").one()
    member = db.query(ShopMember).filter(ShopMember.shop_id == shop.id, ShopMember.user_id == admin.id).one()
    assert member.role == "admin"
    assert member.status == "active"
    assert admin.role == "customer"
    assert admin.last_shop_id == shop.id
    assert verify_password(SHOP_REGISTRATION["admin_password"], admin.password_hash)
    assert db.query(AuditLog).filter(AuditLog.action == "shop.registered", AuditLog.shop_id == shop.id).count() == 1


@pytest.mark.parametrize("slug", ["platform", "Platform", " platform "])
def test_register_rejects_reserved_slug(client, db, slug):
    response = _register(client, shop_slug=slug)

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Shop slug is reserved."}
    assert db.query(Shop).count() == 0


@pytest.mark.parametrize("slug", ["ab", "acme_co", "acme co", "a" * 51])
def test_register_rejects_malformed_slug(client, slug):
    response = _register(client, shop_slug=slug)

    assert response.status_code == 400
    assert response.json()["message"].startswith("Shop slug must be 3-50 characters")


def test_register_rejects_duplicate_slug(client, db):
    make_shop(db, "acme-co")

    response = _register(client)

    assert response.status_code == 409
    assert response.json()["message"] == "Shop slug already exists."


def test_register_rejects_duplicate_email(client, db):
    make_user(db, "owner@acme.com")

    response = _register(client)

    assert response.status_code == 409
    assert response.json()["message"] == "Email already in use."
    assert db.query(Shop).count() == 0


def test_register_rejects_weak_password(client):
    response = _register(client, admin_password="password")

    assert response.status_code == 400
    assert response.json()["message"] == "Password must contain at least one uppercase letter"


def test_register_validation_errors_are_listed(client):
    payload = {key: value for key, value in SHOP_REGISTRATION.items() if key != "admin_email"}

    response = client.post("/api/v1/shops/register", json=payload)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation failed"
    assert any(error["field"] == "admin_email" for error in body["errors"])


def test_public_lookup_returns_active_shop(client, db):
    make_shop(db, "acme-co", name="Acme Company")

    response = client.get("/api/v1/shops/slug/ACME-CO")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["slug"] == "acme-co"
    assert data["name"] == "Acme Company"


def test_public_lookup_of_unknown_shop_is_404(client):
    response = client.get("/api/v1/shops/slug/nowhere")

    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Shop not found"}


def test_public_lookup_of_suspended_shop_is_403(client, db):
    make_shop(db, "closed-shop", status="suspended")

    response = client.get("/api/v1/shops/slug/closed-shop")

    assert response.status_code == 403
    assert response.json()["message"] == "Shop is not active"


def test_branding_update_keeps_fields_not_provided(client, db):
    shop = make_shop(db, "acme-co")
    shop.theme_primary = "#111111"
    shop.theme_secondary = "#222222"
    db.commit()
    owner = make_user(db, "owner@acme.com", auth_user_id="owner-sub")
    make_membership(db, shop, owner, role="admin")

    response = client.put(
        "/api/v1/shops/branding",
        json={"theme_primary": "#ff0000", "logo_url": "https://cdn.example/logo.png"},
        headers=shop_headers(external_token(sub="owner-sub"), "acme-co"),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["theme_primary"] == "#ff0000"
    assert data["theme_secondary"] == "#222222"
    assert data["logo_url"] == "https://cdn.example/logo.png"
    db.expire_all()
    assert db.get(User, owner.id).last_shop_id == shop.id


def test_branding_update_requires_admin_membership(client, db):
    shop = make_shop(db, "acme-co")
    staff = make_user(db, "staff@acme.com", auth_user_id="staff-sub")
    make_membership(db, shop, staff, role="staff")

    response = client.put(
        "/api/v1/shops/branding",
        json={"theme_primary": "#000000"},
        headers=shop_headers(external_token(sub="staff-sub"), "acme-co"),
    )

    assert response.status_code == 403
    assert response.json() == {"success": False, "message": "Access denied. Insufficient permissions."}


def test_branding_update_requires_shop_context(client, db):
    make_user(db, "owner@acme.com", auth_user_id="owner-sub", role="admin")

    response = client.put(
        "/api/v1/shops/branding",
        json={"theme_primary": "#000000"},
        headers={"Authorization": f"Bearer {external_token(sub='owner-sub')}"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Shop context is required"
