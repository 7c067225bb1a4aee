"""
Integration tests for Authentication Flow.

Verifies Register -> Login -> Me flow and the role rules.
"""

import pytest
from sqlalchemy import select, update

from ridepool.app.models.audit_log import AuditLog
from ridepool.app.models.user import User
from ridepool.app.services.audit import AuditAction


@pytest.mark.asyncio
async def test_admin_registration_blocked(client):
    """
    ADMIN role cannot be created via API.
    """
    payload = {
        "email": "admin@test.com",
        "username": "admin",
        "password": "password123",
        "role": "ADMIN"
    }
    response = await client.post("/v1/auth/register", json=payload)
    assert response.status_code == 403
    data = response.json()
    assert "Admin users cannot be registered" in data["message"]


@pytest.mark.asyncio
async def test_role_defaults_to_rider(client):
    payload = {
        "email": "rider@test.com",
        "username": "rider_one",
        "password": "password123"
    }
    response = await client.post("/v1/auth/register", json=payload)
    assert response.status_code == 201
    assert response.json()["role"] == "RIDER"


@pytest.mark.asyncio
async def test_driver_registration_success(client, db_session):
    """
    Driver registers with a payout phone number and can read it back via /me.
    """
    payload = {
        "email": "driver@test.com",
        "username": "driver_ok",
        "password": "password123",
        "role": "DRIVER",
        "full_name": "Kofi Mensah",
        "phone_number": "+233200000001"
    }
    response = await client.post("/v1/auth/register", json=payload)
    assert response.status_code == 201
    data = response.json()
    assert data["role"] == "DRIVER"

    token = data["access_token"]
    response = await client.get("/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    me_data = response.json()
    assert me_data["username"] == "driver_ok"
    assert me_data["phone_number"] == "+233200000001"

    result = await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.USER_REGISTERED)
    )
    assert result.scalar_one().entity_id == data["user_id"]


@pytest.mark.asyncio
async def test_duplicate_username_rejected(client):
    payload = {
        "email": "first@test.com",
        "username": "taken",
        "password": "password123"
    }
    assert (await client.post("/v1/auth/register", json=payload)).status_code == 201

    payload["email"] = "second@test.com"
    response = await client.post("/v1/auth/register", json=payload)
    assert response.status_code == 400
    assert "Username already registered" in response.json()["message"]


@pytest.mark.asyncio
async def test_login_with_username_or_email(client, rider):
    response = await client.post("/v1/auth/login", json={"username": "rider", "password": "password123"})
    assert response.status_code == 200
    assert response.json()["user_id"] == rider.id

    response = await client.post(
        "/v1/auth/login", json={"username": "rider@example.com", "password": "password123"}
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_failed_login_is_audited(client, db_session, rider):
    response = await client.post("/v1/auth/login", json={"username": "rider", "password": "wrong-password"})
    assert response.status_code == 401

    result = await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.LOGIN_FAILED)
    )
    entry = result.scalar_one()
    assert entry.actor_id == rider.id


@pytest.mark.asyncio
async def test_me_requires_token(client):
    response = await client.get("/v1/auth/me")
    assert response.status_code in (401, 403)

    response = await client.get("/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_driver_needs_payout_phone(client):
    payload = {
        "email": "nophone@test.com",
        "username": "driver_nophone",
        "password": "password123",
        "role": "DRIVER"
    }
    response = await client.post("/v1/auth/register", json=payload)
    assert response.status_code == 400
    assert response.json()["details"]["field"] == "phone_number"


@pytest.mark.asyncio
async def test_blocked_user_token_stops_working(client, db_session, rider, headers_for):
    headers = headers_for(rider)
    assert (await client.get("/v1/auth/me", headers=headers)).status_code == 200

    await db_session.execute(
        update(User).where(User.id == rider.id).values(is_active=False)
    )
    await db_session.commit()

    response = await client.get("/v1/auth/me", headers=headers)
    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_PERM_001"
