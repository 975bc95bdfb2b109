from uuid import UUID

import pytest
from httpx import AsyncClient
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import temp_code
from app.auth.models import User
from app.auth.schemas import TempLoginComplete
from app.auth.security import hash_password
from app.core.enums import UserRole

ADMIN_PASSWORD = "AdminPass123!"


async def _enroll(client: AsyncClient, auth_headers, make_payload) -> dict:
    response = await client.post("/api/v1/enrollments/single", json=make_payload(), headers=auth_headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_admin_login(client: AsyncClient, org_admin: User) -> None:
    response = await client.post(
        "/api/v1/auth/login",
        json={"username": "akosua.admin", "password": ADMIN_PASSWORD},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["access_token"]
    assert data["user"]["role"] == "ORG_ADMIN"
    assert UUID(data["user"]["organization_id"]) == org_admin.organization_id


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, org_admin: User) -> None:
    response = await client.post(
        "/api/v1/auth/login",
        json={"username": "akosua.admin", "password": "nope"},
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid username or password"


@pytest.mark.asyncio
async def test_ward_first_login_flow(
    client: AsyncClient, auth_headers, make_payload, notifier
) -> None:
    enrolled = await _enroll(client, auth_headers, make_payload)
    temp_code = enrolled["temp_code"]
    temp_password = notifier.sent[0].temp_password
    # The password only travels by email
    assert "temp_password" not in enrolled

    # Temporary code unlocks credential setup, not a session
    response = await client.post("/api/v1/auth/login", json={"username": temp_code, "password": temp_password})
    assert response.status_code == 200
    data = response.json()
    assert data["requires_credential_setup"] is True
    assert data["name"] == "Ama Boateng"
    assert "access_token" not in data

    response = await client.post(
        "/api/v1/auth/temp-login/complete",
        json={
            "temp_code": temp_code,
            "temp_password": temp_password,
            "new_username": "ama.boateng",
            "new_password": "MyOwnPass2025!",
            "confirm_password": "MyOwnPass2025!",
        },
    )
    assert response.status_code == 200, response.text
    assert response.json()["user"]["username"] == "ama.boateng"
    assert response.json()["user"]["role"] == "ORG_WARD"

    response = await client.post(
        "/api/v1/auth/login", json={"username": "ama.boateng", "password": "MyOwnPass2025!"}
    )
    assert response.status_code == 200
    assert response.json()["access_token"]

    # The temporary code is spent
    response = await client.post("/api/v1/auth/login", json={"username": temp_code, "password": temp_password})
    assert response.status_code == 401
    assert response.json()["detail"] == "These credentials have already been used. Please contact your administrator."


@pytest.mark.asyncio
async def test_temp_login_wrong_password(client: AsyncClient, auth_headers, make_payload) -> None:
    enrolled = await _enroll(client, auth_headers, make_payload)
    response = await client.post(
        "/api/v1/auth/login", json={"username": enrolled["temp_code"], "password": "Wrong#Pass1"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid temporary credentials"


@pytest.mark.asyncio
async def test_ward_cannot_log_in_before_setup(
    client: AsyncClient, db_session: AsyncSession, organization
) -> None:
    ward = User(
        organization_id=organization.id,
        username="ward_pending",
        first_name="Yaa",
        last_name="Asantewaa",
        password_hash=hash_password("Known#Pass1"),
        role=UserRole.ORG_WARD.value,
        is_org_ward=True,
        credentials_set=False,
    )
    db_session.add(ward)
    await db_session.commit()

    response = await client.post("/api/v1/auth/login", json={"username": "ward_pending", "password": "Known#Pass1"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_complete_rejects_mismatched_passwords(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/auth/temp-login/complete",
        json={
            "temp_code": "lumtempcode-3f2b8c1e-9d4a-4f6b-a1c2-7e8d9f0a1b2c",
            "temp_password": "whatever",
            "new_username": "ama.boateng",
            "new_password": "MyOwnPass2025!",
            "confirm_password": "Different2025!",
        },
    )
    assert response.status_code == 422


def _completion(new_username: str) -> dict:
    return {
        "temp_code": "lumtempcode-3f2b8c1e-9d4a-4f6b-a1c2-7e8d9f0a1b2c",
        "temp_password": "whatever",
        "new_username": new_username,
        "new_password": "MyOwnPass2025!",
        "confirm_password": "MyOwnPass2025!",
    }


def test_new_username_cannot_look_like_temp_code() -> None:
    with pytest.raises(ValidationError, match="temporary code prefix"):
        TempLoginComplete(**_completion("LumTempCode-ama"))
    assert TempLoginComplete(**_completion("lumtempcoder")).new_username == "lumtempcoder"


def test_new_username_check_follows_configured_prefix(monkeypatch) -> None:
    monkeypatch.setattr(temp_code, "TEMP_CODE_PREFIX", "onboard")
    with pytest.raises(ValidationError, match="temporary code prefix"):
        TempLoginComplete(**_completion("onboard-ama"))
    assert TempLoginComplete(**_completion("lumtempcode-ama")).new_username == "lumtempcode-ama"


@pytest.mark.asyncio
async def test_complete_rejects_temp_code_username(client: AsyncClient) -> None:
    response = await client.post("/api/v1/auth/temp-login/complete", json=_completion("lumtempcode-ama"))
    assert response.status_code == 422
