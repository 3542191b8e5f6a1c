"""Integration tests for sign-in, logout and cookie authentication."""

import pytest
from httpx import AsyncClient

from salesdesk.models.user import UserDB

TEST_PASSWORD = "s3cret-pass"


@pytest.mark.integration
@pytest.mark.asyncio
class TestSignIn:
    """Tests for POST /api/signin."""

    async def test_signin_sets_cookie(self, api_client: AsyncClient, sales_user: UserDB) -> None:
        """Test valid credentials return the user and an httpOnly token cookie."""
        response = await api_client.post(
            "/api/signin", json={"email": "rahul@example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["user"] == {
            "name": "Rahul Sales",
            "email": "rahul@example.com",
            "role": "user",
            "employeeCode": "EMP042",
        }
        cookie_header = response.headers["set-cookie"].lower()
        assert cookie_header.startswith("token=")
        assert "httponly" in cookie_header
        assert "samesite=strict" in cookie_header

    async def test_signin_cookie_authenticates(self, api_client: AsyncClient, sales_user: UserDB) -> None:
        """Test the issued cookie is accepted by protected routes."""
        await api_client.post("/api/signin", json={"email": "rahul@example.com", "password": TEST_PASSWORD})

        response = await api_client.get("/api/notifications")

        assert response.status_code == 200

    async def test_wrong_password(self, api_client: AsyncClient, sales_user: UserDB) -> None:
        """Test a wrong password is rejected without a cookie."""
        response = await api_client.post(
            "/api/signin", json={"email": "rahul@example.com", "password": "nope"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid email or password"
        assert "set-cookie" not in response.headers

    async def test_unknown_email(self, api_client: AsyncClient) -> None:
        """Test an unknown email gets the same message as a wrong password."""
        response = await api_client.post(
            "/api/signin", json={"email": "ghost@example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid email or password"

    async def test_unverified_user(self, api_client: AsyncClient, async_db_session) -> None:
        """Test unverified accounts cannot sign in."""
        from werkzeug.security import generate_password_hash

        async_db_session.add(
            UserDB(
                name="New Hire",
                email="new@example.com",
                password=generate_password_hash(TEST_PASSWORD),
                role="user",
                verified=False,
            )
        )
        await async_db_session.commit()

        response = await api_client.post(
            "/api/signin", json={"email": "new@example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "EMAIL_NOT_VERIFIED"


@pytest.mark.integration
@pytest.mark.asyncio
class TestSessionCookie:
    """Tests for cookie validation and logout."""

    async def test_missing_cookie(self, api_client: AsyncClient) -> None:
        """Test protected routes reject requests without a cookie."""
        response = await api_client.get("/api/projects")

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    async def test_invalid_cookie(self, api_client: AsyncClient) -> None:
        """Test a forged token is rejected."""
        api_client.cookies.set("token", "not-a-jwt")

        response = await api_client.get("/api/projects")

        assert response.status_code == 401

    async def test_logout_expires_cookie(self, api_client: AsyncClient) -> None:
        """Test logout clears the token cookie."""
        response = await api_client.get("/api/logout")

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Logged out"}
        assert response.headers["cache-control"] == "no-cache"
        cookie_header = response.headers["set-cookie"].lower()
        assert cookie_header.startswith("token=")
        assert "max-age=0" in cookie_header
