"""
API tests for the user controller.

This module tests the profile endpoint with usage reporting and the
timezone preference update.
"""

import pytest
from fastapi import status
from httpx import AsyncClient

from app.core.security import SessionTokenVerifier
from models import User


class TestUserController:
    """Test cases for /api/users endpoints."""

    @pytest.mark.asyncio
    async def test_get_me(self, authenticated_client: AsyncClient, test_user):
        """Test profile retrieval with usage."""
        response = await authenticated_client.get("/api/users/me")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()["data"]
        assert data["user"]["email"] == test_user.email
        assert data["usage"] == {
            **data["usage"],
            "plan": "Free",
            "limit": 10,
            "used": 0,
            "remaining": 10,
            "total_messages": 0,
            "resets_in_timezone": "UTC",
        }

    @pytest.mark.asyncio
    async def test_get_me_reflects_usage(self, authenticated_client: AsyncClient, test_db, test_user, today_utc):
        test_user.messages_used_today = 4
        test_user.last_reset_date = today_utc
        await test_db.commit()

        response = await authenticated_client.get("/api/users/me")

        usage = response.json()["data"]["usage"]
        assert usage["used"] == 4
        assert usage["remaining"] == 6

    @pytest.mark.asyncio
    async def test_get_me_with_real_token(self, client: AsyncClient, test_user, monkeypatch):
        """Test the full token path: signature check, then user lookup."""
        verifier = SessionTokenVerifier(secret_key="api-test-secret")
        monkeypatch.setattr("app.core.dependencies.verifier", verifier)
        token = verifier.issue_token(test_user.auth_subject, test_user.email)

        response = await client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["user"]["id"] == str(test_user.id)

    @pytest.mark.asyncio
    async def test_get_me_unauthenticated(self, client: AsyncClient):
        response = await client.get("/api/users/me")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "UNAUTHENTICATED"

    @pytest.mark.asyncio
    async def test_update_timezone(
        self, authenticated_client: AsyncClient, test_db, test_user, test_session_factory, today_utc
    ):
        """Test that the preference changes but the quota anchor and counts do not."""
        test_user.messages_used_today = 10
        test_user.last_reset_date = today_utc
        await test_db.commit()

        response = await authenticated_client.put("/api/users/me/timezone", json={"timezone": "Asia/Tokyo"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["timezone"] == "Asia/Tokyo"
        async with test_session_factory() as session:
            user = await session.get(User, test_user.id)
            assert user.timezone == "Asia/Tokyo"
            assert user.reset_timezone == "UTC"
            assert user.messages_used_today == 10
            assert user.last_reset_date == today_utc

    @pytest.mark.asyncio
    async def test_update_timezone_invalid(self, authenticated_client: AsyncClient, test_user, test_session_factory):
        response = await authenticated_client.put("/api/users/me/timezone", json={"timezone": "Mars/Olympus"})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        async with test_session_factory() as session:
            assert (await session.get(User, test_user.id)).timezone == "UTC"
