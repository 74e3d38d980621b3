"""Tests for authentication dependencies."""

from uuid import uuid4

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from src.auth.dependencies import (
    get_access_token,
    get_current_user,
    get_current_user_optional,
    require_admin,
    verify_master_api_key,
)
from src.auth.permissions import UserRole
from src.auth.schemas import AuthenticatedUser
from src.auth.security import create_access_token
from src.config import get_settings


def make_request(headers: dict[str, str] | None = None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


class TestGetAccessToken:
    """Bearer header first, then the session cookie."""

    def test_bearer_header(self) -> None:
        request = make_request({"Authorization": "Bearer abc"})
        assert get_access_token(request) == "abc"

    def test_cookie(self) -> None:
        cookie = get_settings().auth_cookie_name
        request = make_request({"Cookie": f"{cookie}=from-cookie"})
        assert get_access_token(request) == "from-cookie"

    def test_header_wins_over_cookie(self) -> None:
        cookie = get_settings().auth_cookie_name
        request = make_request(
            {"Authorization": "Bearer from-header", "Cookie": f"{cookie}=c"}
        )
        assert get_access_token(request) == "from-header"

    def test_malformed_header(self) -> None:
        request = make_request({"Authorization": "Basic dXNlcjpwYXNz"})
        assert get_access_token(request) is None

    def test_missing(self) -> None:
        assert get_access_token(make_request()) is None


class TestCurrentUser:
    """Identity resolution from token claims."""

    @pytest.mark.asyncio
    async def test_valid_token(self) -> None:
        user_id = uuid4()
        token = create_access_token(
            {"sub": str(user_id), "email": "a@example.com", "role": "admin"}
        )

        user = await get_current_user_optional(token)

        assert user is not None
        assert user.id == user_id
        assert user.role == UserRole.ADMIN
        assert user.is_admin

    @pytest.mark.asyncio
    async def test_unknown_role_is_plain_user(self) -> None:
        token = create_access_token({"sub": str(uuid4()), "role": "moderator"})
        user = await get_current_user_optional(token)
        assert user is not None
        assert user.role == UserRole.USER

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, "", "garbage"])
    async def test_anonymous(self, token: str | None) -> None:
        assert await get_current_user_optional(token) is None

    @pytest.mark.asyncio
    async def test_non_uuid_subject_is_anonymous(self) -> None:
        token = create_access_token({"sub": "not-a-uuid"})
        assert await get_current_user_optional(token) is None

    @pytest.mark.asyncio
    async def test_required_user_missing(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(None)
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_require_admin(self) -> None:
        user = AuthenticatedUser(id=uuid4(), role=UserRole.USER)
        with pytest.raises(HTTPException) as exc_info:
            await require_admin(user)
        assert exc_info.value.status_code == 403

        admin = AuthenticatedUser(id=uuid4(), role=UserRole.ADMIN)
        assert await require_admin(admin) is admin


class TestMasterApiKey:
    """X-API-Key for the scheduler."""

    @pytest.mark.asyncio
    async def test_valid_key(self) -> None:
        settings = get_settings().model_copy(update={"master_api_key": "k" * 32})
        request = make_request({"X-API-Key": "k" * 32})
        assert await verify_master_api_key(request, settings) == "k" * 32

    @pytest.mark.asyncio
    async def test_not_configured(self) -> None:
        settings = get_settings().model_copy(update={"master_api_key": None})
        request = make_request({"X-API-Key": "anything"})
        with pytest.raises(HTTPException) as exc_info:
            await verify_master_api_key(request, settings)
        assert exc_info.value.status_code == 503
