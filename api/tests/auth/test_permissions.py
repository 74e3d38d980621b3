"""Tests for auth permissions."""

import pytest

from src.auth.permissions import (
    ROLE_HIERARCHY,
    UserRole,
    get_role_level,
    has_permission,
    is_admin,
)


class TestUserRole:
    """Tests for UserRole enum."""

    def test_role_values(self) -> None:
        assert UserRole.USER.value == "user"
        assert UserRole.ADMIN.value == "admin"

    def test_all_roles_have_levels(self) -> None:
        for role in UserRole:
            assert role in ROLE_HIERARCHY


class TestGetRoleLevel:
    """Tests for get_role_level function."""

    @pytest.mark.parametrize(
        "role,expected_level",
        [
            (UserRole.USER, 0),
            (UserRole.ADMIN, 1),
            ("user", 0),
            ("admin", 1),
            ("moderator", 0),
            ("", 0),
        ],
    )
    def test_levels(self, role: UserRole | str, expected_level: int) -> None:
        """Unknown roles get the lowest level."""
        assert get_role_level(role) == expected_level


class TestHasPermission:
    """Tests for has_permission function."""

    @pytest.mark.parametrize(
        "user_role,required_role,expected",
        [
            (UserRole.ADMIN, UserRole.USER, True),
            (UserRole.ADMIN, UserRole.ADMIN, True),
            (UserRole.USER, UserRole.USER, True),
            (UserRole.USER, UserRole.ADMIN, False),
            ("unknown", "admin", False),
        ],
    )
    def test_has_permission(
        self,
        user_role: UserRole | str,
        required_role: UserRole | str,
        expected: bool,
    ) -> None:
        assert has_permission(user_role, required_role) is expected


class TestIsAdmin:
    """Tests for the admin predicate."""

    @pytest.mark.parametrize(
        "role,expected",
        [
            (UserRole.ADMIN, True),
            ("admin", True),
            (UserRole.USER, False),
            ("user", False),
            ("ADMIN", False),
            ("superuser", False),
            (None, False),
        ],
    )
    def test_is_admin(self, role: UserRole | str | None, expected: bool) -> None:
        assert is_admin(role) is expected
