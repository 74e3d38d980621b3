"""Pydantic schemas for authentication."""

from uuid import UUID

from pydantic import BaseModel, Field

from src.auth.permissions import UserRole, is_admin


class AuthenticatedUser(BaseModel):
    """Identity resolved from a verified access token."""

    id: UUID = Field(..., description="User ID (token subject)")
    email: str | None = None
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return is_admin(self.role)
