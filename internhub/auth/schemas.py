"""Authentication schemas."""

from uuid import UUID

from pydantic import BaseModel, Field

from .permissions import UserRole


class CurrentUserInfo(BaseModel):
    """Identity extracted from a validated access token."""

    id: UUID
    email: str | None = None
    role: UserRole = UserRole.STUDENT
    name: str = Field(default="", description="Display name, when the token carries one")

    @property
    def display_name(self) -> str:
        return self.name or (self.email.split("@")[0] if self.email else "Student")
