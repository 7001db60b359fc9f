"""Acting identity supplied by the identity provider."""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class Role(str, Enum):
    CONTRIBUTOR = "contributor"
    EDITOR = "editor"
    ADMIN = "admin"


class Actor(BaseModel):
    """The authenticated human performing a request."""

    id: str
    login: str | None = None
    email: str | None = None
    display_name: str | None = None
    role: Role = Role.CONTRIBUTOR
    # OAuth token for the git hosting provider, when the user linked one
    oauth_token: str | None = None

    @property
    def handle(self) -> str:
        """Name recorded in audit fields: login, then email, then id."""
        return self.login or self.email or self.id
