from __future__ import annotations

from pydantic import Field

from omnidesk.schemas.base import CamelModel
from omnidesk.schemas.enums import Role


class AuthUser(CamelModel):
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    avatar: str | None = None
    phone: str | None = None
    email_verified: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class AuthOrganization(CamelModel):
    id: str
    name: str = ""
    slug: str = ""
    role: Role


class AuthPayload(CamelModel):
    access_token: str
    refresh_token: str | None = None
    user: AuthUser
    org: AuthOrganization


class LoginRequest(CamelModel):
    email: str = Field(min_length=3)
    password: str = Field(min_length=1)


class RegisterRequest(CamelModel):
    email: str = Field(min_length=3)
    password: str = Field(min_length=8)
    first_name: str = Field(min_length=1, max_length=80)
    last_name: str = Field(min_length=1, max_length=80)
    organization_name: str = Field(min_length=2, max_length=120)
