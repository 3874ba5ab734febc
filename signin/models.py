"""
Pydantic models for accounts, identities and request/response schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class PublicIdentity(BaseModel):
    """Identity handed to the session layer. Never carries a verifier."""

    id: str
    name: str
    email: str


class Account(BaseModel):
    """A registered credentials account, keyed by normalized email."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    password_hash: str

    @classmethod
    def create(cls, email: str, password_hash: str) -> Account:
        """Build a new account; the display name is the email's local part."""
        return cls(
            id=email,
            name=email.split("@", 1)[0],
            email=email,
            password_hash=password_hash,
        )

    def public(self) -> PublicIdentity:
        return PublicIdentity(id=self.id, name=self.name, email=self.email)


def parse_is_register(value: str | bool | None) -> bool:
    """Read the ``isRegister`` flag sent by the form or the JSON body."""
    if isinstance(value, bool):
        return value
    return (value or "").strip().lower() == "true"


class CredentialsRequest(BaseModel):
    """JSON body for the credentials endpoint.

    Fields are optional and unbounded so that absent or null values reach the
    authenticator and are rejected as missing credentials rather than as a
    schema error that echoes the submitted password back.
    """

    email: str | None = None
    password: str | None = None
    isRegister: str | bool | None = None

    @property
    def is_register(self) -> bool:
        return parse_is_register(self.isRegister)


class RejectionResponse(BaseModel):
    """Error body returned by the credentials endpoint."""

    error: str
    message: str
