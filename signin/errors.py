"""
Rejections raised by the credentials authenticator.

Every rejection kind has exactly one message. ``InvalidCredentials`` is raised
both for an unknown email and for a wrong password, and the two cases must stay
indistinguishable to the caller so that sign-in cannot be used to discover which
emails are registered.
"""

from __future__ import annotations

from enum import Enum


class RejectionKind(str, Enum):
    MISSING_CREDENTIALS = "MissingCredentials"
    TEMPORARILY_LOCKED = "TemporarilyLocked"
    ALREADY_EXISTS = "AlreadyExists"
    INVALID_CREDENTIALS = "InvalidCredentials"
    STORAGE_UNAVAILABLE = "StorageUnavailable"


class AuthRejected(Exception):
    """Base class for every rejected authentication attempt."""

    kind: RejectionKind
    message: str
    status_code: int = 400

    def __init__(self) -> None:
        super().__init__(self.message)


class MissingCredentials(AuthRejected):
    kind = RejectionKind.MISSING_CREDENTIALS
    message = "Email and password are required"
    status_code = 400


class TemporarilyLocked(AuthRejected):
    kind = RejectionKind.TEMPORARILY_LOCKED
    message = "Account temporarily locked due to multiple failed sign-in attempts"
    status_code = 429

    def __init__(self, retry_after: int = 0) -> None:
        super().__init__()
        self.retry_after = retry_after


class AlreadyExists(AuthRejected):
    kind = RejectionKind.ALREADY_EXISTS
    message = "User already exists"
    status_code = 409


class InvalidCredentials(AuthRejected):
    kind = RejectionKind.INVALID_CREDENTIALS
    message = "Invalid email or password"
    status_code = 401


class StorageUnavailable(AuthRejected):
    kind = RejectionKind.STORAGE_UNAVAILABLE
    message = "Account storage is unavailable, please try again later"
    status_code = 503
