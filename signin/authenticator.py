"""
Credentials authenticator: registration, sign-in and lockout enforcement.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from signin.errors import (
    AlreadyExists,
    InvalidCredentials,
    MissingCredentials,
    TemporarilyLocked,
)
from signin.models import Account, PublicIdentity
from signin.passwords import PasswordHasher
from signin.rate_limit import LOCKOUT_SECONDS, MAX_FAILURES, LoginThrottle
from signin.store import AccountStore, AttemptStore

logger = logging.getLogger(__name__)


def normalize_email(email: str | None) -> str:
    """Lower-case an email for use as a storage key."""
    return (email or "").strip().lower()


class _KeyedLocks:
    """One lock per key, dropped once no caller is waiting on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]


class CredentialAuthenticator:
    """Registers and authenticates email/password accounts.

    The lockout check runs before anything else, for registration and sign-in
    alike, so failures made while an email is locked never reach the failure
    bookkeeping and cannot extend the window.

    An unknown email and a wrong password both raise ``InvalidCredentials``
    and both count as a failure. Keep them identical.
    """

    def __init__(
        self,
        accounts: AccountStore,
        attempts: AttemptStore,
        hasher: PasswordHasher | None = None,
        clock: Callable[[], float] = time.time,
        max_failures: int = MAX_FAILURES,
        lockout_seconds: int = LOCKOUT_SECONDS,
    ) -> None:
        self.accounts = accounts
        self.attempts = attempts
        self.hasher = hasher or PasswordHasher()
        self.throttle = LoginThrottle(
            attempts,
            max_failures=max_failures,
            lockout_seconds=lockout_seconds,
            clock=clock,
        )
        self._locks = _KeyedLocks()

    def authenticate(
        self,
        email: str | None,
        password: str | None,
        is_register: bool = False,
    ) -> PublicIdentity:
        """Register or sign in, returning the public identity on success.

        Raises:
            MissingCredentials: email or password is empty
            TemporarilyLocked: the email is inside a lockout window
            AlreadyExists: registering an email that already has an account
            InvalidCredentials: unknown email or wrong password
            StorageUnavailable: the backing store could not be reached
        """
        if not email or not password:
            raise MissingCredentials()

        key = normalize_email(email)
        if not key:
            raise MissingCredentials()

        with self._locks.hold(key):
            if self.throttle.is_locked(key):
                raise TemporarilyLocked(retry_after=self.throttle.remaining_seconds(key))

            if is_register:
                return self._register(key, password)
            return self._login(key, password)

    def _register(self, email: str, password: str) -> PublicIdentity:
        if self.accounts.get(email) is not None:
            raise AlreadyExists()

        account = Account.create(email, self.hasher.hash(password))
        self.accounts.put(account)
        self.throttle.record_success(email)
        logger.info("Registered account: %s", email)
        return account.public()

    def _login(self, email: str, password: str) -> PublicIdentity:
        account = self.accounts.get(email)
        if account is None or not self.hasher.verify(password, account.password_hash):
            record = self.throttle.record_failure(email)
            logger.info("Failed sign-in for %s (failures=%d)", email, record.failures)
            raise InvalidCredentials()

        self.throttle.record_success(email)
        logger.info("Successful sign-in: %s", email)
        return account.public()
