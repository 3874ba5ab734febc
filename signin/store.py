"""
Storage abstraction for accounts and login attempt records.

Both stores are keyed by normalized email and expose get/put/delete so the
authenticator can run against the in-memory implementations below or against
the PostgreSQL ones in ``signin.db`` without changing its logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from signin.models import Account


@dataclass
class AttemptRecord:
    """Consecutive sign-in failures for a single email."""

    failures: int = 0
    locked_until: float | None = None


class AccountStore(Protocol):
    def get(self, email: str) -> Account | None: ...

    def put(self, account: Account) -> None: ...

    def delete(self, email: str) -> None: ...

    def count(self) -> int: ...


class AttemptStore(Protocol):
    def get(self, email: str) -> AttemptRecord | None: ...

    def put(self, email: str, record: AttemptRecord) -> None: ...

    def delete(self, email: str) -> None: ...


class InMemoryAccountStore:
    """Accounts held in a dict for the lifetime of the process."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}

    def get(self, email: str) -> Account | None:
        return self._accounts.get(email)

    def put(self, account: Account) -> None:
        self._accounts[account.email] = account

    def delete(self, email: str) -> None:
        self._accounts.pop(email, None)

    def count(self) -> int:
        return len(self._accounts)


class InMemoryAttemptStore:
    """Attempt records held in a dict for the lifetime of the process."""

    def __init__(self) -> None:
        self._attempts: dict[str, AttemptRecord] = {}

    def get(self, email: str) -> AttemptRecord | None:
        record = self._attempts.get(email)
        if record is None:
            return None
        # Hand out a copy so callers only change state through put().
        return AttemptRecord(record.failures, record.locked_until)

    def put(self, email: str, record: AttemptRecord) -> None:
        self._attempts[email] = AttemptRecord(record.failures, record.locked_until)

    def delete(self, email: str) -> None:
        self._attempts.pop(email, None)

    def __contains__(self, email: str) -> bool:
        return email in self._attempts

    def __len__(self) -> int:
        return len(self._attempts)
