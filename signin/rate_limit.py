"""
Per-email login throttle.
Tracks consecutive failed sign-ins per email and enforces a lockout after a threshold.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from signin.store import AttemptRecord, AttemptStore

logger = logging.getLogger(__name__)

MAX_FAILURES = 5
LOCKOUT_SECONDS = 300


class LoginThrottle:
    """Locks an email out after too many consecutive failed sign-ins.

    The failure count is only reset by :meth:`record_success`; an elapsed
    lockout window leaves the count in place, so the next failure locks the
    email again straight away.
    """

    def __init__(
        self,
        attempts: AttemptStore,
        max_failures: int = MAX_FAILURES,
        lockout_seconds: int = LOCKOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._attempts = attempts
        self._max_failures = max_failures
        self._lockout_seconds = lockout_seconds
        self._clock = clock

    def is_locked(self, email: str) -> bool:
        """Check if an email is inside an active lockout window."""
        record = self._attempts.get(email)
        if record is None or record.locked_until is None:
            return False
        return record.locked_until > self._clock()

    def remaining_seconds(self, email: str) -> int:
        """Seconds remaining in lockout. Returns 0 if not locked."""
        record = self._attempts.get(email)
        if record is None or record.locked_until is None:
            return 0

        now = self._clock()
        if record.locked_until > now:
            return int(record.locked_until - now) + 1
        return 0

    def record_failure(self, email: str) -> AttemptRecord:
        """Record a failed sign-in and arm the lockout once the threshold is hit."""
        record = self._attempts.get(email) or AttemptRecord()
        record.failures += 1

        if record.failures >= self._max_failures:
            record.locked_until = self._clock() + self._lockout_seconds
            logger.warning(
                "Locking %s for %ds after %d failed attempts",
                email,
                self._lockout_seconds,
                record.failures,
            )

        self._attempts.put(email, record)
        return record

    def record_success(self, email: str) -> None:
        """Clear attempts on successful sign-in or registration."""
        self._attempts.delete(email)
