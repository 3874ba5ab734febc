"""
Tests for the credentials authenticator.

Tests cover:
- Registration and sign-in
- Email normalization and uniqueness
- Identical rejection for unknown email and wrong password
- Lockout after repeated failures, expiry, and re-arming
- Per-email isolation
- Missing credentials never touching stored state
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from signin.authenticator import CredentialAuthenticator, normalize_email
from signin.errors import (
    AlreadyExists,
    InvalidCredentials,
    MissingCredentials,
    RejectionKind,
    TemporarilyLocked,
)
from signin.passwords import PasswordHasher
from signin.store import InMemoryAccountStore, InMemoryAttemptStore


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def attempts() -> InMemoryAttemptStore:
    return InMemoryAttemptStore()


@pytest.fixture()
def auth(clock: FakeClock, attempts: InMemoryAttemptStore) -> CredentialAuthenticator:
    """Authenticator with the cheapest bcrypt cost to keep tests fast."""
    return CredentialAuthenticator(
        accounts=InMemoryAccountStore(),
        attempts=attempts,
        hasher=PasswordHasher(rounds=4),
        clock=clock,
    )


def _fail(auth: CredentialAuthenticator, email: str, times: int) -> None:
    for _ in range(times):
        with pytest.raises(InvalidCredentials):
            auth.authenticate(email, "wrong", is_register=False)


class TestRegistration:
    """Test account registration."""

    def test_register_returns_public_identity(self, auth: CredentialAuthenticator):
        user = auth.authenticate("u@test.com", "pw1", is_register=True)
        assert user.id == "u@test.com"
        assert user.name == "u"
        assert user.email == "u@test.com"

    def test_identity_has_no_verifier(self, auth: CredentialAuthenticator):
        user = auth.authenticate("u@test.com", "pw1", is_register=True)
        assert set(user.model_dump()) == {"id", "name", "email"}

    def test_password_stored_as_bcrypt_hash(self, auth: CredentialAuthenticator):
        auth.authenticate("u@test.com", "pw1", is_register=True)
        account = auth.accounts.get("u@test.com")
        assert account is not None
        assert account.password_hash != "pw1"
        assert account.password_hash.startswith("$2")

    def test_register_then_login(self, auth: CredentialAuthenticator):
        auth.authenticate("u@test.com", "pw1", is_register=True)
        user = auth.authenticate("u@test.com", "pw1", is_register=False)
        assert user.email == "u@test.com"

    def test_duplicate_registration_case_insensitive(self, auth: CredentialAuthenticator):
        auth.authenticate("A@x.com", "pw", is_register=True)
        with pytest.raises(AlreadyExists):
            auth.authenticate("a@x.com", "other", is_register=True)

    def test_email_normalized_to_lowercase(self, auth: CredentialAuthenticator):
        user = auth.authenticate("Mixed.Case@Example.COM", "pw", is_register=True)
        assert user.email == "mixed.case@example.com"
        assert user.name == "mixed.case"

    def test_name_is_local_part_before_first_at(self, auth: CredentialAuthenticator):
        user = auth.authenticate('"odd@local"@example.com', "pw", is_register=True)
        assert user.name == '"odd'

    def test_registration_clears_failures(self, auth: CredentialAuthenticator, attempts):
        _fail(auth, "new@test.com", 3)
        assert "new@test.com" in attempts
        auth.authenticate("new@test.com", "pw", is_register=True)
        assert "new@test.com" not in attempts


class TestInvalidCredentials:
    """Test that unknown emails and wrong passwords are indistinguishable."""

    def test_unknown_email(self, auth: CredentialAuthenticator):
        with pytest.raises(InvalidCredentials):
            auth.authenticate("nobody@test.com", "pw", is_register=False)

    def test_wrong_password(self, auth: CredentialAuthenticator):
        auth.authenticate("u@test.com", "pw1", is_register=True)
        with pytest.raises(InvalidCredentials):
            auth.authenticate("u@test.com", "wrong", is_register=False)

    def test_same_kind_and_message(self, auth: CredentialAuthenticator):
        auth.authenticate("u@test.com", "pw1", is_register=True)
        with pytest.raises(InvalidCredentials) as unknown:
            auth.authenticate("nobody@test.com", "pw1", is_register=False)
        with pytest.raises(InvalidCredentials) as wrong:
            auth.authenticate("u@test.com", "wrong", is_register=False)

        assert unknown.value.kind == wrong.value.kind == RejectionKind.INVALID_CREDENTIALS
        assert unknown.value.message == wrong.value.message
        assert str(unknown.value) == str(wrong.value)

    def test_unknown_email_counts_as_failure(self, auth: CredentialAuthenticator, attempts):
        _fail(auth, "ghost@test.com", 2)
        record = attempts.get("ghost@test.com")
        assert record is not None
        assert record.failures == 2
        assert auth.accounts.get("ghost@test.com") is None


class TestMissingCredentials:
    """Test that incomplete requests are rejected without side effects."""

    @pytest.mark.parametrize(
        "email,password",
        [("", "pw"), ("u@test.com", ""), (None, "pw"), ("u@test.com", None), ("   ", "pw")],
    )
    def test_rejected(self, auth: CredentialAuthenticator, email, password):
        with pytest.raises(MissingCredentials):
            auth.authenticate(email, password, is_register=False)

    def test_does_not_touch_attempts(self, auth: CredentialAuthenticator, attempts):
        _fail(auth, "u@test.com", 2)
        before = attempts.get("u@test.com")
        with pytest.raises(MissingCredentials):
            auth.authenticate("u@test.com", "", is_register=False)
        assert attempts.get("u@test.com") == before

    def test_does_not_create_record(self, auth: CredentialAuthenticator, attempts):
        with pytest.raises(MissingCredentials):
            auth.authenticate("u@test.com", "", is_register=True)
        assert len(attempts) == 0
        assert auth.accounts.count() == 0

    def test_checked_before_lockout(self, auth: CredentialAuthenticator):
        _fail(auth, "u@test.com", 5)
        with pytest.raises(MissingCredentials):
            auth.authenticate("u@test.com", "", is_register=False)


class TestLockout:
    """Test lockout after repeated failures."""

    def test_not_locked_below_threshold(self, auth: CredentialAuthenticator):
        auth.authenticate("u@test.com", "pw1", is_register=True)
        _fail(auth, "u@test.com", 4)
        user = auth.authenticate("u@test.com", "pw1", is_register=False)
        assert user.email == "u@test.com"

    def test_locked_after_five_failures(self, auth: CredentialAuthenticator):
        auth.authenticate("u@test.com", "pw1", is_register=True)
        _fail(auth, "u@test.com", 5)
        with pytest.raises(TemporarilyLocked) as exc:
            auth.authenticate("u@test.com", "pw1", is_register=False)
        assert exc.value.kind == RejectionKind.TEMPORARILY_LOCKED
        assert 0 < exc.value.retry_after <= 301

    def test_lockout_applies_to_registration(self, auth: CredentialAuthenticator):
        _fail(auth, "ghost@test.com", 5)
        with pytest.raises(TemporarilyLocked):
            auth.authenticate("ghost@test.com", "pw", is_register=True)
        assert auth.accounts.get("ghost@test.com") is None

    def test_locked_until_window_elapses(self, auth: CredentialAuthenticator, clock: FakeClock):
        auth.authenticate("u@test.com", "pw1", is_register=True)
        _fail(auth, "u@test.com", 5)
        clock.advance(299)
        with pytest.raises(TemporarilyLocked):
            auth.authenticate("u@test.com", "pw1", is_register=False)
        clock.advance(1)
        # Expiry is strict: locked only while locked_until > now.
        user = auth.authenticate("u@test.com", "pw1", is_register=False)
        assert user.email == "u@test.com"

    def test_attempts_during_lockout_do_not_extend_it(
        self, auth: CredentialAuthenticator, attempts, clock: FakeClock
    ):
        _fail(auth, "u@test.com", 5)
        locked_until = attempts.get("u@test.com").locked_until
        for _ in range(3):
            clock.advance(60)
            with pytest.raises(TemporarilyLocked):
                auth.authenticate("u@test.com", "wrong", is_register=False)
        record = attempts.get("u@test.com")
        assert record.locked_until == locked_until
        assert record.failures == 5

    def test_failure_after_expiry_relocks_immediately(
        self, auth: CredentialAuthenticator, clock: FakeClock
    ):
        auth.authenticate("u@test.com", "pw1", is_register=True)
        _fail(auth, "u@test.com", 5)
        clock.advance(301)
        _fail(auth, "u@test.com", 1)
        with pytest.raises(TemporarilyLocked):
            auth.authenticate("u@test.com", "pw1", is_register=False)

    def test_relock_overwrites_expiry(self, auth: CredentialAuthenticator, attempts, clock):
        _fail(auth, "u@test.com", 5)
        clock.advance(301)
        _fail(auth, "u@test.com", 1)
        record = attempts.get("u@test.com")
        assert record.failures == 6
        assert record.locked_until == clock.now + 300


class TestSuccessResetsFailures:
    """Test that success clears the attempt record."""

    def test_login_clears_record(self, auth: CredentialAuthenticator, attempts):
        auth.authenticate("u@test.com", "pw1", is_register=True)
        _fail(auth, "u@test.com", 4)
        auth.authenticate("u@test.com", "pw1", is_register=False)
        assert "u@test.com" not in attempts

    def test_single_failure_after_success_does_not_lock(self, auth: CredentialAuthenticator):
        auth.authenticate("u@test.com", "pw1", is_register=True)
        _fail(auth, "u@test.com", 4)
        auth.authenticate("u@test.com", "pw1", is_register=False)
        _fail(auth, "u@test.com", 1)
        user = auth.authenticate("u@test.com", "pw1", is_register=False)
        assert user.email == "u@test.com"


class TestEmailIsolation:
    """Test that counts and lockouts are per email."""

    def test_lockout_does_not_leak(self, auth: CredentialAuthenticator):
        auth.authenticate("a@x.com", "pa", is_register=True)
        auth.authenticate("b@x.com", "pb", is_register=True)
        _fail(auth, "a@x.com", 5)
        with pytest.raises(TemporarilyLocked):
            auth.authenticate("a@x.com", "pa", is_register=False)
        assert auth.authenticate("b@x.com", "pb", is_register=False).email == "b@x.com"

    def test_counts_are_separate(self, auth: CredentialAuthenticator, attempts):
        _fail(auth, "a@x.com", 3)
        _fail(auth, "b@x.com", 1)
        assert attempts.get("a@x.com").failures == 3
        assert attempts.get("b@x.com").failures == 1

    def test_case_variants_share_a_record(self, auth: CredentialAuthenticator, attempts):
        _fail(auth, "A@x.com", 2)
        _fail(auth, "a@X.COM", 3)
        assert attempts.get("a@x.com").failures == 5


class TestScenario:
    """End-to-end walk through register, lockout and recovery."""

    def test_register_lock_wait_recover(self, auth: CredentialAuthenticator, attempts, clock):
        user = auth.authenticate("u@test.com", "pw1", is_register=True)
        assert user.name == "u"

        _fail(auth, "u@test.com", 5)
        with pytest.raises(TemporarilyLocked):
            auth.authenticate("u@test.com", "pw1", is_register=False)

        clock.advance(5 * 60 + 1)
        user = auth.authenticate("u@test.com", "pw1", is_register=False)
        assert user.email == "u@test.com"
        assert "u@test.com" not in attempts


class TestConcurrentAttempts:
    """Test that concurrent failures for one email are not lost."""

    def test_parallel_failures_counted_once_each(self, auth: CredentialAuthenticator, attempts):
        outcomes: list[str] = []

        def attempt() -> None:
            try:
                auth.authenticate("u@test.com", "wrong", is_register=False)
            except (InvalidCredentials, TemporarilyLocked) as exc:
                outcomes.append(exc.kind.value)

        with ThreadPoolExecutor(max_workers=8) as pool:
            for _ in range(12):
                pool.submit(attempt)

        assert outcomes.count("InvalidCredentials") == 5
        assert outcomes.count("TemporarilyLocked") == 7
        assert attempts.get("u@test.com").failures == 5


class TestNormalizeEmail:
    def test_strips_and_lowercases(self):
        assert normalize_email("  Foo@Bar.COM ") == "foo@bar.com"

    def test_none(self):
        assert normalize_email(None) == ""
