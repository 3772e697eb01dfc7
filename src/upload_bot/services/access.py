"""Access key verification and brute-force lockout."""

import logging
import math
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol

from upload_bot.domain.access import (
    AccessCheck,
    AccessLock,
    AdminCredential,
    FailedAttemptResult,
    LockStatus,
)
from upload_bot.domain.errors import AuthError, IntegrityError, ValidationError
from upload_bot.domain.sessions import SessionStatus
from upload_bot.services.sessions import SessionService
from upload_bot.services.vault import CredentialVault, secure_compare

logger = logging.getLogger(__name__)

MAX_FAILED_ATTEMPTS = 3
LOCKOUT_DURATION = timedelta(minutes=15)
_ACCESS_KEY_PATTERN = re.compile(r"^[A-Za-z0-9]{3}:[A-Za-z0-9]{3}:[A-Za-z0-9]{3}$")


class AccessLockRepository(Protocol):
    """Persistence interface for failed-attempt counters."""

    def get_lock(self, session_id: str, user_id: int) -> AccessLock | None:
        """Return the lock row for a session and user, if present."""

    def create_lock(self, session_id: str, user_id: int) -> AccessLock:
        """Create a lock row with one failed attempt."""

    def update_lock(
        self,
        session_id: str,
        user_id: int,
        failed_attempts: int,
        locked_until: datetime | None,
    ) -> None:
        """Overwrite the attempt counter and lock expiry."""

    def delete_lock(self, session_id: str, user_id: int) -> None:
        """Remove the lock row for a session and user."""


class AdminCredentialRepository(Protocol):
    """Persistence interface for administrator master keys."""

    def get_admin(self, user_id: int) -> AdminCredential | None:
        """Return an admin credential, if present."""

    def create_admin(self, user_id: int, encrypted_master_key: str) -> AdminCredential:
        """Store a new admin credential."""


@dataclass
class AccessGuard:
    """Guards sessions behind encrypted keys with timed lockout."""

    session_service: SessionService
    lock_repository: AccessLockRepository
    admin_repository: AdminCredentialRepository
    vault: CredentialVault
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(tz=UTC))

    def validate_access_key(self, session_id: str, candidate_key: str) -> AccessCheck:
        """Check a candidate key against a session's stored key."""
        session = self.session_service.get_by_external_id(session_id)
        if session is None:
            return AccessCheck(valid=False, error="Session not found")
        if session.status != SessionStatus.ACTIVE:
            return AccessCheck(valid=False, error="Session is no longer active")
        try:
            stored_key = self.vault.decrypt(session.encrypted_access_key)
        except IntegrityError:
            logger.exception(
                "Stored access key could not be decrypted",
                extra={"session_id": session.session_id},
            )
            return AccessCheck(valid=False, error="Session key is unreadable")
        if secure_compare(candidate_key.strip().upper(), stored_key):
            return AccessCheck(valid=True, session=session)
        return AccessCheck(valid=False, error="Wrong access key")

    def validate_master_key(self, user_id: int, candidate_key: str) -> bool:
        """Check a candidate against an administrator's master key."""
        admin = self.admin_repository.get_admin(user_id)
        if admin is None:
            return False
        try:
            stored_key = self.vault.decrypt(admin.encrypted_master_key)
        except IntegrityError:
            logger.exception(
                "Stored master key could not be decrypted",
                extra={"user_id": user_id},
            )
            return False
        return secure_compare(candidate_key.strip(), stored_key)

    def track_failed_attempt(
        self, session_id: str, user_id: int
    ) -> FailedAttemptResult:
        """Record a failed attempt and lock the user out on the third.

        Read-then-write, so concurrent failures for the same user may be
        undercounted.
        """
        now = self.clock()
        lock = self.lock_repository.get_lock(session_id, user_id)
        if lock is None:
            self.lock_repository.create_lock(session_id, user_id)
            return FailedAttemptResult(
                locked=False, remaining_attempts=MAX_FAILED_ATTEMPTS - 1
            )

        if lock.locked_until is not None and lock.locked_until > now:
            return FailedAttemptResult(
                locked=True,
                remaining_attempts=0,
                lockout_minutes=_ceil_minutes(lock.locked_until - now),
            )

        if lock.locked_until is not None:
            self.lock_repository.update_lock(
                session_id, user_id, failed_attempts=1, locked_until=None
            )
            return FailedAttemptResult(
                locked=False, remaining_attempts=MAX_FAILED_ATTEMPTS - 1
            )

        attempts = lock.failed_attempts + 1
        if attempts >= MAX_FAILED_ATTEMPTS:
            self.lock_repository.update_lock(
                session_id,
                user_id,
                failed_attempts=attempts,
                locked_until=now + LOCKOUT_DURATION,
            )
            logger.warning(
                "User locked out of session",
                extra={"session_id": session_id, "user_id": user_id},
            )
            return FailedAttemptResult(
                locked=True,
                remaining_attempts=0,
                lockout_minutes=_ceil_minutes(LOCKOUT_DURATION),
            )

        self.lock_repository.update_lock(
            session_id, user_id, failed_attempts=attempts, locked_until=None
        )
        return FailedAttemptResult(
            locked=False, remaining_attempts=MAX_FAILED_ATTEMPTS - attempts
        )

    def is_locked(self, session_id: str, user_id: int) -> LockStatus:
        """Return whether the user is locked out of a session."""
        lock = self.lock_repository.get_lock(session_id, user_id)
        if lock is None or lock.locked_until is None:
            return LockStatus(locked=False)
        now = self.clock()
        if lock.locked_until > now:
            return LockStatus(
                locked=True, remaining_minutes=_ceil_minutes(lock.locked_until - now)
            )
        return LockStatus(locked=False)

    def clear_failed_attempts(self, session_id: str, user_id: int) -> None:
        """Forget failed attempts after a successful login."""
        self.lock_repository.delete_lock(session_id, user_id)

    def authenticate(
        self,
        session_id: str,
        user_id: int,
        candidate_key: str,
        is_admin: bool = False,
    ) -> AccessCheck:
        """Run the full key check used when a user joins a session.

        Raises AuthError when the user is locked out and ValidationError when
        the key is malformed. A wrong key is recorded and returned as invalid.
        """
        if is_admin and self.validate_master_key(user_id, candidate_key):
            session = self.session_service.get_by_external_id(session_id)
            if session is None:
                return AccessCheck(valid=False, error="Session not found")
            logger.info(
                "Admin opened session with master key",
                extra={"session_id": session.session_id, "user_id": user_id},
            )
            return AccessCheck(valid=True, session=session)

        status = self.is_locked(session_id, user_id)
        if status.locked:
            raise AuthError(
                f"Locked out for {status.remaining_minutes} more minute(s)"
            )

        validate_access_key_format(candidate_key)
        result = self.validate_access_key(session_id, candidate_key)
        if result.valid:
            self.clear_failed_attempts(session_id, user_id)
            return result

        attempt = self.track_failed_attempt(session_id, user_id)
        if attempt.locked:
            raise AuthError(
                "Too many failed attempts. "
                f"Locked out for {attempt.lockout_minutes} minute(s)"
            )
        return AccessCheck(
            valid=False,
            error=f"{result.error}. Attempts left: {attempt.remaining_attempts}",
        )


def validate_access_key_format(candidate_key: str) -> str:
    """Validate the ``ABC:DEF:GHI`` key format."""
    cleaned = candidate_key.strip()
    if not _ACCESS_KEY_PATTERN.match(cleaned):
        raise ValidationError("Invalid access key format. Use ABC:DEF:GHI")
    return cleaned


def _ceil_minutes(delta: timedelta) -> int:
    return math.ceil(delta.total_seconds() / 60)
