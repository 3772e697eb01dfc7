"""Domain models for access control."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from upload_bot.domain.sessions import SessionRecord


@dataclass(frozen=True)
class AccessLock:
    """Failed attempt counter for one user on one session."""

    id: UUID
    session_id: str
    user_id: int
    failed_attempts: int
    locked_until: datetime | None


@dataclass(frozen=True)
class AdminCredential:
    """Administrator with an encrypted master key."""

    user_id: int
    encrypted_master_key: str


@dataclass(frozen=True)
class AccessCheck:
    """Result of validating an access key."""

    valid: bool
    session: SessionRecord | None = None
    error: str | None = None


@dataclass(frozen=True)
class FailedAttemptResult:
    """Lock state after recording a failed attempt."""

    locked: bool
    remaining_attempts: int
    lockout_minutes: int | None = None


@dataclass(frozen=True)
class LockStatus:
    """Whether a user is currently locked out of a session."""

    locked: bool
    remaining_minutes: int | None = None
