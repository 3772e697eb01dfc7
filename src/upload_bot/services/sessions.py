"""Session registry: identifiers, lifecycle, and aggregates."""

import logging
import math
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID
from zoneinfo import ZoneInfo

from upload_bot.domain.errors import SessionIdConflictError, ValidationError
from upload_bot.domain.sessions import (
    CreatedSession,
    SessionIdentity,
    SessionPage,
    SessionRecord,
    SessionStats,
    SessionStatus,
)
from upload_bot.domain.uploads import PENDING_STATUSES, UploadStatus
from upload_bot.services.vault import CredentialVault, generate_access_key

logger = logging.getLogger(__name__)

_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9]{2,3}$")
_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9]{2,3}-\d{4}-\d{2}$")
_MAX_DESCRIPTION_LENGTH = 100
_MAX_ALLOCATION_ATTEMPTS = 3


class SessionRepository(Protocol):
    """Persistence interface for sessions."""

    def count_for_date(self, prefix: str, date_code: str) -> int:
        """Return how many sessions exist for a prefix and date code."""

    def create_session(  # noqa: PLR0913
        self,
        identity: SessionIdentity,
        description: str,
        encrypted_access_key: str,
        storage_folder_path: str,
        created_by: int,
        status: SessionStatus,
    ) -> SessionRecord:
        """Insert a session; raise SessionIdConflictError on a duplicate id."""

    def get_by_session_id(self, session_id: str) -> SessionRecord | None:
        """Return a session by its external id, if present."""

    def get_by_id(self, id: UUID) -> SessionRecord | None:  # noqa: A002
        """Return a session by its database id, if present."""

    def list_by_status(self, status: SessionStatus) -> list[SessionRecord]:
        """Return sessions with a status, newest first."""

    def list_page(self, offset: int, limit: int) -> list[SessionRecord]:
        """Return a slice of all sessions, newest first."""

    def count_all(self) -> int:
        """Return the total number of sessions."""

    def update_status(
        self,
        id: UUID,  # noqa: A002
        status: SessionStatus,
    ) -> SessionRecord | None:
        """Set the session status and return the updated row."""

    def increment_stats(
        self,
        id: UUID,  # noqa: A002
        delta_files: int,
        delta_size_mb: float,
    ) -> None:
        """Atomically add to the session aggregates."""

    def delete_session(self, id: UUID) -> None:  # noqa: A002
        """Delete a session; uploads are removed by cascade."""

    def list_upload_statuses(self, session_db_id: UUID) -> list[UploadStatus]:
        """Return the status of every upload in a session."""

    def count_uploads(self, session_db_ids: list[UUID]) -> dict[UUID, int]:
        """Return upload counts keyed by session id."""


@dataclass
class SessionService:
    """Owns session identity allocation and aggregate bookkeeping."""

    repository: SessionRepository
    vault: CredentialVault
    timezone: str = "UTC"
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(tz=UTC))

    def allocate_session_id(self, prefix: str, offset: int = 0) -> SessionIdentity:
        """Compute the next ``PREFIX-MMDD-NN`` identifier.

        The sequence is derived from a count of existing rows, so two
        concurrent callers may compute the same value and a deleted session
        leaves a gap below the highest number in use. ``create_session``
        relies on the unique constraint in storage to detect a collision and
        passes a growing ``offset`` to move past the taken number.
        """
        normalized = prefix.upper()
        date_code = self._date_code()
        count = self.repository.count_for_date(normalized, date_code)
        sequence_number = f"{count + 1 + offset:02d}"
        return SessionIdentity(
            session_id=f"{normalized}-{date_code}-{sequence_number}",
            prefix=normalized,
            date_code=date_code,
            sequence_number=sequence_number,
        )

    def create_session(
        self, creator: int, prefix: str, description: str
    ) -> CreatedSession:
        """Create an ACTIVE session and return it with its plaintext key."""
        normalized_prefix = validate_prefix(prefix)
        cleaned_description = validate_description(description)
        access_key = generate_access_key()
        encrypted_key = self.vault.encrypt(access_key)

        for attempt in range(1, _MAX_ALLOCATION_ATTEMPTS + 1):
            identity = self.allocate_session_id(normalized_prefix, offset=attempt - 1)
            try:
                session = self.repository.create_session(
                    identity=identity,
                    description=cleaned_description,
                    encrypted_access_key=encrypted_key,
                    storage_folder_path=build_folder_path(
                        identity.session_id, cleaned_description
                    ),
                    created_by=creator,
                    status=SessionStatus.ACTIVE,
                )
            except SessionIdConflictError:
                logger.warning(
                    "Session id collision, reallocating",
                    extra={"session_id": identity.session_id, "attempt": attempt},
                )
                continue
            logger.info(
                "Session created",
                extra={"session_id": session.session_id, "created_by": creator},
            )
            return CreatedSession(session=session, access_key=access_key)
        raise SessionIdConflictError(
            f"Could not allocate a unique session id for prefix {normalized_prefix}"
        )

    def get_by_external_id(self, session_id: str) -> SessionRecord | None:
        """Return a session by its ``PREFIX-MMDD-NN`` id."""
        return self.repository.get_by_session_id(session_id.strip().upper())

    def get_by_id(self, id: UUID) -> SessionRecord | None:  # noqa: A002
        """Return a session by database id."""
        return self.repository.get_by_id(id)

    def list_active(self) -> list[SessionRecord]:
        """Return ACTIVE sessions, newest first."""
        return self.repository.list_by_status(SessionStatus.ACTIVE)

    def list_paged(self, page: int = 1, size: int = 5) -> SessionPage:
        """Return one page of all sessions with their upload counts."""
        page = max(page, 1)
        size = max(size, 1)
        sessions = self.repository.list_page(offset=(page - 1) * size, limit=size)
        total = self.repository.count_all()
        return SessionPage(
            sessions=sessions,
            upload_counts=self.repository.count_uploads([s.id for s in sessions]),
            total=total,
            pages=math.ceil(total / size),
            current_page=page,
        )

    def close(self, id: UUID) -> SessionRecord | None:  # noqa: A002
        """Mark a session CLOSED."""
        return self._transition(id, SessionStatus.CLOSED)

    def archive(self, id: UUID) -> SessionRecord | None:  # noqa: A002
        """Mark a session ARCHIVED."""
        return self._transition(id, SessionStatus.ARCHIVED)

    def delete(self, id: UUID) -> None:  # noqa: A002
        """Delete a session and its uploads.

        Storage objects are not touched here; callers purge them first.
        """
        self.repository.delete_session(id)
        logger.info("Session deleted", extra={"session_db_id": str(id)})

    def record_upload_outcome(
        self,
        id: UUID,  # noqa: A002
        delta_files: int,
        delta_size_mb: float,
    ) -> None:
        """Add an upload's contribution to the session aggregates."""
        self.repository.increment_stats(id, delta_files, delta_size_mb)

    def get_stats(self, id: UUID) -> SessionStats | None:  # noqa: A002
        """Return aggregates plus counts recomputed from upload rows."""
        session = self.repository.get_by_id(id)
        if session is None:
            return None
        statuses = self.repository.list_upload_statuses(id)
        return SessionStats(
            total_files=session.total_files,
            total_size_mb=session.total_size_mb,
            success_count=sum(1 for s in statuses if s == UploadStatus.COMPLETED),
            failed_count=sum(1 for s in statuses if s == UploadStatus.FAILED),
            pending_count=sum(1 for s in statuses if s in PENDING_STATUSES),
        )

    def _transition(
        self,
        id: UUID,  # noqa: A002
        status: SessionStatus,
    ) -> SessionRecord | None:
        session = self.repository.update_status(id, status)
        if session is not None:
            logger.info(
                "Session status changed",
                extra={"session_id": session.session_id, "status": status.value},
            )
        return session

    def _date_code(self) -> str:
        now = self.clock().astimezone(ZoneInfo(self.timezone))
        return now.strftime("%m%d")


def validate_prefix(prefix: str) -> str:
    """Validate a 2-3 character alphanumeric prefix and upper-case it."""
    cleaned = prefix.strip()
    if not _PREFIX_PATTERN.match(cleaned):
        raise ValidationError("Prefix must be 2-3 letters or digits")
    return cleaned.upper()


def validate_description(description: str) -> str:
    """Validate and trim a session description."""
    cleaned = description.strip()
    if not cleaned:
        raise ValidationError("Description must not be empty")
    if len(cleaned) > _MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Description must be at most {_MAX_DESCRIPTION_LENGTH} characters"
        )
    return cleaned


def parse_session_id(text: str) -> str:
    """Validate a ``PREFIX-MMDD-NN`` id and return it upper-cased."""
    cleaned = text.strip()
    if not _SESSION_ID_PATTERN.match(cleaned):
        raise ValidationError(
            "Invalid session id. Use PREFIX-MMDD-NN, for example DCM-0914-02"
        )
    return cleaned.upper()


def build_folder_path(session_id: str, description: str) -> str:
    """Derive the storage folder name for a session."""
    slug = re.sub(r"\s+", "-", description.strip())
    return f"{session_id}-{slug}"
