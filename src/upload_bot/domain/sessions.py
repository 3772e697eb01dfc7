"""Domain models for upload sessions."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from uuid import UUID


class SessionStatus(StrEnum):
    """Lifecycle status of a session."""

    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"
    ARCHIVED = "ARCHIVED"


@dataclass(frozen=True)
class SessionIdentity:
    """Allocated external identifier and its parts."""

    session_id: str
    prefix: str
    date_code: str
    sequence_number: str


@dataclass(frozen=True)
class SessionRecord:
    """Represents a persisted upload session."""

    id: UUID
    session_id: str
    prefix: str
    date_code: str
    sequence_number: str
    description: str
    encrypted_access_key: str
    status: SessionStatus
    total_files: int
    total_size_mb: float
    storage_folder_path: str
    created_by: int
    created_at: datetime


@dataclass(frozen=True)
class CreatedSession:
    """A new session together with its plaintext access key."""

    session: SessionRecord
    access_key: str


@dataclass(frozen=True)
class SessionStats:
    """Aggregates and per-status counts for a session."""

    total_files: int
    total_size_mb: float
    success_count: int
    failed_count: int
    pending_count: int


@dataclass(frozen=True)
class SessionPage:
    """One page of sessions for admin listings."""

    sessions: list[SessionRecord]
    upload_counts: dict[UUID, int]
    total: int
    pages: int
    current_page: int


@dataclass(frozen=True)
class PurgeResult:
    """Outcome of deleting a session with its stored objects."""

    session_id: str
    deleted_files: int
    remaining_files: int
    storage_error: str | None = None
