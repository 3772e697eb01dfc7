"""Domain models for file uploads."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from uuid import UUID


class UploadStatus(StrEnum):
    """Persisted status of an upload row."""

    PENDING = "PENDING"
    UPLOADING = "UPLOADING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    RETRYING = "RETRYING"


PENDING_STATUSES = frozenset(
    {UploadStatus.PENDING, UploadStatus.UPLOADING, UploadStatus.RETRYING}
)


class UploadPhase(StrEnum):
    """Phase reported to progress observers."""

    PENDING = "pending"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadRecord:
    """Represents a persisted upload attempt."""

    id: UUID
    session_id: UUID
    original_name: str
    file_reference: str
    upload_status: UploadStatus
    uploaded_by: int
    stored_path: str | None = None
    file_size_mb: float = 0.0
    storage_object_id: str | None = None
    storage_url: str | None = None
    error_message: str | None = None
    uploaded_at: datetime | None = None


@dataclass(frozen=True)
class UploadProgress:
    """Progress event emitted while an upload runs."""

    upload_id: UUID
    phase: UploadPhase
    percent: int
    message: str


@dataclass(frozen=True)
class ProcessUploadResult:
    """Outcome of a single upload run."""

    success: bool
    upload_id: UUID | None = None
    object_url: str | None = None
    stored_path: str | None = None
    size_mb: float | None = None
    error: str | None = None


@dataclass(frozen=True)
class BatchItem:
    """A file collected for a batch run."""

    file_reference: str
    file_name: str
    is_document: bool = False


@dataclass(frozen=True)
class BatchProgress:
    """Progress event emitted before each batch item."""

    index: int
    total: int
    completed: list[str]
    current: str
    pending: list[str]


@dataclass(frozen=True)
class BatchSummary:
    """Consolidated outcome of a batch run."""

    session_id: str
    description: str
    total: int
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    total_size_mb: float = 0.0

    @property
    def has_errors(self) -> bool:
        """Return true when at least one item failed."""
        return bool(self.failed)
