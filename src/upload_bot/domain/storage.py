"""Domain models for object storage."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class B2Authorization:
    """Account authorization returned by the provider."""

    account_id: str
    authorization_token: str
    api_url: str
    download_url: str


@dataclass
class StorageAuthState:
    """Cached authorization and bucket id owned by one storage service."""

    authorization: B2Authorization | None = None
    valid_until: datetime | None = None
    bucket_id: str | None = None


@dataclass(frozen=True)
class UploadTarget:
    """One-time upload URL and its token."""

    upload_url: str
    authorization_token: str


@dataclass(frozen=True)
class StoredObject:
    """Object stored in the bucket."""

    file_id: str
    file_name: str
    content_length: int
    upload_timestamp: int | None = None
    content_type: str | None = None


@dataclass(frozen=True)
class FileListPage:
    """One page of a file-name listing."""

    files: list[StoredObject]
    next_file_name: str | None


@dataclass(frozen=True)
class StorageUploadResult:
    """Outcome of an upload to storage."""

    success: bool
    file_id: str | None = None
    file_name: str | None = None
    file_url: str | None = None
    content_length: int | None = None
    error: str | None = None
