"""Upload orchestration from Telegram to object storage."""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID

from upload_bot.adapters.telegram_file_client import TelegramFileClient
from upload_bot.domain.errors import TerminalUploadError, ValidationError
from upload_bot.domain.sessions import SessionRecord
from upload_bot.domain.uploads import (
    PENDING_STATUSES,
    ProcessUploadResult,
    UploadPhase,
    UploadProgress,
    UploadRecord,
    UploadStatus,
)
from upload_bot.services.progress import ProgressObserver, emit
from upload_bot.services.sessions import SessionService
from upload_bot.services.storage import StorageService

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png"})
MAX_FILE_SIZE_BYTES = 20 * 1024 * 1024
_BYTES_PER_MB = 1024 * 1024
_DOWNLOAD_SHARE = 30
_UPLOAD_SHARE = 60

UploadObserver = ProgressObserver[UploadProgress]


class UploadRepository(Protocol):
    """Persistence interface for upload rows."""

    def create_upload(
        self,
        session_db_id: UUID,
        original_name: str,
        file_reference: str,
        uploaded_by: int,
    ) -> UploadRecord:
        """Insert a PENDING upload row and return it."""

    def get_upload(self, upload_id: UUID) -> UploadRecord | None:
        """Return an upload row, if present."""

    def update_status(
        self,
        upload_id: UUID,
        status: UploadStatus,
        error_message: str | None = None,
    ) -> None:
        """Set the status (and error message) of an upload row."""

    def mark_completed(  # noqa: PLR0913
        self,
        upload_id: UUID,
        stored_path: str,
        file_size_mb: float,
        storage_object_id: str | None,
        storage_url: str | None,
        uploaded_at: datetime,
    ) -> None:
        """Record a successful upload."""

    def count_with_original_name(
        self, session_db_id: UUID, original_name: str, exclude_id: UUID
    ) -> int:
        """Count other uploads in a session that used the same name."""

    def list_by_status(
        self, session_db_id: UUID, statuses: list[UploadStatus]
    ) -> list[UploadRecord]:
        """Return uploads of a session in any of the given statuses."""


@dataclass
class UploadService:
    """Per-file upload pipeline with consistent status bookkeeping."""

    repository: UploadRepository
    file_client: TelegramFileClient
    storage: StorageService
    session_service: SessionService
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(tz=UTC))

    async def process_upload(  # noqa: PLR0913
        self,
        session: SessionRecord,
        file_reference: str,
        original_name: str,
        user_id: int,
        on_progress: UploadObserver | None = None,
    ) -> ProcessUploadResult:
        """Move one Telegram file into storage; never raises."""
        try:
            upload = self.repository.create_upload(
                session_db_id=session.id,
                original_name=original_name,
                file_reference=file_reference,
                uploaded_by=user_id,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "Failed to create upload record",
                extra={"session_id": session.session_id},
            )
            return ProcessUploadResult(success=False, error=str(exc))
        return await self._run(session, upload, on_progress)

    def mark_for_retry(self, upload_id: UUID) -> None:
        """Reset a FAILED upload so it can run again."""
        upload = self.repository.get_upload(upload_id)
        if upload is None or upload.upload_status != UploadStatus.FAILED:
            raise ValidationError("Only failed uploads can be retried")
        self.repository.update_status(upload_id, UploadStatus.RETRYING)

    async def retry_failed_uploads(
        self,
        session: SessionRecord,
        on_progress: UploadObserver | None = None,
    ) -> list[ProcessUploadResult]:
        """Re-run every FAILED upload of a session on its existing row."""
        results = []
        for upload in self.get_failed_uploads(session.id):
            self.mark_for_retry(upload.id)
            retrying = self.repository.get_upload(upload.id) or upload
            results.append(await self._run(session, retrying, on_progress))
        return results

    def get_failed_uploads(self, session_db_id: UUID) -> list[UploadRecord]:
        """Return FAILED uploads of a session."""
        return self.repository.list_by_status(session_db_id, [UploadStatus.FAILED])

    def get_pending_count(self, session_db_id: UUID) -> int:
        """Return how many uploads are pending, uploading, or retrying."""
        return len(
            self.repository.list_by_status(session_db_id, sorted(PENDING_STATUSES))
        )

    async def _run(
        self,
        session: SessionRecord,
        upload: UploadRecord,
        on_progress: UploadObserver | None,
    ) -> ProcessUploadResult:
        upload_id = upload.id

        async def report(phase: UploadPhase, percent: int, message: str) -> None:
            await emit(
                on_progress,
                UploadProgress(
                    upload_id=upload_id, phase=phase, percent=percent, message=message
                ),
            )

        try:
            await report(UploadPhase.DOWNLOADING, 0, "Downloading from Telegram...")
            self.repository.update_status(upload_id, UploadStatus.UPLOADING)
            downloaded = await self.file_client.download_file(upload.file_reference)
            validate_file(downloaded.content, downloaded.mime_type)
            size_mb = downloaded.file_size / _BYTES_PER_MB

            await report(
                UploadPhase.UPLOADING, _DOWNLOAD_SHARE, "Uploading to cloud..."
            )
            sequence = (
                self.repository.count_with_original_name(
                    session.id, upload.original_name, exclude_id=upload_id
                )
                + 1
            )
            path = build_session_file_path(
                session.storage_folder_path or session.session_id,
                upload.original_name,
                sequence,
            )

            async def storage_progress(percent: int) -> None:
                await report(
                    UploadPhase.UPLOADING,
                    _DOWNLOAD_SHARE + round(percent * _UPLOAD_SHARE / 100),
                    f"Uploading: {percent}%",
                )

            result = await self.storage.upload_file(
                downloaded.content, path, downloaded.mime_type, storage_progress
            )
            if not result.success:
                raise TerminalUploadError(result.error or "Upload to storage failed")

            self.repository.mark_completed(
                upload_id,
                stored_path=path,
                file_size_mb=size_mb,
                storage_object_id=result.file_id,
                storage_url=result.file_url,
                uploaded_at=self.clock(),
            )
            self.session_service.record_upload_outcome(session.id, 1, size_mb)
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or type(exc).__name__
            self._mark_failed(upload_id, message)
            await report(UploadPhase.FAILED, 0, f"Upload failed: {message}")
            logger.exception(
                "Upload failed",
                extra={
                    "original_name": upload.original_name,
                    "upload_id": str(upload_id),
                },
            )
            return ProcessUploadResult(
                success=False, upload_id=upload_id, error=message
            )

        await report(UploadPhase.COMPLETED, 100, "Upload complete!")
        logger.info(
            "Upload completed",
            extra={"stored_path": path, "size_mb": round(size_mb, 2)},
        )
        return ProcessUploadResult(
            success=True,
            upload_id=upload_id,
            object_url=result.file_url,
            stored_path=path,
            size_mb=size_mb,
        )

    def _mark_failed(self, upload_id: UUID, message: str) -> None:
        try:
            self.repository.update_status(upload_id, UploadStatus.FAILED, message)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to record upload failure", extra={"upload_id": str(upload_id)}
            )


def validate_file(data: bytes, mime_type: str) -> None:
    """Reject files that are not JPEG/PNG or exceed 20 MB."""
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationError("Unsupported file type. Use JPG, JPEG, or PNG")
    if len(data) > MAX_FILE_SIZE_BYTES:
        raise ValidationError(
            f"File too large. Maximum size is {MAX_FILE_SIZE_BYTES // _BYTES_PER_MB} MB"
        )


def sanitize_folder(folder: str) -> str:
    """Replace characters unsafe for object names in a folder."""
    return re.sub(r"[^a-zA-Z0-9\-_]", "_", folder)


def build_session_file_path(
    folder: str, original_name: str, sequence: int | None = None
) -> str:
    """Build ``folder/name``, suffixing ``_<n>`` for repeated names."""
    safe_folder = sanitize_folder(folder)
    safe_name = re.sub(r"[^a-zA-Z0-9\-_.]", "_", original_name)
    if sequence is not None and sequence > 1:
        base, dot, extension = safe_name.rpartition(".")
        if not dot:
            base, extension = safe_name, "jpg"
        return f"{safe_folder}/{base}_{sequence}.{extension}"
    return f"{safe_folder}/{safe_name}"
