"""Supabase-backed upload repository."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from supabase import Client

from upload_bot.domain.uploads import UploadRecord, UploadStatus
from upload_bot.services.uploads import UploadRepository

_UPLOAD_COLUMNS = (
    "id, session_id, original_name, file_reference, upload_status, uploaded_by, "
    "stored_path, file_size_mb, storage_object_id, storage_url, error_message, "
    "uploaded_at"
)


@dataclass
class SupabaseUploadRepository(UploadRepository):
    """Supabase implementation for upload rows."""

    client: Client

    def create_upload(
        self,
        session_db_id: UUID,
        original_name: str,
        file_reference: str,
        uploaded_by: int,
    ) -> UploadRecord:
        """Insert a PENDING upload row."""
        response = (
            self.client.table("uploads")
            .insert(
                {
                    "session_id": str(session_db_id),
                    "original_name": original_name,
                    "file_reference": file_reference,
                    "uploaded_by": uploaded_by,
                    "file_size_mb": 0,
                    "upload_status": UploadStatus.PENDING.value,
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create upload record")
        return _to_upload(response.data[0])

    def get_upload(self, upload_id: UUID) -> UploadRecord | None:
        """Return an upload row, if present."""
        response = (
            self.client.table("uploads")
            .select(_UPLOAD_COLUMNS)
            .eq("id", str(upload_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _to_upload(response.data[0])

    def update_status(
        self,
        upload_id: UUID,
        status: UploadStatus,
        error_message: str | None = None,
    ) -> None:
        """Set the status and error message."""
        self.client.table("uploads").update(
            {"upload_status": status.value, "error_message": error_message}
        ).eq("id", str(upload_id)).execute()

    def mark_completed(  # noqa: PLR0913
        self,
        upload_id: UUID,
        stored_path: str,
        file_size_mb: float,
        storage_object_id: str | None,
        storage_url: str | None,
        uploaded_at: datetime,
    ) -> None:
        """Record storage details for a completed upload."""
        self.client.table("uploads").update(
            {
                "upload_status": UploadStatus.COMPLETED.value,
                "stored_path": stored_path,
                "file_size_mb": file_size_mb,
                "storage_object_id": storage_object_id,
                "storage_url": storage_url,
                "error_message": None,
                "uploaded_at": uploaded_at.isoformat(),
            }
        ).eq("id", str(upload_id)).execute()

    def count_with_original_name(
        self, session_db_id: UUID, original_name: str, exclude_id: UUID
    ) -> int:
        """Count other uploads in the session with the same original name."""
        response = (
            self.client.table("uploads")
            .select("id", count="exact")
            .eq("session_id", str(session_db_id))
            .eq("original_name", original_name)
            .neq("id", str(exclude_id))
            .execute()
        )
        return response.count or 0

    def list_by_status(
        self, session_db_id: UUID, statuses: list[UploadStatus]
    ) -> list[UploadRecord]:
        """Return uploads of a session in the given statuses, oldest first."""
        response = (
            self.client.table("uploads")
            .select(_UPLOAD_COLUMNS)
            .eq("session_id", str(session_db_id))
            .in_("upload_status", [status.value for status in statuses])
            .order("created_at")
            .execute()
        )
        return [_to_upload(row) for row in response.data or []]


def _to_upload(row: dict) -> UploadRecord:
    uploaded_at = row.get("uploaded_at")
    return UploadRecord(
        id=UUID(row["id"]),
        session_id=UUID(row["session_id"]),
        original_name=row["original_name"],
        file_reference=row.get("file_reference") or "",
        upload_status=UploadStatus(row["upload_status"]),
        uploaded_by=int(row["uploaded_by"]),
        stored_path=row.get("stored_path"),
        file_size_mb=float(row.get("file_size_mb") or 0.0),
        storage_object_id=row.get("storage_object_id"),
        storage_url=row.get("storage_url"),
        error_message=row.get("error_message"),
        uploaded_at=datetime.fromisoformat(uploaded_at)
        if isinstance(uploaded_at, str) and uploaded_at
        else None,
    )
