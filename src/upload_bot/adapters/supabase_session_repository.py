"""Supabase-backed session repository."""

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from postgrest.exceptions import APIError
from supabase import Client

from upload_bot.domain.errors import SessionIdConflictError
from upload_bot.domain.sessions import SessionIdentity, SessionRecord, SessionStatus
from upload_bot.domain.uploads import UploadStatus
from upload_bot.services.sessions import SessionRepository

_UNIQUE_VIOLATION = "23505"
_SESSION_COLUMNS = (
    "id, session_id, prefix, date_code, sequence_number, description, access_key, "
    "status, total_files, total_size_mb, storage_folder_path, created_by, created_at"
)


@dataclass
class SupabaseSessionRepository(SessionRepository):
    """Supabase implementation for upload sessions."""

    client: Client

    def count_for_date(self, prefix: str, date_code: str) -> int:
        """Count sessions sharing a prefix and date code."""
        response = (
            self.client.table("sessions")
            .select("id", count="exact")
            .eq("prefix", prefix)
            .eq("date_code", date_code)
            .execute()
        )
        return response.count or 0

    def create_session(  # noqa: PLR0913
        self,
        identity: SessionIdentity,
        description: str,
        encrypted_access_key: str,
        storage_folder_path: str,
        created_by: int,
        status: SessionStatus,
    ) -> SessionRecord:
        """Insert a session row and return it."""
        try:
            response = (
                self.client.table("sessions")
                .insert(
                    {
                        "session_id": identity.session_id,
                        "prefix": identity.prefix,
                        "date_code": identity.date_code,
                        "sequence_number": identity.sequence_number,
                        "description": description,
                        "access_key": encrypted_access_key,
                        "storage_folder_path": storage_folder_path,
                        "created_by": created_by,
                        "status": status.value,
                    }
                )
                .execute()
            )
        except APIError as exc:
            if exc.code == _UNIQUE_VIOLATION:
                raise SessionIdConflictError(identity.session_id) from exc
            raise
        if not response.data:
            raise RuntimeError("Failed to create session")
        return _to_session(response.data[0])

    def get_by_session_id(self, session_id: str) -> SessionRecord | None:
        """Return a session by external id, if present."""
        response = (
            self.client.table("sessions")
            .select(_SESSION_COLUMNS)
            .eq("session_id", session_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _to_session(response.data[0])

    def get_by_id(self, id: UUID) -> SessionRecord | None:  # noqa: A002
        """Return a session by database id, if present."""
        response = (
            self.client.table("sessions")
            .select(_SESSION_COLUMNS)
            .eq("id", str(id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _to_session(response.data[0])

    def list_by_status(self, status: SessionStatus) -> list[SessionRecord]:
        """Return sessions with a status, newest first."""
        response = (
            self.client.table("sessions")
            .select(_SESSION_COLUMNS)
            .eq("status", status.value)
            .order("created_at", desc=True)
            .execute()
        )
        return [_to_session(row) for row in response.data or []]

    def list_page(self, offset: int, limit: int) -> list[SessionRecord]:
        """Return a slice of sessions, newest first."""
        response = (
            self.client.table("sessions")
            .select(_SESSION_COLUMNS)
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        return [_to_session(row) for row in response.data or []]

    def count_all(self) -> int:
        """Return the total number of sessions."""
        response = self.client.table("sessions").select("id", count="exact").execute()
        return response.count or 0

    def update_status(
        self,
        id: UUID,  # noqa: A002
        status: SessionStatus,
    ) -> SessionRecord | None:
        """Set a session's status and return the updated row."""
        response = (
            self.client.table("sessions")
            .update({"status": status.value})
            .eq("id", str(id))
            .execute()
        )
        if not response.data:
            return None
        return _to_session(response.data[0])

    def increment_stats(
        self,
        id: UUID,  # noqa: A002
        delta_files: int,
        delta_size_mb: float,
    ) -> None:
        """Increment aggregates in one statement via a SQL function."""
        self.client.rpc(
            "increment_session_stats",
            {
                "p_session_id": str(id),
                "p_files": delta_files,
                "p_size_mb": delta_size_mb,
            },
        ).execute()

    def delete_session(self, id: UUID) -> None:  # noqa: A002
        """Delete a session row; uploads cascade."""
        self.client.table("sessions").delete().eq("id", str(id)).execute()

    def list_upload_statuses(self, session_db_id: UUID) -> list[UploadStatus]:
        """Return every upload status of a session."""
        response = (
            self.client.table("uploads")
            .select("upload_status")
            .eq("session_id", str(session_db_id))
            .execute()
        )
        return [UploadStatus(row["upload_status"]) for row in response.data or []]

    def count_uploads(self, session_db_ids: list[UUID]) -> dict[UUID, int]:
        """Return upload counts for several sessions."""
        if not session_db_ids:
            return {}
        response = (
            self.client.table("uploads")
            .select("session_id")
            .in_("session_id", [str(session_id) for session_id in session_db_ids])
            .execute()
        )
        counts = Counter(UUID(row["session_id"]) for row in response.data or [])
        return {session_id: counts.get(session_id, 0) for session_id in session_db_ids}


def _to_session(row: dict) -> SessionRecord:
    return SessionRecord(
        id=UUID(row["id"]),
        session_id=row["session_id"],
        prefix=row["prefix"],
        date_code=row["date_code"],
        sequence_number=row["sequence_number"],
        description=row["description"],
        encrypted_access_key=row["access_key"],
        status=SessionStatus(row["status"]),
        total_files=int(row.get("total_files") or 0),
        total_size_mb=float(row.get("total_size_mb") or 0.0),
        storage_folder_path=row.get("storage_folder_path") or row["session_id"],
        created_by=int(row["created_by"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )
