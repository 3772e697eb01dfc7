"""Supabase-backed access lock and admin credential repositories."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from supabase import Client

from upload_bot.domain.access import AccessLock, AdminCredential
from upload_bot.services.access import AccessLockRepository, AdminCredentialRepository


@dataclass
class SupabaseAccessLockRepository(AccessLockRepository):
    """Supabase implementation for failed-attempt counters."""

    client: Client

    def get_lock(self, session_id: str, user_id: int) -> AccessLock | None:
        """Return the lock row for a session and user, if present."""
        response = (
            self.client.table("access_locks")
            .select("id, session_id, user_id, failed_attempts, locked_until")
            .eq("session_id", session_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _to_lock(response.data[0])

    def create_lock(self, session_id: str, user_id: int) -> AccessLock:
        """Create a lock row with one failed attempt."""
        response = (
            self.client.table("access_locks")
            .insert(
                {"session_id": session_id, "user_id": user_id, "failed_attempts": 1}
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create access lock")
        return _to_lock(response.data[0])

    def update_lock(
        self,
        session_id: str,
        user_id: int,
        failed_attempts: int,
        locked_until: datetime | None,
    ) -> None:
        """Overwrite the attempt counter and lock expiry."""
        self.client.table("access_locks").update(
            {
                "failed_attempts": failed_attempts,
                "locked_until": locked_until.isoformat() if locked_until else None,
            }
        ).eq("session_id", session_id).eq("user_id", user_id).execute()

    def delete_lock(self, session_id: str, user_id: int) -> None:
        """Delete the lock row for a session and user."""
        self.client.table("access_locks").delete().eq("session_id", session_id).eq(
            "user_id", user_id
        ).execute()


@dataclass
class SupabaseAdminCredentialRepository(AdminCredentialRepository):
    """Supabase implementation for admin master keys."""

    client: Client

    def get_admin(self, user_id: int) -> AdminCredential | None:
        """Return an admin credential, if present."""
        response = (
            self.client.table("admin_credentials")
            .select("user_id, master_key")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        row = response.data[0]
        return AdminCredential(
            user_id=int(row["user_id"]), encrypted_master_key=row["master_key"]
        )

    def create_admin(self, user_id: int, encrypted_master_key: str) -> AdminCredential:
        """Insert an admin credential."""
        response = (
            self.client.table("admin_credentials")
            .insert({"user_id": user_id, "master_key": encrypted_master_key})
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create admin credential")
        row = response.data[0]
        return AdminCredential(
            user_id=int(row["user_id"]), encrypted_master_key=row["master_key"]
        )


def _to_lock(row: dict) -> AccessLock:
    locked_until = row.get("locked_until")
    return AccessLock(
        id=UUID(row["id"]),
        session_id=row["session_id"],
        user_id=int(row["user_id"]),
        failed_attempts=int(row.get("failed_attempts") or 0),
        locked_until=datetime.fromisoformat(locked_until)
        if isinstance(locked_until, str) and locked_until
        else None,
    )
