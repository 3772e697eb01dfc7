"""Administrator operations: credentials, key reveal, and purges."""

import logging
from dataclasses import dataclass, field
from uuid import UUID

from upload_bot.domain.errors import NotFoundError
from upload_bot.domain.sessions import PurgeResult, SessionPage, SessionRecord
from upload_bot.services.access import AdminCredentialRepository
from upload_bot.services.sessions import SessionService
from upload_bot.services.storage import StorageService
from upload_bot.services.uploads import sanitize_folder
from upload_bot.services.vault import CredentialVault, generate_master_key

logger = logging.getLogger(__name__)


@dataclass
class AdminService:
    """Service for administrator-only actions."""

    admin_repository: AdminCredentialRepository
    session_service: SessionService
    storage: StorageService
    vault: CredentialVault
    admin_user_ids: set[int] = field(default_factory=set)

    def is_admin(self, user_id: int) -> bool:
        """Return whether a Telegram user is a configured admin."""
        return user_id in self.admin_user_ids

    def seed_admins(self) -> dict[int, str]:
        """Create credentials for configured admins that have none.

        Returns the new plaintext master keys by user id. They are not
        logged; an admin reads their key with ``reveal_master_key``.
        """
        created: dict[int, str] = {}
        for user_id in sorted(self.admin_user_ids):
            if self.admin_repository.get_admin(user_id) is not None:
                continue
            master_key = generate_master_key()
            self.admin_repository.create_admin(user_id, self.vault.encrypt(master_key))
            created[user_id] = master_key
            logger.warning("Admin credential created", extra={"user_id": user_id})
        return created

    def reveal_access_key(self, session: SessionRecord) -> str:
        """Decrypt a session's access key for an administrator."""
        return self.vault.decrypt(session.encrypted_access_key)

    def reveal_master_key(self, user_id: int) -> str:
        """Decrypt an administrator's own master key."""
        admin = self.admin_repository.get_admin(user_id)
        if admin is None:
            raise NotFoundError("No master key is stored for this admin")
        master_key = self.vault.decrypt(admin.encrypted_master_key)
        logger.info("Master key revealed", extra={"user_id": user_id})
        return master_key

    def list_sessions(self, page: int = 1, size: int = 5) -> SessionPage:
        """Return a page of all sessions."""
        return self.session_service.list_paged(page, size)

    async def delete_session_and_files(self, session_db_id: UUID) -> PurgeResult:
        """Remove stored objects, then the session rows.

        The database delete proceeds even when the storage purge fails, so
        failures are logged at error level to surface orphaned objects.
        """
        session = self.session_service.get_by_id(session_db_id)
        if session is None:
            raise NotFoundError("Session not found")
        folder = sanitize_folder(session.storage_folder_path or session.session_id)

        storage_error: str | None = None
        deleted = 0
        remaining = 0
        try:
            deleted = await self.storage.delete_session_files(folder)
            remaining = len(await self.storage.list_session_files(folder, max_files=1))
        except Exception as exc:  # noqa: BLE001
            storage_error = str(exc) or type(exc).__name__
            logger.exception(
                "Storage purge failed; objects may be orphaned",
                extra={"session_id": session.session_id, "folder": folder},
            )
        if remaining:
            logger.error(
                "Storage objects remain after purge",
                extra={"session_id": session.session_id, "folder": folder},
            )

        self.session_service.delete(session_db_id)
        logger.info(
            "Session purged",
            extra={"session_id": session.session_id, "deleted_files": deleted},
        )
        return PurgeResult(
            session_id=session.session_id,
            deleted_files=deleted,
            remaining_files=remaining,
            storage_error=storage_error,
        )
