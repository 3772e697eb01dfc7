"""Object storage operations with cached authorization and retries."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from urllib.parse import quote

from upload_bot.adapters.b2_client import B2Api
from upload_bot.domain.errors import TransientProviderError
from upload_bot.domain.storage import (
    B2Authorization,
    StorageAuthState,
    StoredObject,
    StorageUploadResult,
)
from upload_bot.services.progress import ProgressObserver, emit
from upload_bot.services.vault import sha1_hex

logger = logging.getLogger(__name__)

AUTH_LIFETIME = timedelta(hours=24)
AUTH_REFRESH_MARGIN = timedelta(hours=1)
MAX_UPLOAD_ATTEMPTS = 3
DELETE_PAGE_SIZE = 100

ProgressCallback = ProgressObserver[int]


@dataclass
class StorageService:
    """Storage client owning its authorization and bucket cache."""

    api: B2Api
    bucket_name: str
    fallback_bucket_id: str
    download_url: str | None = None
    max_attempts: int = MAX_UPLOAD_ATTEMPTS
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(tz=UTC))
    state: StorageAuthState = field(default_factory=StorageAuthState)

    async def ensure_authorized(self) -> B2Authorization:
        """Return a cached authorization, refreshing it when stale."""
        now = self.clock()
        if (
            self.state.authorization is not None
            and self.state.valid_until is not None
            and now < self.state.valid_until
        ):
            return self.state.authorization
        try:
            authorization = await self.api.authorize()
        except TransientProviderError:
            logger.exception("B2 authorization failed")
            raise
        self.state.authorization = authorization
        self.state.valid_until = now + AUTH_LIFETIME - AUTH_REFRESH_MARGIN
        logger.info("B2 authorization successful")
        return authorization

    async def get_bucket_id(self) -> str:
        """Return the bucket id, falling back to the configured id."""
        if self.state.bucket_id:
            return self.state.bucket_id
        auth = await self.ensure_authorized()
        try:
            bucket_id = await self.api.get_bucket_id(auth, self.bucket_name)
        except TransientProviderError:
            logger.warning(
                "Failed to get bucket by name, using configured bucket id",
                extra={"bucket_name": self.bucket_name},
            )
            return self.fallback_bucket_id
        if not bucket_id:
            return self.fallback_bucket_id
        self.state.bucket_id = bucket_id
        return bucket_id

    async def upload_file(
        self,
        data: bytes,
        path: str,
        mime_type: str = "image/jpeg",
        on_progress: ProgressCallback | None = None,
    ) -> StorageUploadResult:
        """Upload bytes with retry; never raises.

        Every attempt requests a new upload URL since a failed attempt may
        have consumed or expired the previous one.
        """
        content_sha1 = sha1_hex(data)
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                auth = await self.ensure_authorized()
                bucket_id = await self.get_bucket_id()
                target = await self.api.get_upload_url(auth, bucket_id)
                await emit(on_progress, 0)
                stored = await self.api.upload_file(
                    target=target,
                    file_name=path,
                    data=data,
                    content_sha1=content_sha1,
                    mime_type=mime_type,
                )
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                logger.warning(
                    "Upload attempt failed",
                    extra={"path": path, "attempt": attempt, "error": str(exc)},
                )
                if attempt < self.max_attempts:
                    await self.sleep(2**attempt)
                continue
            await emit(on_progress, 100)
            logger.info(
                "File uploaded", extra={"path": path, "attempt": attempt}
            )
            return StorageUploadResult(
                success=True,
                file_id=stored.file_id,
                file_name=stored.file_name,
                file_url=self.build_file_url(stored.file_name),
                content_length=stored.content_length,
            )

        logger.error(
            "Upload failed after retries",
            extra={"path": path, "attempts": self.max_attempts},
        )
        return StorageUploadResult(
            success=False,
            error=str(last_error) if last_error else "Upload failed after retries",
        )

    async def list_session_files(
        self, folder: str, max_files: int = 100
    ) -> list[StoredObject]:
        """Return up to ``max_files`` objects in a session folder."""
        try:
            auth = await self.ensure_authorized()
            bucket_id = await self.get_bucket_id()
            page = await self.api.list_file_names(
                auth,
                bucket_id,
                prefix=f"{folder}/",
                start_file_name=None,
                max_file_count=max_files,
            )
        except TransientProviderError:
            logger.exception("Failed to list files", extra={"folder": folder})
            return []
        return page.files

    async def delete_file(self, file_id: str, file_name: str) -> bool:
        """Delete one object; return whether it was removed."""
        try:
            auth = await self.ensure_authorized()
            await self.api.delete_file_version(auth, file_id, file_name)
        except TransientProviderError:
            logger.exception("Failed to delete file", extra={"file_name": file_name})
            return False
        logger.info("File deleted", extra={"file_name": file_name})
        return True

    async def delete_session_files(self, folder: str) -> int:
        """Delete every object under a folder and return how many went away."""
        total_deleted = 0
        next_file_name: str | None = None
        try:
            auth = await self.ensure_authorized()
            bucket_id = await self.get_bucket_id()
            while True:
                page = await self.api.list_file_names(
                    auth,
                    bucket_id,
                    prefix=f"{folder}/",
                    start_file_name=next_file_name,
                    max_file_count=DELETE_PAGE_SIZE,
                )
                if page.files:
                    outcomes = await asyncio.gather(
                        *(
                            self._delete_quietly(auth, stored)
                            for stored in page.files
                        )
                    )
                    deleted = sum(1 for outcome in outcomes if outcome)
                    total_deleted += deleted
                    logger.info(
                        "Deleted page of session files",
                        extra={"folder": folder, "deleted": deleted},
                    )
                next_file_name = page.next_file_name
                if not next_file_name:
                    break
        except TransientProviderError:
            logger.exception(
                "Failed to delete session files", extra={"folder": folder}
            )
        return total_deleted

    async def get_file_info(self, file_id: str) -> StoredObject | None:
        """Return metadata for a stored object."""
        try:
            auth = await self.ensure_authorized()
            return await self.api.get_file_info(auth, file_id)
        except TransientProviderError:
            logger.exception("Failed to get file info", extra={"file_id": file_id})
            return None

    async def test_connection(self) -> bool:
        """Return whether authorization and bucket lookup succeed."""
        try:
            await self.ensure_authorized()
            bucket_id = await self.get_bucket_id()
        except TransientProviderError:
            return False
        logger.info("B2 connection ok", extra={"bucket_id": bucket_id})
        return True

    def build_file_url(self, file_name: str) -> str:
        """Return the public download URL for an object."""
        base = self.download_url
        if base is None and self.state.authorization is not None:
            base = self.state.authorization.download_url
        base = (base or "").rstrip("/")
        return f"{base}/file/{self.bucket_name}/{quote(file_name, safe='/')}"

    async def _delete_quietly(
        self, auth: B2Authorization, stored: StoredObject
    ) -> bool:
        try:
            await self.api.delete_file_version(auth, stored.file_id, stored.file_name)
        except TransientProviderError as exc:
            logger.warning(
                "Failed to delete file",
                extra={"file_name": stored.file_name, "error": str(exc)},
            )
            return False
        return True

