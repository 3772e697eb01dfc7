"""Batch coordination for multi-file uploads."""

import logging
from dataclasses import dataclass, field
from uuid import UUID

from upload_bot.domain.errors import NotFoundError, ValidationError
from upload_bot.domain.sessions import SessionRecord
from upload_bot.domain.uploads import BatchItem, BatchProgress, BatchSummary
from upload_bot.services.progress import ProgressObserver, emit
from upload_bot.services.sessions import SessionService
from upload_bot.services.uploads import UploadService

logger = logging.getLogger(__name__)

BatchObserver = ProgressObserver[BatchProgress]
_PENDING_PREVIEW = 3


@dataclass
class _PendingBatch:
    session_db_id: UUID
    items: list[BatchItem] = field(default_factory=list)


@dataclass
class BatchService:
    """Collects files per user and uploads them sequentially."""

    upload_service: UploadService
    session_service: SessionService
    _batches: dict[int, _PendingBatch] = field(default_factory=dict, init=False)

    def start(self, user_id: int, session_db_id: UUID) -> None:
        """Begin a new, empty collection for a user."""
        self._batches[user_id] = _PendingBatch(session_db_id=session_db_id)

    def add(self, user_id: int, item: BatchItem) -> int:
        """Add a file to the user's collection and return the count."""
        batch = self._batches.get(user_id)
        if batch is None:
            raise ValidationError("No batch in progress")
        batch.items.append(item)
        return len(batch.items)

    def pending(self, user_id: int) -> list[BatchItem]:
        """Return the files collected so far."""
        batch = self._batches.get(user_id)
        return list(batch.items) if batch else []

    def cancel(self, user_id: int) -> None:
        """Drop the user's collection."""
        self._batches.pop(user_id, None)

    async def finalize(
        self,
        user_id: int,
        description: str,
        on_progress: BatchObserver | None = None,
    ) -> BatchSummary:
        """Upload the collected files under one shared description."""
        cleaned = description.strip()
        if not cleaned:
            raise ValidationError("Enter a valid description")
        batch = self._batches.get(user_id)
        if batch is None or not batch.items:
            raise ValidationError("No files collected")
        session = self.session_service.get_by_id(batch.session_db_id)
        if session is None:
            self.cancel(user_id)
            raise NotFoundError("Session not found")
        try:
            return await self.process_batch(
                session, batch.items, cleaned, user_id, on_progress
            )
        finally:
            self.cancel(user_id)

    async def process_batch(  # noqa: PLR0913
        self,
        session: SessionRecord,
        items: list[BatchItem],
        description: str,
        user_id: int,
        on_progress: BatchObserver | None = None,
    ) -> BatchSummary:
        """Upload items one after another, continuing past failures."""
        completed: list[str] = []
        failed: list[str] = []
        total_size_mb = 0.0
        for index, item in enumerate(items):
            await emit(
                on_progress,
                BatchProgress(
                    index=index,
                    total=len(items),
                    completed=list(completed),
                    current=item.file_name,
                    pending=[
                        pending.file_name
                        for pending in items[index + 1 : index + 1 + _PENDING_PREVIEW]
                    ],
                ),
            )
            result = await self.upload_service.process_upload(
                session=session,
                file_reference=item.file_reference,
                original_name=item.file_name,
                user_id=user_id,
            )
            if result.success:
                completed.append(item.file_name)
                total_size_mb += result.size_mb or 0.0
            else:
                failed.append(item.file_name)

        logger.info(
            "Batch upload complete",
            extra={
                "session_id": session.session_id,
                "completed": len(completed),
                "total": len(items),
            },
        )
        return BatchSummary(
            session_id=session.session_id,
            description=description,
            total=len(items),
            completed=completed,
            failed=failed,
            total_size_mb=total_size_mb,
        )
