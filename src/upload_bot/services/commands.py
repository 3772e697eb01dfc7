"""Command and conversation handlers for Telegram updates."""

import logging
from dataclasses import dataclass

from upload_bot.adapters.telegram_client import TelegramClient
from upload_bot.domain.conversation import (
    AwaitingAccessKey,
    AwaitingBatchDescription,
    AwaitingSessionId,
    BatchCollecting,
    InSession,
    SessionBound,
)
from upload_bot.domain.errors import (
    AuthError,
    NotFoundError,
    SessionIdConflictError,
    ValidationError,
)
from upload_bot.domain.sessions import (
    PurgeResult,
    SessionPage,
    SessionRecord,
    SessionStats,
    SessionStatus,
)
from upload_bot.domain.uploads import (
    BatchItem,
    BatchProgress,
    BatchSummary,
    ProcessUploadResult,
    UploadProgress,
)
from upload_bot.services.access import AccessGuard
from upload_bot.services.admin import AdminService
from upload_bot.services.batch import BatchService
from upload_bot.services.conversation import ConversationStore, active_session
from upload_bot.services.sessions import SessionService, parse_session_id
from upload_bot.services.uploads import UploadObserver, UploadService
from upload_bot.telegram_commands import BotCommand

logger = logging.getLogger(__name__)

_NO_SESSION = "You are not in a session. Send /join to pick one."
_ADMIN_ONLY = "This command is for admins only."


@dataclass
class BotHandler:
    """Routes commands, replies, and files to the services behind them."""

    telegram_client: TelegramClient
    session_service: SessionService
    access_guard: AccessGuard
    upload_service: UploadService
    batch_service: BatchService
    admin_service: AdminService
    conversations: ConversationStore

    async def handle_command(  # noqa: PLR0911, PLR0912
        self, user_id: int, chat_id: int, command: BotCommand, argument: str = ""
    ) -> None:
        """Run a slash command."""
        if command.value.admin_only and not self.admin_service.is_admin(user_id):
            await self._reply(chat_id, _ADMIN_ONLY)
            return
        is_admin = self.admin_service.is_admin(user_id)
        if command is BotCommand.START:
            await self._reply(chat_id, _welcome_text(is_admin))
        elif command is BotCommand.HELP:
            await self._reply(chat_id, _help_text(is_admin))
        elif command is BotCommand.JOIN:
            await self._join(user_id, chat_id, argument)
        elif command is BotCommand.NEW:
            await self._create_session(user_id, chat_id, argument)
        elif command is BotCommand.STATS:
            await self._stats(user_id, chat_id)
        elif command is BotCommand.LEAVE:
            await self._leave(user_id, chat_id)
        elif command is BotCommand.BATCH:
            await self._start_batch(user_id, chat_id)
        elif command is BotCommand.ENDBATCH:
            await self._end_batch(user_id, chat_id)
        elif command is BotCommand.RETRY:
            await self._retry(user_id, chat_id)
        elif command is BotCommand.CANCEL:
            await self._cancel(user_id, chat_id)
        elif command in {BotCommand.CLOSE, BotCommand.ARCHIVE}:
            await self._change_status(user_id, chat_id, command)
        elif command is BotCommand.KEY:
            await self._reveal_key(user_id, chat_id)
        elif command is BotCommand.MASTERKEY:
            await self._reveal_master_key(user_id, chat_id)
        elif command is BotCommand.SESSIONS:
            await self._list_sessions(chat_id, argument)
        elif command is BotCommand.DELETE:
            await self._delete_session(user_id, chat_id, argument)

    async def handle_text(self, user_id: int, chat_id: int, text: str) -> None:
        """Treat plain text as a reply to the current conversation step."""
        state = self.conversations.get(user_id)
        if isinstance(state, AwaitingSessionId):
            await self._select_session(user_id, chat_id, text)
        elif isinstance(state, AwaitingAccessKey):
            await self._check_access_key(user_id, chat_id, state, text)
        elif isinstance(state, AwaitingBatchDescription):
            await self._finalize_batch(user_id, chat_id, state, text)
        elif isinstance(state, BatchCollecting):
            await self._reply(chat_id, "Send photos for the batch, then /endbatch.")
        elif isinstance(state, InSession):
            await self._reply(
                chat_id, f"Session {state.session_id}: send a photo to upload it."
            )
        else:
            await self._reply(chat_id, "Send /join to pick a session or /help.")

    async def handle_file(self, user_id: int, chat_id: int, item: BatchItem) -> None:
        """Upload a received file, or collect it when a batch is open."""
        state = self.conversations.get(user_id)
        if isinstance(state, BatchCollecting):
            try:
                count = self.batch_service.add(user_id, item)
            except ValidationError:
                self.batch_service.start(user_id, state.session_db_id)
                count = self.batch_service.add(user_id, item)
            await self._reply(
                chat_id,
                f"Added {item.file_name} ({count} file(s) queued). "
                "Send /endbatch when done.",
            )
            return
        if isinstance(state, AwaitingBatchDescription):
            await self._reply(chat_id, "Send a description for the batch first.")
            return
        if not isinstance(state, InSession):
            await self._reply(chat_id, _NO_SESSION)
            return
        session = self._load_active(state)
        if session is None:
            self.conversations.clear(user_id)
            await self._reply(chat_id, "This session is no longer active.")
            return

        message_id = await self.telegram_client.send_message(
            chat_id=chat_id,
            text=_format_progress(item.file_name, 0, "Starting upload..."),
        )
        result = await self.upload_service.process_upload(
            session=session,
            file_reference=item.file_reference,
            original_name=item.file_name,
            user_id=user_id,
            on_progress=self._upload_observer(chat_id, message_id, item.file_name),
        )
        await self._show(
            chat_id, message_id, _format_upload_result(item.file_name, result)
        )

    async def _join(self, user_id: int, chat_id: int, argument: str) -> None:
        self.batch_service.cancel(user_id)
        if argument.strip():
            await self._select_session(user_id, chat_id, argument)
            return
        self.conversations.set(user_id, AwaitingSessionId())
        active = self.session_service.list_active()
        lines = ["Send the session id to join (PREFIX-MMDD-NN)."]
        if active:
            lines.append("Active sessions:")
            lines.extend(f"- {s.session_id}: {s.description}" for s in active[:10])
        await self._reply(chat_id, "\n".join(lines))

    async def _select_session(self, user_id: int, chat_id: int, text: str) -> None:
        try:
            session_id = parse_session_id(text)
        except ValidationError as exc:
            await self._reply(chat_id, str(exc))
            return
        session = self.session_service.get_by_external_id(session_id)
        if session is None:
            await self._reply(chat_id, f"Session {session_id} not found.")
            return
        if session.status != SessionStatus.ACTIVE:
            await self._reply(
                chat_id, f"Session {session_id} is {session.status.value}."
            )
            return
        lock = self.access_guard.is_locked(session.session_id, user_id)
        if lock.locked and not self.admin_service.is_admin(user_id):
            self.conversations.clear(user_id)
            await self._reply(
                chat_id,
                f"Too many failed attempts. Try again in {lock.remaining_minutes} "
                "minute(s).",
            )
            return
        self.conversations.set(
            user_id,
            AwaitingAccessKey(
                session_db_id=session.id,
                session_id=session.session_id,
                description=session.description,
            ),
        )
        await self._reply(
            chat_id,
            f"Session {session.session_id}: {session.description}\n"
            "Send the access key (ABC:DEF:GHI).",
        )

    async def _check_access_key(
        self, user_id: int, chat_id: int, state: AwaitingAccessKey, text: str
    ) -> None:
        try:
            check = self.access_guard.authenticate(
                state.session_id,
                user_id,
                text,
                is_admin=self.admin_service.is_admin(user_id),
            )
        except AuthError as exc:
            self.conversations.clear(user_id)
            await self._reply(chat_id, str(exc))
            return
        except ValidationError as exc:
            await self._reply(chat_id, str(exc))
            return
        if not check.valid or check.session is None:
            await self._reply(chat_id, check.error or "Wrong access key.")
            return
        self.conversations.set(
            user_id,
            InSession(
                session_db_id=check.session.id, session_id=check.session.session_id
            ),
        )
        logger.info(
            "User joined session",
            extra={"session_id": check.session.session_id, "user_id": user_id},
        )
        await self._reply(
            chat_id,
            f"Joined {check.session.session_id}. Send photos to upload them, "
            "or /batch to collect several first.",
        )

    async def _create_session(self, user_id: int, chat_id: int, argument: str) -> None:
        prefix, _, description = argument.strip().partition(" ")
        if not prefix or not description.strip():
            await self._reply(chat_id, "Usage: /new PREFIX description")
            return
        try:
            created = self.session_service.create_session(user_id, prefix, description)
        except (ValidationError, SessionIdConflictError) as exc:
            await self._reply(chat_id, str(exc))
            return
        session = created.session
        await self._reply(
            chat_id,
            "\n".join(
                [
                    "Session created.",
                    f"ID: {session.session_id}",
                    f"Description: {session.description}",
                    f"Access key: {created.access_key}",
                    f"Folder: {session.storage_folder_path}",
                    "Share the key with the uploaders. It is shown only once here; "
                    "/key reveals it again from inside the session.",
                ]
            ),
        )

    async def _stats(self, user_id: int, chat_id: int) -> None:
        bound = active_session(self.conversations.get(user_id))
        if bound is None:
            await self._reply(chat_id, _NO_SESSION)
            return
        stats = self.session_service.get_stats(bound.session_db_id)
        if stats is None:
            self.conversations.clear(user_id)
            await self._reply(chat_id, "Session not found.")
            return
        await self._reply(chat_id, _format_stats(bound.session_id, stats))

    async def _leave(self, user_id: int, chat_id: int) -> None:
        bound = active_session(self.conversations.get(user_id))
        self.batch_service.cancel(user_id)
        self.conversations.clear(user_id)
        if bound is None:
            await self._reply(chat_id, "You are not in a session.")
            return
        await self._reply(chat_id, f"You left {bound.session_id}.")

    async def _start_batch(self, user_id: int, chat_id: int) -> None:
        state = self.conversations.get(user_id)
        if not isinstance(state, InSession):
            if isinstance(state, BatchCollecting | AwaitingBatchDescription):
                await self._reply(chat_id, "A batch is already open. /cancel drops it.")
            else:
                await self._reply(chat_id, _NO_SESSION)
            return
        self.batch_service.start(user_id, state.session_db_id)
        self.conversations.set(
            user_id,
            BatchCollecting(
                session_db_id=state.session_db_id, session_id=state.session_id
            ),
        )
        await self._reply(
            chat_id, "Batch mode on. Send photos, then /endbatch to upload them."
        )

    async def _end_batch(self, user_id: int, chat_id: int) -> None:
        state = self.conversations.get(user_id)
        if not isinstance(state, BatchCollecting):
            await self._reply(
                chat_id, "No batch is being collected. Start with /batch."
            )
            return
        items = self.batch_service.pending(user_id)
        if not items:
            await self._reply(chat_id, "No files collected yet. Send photos first.")
            return
        self.conversations.set(
            user_id,
            AwaitingBatchDescription(
                session_db_id=state.session_db_id, session_id=state.session_id
            ),
        )
        await self._reply(
            chat_id,
            f"{len(items)} file(s) collected. Send a description for this batch.",
        )

    async def _finalize_batch(
        self, user_id: int, chat_id: int, state: AwaitingBatchDescription, text: str
    ) -> None:
        if not text.strip():
            await self._reply(chat_id, "Enter a valid description.")
            return
        message_id = await self.telegram_client.send_message(
            chat_id=chat_id, text="Starting batch upload..."
        )

        async def on_batch_progress(progress: BatchProgress) -> None:
            await self._show(chat_id, message_id, _format_batch_progress(progress))

        try:
            summary = await self.batch_service.finalize(
                user_id, text, on_batch_progress
            )
        except ValidationError as exc:
            await self._reply(chat_id, str(exc))
            return
        except NotFoundError:
            self.conversations.clear(user_id)
            await self._reply(chat_id, "Session not found.")
            return
        self.conversations.set(
            user_id,
            InSession(session_db_id=state.session_db_id, session_id=state.session_id),
        )
        await self._show(chat_id, message_id, _format_batch_summary(summary))

    async def _retry(self, user_id: int, chat_id: int) -> None:
        state = self.conversations.get(user_id)
        if not isinstance(state, InSession):
            await self._reply(chat_id, _NO_SESSION)
            return
        session = self._load_active(state)
        if session is None:
            await self._reply(chat_id, "This session is no longer active.")
            return
        failed = self.upload_service.get_failed_uploads(session.id)
        if not failed:
            await self._reply(chat_id, "No failed uploads to retry.")
            return
        message_id = await self.telegram_client.send_message(
            chat_id=chat_id, text=f"Retrying {len(failed)} failed upload(s)..."
        )
        results = await self.upload_service.retry_failed_uploads(
            session, self._upload_observer(chat_id, message_id, "retry")
        )
        succeeded = sum(1 for result in results if result.success)
        await self._show(
            chat_id,
            message_id,
            f"Retry finished: {succeeded} succeeded, "
            f"{len(results) - succeeded} failed.",
        )

    async def _cancel(self, user_id: int, chat_id: int) -> None:
        state = self.conversations.get(user_id)
        if isinstance(state, BatchCollecting | AwaitingBatchDescription):
            self.batch_service.cancel(user_id)
            self.conversations.set(
                user_id,
                InSession(
                    session_db_id=state.session_db_id, session_id=state.session_id
                ),
            )
            await self._reply(chat_id, "Batch cancelled. You are still in the session.")
        elif isinstance(state, AwaitingSessionId | AwaitingAccessKey):
            self.conversations.clear(user_id)
            await self._reply(chat_id, "Cancelled.")
        else:
            await self._reply(chat_id, "Nothing to cancel.")

    async def _change_status(
        self, user_id: int, chat_id: int, command: BotCommand
    ) -> None:
        bound = active_session(self.conversations.get(user_id))
        if bound is None:
            await self._reply(chat_id, _NO_SESSION)
            return
        if command is BotCommand.CLOSE:
            session = self.session_service.close(bound.session_db_id)
        else:
            session = self.session_service.archive(bound.session_db_id)
        self.batch_service.cancel(user_id)
        self.conversations.clear(user_id)
        if session is None:
            await self._reply(chat_id, "Session not found.")
            return
        await self._reply(
            chat_id, f"Session {session.session_id} is now {session.status.value}."
        )

    async def _reveal_key(self, user_id: int, chat_id: int) -> None:
        bound = active_session(self.conversations.get(user_id))
        if bound is None:
            await self._reply(chat_id, _NO_SESSION)
            return
        session = self.session_service.get_by_id(bound.session_db_id)
        if session is None:
            await self._reply(chat_id, "Session not found.")
            return
        key = self.admin_service.reveal_access_key(session)
        await self._reply(chat_id, f"Access key for {session.session_id}: {key}")

    async def _reveal_master_key(self, user_id: int, chat_id: int) -> None:
        try:
            master_key = self.admin_service.reveal_master_key(user_id)
        except NotFoundError as exc:
            await self._reply(chat_id, str(exc))
            return
        await self._reply(
            chat_id,
            f"Your master key: {master_key}\nUse it when joining any session.",
        )

    async def _list_sessions(self, chat_id: int, argument: str) -> None:
        page = int(argument) if argument.strip().isdigit() else 1
        session_page = self.admin_service.list_sessions(page)
        await self._reply(chat_id, _format_session_page(session_page))

    async def _delete_session(self, user_id: int, chat_id: int, argument: str) -> None:
        if not argument.strip():
            await self._reply(chat_id, "Usage: /delete SESSION-ID")
            return
        try:
            session_id = parse_session_id(argument)
        except ValidationError as exc:
            await self._reply(chat_id, str(exc))
            return
        session = self.session_service.get_by_external_id(session_id)
        if session is None:
            await self._reply(chat_id, f"Session {session_id} not found.")
            return
        result = await self.admin_service.delete_session_and_files(session.id)
        bound = active_session(self.conversations.get(user_id))
        if bound is not None and bound.session_db_id == session.id:
            self.batch_service.cancel(user_id)
            self.conversations.clear(user_id)
        await self._reply(chat_id, _format_purge(result))

    def _load_active(self, state: SessionBound) -> SessionRecord | None:
        session = self.session_service.get_by_id(state.session_db_id)
        if session is None or session.status != SessionStatus.ACTIVE:
            return None
        return session

    def _upload_observer(
        self, chat_id: int, message_id: int | None, label: str
    ) -> UploadObserver:
        last_shown: dict[str, object] = {}

        async def on_progress(progress: UploadProgress) -> None:
            if last_shown.get("percent") == progress.percent:
                return
            last_shown["percent"] = progress.percent
            await self._show(
                chat_id,
                message_id,
                _format_progress(label, progress.percent, progress.message),
            )

        return on_progress

    async def _show(self, chat_id: int, message_id: int | None, text: str) -> None:
        """Edit a progress message, falling back to a new one."""
        if message_id is None:
            await self._reply(chat_id, text)
            return
        try:
            await self.telegram_client.edit_message_text(chat_id, message_id, text)
        except Exception:  # noqa: BLE001
            logger.debug("Progress message edit failed", exc_info=True)

    async def _reply(self, chat_id: int, text: str) -> None:
        await self.telegram_client.send_message(chat_id=chat_id, text=text)


def _welcome_text(is_admin: bool) -> str:
    lines = [
        "Welcome! This bot uploads your photos into a shared session.",
        "1. /join and enter the session id and access key.",
        "2. Send photos (or images as files).",
    ]
    if is_admin:
        lines.append("Admin: /new PREFIX description creates a session.")
    return "\n".join(lines)


def _help_text(is_admin: bool) -> str:
    lines = [
        "/join - join a session",
        "/stats - upload stats for the session",
        "/batch, /endbatch - collect photos and upload them together",
        "/retry - retry failed uploads",
        "/cancel - cancel the current step",
        "/leave - leave the session",
        "Accepted files: JPG or PNG up to 20 MB.",
    ]
    if is_admin:
        lines.extend(
            [
                "Admin:",
                "/new PREFIX description - create a session",
                "/key - show the access key of the current session",
                "/masterkey - show your admin master key",
                "/close, /archive - end the current session",
                "/sessions [page] - list sessions",
                "/delete SESSION-ID - delete a session and its files",
            ]
        )
    return "\n".join(lines)


def _format_progress(label: str, percent: int, message: str) -> str:
    filled = max(0, min(10, percent // 10))
    bar = "#" * filled + "-" * (10 - filled)
    return f"{label}\n[{bar}] {percent}%\n{message}"


def _format_upload_result(file_name: str, result: ProcessUploadResult) -> str:
    if result.success:
        return f"Upload complete: {file_name} ({result.size_mb or 0:.2f} MB)"
    error = result.error or "Unknown error"
    return f"Upload failed: {file_name}\n{error}\nUse /retry to try again."


def _format_stats(session_id: str, stats: SessionStats) -> str:
    return "\n".join(
        [
            f"Session {session_id}",
            f"Files: {stats.total_files} ({stats.total_size_mb:.2f} MB)",
            f"Completed: {stats.success_count}",
            f"Failed: {stats.failed_count}",
            f"Pending: {stats.pending_count}",
        ]
    )


def _format_batch_progress(progress: BatchProgress) -> str:
    lines = [f"Batch upload {progress.index + 1}/{progress.total}: {progress.current}"]
    if progress.completed:
        lines.append(f"Done: {', '.join(progress.completed)}")
    if progress.pending:
        lines.append(f"Next: {', '.join(progress.pending)}")
    return "\n".join(lines)


def _format_batch_summary(summary: BatchSummary) -> str:
    lines = [
        f"Batch for {summary.session_id}: {summary.description}",
        f"Uploaded {len(summary.completed)}/{summary.total} "
        f"({summary.total_size_mb:.2f} MB)",
    ]
    if summary.has_errors:
        lines.append(f"Failed: {', '.join(summary.failed)}")
        lines.append("Use /retry to try the failed files again.")
    return "\n".join(lines)


def _format_session_page(page: SessionPage) -> str:
    if not page.sessions:
        return "No sessions found."
    lines = [f"Sessions (page {page.current_page}/{max(page.pages, 1)}):"]
    for session in page.sessions:
        uploads = page.upload_counts.get(session.id, 0)
        lines.append(
            f"- {session.session_id} [{session.status.value}] {session.description} "
            f"({uploads} upload(s))"
        )
    if page.current_page < page.pages:
        lines.append(f"Next: /sessions {page.current_page + 1}")
    return "\n".join(lines)


def _format_purge(result: PurgeResult) -> str:
    lines = [
        f"Session {result.session_id} deleted.",
        f"Files removed from storage: {result.deleted_files}",
    ]
    if result.storage_error or result.remaining_files:
        lines.append("Some stored files could not be removed; check the logs.")
    return "\n".join(lines)
