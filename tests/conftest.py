"""Shared test fixtures."""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest

from upload_bot.adapters.b2_client import B2Api
from upload_bot.adapters.telegram_client import TelegramClient
from upload_bot.adapters.telegram_file_client import DownloadedFile, TelegramFileClient
from upload_bot.config import Settings
from upload_bot.containers import AppContainer
from upload_bot.domain.access import AccessLock, AdminCredential
from upload_bot.domain.errors import (
    SessionIdConflictError,
    TerminalUploadError,
    TransientProviderError,
)
from upload_bot.domain.sessions import SessionIdentity, SessionRecord, SessionStatus
from upload_bot.domain.storage import (
    B2Authorization,
    FileListPage,
    StoredObject,
    UploadTarget,
)
from upload_bot.domain.uploads import UploadRecord, UploadStatus
from upload_bot.services.access import (
    AccessGuard,
    AccessLockRepository,
    AdminCredentialRepository,
)
from upload_bot.services.admin import AdminService
from upload_bot.services.batch import BatchService
from upload_bot.services.commands import BotHandler
from upload_bot.services.conversation import InMemoryConversationStore
from upload_bot.services.sessions import SessionRepository, SessionService
from upload_bot.services.storage import StorageService
from upload_bot.services.uploads import UploadRepository, UploadService
from upload_bot.services.vault import CredentialVault

TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4
ADMIN_USER_ID = 1
FIXED_NOW = datetime(2024, 9, 14, 10, 30, tzinfo=UTC)


@dataclass
class FakeClock:
    """Controllable clock for time-dependent services."""

    now: datetime = FIXED_NOW

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@dataclass
class InMemoryUploadRepository(UploadRepository):
    """In-memory upload repository for tests."""

    uploads: dict[UUID, UploadRecord] = field(default_factory=dict)
    fail_on_create: bool = False
    status_history: dict[UUID, list[UploadStatus]] = field(default_factory=dict)

    def create_upload(
        self,
        session_db_id: UUID,
        original_name: str,
        file_reference: str,
        uploaded_by: int,
    ) -> UploadRecord:
        if self.fail_on_create:
            raise RuntimeError("database unavailable")
        upload = UploadRecord(
            id=uuid4(),
            session_id=session_db_id,
            original_name=original_name,
            file_reference=file_reference,
            upload_status=UploadStatus.PENDING,
            uploaded_by=uploaded_by,
        )
        self.uploads[upload.id] = upload
        self.status_history[upload.id] = [UploadStatus.PENDING]
        return upload

    def get_upload(self, upload_id: UUID) -> UploadRecord | None:
        return self.uploads.get(upload_id)

    def update_status(
        self,
        upload_id: UUID,
        status: UploadStatus,
        error_message: str | None = None,
    ) -> None:
        self.status_history.setdefault(upload_id, []).append(status)
        self.uploads[upload_id] = replace(
            self.uploads[upload_id], upload_status=status, error_message=error_message
        )

    def mark_completed(  # noqa: PLR0913
        self,
        upload_id: UUID,
        stored_path: str,
        file_size_mb: float,
        storage_object_id: str | None,
        storage_url: str | None,
        uploaded_at: datetime,
    ) -> None:
        self.status_history.setdefault(upload_id, []).append(UploadStatus.COMPLETED)
        self.uploads[upload_id] = replace(
            self.uploads[upload_id],
            upload_status=UploadStatus.COMPLETED,
            stored_path=stored_path,
            file_size_mb=file_size_mb,
            storage_object_id=storage_object_id,
            storage_url=storage_url,
            error_message=None,
            uploaded_at=uploaded_at,
        )

    def count_with_original_name(
        self, session_db_id: UUID, original_name: str, exclude_id: UUID
    ) -> int:
        return sum(
            1
            for upload in self.uploads.values()
            if upload.session_id == session_db_id
            and upload.original_name == original_name
            and upload.id != exclude_id
        )

    def list_by_status(
        self, session_db_id: UUID, statuses: list[UploadStatus]
    ) -> list[UploadRecord]:
        return [
            upload
            for upload in self.uploads.values()
            if upload.session_id == session_db_id and upload.upload_status in statuses
        ]


@dataclass
class InMemorySessionRepository(SessionRepository):
    """In-memory session repository sharing upload rows for cascades."""

    upload_repository: InMemoryUploadRepository = field(
        default_factory=InMemoryUploadRepository
    )
    sessions: dict[UUID, SessionRecord] = field(default_factory=dict)
    forced_conflicts: int = 0

    def count_for_date(self, prefix: str, date_code: str) -> int:
        return sum(
            1
            for session in self.sessions.values()
            if session.prefix == prefix and session.date_code == date_code
        )

    def create_session(  # noqa: PLR0913
        self,
        identity: SessionIdentity,
        description: str,
        encrypted_access_key: str,
        storage_folder_path: str,
        created_by: int,
        status: SessionStatus,
    ) -> SessionRecord:
        if self.forced_conflicts > 0:
            self.forced_conflicts -= 1
            raise SessionIdConflictError(identity.session_id)
        if any(s.session_id == identity.session_id for s in self.sessions.values()):
            raise SessionIdConflictError(identity.session_id)
        session = SessionRecord(
            id=uuid4(),
            session_id=identity.session_id,
            prefix=identity.prefix,
            date_code=identity.date_code,
            sequence_number=identity.sequence_number,
            description=description,
            encrypted_access_key=encrypted_access_key,
            status=status,
            total_files=0,
            total_size_mb=0.0,
            storage_folder_path=storage_folder_path,
            created_by=created_by,
            created_at=FIXED_NOW + timedelta(seconds=len(self.sessions)),
        )
        self.sessions[session.id] = session
        return session

    def get_by_session_id(self, session_id: str) -> SessionRecord | None:
        for session in self.sessions.values():
            if session.session_id == session_id:
                return session
        return None

    def get_by_id(self, id: UUID) -> SessionRecord | None:  # noqa: A002
        return self.sessions.get(id)

    def list_by_status(self, status: SessionStatus) -> list[SessionRecord]:
        return [s for s in self._newest_first() if s.status == status]

    def list_page(self, offset: int, limit: int) -> list[SessionRecord]:
        return self._newest_first()[offset : offset + limit]

    def count_all(self) -> int:
        return len(self.sessions)

    def update_status(
        self,
        id: UUID,  # noqa: A002
        status: SessionStatus,
    ) -> SessionRecord | None:
        session = self.sessions.get(id)
        if session is None:
            return None
        self.sessions[id] = replace(session, status=status)
        return self.sessions[id]

    def increment_stats(
        self,
        id: UUID,  # noqa: A002
        delta_files: int,
        delta_size_mb: float,
    ) -> None:
        session = self.sessions[id]
        self.sessions[id] = replace(
            session,
            total_files=session.total_files + delta_files,
            total_size_mb=session.total_size_mb + delta_size_mb,
        )

    def delete_session(self, id: UUID) -> None:  # noqa: A002
        self.sessions.pop(id, None)
        uploads = self.upload_repository.uploads
        for upload_id in [u.id for u in uploads.values() if u.session_id == id]:
            del uploads[upload_id]

    def list_upload_statuses(self, session_db_id: UUID) -> list[UploadStatus]:
        return [
            upload.upload_status
            for upload in self.upload_repository.uploads.values()
            if upload.session_id == session_db_id
        ]

    def count_uploads(self, session_db_ids: list[UUID]) -> dict[UUID, int]:
        counts = {session_id: 0 for session_id in session_db_ids}
        for upload in self.upload_repository.uploads.values():
            if upload.session_id in counts:
                counts[upload.session_id] += 1
        return counts

    def _newest_first(self) -> list[SessionRecord]:
        return sorted(
            self.sessions.values(), key=lambda s: s.created_at, reverse=True
        )


@dataclass
class InMemoryAccessLockRepository(AccessLockRepository):
    """In-memory lock repository for tests."""

    locks: dict[tuple[str, int], AccessLock] = field(default_factory=dict)

    def get_lock(self, session_id: str, user_id: int) -> AccessLock | None:
        return self.locks.get((session_id, user_id))

    def create_lock(self, session_id: str, user_id: int) -> AccessLock:
        lock = AccessLock(
            id=uuid4(),
            session_id=session_id,
            user_id=user_id,
            failed_attempts=1,
            locked_until=None,
        )
        self.locks[(session_id, user_id)] = lock
        return lock

    def update_lock(
        self,
        session_id: str,
        user_id: int,
        failed_attempts: int,
        locked_until: datetime | None,
    ) -> None:
        lock = self.locks[(session_id, user_id)]
        self.locks[(session_id, user_id)] = replace(
            lock, failed_attempts=failed_attempts, locked_until=locked_until
        )

    def delete_lock(self, session_id: str, user_id: int) -> None:
        self.locks.pop((session_id, user_id), None)


@dataclass
class InMemoryAdminCredentialRepository(AdminCredentialRepository):
    """In-memory admin credential repository for tests."""

    admins: dict[int, AdminCredential] = field(default_factory=dict)

    def get_admin(self, user_id: int) -> AdminCredential | None:
        return self.admins.get(user_id)

    def create_admin(self, user_id: int, encrypted_master_key: str) -> AdminCredential:
        admin = AdminCredential(
            user_id=user_id, encrypted_master_key=encrypted_master_key
        )
        self.admins[user_id] = admin
        return admin


@dataclass
class FakeTelegramClient(TelegramClient):
    """Fake Telegram client that records messages and edits."""

    messages: list[tuple[int, str]] = field(default_factory=list)
    edits: list[tuple[int, int, str]] = field(default_factory=list)
    callbacks: list[tuple[str, str | None]] = field(default_factory=list)
    commands: list[dict[str, str]] | None = None
    menu_button: dict[str, object] | None = None
    fail_edits: bool = False
    _next_message_id: int = 100

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: dict | None = None,
        parse_mode: str | None = None,
    ) -> int | None:
        self.messages.append((chat_id, text))
        self._next_message_id += 1
        return self._next_message_id

    async def edit_message_text(
        self, chat_id: int, message_id: int, text: str
    ) -> None:
        if self.fail_edits:
            raise RuntimeError("message is not modified")
        self.edits.append((chat_id, message_id, text))

    async def answer_callback_query(
        self, callback_query_id: str, text: str | None = None
    ) -> None:
        self.callbacks.append((callback_query_id, text))

    async def set_my_commands(self, commands: list[dict[str, str]]) -> None:
        self.commands = commands

    async def set_chat_menu_button(
        self, menu_button: dict[str, object] | None = None
    ) -> None:
        self.menu_button = menu_button

    def texts(self) -> list[str]:
        return [text for _, text in self.messages]


@dataclass
class FakeTelegramFileClient(TelegramFileClient):
    """Fake Telegram file client serving static bytes."""

    content: bytes = b"\xff\xd8fake-jpeg-bytes"
    failing: set[str] = field(default_factory=set)
    files: dict[str, DownloadedFile] = field(default_factory=dict)

    async def download_file(self, file_id: str) -> DownloadedFile:
        if file_id in self.failing:
            raise TerminalUploadError("Failed to download file: HTTP 404")
        if file_id in self.files:
            return self.files[file_id]
        return DownloadedFile(
            content=self.content,
            file_path=f"photos/{file_id}.jpg",
            file_size=len(self.content),
            mime_type="image/jpeg",
        )


@dataclass
class FakeB2Api(B2Api):
    """In-memory bucket speaking the B2 operations."""

    objects: dict[str, StoredObject] = field(default_factory=dict)
    authorize_calls: int = 0
    upload_url_calls: int = 0
    upload_attempts: int = 0
    transient_upload_failures: int = 0
    failing_names: set[str] = field(default_factory=set)
    attempted_names: list[str] = field(default_factory=list)
    failing_deletes: set[str] = field(default_factory=set)
    bucket_lookup_fails: bool = False
    bucket_id: str | None = "bucket-123"
    listed_start_names: list[str | None] = field(default_factory=list)
    _counter: int = 0

    async def authorize(self) -> B2Authorization:
        self.authorize_calls += 1
        return B2Authorization(
            account_id="account",
            authorization_token=f"token-{self.authorize_calls}",
            api_url="https://api.b2.test",
            download_url="https://f000.b2.test",
        )

    async def get_bucket_id(
        self, auth: B2Authorization, bucket_name: str
    ) -> str | None:
        if self.bucket_lookup_fails:
            raise TransientProviderError("list buckets failed", status_code=500)
        return self.bucket_id

    async def get_upload_url(
        self, auth: B2Authorization, bucket_id: str
    ) -> UploadTarget:
        self.upload_url_calls += 1
        return UploadTarget(
            upload_url=f"https://pod.b2.test/upload/{self.upload_url_calls}",
            authorization_token="upload-token",
        )

    async def upload_file(  # noqa: PLR0913
        self,
        target: UploadTarget,
        file_name: str,
        data: bytes,
        content_sha1: str,
        mime_type: str,
    ) -> StoredObject:
        self.upload_attempts += 1
        self.attempted_names.append(file_name)
        if file_name in self.failing_names:
            raise TransientProviderError("upload failed", status_code=503)
        if self.transient_upload_failures > 0:
            self.transient_upload_failures -= 1
            raise TransientProviderError("upload failed", status_code=503)
        stored = self._store(file_name, len(data), mime_type)
        return stored

    async def list_file_names(  # noqa: PLR0913
        self,
        auth: B2Authorization,
        bucket_id: str,
        prefix: str,
        start_file_name: str | None,
        max_file_count: int,
    ) -> FileListPage:
        self.listed_start_names.append(start_file_name)
        names = sorted(name for name in self.objects if name.startswith(prefix))
        if start_file_name:
            names = [name for name in names if name >= start_file_name]
        page = names[:max_file_count]
        remaining = names[max_file_count:]
        return FileListPage(
            files=[self.objects[name] for name in page],
            next_file_name=remaining[0] if remaining else None,
        )

    async def delete_file_version(
        self, auth: B2Authorization, file_id: str, file_name: str
    ) -> None:
        if file_name in self.failing_deletes:
            raise TransientProviderError("delete failed", status_code=500)
        self.objects.pop(file_name, None)

    async def get_file_info(self, auth: B2Authorization, file_id: str) -> StoredObject:
        for stored in self.objects.values():
            if stored.file_id == file_id:
                return stored
        raise TransientProviderError("file not found", status_code=404)

    def seed(self, names: list[str]) -> None:
        for name in names:
            self._store(name, 10, "image/jpeg")

    def _store(self, file_name: str, size: int, mime_type: str) -> StoredObject:
        self._counter += 1
        stored = StoredObject(
            file_id=f"file-{self._counter}",
            file_name=file_name,
            content_length=size,
            content_type=mime_type,
        )
        self.objects[file_name] = stored
        return stored


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def settings() -> Settings:
    return Settings(
        telegram_bot_token="test-token",
        telegram_admin_user_ids=str(ADMIN_USER_ID),
        supabase_url="https://example.supabase.co",
        supabase_service_key="header.payload.signature",
        admin_token="admin-token",
        b2_application_key_id="key-id",
        b2_application_key="app-key",
        b2_bucket_id="bucket-static",
        b2_bucket_name="uploads",
        encryption_key=TEST_ENCRYPTION_KEY,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(TEST_ENCRYPTION_KEY)


@pytest.fixture
def upload_repository() -> InMemoryUploadRepository:
    return InMemoryUploadRepository()


@pytest.fixture
def session_repository(
    upload_repository: InMemoryUploadRepository,
) -> InMemorySessionRepository:
    return InMemorySessionRepository(upload_repository=upload_repository)


@pytest.fixture
def lock_repository() -> InMemoryAccessLockRepository:
    return InMemoryAccessLockRepository()


@pytest.fixture
def admin_repository() -> InMemoryAdminCredentialRepository:
    return InMemoryAdminCredentialRepository()


@pytest.fixture
def b2_api() -> FakeB2Api:
    return FakeB2Api()


@pytest.fixture
def telegram_client() -> FakeTelegramClient:
    return FakeTelegramClient()


@pytest.fixture
def file_client() -> FakeTelegramFileClient:
    return FakeTelegramFileClient()


@pytest.fixture
def session_service(
    session_repository: InMemorySessionRepository,
    vault: CredentialVault,
    clock: FakeClock,
) -> SessionService:
    return SessionService(repository=session_repository, vault=vault, clock=clock)


@pytest.fixture
def access_guard(
    session_service: SessionService,
    lock_repository: InMemoryAccessLockRepository,
    admin_repository: InMemoryAdminCredentialRepository,
    vault: CredentialVault,
    clock: FakeClock,
) -> AccessGuard:
    return AccessGuard(
        session_service=session_service,
        lock_repository=lock_repository,
        admin_repository=admin_repository,
        vault=vault,
        clock=clock,
    )


@pytest.fixture
def storage_service(b2_api: FakeB2Api, clock: FakeClock) -> StorageService:
    return StorageService(
        api=b2_api,
        bucket_name="uploads",
        fallback_bucket_id="bucket-static",
        sleep=_no_sleep,
        clock=clock,
    )


@pytest.fixture
def upload_service(
    upload_repository: InMemoryUploadRepository,
    file_client: FakeTelegramFileClient,
    storage_service: StorageService,
    session_service: SessionService,
    clock: FakeClock,
) -> UploadService:
    return UploadService(
        repository=upload_repository,
        file_client=file_client,
        storage=storage_service,
        session_service=session_service,
        clock=clock,
    )


@pytest.fixture
def batch_service(
    upload_service: UploadService, session_service: SessionService
) -> BatchService:
    return BatchService(upload_service=upload_service, session_service=session_service)


@pytest.fixture
def admin_service(
    admin_repository: InMemoryAdminCredentialRepository,
    session_service: SessionService,
    storage_service: StorageService,
    vault: CredentialVault,
) -> AdminService:
    return AdminService(
        admin_repository=admin_repository,
        session_service=session_service,
        storage=storage_service,
        vault=vault,
        admin_user_ids={ADMIN_USER_ID},
    )


@pytest.fixture
def container(  # noqa: PLR0913
    settings: Settings,
    telegram_client: FakeTelegramClient,
    file_client: FakeTelegramFileClient,
    session_service: SessionService,
    access_guard: AccessGuard,
    storage_service: StorageService,
    upload_service: UploadService,
    batch_service: BatchService,
    admin_service: AdminService,
) -> AppContainer:
    conversations = InMemoryConversationStore()
    bot_handler = BotHandler(
        telegram_client=telegram_client,
        session_service=session_service,
        access_guard=access_guard,
        upload_service=upload_service,
        batch_service=batch_service,
        admin_service=admin_service,
        conversations=conversations,
    )

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        telegram_client=telegram_client,
        telegram_file_client=file_client,
        session_service=session_service,
        access_guard=access_guard,
        storage_service=storage_service,
        upload_service=upload_service,
        batch_service=batch_service,
        admin_service=admin_service,
        conversations=conversations,
        bot_handler=bot_handler,
        close_resources=close_resources,
    )
