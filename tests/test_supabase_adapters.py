"""Tests for Supabase adapter implementations."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID, uuid4

import pytest
from postgrest.exceptions import APIError

from upload_bot.adapters.supabase_access_repository import (
    SupabaseAccessLockRepository,
    SupabaseAdminCredentialRepository,
)
from upload_bot.adapters.supabase_session_repository import (
    SupabaseSessionRepository,
)
from upload_bot.adapters.supabase_upload_repository import SupabaseUploadRepository
from upload_bot.domain.errors import SessionIdConflictError
from upload_bot.domain.sessions import SessionIdentity, SessionStatus
from upload_bot.domain.uploads import UploadStatus


@dataclass
class FakeResponse:
    data: list[dict[str, object]] | None
    count: int | None = None


@dataclass
class FakeTable:
    name: str
    response_queue: dict[str, list[list[dict[str, object]]]] = field(
        default_factory=lambda: {"select": [], "insert": [], "update": [], "delete": []}
    )
    counts: list[int] = field(default_factory=list)
    insert_error: APIError | None = None
    last_payload: object | None = None
    last_filters: list[tuple[str, str, object]] = field(default_factory=list)
    last_range: tuple[int, int] | None = None

    def queue(self, action: str, data: list[dict[str, object]]) -> None:
        self.response_queue[action].append(data)

    def select(self, *_args, count: str | None = None) -> "FakeTable":
        self._action = "select"
        self._count = count
        return self

    def insert(self, payload) -> "FakeTable":  # type: ignore[no-untyped-def]
        self._action = "insert"
        self.last_payload = payload
        return self

    def update(self, payload) -> "FakeTable":  # type: ignore[no-untyped-def]
        self._action = "update"
        self.last_payload = payload
        return self

    def delete(self) -> "FakeTable":
        self._action = "delete"
        return self

    def eq(self, column: str, value) -> "FakeTable":  # type: ignore[no-untyped-def]
        self.last_filters.append(("eq", column, value))
        return self

    def neq(self, column: str, value) -> "FakeTable":  # type: ignore[no-untyped-def]
        self.last_filters.append(("neq", column, value))
        return self

    def in_(self, column: str, value) -> "FakeTable":  # type: ignore[no-untyped-def]
        self.last_filters.append(("in", column, value))
        return self

    def limit(self, _count: int) -> "FakeTable":
        return self

    def order(self, _column: str, desc: bool = False) -> "FakeTable":
        return self

    def range(self, start: int, end: int) -> "FakeTable":
        self.last_range = (start, end)
        return self

    def execute(self) -> FakeResponse:
        action = getattr(self, "_action", "select")
        if action == "insert" and self.insert_error is not None:
            raise self.insert_error
        if action == "select" and getattr(self, "_count", None) == "exact":
            return FakeResponse(data=[], count=self.counts.pop(0))
        queue = self.response_queue.get(action, [])
        data = queue.pop(0) if queue else []
        return FakeResponse(data=data)


@dataclass
class FakeRpc:
    def execute(self) -> FakeResponse:
        return FakeResponse(data=[])


@dataclass
class FakeSupabaseClient:
    tables: dict[str, FakeTable] = field(default_factory=dict)
    rpc_calls: list[tuple[str, dict[str, object]]] = field(default_factory=list)

    def table(self, name: str) -> FakeTable:
        if name not in self.tables:
            self.tables[name] = FakeTable(name=name)
        return self.tables[name]

    def rpc(self, name: str, params: dict[str, object]) -> FakeRpc:
        self.rpc_calls.append((name, params))
        return FakeRpc()


def _session_row(**overrides: object) -> dict[str, object]:
    row: dict[str, object] = {
        "id": str(uuid4()),
        "session_id": "DCM-0914-01",
        "prefix": "DCM",
        "date_code": "0914",
        "sequence_number": "01",
        "description": "Wedding",
        "access_key": "iv:tag:cipher",
        "status": "ACTIVE",
        "total_files": 2,
        "total_size_mb": 1.5,
        "storage_folder_path": "DCM-0914-01-Wedding",
        "created_by": 1,
        "created_at": "2024-09-14T10:30:00+00:00",
    }
    row.update(overrides)
    return row


def _identity() -> SessionIdentity:
    return SessionIdentity(
        session_id="DCM-0914-01", prefix="DCM", date_code="0914", sequence_number="01"
    )


def test_session_repository_create_and_fetch() -> None:
    client = FakeSupabaseClient()
    table = client.table("sessions")
    row = _session_row()
    table.queue("insert", [row])
    table.queue("select", [row])

    repository = SupabaseSessionRepository(client)
    created = repository.create_session(
        identity=_identity(),
        description="Wedding",
        encrypted_access_key="iv:tag:cipher",
        storage_folder_path="DCM-0914-01-Wedding",
        created_by=1,
        status=SessionStatus.ACTIVE,
    )
    fetched = repository.get_by_session_id("DCM-0914-01")

    assert isinstance(table.last_payload, dict)
    assert table.last_payload["access_key"] == "iv:tag:cipher"
    assert table.last_payload["status"] == "ACTIVE"
    assert created.encrypted_access_key == "iv:tag:cipher"
    assert created.total_size_mb == 1.5
    assert created.created_at == datetime(2024, 9, 14, 10, 30, tzinfo=UTC)
    assert fetched is not None
    assert fetched.status == SessionStatus.ACTIVE


def test_session_repository_translates_unique_violation() -> None:
    client = FakeSupabaseClient()
    client.table("sessions").insert_error = APIError(
        {"code": "23505", "message": "duplicate key value", "details": "", "hint": ""}
    )
    repository = SupabaseSessionRepository(client)

    with pytest.raises(SessionIdConflictError):
        repository.create_session(
            identity=_identity(),
            description="Wedding",
            encrypted_access_key="x",
            storage_folder_path="DCM-0914-01-Wedding",
            created_by=1,
            status=SessionStatus.ACTIVE,
        )


def test_session_repository_reraises_other_api_errors() -> None:
    client = FakeSupabaseClient()
    client.table("sessions").insert_error = APIError(
        {"code": "42501", "message": "permission denied", "details": "", "hint": ""}
    )
    repository = SupabaseSessionRepository(client)

    with pytest.raises(APIError):
        repository.create_session(
            identity=_identity(),
            description="Wedding",
            encrypted_access_key="x",
            storage_folder_path="DCM-0914-01-Wedding",
            created_by=1,
            status=SessionStatus.ACTIVE,
        )


def test_session_repository_counts_and_pages() -> None:
    client = FakeSupabaseClient()
    table = client.table("sessions")
    table.counts.extend([4, 9])
    table.queue("select", [_session_row(), _session_row(session_id="DCM-0914-02")])

    repository = SupabaseSessionRepository(client)

    assert repository.count_for_date("DCM", "0914") == 4
    assert repository.count_all() == 9
    page = repository.list_page(offset=5, limit=5)
    assert table.last_range == (5, 9)
    assert [session.session_id for session in page] == ["DCM-0914-01", "DCM-0914-02"]


def test_session_repository_increments_stats_via_rpc() -> None:
    client = FakeSupabaseClient()
    session_db_id = uuid4()

    SupabaseSessionRepository(client).increment_stats(session_db_id, 1, 2.5)

    assert client.rpc_calls == [
        (
            "increment_session_stats",
            {"p_session_id": str(session_db_id), "p_files": 1, "p_size_mb": 2.5},
        )
    ]


def test_session_repository_upload_counts() -> None:
    client = FakeSupabaseClient()
    first, second = uuid4(), uuid4()
    client.table("uploads").queue(
        "select",
        [
            {"session_id": str(first)},
            {"session_id": str(first)},
        ],
    )
    client.table("uploads").queue(
        "select", [{"upload_status": "COMPLETED"}, {"upload_status": "FAILED"}]
    )
    repository = SupabaseSessionRepository(client)

    assert repository.count_uploads([first, second]) == {first: 2, second: 0}
    assert repository.count_uploads([]) == {}
    assert repository.list_upload_statuses(first) == [
        UploadStatus.COMPLETED,
        UploadStatus.FAILED,
    ]


def test_upload_repository_lifecycle() -> None:
    client = FakeSupabaseClient()
    table = client.table("uploads")
    upload_id = str(uuid4())
    session_db_id = uuid4()
    table.queue(
        "insert",
        [
            {
                "id": upload_id,
                "session_id": str(session_db_id),
                "original_name": "a.jpg",
                "file_reference": "file-1",
                "upload_status": "PENDING",
                "uploaded_by": 7,
                "file_size_mb": 0,
            }
        ],
    )
    table.counts.append(2)

    repository = SupabaseUploadRepository(client)
    created = repository.create_upload(session_db_id, "a.jpg", "file-1", 7)
    assert created.id == UUID(upload_id)
    assert created.upload_status == UploadStatus.PENDING
    assert created.uploaded_at is None

    repository.mark_completed(
        created.id,
        stored_path="DCM/a.jpg",
        file_size_mb=1.25,
        storage_object_id="obj-1",
        storage_url="https://f000.b2.test/file/uploads/DCM/a.jpg",
        uploaded_at=datetime(2024, 9, 14, tzinfo=UTC),
    )
    assert isinstance(table.last_payload, dict)
    assert table.last_payload["upload_status"] == "COMPLETED"
    assert table.last_payload["uploaded_at"] == "2024-09-14T00:00:00+00:00"

    assert repository.count_with_original_name(session_db_id, "a.jpg", created.id) == 2
    assert ("neq", "id", upload_id) in table.last_filters


def test_upload_repository_list_by_status() -> None:
    client = FakeSupabaseClient()
    table = client.table("uploads")
    session_db_id = uuid4()
    table.queue(
        "select",
        [
            {
                "id": str(uuid4()),
                "session_id": str(session_db_id),
                "original_name": "a.jpg",
                "file_reference": "file-1",
                "upload_status": "FAILED",
                "uploaded_by": 7,
                "error_message": "boom",
                "uploaded_at": None,
            }
        ],
    )

    uploads = SupabaseUploadRepository(client).list_by_status(
        session_db_id, [UploadStatus.FAILED]
    )

    assert [upload.error_message for upload in uploads] == ["boom"]
    assert ("in", "upload_status", ["FAILED"]) in table.last_filters


def test_access_lock_repository() -> None:
    client = FakeSupabaseClient()
    table = client.table("access_locks")
    lock_id = str(uuid4())
    table.queue(
        "insert",
        [
            {
                "id": lock_id,
                "session_id": "DCM-0914-01",
                "user_id": 7,
                "failed_attempts": 1,
            }
        ],
    )
    table.queue(
        "select",
        [
            {
                "id": lock_id,
                "session_id": "DCM-0914-01",
                "user_id": 7,
                "failed_attempts": 3,
                "locked_until": "2024-09-14T10:45:00+00:00",
            }
        ],
    )
    repository = SupabaseAccessLockRepository(client)

    created = repository.create_lock("DCM-0914-01", 7)
    assert created.failed_attempts == 1
    assert created.locked_until is None

    locked_until = datetime(2024, 9, 14, 10, 45, tzinfo=UTC)
    repository.update_lock("DCM-0914-01", 7, 3, locked_until)
    assert table.last_payload == {
        "failed_attempts": 3,
        "locked_until": "2024-09-14T10:45:00+00:00",
    }

    fetched = repository.get_lock("DCM-0914-01", 7)
    assert fetched is not None
    assert fetched.locked_until == locked_until
    assert repository.get_lock("DCM-0914-01", 8) is None


def test_admin_credential_repository() -> None:
    client = FakeSupabaseClient()
    table = client.table("admin_credentials")
    table.queue("insert", [{"user_id": 1, "master_key": "iv:tag:cipher"}])
    table.queue("select", [{"user_id": 1, "master_key": "iv:tag:cipher"}])
    repository = SupabaseAdminCredentialRepository(client)

    created = repository.create_admin(1, "iv:tag:cipher")
    fetched = repository.get_admin(1)

    assert table.last_filters == [("eq", "user_id", 1)]
    assert created.encrypted_master_key == "iv:tag:cipher"
    assert fetched == created
