"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from upload_bot.adapters.b2_client import HttpxB2Api
from upload_bot.adapters.supabase_access_repository import (
    SupabaseAccessLockRepository,
    SupabaseAdminCredentialRepository,
)
from upload_bot.adapters.supabase_session_repository import (
    SupabaseSessionRepository,
)
from upload_bot.adapters.supabase_upload_repository import SupabaseUploadRepository
from upload_bot.adapters.telegram_client import (
    HttpxTelegramClient,
    TelegramClient,
)
from upload_bot.adapters.telegram_file_client import (
    HttpxTelegramFileClient,
    TelegramFileClient,
)
from upload_bot.config import Settings, parse_user_ids
from upload_bot.services.access import AccessGuard
from upload_bot.services.admin import AdminService
from upload_bot.services.batch import BatchService
from upload_bot.services.commands import BotHandler
from upload_bot.services.conversation import (
    ConversationStore,
    InMemoryConversationStore,
)
from upload_bot.services.sessions import SessionService
from upload_bot.services.storage import StorageService
from upload_bot.services.uploads import UploadService
from upload_bot.services.vault import CredentialVault


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    telegram_client: TelegramClient
    telegram_file_client: TelegramFileClient
    session_service: SessionService
    access_guard: AccessGuard
    storage_service: StorageService
    upload_service: UploadService
    batch_service: BatchService
    admin_service: AdminService
    conversations: ConversationStore
    bot_handler: BotHandler
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    session_repository = SupabaseSessionRepository(supabase_client)
    upload_repository = SupabaseUploadRepository(supabase_client)
    lock_repository = SupabaseAccessLockRepository(supabase_client)
    admin_repository = SupabaseAdminCredentialRepository(supabase_client)

    vault = CredentialVault(resolved_settings.encryption_key)
    telegram_client = HttpxTelegramClient.create(resolved_settings.telegram_bot_token)
    telegram_file_client = HttpxTelegramFileClient.create(
        resolved_settings.telegram_bot_token
    )
    b2_api = HttpxB2Api.create(
        application_key_id=resolved_settings.b2_application_key_id,
        application_key=resolved_settings.b2_application_key,
    )

    session_service = SessionService(
        repository=session_repository,
        vault=vault,
        timezone=resolved_settings.session_timezone,
    )
    access_guard = AccessGuard(
        session_service=session_service,
        lock_repository=lock_repository,
        admin_repository=admin_repository,
        vault=vault,
    )
    storage_service = StorageService(
        api=b2_api,
        bucket_name=resolved_settings.b2_bucket_name,
        fallback_bucket_id=resolved_settings.b2_bucket_id,
        download_url=resolved_settings.b2_download_url,
    )
    upload_service = UploadService(
        repository=upload_repository,
        file_client=telegram_file_client,
        storage=storage_service,
        session_service=session_service,
    )
    batch_service = BatchService(
        upload_service=upload_service, session_service=session_service
    )
    admin_service = AdminService(
        admin_repository=admin_repository,
        session_service=session_service,
        storage=storage_service,
        vault=vault,
        admin_user_ids=parse_user_ids(resolved_settings.telegram_admin_user_ids)
        or set(),
    )
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
        await telegram_client.close()
        await telegram_file_client.close()
        await b2_api.close()

    return AppContainer(
        settings=resolved_settings,
        telegram_client=telegram_client,
        telegram_file_client=telegram_file_client,
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
