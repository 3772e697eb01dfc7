"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from upload_bot.api.admin import router as admin_router
from upload_bot.api.telegram_models import (
    TelegramMessage,
    TelegramPhotoSize,
    TelegramUpdate,
)
from upload_bot.app_logging import configure_logging
from upload_bot.config import parse_user_ids
from upload_bot.containers import AppContainer
from upload_bot.domain.uploads import BatchItem
from upload_bot.telegram_commands import CHAT_MENU_BUTTON, BotCommand, telegram_commands


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)
    allowed_user_ids = parse_user_ids(container.settings.telegram_allowed_user_ids)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        try:
            await state_container.telegram_client.set_my_commands(telegram_commands())
            await state_container.telegram_client.set_chat_menu_button(
                CHAT_MENU_BUTTON
            )
        except Exception:
            logger.exception("Failed to sync Telegram bot commands")
        try:
            created = state_container.admin_service.seed_admins()
        except Exception:
            logger.exception("Failed to seed admin credentials")
        else:
            for user_id in created:
                logger.warning(
                    "Admin credential created for %s; send /masterkey to view it",
                    user_id,
                )
        yield
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/telegram/webhook")
    async def telegram_webhook(
        update: TelegramUpdate, request: Request
    ) -> dict[str, str]:
        """Handle Telegram webhook updates."""
        state_container: AppContainer = request.app.state.container
        if update.callback_query:
            await state_container.telegram_client.answer_callback_query(
                update.callback_query.id
            )
            return {"status": "ok"}

        message = update.message
        if message is None:
            return {"status": "ok"}
        user_id = message.from_user.id
        chat_id = message.chat.id
        if not _is_user_allowed(
            user_id,
            allowed_user_ids,
            state_container.admin_service.is_admin(user_id),
        ):
            await state_container.telegram_client.send_message(
                chat_id=chat_id, text="This bot is private."
            )
            return {"status": "ok"}

        handler = state_container.bot_handler
        try:
            if message.text and message.text.startswith("/"):
                command = BotCommand.from_text(message.text)
                if command is None:
                    await state_container.telegram_client.send_message(
                        chat_id=chat_id, text="Unknown command. Send /help."
                    )
                    return {"status": "ok"}
                _, _, argument = message.text.partition(" ")
                await handler.handle_command(user_id, chat_id, command, argument)
            elif message.photo or message.document:
                item = _extract_file(message)
                if item is None:
                    await state_container.telegram_client.send_message(
                        chat_id=chat_id,
                        text="Only images can be uploaded. Send a JPG or PNG.",
                    )
                    return {"status": "ok"}
                await handler.handle_file(user_id, chat_id, item)
            elif message.text:
                await handler.handle_text(user_id, chat_id, message.text)
        except Exception as exc:
            logger.exception(
                "Failed to handle Telegram update",
                extra={"update_id": update.update_id, "user_id": user_id},
            )
            await state_container.telegram_client.send_message(
                chat_id=chat_id,
                text=_format_error(
                    state_container, exc, "Something went wrong. Please try again."
                ),
            )
        return {"status": "ok"}

    return app


def _select_largest_photo(photos: list[TelegramPhotoSize]) -> TelegramPhotoSize:
    """Select the largest photo size from the Telegram payload."""
    return max(photos, key=lambda photo: (photo.width * photo.height))


def _extract_file(message: TelegramMessage) -> BatchItem | None:
    """Return the uploadable file in a message, or None for non-images."""
    if message.photo:
        photo = _select_largest_photo(message.photo)
        return BatchItem(
            file_reference=photo.file_id,
            file_name=f"photo_{message.date}_{message.message_id}.jpg",
        )
    document = message.document
    if document is None:
        return None
    if not (document.mime_type or "").startswith("image/"):
        return None
    return BatchItem(
        file_reference=document.file_id,
        file_name=document.file_name or f"document_{message.date}.jpg",
        is_document=True,
    )


def _is_user_allowed(user_id: int, allowed: set[int] | None, is_admin: bool) -> bool:
    """Return true when the user is allowed to interact with the bot."""
    return is_admin or allowed is None or user_id in allowed


def _format_error(state_container: AppContainer, exc: Exception, fallback: str) -> str:
    """Return a user-facing error message with local debug info."""
    if state_container.settings.environment == "local":
        detail = f"{type(exc).__name__}: {exc}".strip()
        if detail:
            return f"{fallback} (debug: {detail})"
    return fallback
