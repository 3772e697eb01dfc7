"""Telegram API client adapter."""

from dataclasses import dataclass
from typing import Protocol

import httpx


class TelegramClient(Protocol):
    """Interface for Telegram API interactions."""

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: dict | None = None,
        parse_mode: str | None = None,
    ) -> int | None:
        """Send a text message and return its message id."""

    async def edit_message_text(
        self, chat_id: int, message_id: int, text: str
    ) -> None:
        """Replace the text of a sent message."""

    async def answer_callback_query(
        self, callback_query_id: str, text: str | None = None
    ) -> None:
        """Answer a Telegram callback query."""

    async def set_my_commands(self, commands: list[dict[str, str]]) -> None:
        """Set the bot command list."""

    async def set_chat_menu_button(
        self, menu_button: dict[str, object] | None = None
    ) -> None:
        """Set the chat menu button."""


@dataclass
class HttpxTelegramClient:
    """Telegram client implemented with httpx."""

    bot_token: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, bot_token: str) -> "HttpxTelegramClient":
        """Create a Telegram client with a managed httpx session."""
        return cls(bot_token=bot_token, http_client=httpx.AsyncClient())

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: dict | None = None,
        parse_mode: str | None = None,
    ) -> int | None:
        """Send a message using Telegram's sendMessage API."""
        payload: dict[str, object] = {"chat_id": chat_id, "text": text}
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        if parse_mode is not None:
            payload["parse_mode"] = parse_mode
        result = await self._post("sendMessage", payload)
        if isinstance(result, dict):
            return result.get("message_id")
        return None

    async def edit_message_text(
        self, chat_id: int, message_id: int, text: str
    ) -> None:
        """Edit a message using Telegram's editMessageText API."""
        await self._post(
            "editMessageText",
            {"chat_id": chat_id, "message_id": message_id, "text": text},
        )

    async def answer_callback_query(
        self, callback_query_id: str, text: str | None = None
    ) -> None:
        """Answer a callback query using Telegram's API."""
        payload: dict[str, object] = {"callback_query_id": callback_query_id}
        if text is not None:
            payload["text"] = text
        await self._post("answerCallbackQuery", payload)

    async def set_my_commands(self, commands: list[dict[str, str]]) -> None:
        """Set the bot command list."""
        await self._post("setMyCommands", {"commands": commands})

    async def set_chat_menu_button(
        self, menu_button: dict[str, object] | None = None
    ) -> None:
        """Set the chat menu button."""
        await self._post(
            "setChatMenuButton", {"menu_button": menu_button or {"type": "commands"}}
        )

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()

    async def _post(self, method: str, payload: dict[str, object]) -> object:
        url = f"https://api.telegram.org/bot{self.bot_token}/{method}"
        response = await self.http_client.post(url, json=payload, timeout=10)
        response.raise_for_status()
        return response.json().get("result")
