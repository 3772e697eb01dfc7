"""Telegram bot command configuration."""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class TelegramCommand:
    """Declarative bot command definition."""

    command: str
    description: str
    admin_only: bool = False


class BotCommand(Enum):
    """Enum of bot commands (single source of truth)."""

    START = TelegramCommand("start", "Welcome and quick start")
    HELP = TelegramCommand("help", "How uploading works")
    JOIN = TelegramCommand("join", "Join a session with its access key")
    STATS = TelegramCommand("stats", "Upload stats for the current session")
    LEAVE = TelegramCommand("leave", "Leave the current session")
    BATCH = TelegramCommand("batch", "Collect several photos, then upload")
    ENDBATCH = TelegramCommand("endbatch", "Finish collecting the batch")
    RETRY = TelegramCommand("retry", "Retry failed uploads")
    CANCEL = TelegramCommand("cancel", "Cancel the current step")
    NEW = TelegramCommand("new", "Create a session: /new PREFIX description", True)
    CLOSE = TelegramCommand("close", "Close the current session", True)
    ARCHIVE = TelegramCommand("archive", "Archive the current session", True)
    KEY = TelegramCommand("key", "Show the current session's access key", True)
    MASTERKEY = TelegramCommand("masterkey", "Show your admin master key", True)
    SESSIONS = TelegramCommand("sessions", "List sessions: /sessions [page]", True)
    DELETE = TelegramCommand("delete", "Delete a session and its files", True)

    @classmethod
    def from_text(cls, text: str) -> "BotCommand | None":
        """Return the command a message starts with, if any."""
        if not text.startswith("/"):
            return None
        head = text.split(maxsplit=1)[0][1:]
        name = head.split("@", maxsplit=1)[0].lower()
        for entry in cls:
            if entry.value.command == name:
                return entry
        return None


def telegram_commands() -> list[dict[str, str]]:
    """Return the public commands formatted for Telegram API."""
    return [
        {"command": entry.value.command, "description": entry.value.description}
        for entry in BotCommand
        if not entry.value.admin_only
    ]


CHAT_MENU_BUTTON: dict[str, object] = {"type": "commands"}
