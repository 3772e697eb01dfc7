"""Telegram file download client."""

from dataclasses import dataclass
from typing import Protocol

import httpx

from upload_bot.domain.errors import TerminalUploadError

_MIME_BY_EXTENSION = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}


@dataclass(frozen=True)
class DownloadedFile:
    """File bytes fetched from Telegram."""

    content: bytes
    file_path: str
    file_size: int
    mime_type: str


class TelegramFileClient(Protocol):
    """Interface for downloading Telegram files."""

    async def download_file(self, file_id: str) -> DownloadedFile:
        """Download a Telegram file and return its bytes and metadata."""


@dataclass
class HttpxTelegramFileClient(TelegramFileClient):
    """Telegram file client using httpx."""

    bot_token: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, bot_token: str) -> "HttpxTelegramFileClient":
        """Create a Telegram file client with a managed httpx session."""
        return cls(bot_token=bot_token, http_client=httpx.AsyncClient())

    async def download_file(self, file_id: str) -> DownloadedFile:
        """Resolve the file path via getFile and download the bytes."""
        get_file_url = f"https://api.telegram.org/bot{self.bot_token}/getFile"
        response = await self.http_client.get(
            get_file_url, params={"file_id": file_id}, timeout=10
        )
        if response.is_error:
            raise TerminalUploadError(
                f"Telegram getFile failed with HTTP {response.status_code}"
            )
        payload = response.json()
        if not payload.get("ok"):
            raise TerminalUploadError("Telegram getFile failed")
        result = payload.get("result") or {}
        file_path = result.get("file_path")
        if not file_path:
            raise TerminalUploadError("No file path returned from Telegram")
        download_url = f"https://api.telegram.org/file/bot{self.bot_token}/{file_path}"
        file_response = await self.http_client.get(download_url, timeout=60)
        if file_response.is_error:
            raise TerminalUploadError(
                f"Failed to download file: HTTP {file_response.status_code}"
            )
        content = file_response.content
        return DownloadedFile(
            content=content,
            file_path=file_path,
            file_size=len(content),
            mime_type=infer_mime_type(file_path),
        )

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()


def infer_mime_type(file_path: str) -> str:
    """Infer a MIME type from a Telegram file path, defaulting to JPEG."""
    _, _, extension = file_path.rpartition(".")
    return _MIME_BY_EXTENSION.get(extension.lower(), "image/jpeg")
