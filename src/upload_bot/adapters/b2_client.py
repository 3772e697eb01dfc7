"""Backblaze B2 native API client."""

from dataclasses import dataclass
from typing import Protocol
from urllib.parse import quote

import httpx

from upload_bot.domain.errors import TransientProviderError
from upload_bot.domain.storage import (
    B2Authorization,
    FileListPage,
    StoredObject,
    UploadTarget,
)

B2_AUTHORIZE_URL = "https://api.backblazeb2.com/b2api/v2/b2_authorize_account"


class B2Api(Protocol):
    """Interface for the B2 wire operations."""

    async def authorize(self) -> B2Authorization:
        """Authorize the account and return a session token."""

    async def get_bucket_id(
        self, auth: B2Authorization, bucket_name: str
    ) -> str | None:
        """Return the bucket id for a bucket name, if found."""

    async def get_upload_url(
        self, auth: B2Authorization, bucket_id: str
    ) -> UploadTarget:
        """Return a one-time upload URL for the bucket."""

    async def upload_file(  # noqa: PLR0913
        self,
        target: UploadTarget,
        file_name: str,
        data: bytes,
        content_sha1: str,
        mime_type: str,
    ) -> StoredObject:
        """Upload bytes to a one-time upload URL."""

    async def list_file_names(  # noqa: PLR0913
        self,
        auth: B2Authorization,
        bucket_id: str,
        prefix: str,
        start_file_name: str | None,
        max_file_count: int,
    ) -> FileListPage:
        """Return one page of file names under a prefix."""

    async def delete_file_version(
        self, auth: B2Authorization, file_id: str, file_name: str
    ) -> None:
        """Delete one file version."""

    async def get_file_info(self, auth: B2Authorization, file_id: str) -> StoredObject:
        """Return metadata for a stored file."""


@dataclass
class HttpxB2Api(B2Api):
    """B2 client implemented with httpx."""

    application_key_id: str
    application_key: str
    http_client: httpx.AsyncClient
    authorize_url: str = B2_AUTHORIZE_URL

    @classmethod
    def create(cls, application_key_id: str, application_key: str) -> "HttpxB2Api":
        """Create a B2 client with a managed httpx session."""
        return cls(
            application_key_id=application_key_id,
            application_key=application_key,
            http_client=httpx.AsyncClient(),
        )

    async def authorize(self) -> B2Authorization:
        """Call b2_authorize_account with basic auth."""
        payload = await self._send(
            "GET",
            self.authorize_url,
            auth=(self.application_key_id, self.application_key),
            timeout=15,
        )
        return B2Authorization(
            account_id=payload["accountId"],
            authorization_token=payload["authorizationToken"],
            api_url=payload["apiUrl"],
            download_url=payload["downloadUrl"],
        )

    async def get_bucket_id(
        self, auth: B2Authorization, bucket_name: str
    ) -> str | None:
        """Look up a bucket by name via b2_list_buckets."""
        payload = await self._call(
            auth,
            "b2_list_buckets",
            {"accountId": auth.account_id, "bucketName": bucket_name},
        )
        buckets = payload.get("buckets") or []
        if not buckets:
            return None
        return buckets[0].get("bucketId")

    async def get_upload_url(
        self, auth: B2Authorization, bucket_id: str
    ) -> UploadTarget:
        """Fetch a fresh upload URL via b2_get_upload_url."""
        payload = await self._call(auth, "b2_get_upload_url", {"bucketId": bucket_id})
        return UploadTarget(
            upload_url=payload["uploadUrl"],
            authorization_token=payload["authorizationToken"],
        )

    async def upload_file(  # noqa: PLR0913
        self,
        target: UploadTarget,
        file_name: str,
        data: bytes,
        content_sha1: str,
        mime_type: str,
    ) -> StoredObject:
        """Upload bytes with the SHA-1 checked by the provider."""
        payload = await self._send(
            "POST",
            target.upload_url,
            headers={
                "Authorization": target.authorization_token,
                "X-Bz-File-Name": quote(file_name, safe="/"),
                "Content-Type": mime_type,
                "X-Bz-Content-Sha1": content_sha1,
            },
            content=data,
            timeout=120,
        )
        return _stored_object(payload)

    async def list_file_names(  # noqa: PLR0913
        self,
        auth: B2Authorization,
        bucket_id: str,
        prefix: str,
        start_file_name: str | None,
        max_file_count: int,
    ) -> FileListPage:
        """List file names under a prefix via b2_list_file_names."""
        body: dict[str, object] = {
            "bucketId": bucket_id,
            "prefix": prefix,
            "maxFileCount": max_file_count,
        }
        if start_file_name:
            body["startFileName"] = start_file_name
        payload = await self._call(auth, "b2_list_file_names", body)
        return FileListPage(
            files=[_stored_object(row) for row in payload.get("files") or []],
            next_file_name=payload.get("nextFileName"),
        )

    async def delete_file_version(
        self, auth: B2Authorization, file_id: str, file_name: str
    ) -> None:
        """Delete a file version via b2_delete_file_version."""
        await self._call(
            auth,
            "b2_delete_file_version",
            {"fileId": file_id, "fileName": file_name},
        )

    async def get_file_info(self, auth: B2Authorization, file_id: str) -> StoredObject:
        """Fetch file metadata via b2_get_file_info."""
        payload = await self._call(auth, "b2_get_file_info", {"fileId": file_id})
        return _stored_object(payload)

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    async def _call(
        self, auth: B2Authorization, operation: str, body: dict[str, object]
    ) -> dict:
        return await self._send(
            "POST",
            f"{auth.api_url}/b2api/v2/{operation}",
            headers={"Authorization": auth.authorization_token},
            json=body,
            timeout=15,
        )

    async def _send(self, method: str, url: str, **kwargs: object) -> dict:
        try:
            response = await self.http_client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransientProviderError(f"B2 request failed: {exc}") from exc
        if response.is_error:
            raise TransientProviderError(
                _error_message(response), status_code=response.status_code
            )
        return response.json()


def _stored_object(row: dict) -> StoredObject:
    return StoredObject(
        file_id=row["fileId"],
        file_name=row["fileName"],
        content_length=int(row.get("contentLength") or 0),
        upload_timestamp=row.get("uploadTimestamp"),
        content_type=row.get("contentType"),
    )


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"B2 returned HTTP {response.status_code}"
    code = payload.get("code", "error")
    message = payload.get("message", "")
    return f"B2 returned HTTP {response.status_code}: {code} {message}".strip()
