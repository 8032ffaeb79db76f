from __future__ import annotations

from typing import Optional
from urllib.parse import quote

import requests

from ..utils.logging import get_logger

logger = get_logger("digest.output.storage")


class StorageError(Exception):
    """A storage request failed (network error or unexpected status)."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class StorageAuthError(StorageError):
    """The storage backend rejected the service key (HTTP 401/403)."""


class SupabaseStorageClient:
    """Minimal client for the Supabase Storage REST API.

    Objects are written with ``x-upsert: true`` so publishing the same path
    again overwrites it.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str,
        *,
        timeout: float = 30.0,
        dry_run: bool = False,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.timeout = timeout
        self.dry_run = dry_run

    def _headers(self, content_type: Optional[str] = None) -> dict:
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _object_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(path.lstrip('/'))}"

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(path.lstrip('/'))}"

    @staticmethod
    def _raise_for_status(resp: requests.Response, action: str, path: str) -> None:
        if resp.status_code in (401, 403):
            raise StorageAuthError(f"{action} {path} rejected with HTTP {resp.status_code}", status=resp.status_code)
        if resp.status_code >= 400:
            raise StorageError(
                f"{action} {path} failed with HTTP {resp.status_code}: {resp.text[:200]}", status=resp.status_code
            )

    def upload(self, path: str, data: bytes, content_type: str = "text/markdown; charset=utf-8") -> str:
        """Create or overwrite the object at ``path``; return its public URL."""
        if self.dry_run:
            logger.info("[DRY-RUN] Would upload %d bytes to %s/%s", len(data), self.bucket, path)
            return self.public_url(path)
        headers = self._headers(content_type)
        headers["x-upsert"] = "true"
        try:
            resp = requests.post(self._object_url(path), data=data, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise StorageError(f"upload {path} failed: {exc}") from exc
        self._raise_for_status(resp, "upload", path)
        logger.debug("Uploaded %s (%d bytes)", path, len(data))
        return self.public_url(path)

    def download(self, path: str) -> Optional[bytes]:
        """Return the object's bytes, or None when it does not exist."""
        try:
            resp = requests.get(self._object_url(path), headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise StorageError(f"download {path} failed: {exc}") from exc
        # Supabase answers 400 "Object not found" as well as 404
        if resp.status_code in (400, 404):
            return None
        self._raise_for_status(resp, "download", path)
        return resp.content
