from __future__ import annotations

import logging
import mimetypes
import time
from dataclasses import dataclass
from urllib.parse import quote

import httpx

from novelnest.core.config import Settings
from novelnest.core.errors import ConflictError, RemoteFailure
from novelnest.services.backend import TokenGetter

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Upload:
    filename: str
    data: bytes
    media_type: str = ""

    @property
    def extension(self) -> str:
        _, dot, ext = self.filename.rpartition(".")
        return ext.lower() if dot else ""

    def content_type(self) -> str:
        if self.media_type:
            return self.media_type
        guessed, _ = mimetypes.guess_type(self.filename)
        return guessed or "application/octet-stream"


def timestamped_name(filename: str, *, now: float | None = None) -> str:
    stamp = int((now if now is not None else time.time()) * 1000)
    return f"{stamp}-{filename}"


class StorageClient:
    """Bucket uploads and public URLs on the hosted object storage."""

    def __init__(
        self,
        settings: Settings,
        *,
        http: httpx.AsyncClient,
        token_getter: TokenGetter | None = None,
    ) -> None:
        self.settings = settings
        self._http = http
        self._token_getter = token_getter

    def _headers(self, media_type: str) -> dict[str, str]:
        token = self._token_getter() if self._token_getter else None
        return {
            "apikey": self.settings.supabase_anon_key,
            "Authorization": f"Bearer {token or self.settings.supabase_anon_key}",
            "Content-Type": media_type,
            "x-upsert": "false",
        }

    def make_public_url(self, bucket: str, object_key: str) -> str:
        return f"{self.settings.storage_url}/object/public/{bucket}/{quote(object_key)}"

    async def upload(self, bucket: str, object_key: str, upload: Upload) -> str:
        url = f"{self.settings.storage_url}/object/{bucket}/{quote(object_key)}"
        try:
            res = await self._http.post(url, content=upload.data, headers=self._headers(upload.content_type()))
        except httpx.HTTPError as exc:
            logger.error("Upload to %s/%s failed: %s", bucket, object_key, exc)
            raise RemoteFailure(f"Upload failed: {exc}") from exc

        if res.status_code == 409:
            raise ConflictError(f"{object_key} already exists in {bucket}")
        if res.status_code >= 400:
            logger.error("Upload to %s/%s rejected: %s %s", bucket, object_key, res.status_code, res.text)
            raise RemoteFailure(f"Upload rejected ({res.status_code})", status_code=res.status_code)

        logger.info("Uploaded %s (%d bytes) to bucket %s", object_key, len(upload.data), bucket)
        return self.make_public_url(bucket, object_key)
