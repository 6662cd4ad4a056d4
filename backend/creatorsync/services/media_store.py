"""
Permanent media storage backends.

SupabaseMediaStore talks to the Supabase Storage REST API; LocalMediaStore
writes under a directory that the web server exposes at a public base URL.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse

import httpx

from creatorsync.errors import MediaUploadError, SyncConfigError
from creatorsync.settings import Settings

logger = logging.getLogger(__name__)


class MediaStore(Protocol):
    permanent_host: str

    def is_permanent(self, url: str) -> bool: ...

    async def upload(self, path: str, data: bytes, content_type: str) -> str: ...

    async def aclose(self) -> None: ...


class _HostMatchMixin:
    permanent_host: str

    def is_permanent(self, url: str) -> bool:
        return bool(self.permanent_host) and self.permanent_host in url


class SupabaseMediaStore(_HostMatchMixin):
    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str = "images",
        *,
        client: httpx.AsyncClient | None = None,
        timeout_s: float = 60.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.permanent_host = urlparse(self.base_url).netloc
        self._service_key = service_key
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        resp = await self._client.post(
            f"{self.base_url}/storage/v1/object/{self.bucket}/{path}",
            content=data,
            headers={
                "Authorization": f"Bearer {self._service_key}",
                "apikey": self._service_key,
                "Content-Type": content_type,
                "x-upsert": "false",
            },
        )
        if resp.status_code >= 400:
            raise MediaUploadError(f"Supabase upload failed ({resp.status_code}): {resp.text[:200]}")
        return self.public_url(path)

    async def aclose(self) -> None:
        await self._client.aclose()


class LocalMediaStore(_HostMatchMixin):
    def __init__(self, root_dir: str | Path, public_base_url: str) -> None:
        self.root_dir = Path(root_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self.permanent_host = urlparse(self.public_base_url).netloc

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        if ".." in Path(path).parts:
            raise MediaUploadError(f"Invalid media path: {path}")
        dest = self.root_dir / path
        try:
            await asyncio.to_thread(dest.parent.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(dest.write_bytes, data)
        except OSError as exc:
            raise MediaUploadError(f"Local write failed: {exc}") from exc
        return f"{self.public_base_url}/{path}"

    async def aclose(self) -> None:
        return None


def build_media_store(settings: Settings) -> SupabaseMediaStore | LocalMediaStore:
    backend = (settings.media_backend or "").lower()
    if backend == "local":
        return LocalMediaStore(settings.media_local_dir, settings.media_public_base_url)
    if backend == "supabase":
        if not settings.supabase_url or not settings.supabase_service_key:
            raise SyncConfigError("SUPABASE_URL / SUPABASE_SERVICE_KEY missing")
        return SupabaseMediaStore(settings.supabase_url, settings.supabase_service_key, settings.supabase_bucket)
    raise SyncConfigError(f"Unknown MEDIA_BACKEND: {settings.media_backend}")
