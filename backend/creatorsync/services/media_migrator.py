"""
Copy expiring CDN media (TikTok covers/avatars carry x-expires signatures)
into permanent storage.

Each source URL is migrated at most once per migrator instance. Failures are
soft: the caller gets None and keeps the original URL.
"""
from __future__ import annotations

import asyncio
import logging
import uuid

import httpx

from creatorsync.errors import MediaUploadError
from creatorsync.services.media_store import MediaStore

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; CreatorSyncMediaFetcher/1.0)"
DEFAULT_CONTENT_TYPE = "image/jpeg"

_EXTENSIONS = {
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/heic": "heic",
    "video/mp4": "mp4",
}


def extension_for(content_type: str) -> str:
    return _EXTENSIONS.get(content_type, "jpg")


def _content_type(resp: httpx.Response) -> str:
    raw = resp.headers.get("Content-Type") or DEFAULT_CONTENT_TYPE
    return raw.split(";", 1)[0].strip().lower() or DEFAULT_CONTENT_TYPE


class AssetMigrator:
    def __init__(
        self,
        store: MediaStore,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_s: float = 30.0,
        retries: int = 2,
        backoff_s: float = 1.5,
    ) -> None:
        self.store = store
        self.retries = retries
        self.backoff_s = backoff_s
        self._own_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout_s,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT, "Accept": "image/*,video/*;q=0.8,*/*;q=0.5"},
        )
        self._results: dict[str, asyncio.Future] = {}

    async def __aenter__(self) -> "AssetMigrator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel migrations still in flight, then release the client."""
        pending = [future for future in self._results.values() if not future.done()]
        for future in pending:
            future.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"[media] Cancelled {len(pending)} unfinished migrations")
        if self._own_client:
            await self._client.aclose()

    async def migrate(self, url: str | None, *, folder: str = "media") -> str | None:
        """Return a permanent URL for `url`, or None if migration failed."""
        if not url:
            return None
        if self.store.is_permanent(url):
            return url
        pending = self._results.get(url)
        if pending is None:
            pending = asyncio.ensure_future(self._migrate(url, folder))
            self._results[url] = pending
        return await asyncio.shield(pending)

    async def _fetch(self, url: str) -> httpx.Response | None:
        for attempt in range(1, self.retries + 2):
            try:
                resp = await self._client.get(url)
            except httpx.HTTPError as exc:
                logger.warning(f"[media] Fetch attempt {attempt} failed for {url[:100]}: {exc}")
            else:
                if resp.is_success:
                    return resp
                if resp.status_code < 500:
                    logger.warning(f"[media] Fetch failed with status {resp.status_code}: {url[:100]}")
                    return None
                logger.warning(f"[media] Fetch attempt {attempt} got {resp.status_code}: {url[:100]}")
            if attempt <= self.retries:
                await asyncio.sleep(self.backoff_s * attempt)
        return None

    async def _migrate(self, url: str, folder: str) -> str | None:
        resp = await self._fetch(url)
        if resp is None:
            return None

        content_type = _content_type(resp)
        path = f"{folder.strip('/')}/{uuid.uuid4().hex}.{extension_for(content_type)}"
        try:
            permanent = await self.store.upload(path, resp.content, content_type)
        except (MediaUploadError, httpx.HTTPError) as exc:
            logger.error(f"[media] Upload failed for {url[:100]}: {exc}")
            return None
        logger.info(f"[media] Migrated {url[:60]}… -> {permanent}")
        return permanent
