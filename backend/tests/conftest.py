"""Shared test fixtures.

Provides:
  - Mock HTTP transports for httpx (queued responses or URL routing)
  - A throwaway SQLite database (aiosqlite) with all tables created
  - Factories for profiles, content records and scraped items
  - An in-memory media store
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from creatorsync.db import Base
from creatorsync.models import ContentOrigin, ContentRecord, CreatorProfile
from creatorsync.schemas import AuthorMeta, AuthorStats, EngagementCounters, ExternalItem
from creatorsync.settings import Settings

PERMANENT_HOST = "media.example.test"


class MockTransport(httpx.AsyncBaseTransport):
    """Mock HTTP transport that returns preconfigured responses.

    Each call to handle_async_request pops the next response from the list.
    If the list is exhausted, returns a 500 error.
    """

    def __init__(self, responses: list[httpx.Response] | None = None) -> None:
        self.responses = list(responses or [])
        self.requests: list[httpx.Request] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            response = self.responses.pop(0)
            response.stream = httpx.ByteStream(response.content)
            return response
        return httpx.Response(500, json={"error": "No more mock responses"})


class RoutingTransport(httpx.AsyncBaseTransport):
    """Mock transport answering by URL; unknown URLs get a 404.

    A route value can be a Response or a callable taking the request.
    """

    def __init__(self, routes: dict[str, httpx.Response | Callable[[httpx.Request], httpx.Response]] | None = None):
        self.routes = dict(routes or {})
        self.requests: list[httpx.Request] = []

    def calls_to(self, url: str) -> int:
        return sum(1 for r in self.requests if str(r.url) == url)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            return route(request)
        return httpx.Response(route.status_code, headers=route.headers, content=route.content)


class MemoryMediaStore:
    """MediaStore keeping uploads in a dict."""

    permanent_host = PERMANENT_HOST

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.uploads: dict[str, tuple[bytes, str]] = {}

    def is_permanent(self, url: str) -> bool:
        return self.permanent_host in url

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        from creatorsync.errors import MediaUploadError

        if self.fail:
            raise MediaUploadError("upload rejected")
        self.uploads[path] = (data, content_type)
        return f"https://{PERMANENT_HOST}/{path}"

    async def aclose(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'creatorsync.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def make_profile(session_factory):
    async def _make(**overrides) -> CreatorProfile:
        values = {"username": "creator", "display_name": "Creator", "sync_post_limit": 50}
        values.update(overrides)
        async with session_factory() as session:
            profile = CreatorProfile(**values)
            session.add(profile)
            await session.commit()
            return profile

    return _make


@pytest.fixture
def make_record(session_factory):
    async def _make(profile_id: int, **overrides) -> ContentRecord:
        values = {
            "profile_id": profile_id,
            "origin": ContentOrigin.authored.value,
            "status": "published",
        }
        values.update(overrides)
        async with session_factory() as session:
            record = ContentRecord(**values)
            session.add(record)
            await session.commit()
            return record

    return _make


@pytest.fixture
def fetch_record(session_factory):
    async def _fetch(record_id: int) -> ContentRecord:
        async with session_factory() as session:
            return await session.get(ContentRecord, record_id)

    return _fetch


# ---------------------------------------------------------------------------
# Domain objects
# ---------------------------------------------------------------------------


def make_item(
    external_id: str,
    text: str = "",
    *,
    published_at: datetime | None = None,
    views: int = 0,
    likes: int = 0,
    cover: str | None = None,
    author: bool = False,
) -> ExternalItem:
    return ExternalItem(
        external_id=external_id,
        raw_text=text,
        published_at=published_at,
        author=AuthorMeta(name="Creator Name", avatar_url="https://cdn.tiktok.test/avatar.jpg") if author else None,
        author_stats=AuthorStats(followers=1200, total_likes=5400) if author else AuthorStats(),
        engagement=EngagementCounters(views=views, likes=likes, comments=1, shares=2, saves=3),
        media_urls=(cover,) if cover else (),
        permalink=f"https://www.tiktok.com/@creator/video/{external_id}",
    )


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        apify_token="test-token",
        media_backend="local",
        sync_concurrency=1,
        sync_timeout_sec=60,
        scheduler_enabled=False,
    )


@pytest.fixture
def media_store() -> MemoryMediaStore:
    return MemoryMediaStore()
