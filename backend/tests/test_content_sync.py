"""Full sync runs with a fake scraper and in-memory media store."""

import asyncio
from datetime import date, datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import func, select

from creatorsync.errors import ProviderError, SyncConfigError
from creatorsync.models import ContentRecord, CreatorProfile, MetricSnapshot
from creatorsync.services import content_sync
from creatorsync.services.content_sync import check_and_auto_sync, sync_due, sync_profile

from .conftest import PERMANENT_HOST, RoutingTransport, make_item, utc

AVATAR_URL = "https://cdn.tiktok.test/avatar.jpg"
TODAY = date(2026, 3, 2)


class FakeScraper:
    def __init__(self, items=None, error: Exception | None = None):
        self.items = items or []
        self.error = error
        self.calls = []

    async def __call__(self, handle, *, token, result_limit):
        self.calls.append({"handle": handle, "token": token, "result_limit": result_limit})
        if self.error:
            raise self.error
        return list(self.items)


@pytest.fixture
def media_client():
    return httpx.AsyncClient(transport=RoutingTransport({AVATAR_URL: httpx.Response(200, content=b"avatar")}))


@pytest.fixture
def run_sync(session_factory, media_store, media_client, settings):
    async def _run(profile_id, scraper, **kwargs):
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("media_client", media_client)
        return await sync_profile(
            session_factory,
            profile_id,
            fetch_items=scraper,
            media_store=media_store,
            today=TODAY,
            **kwargs,
        )

    return _run


async def _profile(session_factory, profile_id) -> CreatorProfile:
    async with session_factory() as session:
        return await session.get(CreatorProfile, profile_id)


async def _snapshots(session_factory, profile_id) -> dict[str, int]:
    async with session_factory() as session:
        rows = await session.scalars(select(MetricSnapshot).where(MetricSnapshot.profile_id == profile_id))
        return {row.metric: row.value for row in rows}


def _items():
    return [
        make_item("v1", "first post", views=100, likes=10, author=True),
        make_item("v2", "second post", views=300, likes=30),
    ]


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------


class TestConfigErrors:
    async def test_unknown_profile(self, run_sync):
        with pytest.raises(SyncConfigError) as exc_info:
            await run_sync(999, FakeScraper())
        assert exc_info.value.status_code == 404

    async def test_missing_token_fails_before_scraping(self, run_sync, make_profile, settings):
        profile = await make_profile()
        scraper = FakeScraper(_items())
        with pytest.raises(SyncConfigError):
            await run_sync(profile.id, scraper, settings=settings.model_copy(update={"apify_token": None}))
        assert scraper.calls == []

    async def test_missing_username(self, run_sync, make_profile):
        profile = await make_profile(username=None, display_name=None)
        with pytest.raises(SyncConfigError) as exc_info:
            await run_sync(profile.id, FakeScraper(_items()))
        assert exc_info.value.status_code == 400

    async def test_profile_token_overrides_settings(self, run_sync, make_profile):
        profile = await make_profile(apify_token="profile-token", username="@creator")
        scraper = FakeScraper(_items())
        await run_sync(profile.id, scraper)
        assert scraper.calls == [{"handle": "creator", "token": "profile-token", "result_limit": 50}]


# ---------------------------------------------------------------------------
# Provider failures
# ---------------------------------------------------------------------------


class TestProviderFailures:
    async def test_provider_error_reports_failure(self, run_sync, make_profile, session_factory):
        profile = await make_profile()
        result = await run_sync(profile.id, FakeScraper(error=ProviderError("Apify run failed", status="FAILED")))

        assert not result.success
        assert result.error == "Apify run failed"
        stored = await _profile(session_factory, profile.id)
        assert stored.sync_status == "error"
        assert stored.sync_error == "Apify run failed"
        assert stored.last_sync_at is None

    async def test_empty_dataset_writes_nothing(self, run_sync, make_profile, session_factory):
        profile = await make_profile()
        result = await run_sync(profile.id, FakeScraper([]))

        assert not result.success
        async with session_factory() as session:
            assert await session.scalar(select(func.count()).select_from(ContentRecord)) == 0
        assert await _snapshots(session_factory, profile.id) == {}

    async def test_missing_author_metadata(self, run_sync, make_profile):
        profile = await make_profile()
        result = await run_sync(profile.id, FakeScraper([make_item("v1", "post")]))
        assert not result.success
        assert "author" in result.error


# ---------------------------------------------------------------------------
# Successful runs
# ---------------------------------------------------------------------------


class TestSyncProfile:
    async def test_full_run(self, run_sync, make_profile, session_factory):
        profile = await make_profile()

        result = await run_sync(profile.id, FakeScraper(_items()))

        assert result.success
        assert (result.new_records, result.updated_records, result.skipped_records) == (2, 0, 0)
        assert result.model_dump(by_alias=True)["newRecords"] == 2

        stored = await _profile(session_factory, profile.id)
        assert stored.display_name == "Creator Name"
        assert stored.followers_count == 1200
        assert stored.likes_count == 5400
        assert stored.avatar_url.startswith(f"https://{PERMANENT_HOST}/avatars/{profile.id}/")
        assert stored.sync_status == "ok"
        assert stored.last_sync_at is not None

        assert await _snapshots(session_factory, profile.id) == {
            "followers": 1200,
            "total_views": 400,
            "total_likes": 40,
        }

    async def test_second_run_same_day_updates_snapshots(self, run_sync, make_profile, session_factory):
        profile = await make_profile()
        await run_sync(profile.id, FakeScraper(_items()))

        again = [
            make_item("v1", "first post", views=1000, likes=10, author=True),
            make_item("v2", "second post", views=300, likes=30),
        ]
        result = await run_sync(profile.id, FakeScraper(again))

        assert (result.new_records, result.updated_records) == (0, 2)
        snapshots = await _snapshots(session_factory, profile.id)
        assert snapshots["total_views"] == 1300
        async with session_factory() as session:
            assert await session.scalar(select(func.count()).select_from(MetricSnapshot)) == 3

    async def test_failed_avatar_keeps_stored_avatar(self, run_sync, make_profile, session_factory):
        profile = await make_profile(avatar_url="https://media.example.test/avatars/old.jpg")
        client = httpx.AsyncClient(transport=RoutingTransport())

        result = await run_sync(profile.id, FakeScraper(_items()), media_client=client)

        assert result.success
        stored = await _profile(session_factory, profile.id)
        assert stored.avatar_url == "https://media.example.test/avatars/old.jpg"

    async def test_only_top_posts_are_reconciled(self, run_sync, make_profile, session_factory):
        profile = await make_profile(sync_post_limit=10)
        items = [make_item("v0", "post 0", views=0, author=True)]
        items += [make_item(f"v{n}", f"post {n}", views=n) for n in range(1, 15)]

        result = await run_sync(profile.id, FakeScraper(items))

        assert result.new_records == 10
        async with session_factory() as session:
            stored = set(await session.scalars(select(ContentRecord.external_id)))
        assert stored == {f"v{n}" for n in range(5, 15)}

    async def test_authored_post_is_linked_not_duplicated(self, run_sync, make_profile, make_record, session_factory):
        profile = await make_profile()
        authored = await make_record(profile.id, body="first post", published_at=utc(2026, 3, 1))

        result = await run_sync(profile.id, FakeScraper(_items()))

        assert (result.new_records, result.updated_records) == (1, 1)
        async with session_factory() as session:
            record = await session.get(ContentRecord, authored.id)
        assert record.external_id == "v1"
        assert record.body == "first post"


# ---------------------------------------------------------------------------
# Deadlines and cancellation
# ---------------------------------------------------------------------------


class SlowCoverTransport(httpx.AsyncBaseTransport):
    """Serves the avatar at once and every other URL after `delay` seconds."""

    def __init__(self, delay: float) -> None:
        self.delay = delay

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) != AVATAR_URL:
            await asyncio.sleep(self.delay)
        return httpx.Response(200, content=b"img")


def _covered_items():
    return [
        make_item("v1", "first post", views=300, author=True, cover="https://cdn.tiktok.test/c1.jpg"),
        make_item("v2", "second post", views=200, cover="https://cdn.tiktok.test/c2.jpg"),
        make_item("v3", "third post", views=100, cover="https://cdn.tiktok.test/c3.jpg"),
    ]


async def _record_ids(session_factory):
    async with session_factory() as session:
        return set(await session.scalars(select(ContentRecord.external_id)))


class TestDeadlines:
    async def test_soft_deadline_stops_new_items(self, run_sync, make_profile, session_factory, settings):
        profile = await make_profile()

        result = await run_sync(
            profile.id,
            FakeScraper(_covered_items()),
            settings=settings.model_copy(update={"sync_timeout_sec": 0.05}),
            media_client=httpx.AsyncClient(transport=SlowCoverTransport(0.3)),
        )

        assert not result.success
        assert not result.cancelled
        assert (result.new_records, result.skipped_records) == (1, 2)
        assert await _record_ids(session_factory) == {"v1"}
        stored = await _profile(session_factory, profile.id)
        assert stored.sync_status == "partial"
        assert stored.last_sync_at is None
        assert await _snapshots(session_factory, profile.id) != {}

    async def test_hard_timeout_keeps_counts_so_far(
        self, run_sync, make_profile, session_factory, settings, monkeypatch
    ):
        monkeypatch.setattr(content_sync, "HARD_TIMEOUT_GRACE_S", 0.05)
        profile = await make_profile()
        items = [make_item("v0", "quick post", views=900)] + _covered_items()

        result = await run_sync(
            profile.id,
            FakeScraper(items),
            settings=settings.model_copy(update={"sync_timeout_sec": 0.05}),
            media_client=httpx.AsyncClient(transport=SlowCoverTransport(3600)),
        )

        assert not result.success
        assert (result.new_records, result.updated_records, result.skipped_records) == (1, 0, 3)
        assert await _record_ids(session_factory) == {"v0"}
        stored = await _profile(session_factory, profile.id)
        assert stored.sync_status == "partial"
        assert stored.last_sync_at is None

    async def test_caller_cancel_keeps_completed_writes(self, run_sync, make_profile, session_factory):
        profile = await make_profile()
        cancel = asyncio.Event()

        def cover(request):
            cancel.set()
            return httpx.Response(200, content=b"img")

        routes = {AVATAR_URL: httpx.Response(200, content=b"avatar")}
        routes.update({item.cover_url: cover for item in _covered_items()})

        result = await run_sync(
            profile.id,
            FakeScraper(_covered_items()),
            cancel_event=cancel,
            media_client=httpx.AsyncClient(transport=RoutingTransport(routes)),
        )

        assert result.cancelled
        assert (result.new_records, result.skipped_records) == (1, 2)
        assert await _record_ids(session_factory) == {"v1"}
        assert (await _profile(session_factory, profile.id)).sync_status == "partial"


# ---------------------------------------------------------------------------
# Auto-sync
# ---------------------------------------------------------------------------


class TestAutoSync:
    async def test_recent_sync_is_skipped(self, session_factory, make_profile, settings):
        now = datetime(2026, 3, 2, 12, tzinfo=timezone.utc)
        profile = await make_profile(last_sync_at=now - timedelta(minutes=90))

        result = await check_and_auto_sync(session_factory, profile.id, settings=settings, now=now)

        assert result.skipped
        assert not result.synced
        assert result.reason == "synced-90min-ago"

    async def test_due_profile_is_synced(self, session_factory, make_profile, settings, media_store, media_client):
        profile = await make_profile(last_sync_at=datetime(2026, 2, 1, tzinfo=timezone.utc))

        result = await check_and_auto_sync(
            session_factory,
            profile.id,
            settings=settings,
            fetch_items=FakeScraper(_items()),
            media_store=media_store,
            media_client=media_client,
        )

        assert result.synced
        assert result.new_records == 2
        assert result.updated_records == 0

    async def test_missing_key(self, session_factory, make_profile, settings):
        profile = await make_profile()
        result = await check_and_auto_sync(
            session_factory, profile.id, settings=settings.model_copy(update={"apify_token": None})
        )
        assert result.reason == "no-apify-key"

    async def test_missing_profile(self, session_factory, settings):
        result = await check_and_auto_sync(session_factory, 404, settings=settings)
        assert result.reason == "no-profile"

    async def test_failed_sync_reports_reason(self, session_factory, make_profile, settings, media_store):
        profile = await make_profile()
        result = await check_and_auto_sync(
            session_factory,
            profile.id,
            settings=settings,
            fetch_items=FakeScraper(error=ProviderError("Apify run timed out", status_code=504)),
            media_store=media_store,
        )
        assert not result.synced
        assert result.reason == "Apify run timed out"


def test_sync_due():
    now = utc(2026, 3, 2, 12)
    assert sync_due(None, timedelta(hours=24), now)
    assert sync_due(utc(2026, 3, 1, 12), timedelta(hours=24), now)
    assert not sync_due(utc(2026, 3, 1, 13), timedelta(hours=24), now)
    assert not sync_due(datetime(2026, 3, 2, 11), timedelta(hours=24), now)
