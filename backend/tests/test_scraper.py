"""Parsing raw TikTok scraper records."""

from datetime import datetime, timezone

from creatorsync.services.scraper import parse_tiktok_item, parse_tiktok_items

RAW_ITEM = {
    "id": "7301234567890",
    "text": "My morning routine #fyp",
    "createTime": 1700000000,
    "authorMeta": {"name": "creator", "avatar": "https://p16.tiktokcdn.test/avatar.jpeg", "fans": 1200, "heart": 5400},
    "playCount": 15000,
    "diggCount": 900,
    "commentCount": 31,
    "shareCount": 12,
    "collectCount": 44,
    "videoMeta": {"coverUrl": "https://p16-sign.tiktokcdn.test/cover.jpeg", "originalCoverUrl": "https://p16.test/orig.jpeg"},
    "webVideoUrl": "https://www.tiktok.com/@creator/video/7301234567890",
}


def test_parse_full_item():
    item = parse_tiktok_item(RAW_ITEM)

    assert item.external_id == "7301234567890"
    assert item.raw_text == "My morning routine #fyp"
    assert item.published_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)
    assert item.author.name == "creator"
    assert item.author_stats.followers == 1200
    assert item.author_stats.total_likes == 5400
    assert item.engagement.views == 15000
    assert item.engagement.saves == 44
    assert item.cover_url == "https://p16-sign.tiktokcdn.test/cover.jpeg"
    assert item.media_urls[1] == "https://p16.test/orig.jpeg"
    assert item.permalink.endswith("/video/7301234567890")


def test_slideshow_covers_come_first():
    raw = dict(RAW_ITEM, covers=["https://p16.test/slide-1.jpeg", "https://p16.test/slide-2.jpeg"])
    item = parse_tiktok_item(raw)
    assert item.media_urls[:2] == ("https://p16.test/slide-1.jpeg", "https://p16.test/slide-2.jpeg")


def test_counters_fall_back_to_stats_block():
    raw = {"id": 42, "stats": {"playCount": "77", "diggCount": 5}}
    item = parse_tiktok_item(raw)
    assert item.external_id == "42"
    assert item.engagement.views == 77
    assert item.engagement.likes == 5
    assert item.engagement.comments == 0
    assert item.author is None


def test_iso_publish_time_when_unix_missing():
    item = parse_tiktok_item({"id": "1", "createTimeISO": "2026-03-01T12:00:00.000Z"})
    assert item.published_at == datetime(2026, 3, 1, 12, tzinfo=timezone.utc)


def test_items_without_id_are_dropped():
    items = parse_tiktok_items([RAW_ITEM, {"text": "no id"}, "garbage", {"id": "2"}])
    assert [i.external_id for i in items] == ["7301234567890", "2"]


def test_zero_followers_is_kept():
    raw = dict(RAW_ITEM, authorMeta={"name": "creator", "fans": 0, "followerCount": 50, "heart": 0})
    item = parse_tiktok_item(raw)
    assert item.author_stats.followers == 0
    assert item.author_stats.total_likes == 0


def test_follower_count_fallback():
    raw = dict(RAW_ITEM, authorMeta={"name": "creator", "followerCount": "50"})
    assert parse_tiktok_item(raw).author_stats.followers == 50


def test_single_cover_string_is_one_url():
    raw = dict(RAW_ITEM, covers="https://p16.test/only.jpeg")
    item = parse_tiktok_item(raw)
    assert item.media_urls[0] == "https://p16.test/only.jpeg"
    assert all(url.startswith("https://") for url in item.media_urls)
