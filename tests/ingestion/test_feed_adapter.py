from __future__ import annotations

from datetime import datetime, timezone

import pytest

from ingestion.connectors.base import ParseError
from ingestion.connectors.feed import FeedAdapter, clean_text, parse_coordinates, parse_district, strip_html
from ingestion.models.domain import Category, Severity, SourceDTO, SourceKind

RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>City alerts</title>
    <link>https://alerts.example.com</link>
    <description>Alerts</description>
    <item>
      <guid>alert-1</guid>
      <title>  Road   closed on Abay avenue </title>
      <link>https://alerts.example.com/1</link>
      <description>&lt;p&gt;Lane &lt;b&gt;closed&lt;/b&gt;&lt;/p&gt;</description>
      <category>Almaly - Traffic Warning</category>
      <pubDate>Wed, 15 Jan 2025 09:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Water supply interrupted</title>
      <link>https://alerts.example.com/2</link>
      <category>Utility</category>
    </item>
  </channel>
</rss>
"""


def _source(**config) -> SourceDTO:
    return SourceDTO(
        id="city-feed",
        name="City alerts",
        kind=SourceKind.FEED,
        url="https://alerts.example.com/rss",
        polling_interval_seconds=300,
        config=config,
    )


def test_parse_xml_feed_and_normalize(app_env):
    adapter = FeedAdapter(_source(), app_env)

    items = adapter.parse_xml_feed(RSS)
    events = [adapter.normalize(item) for item in items]

    assert len(events) == 2
    first = events[0]
    assert first.original_id == "alert-1"
    assert first.title == "Road closed on Abay avenue"
    assert first.description == "Lane closed"
    assert first.category == Category.TRAFFIC
    assert first.severity == Severity.HIGH
    assert first.district == "almaly"
    assert first.origin_url == "https://alerts.example.com/1"
    assert first.start_time == datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


def test_item_without_date_has_no_start_time(app_env):
    adapter = FeedAdapter(_source(), app_env)

    second = adapter.normalize(adapter.parse_xml_feed(RSS)[1])

    assert second.start_time is None
    assert second.category == Category.UTILITY
    assert second.severity == Severity.LOW
    assert second.original_id == "https://alerts.example.com/2"


def test_garbage_feed_is_parse_error(app_env):
    adapter = FeedAdapter(_source(), app_env)

    with pytest.raises(ParseError):
        adapter.parse_xml_feed(b"<<<not xml at all")


def test_json_feed_items(app_env):
    adapter = FeedAdapter(_source(), app_env)
    payload = {
        "version": "https://jsonfeed.org/version/1.1",
        "items": [
            {
                "id": "j-1",
                "url": "https://alerts.example.com/j-1",
                "title": "Flood warning",
                "content_html": "<p>River rising</p>",
                "date_published": "2025-01-15T10:30:00Z",
                "tags": ["Flood Warning"],
                "point": "43.25,76.95",
            },
            {"title": "No id, no link", "date_published": "2025-01-15T11:00:00"},
        ],
    }

    first, second = [adapter.normalize(item) for item in adapter.parse_json_feed(payload)]

    assert first.category == Category.WEATHER
    assert first.severity == Severity.HIGH
    assert first.description == "River rising"
    assert (first.latitude, first.longitude) == (43.25, 76.95)
    assert first.start_time == datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)
    assert second.original_id.startswith("title_") and len(second.original_id) == len("title_") + 16
    # Naive times are read in the feed's configured zone (UTC by default).
    assert second.start_time == datetime(2025, 1, 15, 11, 0, tzinfo=timezone.utc)


def test_untitled_item_gets_default_title(app_env):
    adapter = FeedAdapter(_source(), app_env)

    event = adapter.normalize({"guid": "x", "published": "2025-01-15T10:00:00Z"})

    assert event.title == "Untitled Alert"
    assert event.category == Category.OTHER


def test_helpers():
    assert clean_text("a\n  b\tc") == "a b c"
    assert len(clean_text("x" * 900)) == 500
    assert strip_html(None) == ""
    assert len(strip_html("<p>" + "y" * 6000 + "</p>")) == 5000
    assert parse_coordinates({"geo_lat": "43.2", "geo_long": "76.9"}) == (43.2, 76.9)
    assert parse_coordinates({"point": "43.2 76.9"}) == (43.2, 76.9)
    assert parse_coordinates({"point": "garbage"}) == (None, None)
    assert parse_district("Medeu District - Safety") == "medeu_district"
    assert parse_district("Safety") is None
