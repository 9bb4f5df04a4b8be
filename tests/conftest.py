from datetime import datetime, timezone

import pytest
import requests
import yaml

from chapelsite.config import load_config
from chapelsite.context import BuildContext

SERMON_URL = "https://feeds.example.org/sermons.xml"
CALENDAR_URL = "https://calendar.example.org/church.ics"

# Monday noon UTC (8:00 AM in Detroit)
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


SERMON_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd"
     xmlns:content="http://purl.org/rss/1.0/modules/content/">
<channel>
  <title>Spencer Mills OPC Sermons</title>
  <link>https://church.example.org/sermons</link>
  <description>Sermons</description>
  <lastBuildDate>Sun, 18 Oct 2026 20:00:00 +0000</lastBuildDate>
  <item>
    <title>The Good Shepherd</title>
    <description>Sunday morning worship</description>
    <content:encoded><![CDATA[jn 10:1-18]]></content:encoded>
    <itunes:author>Rev. Smith</itunes:author>
    <itunes:subtitle>Gospel of John</itunes:subtitle>
    <itunes:duration>1:02:03</itunes:duration>
    <enclosure url="https://media.example.org/shepherd.mp3" length="1000" type="audio/mpeg"/>
    <pubDate>Sun, 04 Oct 2026 14:00:00 +0000</pubDate>
    <link>https://church.example.org/sermons/1001</link>
    <guid isPermaLink="false">sa-1001</guid>
  </item>
  <item>
    <title>Love Is Patient</title>
    <description>Sunday evening worship</description>
    <content:encoded><![CDATA[1 cor 13:4-7]]></content:encoded>
    <itunes:author>Rev. Jones</itunes:author>
    <itunes:subtitle>Letters to Corinth</itunes:subtitle>
    <itunes:duration>45:30</itunes:duration>
    <enclosure url="https://media.example.org/love.mp3" length="1000" type="audio/mpeg"/>
    <pubDate>Sun, 11 Oct 2026 22:00:00 +0000</pubDate>
    <link>https://church.example.org/sermons/1002</link>
    <guid isPermaLink="false">sa-1002</guid>
  </item>
</channel>
</rss>
"""


def ics(*events: str) -> bytes:
    """Wrap VEVENT bodies into a VCALENDAR document."""
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//chapelsite tests//EN"]
    for body in events:
        lines.append("BEGIN:VEVENT")
        lines.extend(line.strip() for line in body.strip().splitlines())
        lines.append("END:VEVENT")
    lines.append("END:VCALENDAR")
    return ("\r\n".join(lines) + "\r\n").encode("utf-8")


# Wednesdays and Sundays 10:00-11:00 Detroit time (14:00Z during EDT).
# Inside the week after NOW that is Wed Oct 21 and Sun Oct 25.
WEEKLY_SERVICE = """
UID:service@example.org
SUMMARY:Worship Service
LOCATION:Sanctuary
DTSTART:20260906T140000Z
DTEND:20260906T150000Z
RRULE:FREQ=WEEKLY;BYDAY=WE,SU
"""


class FakeResponse:
    def __init__(self, content: bytes = b"", status_code: int = 200):
        self.content = content
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Client Error")


class FakeSession:
    """Stands in for requests.Session; routes map URL -> bytes, response or exception."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.headers = {}
        self.calls = []

    def get(self, url, timeout=None, allow_redirects=True):
        self.calls.append(url)
        value = self.routes.get(url)
        if value is None:
            raise requests.exceptions.ConnectionError(f"no route to {url}")
        if isinstance(value, Exception):
            raise value
        if isinstance(value, FakeResponse):
            return value
        return FakeResponse(value)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides):
        data = {
            "sermon_feed_url": SERMON_URL,
            "calendar_ics_url": CALENDAR_URL,
            "image_formats": ["webp"],
        }
        data.update(overrides)
        path = tmp_path / "config.yml"
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
        return load_config(path)

    return _make


@pytest.fixture
def make_context(make_config):
    def _make(routes=None, **overrides):
        cfg = make_config(**overrides)
        return BuildContext(cfg, now=NOW, session=FakeSession(routes), quiet=True)

    return _make
