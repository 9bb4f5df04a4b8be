"""
Sermon podcast feed -> SermonCollection.

The upstream feed (SermonAudio) puts the scripture reference in
<content:encoded> and uses <description> for something else, so the
description is never read here. SERMON_FIELDS lists every field taken from a
feed item together with its fallback; parse_sermon_feed() applies it once per
item and produces frozen SermonEntry records.
"""
import sys
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import feedparser
from bs4 import BeautifulSoup  # pip install beautifulsoup4
from dateutil import parser as dtparser

from .scripture import extract_book, normalize_scripture, sort_books


@dataclass(frozen=True)
class FeedField:
    name: str
    source: str
    required: bool
    default: str


# name -> where it comes from in the feed item, and what to use when absent.
# Required fields get a warning when missing; optional ones fall back quietly.
SERMON_FIELDS = (
    FeedField("title", "title", True, "Untitled Sermon"),
    FeedField("speaker", "itunes:author", False, "Unknown Speaker"),
    FeedField("scripture", "content:encoded", False, ""),
    FeedField("published", "pubDate", True, ""),
    FeedField("duration", "itunes:duration", False, ""),
    FeedField("audio_url", "enclosure@url", False, ""),
    FeedField("series", "itunes:subtitle", False, ""),
    FeedField("link", "link", False, ""),
    FeedField("guid", "guid", False, ""),
)


# North American zone names allowed by RFC 822, in seconds east of UTC
RFC822_ZONES = {
    "EST": -5 * 3600,
    "EDT": -4 * 3600,
    "CST": -6 * 3600,
    "CDT": -5 * 3600,
    "MST": -7 * 3600,
    "MDT": -6 * 3600,
    "PST": -8 * 3600,
    "PDT": -7 * 3600,
}


def _text(value) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    return value.strip()


def _read_raw(entry, source: str) -> str:
    """Pull one raw field out of a feedparser entry by its feed name."""
    if source == "itunes:author":
        return _text(entry.get("author"))
    if source == "content:encoded":
        content = entry.get("content") or []
        if not content:
            return ""
        # the field is HTML-typed; keep only its text ("<p>John 3:16</p>")
        return BeautifulSoup(content[0].get("value") or "", "html.parser").get_text(" ", strip=True)
    if source == "pubDate":
        return _text(entry.get("published"))
    if source == "itunes:duration":
        return _text(entry.get("itunes_duration"))
    if source == "enclosure@url":
        enclosures = entry.get("enclosures") or []
        return _text(enclosures[0].get("href")) if enclosures else ""
    if source == "itunes:subtitle":
        return _text(entry.get("subtitle"))
    if source == "guid":
        return _text(entry.get("id"))
    return _text(entry.get(source))


def read_fields(entry, index: int) -> dict:
    """
    Apply SERMON_FIELDS to one feed entry.

    Returns {field name: str}, with every missing value replaced by its
    declared default.
    """
    values = {}
    for f in SERMON_FIELDS:
        raw = _read_raw(entry, f.source)
        if not raw:
            if f.required:
                print(f"WARNING: sermon feed item {index} has no {f.source}", file=sys.stderr)
            raw = f.default
        values[f.name] = raw
    return values


def parse_duration(duration) -> int:
    """
    "1:02:03" -> 3723, "5:30" -> 330, "3723" -> 3723.
    Anything else (missing, garbage) is 0.
    """
    text = _text(duration)
    if not text:
        return 0
    parts = text.split(":")
    # isdigit() also accepts superscripts like "²", which int() rejects
    if not all(p.isdecimal() for p in parts):
        return 0
    nums = [int(p) for p in parts]
    if len(nums) == 3:
        return nums[0] * 3600 + nums[1] * 60 + nums[2]
    if len(nums) == 2:
        return nums[0] * 60 + nums[1]
    if len(nums) == 1:
        return nums[0]
    return 0


def parse_published(value: str, parsed=None) -> datetime | None:
    """
    Parse an RSS pubDate into an aware UTC datetime (None if unparseable).

    feedparser's published_parsed is already normalized to UTC and knows the
    RFC 822 zone names ("EDT", "PST"), so it wins; dateutil is only used for
    dates feedparser could not read.
    """
    if parsed:
        try:
            return datetime(*parsed[:6], tzinfo=timezone.utc)
        except (TypeError, ValueError):
            pass
    if value:
        try:
            dt = dtparser.parse(value, tzinfos=RFC822_ZONES)
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt.astimezone(timezone.utc)
        except (ValueError, OverflowError):
            pass
    return None


def format_long_date(dt: datetime) -> str:
    """October 19, 2026"""
    return f"{dt:%B} {dt.day}, {dt.year}"


@dataclass(frozen=True)
class SermonEntry:
    title: str
    speaker: str
    scripture_raw: str
    scripture_normalized: str
    book: str
    series_name: str
    published_at: datetime | None
    duration: str
    duration_seconds: int
    audio_url: str
    link: str
    unique_id: str
    tz: str = "UTC"

    @property
    def local_date(self) -> datetime | None:
        if self.published_at is None:
            return None
        return self.published_at.astimezone(ZoneInfo(self.tz))

    @property
    def year(self) -> int | None:
        local = self.local_date
        return local.year if local else None

    @property
    def date_formatted(self) -> str:
        local = self.local_date
        return format_long_date(local) if local else ""

    @property
    def iso_date(self) -> str:
        return self.published_at.isoformat() if self.published_at else ""

    def to_dict(self) -> dict:
        return {
            "id": self.unique_id,
            "title": self.title,
            "speaker": self.speaker,
            "date": self.iso_date,
            "date_formatted": self.date_formatted,
            "year": self.year,
            "scripture": self.scripture_raw,
            "scripture_normalized": self.scripture_normalized,
            "book": self.book,
            "series": self.series_name,
            "duration": self.duration,
            "duration_seconds": self.duration_seconds,
            "audio_url": self.audio_url,
            "link": self.link,
        }


def make_entry(values: dict, index: int, parsed_date=None, tz: str = "UTC") -> SermonEntry:
    scripture = values["scripture"]
    normalized = normalize_scripture(scripture)
    # Identity: guid, then link, then position in the feed. The positional
    # id is only stable as long as the feed keeps its order.
    unique_id = values["guid"] or values["link"] or f"sermon-{index}"
    return SermonEntry(
        title=values["title"],
        speaker=values["speaker"],
        scripture_raw=scripture,
        scripture_normalized=normalized,
        book=extract_book(normalized),
        series_name=values["series"],
        published_at=parse_published(values["published"], parsed_date),
        duration=values["duration"],
        duration_seconds=parse_duration(values["duration"]),
        audio_url=values["audio_url"],
        link=values["link"],
        unique_id=unique_id,
        tz=tz,
    )


def sort_entries(entries) -> list[SermonEntry]:
    """
    Newest first. sorted() is stable, so ties keep feed order; undated
    entries go to the end.
    """
    dated = [e for e in entries if e.published_at is not None]
    undated = [e for e in entries if e.published_at is None]
    return sorted(dated, key=lambda e: e.published_at, reverse=True) + undated


@dataclass(frozen=True)
class SermonFacets:
    speakers: list
    books: list
    years: list

    @classmethod
    def from_entries(cls, entries) -> "SermonFacets":
        return cls(
            speakers=sorted({e.speaker for e in entries if e.speaker}),
            books=sort_books(e.book for e in entries if e.book),
            years=sorted({e.year for e in entries if e.year is not None}, reverse=True),
        )


@dataclass(frozen=True)
class SermonCollection:
    items: tuple = ()
    feed_title: str = "Sermons"
    last_build_date: str = ""
    error: str | None = None
    fetched_from_cache: bool = field(default=False, compare=False)

    @classmethod
    def from_entries(cls, entries, **meta) -> "SermonCollection":
        return cls(items=tuple(sort_entries(entries)), **meta)

    @classmethod
    def empty(cls, error: str) -> "SermonCollection":
        return cls(
            last_build_date=datetime.now(timezone.utc).isoformat(),
            error=error,
        )

    @property
    def facets(self) -> SermonFacets:
        return SermonFacets.from_entries(self.items)

    def to_dict(self) -> dict:
        facets = self.facets
        meta = {
            "total": len(self.items),
            "speakers": facets.speakers,
            "books": facets.books,
            "years": facets.years,
            "feed_title": self.feed_title,
            "last_build_date": self.last_build_date,
        }
        if self.error:
            meta["error"] = self.error
        return {"items": [e.to_dict() for e in self.items], "meta": meta}


def read_feed_document(xml_bytes: bytes):
    """
    feedparser result for xml_bytes, or ValueError when it has no items and
    is either malformed or not an RSS/Atom document at all (an HTML error
    page served with status 200, say). A well-formed empty feed is fine.
    """
    fp = feedparser.parse(xml_bytes)
    if fp.entries:
        return fp
    if getattr(fp, "bozo", False):
        raise ValueError(f"Malformed sermon feed: {getattr(fp, 'bozo_exception', 'unknown error')}")
    if not fp.get("version"):
        raise ValueError("Malformed sermon feed: not an RSS or Atom document")
    return fp


def parse_sermon_feed(xml_bytes: bytes, tz: str = "UTC") -> SermonCollection:
    """Parse a podcast RSS document; ValueError if it is not a usable feed."""
    fp = read_feed_document(xml_bytes)

    entries = []
    for index, item in enumerate(fp.entries):
        values = read_fields(item, index)
        entries.append(make_entry(values, index, item.get("published_parsed"), tz=tz))

    feed = fp.feed
    return SermonCollection.from_entries(
        entries,
        feed_title=_text(feed.get("title")) or "Sermons",
        last_build_date=_text(feed.get("updated")) or datetime.now(timezone.utc).isoformat(),
    )


def load_sermons(ctx) -> SermonCollection:
    """
    Fetch (through the feed cache) and parse the sermon feed.

    Never raises: on any failure an empty collection carrying the error
    message is returned so the site still builds.
    """
    cfg = ctx.cfg
    url = cfg["sermon_feed_url"]
    ctx.log(f"Fetching sermon feed {url}")

    result = ctx.feed_cache.get(url, ttl=cfg["sermon_cache_duration"], validate=read_feed_document)
    if not result.ok:
        msg = f"{result.status}: {result.error}"
        print(f"WARNING: could not fetch sermon feed ({msg})", file=sys.stderr)
        return SermonCollection.empty(msg)

    try:
        collection = parse_sermon_feed(result.content, tz=cfg["timezone"])
    except Exception as e:
        # feedparser and dateutil raise a wide range of exception types
        print(f"WARNING: could not parse sermon feed: {e}", file=sys.stderr)
        return SermonCollection.empty(str(e))

    if result.from_cache:
        collection = replace(collection, fetched_from_cache=True)
    ctx.log(f"Loaded {len(collection.items)} sermons" + (" (cached)" if result.from_cache else ""))
    return collection
