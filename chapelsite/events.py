"""
iCalendar feed -> upcoming events for the next few days.

Recurring events are expanded with dateutil's rrule over the lookahead window;
every occurrence keeps the duration of its definition. Times are shown in one
fixed site timezone so the templates never have to deal with timezones.
"""
import re
import sys
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from dateutil.rrule import rruleset, rrulestr
from icalendar import Calendar

# UNTIL=20261231 or UNTIL=20261231T235959 or UNTIL=20261231T235959Z
UNTIL_RE = re.compile(r"UNTIL=(\d{8})(T\d{6})?(Z?)", re.IGNORECASE)


@dataclass(frozen=True)
class CalendarEvent:
    title: str
    start: datetime
    end: datetime
    location: str | None
    description: str | None
    is_all_day: bool
    formatted_datetime: str

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "location": self.location,
            "description": self.description,
            "is_all_day": self.is_all_day,
            "formatted_datetime": self.formatted_datetime,
        }


def format_event_datetime(dt: datetime, all_day: bool, tz: ZoneInfo) -> str:
    """
    "October 19, 2026" for all-day events,
    "October 19, 2026 at 9:30 AM" otherwise, in the site timezone.
    """
    local = dt.astimezone(tz)
    day = f"{local:%B} {local.day}, {local.year}"
    if all_day:
        return day
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{day} at {hour}:{local.minute:02d} {meridiem}"


def as_datetime(value, tz: ZoneInfo) -> datetime:
    """DATE values become local midnight; floating times get the site timezone."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=tz)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=tz)
    raise TypeError(f"Not a date or datetime: {value!r}")


def _prop_text(component, name: str) -> str | None:
    value = component.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def event_duration(component, start: datetime, all_day: bool, tz: ZoneInfo) -> timedelta:
    """DTEND - DTSTART, else DURATION, else one day (all-day) or zero."""
    dtend = component.get("DTEND")
    if dtend is not None:
        return as_datetime(dtend.dt, tz) - start
    duration = component.get("DURATION")
    if duration is not None:
        return duration.dt
    return timedelta(days=1) if all_day else timedelta(0)


def _align_until(rule_text: str, tz: ZoneInfo) -> str:
    """
    dateutil insists on a UTC UNTIL when DTSTART is timezone-aware, while
    real feeds often send a local date or time. Rewrite those to UTC.
    """
    def repl(m):
        if m.group(3):
            return m.group(0)
        day = datetime.strptime(m.group(1), "%Y%m%d")
        if m.group(2):
            local = datetime.strptime(m.group(1) + m.group(2), "%Y%m%dT%H%M%S")
        else:
            local = datetime.combine(day.date(), time(23, 59, 59))
        utc = local.replace(tzinfo=tz).astimezone(timezone.utc)
        return f"UNTIL={utc:%Y%m%dT%H%M%S}Z"

    return UNTIL_RE.sub(repl, rule_text)


def _exdates(component, tz: ZoneInfo) -> list[datetime]:
    raw = component.get("EXDATE")
    if raw is None:
        return []
    groups = raw if isinstance(raw, list) else [raw]
    out = []
    for group in groups:
        for item in group.dts:
            out.append(as_datetime(item.dt, tz))
    return out


def expand_occurrences(component, start: datetime, window_start: datetime, window_end: datetime, tz: ZoneInfo, skip=()) -> list[datetime]:
    """
    Start times of a recurring event inside [window_start, window_end].

    Raises ValueError/TypeError when the RRULE cannot be understood.
    """
    rule_text = component.get("RRULE").to_ical().decode("utf-8")
    rule = rrulestr(_align_until(rule_text, tz), dtstart=start)

    rset = rruleset()
    rset.rrule(rule)
    for ex in _exdates(component, tz):
        rset.exdate(ex)
    for ex in skip:
        rset.exdate(ex)
    return rset.between(window_start, window_end, inc=True)


def _make_event(component, start: datetime, end: datetime, all_day: bool, tz: ZoneInfo) -> CalendarEvent:
    return CalendarEvent(
        title=_prop_text(component, "SUMMARY") or "Untitled Event",
        start=start,
        end=end,
        location=_prop_text(component, "LOCATION"),
        description=_prop_text(component, "DESCRIPTION"),
        is_all_day=all_day,
        formatted_datetime=format_event_datetime(start, all_day, tz),
    )


def collect_events(ics_bytes: bytes, now: datetime, *, tz_name: str = "America/Detroit", lookahead_days: int = 7, max_events: int = 7) -> list[CalendarEvent]:
    """
    Materialize every event occurrence starting in [now, now + lookahead].

    Returns at most max_events events, soonest first. Raises ValueError if
    the document is not an iCalendar file; problems with a single event only
    skip that event.
    """
    tz = ZoneInfo(tz_name)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    window_end = now + timedelta(days=lookahead_days)

    cal = Calendar.from_ical(ics_bytes)
    vevents = list(cal.walk("VEVENT"))

    # Occurrences replaced by a RECURRENCE-ID override are dropped from the
    # master's expansion; the override itself is handled as a single event.
    overridden: dict[str, list[datetime]] = {}
    for component in vevents:
        rid = component.get("RECURRENCE-ID")
        if rid is not None and component.get("UID") is not None:
            overridden.setdefault(str(component.get("UID")), []).append(as_datetime(rid.dt, tz))

    events = []
    for component in vevents:
        title = _prop_text(component, "SUMMARY") or "Untitled Event"
        if (_prop_text(component, "STATUS") or "").upper() == "CANCELLED":
            continue
        dtstart = component.get("DTSTART")
        if dtstart is None:
            continue

        all_day = not isinstance(dtstart.dt, datetime)
        try:
            start = as_datetime(dtstart.dt, tz)
            duration = event_duration(component, start, all_day, tz)
        except (TypeError, ValueError) as e:
            print(f"WARNING: skipping calendar event {title!r}: {e}", file=sys.stderr)
            continue

        if component.get("RRULE") is not None and component.get("RECURRENCE-ID") is None:
            skip = overridden.get(str(component.get("UID")), [])
            try:
                starts = expand_occurrences(component, start, now, window_end, tz, skip=skip)
            except (TypeError, ValueError, AttributeError) as e:
                print(f"WARNING: error processing recurring event {title!r}: {e}", file=sys.stderr)
                continue
            for occurrence in starts:
                events.append(_make_event(component, occurrence, occurrence + duration, all_day, tz))
        else:
            if start < now or start > window_end:
                continue
            events.append(_make_event(component, start, start + duration, all_day, tz))

    events.sort(key=lambda e: e.start)
    return events[:max_events]


def load_events(ctx) -> list[CalendarEvent]:
    """
    Fetch (through the feed cache) and expand the calendar feed.

    Never raises; any failure gives an empty list.
    """
    cfg = ctx.cfg
    url = cfg["calendar_ics_url"]
    if not url:
        ctx.log("No calendar_ics_url configured; skipping calendar")
        return []

    ctx.log("Fetching calendar events from ICS feed...")
    result = ctx.feed_cache.get(url, ttl=cfg["calendar_cache_duration"], validate=Calendar.from_ical)
    if not result.ok:
        print(f"WARNING: error fetching calendar ({result.status}: {result.error})", file=sys.stderr)
        return []

    try:
        events = collect_events(
            result.content,
            ctx.now,
            tz_name=cfg["timezone"],
            lookahead_days=cfg["calendar_lookahead_days"],
            max_events=cfg["calendar_max_events"],
        )
    except Exception as e:
        # icalendar raises ValueError for most bad input, but not all of it
        print(f"WARNING: error parsing calendar: {e}", file=sys.stderr)
        return []

    ctx.log(f"Loaded {len(events)} upcoming events")
    for e in events:
        ctx.log(f"  - {e.title}: {e.start.isoformat()} (all-day: {e.is_all_day})")
    return events
