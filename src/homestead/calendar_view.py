"""Calendar view assembly.

Trips become all-day banners, events become timed entries shown in their own
timezone, and both are merged into one ordered list. Day statuses are kept
separate: they only color the date cells. Nothing here touches the database
or persists anything; a date without a stored ``Day`` resolves to a computed
default each time it is asked for.
"""

from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable, Optional, Protocol, Union
from zoneinfo import ZoneInfo

from .constants import DAY_STATUS_LABELS

DAY_STATUS_COLORS: dict[str, str] = {
    "WORKING_HOME": "#1f2937",
    "WORKING_OFFICE": "#1e3a8a",
    "TRAVEL": "#7c2d12",
    "VACATION": "#065f46",
    "WEEKEND_HOLIDAY": "#374151",
    "PTO": "#581c87",
    "CHOICE_DAY": "#854d0e",
}

TRIP_TYPE_COLORS: dict[str, str] = {
    "LEISURE": "#10b981",
    "WORK": "#3b82f6",
    "FLYING": "#f59e0b",
    "FAMILY": "#ec4899",
}

EVENT_COLOR = "#6b7280"


class TripLike(Protocol):
    id: int
    name: str
    type: str
    start_date: date
    end_date: date


class EventLike(Protocol):
    id: int
    title: str
    start_at: datetime
    end_at: Optional[datetime]
    timezone: str
    is_all_day: bool


@dataclass(frozen=True)
class CalendarEntry:
    """One renderable item of the calendar list. ``end`` is exclusive for all-day entries."""

    id: str
    kind: str
    source_id: int
    title: str
    start: Union[date, datetime]
    end: Union[date, datetime]
    all_day: bool
    timezone: Optional[str] = None
    color: str = EVENT_COLOR

    def sort_key(self) -> tuple[datetime, str]:
        # Wall-clock ordering: dates sort as midnight of that day
        if isinstance(self.start, datetime):
            start = self.start.replace(tzinfo=None)
        else:
            start = datetime.combine(self.start, time.min)
        return start, self.title

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["start"] = self.start.isoformat()
        data["end"] = self.end.isoformat()
        return data


@dataclass(frozen=True)
class DayView:
    """A date's status, either stored or computed."""

    date: date
    status: str
    stored: bool
    notes: Optional[str] = None
    trip_id: Optional[int] = None
    trip_name: Optional[str] = None
    pto_fraction: float = 0.0
    location_city: Optional[str] = None
    location_country: Optional[str] = None

    @property
    def label(self) -> str:
        return DAY_STATUS_LABELS.get(self.status, self.status)

    @property
    def color(self) -> str:
        return DAY_STATUS_COLORS.get(self.status, DAY_STATUS_COLORS["WORKING_HOME"])

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        data["label"] = self.label
        data["color"] = self.color
        return data


def _aware(value: datetime) -> datetime:
    # Some drivers hand back naive UTC values
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def trip_to_calendar_event(trip: TripLike) -> CalendarEntry:
    """All-day banner covering start_date through end_date inclusive."""
    return CalendarEntry(
        id=f"trip-{trip.id}",
        kind="trip",
        source_id=trip.id,
        title=trip.name,
        start=trip.start_date,
        end=trip.end_date + timedelta(days=1),
        all_day=True,
        color=TRIP_TYPE_COLORS.get(trip.type, EVENT_COLOR),
    )


def event_to_calendar_entry(event: EventLike) -> CalendarEntry:
    """Timed entry expressed in the event's own timezone, not the viewer's."""
    tz_name = event.timezone or "UTC"
    tz = ZoneInfo(tz_name)
    start = _aware(event.start_at).astimezone(tz)
    end = _aware(event.end_at).astimezone(tz) if event.end_at is not None else start

    if event.is_all_day:
        return CalendarEntry(
            id=f"event-{event.id}",
            kind="event",
            source_id=event.id,
            title=event.title,
            start=start.date(),
            end=end.date() + timedelta(days=1),
            all_day=True,
            timezone=tz_name,
        )

    return CalendarEntry(
        id=f"event-{event.id}",
        kind="event",
        source_id=event.id,
        title=event.title,
        start=start,
        end=end,
        all_day=False,
        timezone=tz_name,
    )


def merge_calendar(trips: Iterable[TripLike], events: Iterable[EventLike]) -> list[CalendarEntry]:
    """One list of trip banners and events ordered by start, then title."""
    entries = [trip_to_calendar_event(trip) for trip in trips]
    entries.extend(event_to_calendar_entry(event) for event in events)
    return sorted(entries, key=CalendarEntry.sort_key)


def default_day_status(day: date) -> str:
    return "WEEKEND_HOLIDAY" if day.weekday() >= 5 else "WORKING_HOME"


def resolve_day(day: date, stored: Optional[Any]) -> DayView:
    """The stored record for ``day`` if there is one, else the computed default."""
    if stored is None:
        return DayView(date=day, status=default_day_status(day), stored=False)
    return DayView(
        date=day,
        status=stored.status,
        stored=True,
        notes=stored.notes,
        trip_id=stored.trip_id,
        trip_name=stored.trip_name,
        pto_fraction=stored.pto_fraction or 0.0,
        location_city=stored.location_city,
        location_country=stored.location_country,
    )


def day_cells(start: date, end: date, stored: Iterable[Any]) -> list[DayView]:
    """A ``DayView`` for every date in the inclusive range."""
    if end < start:
        return []
    by_date = {record.date: record for record in stored}
    cells = []
    current = start
    while current <= end:
        cells.append(resolve_day(current, by_date.get(current)))
        current += timedelta(days=1)
    return cells
