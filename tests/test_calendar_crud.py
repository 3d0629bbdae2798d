"""Tests for trip, event and day persistence."""

from datetime import date, datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from homestead.database.crud import (
    create_event,
    create_trip,
    delete_day,
    delete_event,
    delete_trip,
    get_day,
    get_event,
    list_days,
    list_events,
    list_trips,
    update_event,
    update_trip,
    upsert_day,
)


class TestTrips:
    @pytest.mark.asyncio
    async def test_create(self, db_session: AsyncSession) -> None:
        trip = await create_trip(
            db_session, "Austin", date(2026, 3, 1), date(2026, 3, 3), type="WORK", destination_city="Austin"
        )
        assert trip.id is not None
        assert trip.type == "WORK"
        assert trip.destination_city == "Austin"

    @pytest.mark.asyncio
    async def test_end_before_start(self, db_session: AsyncSession) -> None:
        with pytest.raises(ValueError, match="end date"):
            await create_trip(db_session, "Backwards", date(2026, 3, 3), date(2026, 3, 1))

    @pytest.mark.asyncio
    async def test_single_day_trip(self, db_session: AsyncSession) -> None:
        trip = await create_trip(db_session, "Day trip", date(2026, 3, 1), date(2026, 3, 1))
        assert trip.start_date == trip.end_date

    @pytest.mark.asyncio
    async def test_list_overlapping(self, db_session: AsyncSession) -> None:
        await create_trip(db_session, "February", date(2026, 2, 20), date(2026, 3, 2))
        await create_trip(db_session, "March", date(2026, 3, 10), date(2026, 3, 12))
        await create_trip(db_session, "April", date(2026, 4, 1), date(2026, 4, 5))

        trips = await list_trips(db_session, date(2026, 3, 1), date(2026, 3, 31))
        assert [t.name for t in trips] == ["February", "March"]

    @pytest.mark.asyncio
    async def test_rename_updates_linked_days(self, db_session: AsyncSession) -> None:
        trip = await create_trip(db_session, "Tokyo", date(2026, 3, 1), date(2026, 3, 3), type="FLYING")
        day = await upsert_day(db_session, date(2026, 3, 2), "TRAVEL", trip_id=trip.id)
        assert day.trip_name == "Tokyo"

        await update_trip(db_session, trip.id, name="Tokyo and Kyoto")
        await db_session.refresh(day)
        assert day.trip_name == "Tokyo and Kyoto"

    @pytest.mark.asyncio
    async def test_update_rejects_inverted_range(self, db_session: AsyncSession) -> None:
        trip = await create_trip(db_session, "Austin", date(2026, 3, 1), date(2026, 3, 3))
        with pytest.raises(ValueError):
            await update_trip(db_session, trip.id, end_date=date(2026, 2, 1))

    @pytest.mark.asyncio
    async def test_delete_unlinks_days_and_events(self, db_session: AsyncSession) -> None:
        trip = await create_trip(db_session, "Austin", date(2026, 3, 1), date(2026, 3, 3))
        day = await upsert_day(db_session, date(2026, 3, 1), "TRAVEL", trip_id=trip.id)
        event = await create_event(
            db_session, "Flight", datetime(2026, 3, 1, 8, 0), tz_name="America/Chicago", trip_id=trip.id
        )

        assert await delete_trip(db_session, trip.id) is True
        await db_session.refresh(day)
        await db_session.refresh(event)
        assert day.trip_id is None
        assert day.trip_name is None
        assert day.status == "TRAVEL"
        assert event.trip_id is None


class TestEvents:
    @pytest.mark.asyncio
    async def test_naive_time_is_wall_time_in_event_zone(self, db_session: AsyncSession) -> None:
        event = await create_event(
            db_session, "Dentist", datetime(2026, 1, 15, 12, 0), datetime(2026, 1, 15, 13, 0), tz_name="America/Chicago"
        )
        assert event.timezone == "America/Chicago"
        assert event.start_at == datetime(2026, 1, 15, 18, 0, tzinfo=timezone.utc)
        assert event.end_at == datetime(2026, 1, 15, 19, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_aware_time_keeps_its_instant(self, db_session: AsyncSession) -> None:
        event = await create_event(
            db_session, "Call", datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc), tz_name="Asia/Tokyo"
        )
        assert event.start_at == datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)
        assert event.end_at is None

    @pytest.mark.asyncio
    async def test_end_before_start(self, db_session: AsyncSession) -> None:
        with pytest.raises(ValueError, match="before its start"):
            await create_event(db_session, "Oops", datetime(2026, 1, 15, 12, 0), datetime(2026, 1, 15, 11, 0))

    @pytest.mark.asyncio
    async def test_unknown_timezone(self, db_session: AsyncSession) -> None:
        with pytest.raises(ValueError, match="Unknown timezone"):
            await create_event(db_session, "Launch", datetime(2026, 1, 15, 12, 0), tz_name="Mars/Olympus_Mons")

    @pytest.mark.asyncio
    async def test_list_in_range(self, db_session: AsyncSession) -> None:
        await create_event(db_session, "January", datetime(2026, 1, 15, 12, 0))
        await create_event(db_session, "February", datetime(2026, 2, 10, 12, 0))

        events = await list_events(db_session, date(2026, 1, 1), date(2026, 1, 31))
        assert [e.title for e in events] == ["January"]

    @pytest.mark.asyncio
    async def test_update_timezone_keeps_instant(self, db_session: AsyncSession) -> None:
        event = await create_event(db_session, "Call", datetime(2026, 1, 15, 12, 0), tz_name="America/Chicago")

        updated = await update_event(db_session, event.id, tz_name="Asia/Tokyo")
        assert updated.timezone == "Asia/Tokyo"
        assert updated.start_at == datetime(2026, 1, 15, 18, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_update_validates_before_writing(self, db_session: AsyncSession) -> None:
        event = await create_event(
            db_session, "Call", datetime(2026, 1, 15, 12, 0), datetime(2026, 1, 15, 13, 0), tz_name="UTC"
        )
        with pytest.raises(ValueError):
            await update_event(db_session, event.id, title="Moved", start_at=datetime(2026, 1, 15, 14, 0))

        unchanged = await get_event(db_session, event.id)
        assert unchanged.title == "Call"

    @pytest.mark.asyncio
    async def test_delete(self, db_session: AsyncSession) -> None:
        event = await create_event(db_session, "Call", datetime(2026, 1, 15, 12, 0))
        assert await delete_event(db_session, event.id) is True
        assert await get_event(db_session, event.id) is None
        assert await delete_event(db_session, event.id) is False


class TestDays:
    @pytest.mark.asyncio
    async def test_upsert_creates_then_replaces(self, db_session: AsyncSession) -> None:
        day = await upsert_day(db_session, date(2026, 3, 2), "PTO", pto_fraction=0.5, notes="Half day")
        assert day.status == "PTO"
        assert day.pto_fraction == 0.5

        day = await upsert_day(db_session, date(2026, 3, 2), "WORKING_OFFICE")
        assert day.status == "WORKING_OFFICE"
        assert day.notes == "Half day"

        assert len(await list_days(db_session, date(2026, 3, 1), date(2026, 3, 31))) == 1

    @pytest.mark.asyncio
    async def test_pto_fraction_range(self, db_session: AsyncSession) -> None:
        with pytest.raises(ValueError, match="between 0 and 1"):
            await upsert_day(db_session, date(2026, 3, 2), "PTO", pto_fraction=1.5)

    @pytest.mark.asyncio
    async def test_trip_must_exist(self, db_session: AsyncSession) -> None:
        with pytest.raises(ValueError, match="not found"):
            await upsert_day(db_session, date(2026, 3, 2), "TRAVEL", trip_id=9999)

    @pytest.mark.asyncio
    async def test_unlinking_trip_clears_trip_name(self, db_session: AsyncSession) -> None:
        trip = await create_trip(db_session, "Paris", date(2026, 3, 1), date(2026, 3, 4))
        day = await upsert_day(db_session, date(2026, 3, 2), "TRAVEL", trip_id=trip.id)
        assert day.trip_name == "Paris"

        day = await upsert_day(db_session, date(2026, 3, 2), "WORKING_HOME", trip_id=None)
        assert day.trip_id is None
        assert day.trip_name is None

    @pytest.mark.asyncio
    async def test_upsert_without_trip_keeps_link(self, db_session: AsyncSession) -> None:
        trip = await create_trip(db_session, "Paris", date(2026, 3, 1), date(2026, 3, 4))
        await upsert_day(db_session, date(2026, 3, 2), "TRAVEL", trip_id=trip.id)

        day = await upsert_day(db_session, date(2026, 3, 2), "TRAVEL", notes="Train")
        assert day.trip_id == trip.id
        assert day.trip_name == "Paris"

    @pytest.mark.asyncio
    async def test_list_days_in_range(self, db_session: AsyncSession) -> None:
        await upsert_day(db_session, date(2026, 3, 1), "VACATION")
        await upsert_day(db_session, date(2026, 3, 5), "VACATION")
        await upsert_day(db_session, date(2026, 4, 1), "VACATION")

        days = await list_days(db_session, date(2026, 3, 1), date(2026, 3, 31))
        assert [d.date for d in days] == [date(2026, 3, 1), date(2026, 3, 5)]

    @pytest.mark.asyncio
    async def test_delete_day(self, db_session: AsyncSession) -> None:
        await upsert_day(db_session, date(2026, 3, 2), "CHOICE_DAY")
        assert await delete_day(db_session, date(2026, 3, 2)) is True
        assert await get_day(db_session, date(2026, 3, 2)) is None
        assert await delete_day(db_session, date(2026, 3, 2)) is False
