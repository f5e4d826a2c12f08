from datetime import date, time

import pytest

from crm.models.calendar import CalendarAvailability, CalendarBlockedDate, PropertyCalendar
from crm.services import calendar_service
from crm.services.calendar_service import CalendarNotFound


def test_upsert_calendar_creates_then_updates(db_session) -> None:
    created = calendar_service.upsert_calendar(db_session, 5, property_title='Harbor Point')

    assert created.is_active is True
    assert created.timezone == 'America/New_York'

    updated = calendar_service.upsert_calendar(db_session, 5, is_active=False, timezone_name='America/Chicago')

    assert updated.id == created.id
    assert updated.is_active is False
    assert updated.timezone == 'America/Chicago'
    assert updated.property_title == 'Harbor Point'
    assert db_session.query(PropertyCalendar).count() == 1


def test_upsert_calendar_rejects_unknown_timezone(db_session) -> None:
    with pytest.raises(ValueError):
        calendar_service.upsert_calendar(db_session, 5, timezone_name='Nowhere/Special')


def test_upsert_weekday_window_keeps_one_row_per_day(db_session) -> None:
    calendar_service.upsert_calendar(db_session, 5)

    calendar_service.upsert_weekday_window(db_session, 5, 1, time(9, 0), time(17, 0))
    window = calendar_service.upsert_weekday_window(db_session, 5, 1, time(10, 0), time(14, 0), slot_duration=60)

    rows = db_session.query(CalendarAvailability).filter(CalendarAvailability.property_id == 5).all()
    assert len(rows) == 1
    assert window.start_time == time(10, 0)
    assert window.slot_duration == 60


@pytest.mark.parametrize(
    ('day_of_week', 'start', 'end'),
    [
        (7, time(9, 0), time(17, 0)),
        (-1, time(9, 0), time(17, 0)),
        (1, time(17, 0), time(9, 0)),
    ],
)
def test_upsert_weekday_window_validates_input(db_session, day_of_week: int, start: time, end: time) -> None:
    calendar_service.upsert_calendar(db_session, 5)

    with pytest.raises(ValueError):
        calendar_service.upsert_weekday_window(db_session, 5, day_of_week, start, end)


def test_upsert_weekday_window_requires_calendar(db_session) -> None:
    with pytest.raises(CalendarNotFound):
        calendar_service.upsert_weekday_window(db_session, 99, 1, time(9, 0), time(17, 0))


def test_all_day_block_discards_times_and_defaults_reason(db_session) -> None:
    blocked = calendar_service.add_blocked_date(
        db_session,
        5,
        date(2025, 12, 25),
        reason='   ',
        all_day=True,
        start_time=time(9, 0),
        end_time=time(10, 0),
    )

    assert blocked.reason == 'Blocked'
    assert blocked.start_time is None
    assert blocked.end_time is None


def test_partial_day_block_requires_times(db_session) -> None:
    with pytest.raises(ValueError):
        calendar_service.add_blocked_date(db_session, 5, date(2025, 12, 24), all_day=False)


def test_remove_blocked_date_is_scoped_to_property(db_session) -> None:
    blocked = calendar_service.add_blocked_date(db_session, 5, date(2025, 12, 25), reason='Holiday')

    assert calendar_service.remove_blocked_date(db_session, 6, blocked.id) is False
    assert calendar_service.remove_blocked_date(db_session, 5, blocked.id) is True
    assert db_session.query(CalendarBlockedDate).count() == 0


def test_delete_calendars_cascades_to_windows_and_blocks(db_session) -> None:
    for property_id in (5, 6):
        calendar_service.upsert_calendar(db_session, property_id)
        calendar_service.upsert_weekday_window(db_session, property_id, 1, time(9, 0), time(17, 0))
        calendar_service.add_blocked_date(db_session, property_id, date(2025, 12, 25))

    assert calendar_service.delete_calendars(db_session, [5]) == 1

    assert [calendar.property_id for calendar in calendar_service.list_calendars(db_session)] == [6]
    assert db_session.query(CalendarAvailability).count() == 1
    assert db_session.query(CalendarBlockedDate).count() == 1


def test_get_calendar_details_orders_windows(db_session) -> None:
    calendar_service.upsert_calendar(db_session, 5)
    calendar_service.upsert_weekday_window(db_session, 5, 3, time(9, 0), time(17, 0))
    calendar_service.upsert_weekday_window(db_session, 5, 1, time(9, 0), time(17, 0))

    details = calendar_service.get_calendar_details(db_session, 5)

    assert [window.day_of_week for window in details.availability] == [1, 3]
    assert details.blocked_dates == []
