from datetime import date, datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from crm.models.appointment import Appointment
from crm.models.calendar import CalendarAvailability, CalendarBlockedDate
from crm.models.property import Property
from crm.scheduling.evaluator import (
    REASON_ALREADY_BOOKED,
    REASON_CALENDAR_INACTIVE,
    REASON_INVALID_RANGE,
    REASON_NO_HOURS,
    evaluate,
)
from crm.scheduling.store import AvailabilityStore, StoreResult


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# 2025-06-02 is a Monday; New York is UTC-4 in June.
MONDAY_10_LOCAL = utc(2025, 6, 2, 14, 0)
MONDAY_1030_LOCAL = utc(2025, 6, 2, 14, 30)


class FailingStore:
    def __init__(self, db=None):
        self.error = OperationalError('SELECT 1', {}, Exception('connection refused'))

    def resolve_calendar_property_id(self, property_id: int) -> StoreResult:
        return StoreResult(error=self.error)

    def get_calendar(self, property_id: int) -> StoreResult:
        return StoreResult(error=self.error)

    def get_weekly_windows(self, property_id: int) -> StoreResult:
        return StoreResult(error=self.error)

    def find_blocked_dates(self, property_id: int, day: date) -> StoreResult:
        return StoreResult(error=self.error)

    def find_overlapping_appointments(self, property_id, start, end, exclude_appointment_id=None) -> StoreResult:
        return StoreResult(error=self.error)


def test_property_without_calendar_is_always_available(db_session) -> None:
    result = evaluate(AvailabilityStore(db_session), 42, utc(2025, 6, 1, 3, 0), utc(2025, 6, 1, 4, 0))

    assert result.available is True
    assert result.reason is None


def test_inactive_calendar_rejects_every_interval(db_session, make_calendar) -> None:
    make_calendar(is_active=False)

    result = evaluate(AvailabilityStore(db_session), 1, MONDAY_10_LOCAL, MONDAY_1030_LOCAL)

    assert result.available is False
    assert result.reason == REASON_CALENDAR_INACTIVE


def test_blocked_date_rejects_with_stored_reason(db_session, make_calendar) -> None:
    make_calendar()
    db_session.add(CalendarBlockedDate(property_id=1, blocked_date=date(2025, 12, 25), reason='Holiday'))
    db_session.commit()

    result = evaluate(AvailabilityStore(db_session), 1, utc(2025, 12, 25, 15, 0), utc(2025, 12, 25, 15, 30))

    assert result.available is False
    assert 'blocked' in result.reason.lower()
    assert result.reason == 'Date is blocked: Holiday'


def test_partial_day_block_still_blocks_whole_day(db_session, make_calendar) -> None:
    make_calendar()
    db_session.add(CalendarBlockedDate(
        property_id=1,
        blocked_date=date(2025, 6, 2),
        reason='Inspection',
        all_day=False,
        start_time=datetime(2025, 6, 2, 9, 0).time(),
        end_time=datetime(2025, 6, 2, 10, 0).time(),
    ))
    db_session.commit()

    result = evaluate(AvailabilityStore(db_session), 1, utc(2025, 6, 2, 19, 0), utc(2025, 6, 2, 19, 30))

    assert result.available is False
    assert result.reason == 'Date is blocked: Inspection'


def test_blocked_date_uses_property_local_date(db_session, make_calendar) -> None:
    make_calendar()
    db_session.add(CalendarBlockedDate(property_id=1, blocked_date=date(2025, 6, 2), reason='Closed'))
    db_session.commit()

    # 2025-06-03T01:00Z is still Monday evening in New York.
    result = evaluate(AvailabilityStore(db_session), 1, utc(2025, 6, 3, 1, 0), utc(2025, 6, 3, 1, 30))

    assert result.reason == 'Date is blocked: Closed'


def test_weekday_without_window_is_unavailable(db_session, make_calendar) -> None:
    make_calendar()

    # 2025-06-01 is a Sunday.
    result = evaluate(AvailabilityStore(db_session), 1, utc(2025, 6, 1, 14, 0), utc(2025, 6, 1, 14, 30))

    assert result.available is False
    assert result.reason == REASON_NO_HOURS


def test_inactive_window_is_unavailable(db_session, make_calendar) -> None:
    make_calendar()
    window = db_session.query(CalendarAvailability).filter(CalendarAvailability.day_of_week == 1).one()
    window.is_active = False
    db_session.commit()

    result = evaluate(AvailabilityStore(db_session), 1, MONDAY_10_LOCAL, MONDAY_1030_LOCAL)

    assert result.reason == REASON_NO_HOURS


@pytest.mark.parametrize(
    ('start', 'end'),
    [
        (utc(2025, 6, 2, 12, 30), utc(2025, 6, 2, 13, 30)),
        (utc(2025, 6, 2, 20, 30), utc(2025, 6, 2, 21, 30)),
    ],
)
def test_interval_outside_window_is_rejected(db_session, make_calendar, start: datetime, end: datetime) -> None:
    make_calendar()

    result = evaluate(AvailabilityStore(db_session), 1, start, end)

    assert result.available is False
    assert result.reason == 'outside business hours (9:00 AM - 5:00 PM)'


def test_interval_ending_at_close_is_available(db_session, make_calendar) -> None:
    make_calendar()

    result = evaluate(AvailabilityStore(db_session), 1, utc(2025, 6, 2, 20, 30), utc(2025, 6, 2, 21, 0))

    assert result.available is True


def test_partially_overlapping_appointment_conflicts(db_session, make_calendar) -> None:
    make_calendar()
    db_session.add(Appointment(
        property_id=1,
        title='Tour',
        start_time=utc(2025, 6, 2, 14, 15),
        end_time=utc(2025, 6, 2, 14, 45),
    ))
    db_session.commit()

    result = evaluate(AvailabilityStore(db_session), 1, MONDAY_10_LOCAL, MONDAY_1030_LOCAL)

    assert result.available is False
    assert result.reason == REASON_ALREADY_BOOKED


def test_cancelled_and_excluded_appointments_do_not_conflict(db_session, make_calendar) -> None:
    make_calendar()
    cancelled = Appointment(
        property_id=1,
        title='Cancelled',
        start_time=MONDAY_10_LOCAL,
        end_time=MONDAY_1030_LOCAL,
        status='cancelled',
    )
    own = Appointment(property_id=1, title='Own', start_time=utc(2025, 6, 2, 14, 15), end_time=utc(2025, 6, 2, 14, 45))
    db_session.add_all([cancelled, own])
    db_session.commit()

    result = evaluate(
        AvailabilityStore(db_session),
        1,
        MONDAY_10_LOCAL,
        MONDAY_1030_LOCAL,
        exclude_appointment_id=own.id,
    )

    assert result.available is True


def test_unit_uses_parent_calendar(db_session, make_calendar) -> None:
    make_calendar(property_id=1, is_active=False)
    db_session.add_all([Property(id=1, name='Building'), Property(id=2, name='Suite 200', parent_property_id=1)])
    db_session.commit()

    result = evaluate(AvailabilityStore(db_session), 2, MONDAY_10_LOCAL, MONDAY_1030_LOCAL)

    assert result.reason == REASON_CALENDAR_INACTIVE


def test_store_failure_fails_open() -> None:
    result = evaluate(FailingStore(), 1, MONDAY_10_LOCAL, MONDAY_1030_LOCAL)

    assert result.available is True


def test_unexpected_error_fails_open(db_session, make_calendar, monkeypatch: pytest.MonkeyPatch) -> None:
    make_calendar()

    def explode(*args, **kwargs):
        raise RuntimeError('boom')

    monkeypatch.setattr('crm.scheduling.evaluator.check_conflicts', explode)

    result = evaluate(AvailabilityStore(db_session), 1, MONDAY_10_LOCAL, MONDAY_1030_LOCAL)

    assert result.available is True


def test_end_before_start_is_rejected(db_session) -> None:
    result = evaluate(AvailabilityStore(db_session), 1, MONDAY_1030_LOCAL, MONDAY_10_LOCAL)

    assert result.available is False
    assert result.reason == REASON_INVALID_RANGE


def test_naive_datetimes_are_rejected(db_session) -> None:
    with pytest.raises(ValueError):
        evaluate(AvailabilityStore(db_session), 1, datetime(2025, 6, 2, 10, 0), datetime(2025, 6, 2, 10, 30))


def test_end_seconds_past_close_are_outside_hours(db_session, make_calendar) -> None:
    make_calendar()

    result = evaluate(AvailabilityStore(db_session), 1, utc(2025, 6, 2, 20, 30), utc(2025, 6, 2, 21, 0, 59))

    assert result.available is False
    assert result.reason == 'outside business hours (9:00 AM - 5:00 PM)'
