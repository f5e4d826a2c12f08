from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from crm.database import Base
from crm.models.appointment import Appointment
from crm.models.lead import Lead
from crm.models.notification import NotificationQueueItem
from crm.models.property import Property
from crm.scheduling.booking import (
    AppointmentChanges,
    AppointmentNotFound,
    BookingError,
    BookingRejected,
    BookingRequest,
    InvalidBookingReference,
    InvalidStatusTransition,
    book_appointment,
    cancel_appointment,
    reschedule_appointment,
    update_appointment_status,
)
from crm.scheduling.evaluator import AVAILABLE, REASON_ALREADY_BOOKED
from crm.scheduling.store import AvailabilityStore

NOW = datetime(2025, 5, 25, 12, 0, tzinfo=timezone.utc)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def tour(start: datetime, end: datetime, property_id: int = 1, **kwargs) -> BookingRequest:
    return BookingRequest(property_id=property_id, title='Property Tour', start_time=start, end_time=end, **kwargs)


def pending_reminders(db, appointment_id: int) -> list[NotificationQueueItem]:
    return db.query(NotificationQueueItem).filter(
        NotificationQueueItem.appointment_id == appointment_id,
        NotificationQueueItem.status == 'pending',
    ).order_by(NotificationQueueItem.scheduled_for.asc()).all()


def test_book_appointment_creates_row_and_reminders(db_session, make_calendar) -> None:
    make_calendar()
    db_session.add(Lead(id=7, name='Dana Client', email='dana@example.com'))
    db_session.commit()

    appointment = book_appointment(
        db_session,
        tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15), lead_id=7),
        now=NOW,
    )

    assert appointment.id is not None
    assert appointment.status == 'scheduled'
    reminders = pending_reminders(db_session, appointment.id)
    assert [item.reminder_type for item in reminders] == ['24h', '2h']
    assert reminders[0].recipient_email == 'dana@example.com'
    assert reminders[0].data['appointmentTime'] == '10:00 AM'
    assert reminders[0].data['appointmentDate'] == 'Monday, June 2, 2025'


def test_book_appointment_rejects_with_evaluator_reason(db_session, make_calendar) -> None:
    make_calendar()

    with pytest.raises(BookingRejected) as exception_info:
        book_appointment(db_session, tour(utc(2025, 6, 1, 14), utc(2025, 6, 1, 15)), now=NOW)

    assert exception_info.value.reason == 'no business hours this day'
    assert db_session.query(Appointment).count() == 0


def test_second_booking_of_same_slot_is_rejected(db_session, make_calendar) -> None:
    make_calendar()

    book_appointment(db_session, tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 14, 30)), now=NOW)
    with pytest.raises(BookingRejected) as exception_info:
        book_appointment(db_session, tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 14, 30)), now=NOW)

    assert exception_info.value.reason == REASON_ALREADY_BOOKED
    assert db_session.query(Appointment).count() == 1


def test_unique_index_rejects_race_that_passed_evaluation(
    db_session,
    make_calendar,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    make_calendar()
    # Both requests see an empty calendar, as two concurrent requests would.
    monkeypatch.setattr('crm.scheduling.booking.evaluate', lambda *args, **kwargs: AVAILABLE)

    book_appointment(db_session, tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 14, 30)), now=NOW)
    with pytest.raises(BookingRejected) as exception_info:
        book_appointment(db_session, tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 14, 30)), now=NOW)

    assert exception_info.value.reason == REASON_ALREADY_BOOKED
    assert db_session.query(Appointment).count() == 1


def test_cancelled_appointment_does_not_hold_unique_slot(db_session, make_calendar) -> None:
    make_calendar()
    first = book_appointment(db_session, tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 14, 30)), now=NOW)
    cancel_appointment(db_session, first.id)

    second = book_appointment(db_session, tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 14, 30)), now=NOW)

    assert second.id != first.id


def test_write_failure_raises_booking_error(db_session, monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_commit() -> None:
        raise OperationalError('INSERT', {}, Exception('connection lost'))

    monkeypatch.setattr(db_session, 'commit', failing_commit)

    with pytest.raises(BookingError):
        book_appointment(db_session, tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15)), now=NOW)


def test_unit_booking_is_stored_under_parent_property(db_session, make_calendar) -> None:
    make_calendar(property_id=1)
    db_session.add_all([Property(id=1, name='Building'), Property(id=2, name='Suite 200', parent_property_id=1)])
    db_session.commit()

    appointment = book_appointment(db_session, tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15), property_id=2), now=NOW)

    assert appointment.property_id == 1
    assert appointment.unit_id == 2


def test_end_before_start_is_rejected(db_session) -> None:
    with pytest.raises(BookingRejected):
        book_appointment(db_session, tour(utc(2025, 6, 2, 15), utc(2025, 6, 2, 14)), now=NOW)


def test_reschedule_replaces_pending_reminders(db_session, make_calendar) -> None:
    make_calendar()
    appointment = book_appointment(
        db_session,
        tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15), attendees=['client@example.com']),
        now=NOW,
    )

    reschedule_appointment(
        db_session,
        appointment.id,
        AppointmentChanges(start_time=utc(2025, 6, 3, 15), end_time=utc(2025, 6, 3, 16)),
        now=NOW,
    )

    reminders = pending_reminders(db_session, appointment.id)
    assert [item.scheduled_for for item in reminders] == [utc(2025, 6, 2, 15), utc(2025, 6, 3, 13)]
    assert db_session.query(NotificationQueueItem).count() == 2


def test_reschedule_ignores_own_interval(db_session, make_calendar) -> None:
    make_calendar()
    appointment = book_appointment(db_session, tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15)), now=NOW)

    updated = reschedule_appointment(
        db_session,
        appointment.id,
        AppointmentChanges(start_time=utc(2025, 6, 2, 14, 30), end_time=utc(2025, 6, 2, 15, 30)),
        now=NOW,
    )

    assert updated.start_time == utc(2025, 6, 2, 14, 30)


def test_reschedule_into_conflict_is_rejected(db_session, make_calendar) -> None:
    make_calendar()
    book_appointment(db_session, tour(utc(2025, 6, 2, 16), utc(2025, 6, 2, 17)), now=NOW)
    appointment = book_appointment(db_session, tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15)), now=NOW)

    with pytest.raises(BookingRejected):
        reschedule_appointment(
            db_session,
            appointment.id,
            AppointmentChanges(start_time=utc(2025, 6, 2, 16, 30), end_time=utc(2025, 6, 2, 17, 30)),
            now=NOW,
        )

    db_session.refresh(appointment)
    assert appointment.start_time == utc(2025, 6, 2, 14)


def test_cancel_removes_pending_reminders_and_notifies_admin(
    db_session,
    make_calendar,
    sender,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr('crm.core.config.ADMIN_EMAIL', 'ops@example.com')
    make_calendar()
    appointment = book_appointment(
        db_session,
        tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15), attendees=['client@example.com']),
        now=NOW,
    )

    cancelled = cancel_appointment(db_session, appointment.id, sender)

    assert cancelled.status == 'cancelled'
    assert pending_reminders(db_session, appointment.id) == []
    assert [message.recipient for message in sender.messages] == ['ops@example.com']
    assert sender.messages[0].subject.startswith('Appointment Cancelled')


def test_status_transitions_are_enforced(db_session, make_calendar) -> None:
    make_calendar()
    appointment = book_appointment(db_session, tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15)), now=NOW)

    with pytest.raises(InvalidStatusTransition):
        update_appointment_status(db_session, appointment.id, 'completed')

    assert update_appointment_status(db_session, appointment.id, 'confirmed').status == 'confirmed'
    assert update_appointment_status(db_session, appointment.id, 'completed').status == 'completed'

    with pytest.raises(InvalidStatusTransition):
        update_appointment_status(db_session, appointment.id, 'cancelled')


def test_missing_appointment_raises_not_found(db_session) -> None:
    with pytest.raises(AppointmentNotFound):
        cancel_appointment(db_session, 999)


@pytest.fixture
def fk_db_session():
    engine = create_engine('sqlite:///:memory:')

    @event.listens_for(engine, 'connect')
    def enable_foreign_keys(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()

    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def test_unknown_lead_is_an_invalid_reference_not_a_taken_slot(fk_db_session) -> None:
    request = tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15), property_id=None, lead_id=999)

    with pytest.raises(InvalidBookingReference) as exception_info:
        book_appointment(fk_db_session, request, now=NOW)

    assert not isinstance(exception_info.value, BookingRejected)
    assert fk_db_session.query(Appointment).count() == 0


def test_slot_conflict_is_still_rejected_with_foreign_keys_enabled(fk_db_session) -> None:
    fk_db_session.add(Property(id=1, name='Harbor Point'))
    fk_db_session.commit()

    book_appointment(fk_db_session, tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15)), now=NOW)
    with pytest.raises(BookingRejected) as exception_info:
        book_appointment(fk_db_session, tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 14, 30)), now=NOW)

    assert exception_info.value.reason == REASON_ALREADY_BOOKED


def test_failed_availability_read_keeps_staged_lead(db_session, make_calendar, monkeypatch: pytest.MonkeyPatch) -> None:
    make_calendar()

    def failing_get_calendar(self, property_id: int):
        def query():
            raise OperationalError('SELECT', {}, Exception('statement timeout'))

        return self._read(f'calendar for property {property_id}', query)

    monkeypatch.setattr(AvailabilityStore, 'get_calendar', failing_get_calendar)
    lead = Lead(name='Dana Client', email='dana@example.com')
    db_session.add(lead)
    db_session.flush()

    appointment = book_appointment(
        db_session,
        tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15), lead_id=lead.id),
        now=NOW,
    )

    stored_lead = db_session.query(Lead).one()
    assert appointment.lead_id == stored_lead.id
    assert stored_lead.email == 'dana@example.com'


def test_reschedule_clears_reminder_sent_flags(db_session, make_calendar) -> None:
    make_calendar()
    appointment = book_appointment(db_session, tour(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15)), now=NOW)
    appointment.reminder_24h_sent = True
    appointment.reminder_2h_sent = True
    db_session.commit()

    updated = reschedule_appointment(
        db_session,
        appointment.id,
        AppointmentChanges(start_time=utc(2025, 6, 3, 14), end_time=utc(2025, 6, 3, 15)),
        now=NOW,
    )

    assert updated.reminder_24h_sent is False
    assert updated.reminder_2h_sent is False
