import os
from datetime import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')

from crm.database import Base  # noqa: E402
from crm.models import appointment, lead, notification, property, user  # noqa: E402,F401
from crm.models.calendar import CalendarAvailability, PropertyCalendar  # noqa: E402
from crm.services.notifications import SendResult  # noqa: E402

WEEKDAYS = (1, 2, 3, 4, 5)


@pytest.fixture
def db_session():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_calendar(db_session):
    def _make_calendar(
        property_id: int = 1,
        is_active: bool = True,
        timezone: str = 'America/New_York',
        days=WEEKDAYS,
        start: time = time(9, 0),
        end: time = time(17, 0),
    ) -> PropertyCalendar:
        calendar = PropertyCalendar(property_id=property_id, is_active=is_active, timezone=timezone)
        db_session.add(calendar)
        db_session.flush()
        for day in days:
            db_session.add(CalendarAvailability(
                property_id=property_id,
                day_of_week=day,
                start_time=start,
                end_time=end,
                is_active=True,
                slot_duration=30,
            ))
        db_session.commit()
        return calendar

    return _make_calendar


class RecordingSender:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.messages = []

    def send(self, message) -> SendResult:
        self.messages.append(message)
        if self.succeed:
            return SendResult(success=True)
        return SendResult(success=False, error='smtp down')


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def failing_sender() -> RecordingSender:
    return RecordingSender(succeed=False)
