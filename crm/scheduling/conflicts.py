import logging
from dataclasses import dataclass, field
from datetime import datetime

from crm.scheduling.store import AvailabilityStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictCheck:
    conflict: bool
    appointment_ids: tuple[int, ...] = field(default_factory=tuple)
    store_error: bool = False


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


def check_conflicts(
    store: AvailabilityStore,
    property_id: int,
    start: datetime,
    end: datetime,
    exclude_appointment_id: int | None = None,
) -> ConflictCheck:
    """Report non-cancelled appointments overlapping [start, end).

    A store failure reports no conflict so the booking flow keeps working.
    """
    result = store.find_overlapping_appointments(property_id, start, end, exclude_appointment_id)
    if not result.ok:
        logger.warning('Conflict check for property %s failed open: %s', property_id, result.error)
        return ConflictCheck(conflict=False, store_error=True)

    overlapping = [
        appointment.id
        for appointment in result.value
        if intervals_overlap(appointment.start_time, appointment.end_time, start, end)
    ]
    return ConflictCheck(conflict=bool(overlapping), appointment_ids=tuple(overlapping))
