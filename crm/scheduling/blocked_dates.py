from dataclasses import dataclass
from datetime import date

from crm.scheduling.store import AvailabilityStore, StoreResult


DEFAULT_BLOCKED_REASON = 'Blocked'


@dataclass(frozen=True)
class BlockedDateCheck:
    blocked: bool
    reason: str | None = None


def check_blocked_date(store: AvailabilityStore, property_id: int, day: date) -> StoreResult[BlockedDateCheck]:
    """Any blocked-date row on ``day`` blocks the whole day, partial-day rows included."""
    result = store.find_blocked_dates(property_id, day)
    if not result.ok:
        return StoreResult(error=result.error)

    rows = result.value
    if not rows:
        return StoreResult(value=BlockedDateCheck(blocked=False))

    reason = (rows[0].reason or '').strip() or DEFAULT_BLOCKED_REASON
    return StoreResult(value=BlockedDateCheck(blocked=True, reason=reason))
