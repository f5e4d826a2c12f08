"""
Appointment reminders and the notification queue.

Reminders are queued 24 hours and 2 hours before an appointment starts.
Reminder times already in the past are dropped, never back-filled. The
queue is drained by ``process_pending_notifications``, which an external
cron caller triggers; each row is claimed with a conditional update
before sending, so overlapping drains cannot deliver the same reminder
twice.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm.core import config
from crm.models.appointment import Appointment
from crm.models.calendar import PropertyCalendar
from crm.models.lead import Lead
from crm.models.notification import NotificationQueueItem
from crm.models.types import utcnow
from crm.models.user import User
from crm.scheduling.calendar_config import format_12_hour, load_timezone
from crm.services.notifications import NotificationSender, OutboundMessage, SendResult, render_message

logger = logging.getLogger(__name__)

REMINDER_OFFSETS = {
    '24h': timedelta(hours=24),
    '2h': timedelta(hours=2),
}
STATS_WINDOW_DAYS = 30
DEFAULT_RECIPIENT_NAME = 'Client'

STATUS_PENDING = 'pending'
STATUS_PROCESSING = 'processing'
STATUS_SENT = 'sent'
STATUS_FAILED = 'failed'

LEASE_EXPIRED_ERROR = 'Claim lease expired after final attempt'


@dataclass
class DrainResult:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass(frozen=True)
class Recipient:
    name: str
    email: str | None = None
    phone: str | None = None


def _appointment_timezone(db: Session, appointment: Appointment):
    timezone_name = None
    if appointment.property_id is not None:
        timezone_name = db.query(PropertyCalendar.timezone).filter(
            PropertyCalendar.property_id == appointment.property_id,
        ).scalar()
    return load_timezone(timezone_name)


def format_long_date(value: datetime) -> str:
    return f'{value:%A}, {value:%B} {value.day}, {value.year}'


def build_appointment_payload(db: Session, appointment: Appointment, recipient: Recipient) -> dict:
    local_start = appointment.start_time.astimezone(_appointment_timezone(db, appointment))
    return {
        'appointmentTitle': appointment.title,
        'appointmentDate': format_long_date(local_start),
        'appointmentTime': format_12_hour(local_start.time()),
        'appointmentLocation': appointment.location,
        'name': recipient.name,
    }


def resolve_recipient(db: Session, appointment: Appointment) -> Recipient:
    if appointment.lead_id is not None:
        lead = db.get(Lead, appointment.lead_id)
        if lead is not None:
            return Recipient(name=lead.name or DEFAULT_RECIPIENT_NAME, email=lead.email, phone=lead.phone)

    attendees = appointment.attendees or []
    if attendees:
        return Recipient(name=DEFAULT_RECIPIENT_NAME, email=attendees[0])

    return Recipient(name=DEFAULT_RECIPIENT_NAME)


def _build_reminders(db: Session, appointment: Appointment, now: datetime) -> list[NotificationQueueItem]:
    if appointment.status == 'cancelled':
        return []

    recipient = resolve_recipient(db, appointment)
    payload = build_appointment_payload(db, appointment, recipient)
    items: list[NotificationQueueItem] = []

    for reminder_type, offset in REMINDER_OFFSETS.items():
        scheduled_for = appointment.start_time - offset
        if scheduled_for <= now:
            continue

        if recipient.email:
            items.append(NotificationQueueItem(
                type=f'appointment_reminder_{reminder_type}',
                recipient_email=recipient.email,
                recipient_phone=recipient.phone,
                recipient_name=recipient.name,
                scheduled_for=scheduled_for,
                data=dict(payload),
                status=STATUS_PENDING,
                reminder_type=reminder_type,
                appointment_id=appointment.id,
                lead_id=appointment.lead_id,
                attempts=0,
            ))
        else:
            logger.info('Appointment %s has no recipient email; skipping %s reminder', appointment.id, reminder_type)

        if reminder_type == '2h' and config.ADMIN_EMAIL:
            items.append(NotificationQueueItem(
                type='business_reminder_2h',
                recipient_email=config.ADMIN_EMAIL,
                recipient_name=f'{config.BUSINESS_NAME} Team',
                scheduled_for=scheduled_for,
                data={**payload, 'clientName': recipient.name, 'clientEmail': recipient.email},
                status=STATUS_PENDING,
                reminder_type=reminder_type,
                appointment_id=appointment.id,
                lead_id=appointment.lead_id,
                attempts=0,
            ))

    return items


def _delete_pending(db: Session, appointment_id: int) -> int:
    return db.query(NotificationQueueItem).filter(
        NotificationQueueItem.appointment_id == appointment_id,
        NotificationQueueItem.status == STATUS_PENDING,
    ).delete(synchronize_session=False)


def schedule_appointment_reminders(
    db: Session,
    appointment: Appointment,
    now: datetime | None = None,
) -> list[NotificationQueueItem]:
    items = _build_reminders(db, appointment, now or utcnow())
    if not items:
        return []

    try:
        db.add_all(items)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Error scheduling reminders for appointment %s', appointment.id)
        return []

    logger.info('Scheduled %s reminders for appointment %s', len(items), appointment.id)
    return items


def cancel_appointment_reminders(db: Session, appointment_id: int) -> int:
    try:
        deleted = _delete_pending(db, appointment_id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Error cancelling reminders for appointment %s', appointment_id)
        return 0

    logger.info('Cancelled %s pending reminders for appointment %s', deleted, appointment_id)
    return deleted


def update_appointment_reminders(
    db: Session,
    appointment: Appointment,
    now: datetime | None = None,
) -> list[NotificationQueueItem]:
    """Replace pending reminders for a rescheduled appointment in a single commit."""
    try:
        deleted = _delete_pending(db, appointment.id)
        items = _build_reminders(db, appointment, now or utcnow())
        db.add_all(items)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Error updating reminders for appointment %s', appointment.id)
        return []

    logger.info(
        'Replaced %s pending reminders with %s for appointment %s',
        deleted,
        len(items),
        appointment.id,
    )
    return items


def schedule_lead_notification(db: Session, lead: Lead, now: datetime | None = None) -> list[NotificationQueueItem]:
    try:
        admins = db.query(User).filter(User.role == 'admin', User.email.is_not(None)).all()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Error loading admin users for lead %s', lead.id)
        return []

    if not admins:
        logger.info('No admin users found for lead notification')
        return []

    scheduled_for = now or utcnow()
    items = [
        NotificationQueueItem(
            type='new_lead_notification',
            recipient_email=admin.email,
            recipient_name=admin.name or 'Admin',
            scheduled_for=scheduled_for,
            data={
                'leadName': lead.name,
                'email': lead.email,
                'phone': lead.phone,
                'company': lead.company,
                'source': lead.source,
                'priority': lead.priority,
            },
            status=STATUS_PENDING,
            reminder_type='immediate',
            lead_id=lead.id,
            attempts=0,
        )
        for admin in admins
    ]

    try:
        db.add_all(items)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Error scheduling lead notification for lead %s', lead.id)
        return []

    logger.info('Scheduled lead notification for %s admin(s)', len(items))
    return items


def send_business_notice(
    db: Session,
    appointment: Appointment,
    notification_type: str,
    sender: NotificationSender,
    extra: dict | None = None,
) -> SendResult:
    """Send an immediate notice to ``ADMIN_EMAIL``. Failures are logged, never raised."""
    if not config.ADMIN_EMAIL:
        return SendResult(success=False, error='ADMIN_EMAIL not configured')

    try:
        recipient = resolve_recipient(db, appointment)
        data = build_appointment_payload(db, appointment, recipient)
        data.update({'clientName': recipient.name, 'clientEmail': recipient.email})
        data.update(extra or {})
        result = sender.send(render_message(notification_type, config.ADMIN_EMAIL, data))
    except Exception as exc:
        logger.exception('Failed to send %s notice for appointment %s', notification_type, appointment.id)
        return SendResult(success=False, error=str(exc))

    if not result.success:
        logger.warning('%s notice for appointment %s not sent: %s', notification_type, appointment.id, result.error)
    return result


def send_cancellation_notice(db: Session, appointment: Appointment, sender: NotificationSender) -> SendResult:
    return send_business_notice(db, appointment, 'business_cancellation', sender)


def send_appointment_request_notice(
    db: Session,
    appointment: Appointment,
    sender: NotificationSender,
    property_name: str | None = None,
) -> SendResult:
    return send_business_notice(
        db,
        appointment,
        'new_appointment_request',
        sender,
        extra={'propertyName': property_name or appointment.location},
    )


def _lease_cutoff(now: datetime) -> datetime:
    return now - timedelta(minutes=config.REMINDER_CLAIM_LEASE_MINUTES)


def _claimable(now: datetime, max_attempts: int):
    lease_cutoff = _lease_cutoff(now)
    return and_(
        or_(
            NotificationQueueItem.status == STATUS_PENDING,
            and_(
                NotificationQueueItem.status == STATUS_PROCESSING,
                NotificationQueueItem.last_attempt < lease_cutoff,
            ),
        ),
        NotificationQueueItem.scheduled_for <= now,
        NotificationQueueItem.attempts < max_attempts,
    )


def fail_exhausted_claims(db: Session, now: datetime, max_attempts: int) -> int:
    """Mark failed any claim whose lease expired after its final attempt."""
    try:
        expired = db.query(NotificationQueueItem).filter(
            NotificationQueueItem.status == STATUS_PROCESSING,
            NotificationQueueItem.last_attempt < _lease_cutoff(now),
            NotificationQueueItem.attempts >= max_attempts,
        ).update(
            {
                NotificationQueueItem.status: STATUS_FAILED,
                NotificationQueueItem.error_message: LEASE_EXPIRED_ERROR,
            },
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Could not expire abandoned notification claims')
        return 0

    if expired:
        logger.warning('Marked %s abandoned notification claims as failed', expired)
    return expired


def _claim(db: Session, item_id: int, now: datetime, max_attempts: int) -> NotificationQueueItem | None:
    claimed = db.query(NotificationQueueItem).filter(
        NotificationQueueItem.id == item_id,
        _claimable(now, max_attempts),
    ).update(
        {
            NotificationQueueItem.status: STATUS_PROCESSING,
            NotificationQueueItem.attempts: NotificationQueueItem.attempts + 1,
            NotificationQueueItem.last_attempt: now,
        },
        synchronize_session=False,
    )
    db.commit()

    if claimed != 1:
        return None
    return db.get(NotificationQueueItem, item_id)


def _deliver(item: NotificationQueueItem, sender: NotificationSender) -> SendResult:
    if not item.recipient_email:
        return SendResult(success=False, error='No recipient email')

    data = dict(item.data or {})
    data.setdefault('name', item.recipient_name)
    data.setdefault('email', item.recipient_email)
    try:
        message: OutboundMessage = render_message(item.type, item.recipient_email, data)
        return sender.send(message)
    except Exception as exc:
        logger.exception('Error sending notification %s', item.id)
        return SendResult(success=False, error=str(exc) or exc.__class__.__name__)


def _mirror_appointment_flag(db: Session, item: NotificationQueueItem) -> None:
    if item.appointment_id is None or not item.type.startswith('appointment_reminder_'):
        return

    flag = {'24h': Appointment.reminder_24h_sent, '2h': Appointment.reminder_2h_sent}.get(item.reminder_type)
    if flag is None:
        return

    db.query(Appointment).filter(Appointment.id == item.appointment_id).update(
        {flag: True},
        synchronize_session=False,
    )


def process_pending_notifications(
    db: Session,
    sender: NotificationSender,
    now: datetime | None = None,
    batch_size: int | None = None,
    max_attempts: int | None = None,
    delay_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DrainResult:
    now = now or utcnow()
    batch_size = batch_size or config.REMINDER_BATCH_SIZE
    max_attempts = max_attempts or config.REMINDER_MAX_ATTEMPTS
    delay_seconds = config.REMINDER_SEND_DELAY_SECONDS if delay_seconds is None else delay_seconds

    result = DrainResult()
    result.failed += fail_exhausted_claims(db, now, max_attempts)

    due_ids = [
        item_id
        for (item_id,) in db.query(NotificationQueueItem.id).filter(
            _claimable(now, max_attempts),
        ).order_by(
            NotificationQueueItem.scheduled_for.asc(),
            NotificationQueueItem.id.asc(),
        ).limit(batch_size).all()
    ]

    if not due_ids:
        logger.info('No pending notifications to process')
        return result

    logger.info('Processing %s pending notifications', len(due_ids))

    for index, item_id in enumerate(due_ids):
        if index and delay_seconds:
            sleep(delay_seconds)

        try:
            item = _claim(db, item_id, now, max_attempts)
        except SQLAlchemyError:
            db.rollback()
            logger.exception('Could not claim notification %s', item_id)
            result.skipped += 1
            continue

        if item is None:
            result.skipped += 1
            continue

        result.processed += 1
        outcome = _deliver(item, sender)

        try:
            if outcome.success:
                item.status = STATUS_SENT
                item.error_message = None
                _mirror_appointment_flag(db, item)
                result.sent += 1
            else:
                item.status = STATUS_FAILED if item.attempts >= max_attempts else STATUS_PENDING
                item.error_message = outcome.error or 'Failed to send notification'
                result.failed += 1
                logger.info('Failed to send notification %s: %s', item.id, item.error_message)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception('Could not record outcome of notification %s', item_id)

    logger.info(
        'Notification drain complete. Processed: %s, sent: %s, failed: %s, skipped: %s',
        result.processed,
        result.sent,
        result.failed,
        result.skipped,
    )
    return result


def get_notification_stats(db: Session, now: datetime | None = None) -> dict[str, int]:
    since = (now or utcnow()) - timedelta(days=STATS_WINDOW_DAYS)
    stats = {STATUS_PENDING: 0, STATUS_PROCESSING: 0, STATUS_SENT: 0, STATUS_FAILED: 0}

    rows = db.query(NotificationQueueItem.status, func.count(NotificationQueueItem.id)).filter(
        NotificationQueueItem.created_at >= since,
    ).group_by(NotificationQueueItem.status).all()
    for status, count in rows:
        stats[status] = count

    stats['total'] = sum(stats.values())
    return stats
