import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm.auth.dependencies import verify_cron_secret
from crm.database import get_db
from crm.routes.common import database_unavailable, ensure_database_ready
from crm.services.notifications import NotificationSender, get_notification_sender
from crm.services.reminders import get_notification_stats, process_pending_notifications

logger = logging.getLogger(__name__)

router = APIRouter(tags=['cron'], dependencies=[Depends(verify_cron_secret)])


class ProcessRemindersResponse(BaseModel):
    success: bool
    processed: int
    sent: int
    failed: int
    skipped: int
    stats: dict[str, int]


@router.api_route('/process-reminders', methods=['GET', 'POST'], response_model=ProcessRemindersResponse)
def process_reminders(
    db: Session = Depends(get_db),
    sender: NotificationSender = Depends(get_notification_sender),
):
    ensure_database_ready()

    try:
        result = process_pending_notifications(db, sender)
        stats = get_notification_stats(db)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Reminder processing failed')
        raise database_unavailable() from exc

    return ProcessRemindersResponse(
        success=True,
        processed=result.processed,
        sent=result.sent,
        failed=result.failed,
        skipped=result.skipped,
        stats=stats,
    )
