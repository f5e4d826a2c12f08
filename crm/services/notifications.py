"""
Outbound notification delivery.

The scheduling core only relies on ``NotificationSender.send`` reporting
success or an error string; delivery goes through Resend.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Protocol

import resend

from crm.core import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundMessage:
    recipient: str
    subject: str
    text: str
    html: str | None = None


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: str | None = None


class NotificationSender(Protocol):
    def send(self, message: OutboundMessage) -> SendResult:
        ...


class ResendEmailSender:
    def __init__(self, api_key: str | None = None, from_address: str | None = None):
        self.api_key = api_key if api_key is not None else config.RESEND_API_KEY
        self.from_address = from_address or config.EMAIL_FROM_ADDRESS

    def send(self, message: OutboundMessage) -> SendResult:
        if not config.EMAIL_ENABLED:
            logger.info('Email disabled; skipping "%s" to %s', message.subject, message.recipient)
            return SendResult(success=False, error='Email delivery disabled')
        if not self.api_key:
            logger.error('RESEND_API_KEY missing; cannot send "%s"', message.subject)
            return SendResult(success=False, error='Email service not configured')

        resend.api_key = self.api_key
        email_data = {
            'from': self.from_address,
            'to': [message.recipient],
            'subject': message.subject,
            'text': message.text,
        }
        if message.html:
            email_data['html'] = message.html

        try:
            response = resend.Emails.send(email_data)
        except Exception as exc:
            logger.error('Email send error to %s: %s', message.recipient, exc)
            return SendResult(success=False, error=str(exc))

        logger.info('Email sent to %s via Resend: %s', message.recipient, response)
        return SendResult(success=True)


def get_notification_sender() -> NotificationSender:
    return ResendEmailSender()


# Subject and body per notification type. Placeholders missing from the
# payload render as empty strings.
MESSAGE_TEMPLATES: dict[str, tuple[str, str]] = {
    'appointment_reminder_24h': (
        'Appointment Reminder - Tomorrow at {appointmentTime}',
        'Hello {name},\n\n'
        'This is a friendly reminder that you have an appointment scheduled for tomorrow:\n\n'
        '{appointmentTitle}\nDate: {appointmentDate}\nTime: {appointmentTime}\nLocation: {appointmentLocation}\n\n'
        'Please let us know if you need to reschedule or have any questions.\n\n{businessName}',
    ),
    'appointment_reminder_2h': (
        'Appointment Starting Soon - {appointmentTime}',
        'Hello {name},\n\n'
        'Your appointment is starting in 2 hours:\n\n'
        '{appointmentTitle}\nTime: {appointmentTime}\nLocation: {appointmentLocation}\n\n'
        'We look forward to meeting with you!\n\n{businessName}',
    ),
    'business_reminder_2h': (
        'Appointment in 2 Hours - {clientName}',
        'Your appointment with {clientName} ({clientEmail}) starts in about 2 hours.\n\n'
        '{appointmentTitle}\nDate: {appointmentDate}\nTime: {appointmentTime}\nLocation: {appointmentLocation}',
    ),
    'business_cancellation': (
        'Appointment Cancelled - {clientName}',
        '{clientName} ({clientEmail}) has cancelled their appointment.\n\n'
        '{appointmentTitle}\nOriginal time: {appointmentDate} {appointmentTime}\n\n'
        'Consider following up with this lead to reschedule.',
    ),
    'new_appointment_request': (
        'New Tour Request: {clientName} - {appointmentDate}',
        'New tour request from {clientName} ({clientEmail}).\n\n'
        'Date: {appointmentDate}\nTime: {appointmentTime}\nProperty: {propertyName}\n\n'
        'View in CRM: {crmUrl}/appointments',
    ),
    'new_lead_notification': (
        'New Lead: {leadName}',
        'A new lead has been submitted:\n\n'
        'Name: {leadName}\nEmail: {email}\nPhone: {phone}\nCompany: {company}\n'
        'Source: {source}\nPriority: {priority}\n\nView in CRM: {crmUrl}/leads',
    ),
}


def render_message(notification_type: str, recipient: str, data: dict[str, Any]) -> OutboundMessage:
    if notification_type not in MESSAGE_TEMPLATES:
        raise ValueError(f'Unknown notification type: {notification_type}')

    subject_template, body_template = MESSAGE_TEMPLATES[notification_type]
    values = defaultdict(str, {'businessName': config.BUSINESS_NAME, 'crmUrl': config.APP_URL})
    values.update({key: value for key, value in data.items() if value is not None})

    return OutboundMessage(
        recipient=recipient,
        subject=subject_template.format_map(values),
        text=body_template.format_map(values),
    )
