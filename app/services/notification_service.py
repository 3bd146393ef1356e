# app/services/notification_service.py
import asyncio
import logging
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import jinja2
from jinja2.sandbox import SandboxedEnvironment
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from .. import models
from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = (
    "Hello {{ patient_name }}, this is a reminder of your appointment"
    "{% if doctor_name %} with {{ doctor_name }}{% endif %}"
    " at {{ clinic_name }} on {{ start }}."
)

_template_env = SandboxedEnvironment(autoescape=False)


class NotificationError(Exception):
    """A reminder could not be delivered."""


def _doctor_name(doctor: Optional[models.Doctor]) -> str:
    if doctor is None or doctor.user is None:
        return ""
    name = " ".join(p for p in (doctor.user.first_name, doctor.user.last_name) if p)
    if doctor.title and name:
        return f"{doctor.title} {name}"
    return name


def _local_start(appointment: models.Appointment, clinic: Optional[models.Clinic]) -> str:
    tz_name = (clinic.timezone if clinic else None) or "UTC"
    try:
        tz = ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        logger.warning(f"Unknown clinic timezone {tz_name!r}, falling back to UTC")
        tz = ZoneInfo("UTC")
    return appointment.start.astimezone(tz).strftime("%A %d %B %Y at %H:%M")


def render_reminder(template: Optional[str], appointment: models.Appointment, clinic: Optional[models.Clinic]) -> str:
    """Render a reminder rule template for one appointment."""
    context = {
        "patient_name": appointment.patient.full_name if appointment.patient else "",
        "doctor_name": _doctor_name(appointment.doctor),
        "clinic_name": clinic.name if clinic else "",
        "start": _local_start(appointment, clinic),
        "reason": appointment.reason or "",
    }
    try:
        return _template_env.from_string(template or DEFAULT_TEMPLATE).render(**context)
    except jinja2.TemplateError as exc:
        raise NotificationError(f"Invalid reminder template: {exc}") from exc


class NotificationSender:
    """Delivers reminder texts over SMS (Twilio) and email (SendGrid)."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.twilio = Client(settings.twilio_account_sid, settings.twilio_auth_token) if settings.sms_enabled else None
        self.sendgrid = SendGridAPIClient(api_key=settings.sendgrid_api_key) if settings.email_enabled else None

        if not self.twilio:
            logger.warning("Twilio credentials not found - SMS reminders disabled")
        if not self.sendgrid:
            logger.warning("SENDGRID_API_KEY not found - email reminders disabled")

    async def send(self, channel: models.ReminderChannel, patient: models.Patient, message: str) -> None:
        if channel == models.ReminderChannel.SMS:
            await self.send_sms(patient.phone, message)
        else:
            await self.send_email(patient.email, "Appointment reminder", message)

    async def send_sms(self, to: Optional[str], body: str) -> None:
        if self.twilio is None:
            raise NotificationError("SMS delivery is not configured")
        if not to:
            raise NotificationError("Patient has no phone number")
        try:
            await asyncio.to_thread(
                self.twilio.messages.create,
                to=to,
                from_=self.settings.twilio_from_number,
                body=body,
            )
        except TwilioRestException as exc:
            raise NotificationError(f"Twilio error {exc.code}: {exc.msg}") from exc

    async def send_email(self, to: Optional[str], subject: str, body: str) -> None:
        if self.sendgrid is None:
            raise NotificationError("Email delivery is not configured")
        if not to:
            raise NotificationError("Patient has no email address")
        mail = Mail(
            from_email=self.settings.sender_email,
            to_emails=to,
            subject=subject,
            plain_text_content=body,
        )
        try:
            response = await asyncio.to_thread(self.sendgrid.send, mail)
        except Exception as exc:
            raise NotificationError(f"SendGrid error: {exc}") from exc
        if response.status_code >= 300:
            raise NotificationError(f"SendGrid rejected the message with status {response.status_code}")


@lru_cache()
def get_notification_sender() -> NotificationSender:
    return NotificationSender(get_settings())
