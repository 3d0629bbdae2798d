"""Outbound notifications over SMS, WhatsApp and email.

SMS and WhatsApp go through the Twilio Messages REST API, each with its own
sender identity. Email goes through Azure Communication Services. Every send
returns a ``NotificationResult``; provider errors are passed through verbatim
and nothing is retried here.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx
from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .constants import CHANNELS
from .database.crud import get_person
from .email_service import send_notification_email

logger = logging.getLogger(__name__)

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")

_email_adapter = TypeAdapter(EmailStr)


@dataclass(frozen=True)
class NotificationResult:
    ok: bool
    error: Optional[str] = None
    message_id: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict = {"ok": self.ok}
        if self.error:
            data["error"] = self.error
        if self.message_id:
            data["message_id"] = self.message_id
        return data


def default_test_message(name: str) -> str:
    return f"🔔 Test notification from Homestead. Hi {name}, your notifications are working!"


def is_e164(phone: Optional[str]) -> bool:
    return bool(phone) and E164_PATTERN.match(phone) is not None


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    try:
        _email_adapter.validate_python(email)
    except ValidationError:
        return False
    return True


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.notifier_timeout_seconds)


def _whatsapp_address(number: str) -> str:
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


async def _send_twilio(from_number: str, to: str, message: str) -> NotificationResult:
    account_sid = settings.twilio_account_sid
    auth_token = settings.twilio_auth_token
    if not account_sid or not auth_token:
        logger.warning("Twilio credentials not set, cannot send to %s", to)
        return NotificationResult(ok=False, error="Missing Twilio credentials")

    url = f"{settings.twilio_api_base}/Accounts/{account_sid}/Messages.json"
    try:
        async with _http_client() as client:
            response = await client.post(
                url,
                data={"From": from_number, "To": to, "Body": message},
                auth=(account_sid, auth_token),
            )
    except httpx.HTTPError as e:
        logger.exception("Twilio request to %s failed", to)
        return NotificationResult(ok=False, error=str(e) or "Twilio request failed")

    try:
        payload = response.json()
    except ValueError:
        payload = {}

    if response.is_error:
        error = payload.get("message") or f"Twilio request failed ({response.status_code})"
        logger.error("Twilio error for %s: %s", to, error)
        return NotificationResult(ok=False, error=error)

    logger.info("Message sent to %s, SID: %s", to, payload.get("sid"))
    return NotificationResult(ok=True, message_id=payload.get("sid"))


async def send_sms(to: str, message: str) -> NotificationResult:
    if not settings.twilio_from_sms:
        return NotificationResult(ok=False, error="TWILIO_FROM_SMS not set")
    return await _send_twilio(settings.twilio_from_sms, to, message)


async def send_whatsapp(to: str, message: str) -> NotificationResult:
    if not settings.twilio_from_whatsapp:
        return NotificationResult(ok=False, error="TWILIO_FROM_WHATSAPP not set")
    return await _send_twilio(
        _whatsapp_address(settings.twilio_from_whatsapp),
        _whatsapp_address(to),
        message,
    )


async def send_email(to: str, message: str, subject: Optional[str] = None) -> NotificationResult:
    # The Azure email SDK is synchronous; keep it off the event loop
    ok, error, message_id = await asyncio.to_thread(send_notification_email, to, message, subject)
    return NotificationResult(ok=ok, error=error, message_id=message_id)


async def _route(channel: str, to: str, message: str, subject: Optional[str]) -> NotificationResult:
    if channel == "SMS":
        return await send_sms(to, message)
    if channel == "WHATSAPP":
        return await send_whatsapp(to, message)
    return await send_email(to, message, subject)


async def dispatch(
    channel: str,
    to: Optional[str],
    message: str,
    subject: Optional[str] = None,
) -> NotificationResult:
    """Send one message on ``channel`` to ``to``.

    Args:
        channel: SMS, WHATSAPP or EMAIL
        to: E.164 phone number, or an email address for EMAIL
        message: Message body
        subject: Email subject (EMAIL only)

    Returns:
        The delivery result; never raises for delivery problems
    """
    if channel not in CHANNELS:
        return NotificationResult(ok=False, error=f"Unknown channel: {channel}")

    if channel == "EMAIL":
        if not to:
            return NotificationResult(ok=False, error="No email address on file for EMAIL channel")
        if not is_valid_email(to):
            return NotificationResult(ok=False, error=f"Invalid email address: {to}")
    else:
        if not to:
            return NotificationResult(ok=False, error=f"No phone number on file for {channel} channel")
        bare = to.removeprefix("whatsapp:") if channel == "WHATSAPP" else to
        if not is_e164(bare):
            return NotificationResult(ok=False, error=f"Phone number must be in E.164 format (e.g. +15125551234): {to}")

    try:
        return await asyncio.wait_for(
            _route(channel, to, message, subject),
            timeout=settings.notifier_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error("Sending %s to %s timed out after %.0fs", channel, to, settings.notifier_timeout_seconds)
        return NotificationResult(ok=False, error="Notification timed out")


async def send_to_person(
    session: AsyncSession,
    person_id: int,
    message: Optional[str] = None,
    subject: Optional[str] = None,
) -> NotificationResult:
    """Resolve a person's preferred channel and send them one message.

    Without ``message`` the canned test notification is sent.
    """
    person = await get_person(session, person_id)
    if person is None:
        return NotificationResult(ok=False, error=f"Person with id={person_id} not found")

    channel = person.preferred_channel or "SMS"
    to = person.email if channel == "EMAIL" else person.phone
    body = message or default_test_message(person.name)

    result = await dispatch(channel, to, body, subject)
    if result.ok:
        logger.info("Notified %s (id=%d) via %s", person.name, person.id, channel)
    else:
        logger.warning("Could not notify %s (id=%d) via %s: %s", person.name, person.id, channel, result.error)
    return result
