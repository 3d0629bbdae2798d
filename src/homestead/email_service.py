"""Email delivery for notifications via Azure Communication Services."""

import html
import logging
from typing import Optional

from azure.communication.email import EmailClient
from azure.core.exceptions import AzureError

from .config import settings

logger = logging.getLogger(__name__)

_email_client = None


def _get_email_client() -> EmailClient | None:
    """Get or create the email client singleton."""
    global _email_client
    if _email_client is not None:
        return _email_client
    conn_str = settings.azure_communication_connection_string
    if not conn_str:
        logger.warning("AZURE_COMMUNICATION_CONNECTION_STRING not set, emails disabled")
        return None
    _email_client = EmailClient.from_connection_string(conn_str)
    return _email_client


def _render_html(message: str) -> str:
    body = "<br>".join(html.escape(line) for line in message.splitlines())
    return f"""
    <div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; max-width: 480px; margin: 0 auto; padding: 32px; background: #0f0f0f; color: #ffffff; border-radius: 16px;">
        <h1 style="font-size: 24px; margin: 0 0 24px 0;">🏡 Homestead</h1>
        <p style="color: #cccccc; line-height: 1.6;">{body}</p>
    </div>
    """


def send_notification_email(
    to_email: str,
    message: str,
    subject: Optional[str] = None,
) -> tuple[bool, Optional[str], Optional[str]]:
    """Send a plain notification email.

    Returns:
        Tuple of (ok, error, message_id). ``error`` carries the provider's
        message verbatim when sending fails.
    """
    sender = settings.azure_communication_sender
    if not sender:
        logger.warning("AZURE_COMMUNICATION_SENDER not set, cannot send email")
        return False, "Email sender is not configured", None
    client = _get_email_client()
    if client is None:
        return False, "Email service is not configured", None
    try:
        payload = {
            "senderAddress": sender,
            "recipients": {"to": [{"address": to_email}]},
            "content": {
                "subject": subject or settings.notification_email_subject,
                "plainText": message,
                "html": _render_html(message),
            },
        }
        poller = client.begin_send(payload)
        result = poller.result()
        logger.info("Email sent to %s, status=%s", to_email, result.get("status"))
        return True, None, result.get("id")
    except (AzureError, ValueError) as e:
        logger.exception("Failed to send email to %s", to_email)
        return False, str(e), None
