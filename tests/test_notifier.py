"""Tests for outbound SMS, WhatsApp and email notifications."""

import asyncio
from typing import Any
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from homestead import notifier
from homestead.database.crud import create_person
from homestead.notifier import (
    NotificationResult,
    default_test_message,
    dispatch,
    is_e164,
    is_valid_email,
    send_to_person,
)


class FakeTwilio:
    """Records requests and answers with a canned response."""

    def __init__(self, status_code: int = 201, payload: dict[str, Any] | None = None) -> None:
        self.status_code = status_code
        self.payload = payload if payload is not None else {"sid": "SM123", "status": "queued"}
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.payload)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def form(self, index: int = 0) -> dict[str, str]:
        parsed = parse_qs(self.requests[index].content.decode())
        return {key: values[0] for key, values in parsed.items()}


@pytest.fixture
def twilio_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(notifier.settings, "twilio_account_sid", "AC123")
    monkeypatch.setattr(notifier.settings, "twilio_auth_token", "secret")
    monkeypatch.setattr(notifier.settings, "twilio_from_sms", "+15125550000")
    monkeypatch.setattr(notifier.settings, "twilio_from_whatsapp", "+14155238886")


@pytest.fixture
def fake_twilio(twilio_settings: None) -> Any:
    fake = FakeTwilio()
    with patch("homestead.notifier._http_client", fake.client):
        yield fake


class TestValidators:
    def test_e164(self) -> None:
        assert is_e164("+15125551234") is True
        assert is_e164("+447700900123") is True
        assert is_e164("5125551234") is False
        assert is_e164("+0123456") is False
        assert is_e164("+1 512 555 1234") is False
        assert is_e164(None) is False

    def test_email(self) -> None:
        assert is_valid_email("sam@example.com") is True
        assert is_valid_email("not-an-email") is False
        assert is_valid_email("") is False

    def test_default_test_message(self) -> None:
        assert "Hi Sam" in default_test_message("Sam")


class TestDispatchValidation:
    """Bad recipients are refused without calling a provider."""

    @pytest.mark.asyncio
    async def test_unknown_channel(self, fake_twilio: FakeTwilio) -> None:
        result = await dispatch("PIGEON", "+15125551234", "hi")
        assert result.ok is False
        assert "Unknown channel" in result.error
        assert fake_twilio.requests == []

    @pytest.mark.asyncio
    async def test_phone_must_be_e164(self, fake_twilio: FakeTwilio) -> None:
        result = await dispatch("SMS", "512-555-1234", "hi")
        assert result.ok is False
        assert "E.164" in result.error
        assert fake_twilio.requests == []

    @pytest.mark.asyncio
    async def test_sms_refuses_whatsapp_address(self, fake_twilio: FakeTwilio) -> None:
        result = await dispatch("SMS", "whatsapp:+15125551234", "hi")
        assert result.ok is False
        assert "E.164" in result.error
        assert fake_twilio.requests == []

    @pytest.mark.asyncio
    async def test_whatsapp_accepts_prefixed_address(self, fake_twilio: FakeTwilio) -> None:
        result = await dispatch("WHATSAPP", "whatsapp:+15125551234", "hi")
        assert result.ok is True
        assert fake_twilio.form()["To"] == "whatsapp:+15125551234"

    @pytest.mark.asyncio
    async def test_missing_phone(self, fake_twilio: FakeTwilio) -> None:
        result = await dispatch("WHATSAPP", None, "hi")
        assert result == NotificationResult(ok=False, error="No phone number on file for WHATSAPP channel")

    @pytest.mark.asyncio
    async def test_missing_email(self) -> None:
        result = await dispatch("EMAIL", None, "hi")
        assert result == NotificationResult(ok=False, error="No email address on file for EMAIL channel")

    @pytest.mark.asyncio
    async def test_invalid_email(self) -> None:
        result = await dispatch("EMAIL", "nope", "hi")
        assert result.ok is False
        assert "Invalid email address" in result.error


class TestTwilio:
    @pytest.mark.asyncio
    async def test_sms(self, fake_twilio: FakeTwilio) -> None:
        result = await dispatch("SMS", "+15125551234", "Low ammo")

        assert result.ok is True
        assert result.message_id == "SM123"
        request = fake_twilio.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
        assert request.headers["Authorization"].startswith("Basic ")
        assert fake_twilio.form() == {"From": "+15125550000", "To": "+15125551234", "Body": "Low ammo"}

    @pytest.mark.asyncio
    async def test_whatsapp_uses_prefixed_addresses(self, fake_twilio: FakeTwilio) -> None:
        result = await dispatch("WHATSAPP", "+15125551234", "Low ammo")

        assert result.ok is True
        form = fake_twilio.form()
        assert form["From"] == "whatsapp:+14155238886"
        assert form["To"] == "whatsapp:+15125551234"

    @pytest.mark.asyncio
    async def test_provider_error_passes_through(self, twilio_settings: None) -> None:
        fake = FakeTwilio(
            status_code=400,
            payload={"code": 21211, "message": "The 'To' number +15125551234 is not a valid phone number."},
        )
        with patch("homestead.notifier._http_client", fake.client):
            result = await dispatch("SMS", "+15125551234", "hi")

        assert result.ok is False
        assert result.error == "The 'To' number +15125551234 is not a valid phone number."

    @pytest.mark.asyncio
    async def test_missing_credentials(self, monkeypatch: pytest.MonkeyPatch, fake_twilio: FakeTwilio) -> None:
        monkeypatch.setattr(notifier.settings, "twilio_auth_token", "")
        result = await dispatch("SMS", "+15125551234", "hi")
        assert result == NotificationResult(ok=False, error="Missing Twilio credentials")
        assert fake_twilio.requests == []

    @pytest.mark.asyncio
    async def test_missing_sender(self, monkeypatch: pytest.MonkeyPatch, fake_twilio: FakeTwilio) -> None:
        monkeypatch.setattr(notifier.settings, "twilio_from_sms", "")
        result = await dispatch("SMS", "+15125551234", "hi")
        assert result.ok is False
        assert result.error == "TWILIO_FROM_SMS not set"

    @pytest.mark.asyncio
    async def test_network_error(self, twilio_settings: None) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with patch("homestead.notifier._http_client", lambda: httpx.AsyncClient(transport=httpx.MockTransport(refuse))):
            result = await dispatch("SMS", "+15125551234", "hi")

        assert result.ok is False
        assert result.error == "connection refused"


class TestEmail:
    @pytest.mark.asyncio
    async def test_email_goes_through_azure(self) -> None:
        with patch("homestead.notifier.send_notification_email", MagicMock(return_value=(True, None, "email-1"))) as send:
            result = await dispatch("EMAIL", "sam@example.com", "Low ammo", subject="Alert")

        send.assert_called_once_with("sam@example.com", "Low ammo", "Alert")
        assert result == NotificationResult(ok=True, message_id="email-1")

    @pytest.mark.asyncio
    async def test_email_error_passes_through(self) -> None:
        with patch(
            "homestead.notifier.send_notification_email",
            MagicMock(return_value=(False, "Sender domain not verified", None)),
        ):
            result = await dispatch("EMAIL", "sam@example.com", "Low ammo")

        assert result.error == "Sender domain not verified"


class TestTimeout:
    @pytest.mark.asyncio
    async def test_slow_provider_times_out(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(notifier.settings, "notifier_timeout_seconds", 0.01)

        async def slow_route(*args: Any) -> NotificationResult:
            await asyncio.sleep(1)
            return NotificationResult(ok=True)

        with patch("homestead.notifier._route", slow_route):
            result = await dispatch("SMS", "+15125551234", "hi")

        assert result == NotificationResult(ok=False, error="Notification timed out")


class TestSendToPerson:
    @pytest.mark.asyncio
    async def test_uses_preferred_channel(self, db_session: AsyncSession, fake_twilio: FakeTwilio) -> None:
        person = await create_person(db_session, "Sam", phone="+15125551234", preferred_channel="SMS")

        result = await send_to_person(db_session, person.id, "Low ammo")
        assert result.ok is True
        assert fake_twilio.form()["From"] == "+15125550000"

    @pytest.mark.asyncio
    async def test_default_message(self, db_session: AsyncSession, fake_twilio: FakeTwilio) -> None:
        person = await create_person(db_session, "Sam", phone="+15125551234")

        await send_to_person(db_session, person.id)
        assert fake_twilio.form()["Body"] == default_test_message("Sam")

    @pytest.mark.asyncio
    async def test_email_channel_uses_email_address(self, db_session: AsyncSession) -> None:
        person = await create_person(
            db_session, "Kim", phone="+15125559999", email="kim@example.com", preferred_channel="EMAIL"
        )
        with patch("homestead.notifier.send_notification_email", MagicMock(return_value=(True, None, None))) as send:
            result = await send_to_person(db_session, person.id, "hello")

        assert result.ok is True
        assert send.call_args.args[0] == "kim@example.com"

    @pytest.mark.asyncio
    async def test_inactive_person_still_gets_test_message(
        self, db_session: AsyncSession, fake_twilio: FakeTwilio
    ) -> None:
        person = await create_person(db_session, "Sam", phone="+15125551234", active=False)
        result = await send_to_person(db_session, person.id)
        assert result.ok is True

    @pytest.mark.asyncio
    async def test_missing_person(self, db_session: AsyncSession) -> None:
        result = await send_to_person(db_session, 9999)
        assert result == NotificationResult(ok=False, error="Person with id=9999 not found")
