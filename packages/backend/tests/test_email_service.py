"""E-mail service tests — SMTP is faked, nothing leaves the process."""

import smtplib

import pytest

from todolive.services.email_service import EmailService


class FakeSMTP:
    sent: list = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.tls = False
        self.logged_in = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.tls = True

    def login(self, user, password):
        self.logged_in = user

    def send_message(self, message):
        FakeSMTP.sent.append((self, message))


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.sent = []
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


@pytest.mark.asyncio
async def test_disabled_without_host():
    email = EmailService(host="")
    assert not email.enabled
    assert await email.send("a@example.com", "Hi", "body") == {
        "success": False,
        "error": "SMTP not configured",
    }


@pytest.mark.asyncio
async def test_send_uses_tls_and_login(fake_smtp):
    email = EmailService(host="smtp.test", port=587, username="mailer", password="pw", sender="noreply@test")

    result = await email.send("alice@example.com", "Todo Due Soon", "pay rent")

    assert result == {"success": True, "error": None}
    conn, message = fake_smtp.sent[0]
    assert conn.tls
    assert conn.logged_in == "mailer"
    assert message["To"] == "alice@example.com"
    assert message["Subject"] == "Todo Due Soon"
    assert "pay rent" in message.get_content()


@pytest.mark.asyncio
async def test_send_failure_is_reported(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("no smtp here")

    monkeypatch.setattr(smtplib, "SMTP", refuse)
    email = EmailService(host="smtp.test", port=25)

    result = await email.send("alice@example.com", "Hi", "body")

    assert result["success"] is False
    assert "no smtp here" in result["error"]
