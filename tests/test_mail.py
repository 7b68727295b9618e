"""
tests/test_mail.py -- MailService development mode and SMTP delivery.

smtplib.SMTP is replaced with a recorder; no socket is opened.
"""

from __future__ import annotations

import email
import logging

import pytest

from mail import service as mail_service
from mail.service import MailService, redact_email


class _FakeSMTP:
    instances: list["_FakeSMTP"] = []

    def __init__(self, host: str, port: int, timeout: float = 0) -> None:
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in_as: str | None = None
        self.sent: list[tuple[str, list[str], str]] = []
        _FakeSMTP.instances.append(self)

    def __enter__(self) -> "_FakeSMTP":
        return self

    def __exit__(self, *exc) -> None:
        return None

    def starttls(self, context=None) -> None:
        self.started_tls = True

    def login(self, user: str, password: str) -> None:
        self.logged_in_as = user

    def sendmail(self, from_addr: str, to_addrs: list[str], msg: str) -> None:
        self.sent.append((from_addr, to_addrs, msg))


@pytest.fixture
def fake_smtp(monkeypatch: pytest.MonkeyPatch) -> type[_FakeSMTP]:
    _FakeSMTP.instances = []
    monkeypatch.setattr(mail_service.smtplib, "SMTP", _FakeSMTP)
    return _FakeSMTP


class TestRedactEmail:
    def test_keeps_prefix_and_domain(self) -> None:
        assert redact_email("alice@example.com") == "al***@example.com"

    def test_not_an_address(self) -> None:
        assert redact_email("nonsense") == "redacted"


class TestDevelopmentMode:
    def test_unconfigured_logs_without_token(self, caplog: pytest.LogCaptureFixture, fake_smtp) -> None:
        mailer = MailService()
        assert not mailer.is_configured
        with caplog.at_level(logging.INFO, logger="authgate.mail"):
            mailer.send_password_reset_email("alice@example.com", "secret-token-value", "alice")
        assert fake_smtp.instances == []
        assert "al***@example.com" in caplog.text
        assert "secret-token-value" not in caplog.text
        assert "alice@example.com" not in caplog.text


class TestSmtpDelivery:
    def test_sends_reset_link_over_starttls(self, fake_smtp) -> None:
        mailer = MailService(
            smtp_host="smtp.test",
            smtp_user="mailer",
            smtp_password="pw",
            from_email="noreply@app.test",
            base_url="http://app.test/",
        )
        mailer.send_password_reset_email("alice@example.com", "tok123", "alice")

        (server,) = fake_smtp.instances
        assert (server.host, server.port) == ("smtp.test", 587)
        assert server.started_tls
        assert server.logged_in_as == "mailer"
        from_addr, to_addrs, message = server.sent[0]
        assert from_addr == "noreply@app.test"
        assert to_addrs == ["alice@example.com"]
        text_part = next(p for p in email.message_from_string(message).walk() if p.get_content_type() == "text/plain")
        assert "http://app.test/reset-password?token=tok123" in text_part.get_payload(decode=True).decode()

    def test_no_login_without_user(self, fake_smtp) -> None:
        MailService(smtp_host="smtp.test", use_tls=False).send_password_reset_email("a@x.com", "t", "a")
        (server,) = fake_smtp.instances
        assert not server.started_tls
        assert server.logged_in_as is None
