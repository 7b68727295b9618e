"""
mail/service.py -- Outbound email for the password reset flow.

When SMTP is not configured (mail_host empty) the service runs in development
mode: it logs that a message would have been sent, with the recipient
redacted, and returns. Reset tokens are never written to the log.

Layer rule: mail/ imports only stdlib. auth/ never imports mail/ -- the
password reset service receives a MailService through its constructor.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from urllib.parse import urlencode

logger = logging.getLogger("authgate.mail")


class MailService:
    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        use_tls: bool = True,
        from_email: str = "noreply@example.com",
        base_url: str = "http://localhost:3000",
        timeout: float = 10.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.use_tls = use_tls
        self.from_email = from_email
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def send_password_reset_email(self, to_email: str, token: str, username: str) -> None:
        """Send the reset link. Raises smtplib.SMTPException / OSError on delivery failure."""
        link = f"{self.base_url}/reset-password?{urlencode({'token': token})}"
        text_body = (
            f"Hello {username},\n\n"
            "We received a request to reset your password. Open the link below to choose a new one:\n\n"
            f"{link}\n\n"
            "If you did not ask for this, you can ignore this email."
        )
        html_body = (
            f"<p>Hello {username},</p>"
            "<p>We received a request to reset your password.</p>"
            f'<p><a href="{link}">Reset your password</a></p>'
            "<p>If you did not ask for this, you can ignore this email.</p>"
        )
        self._send(to_email, "Password reset request", html_body, text_body)

    def _send(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        if not self.is_configured:
            logger.info("Mail not configured -- skipping %r to %s", subject, redact_email(to_email))
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        if self.smtp_port == 465:
            server = smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, timeout=self.timeout, context=ssl.create_default_context()
            )
        else:
            server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout)
        with server:
            if self.use_tls and self.smtp_port != 465:
                server.starttls(context=ssl.create_default_context())
            if self.smtp_user:
                server.login(self.smtp_user, self.smtp_password)
            server.sendmail(self.from_email, [to_email], msg.as_string())
        logger.info("Sent %r to %s", subject, redact_email(to_email))


def redact_email(email: str) -> str:
    """Keep the first two characters of the local part: 'alice@x.com' -> 'al***@x.com'."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"
