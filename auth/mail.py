"""
auth/mail.py -- Outbound account-confirmation email.

SMTP via the standard library. When SMTP_HOST or MAIL_FROM is not set the
message is logged instead of sent (dev mode), so registration works locally
without a mail server. Delivery failures are logged and reported as False;
they never abort a registration.
"""

from __future__ import annotations

import html
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from auth.models import SafeUser, User

logger = logging.getLogger("authgate.mail")


def redact_email(email: str) -> str:
    """Redact an email address for logging."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Mailer:
    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        front_app_url: str = "http://localhost:3000",
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.front_app_url = front_app_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def confirmation_url(self, token_id: str) -> str:
        return f"{self.front_app_url}/confirm-account/{token_id}"

    def send_account_confirmation(self, user: User | SafeUser, token_id: str) -> bool:
        """Send the confirmation link to the user's email address."""
        url = self.confirmation_url(token_id)
        subject = "Welcome to Authgate! Confirm your Email"
        text_body = f"""Hello {user.first_name},

Please confirm your email address by visiting the link below:

{url}

If you did not create an account, you can ignore this email.
"""
        # first_name is user input; the HTML part must not carry its markup.
        safe_name = html.escape(user.first_name)
        safe_url = html.escape(url, quote=True)
        html_body = f"""<!DOCTYPE html>
<html>
<body>
    <p>Hello {safe_name},</p>
    <p>Please confirm your email address by clicking the link below:</p>
    <p><a href="{safe_url}">Confirm my account</a></p>
    <p>If you did not create an account, you can ignore this email.</p>
</body>
</html>
"""
        return self._send(user.email, subject, html_body, text_body)

    def _send(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        if not self.is_configured:
            logger.info("Mail not configured, would send %r to %s:\n%s", subject, redact_email(to_email), text_body)
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))
        context = ssl.create_default_context()

        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=30) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error("Failed to send %r to %s: %s: %s", subject, redact_email(to_email), type(exc).__name__, exc)
            return False

        logger.info("Sent %r to %s", subject, redact_email(to_email))
        return True
