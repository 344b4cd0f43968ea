"""
Outbound account mail: verification, password reset, email change, invites
"""

import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Any, Dict
from urllib.parse import quote

from ..utils import redact_token

logger = logging.getLogger(__name__)


class MailService:
    """Builds account mails and hands them to SMTP"""

    def __init__(self, smtp_settings: Dict[str, Any], frontend_url: str):
        self.smtp = smtp_settings
        self.frontend_url = frontend_url.rstrip('/')

    @classmethod
    def from_config(cls, mail_config) -> "MailService":
        return cls(mail_config.smtp_settings, mail_config.frontend_url)

    @property
    def enabled(self) -> bool:
        return bool(self.smtp.get('host'))

    def _link(self, path: str, token: str) -> str:
        return f"{self.frontend_url}{path}?token={quote(token, safe='')}"

    def send(self, to: str, subject: str, body: str) -> None:
        if not self.enabled:
            logger.info(f"Mail delivery disabled; skipped '{subject}' to {to}")
            return

        message = MIMEMultipart()
        message['From'] = self.smtp['sender']
        message['To'] = to
        message['Subject'] = subject
        message.attach(MIMEText(body, 'plain', 'utf-8'))

        try:
            with smtplib.SMTP(self.smtp['host'], self.smtp['port'], timeout=10) as server:
                if self.smtp.get('use_tls'):
                    server.starttls()
                if self.smtp.get('username'):
                    server.login(self.smtp['username'], self.smtp['password'])
                server.send_message(message)
            logger.info(f"Sent '{subject}' to {to}")
        except (smtplib.SMTPException, OSError) as e:
            # Runs as a background task after the response; nothing to propagate to
            logger.error(f"Failed to send '{subject}' to {to}: {e}")

    def send_email_verification(self, to: str, name: str, raw_token: str) -> None:
        logger.debug(f"Verification mail for {to}, token {redact_token(raw_token)}")
        link = self._link('/verify', raw_token)
        self.send(
            to,
            "Confirm your email address",
            f"Hi {name},\n\nConfirm your email address by opening:\n{link}\n",
        )

    def send_password_reset(self, to: str, name: str, raw_token: str) -> None:
        link = self._link('/reset-password', raw_token)
        self.send(
            to,
            "Reset your password",
            f"Hi {name},\n\nReset your password here:\n{link}\n\n"
            f"If you did not ask for this, ignore this mail.\n",
        )

    def send_email_change(self, to: str, name: str, raw_token: str) -> None:
        link = self._link('/confirm-email', raw_token)
        self.send(
            to,
            "Confirm your new email address",
            f"Hi {name},\n\nConfirm this address for your account:\n{link}\n",
        )

    def send_group_invite(self, to: str, group_name: str, inviter_name: str, raw_token: str) -> None:
        link = self._link('/invites/accept', raw_token)
        self.send(
            to,
            f"You're invited to join {group_name}",
            f"{inviter_name} invited you to the group '{group_name}'.\n\nAccept the invitation:\n{link}\n",
        )
