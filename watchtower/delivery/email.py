"""
SMTP email notifier for threat notifications.

Sends a plain-text message per notified advisory using STARTTLS and app
password authentication (Gmail by default).
"""

import asyncio
import smtplib
import ssl
from email.mime.text import MIMEText
from typing import List

import backoff
import structlog

from ..config import Config
from ..models import Advisory, Severity
from .notifier import OwnerContext

logger = structlog.get_logger(__name__)


class EmailNotifier:
    """
    SMTP notifier for Watchtower threat notifications.

    Delivery failures are logged and swallowed; a notification never
    affects the run that produced it.
    """

    SMTP_HOST = "smtp.gmail.com"
    SMTP_PORT_TLS = 587  # STARTTLS

    def __init__(self, config: Config, smtp_host: str = SMTP_HOST, smtp_port: int = SMTP_PORT_TLS):
        """
        Initialize the notifier.

        Args:
            config: Application configuration with SMTP credentials.
            smtp_host: SMTP server host.
            smtp_port: SMTP STARTTLS port.
        """
        self.smtp_user = config.smtp_user
        self.smtp_password = config.smtp_app_password
        self.recipient = config.notify_recipient
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port

        self.ssl_context = ssl.create_default_context()

        logger.info(
            "email_notifier_initialized",
            from_address=self.smtp_user,
            to_address=self.recipient
        )

    def _build_subject(self, advisory: Advisory) -> str:
        title = advisory.title
        if len(title) > 60:
            title = title[:57] + "..."

        severity_indicator = ""
        if advisory.severity != Severity.UNKNOWN:
            severity_indicator = f" [{advisory.severity.value.upper()}]"

        return f"[Watchtower]{severity_indicator} {advisory.affected_package}: {title}"

    def _build_message(self, owner: OwnerContext, advisory: Advisory, categories: List[str]) -> MIMEText:
        owner_name = owner.display_name or owner.owner_id
        lines = [
            f"Watchtower threat notification for {owner_name}",
            "",
            f"Advisory:   {advisory.id}",
            f"Package:    {advisory.affected_package}",
            f"Severity:   {advisory.severity.value}",
            f"Source:     {advisory.source.value}",
            f"Categories: {', '.join(categories)}",
        ]
        if advisory.cve_id:
            lines.append(f"CVE:        {advisory.cve_id}")
        if advisory.fixed_version:
            lines.append(f"Fixed in:   {advisory.fixed_version}")
        lines += ["", advisory.description, "", f"Reference: {advisory.url}", "", "-- ", "Watchtower"]

        msg = MIMEText("\n".join(lines), "plain", "utf-8")
        msg["Subject"] = self._build_subject(advisory)
        msg["From"] = self.smtp_user
        msg["To"] = self.recipient
        msg["X-Priority"] = "1" if advisory.severity == Severity.CRITICAL else "3"
        msg["X-Mailer"] = "Watchtower Threat Core"
        msg["X-Advisory-ID"] = advisory.id
        return msg

    @backoff.on_exception(
        backoff.expo,
        (smtplib.SMTPException, OSError),
        max_tries=3,
        max_time=120
    )
    def _send_smtp(self, msg: MIMEText) -> bool:
        """
        Send email via SMTP with retry.

        Raises:
            smtplib.SMTPException: On SMTP error after retries.
        """
        logger.debug("smtp_connecting", host=self.smtp_host)

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
            server.ehlo()
            server.starttls(context=self.ssl_context)
            server.ehlo()
            server.login(self.smtp_user, self.smtp_password)
            server.send_message(msg)

        return True

    def send(self, owner: OwnerContext, advisory: Advisory, categories: List[str]) -> bool:
        """
        Send one notification email.

        Returns:
            True if sent successfully, False otherwise.
        """
        logger.info("sending_notification_email", advisory_id=advisory.id)

        try:
            msg = self._build_message(owner, advisory, categories)
            self._send_smtp(msg)

            logger.info(
                "notification_email_sent",
                advisory_id=advisory.id,
                subject=msg["Subject"],
                to=self.recipient
            )
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error("smtp_authentication_failed", advisory_id=advisory.id, error=str(e))
            return False

        except smtplib.SMTPRecipientsRefused as e:
            logger.error(
                "smtp_recipients_refused",
                advisory_id=advisory.id,
                recipient=self.recipient,
                error=str(e)
            )
            return False

        except Exception as e:
            logger.error("email_send_failed", advisory_id=advisory.id, error=str(e))
            return False

    async def notify(self, owner: OwnerContext, advisory: Advisory, categories: List[str]) -> None:
        await asyncio.to_thread(self.send, owner, advisory, categories)
