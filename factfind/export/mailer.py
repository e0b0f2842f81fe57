"""
Fact-find email delivery over SMTP.

Configuration (see factfind.config.EmailSettings):
    EMAIL_HOST, EMAIL_PORT, EMAIL_SECURE, EMAIL_USER, EMAIL_PASSWORD, EMAIL_FROM

Recipients and the optional HTML template come from the admin config. The
template may use ``{{userName}}``, ``{{sessionId}}`` and ``{{summary}}``.
"""

import logging
import smtplib
import ssl
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import List, Optional, Union

from ..config import EmailSettings
from ..errors import ExportError

logger = logging.getLogger(__name__)


def parse_recipients(recipients: Union[str, List[str]]) -> List[str]:
    if isinstance(recipients, str):
        recipients = recipients.split(",")
    return [r.strip() for r in recipients if r and r.strip()]


def render_email_body(template: Optional[str], user_name: str, session_id: int, summary: str) -> str:
    """Fill the admin template, or fall back to the default layout."""
    if template:
        return (
            template
            .replace("{{userName}}", user_name)
            .replace("{{sessionId}}", str(session_id))
            .replace("{{summary}}", summary)
        )
    return (
        "<h1>Insurance Fact Find Summary</h1>"
        f"<p>Client: {escape(user_name)}</p>"
        f"<p>Session ID: {session_id}</p>"
        "<h2>Responses Summary</h2>"
        f"<div>{summary}</div>"
        "<p>Please find the complete PDF report attached.</p>"
    )


class FactFindMailer:
    """
    Sends the completed fact-find to the configured recipients.

    Usage:
        mailer = FactFindMailer(settings.email)
        mailer.send("ops@broker.co.uk", user_name="jo@example.com", session_id=3,
                    summary=summary_html(items), pdf=pdf_bytes)
    """

    def __init__(self, settings: EmailSettings):
        self.settings = settings

    @property
    def is_configured(self) -> bool:
        return self.settings.is_configured

    def build_message(
        self,
        recipients: List[str],
        user_name: str,
        session_id: int,
        summary: str,
        pdf: Optional[bytes] = None,
        template: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        msg["From"] = self.settings.sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject or f"Insurance Fact Find Summary - {user_name}"
        msg.attach(MIMEText(render_email_body(template, user_name, session_id, summary), "html", "utf-8"))

        if pdf:
            attachment = MIMEApplication(pdf, _subtype="pdf")
            attachment.add_header("Content-Disposition", "attachment",
                                  filename=f"fact-find-{session_id}.pdf")
            msg.attach(attachment)
        return msg

    def send(
        self,
        recipients: Union[str, List[str]],
        user_name: str,
        session_id: int,
        summary: str,
        pdf: Optional[bytes] = None,
        template: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> None:
        """
        Email the fact-find summary with the PDF attached.

        Raises:
            ExportError: If no recipients are given, SMTP is not configured,
                or delivery fails
        """
        to = parse_recipients(recipients)
        if not to:
            raise ExportError("No email recipients configured")
        if not self.is_configured:
            raise ExportError("SMTP not configured (missing EMAIL_HOST)")

        msg = self.build_message(to, user_name, session_id, summary, pdf=pdf,
                                 template=template, subject=subject)
        s = self.settings
        try:
            if s.secure:
                context = ssl.create_default_context()
                with smtplib.SMTP_SSL(s.host, s.port, context=context, timeout=s.timeout) as server:
                    if s.user and s.password:
                        server.login(s.user, s.password)
                    server.sendmail(s.sender, to, msg.as_string())
            else:
                with smtplib.SMTP(s.host, s.port, timeout=s.timeout) as server:
                    server.ehlo()
                    if server.has_extn("starttls"):
                        server.starttls(context=ssl.create_default_context())
                        server.ehlo()
                    if s.user and s.password:
                        server.login(s.user, s.password)
                    server.sendmail(s.sender, to, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Fact-find email for session %s failed: %s", session_id, e)
            raise ExportError(f"Email delivery failed: {e}") from e

        logger.info("Fact-find email for session %s sent to %d recipient(s)", session_id, len(to))
