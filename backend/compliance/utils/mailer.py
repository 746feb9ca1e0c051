"""SMTP delivery of rendered compliance reports."""

from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
import logging
import re

import aiosmtplib

logger = logging.getLogger("compliance.mailer")


def _attachment_name(recipient_name: str) -> str:
    slug = re.sub(r'[^A-Za-z0-9]+', '_', recipient_name or '').strip('_') or 'report'
    return f"Compliance_Report_{slug}.pdf"


class ReportMailer:
    """Send report PDFs as e-mail attachments.

    `send_report` never raises for delivery problems: it logs them and
    returns False so the caller can answer with a retryable error.
    """

    def __init__(self, settings):
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_password = settings.SMTP_PASSWORD
        self.use_tls = settings.SMTP_USE_TLS
        self.from_email = settings.EMAIL_FROM
        self.from_name = settings.EMAIL_FROM_NAME

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)

    def build_message(self, recipient_email: str, recipient_name: str, test_name: str,
                      pdf_bytes: bytes) -> MIMEMultipart:
        message = MIMEMultipart("mixed")
        message["From"] = f"{self.from_name} <{self.from_email}>"
        message["To"] = recipient_email
        message["Subject"] = f"Compliance Report for {test_name}"
        body = (
            f"<h2>Compliance Report</h2>"
            f"<p>Dear {escape(recipient_name)},</p>"
            f"<p>Please find attached your compliance report for <strong>{escape(test_name)}</strong>.</p>"
            f"<p>Best regards,<br>{escape(self.from_name)}</p>"
        )
        message.attach(MIMEText(body, "html"))
        attachment = MIMEApplication(pdf_bytes, _subtype="pdf")
        attachment.add_header("Content-Disposition", "attachment", filename=_attachment_name(recipient_name))
        message.attach(attachment)
        return message

    async def send_report(self, recipient_email: str, recipient_name: str, test_name: str,
                          pdf_bytes: bytes) -> bool:
        """Send the report; returns True when the SMTP server accepted it."""
        if not self.is_configured:
            logger.warning("SMTP not configured, report for %s not sent", recipient_email)
            return False
        message = self.build_message(recipient_email, recipient_name, test_name, pdf_bytes)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.smtp_user,
                password=self.smtp_password,
                use_tls=self.use_tls,
            )
        except aiosmtplib.SMTPException as e:
            logger.error("failed to send report to %s: %s", recipient_email, e)
            return False
        except OSError as e:
            logger.error("SMTP connection to %s:%s failed: %s", self.smtp_host, self.smtp_port, e)
            return False
        logger.info("report sent to %s (%d bytes)", recipient_email, len(pdf_bytes))
        return True
