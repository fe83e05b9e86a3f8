"""
Email sender for simulating delivery of a zipped admission export.
"""

import sys
import smtplib
import argparse
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Optional

import structlog

from admission_intake.config import Settings


class EmailSender:
    """Sends an archive attachment the way the export system does."""

    def __init__(self, settings: Settings, logger=None):
        self.settings = settings
        self.logger = logger or structlog.get_logger(__name__)

        if not all([settings.smtp_username, settings.smtp_password]):
            raise ValueError("SMTP_USERNAME and SMTP_PASSWORD environment variables are required")

    def build_message(
        self,
        archive_path: Path,
        recipient_email: str,
        subject: Optional[str] = None,
        sender_name: str = "Admissions Export"
    ) -> MIMEMultipart:
        """Build a message with the archive as a proper attachment part."""
        msg = MIMEMultipart()
        msg['From'] = f"{sender_name} <{self.settings.smtp_username}>"
        msg['To'] = recipient_email
        msg['Subject'] = subject or self.settings.subject_filter or f"Admissions export - {archive_path.stem}"

        body = (
            "Please find attached the latest patient admission export.\n\n"
            f"File: {archive_path.name}\n\n"
            "This is an automated message."
        )
        msg.attach(MIMEText(body, 'plain'))

        part = MIMEBase('application', 'zip')
        part.set_payload(archive_path.read_bytes())
        encoders.encode_base64(part)
        part.add_header('Content-Disposition', 'attachment', filename=archive_path.name)
        msg.attach(part)

        return msg

    def send_archive(self, archive_file_path: str, recipient_email: str, subject: Optional[str] = None) -> None:
        """Send an email with the archive attached."""
        archive_path = Path(archive_file_path)

        if not archive_path.exists():
            raise FileNotFoundError(f"Archive not found: {archive_path}")

        msg = self.build_message(archive_path, recipient_email, subject)

        try:
            with smtplib.SMTP(self.settings.smtp_server, self.settings.smtp_port) as server:
                if self.settings.smtp_use_tls:
                    server.starttls()

                server.login(self.settings.smtp_username, self.settings.smtp_password)
                server.send_message(msg)

            self.logger.info("Email sent", recipient=recipient_email, attachment=archive_path.name)

        except Exception as e:
            self.logger.error("Failed to send email", recipient=recipient_email, error=str(e))
            raise


def main():
    """Main entry point for email sending."""
    parser = argparse.ArgumentParser(description='Email a zipped admission export for testing')
    parser.add_argument('--file', '-f', required=True, help='Archive to send')
    parser.add_argument('--recipient', '-r', required=True, help='Recipient email address')
    parser.add_argument('--subject', '-s', help='Email subject (defaults to EMAIL_SUBJECT_FILTER)')

    args = parser.parse_args()

    try:
        sender = EmailSender(Settings.from_env())
        sender.send_archive(args.file, args.recipient, args.subject)
        print(f"Email sent to {args.recipient} with attachment {Path(args.file).name}")

    except Exception as e:
        print(f"Email sending failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
