"""
IMAP client for downloading the archived admission export from email.
"""

import email
import imaplib
from email.header import decode_header
from email.message import Message
from pathlib import Path
from typing import Optional

import structlog

from admission_intake.config import Settings
from admission_intake.results import StageResult


class IMAPClient:
    """Finds the newest matching message and saves its archive attachment."""

    def __init__(self, settings: Settings, logger=None):
        self.settings = settings
        self.logger = logger or structlog.get_logger(__name__)

        self.imap_server = settings.imap_server
        self.imap_port = settings.imap_port
        self.imap_use_ssl = settings.imap_use_ssl
        self.inbox = settings.imap_inbox
        self.archive_suffix = settings.archive_suffix

        self.connection: Optional[imaplib.IMAP4] = None
        self._selected = False

    def connect(self) -> StageResult[imaplib.IMAP4]:
        """Open the session and log in. Failures come back as a failed result."""
        try:
            if self.imap_use_ssl:
                connection = imaplib.IMAP4_SSL(self.imap_server, self.imap_port)
            else:
                connection = imaplib.IMAP4(self.imap_server, self.imap_port)
            self.connection = connection

            connection.login(self.settings.imap_username, self.settings.imap_password)
            self.logger.info("Connected to IMAP server", server=self.imap_server)
            return StageResult.ok(connection)

        except Exception as e:
            self.logger.error("Failed to connect to IMAP server", server=self.imap_server, error=str(e))
            self.disconnect()
            return StageResult.failed(f"IMAP connection failed: {e}")

    def disconnect(self) -> None:
        """Disconnect from the IMAP server."""
        if not self.connection:
            return

        try:
            if self._selected:
                self.connection.close()
            self.connection.logout()
            self.logger.info("Disconnected from IMAP server")
        except Exception as e:
            self.logger.warning("Error disconnecting from IMAP server", error=str(e))
        finally:
            self.connection = None
            self._selected = False

    def find_and_download(self, sender: str, subject: str, destination_dir: str) -> StageResult[Path]:
        """Save the first archive attachment of the newest message from sender with subject."""
        if not self.connection:
            return StageResult.failed("Not connected to IMAP server")

        try:
            status, _ = self.connection.select(self.inbox)
            if status != 'OK':
                self.logger.error("Failed to select mailbox", mailbox=self.inbox)
                return StageResult.failed(f"Could not select mailbox {self.inbox}")
            self._selected = True

            criteria = f'(FROM "{self._quote(sender)}" SUBJECT "{self._quote(subject)}")'
            status, data = self.connection.search(*self._search_args(criteria))
            if status != 'OK':
                self.logger.error("Failed to search for emails", criteria=criteria)
                return StageResult.failed("IMAP search failed")

            email_ids = data[0].split() if data and data[0] else []
            if not email_ids:
                self.logger.warning("No matching emails found", sender=sender, subject=subject)
                return StageResult.absent("no matching message")

            # Highest sequence number is the newest as far as the server is concerned
            email_id = max(email_ids, key=int)
            self.logger.info("Found matching emails", count=len(email_ids), selected=email_id.decode())

            email_message = self._fetch_message(email_id)
            if email_message is None:
                return StageResult.failed(f"Failed to fetch email {email_id.decode()}")

            return self._save_archive_attachment(email_message, email_id, Path(destination_dir))

        except Exception as e:
            self.logger.error("Error downloading attachment", error=str(e))
            return StageResult.failed(f"Attachment download failed: {e}")

    def _fetch_message(self, email_id: bytes) -> Optional[Message]:
        status, msg_data = self.connection.fetch(email_id, '(RFC822)')

        if status != 'OK' or not msg_data or not isinstance(msg_data[0], tuple):
            self.logger.error("Failed to fetch email", email_id=email_id.decode())
            return None

        return email.message_from_bytes(msg_data[0][1])

    def _save_archive_attachment(self, email_message: Message, email_id: bytes, destination_dir: Path) -> StageResult[Path]:
        for part in email_message.walk():
            if part.get_content_maintype() == 'multipart':
                continue
            if part.get('Content-Disposition') is None:
                continue

            filename = part.get_filename()
            if not filename:
                continue
            filename = Path(self._decode_header(filename)).name

            if filename.lower().endswith(self.archive_suffix):
                destination_dir.mkdir(parents=True, exist_ok=True)
                file_path = destination_dir / filename
                file_path.write_bytes(part.get_payload(decode=True) or b'')

                self.logger.info("Downloaded attachment", filename=filename, path=str(file_path))
                return StageResult.ok(file_path)

        self.logger.warning(
            "No archive attachment found",
            email_id=email_id.decode(),
            suffix=self.archive_suffix
        )
        return StageResult.absent("no archive attachment")

    @staticmethod
    def _search_args(criteria: str):
        """imaplib sends str arguments as ASCII; anything else goes as UTF-8 bytes."""
        try:
            criteria.encode('ascii')
            return None, criteria
        except UnicodeEncodeError:
            return 'UTF-8', criteria.encode('utf-8')

    @staticmethod
    def _quote(value: str) -> str:
        return (value or '').replace('\\', '\\\\').replace('"', '\\"')

    def _decode_header(self, header: str) -> str:
        """Decode email header to handle encoding."""
        if not header:
            return ""

        decoded_parts = decode_header(header)
        decoded_string = ""

        for part, encoding in decoded_parts:
            if isinstance(part, bytes):
                if encoding:
                    try:
                        decoded_string += part.decode(encoding)
                    except (UnicodeDecodeError, LookupError):
                        decoded_string += part.decode('utf-8', errors='ignore')
                else:
                    decoded_string += part.decode('utf-8', errors='ignore')
            else:
                decoded_string += part

        return decoded_string

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
