"""
Shared fixtures: settings, a captured structlog sink, a fake IMAP server and
builders for emails, CSV payloads and zip archives.
"""

import csv
import imaplib
import io
import zipfile
from email.message import EmailMessage

import pytest
import structlog
from structlog.testing import CapturingLogger

from admission_intake.config import Settings

SENDER = "exports@hospital.test"
SUBJECT = "Daily Admissions Export"

CSV_COLUMNS = [
    'patient_id', 'first_name', 'last_name', 'date_of_birth', 'gender',
    'admission_date', 'discharge_date', 'ward_number', 'bed_number',
    'diagnosis', 'treatment_plan', 'attending_physician_id',
    'emergency_contact_name', 'emergency_contact_phone', 'insurance_provider',
]


class FakeIMAP:
    """In-memory stand-in for imaplib.IMAP4_SSL."""

    def __init__(self, messages=None, search_ids=None, login_error=None):
        self.messages = messages or {}
        self.search_ids = sorted(self.messages) if search_ids is None else search_ids
        self.login_error = login_error
        self.calls = []
        self.closed = False
        self.logged_out = False
        self.search_charset = None

    def login(self, user, password):
        self.calls.append(('login', user))
        if self.login_error:
            raise imaplib.IMAP4.error(self.login_error)
        return 'OK', [b'LOGIN completed']

    def select(self, mailbox='INBOX', readonly=False):
        self.calls.append(('select', mailbox))
        return 'OK', [str(len(self.messages)).encode()]

    def search(self, charset, *criteria):
        self.search_charset = charset
        self.calls.append(('search', criteria))
        return 'OK', [b' '.join(str(i).encode() for i in self.search_ids)]

    def fetch(self, message_set, message_parts):
        self.calls.append(('fetch', message_set))
        raw = self.messages[int(message_set)]
        return 'OK', [(message_set + b' (RFC822 {%d}' % len(raw), raw), b')']

    def close(self):
        self.closed = True
        return 'OK', [b'CLOSE completed']

    def logout(self):
        self.logged_out = True
        return 'BYE', [b'LOGOUT received']

    def called(self, name):
        return [call for call in self.calls if call[0] == name]


def damaged_deflate_zip(name, content):
    """A zip whose directory is intact but whose compressed member data is scrambled."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(name, content)
    data = bytearray(buffer.getvalue())

    # Member data starts after the 30-byte local header and the filename
    start = 30 + len(name.encode())
    for offset in range(start, start + 20):
        data[offset] ^= 0xFF
    return bytes(data)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        imap_server='imap.hospital.test',
        imap_username='intake@hospital.test',
        imap_password='secret',
        sender_filter=SENDER,
        subject_filter=SUBJECT,
        attachment_dir=str(tmp_path / 'attachments'),
        db_backend='sqlite',
        sqlite_db_path=str(tmp_path / 'data' / 'admissions.db'),
        log_file=None,
    )


@pytest.fixture
def capture():
    return CapturingLogger()


@pytest.fixture
def logger(capture):
    return structlog.wrap_logger(capture, processors=[structlog.stdlib.add_log_level])


@pytest.fixture
def logged():
    """Return (level, event) pairs recorded by a CapturingLogger."""
    def _logged(capture, level=None):
        return [
            (call.method_name, call.kwargs.get('event'))
            for call in capture.calls
            if level is None or call.method_name == level
        ]
    return _logged


@pytest.fixture
def make_row():
    def _make_row(patient_id='P001', **overrides):
        row = {
            'patient_id': patient_id,
            'first_name': 'Thandi',
            'last_name': 'Nkosi',
            'date_of_birth': '1985-03-14',
            'gender': 'F',
            'admission_date': '2024-05-02',
            'discharge_date': '',
            'ward_number': '4',
            'bed_number': '12',
            'diagnosis': 'Pneumonia',
            'treatment_plan': 'IV antibiotics',
            'attending_physician_id': 'D104',
            'emergency_contact_name': 'Sipho Nkosi',
            'emergency_contact_phone': '0825550101',
            'insurance_provider': 'Discovery',
        }
        row.update(overrides)
        return row
    return _make_row


@pytest.fixture
def csv_bytes():
    def _csv_bytes(rows, columns=None):
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=columns or CSV_COLUMNS, extrasaction='ignore')
        writer.writeheader()
        writer.writerows(rows)
        return buffer.getvalue().encode('utf-8')
    return _csv_bytes


@pytest.fixture
def zip_bytes():
    def _zip_bytes(files):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, 'w') as archive:
            for name, content in files.items():
                archive.writestr(name, content)
        return buffer.getvalue()
    return _zip_bytes


@pytest.fixture
def make_zip(tmp_path, zip_bytes):
    def _make_zip(files, name='export.zip'):
        path = tmp_path / name
        path.write_bytes(zip_bytes(files))
        return path
    return _make_zip


@pytest.fixture
def make_email():
    def _make_email(attachments=(), sender=SENDER, subject=SUBJECT):
        msg = EmailMessage()
        msg['From'] = sender
        msg['To'] = 'intake@hospital.test'
        msg['Subject'] = subject
        msg.set_content('Latest admissions attached.')
        for filename, content in attachments:
            msg.add_attachment(content, maintype='application', subtype='zip', filename=filename)
        return msg.as_bytes()
    return _make_email


@pytest.fixture
def fake_imap():
    """The FakeIMAP class, so tests can build one per scenario."""
    return FakeIMAP
