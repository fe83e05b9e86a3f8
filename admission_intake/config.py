"""
Runtime configuration assembled once from the environment.
"""

import os
from typing import List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator


ENV_VARS = {
    'imap_server': 'IMAP_SERVER',
    'imap_port': 'IMAP_PORT',
    'imap_username': 'IMAP_USERNAME',
    'imap_password': 'IMAP_PASSWORD',
    'imap_use_ssl': 'IMAP_USE_SSL',
    'imap_inbox': 'IMAP_INBOX',
    'sender_filter': 'EMAIL_SENDER_FILTER',
    'subject_filter': 'EMAIL_SUBJECT_FILTER',
    'archive_suffix': 'ARCHIVE_SUFFIX',
    'attachment_dir': 'ATTACHMENT_DIR',
    'db_backend': 'DB_BACKEND',
    'db_host': 'DB_HOST',
    'db_port': 'DB_PORT',
    'db_name': 'DB_NAME',
    'db_user': 'DB_USER',
    'db_password': 'DB_PASSWORD',
    'db_schema': 'DB_SCHEMA',
    'db_table': 'DB_TABLE',
    'sqlite_db_path': 'SQLITE_DB_PATH',
    'log_level': 'LOG_LEVEL',
    'log_format': 'LOG_FORMAT',
    'log_file': 'LOG_FILE',
    'smtp_server': 'SMTP_SERVER',
    'smtp_port': 'SMTP_PORT',
    'smtp_username': 'SMTP_USERNAME',
    'smtp_password': 'SMTP_PASSWORD',
    'smtp_use_tls': 'SMTP_USE_TLS',
}


class Settings(BaseModel):
    """Immutable settings passed explicitly into every component."""

    model_config = ConfigDict(frozen=True)

    # Mailbox
    imap_server: Optional[str] = None
    imap_port: int = 993
    imap_username: Optional[str] = None
    imap_password: Optional[str] = None
    imap_use_ssl: bool = True
    imap_inbox: str = 'INBOX'

    # Message selection
    sender_filter: Optional[str] = None
    subject_filter: Optional[str] = None
    archive_suffix: str = '.zip'
    attachment_dir: str = 'attachments'

    # Database
    db_backend: str = 'postgres'
    db_host: Optional[str] = None
    db_port: int = 5432
    db_name: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    db_schema: str = 'public'
    db_table: str = 'patient_admissions'
    sqlite_db_path: str = 'data/admissions.db'

    # Logging
    log_level: str = 'INFO'
    log_format: str = 'console'
    log_file: Optional[str] = 'logs/admission_intake.log'

    # Outgoing mail, used only by the demo sender
    smtp_server: str = 'smtp.gmail.com'
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True

    @field_validator('db_backend')
    @classmethod
    def validate_backend(cls, v):
        v = v.strip().lower()
        if v not in ('postgres', 'sqlite'):
            raise ValueError(f"Unsupported database backend: '{v}'")
        return v

    @field_validator('archive_suffix')
    @classmethod
    def validate_archive_suffix(cls, v):
        v = v.strip().lower()
        return v if v.startswith('.') else f'.{v}'

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        return v.strip().upper()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> 'Settings':
        """Build settings from environment variables (and a .env file)."""
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ

        values = {}
        for field_name, var in ENV_VARS.items():
            value = environ.get(var)
            if value is not None and value != '':
                values[field_name] = value

        return cls(**values)

    def missing_required(self) -> List[str]:
        """Names of the environment variables a full run needs but are unset."""
        required = [
            'imap_server', 'imap_username', 'imap_password',
            'sender_filter', 'subject_filter',
        ]
        if self.db_backend == 'postgres':
            required += ['db_host', 'db_name', 'db_user', 'db_password']

        return [ENV_VARS[name] for name in required if not getattr(self, name)]
