"""
Pipeline driver tests: fake mailbox in front, SQLite behind.
"""

import sqlite3
from unittest.mock import MagicMock, patch

import pytest

from admission_intake.database.connection import BaseDatabaseManager
from admission_intake.database.sqlite_connection import SQLiteManager
from admission_intake.ingestion.database_operations import DatabaseOperations
from admission_intake.ingestion.worker import IngestionWorker, main
from admission_intake.results import StageResult
from conftest import damaged_deflate_zip


@pytest.fixture
def table(settings, logger):
    manager = SQLiteManager(settings, logger)
    assert manager.create_table()
    return manager


@pytest.fixture
def export_email(make_email, zip_bytes, csv_bytes, make_row):
    def _export_email(*patient_ids):
        archive = zip_bytes({'data.csv': csv_bytes([make_row(pid) for pid in patient_ids])})
        return make_email([('admissions.zip', archive)])
    return _export_email


def _seed(manager, logger, make_row, *patient_ids):
    manager.connect()
    try:
        DatabaseOperations(manager, logger).insert_new([make_row(pid) for pid in patient_ids], set())
    finally:
        manager.close()


def _stored_ids(settings):
    connection = sqlite3.connect(settings.sqlite_db_path)
    try:
        return sorted(row[0] for row in connection.execute('SELECT patient_id FROM patient_admissions'))
    finally:
        connection.close()


class TestRunOnce:

    def test_inserts_only_new_patient(self, settings, logger, table, fake_imap, export_email, make_row):
        _seed(table, logger, make_row, 'P001')
        fake = fake_imap(messages={1: export_email('P001', 'P002')})

        with patch('imaplib.IMAP4_SSL', return_value=fake):
            result = IngestionWorker(settings, logger).run_once()

        assert result.is_ok
        assert result.value == 1
        assert _stored_ids(settings) == ['P001', 'P002']
        assert fake.logged_out

    def test_running_twice_inserts_nothing_the_second_time(self, settings, logger, table, fake_imap, export_email):
        fake = fake_imap(messages={1: export_email('P001', 'P002')})

        with patch('imaplib.IMAP4_SSL', return_value=fake):
            first = IngestionWorker(settings, logger).run_once()
            second = IngestionWorker(settings, logger).run_once()

        assert first.value == 2
        assert second.value == 0
        assert _stored_ids(settings) == ['P001', 'P002']

    def test_no_matching_email_never_touches_archive_or_database(self, settings, logger, capture, logged, fake_imap, tmp_path):
        fake = fake_imap()
        db_manager = MagicMock(spec=BaseDatabaseManager)
        archive_loader = MagicMock()

        with patch('imaplib.IMAP4_SSL', return_value=fake):
            result = IngestionWorker(
                settings, logger, archive_loader=archive_loader, db_manager=db_manager
            ).run_once()

        assert result.is_absent
        archive_loader.extract_and_load.assert_not_called()
        db_manager.connect.assert_not_called()
        assert not (tmp_path / 'attachments').exists()
        assert ('warning', 'No matching emails found') in logged(capture)
        assert not logged(capture, 'error')
        assert fake.logged_out

    def test_mail_connection_failure_ends_run(self, settings, logger, fake_imap):
        fake = fake_imap(login_error='AUTHENTICATIONFAILED')
        db_manager = MagicMock(spec=BaseDatabaseManager)

        with patch('imaplib.IMAP4_SSL', return_value=fake):
            result = IngestionWorker(settings, logger, db_manager=db_manager).run_once()

        assert result.is_failed
        db_manager.connect.assert_not_called()
        db_manager.close.assert_called_once()

    def test_archive_without_data_file_ends_run(self, settings, logger, fake_imap, make_email, zip_bytes):
        fake = fake_imap(messages={1: make_email([('admissions.zip', zip_bytes({'notes.txt': b'hi'}))])})
        db_manager = MagicMock(spec=BaseDatabaseManager)

        with patch('imaplib.IMAP4_SSL', return_value=fake):
            result = IngestionWorker(settings, logger, db_manager=db_manager).run_once()

        assert result.is_absent
        db_manager.connect.assert_not_called()

    def test_damaged_archive_fails_run_without_raising(self, settings, logger, fake_imap, make_email,
                                                        csv_bytes, make_row):
        archive = damaged_deflate_zip('data.csv', csv_bytes([make_row(f'P{n:03d}') for n in range(50)]))
        fake = fake_imap(messages={1: make_email([('admissions.zip', archive)])})
        db_manager = MagicMock(spec=BaseDatabaseManager)

        with patch('imaplib.IMAP4_SSL', return_value=fake):
            result = IngestionWorker(settings, logger, db_manager=db_manager).run_once()

        assert result.is_failed
        assert result.reason.startswith('Archive extraction failed')
        db_manager.connect.assert_not_called()
        assert fake.logged_out

    def test_database_connection_failure_still_releases_mailbox(self, settings, logger, fake_imap, export_email):
        fake = fake_imap(messages={1: export_email('P001')})
        db_manager = MagicMock(spec=BaseDatabaseManager)
        db_manager.connect.return_value = StageResult.failed('Database connection failed: refused')

        with patch('imaplib.IMAP4_SSL', return_value=fake):
            result = IngestionWorker(settings, logger, db_manager=db_manager).run_once()

        assert result.is_failed
        assert 'refused' in result.reason
        assert fake.logged_out
        db_manager.close.assert_called_once()

    def test_bad_rows_are_reported_but_do_not_fail_the_run(self, settings, logger, capture, logged, table, fake_imap,
                                                           make_email, zip_bytes, csv_bytes, make_row):
        rows = [make_row('P001'), make_row(''), make_row('P003')]
        archive = zip_bytes({'data.csv': csv_bytes(rows)})
        fake = fake_imap(messages={1: make_email([('admissions.zip', archive)])})

        with patch('imaplib.IMAP4_SSL', return_value=fake):
            result = IngestionWorker(settings, logger).run_once()

        assert result.is_ok
        assert result.value == 2
        assert ('warning', 'Some rows were not inserted') in logged(capture)


class TestMain:

    def test_init_db_creates_table(self, tmp_path, monkeypatch):
        db_path = tmp_path / 'admissions.db'
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv('DB_BACKEND', 'sqlite')
        monkeypatch.setenv('SQLITE_DB_PATH', str(db_path))
        monkeypatch.setenv('LOG_FILE', str(tmp_path / 'logs' / 'intake.log'))

        with pytest.raises(SystemExit) as exit_info:
            main(['--init-db'])

        assert exit_info.value.code == 0
        connection = sqlite3.connect(db_path)
        try:
            tables = [row[0] for row in connection.execute("SELECT name FROM sqlite_master WHERE type='table'")]
        finally:
            connection.close()
        assert 'patient_admissions' in tables

    def test_no_matching_email_exits_cleanly(self, tmp_path, monkeypatch, fake_imap):
        monkeypatch.chdir(tmp_path)
        for name, value in {
            'IMAP_SERVER': 'imap.hospital.test',
            'IMAP_USERNAME': 'intake@hospital.test',
            'IMAP_PASSWORD': 'secret',
            'EMAIL_SENDER_FILTER': 'exports@hospital.test',
            'EMAIL_SUBJECT_FILTER': 'Daily Admissions Export',
            'DB_BACKEND': 'sqlite',
            'SQLITE_DB_PATH': str(tmp_path / 'admissions.db'),
            'ATTACHMENT_DIR': str(tmp_path / 'attachments'),
            'LOG_FILE': str(tmp_path / 'logs' / 'intake.log'),
        }.items():
            monkeypatch.setenv(name, value)

        with patch('imaplib.IMAP4_SSL', return_value=fake_imap()):
            with pytest.raises(SystemExit) as exit_info:
                main([])

        assert exit_info.value.code == 0
        assert 'No matching emails found' in (tmp_path / 'logs' / 'intake.log').read_text()
