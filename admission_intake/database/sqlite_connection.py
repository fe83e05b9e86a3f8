"""
SQLite backend for local runs and tests without a Postgres server.
"""

import os
import sqlite3
from datetime import date, datetime
from typing import Any, List, Sequence

from admission_intake.database.connection import ADMISSIONS_TABLE_DDL, BaseDatabaseManager
from admission_intake.ingestion.records import IDENTIFIER_COLUMN


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class SQLiteManager(BaseDatabaseManager):
    """SQLite database manager. The schema setting is ignored."""

    backend = 'sqlite'

    def __init__(self, settings, logger=None):
        super().__init__(settings, logger)
        self.db_path = settings.sqlite_db_path

    def _ensure_db_directory(self):
        """Ensure the database directory exists."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    def _open(self):
        self._ensure_db_directory()
        # Transactions are managed explicitly through begin()/commit()
        return sqlite3.connect(self.db_path, isolation_level=None)

    def _table_ref(self) -> str:
        return _quote_identifier(self.settings.db_table)

    def _select_identifiers_query(self) -> str:
        return f"SELECT {_quote_identifier(IDENTIFIER_COLUMN)} FROM {self._table_ref()}"

    def _insert_query(self, columns: Sequence[str]) -> str:
        column_list = ', '.join(_quote_identifier(column) for column in columns)
        placeholders = ', '.join('?' for _ in columns)
        return f"INSERT INTO {self._table_ref()} ({column_list}) VALUES ({placeholders})"

    def _create_table_statements(self) -> List[str]:
        return [
            f"CREATE TABLE IF NOT EXISTS {self._table_ref()} ("
            + ADMISSIONS_TABLE_DDL.format(timestamp_type='TEXT')
            + ")"
        ]

    def _adapt(self, value: Any) -> Any:
        # Store dates as ISO text rather than relying on sqlite3's default adapters
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        return value

    def begin(self) -> None:
        connection = self._require_connection()
        if not connection.in_transaction:
            connection.execute("BEGIN")
