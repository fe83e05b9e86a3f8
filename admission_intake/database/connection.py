"""
Database connection management for the admissions table.

One connection per run; the caller opens it, drives a single transaction,
and closes it on every exit path.
"""

from contextlib import contextmanager
from typing import Any, List, Sequence, Set

import psycopg2
import structlog
from psycopg2 import sql

from admission_intake.config import Settings
from admission_intake.ingestion.records import IDENTIFIER_COLUMN
from admission_intake.results import StageResult

ADMISSIONS_TABLE_DDL = """
    patient_id TEXT PRIMARY KEY,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    date_of_birth DATE NOT NULL,
    gender TEXT NOT NULL,
    admission_date DATE NOT NULL,
    discharge_date DATE,
    ward_number INTEGER NOT NULL,
    bed_number INTEGER NOT NULL,
    diagnosis TEXT,
    treatment_plan TEXT,
    attending_physician_id TEXT,
    emergency_contact_name TEXT,
    emergency_contact_phone TEXT,
    insurance_provider TEXT,
    inserted_at {timestamp_type} NOT NULL
"""


class BaseDatabaseManager:
    """Operations shared by the Postgres and SQLite managers."""

    backend = 'base'

    def __init__(self, settings: Settings, logger=None):
        self.settings = settings
        self.logger = logger or structlog.get_logger(__name__)
        self.connection = None

    def _open(self):
        raise NotImplementedError

    def _table_ref(self):
        raise NotImplementedError

    def _select_identifiers_query(self):
        raise NotImplementedError

    def _insert_query(self, columns: Sequence[str]):
        raise NotImplementedError

    def _create_table_statements(self) -> List[Any]:
        raise NotImplementedError

    def _adapt(self, value: Any) -> Any:
        return value

    @property
    def table_name(self) -> str:
        return self.settings.db_table

    def connect(self) -> StageResult[Any]:
        """Open the run's connection. Failures come back as a failed result."""
        try:
            self.connection = self._open()
            self.logger.info("Connected to database", backend=self.backend, table=self.table_name)
            return StageResult.ok(self.connection)
        except Exception as e:
            self.logger.error("Failed to connect to database", backend=self.backend, error=str(e))
            self.connection = None
            return StageResult.failed(f"Database connection failed: {e}")

    def close(self) -> None:
        """Close the connection, discarding anything uncommitted."""
        if not self.connection:
            return

        try:
            self.connection.close()
            self.logger.info("Database connection closed")
        except Exception as e:
            self.logger.warning("Error closing database connection", error=str(e))
        finally:
            self.connection = None

    def _require_connection(self):
        if not self.connection:
            raise RuntimeError("Not connected to database")
        return self.connection

    def fetch_identifiers(self) -> Set[str]:
        """Every patient identifier currently in the target table."""
        connection = self._require_connection()
        cursor = connection.cursor()
        try:
            cursor.execute(self._select_identifiers_query())
            return {str(row[0]).strip() for row in cursor.fetchall() if row[0] is not None}
        finally:
            cursor.close()

    def begin(self) -> None:
        """Start the run's write transaction."""

    def insert(self, columns: Sequence[str], values: Sequence[Any]) -> None:
        connection = self._require_connection()
        cursor = connection.cursor()
        try:
            cursor.execute(self._insert_query(columns), [self._adapt(v) for v in values])
        finally:
            cursor.close()

    @contextmanager
    def savepoint(self, name: str = 'admission_row'):
        """Scope a statement so its failure rolls back alone."""
        connection = self._require_connection()
        cursor = connection.cursor()
        cursor.execute(f"SAVEPOINT {name}")
        try:
            yield
        except Exception as e:
            try:
                cursor.execute(f"ROLLBACK TO SAVEPOINT {name}")
                cursor.execute(f"RELEASE SAVEPOINT {name}")
            except Exception as rollback_error:
                self.logger.error(
                    "Savepoint rollback failed",
                    savepoint=name,
                    error=str(rollback_error),
                    cause=str(e)
                )
            # The row's own error is what gets reported
            raise e
        else:
            cursor.execute(f"RELEASE SAVEPOINT {name}")
        finally:
            cursor.close()

    def commit(self) -> None:
        self._require_connection().commit()

    def rollback(self) -> None:
        if self.connection:
            try:
                self.connection.rollback()
            except Exception as e:
                self.logger.warning("Rollback failed", error=str(e))

    def create_table(self) -> bool:
        """Create the admissions table if it doesn't exist."""
        opened_here = self.connection is None
        if opened_here and not self.connect().is_ok:
            return False

        try:
            cursor = self.connection.cursor()
            try:
                for statement in self._create_table_statements():
                    cursor.execute(statement)
            finally:
                cursor.close()
            self.connection.commit()
            self.logger.info("Admissions table ready", backend=self.backend, table=self.table_name)
            return True
        except Exception as e:
            self.rollback()
            self.logger.error("Failed to create admissions table", error=str(e))
            return False
        finally:
            if opened_here:
                self.close()

    def health_check(self) -> bool:
        """Check if the database is reachable and answers a trivial query."""
        opened_here = self.connection is None
        if opened_here and not self.connect().is_ok:
            return False

        try:
            cursor = self.connection.cursor()
            try:
                cursor.execute("SELECT 1")
                row = cursor.fetchone()
            finally:
                cursor.close()
            return row is not None and row[0] == 1
        except Exception as e:
            self.logger.error("Database health check failed", error=str(e))
            return False
        finally:
            if opened_here:
                self.close()


class DatabaseManager(BaseDatabaseManager):
    """Postgres access through psycopg2."""

    backend = 'postgres'

    def _open(self):
        return psycopg2.connect(
            host=self.settings.db_host,
            port=self.settings.db_port,
            dbname=self.settings.db_name,
            user=self.settings.db_user,
            password=self.settings.db_password,
        )

    def _table_ref(self):
        return sql.Identifier(self.settings.db_schema, self.settings.db_table)

    def _select_identifiers_query(self):
        return sql.SQL("SELECT {} FROM {}").format(sql.Identifier(IDENTIFIER_COLUMN), self._table_ref())

    def _insert_query(self, columns: Sequence[str]):
        return sql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
            self._table_ref(),
            sql.SQL(', ').join(sql.Identifier(column) for column in columns),
            sql.SQL(', ').join(sql.Placeholder() for _ in columns),
        )

    def _create_table_statements(self) -> List[Any]:
        return [
            sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(self.settings.db_schema)),
            sql.SQL("CREATE TABLE IF NOT EXISTS {} (" + ADMISSIONS_TABLE_DDL.format(timestamp_type='TIMESTAMPTZ') + ")").format(
                self._table_ref()
            ),
        ]


def get_database_manager(settings: Settings, logger=None) -> BaseDatabaseManager:
    """Manager for the configured backend."""
    if settings.db_backend == 'sqlite':
        from admission_intake.database.sqlite_connection import SQLiteManager
        return SQLiteManager(settings, logger)
    return DatabaseManager(settings, logger)
