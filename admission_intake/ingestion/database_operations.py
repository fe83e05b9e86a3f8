"""
Duplicate-checked inserts into the admissions table.
"""

from datetime import datetime
from typing import Any, Dict, List, Set

import pytz
import structlog
from pydantic import ValidationError

from admission_intake.database.connection import BaseDatabaseManager
from admission_intake.ingestion.records import (
    ADMISSION_COLUMNS,
    TIMESTAMP_COLUMN,
    PatientAdmission,
    row_identifier,
)
from admission_intake.results import StageResult


class DatabaseOperations:
    """Inserts rows whose patient identifier isn't in the table yet."""

    def __init__(self, db: BaseDatabaseManager, logger=None):
        self.db = db
        self.logger = logger or structlog.get_logger(__name__)
        self.insert_errors: List[str] = []

    def existing_keys(self) -> StageResult[Set[str]]:
        """Snapshot of the identifiers already stored, read once per run."""
        try:
            keys = self.db.fetch_identifiers()
            self.logger.info("Loaded existing patient identifiers", table=self.db.table_name, count=len(keys))
            return StageResult.ok(keys)
        except Exception as e:
            self.logger.error("Failed to read existing identifiers", table=self.db.table_name, error=str(e))
            self.db.rollback()
            return StageResult.failed(f"Identifier scan failed: {e}")

    def insert_new(self, rows: List[Dict[str, Any]], existing_keys: Set[str]) -> int:
        """Insert each row not in existing_keys; one bad row never stops the batch."""
        self.insert_errors = []
        inserted = 0
        skipped = 0

        try:
            self.db.begin()
        except Exception as e:
            self.logger.error("Failed to start transaction", error=str(e))
            self.insert_errors.append(f"Transaction: {e}")
            return 0

        columns = ADMISSION_COLUMNS + [TIMESTAMP_COLUMN]

        for row_number, row in enumerate(rows, start=1):
            patient_id = row_identifier(row)
            if patient_id is not None and patient_id in existing_keys:
                skipped += 1
                continue

            try:
                record = PatientAdmission.model_validate(row)
                values = record.column_values() + [datetime.now(pytz.UTC)]

                with self.db.savepoint():
                    self.db.insert(columns, values)
                inserted += 1

            except ValidationError as e:
                self._record_failure(row_number, patient_id, self._describe(e))
            except Exception as e:
                self._record_failure(row_number, patient_id, str(e))

        try:
            self.db.commit()
        except Exception as e:
            self.logger.error("Commit failed, no rows were stored", error=str(e))
            self.db.rollback()
            self.insert_errors.append(f"Commit: {e}")
            return 0

        self.logger.info(
            "Insert batch committed",
            table=self.db.table_name,
            inserted=inserted,
            skipped_existing=skipped,
            failed=len(self.insert_errors)
        )
        return inserted

    def _record_failure(self, row_number: int, patient_id, reason: str) -> None:
        error_msg = f"Row {row_number}: {reason}"
        self.insert_errors.append(error_msg)
        self.logger.error("Row insert failed", row=row_number, patient_id=patient_id, error=reason)

    @staticmethod
    def _describe(error: ValidationError) -> str:
        parts = []
        for detail in error.errors():
            location = '.'.join(str(part) for part in detail['loc']) or 'row'
            parts.append(f"{location}: {detail['msg']}")
        return '; '.join(parts)
