"""
Pipeline driver: mailbox -> archive -> admissions table, once per invocation.
"""

import sys
import argparse
from pathlib import Path
from typing import Optional

from admission_intake.config import Settings
from admission_intake.database.connection import BaseDatabaseManager, get_database_manager
from admission_intake.ingestion.archive_loader import ArchiveLoader
from admission_intake.ingestion.database_operations import DatabaseOperations
from admission_intake.ingestion.imap_client import IMAPClient
from admission_intake.monitoring.health import HealthChecker
from admission_intake.monitoring.logger_config import IngestionLogger, OperationLogger, bind_run
from admission_intake.results import StageResult


class IngestionWorker:
    """Runs the five stages in order, stopping at the first one with nothing to hand on."""

    def __init__(
        self,
        settings: Settings,
        logger,
        imap_client: Optional[IMAPClient] = None,
        archive_loader: Optional[ArchiveLoader] = None,
        db_manager: Optional[BaseDatabaseManager] = None,
    ):
        self.settings = settings
        self.logger = logger
        self.imap_client = imap_client or IMAPClient(settings, logger)
        self.archive_loader = archive_loader or ArchiveLoader(logger)
        self.db_manager = db_manager or get_database_manager(settings, logger)
        self.db_ops = DatabaseOperations(self.db_manager, logger)

    def run_once(self) -> StageResult[int]:
        """Run a single ingestion pass and return the number of rows inserted."""
        self.logger.info("Starting ingestion run")

        missing = self.settings.missing_required()
        if missing:
            self.logger.warning("Configuration incomplete", missing=missing)

        try:
            result = self._run_stages()
        finally:
            self.imap_client.disconnect()
            self.db_manager.close()

        if result.is_ok:
            self.logger.info("Ingestion run completed", inserted=result.value)
        elif result.is_absent:
            self.logger.info("Ingestion run ended early", reason=result.reason)
        else:
            self.logger.error("Ingestion run failed", reason=result.reason)
        return result

    def _run_stages(self) -> StageResult[int]:
        attachment_dir = Path(self.settings.attachment_dir)

        with OperationLogger(self.logger, 'mail_connect'):
            session = self.imap_client.connect()
        if not session.is_ok:
            return StageResult.failed(session.reason)

        with OperationLogger(self.logger, 'download_attachment'):
            download = self.imap_client.find_and_download(
                self.settings.sender_filter,
                self.settings.subject_filter,
                str(attachment_dir),
            )
        if not download.is_ok:
            return self._stop(download)

        # Nothing else is needed from the mailbox
        self.imap_client.disconnect()

        with OperationLogger(self.logger, 'extract_and_load'):
            loaded = self.archive_loader.extract_and_load(download.value, attachment_dir)
        if not loaded.is_ok:
            return self._stop(loaded)

        with OperationLogger(self.logger, 'database_connect'):
            connection = self.db_manager.connect()
        if not connection.is_ok:
            return StageResult.failed(connection.reason)

        with OperationLogger(self.logger, 'existing_keys'):
            snapshot = self.db_ops.existing_keys()
        if not snapshot.is_ok:
            return self._stop(snapshot)

        with OperationLogger(self.logger, 'insert_new'):
            inserted = self.db_ops.insert_new(loaded.value, snapshot.value)

        if self.db_ops.insert_errors:
            self.logger.warning(
                "Some rows were not inserted",
                failed=len(self.db_ops.insert_errors),
                errors=self.db_ops.insert_errors[:5]
            )
        return StageResult.ok(inserted)

    @staticmethod
    def _stop(result: StageResult) -> StageResult[int]:
        if result.is_absent:
            return StageResult.absent(result.reason)
        return StageResult.failed(result.reason)

    def health_check(self) -> bool:
        """Perform health check of all components."""
        report = HealthChecker(self.settings, self.logger, self.imap_client, self.db_manager).check_all()
        return report['status'] == 'healthy'


def main(argv=None):
    """Main entry point for the ingestion worker."""
    parser = argparse.ArgumentParser(description='Load the latest emailed admission export into the database')
    parser.add_argument('--health-check', action='store_true', help='Check mailbox and database connectivity')
    parser.add_argument('--init-db', action='store_true', help='Create the admissions table if missing')

    args = parser.parse_args(argv)

    settings = Settings.from_env()
    logger = bind_run(IngestionLogger.build_logger(settings))

    if args.init_db:
        created = get_database_manager(settings, logger).create_table()
        sys.exit(0 if created else 1)

    worker = IngestionWorker(settings, logger)

    if args.health_check:
        sys.exit(0 if worker.health_check() else 1)

    result = worker.run_once()
    sys.exit(1 if result.is_failed else 0)


if __name__ == "__main__":
    main()
