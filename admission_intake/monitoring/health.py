"""
Connectivity checks for the mailbox and the database.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from admission_intake.config import Settings
from admission_intake.database.connection import BaseDatabaseManager, get_database_manager
from admission_intake.ingestion.imap_client import IMAPClient


class HealthChecker:
    """Provides health checks for system components."""

    def __init__(
        self,
        settings: Settings,
        logger,
        imap_client: Optional[IMAPClient] = None,
        db_manager: Optional[BaseDatabaseManager] = None,
    ):
        self.settings = settings
        self.logger = logger
        self.imap_client = imap_client or IMAPClient(settings, logger)
        self.db_manager = db_manager or get_database_manager(settings, logger)

    @staticmethod
    def _elapsed_ms(start_time: datetime) -> int:
        return int((datetime.now() - start_time).total_seconds() * 1000)

    def check_database_health(self) -> Dict[str, Any]:
        """Check database connectivity with a trivial query."""
        start_time = datetime.now()

        healthy = self.db_manager.health_check()
        report = {
            'status': 'healthy' if healthy else 'unhealthy',
            'backend': self.db_manager.backend,
            'response_time_ms': self._elapsed_ms(start_time),
            'timestamp': datetime.now().isoformat()
        }
        if not healthy:
            report['error'] = 'Database connection failed'
        return report

    def check_imap_health(self) -> Dict[str, Any]:
        """Check that the mailbox accepts a login and the inbox can be selected."""
        start_time = datetime.now()

        try:
            session = self.imap_client.connect()
            if not session.is_ok:
                return {
                    'status': 'unhealthy',
                    'error': session.reason,
                    'response_time_ms': self._elapsed_ms(start_time),
                    'timestamp': datetime.now().isoformat()
                }

            status, _ = session.value.select(self.settings.imap_inbox, readonly=True)
            return {
                'status': 'healthy' if status == 'OK' else 'unhealthy',
                'server': self.settings.imap_server,
                'inbox_accessible': status == 'OK',
                'response_time_ms': self._elapsed_ms(start_time),
                'timestamp': datetime.now().isoformat()
            }

        except Exception as e:
            self.logger.error("IMAP health check failed", error=str(e))
            return {
                'status': 'unhealthy',
                'error': str(e),
                'response_time_ms': self._elapsed_ms(start_time),
                'timestamp': datetime.now().isoformat()
            }
        finally:
            self.imap_client.disconnect()

    def check_all(self) -> Dict[str, Any]:
        """Overall status: healthy only when every component is."""
        components = {
            'database': self.check_database_health(),
            'imap': self.check_imap_health(),
        }
        healthy = all(c['status'] == 'healthy' for c in components.values())

        self.logger.info(
            "Health check",
            database=components['database']['status'],
            imap=components['imap']['status'],
            overall='healthy' if healthy else 'unhealthy'
        )
        return {
            'status': 'healthy' if healthy else 'unhealthy',
            'components': components,
            'timestamp': datetime.now().isoformat()
        }
