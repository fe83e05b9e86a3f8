#!/usr/bin/env python3

"""
Create the admissions table for the configured backend.
"""

import sys

from admission_intake.config import Settings
from admission_intake.database.connection import get_database_manager
from admission_intake.monitoring.logger_config import IngestionLogger

settings = Settings.from_env()
logger = IngestionLogger.build_logger(settings)

if get_database_manager(settings, logger).create_table():
    print('Database initialized successfully')
else:
    print('Database initialization failed, see the log for details')
    sys.exit(1)
