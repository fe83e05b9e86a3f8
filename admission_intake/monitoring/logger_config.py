"""
Structured logging configuration for the ingestion pipeline.

The logger is built once per process and handed to each component, so
nothing here touches the root logger or structlog's global configuration.
"""

import os
import sys
import uuid
import logging
import structlog
from datetime import datetime
from typing import Optional

from admission_intake.config import Settings

LOGGER_NAME = 'admission_intake'


class IngestionLogger:
    """Builds the structured logger used by every pipeline component."""

    @staticmethod
    def build_logger(settings: Settings, name: str = LOGGER_NAME):
        """Create the process logger: console plus an append-only log file."""
        level = getattr(logging, settings.log_level, logging.INFO)

        std_logger = logging.getLogger(name)
        for handler in list(std_logger.handlers):
            std_logger.removeHandler(handler)
            handler.close()
        std_logger.setLevel(level)
        std_logger.propagate = False

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        std_logger.addHandler(console_handler)

        if settings.log_file:
            log_dir = os.path.dirname(settings.log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)

            file_handler = logging.FileHandler(settings.log_file, mode='a', encoding='utf-8')
            file_handler.setLevel(level)
            std_logger.addHandler(file_handler)

        return structlog.wrap_logger(
            std_logger,
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                IngestionLogger._get_renderer(settings.log_format),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
        )

    @staticmethod
    def _get_renderer(log_format: str):
        """Get the final renderer for the configured format."""
        if log_format.lower() == 'json':
            return structlog.processors.JSONRenderer()
        return structlog.dev.ConsoleRenderer(colors=False)


def bind_run(logger, run_id: Optional[str] = None):
    """Bind a run identifier so every line of one invocation can be traced."""
    return logger.bind(run_id=run_id or str(uuid.uuid4()))


class OperationLogger:
    """Context manager for logging a stage's lifecycle."""

    def __init__(self, logger, operation_name: str, **context):
        self.logger = logger
        self.operation_name = operation_name
        self.context = context
        self.start_time = None

    def __enter__(self):
        self.start_time = datetime.now()
        self.logger.debug(
            f"Stage started: {self.operation_name}",
            stage=self.operation_name,
            **self.context
        )
        return self.logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = (datetime.now() - self.start_time).total_seconds()

        if exc_type is None:
            self.logger.debug(
                f"Stage finished: {self.operation_name}",
                stage=self.operation_name,
                duration_seconds=duration,
                **self.context
            )
        else:
            self.logger.error(
                f"Stage crashed: {self.operation_name}",
                stage=self.operation_name,
                duration_seconds=duration,
                error_type=exc_type.__name__,
                error_message=str(exc_val),
                **self.context
            )

        return False
