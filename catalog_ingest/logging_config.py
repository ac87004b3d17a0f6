"""Structured logging configuration for ingestion runs."""

import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

from pythonjsonlogger import jsonlogger

# Per-document context set through get_logger(); indexed as top-level fields
CONTEXT_FIELDS = ("file_name", "source_kind", "candidate")

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("httpx", "openai", "boto3", "botocore", "urllib3", "pdfminer")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter tagging every record with the run and document it belongs to."""

    def __init__(self, *args, run_id: str = "", **kwargs):
        super().__init__(*args, **kwargs)
        self.run_id = run_id

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['source'] = f"{record.filename}:{record.lineno}"
        if self.run_id:
            log_record['run_id'] = self.run_id

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_record[name] = value


class ConsoleFormatter(logging.Formatter):
    """Human-readable lines, prefixed with the document being processed."""

    def format(self, record):
        line = super().format(record)
        file_name = getattr(record, "file_name", None)
        if file_name:
            return f"[{file_name}] {line}"
        return line


def setup_logging(log_level: str = "INFO", base_dir: str | Path | None = None, run_id: str | None = None):
    """Configure logging for an ingestion run.

    Args:
        log_level: Root log level name
        base_dir: Optional base directory to place the logs/ folder in.
                  If omitted, uses the current working directory.
        run_id: Identifier stamped on every JSON record (generated if omitted)
    """
    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    run_id = run_id or uuid.uuid4().hex[:12]

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(ConsoleFormatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    ))
    root_logger.addHandler(console_handler)

    json_formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        run_id=run_id,
    )
    json_handler = logging.FileHandler(logs_dir / "ingest.log")
    json_handler.setLevel(logging.DEBUG)
    json_handler.setFormatter(json_formatter)
    root_logger.addHandler(json_handler)

    # Failed documents and candidates only
    error_handler = logging.FileHandler(logs_dir / "error.log")
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(json_formatter)
    root_logger.addHandler(error_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(f"Logging initialised (run {run_id})")
    return root_logger


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that merges document context into each record."""

    def process(self, msg, kwargs):
        extra = kwargs.get('extra', {})
        extra.update(self.extra)
        kwargs['extra'] = extra
        return msg, kwargs


def get_logger(name: str, **context) -> LoggerAdapter:
    """
    Get a logger bound to one document.

    Args:
        name: Logger name (usually __name__)
        **context: Context fields, normally file_name and source_kind

    Returns:
        LoggerAdapter with context
    """
    logger = logging.getLogger(name)
    return LoggerAdapter(logger, context)
