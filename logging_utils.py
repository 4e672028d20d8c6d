#!/usr/bin/env python3
"""
Structured Logging Module
=========================
Machine-readable file logging for batch runs:
- One JSON object per record
- Size-based log rotation
- Run IDs so every record of one batch can be grouped
"""

import json
import logging
import logging.handlers
import uuid
from datetime import datetime
from typing import Optional


# Per-wallet context passed as logger.info(..., extra={...})
WALLET_FIELDS = ('wallet', 'address', 'action', 'status', 'signature', 'amount')


class JSONFormatter(logging.Formatter):
    """One JSON object per record, tagged with the batch run ID."""

    _run_id: Optional[str] = None

    @classmethod
    def set_run_id(cls, run_id: Optional[str]):
        """Tag every following record with this batch run ID."""
        cls._run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'ts': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'msg': record.getMessage(),
            'at': f"{record.module}:{record.lineno}",
        }
        if self._run_id:
            entry['run_id'] = self._run_id

        context = {name: getattr(record, name) for name in WALLET_FIELDS if hasattr(record, name)}
        if context:
            entry['wallet_context'] = context

        if record.exc_info:
            entry['error'] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def new_run_id() -> str:
    """Generate and install a new run ID."""
    run_id = str(uuid.uuid4())[:8]
    JSONFormatter.set_run_id(run_id)
    return run_id


def build_json_file_handler(
    log_file: str,
    log_level: str = 'INFO',
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> logging.Handler:
    """Create a rotating file handler that writes JSON lines."""
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count
    )
    handler.setLevel(getattr(logging, log_level.upper()))
    handler.setFormatter(JSONFormatter())
    return handler
