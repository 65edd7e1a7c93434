"""
Run recorders: where the loader reports what it did.

Callers hand a recorder to the loader; nothing here is invoked implicitly.
"""
import json
import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Protocol

import duckdb

from src.airbnb.config import AUDIT_LOG
from src.logging_config import get_logger

logger = get_logger(__name__)


class RunRecorder(Protocol):
    def record(self, event: str, **fields) -> None:
        ...


def _jsonable(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


class NullRecorder:
    def record(self, event: str, **fields) -> None:
        pass


class LoggingRecorder:
    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logger

    def record(self, event: str, **fields) -> None:
        details = " ".join(f"{k}={_jsonable(v)}" for k, v in sorted(fields.items()))
        self.log.info("%s %s", event, details)


class WarehouseAuditRecorder:
    """Appends each event to the audit_log table of the warehouse."""

    def __init__(self, conn: duckdb.DuckDBPyConnection, table: str = AUDIT_LOG) -> None:
        self.conn = conn
        self.table = table
        self.conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                recorded_at TIMESTAMP,
                event VARCHAR,
                details VARCHAR
            )
        """)

    def record(self, event: str, **fields) -> None:
        details = json.dumps({k: _jsonable(v) for k, v in fields.items()}, sort_keys=True)
        self.conn.execute(
            f"INSERT INTO {self.table} VALUES (?, ?, ?)",
            [datetime.now(timezone.utc).replace(tzinfo=None), event, details],
        )


class CompositeRecorder:
    def __init__(self, *recorders: RunRecorder) -> None:
        self.recorders = recorders

    def record(self, event: str, **fields) -> None:
        for recorder in self.recorders:
            recorder.record(event, **fields)
