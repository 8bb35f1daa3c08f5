"""
Logging setup and handshake outcome tracking.
"""
import json
import logging
import logging.handlers
import sys
import threading
import time
import traceback
from collections import Counter, deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from ..security.context_factory import describe_handshake_failure


CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
HISTORY_SIZE = 1000


@dataclass
class LogEntry:
    """One JSON log line. ``peer`` and ``role`` are lifted out of the record's extra data."""
    timestamp: str
    level: str
    logger: str
    message: str
    location: str
    process_id: int
    thread_id: int
    peer: Optional[str] = None
    role: Optional[str] = None
    extra_data: Optional[Dict[str, Any]] = None
    exception: Optional[Dict[str, Any]] = None


@dataclass
class HandshakeRecord:
    """Outcome of one connect or handshake attempt."""
    operation: str
    role: str
    peer: str
    duration_ms: float
    finished_at: str
    established: bool
    failure_reason: Optional[str] = None


class JSONFormatter(logging.Formatter):
    """Formats records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        extra_data = dict(getattr(record, 'extra_data', None) or {})

        entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created).isoformat(),
            level=record.levelname,
            logger=record.name,
            message=record.getMessage(),
            location=f"{record.module}:{record.funcName}:{record.lineno}",
            process_id=record.process,
            thread_id=record.thread,
            peer=extra_data.pop('peer', None),
            role=extra_data.pop('role', None),
            extra_data=extra_data or None
        )

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            entry.exception = {
                'type': exc_type.__name__,
                'message': str(exc_value),
                'traceback': traceback.format_exception(exc_type, exc_value, exc_tb)
            }

        return json.dumps(asdict(entry), default=str)


class HandshakeMonitor:
    """
    Keeps the most recent connect and handshake outcomes.

    Operations are named ``client_connect``, ``client_handshake`` and
    ``server_handshake``. Only the last ``history_size`` records are kept.
    """

    def __init__(self, history_size: int = HISTORY_SIZE):
        self._records: Deque[HandshakeRecord] = deque(maxlen=history_size)
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @contextmanager
    def track(self, operation: str, peer: str, role: str):
        """Record how long the wrapped attempt took and why it failed, if it did."""
        started = time.perf_counter()
        failure_reason = None

        try:
            yield
        except BaseException as e:
            failure_reason = describe_handshake_failure(e)
            raise
        finally:
            record = HandshakeRecord(
                operation=operation,
                role=role,
                peer=peer,
                duration_ms=(time.perf_counter() - started) * 1000,
                finished_at=datetime.now().isoformat(),
                established=failure_reason is None,
                failure_reason=failure_reason
            )
            with self._lock:
                self._records.append(record)

            self.logger.debug(f"{operation} with {peer} took {record.duration_ms:.1f} ms",
                              extra={'extra_data': asdict(record)})

    def records(self, operation: Optional[str] = None) -> List[HandshakeRecord]:
        with self._lock:
            records = list(self._records)
        if operation:
            records = [r for r in records if r.operation == operation]
        return records

    def summary(self, operation: str) -> Dict[str, Any]:
        """
        Summarise one operation.

        Returns:
            Counts, success rate, durations and a count per failure reason,
            or an empty dict if the operation never ran.
        """
        records = self.records(operation)
        if not records:
            return {}

        established = [r for r in records if r.established]
        durations = [r.duration_ms for r in records]
        reasons = Counter(r.failure_reason for r in records if not r.established)

        return {
            'operation': operation,
            'attempts': len(records),
            'established': len(established),
            'failed': len(records) - len(established),
            'success_rate': len(established) / len(records),
            'avg_duration_ms': sum(durations) / len(durations),
            'max_duration_ms': max(durations),
            'failure_reasons': dict(reasons)
        }

    def summaries(self) -> Dict[str, Dict[str, Any]]:
        operations = {r.operation for r in self.records()}
        return {operation: self.summary(operation) for operation in sorted(operations)}


class LoggingService:
    """Installs the configured root handlers and owns the handshake monitor."""

    def __init__(self, config):
        self.config = config
        self.handshake_monitor = HandshakeMonitor()
        self._setup_logging()
        self.logger = logging.getLogger(__name__)
        self.logger.info(f"Logging to {self.config.log_file_path} at {self.config.log_level}")

    @staticmethod
    def _rotating_handler(path: str, max_bytes: int, backups: int, level: int) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            filename=path,
            maxBytes=max_bytes,
            backupCount=backups,
            encoding='utf-8'
        )
        handler.setFormatter(JSONFormatter())
        handler.setLevel(level)
        return handler

    def _setup_logging(self):
        """Replace the root handlers with console, JSON file and JSON error file handlers."""
        log_path = Path(self.config.log_file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        root_logger.setLevel(log_level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        console_handler.setLevel(log_level)

        root_logger.addHandler(self._rotating_handler(str(log_path), 10 * 1024 * 1024, 5, log_level))
        root_logger.addHandler(console_handler)
        root_logger.addHandler(
            self._rotating_handler(str(log_path.with_suffix('.errors.log')), 5 * 1024 * 1024, 3, logging.ERROR)
        )

    def handshake_summary(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation summaries for status reports."""
        return self.handshake_monitor.summaries()

    def shutdown(self):
        """Flush and close all handlers attached to the root logger."""
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            handler.flush()
            handler.close()
            root_logger.removeHandler(handler)
