"""
Tests for logging setup and handshake outcome tracking.
"""
import asyncio
import json
import logging
import logging.handlers
import os
import shutil
import ssl
import sys
import tempfile
import unittest
from pathlib import Path

from easytls.models.config import Config
from easytls.services.logging_service import HandshakeMonitor, JSONFormatter, LoggingService


def make_record(name='easytls.services.server_listener', level=logging.INFO, msg='Listening on 127.0.0.1:8443',
                exc_info=None, extra_data=None):
    record = logging.getLogger('test').makeRecord(
        name=name, level=level, fn='server_listener.py', lno=42, msg=msg, args=(), exc_info=exc_info
    )
    if extra_data is not None:
        record.extra_data = extra_data
    return record


class TestJSONFormatter(unittest.TestCase):
    """Test cases for the JSON line formatter."""

    def setUp(self):
        self.formatter = JSONFormatter()

    def test_basic_record(self):
        entry = json.loads(self.formatter.format(make_record()))

        self.assertEqual(entry['level'], 'INFO')
        self.assertEqual(entry['logger'], 'easytls.services.server_listener')
        self.assertEqual(entry['message'], 'Listening on 127.0.0.1:8443')
        self.assertTrue(entry['location'].endswith(':42'))
        self.assertIsNone(entry['peer'])
        self.assertIsNone(entry['extra_data'])
        self.assertIsNone(entry['exception'])

    def test_peer_and_role_lifted_from_extra_data(self):
        record = make_record(msg='Handshake complete',
                             extra_data={'peer': 'localhost:8443', 'role': 'client', 'duration_ms': 12.5})

        entry = json.loads(self.formatter.format(record))

        self.assertEqual(entry['peer'], 'localhost:8443')
        self.assertEqual(entry['role'], 'client')
        self.assertEqual(entry['extra_data'], {'duration_ms': 12.5})
        # The record itself is left untouched
        self.assertIn('peer', record.extra_data)

    def test_exception_details(self):
        try:
            raise ConnectionResetError("peer reset")
        except ConnectionResetError:
            record = make_record(level=logging.ERROR, msg='Transport error during handshake',
                                 exc_info=sys.exc_info())

        entry = json.loads(self.formatter.format(record))

        self.assertEqual(entry['exception']['type'], 'ConnectionResetError')
        self.assertEqual(entry['exception']['message'], 'peer reset')
        self.assertIsInstance(entry['exception']['traceback'], list)


class TestHandshakeMonitor(unittest.TestCase):
    """Test cases for handshake outcome tracking."""

    def setUp(self):
        self.monitor = HandshakeMonitor()

    def test_established_attempt(self):
        with self.monitor.track('client_handshake', 'localhost:8443', role='client'):
            pass

        record = self.monitor.records()[0]
        self.assertEqual(record.operation, 'client_handshake')
        self.assertEqual(record.role, 'client')
        self.assertEqual(record.peer, 'localhost:8443')
        self.assertTrue(record.established)
        self.assertIsNone(record.failure_reason)
        self.assertGreaterEqual(record.duration_ms, 0)

    def test_failure_reason_from_tls_error(self):
        error = ssl.SSLError(1, 'alert')
        error.reason = 'TLSV1_ALERT_UNKNOWN_CA'

        with self.assertRaises(ssl.SSLError):
            with self.monitor.track('server_handshake', '127.0.0.1:50000', role='server'):
                raise error

        record = self.monitor.records()[0]
        self.assertFalse(record.established)
        self.assertEqual(record.failure_reason, 'TLSV1_ALERT_UNKNOWN_CA')

    def test_failure_without_message_uses_type_name(self):
        with self.assertRaises(asyncio.CancelledError):
            with self.monitor.track('server_handshake', '127.0.0.1:50000', role='server'):
                raise asyncio.CancelledError()

        self.assertEqual(self.monitor.records()[0].failure_reason, 'CancelledError')

    def test_records_filtered_by_operation(self):
        with self.monitor.track('client_connect', 'localhost:8443', role='client'):
            pass
        with self.monitor.track('client_handshake', 'localhost:8443', role='client'):
            pass

        self.assertEqual(len(self.monitor.records('client_connect')), 1)
        self.assertEqual(len(self.monitor.records()), 2)

    def test_summary(self):
        for _ in range(2):
            with self.monitor.track('server_handshake', '127.0.0.1:50000', role='server'):
                pass
        for _ in range(2):
            try:
                with self.monitor.track('server_handshake', '127.0.0.1:50001', role='server'):
                    raise ConnectionResetError("peer reset")
            except ConnectionResetError:
                pass

        summary = self.monitor.summary('server_handshake')

        self.assertEqual(summary['attempts'], 4)
        self.assertEqual(summary['established'], 2)
        self.assertEqual(summary['failed'], 2)
        self.assertEqual(summary['success_rate'], 0.5)
        self.assertEqual(summary['failure_reasons'], {'peer reset': 2})
        self.assertGreaterEqual(summary['max_duration_ms'], summary['avg_duration_ms'])

    def test_summary_unknown_operation(self):
        self.assertEqual(self.monitor.summary('server_handshake'), {})

    def test_history_is_bounded(self):
        monitor = HandshakeMonitor(history_size=5)

        for port in range(10):
            with monitor.track('client_handshake', f'localhost:{port}', role='client'):
                pass

        records = monitor.records()
        self.assertEqual(len(records), 5)
        self.assertEqual(records[0].peer, 'localhost:5')

    def test_summaries_keyed_by_operation(self):
        with self.monitor.track('client_connect', 'localhost:8443', role='client'):
            pass
        with self.monitor.track('client_handshake', 'localhost:8443', role='client'):
            pass

        self.assertEqual(list(self.monitor.summaries()), ['client_connect', 'client_handshake'])


class TestLoggingService(unittest.TestCase):
    """Test cases for the configured root handlers."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = Config(
            log_level="INFO",
            log_file_path=os.path.join(self.temp_dir, "logs", "easytls.log")
        )
        self.logging_service = LoggingService(self.config)

    def tearDown(self):
        self.logging_service.shutdown()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def read_entries(self, path=None):
        with open(path or self.config.log_file_path, 'r') as f:
            return [json.loads(line) for line in f if line.strip()]

    def test_initialization(self):
        self.assertTrue(os.path.exists(self.config.log_file_path))
        self.assertEqual(logging.getLogger().level, logging.INFO)
        file_handlers = [h for h in logging.getLogger().handlers
                         if isinstance(h, logging.handlers.RotatingFileHandler)]
        self.assertEqual(len(file_handlers), 2)

    def test_library_loggers_reach_json_file(self):
        logging.getLogger('easytls.services.server_listener').info(
            "TLS connection accepted", extra={'extra_data': {'peer': '127.0.0.1:50000', 'role': 'server'}}
        )

        entry = next(e for e in self.read_entries() if e['message'] == 'TLS connection accepted')
        self.assertEqual(entry['logger'], 'easytls.services.server_listener')
        self.assertEqual(entry['peer'], '127.0.0.1:50000')

    def test_debug_suppressed_at_info_level(self):
        logging.getLogger('easytls.test').debug("hidden detail")
        logging.getLogger('easytls.test').info("visible detail")

        messages = [e['message'] for e in self.read_entries()]
        self.assertNotIn('hidden detail', messages)
        self.assertIn('visible detail', messages)

    def test_errors_written_to_separate_file(self):
        logger = logging.getLogger('easytls.services.client_connector')
        logger.error("TLS handshake with localhost:8443 failed")
        logger.info("informational message")

        error_log_path = str(Path(self.config.log_file_path).with_suffix('.errors.log'))
        messages = [e['message'] for e in self.read_entries(error_log_path)]
        self.assertEqual(messages, ["TLS handshake with localhost:8443 failed"])

    def test_handshake_summary(self):
        monitor = self.logging_service.handshake_monitor
        with monitor.track('server_handshake', '127.0.0.1:50000', role='server'):
            pass

        summary = self.logging_service.handshake_summary()

        self.assertEqual(summary['server_handshake']['established'], 1)

    def test_shutdown_removes_handlers(self):
        self.logging_service.shutdown()

        self.assertEqual(logging.getLogger().handlers, [])


if __name__ == '__main__':
    unittest.main()
