"""
Tests for the client connector.
"""
import asyncio
import gc
import shutil
import socket
import tempfile
import unittest
from unittest.mock import AsyncMock, patch

from easytls.errors import AddressResolutionError, EmptyTrustStoreError, HandshakeError
from easytls.models.config import Config
from easytls.security.material_loader import MaterialLoader
from easytls.security.trust_store import TrustStoreBuilder, default_trust_store
from easytls.services import client_connector as client_connector_module
from easytls.services.client_connector import ClientConnector, connect
from easytls.services.logging_service import HandshakeMonitor
from easytls.services.server_listener import ServerListener

from tls_fixtures import TlsMaterial, write_file

TIMEOUT = 10


class TestClientConnectorSetup(unittest.TestCase):
    """Test cases for connector construction and context handling."""

    @classmethod
    def setUpClass(cls):
        cls.material_dir = tempfile.mkdtemp()
        cls.material = TlsMaterial(cls.material_dir)

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(cls.material_dir)

    def test_default_store_when_no_ca_file(self):
        connector = ClientConnector()

        self.assertIs(connector.trust_store, default_trust_store())

    def test_store_built_from_config_ca_file(self):
        connector = ClientConnector(config=Config(ca_file=self.material.ca_path))

        self.assertFalse(connector.trust_store.is_default)
        self.assertEqual(len(connector.trust_store), 1)

    def test_empty_ca_file_fails_at_construction(self):
        path = write_file(self.material_dir, 'empty_ca.pem', "")

        with self.assertRaises(EmptyTrustStoreError):
            ClientConnector(config=Config(ca_file=path))

    def test_context_cached_per_store(self):
        store = TrustStoreBuilder().build(self.material.ca_path)
        connector = ClientConnector(trust_store=store)

        first = connector._context_for(store)
        second = connector._context_for(store)
        other = connector._context_for(default_trust_store())

        self.assertIs(first, second)
        self.assertIsNot(first, other)
        self.assertTrue(first.check_hostname)

    def test_override_contexts_do_not_accumulate(self):
        connector = ClientConnector(trust_store=default_trust_store())
        stores = [TrustStoreBuilder().build(self.material.ca_path) for _ in range(20)]

        contexts = {id(connector._context_for(store)) for store in stores}

        # Equal stores share one context
        self.assertEqual(len(contexts), 1)
        self.assertEqual(len(connector._override_contexts), 1)

        del stores
        gc.collect()

        self.assertEqual(len(connector._override_contexts), 0)

    def test_fresh_store_per_call_is_released(self):
        connector = ClientConnector(trust_store=default_trust_store())

        for _ in range(20):
            connector._context_for(TrustStoreBuilder().build(self.material.ca_path))
        gc.collect()

        self.assertEqual(len(connector._override_contexts), 0)

    def test_minimum_version_applied(self):
        store = TrustStoreBuilder().build(self.material.ca_path)
        connector = ClientConnector(trust_store=store, config=Config(minimum_tls_version="TLSv1.3"))

        context = connector._context_for(store)

        self.assertEqual(context.minimum_version.name, "TLSv1_3")


class TestClientConnector(unittest.IsolatedAsyncioTestCase):
    """Test cases for ClientConnector.connect against a local listener."""

    @classmethod
    def setUpClass(cls):
        cls.material_dir = tempfile.mkdtemp()
        cls.material = TlsMaterial(cls.material_dir)
        cls.identity = MaterialLoader().load_identity(cls.material.chain_path, cls.material.key_path)
        cls.trust_store = TrustStoreBuilder().build(cls.material.ca_path)

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(cls.material_dir)

    async def asyncSetUp(self):
        self.config = Config(handshake_timeout_seconds=5.0, connect_timeout_seconds=5.0)
        self.listener = await ServerListener.bind("localhost", self.identity, port=0, config=self.config)
        self.server_tasks = []

    async def asyncTearDown(self):
        for task in self.server_tasks:
            task.cancel()
        await asyncio.gather(*self.server_tasks, return_exceptions=True)
        self.listener.close()

    def serve_one(self):
        """Accept and handshake a single connection in the background, echoing one chunk."""
        async def serve():
            pending, _ = await self.listener.accept()
            stream = await pending.handshake()
            async with stream:
                data = await stream.read(1024)
                await stream.write(data)

        task = asyncio.create_task(serve())
        self.server_tasks.append(task)
        return task

    async def test_connect_and_exchange_data(self):
        monitor = HandshakeMonitor()
        connector = ClientConnector(trust_store=self.trust_store, config=self.config, monitor=monitor)
        self.serve_one()

        stream = await asyncio.wait_for(connector.connect("localhost", self.listener.port), TIMEOUT)
        async with stream:
            self.assertFalse(stream.server_side)
            self.assertEqual(stream.peer, f"localhost:{self.listener.port}")
            self.assertIsNotNone(stream.cipher)

            peer_cert = stream.peer_certificate()
            self.assertIn(('commonName', 'localhost'), [item for rdn in peer_cert['subject'] for item in rdn])
            self.assertTrue(stream.peer_certificate_der())

            await stream.write(b"hello")
            self.assertEqual(await asyncio.wait_for(stream.readexactly(5), TIMEOUT), b"hello")

        self.assertEqual(monitor.summary("client_connect")['success_rate'], 1.0)
        self.assertEqual(monitor.summary("client_handshake")['success_rate'], 1.0)

    async def test_per_call_trust_store_override(self):
        connector = ClientConnector(trust_store=default_trust_store(), config=self.config)
        self.serve_one()

        stream = await asyncio.wait_for(
            connector.connect("localhost", self.listener.port, trust_store=self.trust_store), TIMEOUT
        )
        await stream.close()

    async def test_module_level_connect(self):
        self.serve_one()

        stream = await asyncio.wait_for(
            connect("localhost", self.listener.port, trust_store=self.trust_store, config=self.config), TIMEOUT
        )
        await stream.close()

    async def test_untrusted_server_fails_handshake(self):
        monitor = HandshakeMonitor()
        connector = ClientConnector(trust_store=default_trust_store(), config=self.config, monitor=monitor)
        self.serve_one()

        with self.assertRaises(HandshakeError) as cm:
            await asyncio.wait_for(connector.connect("localhost", self.listener.port), TIMEOUT)

        self.assertIn("certificate verification failed", cm.exception.reason)
        summary = monitor.summary("client_handshake")
        self.assertEqual(summary['success_rate'], 0.0)
        self.assertEqual(list(summary['failure_reasons']), [cm.exception.reason])

    async def test_hostname_mismatch_fails_handshake(self):
        connector = ClientConnector(trust_store=self.trust_store, config=self.config)
        self.serve_one()

        # The test certificate names only "localhost", never an IP address
        with self.assertRaises(HandshakeError):
            await asyncio.wait_for(connector.connect(self.listener.address[0], self.listener.port), TIMEOUT)

    async def test_resolution_failure_never_connects(self):
        connector = ClientConnector(trust_store=self.trust_store, config=self.config)
        loop = asyncio.get_running_loop()
        failure = socket.gaierror(socket.EAI_NONAME, "Name or service not known")

        with patch.object(loop, 'getaddrinfo', AsyncMock(side_effect=failure)), \
                patch.object(client_connector_module.asyncio, 'open_connection') as mock_open:
            with self.assertRaises(AddressResolutionError):
                await connector.connect("no-such-host.invalid", 443)

        mock_open.assert_not_called()

    async def test_connection_refused(self):
        connector = ClientConnector(trust_store=self.trust_store, config=self.config)
        port = self.listener.port
        self.listener.close()

        with self.assertRaises(OSError):
            await asyncio.wait_for(connector.connect("localhost", port), TIMEOUT)


class TestClientConnectorCancellation(unittest.IsolatedAsyncioTestCase):
    """Test cases for cancelling a connect while it negotiates."""

    @classmethod
    def setUpClass(cls):
        cls.material_dir = tempfile.mkdtemp()
        cls.material = TlsMaterial(cls.material_dir)
        cls.trust_store = TrustStoreBuilder().build(cls.material.ca_path)

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(cls.material_dir)

    async def asyncSetUp(self):
        self.hello_received = asyncio.Event()
        self.client_gone = asyncio.Event()

        async def silent_server(reader, writer):
            # Reads the client hello and never answers it
            await reader.read(1)
            self.hello_received.set()
            try:
                while await reader.read(4096):
                    pass
            except ConnectionError:
                pass
            finally:
                self.client_gone.set()
                writer.close()

        self.server = await asyncio.start_server(silent_server, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]

    async def asyncTearDown(self):
        self.server.close()
        await self.server.wait_closed()

    async def test_cancel_mid_handshake_releases_socket(self):
        monitor = HandshakeMonitor()
        connector = ClientConnector(
            trust_store=self.trust_store, config=Config(handshake_timeout_seconds=30.0), monitor=monitor
        )

        connect_task = asyncio.create_task(connector.connect("127.0.0.1", self.port))
        await asyncio.wait_for(self.hello_received.wait(), TIMEOUT)

        connect_task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await connect_task

        # The server side sees end of stream once the client socket is closed
        await asyncio.wait_for(self.client_gone.wait(), TIMEOUT)

        summary = monitor.summary("client_handshake")
        self.assertEqual(summary['failed'], 1)
        self.assertEqual(summary['failure_reasons'], {'CancelledError': 1})


if __name__ == '__main__':
    unittest.main()
