"""
Example TLS server built on easytls.
Handles application initialization, the accept loop, and graceful shutdown.
"""

import asyncio
import logging
import os
import signal
import ssl
import sys
from datetime import datetime
from typing import Optional, Set

from .errors import HandshakeError, TlsError
from .security.material_loader import MaterialLoader
from .security.models import ConnectionIdentity
from .security.pem_decoder import PemDecoder
from .services.config_service import ConfigService
from .services.logging_service import LoggingService
from .services.resolver import embedded_port
from .services.server_listener import PendingConnection, ServerListener


BUFFER_SIZE = 8 * 1024
RESPONSE = b"HTTP/1.1 200 OK\r\nServer: easytls\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"


class TlsServerApplication:
    """Loads configuration and identity, then answers every TLS client with a fixed response."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the server application.

        Args:
            config_path: Path to configuration file (optional)
        """
        self.config_path = config_path or self._get_default_config_path()
        self.logger = None
        self.config_service = None
        self.config = None
        self.logging_service = None
        self.identity: Optional[ConnectionIdentity] = None
        self.listener: Optional[ServerListener] = None

        self._shutdown_event: Optional[asyncio.Event] = None
        self._accept_task: Optional[asyncio.Task] = None
        self._connection_tasks: Set[asyncio.Task] = set()
        self._installed_signals = []
        self._is_running = False
        self._started_at: Optional[datetime] = None
        self._handshakes_completed = 0
        self._handshakes_failed = 0

    def _get_default_config_path(self) -> str:
        """Get the default configuration file path."""
        possible_paths = [
            "config/easytls.properties",
            "easytls.properties",
            os.path.expanduser("~/.easytls/easytls.properties"),
            "/etc/easytls/easytls.properties"
        ]

        for path in possible_paths:
            if os.path.exists(path):
                return path

        return possible_paths[0]

    def initialize(self) -> bool:
        """
        Load configuration, logging and the server identity.

        Returns:
            True if initialization successful, False otherwise
        """
        try:
            self._setup_logging()
            self.logger.info("Starting easytls server initialization...")

            if not self._load_configuration():
                return False

            if not self._load_identity():
                return False

            self.logger.info("easytls server initialized successfully")
            return True

        except Exception as e:
            if self.logger:
                self.logger.error(f"Failed to initialize application: {str(e)}")
            else:
                print(f"Failed to initialize application: {str(e)}")
            return False

    def _setup_logging(self):
        """Console logging until the configured handlers are installed."""
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[logging.StreamHandler(sys.stdout)]
        )
        self.logger = logging.getLogger(__name__)

    def _load_configuration(self) -> bool:
        """Load application configuration."""
        try:
            self.logger.info(f"Loading configuration from: {self.config_path}")
            self.config_service = ConfigService()

            if not os.path.exists(self.config_path):
                self.logger.warning(f"Configuration file not found: {self.config_path}")
                self.config_service.create_default_config_file(self.config_path)
                self.logger.info(f"Default configuration created at: {self.config_path}")
                self.logger.info("Please edit the configuration file and restart the application")
                return False

            self.config = self.config_service.load_config(self.config_path)

            self.logging_service = LoggingService(self.config)
            self.logger.info(f"Log level set to: {self.config.log_level}")
            self.logger.info("Configuration loaded successfully")
            return True

        except (ValueError, OSError) as e:
            self.logger.error(f"Failed to load configuration: {str(e)}")
            return False

    def _load_identity(self) -> bool:
        """
        Read the certificate chain and private key once, at startup.

        The listener, and with it the server context, is built right after
        the key/certificate check so the engine loads the files that passed it.
        """
        try:
            loader = MaterialLoader(PemDecoder(self.config.max_pem_size))
            self.identity = loader.load_identity(self.config.cert_file, self.config.key_file)
            self.listener = ServerListener(
                self.identity,
                config=self.config,
                monitor=self.logging_service.handshake_monitor if self.logging_service else None
            )
            return True
        except TlsError as e:
            self.identity = None
            self.logger.error(f"Failed to load server identity: {str(e)}")
            return False

    async def start(self) -> None:
        """Bind the listener."""
        # A port embedded in the interface string beats the separate port setting
        port = None if embedded_port(self.config.interface) is not None else self.config.port
        await self.listener.listen(self.config.interface, port)
        self._shutdown_event = asyncio.Event()
        self._started_at = datetime.now()
        self._is_running = True

    async def serve(self) -> None:
        """Accept connections until cancelled, handshaking each in its own task."""
        while True:
            pending, peer_address = await self.listener.accept()
            task = asyncio.create_task(self._handle_connection(pending))
            self._connection_tasks.add(task)
            task.add_done_callback(self._connection_tasks.discard)

    async def _handle_connection(self, pending: PendingConnection) -> None:
        try:
            stream = await pending.handshake()
        except HandshakeError:
            self._handshakes_failed += 1
            return
        except OSError as e:
            self._handshakes_failed += 1
            self.logger.error(f"Transport error during handshake with {pending.peer}: {e}")
            return

        self._handshakes_completed += 1
        async with stream:
            try:
                request = await stream.read(BUFFER_SIZE)
                self.logger.info(f"Client {stream.peer} sent {len(request)} bytes")
                self.logger.debug(f"Request from {stream.peer}: {request.decode('utf-8', errors='replace')}")
                await stream.write(RESPONSE)
            except (ConnectionError, ssl.SSLError) as e:
                self.logger.warning(f"Connection with {stream.peer} ended abnormally: {e}")

    async def run(self) -> None:
        """Run until SIGINT/SIGTERM or cancellation, then shut down."""
        if self.listener is None:
            raise RuntimeError("Application not initialized. Call initialize() first.")

        await self.start()
        self._setup_signal_handlers()

        self._accept_task = asyncio.create_task(self.serve())
        shutdown_waiter = asyncio.create_task(self._shutdown_event.wait())
        try:
            await asyncio.wait({self._accept_task, shutdown_waiter}, return_when=asyncio.FIRST_COMPLETED)
            if self._accept_task.done() and not self._accept_task.cancelled():
                # Surface accept loop failures such as EMFILE
                self._accept_task.result()
        finally:
            shutdown_waiter.cancel()
            await self.shutdown()

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
                self._installed_signals.append(signum)
            except (NotImplementedError, RuntimeError):
                # Not available on this platform or outside the main thread
                self.logger.debug(f"Signal handler for {signal.Signals(signum).name} not installed")

    def _on_signal(self, signum: int):
        self.logger.info(f"Received {signal.Signals(signum).name} signal, initiating graceful shutdown...")
        self._shutdown_event.set()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def shutdown(self) -> None:
        """Stop accepting, cancel in-flight connections, close the listener."""
        if not self._is_running:
            return

        self.logger.info("Initiating graceful shutdown...")
        self._is_running = False

        if self._accept_task is not None and not self._accept_task.done():
            self._accept_task.cancel()
            await asyncio.gather(self._accept_task, return_exceptions=True)

        if self.listener is not None:
            self.listener.close()

        loop = asyncio.get_running_loop()
        for signum in self._installed_signals:
            loop.remove_signal_handler(signum)
        self._installed_signals = []

        tasks = list(self._connection_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self.logger.info("Graceful shutdown completed")

    def is_running(self) -> bool:
        return self._is_running

    def get_status(self) -> dict:
        """Get application status information."""
        status = {
            'running': self._is_running,
            'config_path': self.config_path,
            'listening_on': self.listener.address if self.listener else None,
            'identity': self.identity.leaf.info().subject if self.identity else None,
            'active_connections': len(self._connection_tasks),
            'handshakes_completed': self._handshakes_completed,
            'handshakes_failed': self._handshakes_failed,
            'startup_time': self._started_at.isoformat() if self._started_at else None
        }

        if self.logging_service:
            status['handshakes'] = self.logging_service.handshake_summary()

        return status


def main():
    """Main entry point for the example server."""
    import argparse

    parser = argparse.ArgumentParser(description='easytls example server')
    parser.add_argument('--config', '-c', help='Configuration file path')
    parser.add_argument('--check-config', action='store_true', help='Check configuration and identity, then exit')

    args = parser.parse_args()

    app = TlsServerApplication(config_path=args.config)

    if not app.initialize():
        print("Failed to initialize application")
        sys.exit(1)

    if args.check_config:
        print("Configuration check passed")
        status = app.get_status()
        print(f"Config path: {status['config_path']}")
        print(f"Identity: {status['identity']}")
        sys.exit(0)

    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
    except (TlsError, OSError) as e:
        print(f"Application error: {str(e)}")
        sys.exit(1)


if __name__ == '__main__':
    main()
