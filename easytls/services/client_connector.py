"""
Client side connection establishment: resolve, connect, then handshake as initiator.
"""
import asyncio
import contextlib
import logging
import ssl
import weakref
from typing import Optional

from ..errors import HandshakeError
from ..models.config import Config
from ..security.context_factory import create_client_context, describe_handshake_failure
from ..security.models import TrustStore
from ..security.pem_decoder import PemDecoder
from ..security.trust_store import TrustStoreBuilder
from .authenticated_stream import AuthenticatedStream
from .logging_service import HandshakeMonitor
from .resolver import resolve_address


class ClientConnector:
    """Dials TLS servers, verifying their identity against a trust store."""

    def __init__(self, trust_store: Optional[TrustStore] = None, config: Optional[Config] = None,
                 monitor: Optional[HandshakeMonitor] = None):
        """
        Initialize the connector.

        Args:
            trust_store: Anchors used to validate servers. When omitted the
                store is built from ``config.ca_file`` (default roots if unset).
            config: Connection settings
            monitor: Optional collector for connect/handshake outcomes
        """
        self.config = config or Config()
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)

        if trust_store is None:
            builder = TrustStoreBuilder(PemDecoder(self.config.max_pem_size))
            trust_store = builder.build(self.config.ca_file)
        self.trust_store = trust_store

        self._context = create_client_context(trust_store, self.config.minimum_tls_version)
        # Per-call overrides; an entry lives only as long as its store
        self._override_contexts = weakref.WeakKeyDictionary()

    def _context_for(self, trust_store: TrustStore) -> ssl.SSLContext:
        if trust_store is self.trust_store:
            return self._context

        context = self._override_contexts.get(trust_store)
        if context is None:
            context = create_client_context(trust_store, self.config.minimum_tls_version)
            self._override_contexts[trust_store] = context
        return context

    def _measure(self, operation: str, peer: str):
        if self.monitor is None:
            return contextlib.nullcontext()
        return self.monitor.track(operation, peer, role="client")

    async def connect(self, host: str, port: int, trust_store: Optional[TrustStore] = None) -> AuthenticatedStream:
        """
        Open one authenticated connection. No retries.

        Args:
            host: Server name, also used for SNI and hostname verification
            port: Server port
            trust_store: Override for the connector's trust store

        Returns:
            AuthenticatedStream ready for application data

        Raises:
            AddressResolutionError: If ``host`` cannot be resolved
            OSError: If the TCP connection fails
            HandshakeError: If TLS negotiation or peer verification fails
        """
        store = self.trust_store if trust_store is None else trust_store
        context = self._context_for(store)
        peer = f"{host}:{port}"

        address = await resolve_address(host, port)

        self.logger.debug(f"Connecting to {peer} at {address}")
        with self._measure("client_connect", peer):
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host=address.sockaddr[0], port=address.sockaddr[1], family=address.family),
                timeout=self.config.connect_timeout_seconds
            )

        try:
            with self._measure("client_handshake", peer):
                await writer.start_tls(
                    context,
                    server_hostname=host,
                    ssl_handshake_timeout=self.config.handshake_timeout_seconds
                )
        except (ssl.SSLError, ConnectionError, TimeoutError) as e:
            writer.close()
            reason = describe_handshake_failure(e)
            self.logger.error(f"TLS handshake with {peer} failed: {reason}")
            raise HandshakeError(peer, reason) from e
        except BaseException:
            # Cancelled or interrupted mid-negotiation
            writer.close()
            raise

        stream = AuthenticatedStream(reader, writer, peer=peer, server_side=False)
        self.logger.info(f"TLS connection established with {peer} ({stream.tls_version})")
        return stream


async def connect(host: str, port: int, trust_store: Optional[TrustStore] = None,
                  config: Optional[Config] = None) -> AuthenticatedStream:
    """Open a single authenticated connection with a throwaway connector."""
    return await ClientConnector(trust_store=trust_store, config=config).connect(host, port)
