"""
Server side connection establishment.

Accepting a TCP connection and negotiating TLS on it are separate steps so
that callers can inspect the peer address first and run handshakes in
independent tasks.
"""
import asyncio
import contextlib
import logging
import socket
import ssl
from typing import Any, Optional, Tuple

from ..errors import AddressResolutionError, HandshakeError, HandshakeStateError
from ..models.config import Config
from ..security.context_factory import create_server_context, describe_handshake_failure
from ..security.models import ConnectionIdentity
from .authenticated_stream import AuthenticatedStream
from .logging_service import HandshakeMonitor
from .resolver import ResolvedAddress, resolve_address, split_interface


STREAM_LIMIT = 64 * 1024


def format_peer(peer_address: Any) -> str:
    if isinstance(peer_address, tuple) and len(peer_address) >= 2:
        host, port = peer_address[0], peer_address[1]
        return f"[{host}]:{port}" if ":" in str(host) else f"{host}:{port}"
    return str(peer_address)


class PendingConnection:
    """An accepted TCP connection that has not negotiated TLS yet."""

    PENDING = "pending"
    NEGOTIATING = "negotiating"
    ESTABLISHED = "established"
    FAILED = "failed"
    CLOSED = "closed"

    def __init__(self, sock: socket.socket, peer_address: Any, context: ssl.SSLContext,
                 config: Config, monitor: Optional[HandshakeMonitor] = None):
        self._sock = sock
        self._context = context
        self.peer_address = peer_address
        self.peer = format_peer(peer_address)
        self.config = config
        self.monitor = monitor
        self.state = self.PENDING
        self.logger = logging.getLogger(__name__)

    def _measure(self):
        if self.monitor is None:
            return contextlib.nullcontext()
        return self.monitor.track("server_handshake", self.peer, role="server")

    async def handshake(self) -> AuthenticatedStream:
        """
        Negotiate TLS as the responder using the listener's identity.

        Returns:
            AuthenticatedStream ready for application data

        Raises:
            HandshakeStateError: If called more than once or after close()
            HandshakeError: If negotiation fails; the socket is closed
        """
        if self.state != self.PENDING:
            raise HandshakeStateError(f"Connection from {self.peer} is {self.state}, handshake already attempted")
        self.state = self.NEGOTIATING

        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(limit=STREAM_LIMIT)
        protocol = asyncio.StreamReaderProtocol(reader)

        try:
            with self._measure():
                transport, _ = await loop.connect_accepted_socket(
                    lambda: protocol,
                    sock=self._sock,
                    ssl=self._context,
                    ssl_handshake_timeout=self.config.handshake_timeout_seconds
                )
        except (ssl.SSLError, ConnectionError, TimeoutError) as e:
            self.state = self.FAILED
            self._sock.close()
            reason = describe_handshake_failure(e)
            self.logger.error(f"TLS handshake with {self.peer} failed: {reason}")
            raise HandshakeError(self.peer, reason) from e
        except BaseException:
            self.state = self.FAILED
            self._sock.close()
            raise

        writer = asyncio.StreamWriter(transport, protocol, reader, loop)
        self.state = self.ESTABLISHED

        stream = AuthenticatedStream(reader, writer, peer=self.peer, server_side=True)
        self.logger.info(f"TLS connection accepted from {self.peer} ({stream.tls_version})")
        return stream

    def close(self) -> None:
        """Drop the connection without negotiating."""
        if self.state == self.PENDING:
            self.state = self.CLOSED
            self._sock.close()


class ServerListener:
    """Listening socket with a fixed TLS identity."""

    def __init__(self, identity: ConnectionIdentity, config: Optional[Config] = None,
                 monitor: Optional[HandshakeMonitor] = None):
        self.identity = identity
        self.config = config or Config()
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)
        self._context = create_server_context(identity, self.config.minimum_tls_version)
        self._socket: Optional[socket.socket] = None
        self.bound_address: Optional[ResolvedAddress] = None

    @classmethod
    async def bind(cls, interface: str, identity: ConnectionIdentity, port: Optional[int] = None,
                   config: Optional[Config] = None,
                   monitor: Optional[HandshakeMonitor] = None) -> "ServerListener":
        """
        Create a listener and bind it.

        Args:
            interface: "host:port", "[v6addr]:port", or a bare host with ``port``
            identity: Certificate chain and key presented to every client
            port: Port, if not part of ``interface``

        Raises:
            AddressResolutionError: If the interface cannot be resolved
            OSError: If the socket cannot be bound
        """
        listener = cls(identity, config=config, monitor=monitor)
        await listener.listen(interface, port)
        return listener

    async def listen(self, interface: str, port: Optional[int] = None) -> None:
        if self._socket is not None:
            raise RuntimeError("Listener is already bound")

        try:
            host, port = split_interface(interface, port)
        except ValueError as e:
            raise AddressResolutionError(interface, port, str(e)) from e

        address = await resolve_address(host, port, passive=True)

        sock = socket.socket(address.family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(address.sockaddr)
            sock.listen(self.config.listen_backlog)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise

        self._socket = sock
        self.bound_address = address
        self.logger.info(f"Listening on {format_peer(self.address)}")

    @property
    def address(self) -> Any:
        """Local socket address, including the actual port when bound to port 0."""
        if self._socket is None:
            return None
        return self._socket.getsockname()

    @property
    def port(self) -> Optional[int]:
        address = self.address
        return address[1] if address else None

    def is_bound(self) -> bool:
        return self._socket is not None

    async def accept(self) -> Tuple[PendingConnection, Any]:
        """
        Wait for the next inbound TCP connection. No TLS work is done here.

        Returns:
            (PendingConnection, peer_address)
        """
        if self._socket is None:
            raise RuntimeError("Listener is not bound. Call listen() first.")

        loop = asyncio.get_running_loop()
        conn, peer_address = await loop.sock_accept(self._socket)
        self.logger.debug(f"Accepted TCP connection from {format_peer(peer_address)}")

        pending = PendingConnection(conn, peer_address, self._context, self.config, self.monitor)
        return pending, peer_address

    def close(self) -> None:
        """Stop listening. Established connections are unaffected."""
        if self._socket is not None:
            self._socket.close()
            self._socket = None
            self.logger.info("Listener closed")

    async def __aenter__(self) -> "ServerListener":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
