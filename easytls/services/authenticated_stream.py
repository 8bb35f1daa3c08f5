"""
Encrypted byte stream returned by a completed handshake.
"""
import asyncio
import logging
import ssl
from typing import Any, Dict, Optional, Tuple


class AuthenticatedStream:
    """A negotiated TLS session over an asyncio stream pair."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 peer: str, server_side: bool):
        self.reader = reader
        self.writer = writer
        self.peer = peer
        self.server_side = server_side
        self.logger = logging.getLogger(__name__)

    async def read(self, n: int = -1) -> bytes:
        return await self.reader.read(n)

    async def readexactly(self, n: int) -> bytes:
        return await self.reader.readexactly(n)

    async def readline(self) -> bytes:
        return await self.reader.readline()

    async def write(self, data: bytes) -> None:
        """Write data and wait until the transport buffer drains."""
        self.writer.write(data)
        await self.writer.drain()

    def at_eof(self) -> bool:
        return self.reader.at_eof()

    @property
    def ssl_object(self) -> Optional[ssl.SSLObject]:
        return self.writer.get_extra_info('ssl_object')

    @property
    def tls_version(self) -> Optional[str]:
        ssl_object = self.ssl_object
        return ssl_object.version() if ssl_object else None

    @property
    def cipher(self) -> Optional[Tuple[str, str, int]]:
        return self.writer.get_extra_info('cipher')

    @property
    def peername(self) -> Any:
        return self.writer.get_extra_info('peername')

    def peer_certificate(self) -> Optional[Dict[str, Any]]:
        """Decoded peer certificate, as validated during the handshake."""
        return self.writer.get_extra_info('peercert')

    def peer_certificate_der(self) -> Optional[bytes]:
        ssl_object = self.ssl_object
        return ssl_object.getpeercert(binary_form=True) if ssl_object else None

    async def close(self) -> None:
        """Send close_notify and close the transport."""
        if self.writer.is_closing():
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, ssl.SSLError) as e:
            # The peer may drop the socket before answering close_notify
            self.logger.debug(f"Unclean TLS shutdown with {self.peer}: {e}")

    async def __aenter__(self) -> "AuthenticatedStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __repr__(self):
        role = "server" if self.server_side else "client"
        return f"<AuthenticatedStream {role} peer={self.peer} version={self.tls_version}>"
