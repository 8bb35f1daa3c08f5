"""
Address resolution shared by the client connector and the server listener.
"""
import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Optional, Tuple

from ..errors import AddressResolutionError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedAddress:
    """One resolved stream-socket address."""
    host: str
    port: int
    family: int
    sockaddr: Tuple

    def __str__(self):
        if self.family == socket.AF_INET6:
            return f"[{self.sockaddr[0]}]:{self.sockaddr[1]}"
        return f"{self.sockaddr[0]}:{self.sockaddr[1]}"


def _partition_interface(interface: str) -> Tuple[str, Optional[str]]:
    host = interface.strip()

    if host.startswith("["):
        closing = host.find("]")
        if closing == -1:
            raise ValueError(f"Unterminated IPv6 literal in interface: {interface}")
        remainder = host[closing + 1:]
        return host[1:closing], remainder[1:] if remainder.startswith(":") else None
    if host.count(":") == 1:
        host, port = host.split(":")
        return host, port
    return host, None


def embedded_port(interface: str) -> Optional[int]:
    """
    Port written into an interface string, or None for a bare host.

    Raises:
        ValueError: If the embedded port is not a number
    """
    _, port = _partition_interface(interface)
    if not port:
        return None
    try:
        return int(port)
    except ValueError:
        raise ValueError(f"Invalid port in interface: {interface}")


def split_interface(interface: str, port: Optional[int] = None) -> Tuple[str, int]:
    """
    Split an interface string into host and port.

    Accepts "host:port", "[v6addr]:port", or a bare host when ``port`` is
    given. An explicit ``port`` argument wins over one embedded in the string.

    Raises:
        ValueError: If no port can be determined
    """
    host, _ = _partition_interface(interface)

    if port is None:
        port = embedded_port(interface)
        if port is None:
            raise ValueError(f"No port given for interface: {interface}")

    if not (0 <= port <= 65535):
        raise ValueError(f"Port out of range: {port}")

    return host, port


async def resolve_address(host: str, port: int, passive: bool = False) -> ResolvedAddress:
    """
    Resolve a host to its first stream-socket address.

    Args:
        host: Host name or address literal
        port: Port number
        passive: Resolve for binding rather than connecting

    Raises:
        AddressResolutionError: If the lookup fails or yields no records
    """
    loop = asyncio.get_running_loop()
    flags = socket.AI_PASSIVE if passive else 0

    try:
        infos = await loop.getaddrinfo(host or None, port, type=socket.SOCK_STREAM, flags=flags)
    except (socket.gaierror, UnicodeError) as e:
        raise AddressResolutionError(host, port, str(e)) from e

    if not infos:
        raise AddressResolutionError(host, port, "no address records")

    family, _, _, _, sockaddr = infos[0]
    address = ResolvedAddress(host=host, port=port, family=family, sockaddr=sockaddr)
    logger.debug(f"Resolved {host}:{port} to {address}")
    return address
