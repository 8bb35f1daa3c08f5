"""
Services package for easytls connection establishment.
"""

from .config_service import ConfigService
from .logging_service import LoggingService, HandshakeMonitor
from .authenticated_stream import AuthenticatedStream
from .client_connector import ClientConnector, connect
from .server_listener import ServerListener, PendingConnection

__all__ = [
    'ConfigService',
    'LoggingService',
    'HandshakeMonitor',
    'AuthenticatedStream',
    'ClientConnector',
    'connect',
    'ServerListener',
    'PendingConnection'
]
