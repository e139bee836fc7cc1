"""Peer transport interfaces and the TCP implementation."""

from .base import CloseHandler, ConnectionHandler, DataHandler, Transport, TransportConnection
from .tcp import MAX_FRAME_SIZE, TcpConnection, TcpTransport, parse_address

__all__ = [
    "CloseHandler",
    "ConnectionHandler",
    "DataHandler",
    "MAX_FRAME_SIZE",
    "TcpConnection",
    "TcpTransport",
    "Transport",
    "TransportConnection",
    "parse_address",
]
