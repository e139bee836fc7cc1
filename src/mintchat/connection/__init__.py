"""
Peer connection management.

    ConnectionManager  -> owns connections, drives key exchange, relays content
    PeerConnection     -> per-peer state machine and key material
    ChatContext        -> session state owned by the application root
    ChatEvents         -> UI sink for protocol events
"""

from .context import ChatContext, ChatUser
from .events import ChatEvents, Severity
from .manager import (
    NO_SHARED_KEY_WARNING,
    OWN_SENDER_NAME,
    SYSTEM_SENDER_ID,
    SYSTEM_SENDER_NAME,
    ConnectionManager,
)
from .types import (
    ConnectionClosed,
    ConnectionEvent,
    ConnectionOpened,
    ConnectionState,
    DataReceived,
    PeerConnection,
    Role,
)

__all__ = [
    # Manager
    "ConnectionManager",
    "NO_SHARED_KEY_WARNING",
    "OWN_SENDER_NAME",
    "SYSTEM_SENDER_ID",
    "SYSTEM_SENDER_NAME",
    # Connection state
    "ConnectionClosed",
    "ConnectionEvent",
    "ConnectionOpened",
    "ConnectionState",
    "DataReceived",
    "PeerConnection",
    "Role",
    # Application boundary
    "ChatContext",
    "ChatEvents",
    "ChatUser",
    "Severity",
]
