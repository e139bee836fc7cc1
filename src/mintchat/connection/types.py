"""
Per-peer connection state.

Each PeerConnection runs its own state machine:

    IDLE --dial--> OPENING --open--> KEY_PENDING --secret derived--> SECURE
                      |                   |                            |
                      +-------------------+----------------------------+
                                          |
                                 close / fail / leave
                                          v
                                        CLOSED

CLOSED is terminal: a closed connection is removed and never reused.
Reconnecting to the same peer creates a new PeerConnection.

Events for one connection are handled strictly in arrival order by a
single worker consuming the connection's queue.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum, auto

from mintchat.crypto import KeyExchange, SecureChannel
from mintchat.errors import KeyExchangeError
from mintchat.transport import TransportConnection
from mintchat.types import PeerId, Timestamp


class ConnectionState(Enum):
    """Lifecycle state of a peer connection."""

    IDLE = auto()
    """Created, nothing attempted yet."""

    OPENING = auto()
    """Transport connection in progress."""

    KEY_PENDING = auto()
    """Open; waiting for the peer's public key."""

    SECURE = auto()
    """Shared secret derived; content may flow."""

    CLOSED = auto()
    """Terminal."""


class Role(Enum):
    """Which side opened the connection."""

    INITIATOR = auto()
    ACCEPTOR = auto()


@dataclass(frozen=True, slots=True)
class ConnectionOpened:
    """The transport reports the connection open."""


@dataclass(frozen=True, slots=True)
class DataReceived:
    """A complete message arrived from the peer."""

    data: bytes
    """Raw message bytes."""


@dataclass(frozen=True, slots=True)
class ConnectionClosed:
    """The connection closed or failed."""

    reason: str = "closed"
    """Short human-readable cause."""


ConnectionEvent = ConnectionOpened | DataReceived | ConnectionClosed
"""Union of events consumed by a connection worker."""


@dataclass(slots=True, eq=False)
class PeerConnection:
    """
    One connection to one peer, with its own key material.

    The peer id comes from the transport and never changes. Everything the
    peer sends is attributed to it regardless of what the payload claims.
    """

    peer_id: PeerId
    """Transport-verified peer identifier."""

    role: Role
    """Whether we dialed or accepted."""

    handle: TransportConnection | None = None
    """Underlying transport connection, absent until open."""

    state: ConnectionState = ConnectionState.IDLE
    """Current lifecycle state."""

    key_exchange: KeyExchange = field(default_factory=KeyExchange)
    """Ephemeral key pair and shared secret for this pair of peers."""

    channel: SecureChannel = field(default_factory=SecureChannel)
    """Cipher bound to the shared secret once derived."""

    key_announced_at: Timestamp | None = None
    """Timestamp of our public key announcement."""

    remote_key_timestamp: Timestamp | None = None
    """Timestamp of the peer's public key announcement."""

    queue: asyncio.Queue[ConnectionEvent] = field(default_factory=asyncio.Queue)
    """Pending events, consumed in order by the worker."""

    worker: asyncio.Task[None] | None = None
    """Task consuming `queue`."""

    @property
    def is_secure(self) -> bool:
        """Whether content can be encrypted for this peer."""
        return self.state is ConnectionState.SECURE

    @property
    def is_open(self) -> bool:
        """Whether the transport connection is open."""
        return self.state in (ConnectionState.KEY_PENDING, ConnectionState.SECURE)

    @property
    def fingerprint_salt(self) -> str:
        """
        Salt shared by both ends for verification fingerprints.

        Both announcement timestamps, smaller first, so both ends compute
        the same value.

        Raises:
            KeyExchangeError: If either announcement is missing.
        """
        if self.key_announced_at is None or self.remote_key_timestamp is None:
            raise KeyExchangeError(f"Key exchange with {self.peer_id} is incomplete")
        low, high = sorted((self.key_announced_at, self.remote_key_timestamp))
        return f"{low}:{high}"

    def clear_keys(self) -> None:
        """Forget all key material for this connection."""
        self.key_exchange.clear()
        self.channel.clear()
        self.key_announced_at = None
        self.remote_key_timestamp = None
