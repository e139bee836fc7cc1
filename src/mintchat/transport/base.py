"""
Abstract interfaces for the peer transport.

The chat core never touches sockets. It sees each peer as an opaque,
bidirectional byte pipe identified by a transport-assigned peer id:

    Transport            -> dials peers, reports inbound connections
    TransportConnection  -> one pipe to one peer

The peer id is assigned and verified by the transport. Nothing the remote
side sends can change it, which is what makes sender attribution safe.

The runtime_checkable decorator allows isinstance() checks, which is
useful for validation and testing.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol, runtime_checkable

from mintchat.types import PeerId

DataHandler = Callable[[bytes], Awaitable[None]]
"""Called with every complete message received on a connection."""

CloseHandler = Callable[[], Awaitable[None]]
"""Called once when the remote side closes or the connection fails."""


@runtime_checkable
class TransportConnection(Protocol):
    """
    A message-oriented connection to one peer.

    Messages are delivered whole and in order. Data received before
    handlers are installed is buffered, not dropped.

    Example usage:
        conn = await transport.dial("127.0.0.1:9000")
        conn.set_handlers(on_data, on_close)
        await conn.send(b'{"type": "keyExchange", ...}')
        await conn.close()
    """

    @property
    def peer_id(self) -> PeerId:
        """Transport-verified identifier of the remote peer."""
        ...

    def set_handlers(self, on_data: DataHandler, on_close: CloseHandler) -> None:
        """
        Install receive and close callbacks and start delivering data.

        Args:
            on_data: Awaited for each received message, in order.
            on_close: Awaited once when the remote side goes away.
        """
        ...

    async def send(self, data: bytes) -> None:
        """
        Send one message.

        Raises:
            TransportError: If the connection is closed or the write fails.
        """
        ...

    async def close(self) -> None:
        """
        Close the connection.

        Idempotent. Does not invoke the local close handler; the caller
        already knows it closed the connection.
        """
        ...


ConnectionHandler = Callable[[TransportConnection], Awaitable[None]]
"""Called for every inbound connection once it is open."""


@runtime_checkable
class Transport(Protocol):
    """
    Factory for peer connections.

    Example usage:
        transport.on_connection(manager.accept)
        conn = await transport.dial(remote_id)
    """

    @property
    def local_id(self) -> PeerId:
        """Identifier other peers use to dial us."""
        ...

    def on_connection(self, handler: ConnectionHandler) -> None:
        """Register the callback for inbound connections."""
        ...

    async def dial(self, remote_id: PeerId) -> TransportConnection:
        """
        Open a connection to a peer.

        Returns once the connection is open. The returned connection's
        `peer_id` equals `remote_id`.

        Raises:
            TransportError: If the peer cannot be reached.
        """
        ...
