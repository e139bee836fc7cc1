"""
TCP transport with length-prefixed framing.

TCP is a byte stream, not a message stream. Each message is therefore
framed with a 4-byte big-endian length prefix:

    +----------------+---------------------+
    | length (u32be) | payload (length B)  |
    +----------------+---------------------+

Peer identifiers are socket addresses in "host:port" form:

    - Outbound: the address that was dialed.
    - Inbound: the remote socket address reported by the OS.

Neither can be chosen by the remote side through anything it sends.

This transport provides no confidentiality of its own. Message content
is protected by the chat protocol's session encryption; key exchange
envelopes travel in the clear by design.
"""

from __future__ import annotations

import asyncio
import logging
import struct
from dataclasses import dataclass, field
from typing import Final

from mintchat.errors import TransportError
from mintchat.types import PeerId

from .base import CloseHandler, ConnectionHandler, DataHandler

logger = logging.getLogger(__name__)

FRAME_HEADER: Final = struct.Struct(">I")
"""Frame length prefix: unsigned 32-bit big-endian."""

MAX_FRAME_SIZE: Final = 64 * 1024 * 1024
"""Largest accepted frame. Bounds memory use per message."""


def parse_address(address: str) -> tuple[str, int]:
    """
    Split a "host:port" address.

    Raises:
        TransportError: If the address has no valid port.
    """
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise TransportError(f"Address must be host:port, got {address!r}")
    try:
        return host.strip("[]"), int(port)
    except ValueError as e:
        raise TransportError(f"Invalid port in address {address!r}") from e


@dataclass(slots=True, eq=False)
class TcpConnection:
    """
    A framed TCP connection to one peer.

    Reading starts when handlers are installed. Until then, incoming
    bytes wait in the stream reader's buffer.
    """

    _peer_id: PeerId
    """Remote "host:port"."""

    _reader: asyncio.StreamReader
    _writer: asyncio.StreamWriter

    _on_data: DataHandler | None = None
    _on_close: CloseHandler | None = None

    _read_task: asyncio.Task[None] | None = None
    """Background frame reader."""

    _write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    """Keeps concurrent frames from interleaving on the socket."""

    _closed: bool = False

    @property
    def peer_id(self) -> PeerId:
        """Remote socket address."""
        return self._peer_id

    @property
    def is_closed(self) -> bool:
        """Whether the connection has been closed from either side."""
        return self._closed

    def set_handlers(self, on_data: DataHandler, on_close: CloseHandler) -> None:
        """Install callbacks and start the frame reader."""
        self._on_data = on_data
        self._on_close = on_close
        if self._read_task is None:
            self._read_task = asyncio.create_task(self._read_loop())

    async def send(self, data: bytes) -> None:
        """Write one frame."""
        if self._closed:
            raise TransportError(f"Connection to {self._peer_id} is closed")
        if len(data) > MAX_FRAME_SIZE:
            raise TransportError(f"Frame of {len(data)} bytes exceeds {MAX_FRAME_SIZE}")

        async with self._write_lock:
            try:
                self._writer.write(FRAME_HEADER.pack(len(data)) + data)
                await self._writer.drain()
            except (ConnectionError, OSError) as e:
                raise TransportError(f"Send to {self._peer_id} failed: {e}") from e

    async def close(self) -> None:
        """Close the socket and stop reading."""
        if self._closed:
            return
        self._closed = True

        # The reader may be the caller; it must not cancel itself.
        task = self._read_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._close_writer()

    async def _close_writer(self) -> None:
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Error closing connection to %s: %s", self._peer_id, e)

    async def _read_loop(self) -> None:
        """Read frames until EOF, then report the close once."""
        try:
            while True:
                header = await self._reader.readexactly(FRAME_HEADER.size)
                (length,) = FRAME_HEADER.unpack(header)
                if length > MAX_FRAME_SIZE:
                    logger.warning(
                        "Peer %s sent oversized frame (%d bytes), closing", self._peer_id, length
                    )
                    break
                payload = await self._reader.readexactly(length)
                if self._on_data is not None:
                    await self._on_data(payload)
        except asyncio.IncompleteReadError:
            logger.debug("Connection to %s reached EOF", self._peer_id)
        except (ConnectionError, OSError) as e:
            logger.debug("Connection to %s failed: %s", self._peer_id, e)

        if self._closed:
            return
        self._closed = True
        await self._close_writer()
        if self._on_close is not None:
            await self._on_close()


@dataclass(slots=True)
class TcpTransport:
    """
    Listens for and dials framed TCP connections.

    Usage:
        transport = TcpTransport()
        await transport.start("0.0.0.0", 9000)
        transport.on_connection(manager.accept)
        conn = await transport.dial("192.168.1.20:9000")
    """

    _local_id: PeerId = ""
    """Advertised "host:port", set by `start`."""

    _handler: ConnectionHandler | None = None
    """Receives inbound connections."""

    _server: asyncio.Server | None = None
    """Listening socket, if started."""

    _connections: set[TcpConnection] = field(default_factory=set)
    """Every connection opened through this transport."""

    @property
    def local_id(self) -> PeerId:
        """Advertised listen address."""
        return self._local_id

    def on_connection(self, handler: ConnectionHandler) -> None:
        """Register the inbound connection callback."""
        self._handler = handler

    async def start(
        self,
        host: str = "0.0.0.0",
        port: int = 0,
        advertise: str | None = None,
    ) -> None:
        """
        Start listening.

        Args:
            host: Interface to bind.
            port: Port to bind. 0 picks a free port.
            advertise: Host part of `local_id`. Defaults to the bound address.

        Raises:
            TransportError: If the socket cannot be bound.
        """
        try:
            self._server = await asyncio.start_server(self._handle_client, host, port)
        except OSError as e:
            raise TransportError(f"Cannot listen on {host}:{port}: {e}") from e

        bound_host, bound_port = self._server.sockets[0].getsockname()[:2]
        self._local_id = f"{advertise or bound_host}:{bound_port}"
        logger.info("Listening on %s", self._local_id)

    async def stop(self) -> None:
        """Stop listening and close every connection."""
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        for conn in list(self._connections):
            await conn.close()
        self._connections.clear()

    async def dial(self, remote_id: PeerId) -> TcpConnection:
        """Connect to a peer at "host:port"."""
        host, port = parse_address(remote_id)
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as e:
            raise TransportError(f"Cannot reach {remote_id}: {e}") from e

        conn = TcpConnection(remote_id, reader, writer)
        self._connections.add(conn)
        logger.debug("Dialed %s", remote_id)
        return conn

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        peername = writer.get_extra_info("peername")
        peer_id = f"{peername[0]}:{peername[1]}"
        conn = TcpConnection(peer_id, reader, writer)

        if self._handler is None:
            logger.warning("No connection handler registered; rejecting %s", peer_id)
            await conn.close()
            return

        self._connections.add(conn)
        logger.debug("Accepted connection from %s", peer_id)
        await self._handler(conn)
